"""SerpAPI searches used to enrich buyer intelligence with recent news."""

from typing import Any

import httpx

from tender_engine.core.config import get_settings
from tender_engine.core.logging import get_logger

logger = get_logger(__name__)

SERPAPI_BASE_URL = "https://serpapi.com/search"


async def search_news(
    query: str,
    num_results: int = 5,
    timeout: int = 15,
) -> list[dict[str, Any]]:
    """
    Search Google News via SerpAPI (French locale).

    Args:
        query: Search query string
        num_results: Number of results to return
        timeout: Request timeout in seconds

    Returns:
        List of result dicts with title, url, snippet

    Raises:
        ValueError: If SERPAPI_API_KEY not configured
        httpx.HTTPStatusError: If the API request fails
    """
    settings = get_settings()

    if not settings.SERPAPI_API_KEY:
        raise ValueError("SERPAPI_API_KEY not configured")

    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.get(
            SERPAPI_BASE_URL,
            params={
                "api_key": settings.SERPAPI_API_KEY,
                "q": query,
                "num": num_results,
                "engine": "google",
                "tbm": "nws",
                "hl": "fr",
                "gl": "fr",
            },
        )
        response.raise_for_status()

    data = response.json()
    items = data.get("news_results") or data.get("organic_results") or []

    results = [
        {
            "title": item.get("title", ""),
            "url": item.get("link", ""),
            "snippet": item.get("snippet", ""),
        }
        for item in items[:num_results]
        if item.get("title")
    ]
    logger.info(f"SerpAPI news '{query[:50]}': {len(results)} results")
    return results


async def search_news_safe(
    query: str,
    num_results: int = 5,
    timeout: int = 15,
) -> list[dict[str, Any]]:
    """Search news with error handling, returning an empty list on failure."""
    try:
        return await search_news(query, num_results, timeout)
    except ValueError as e:
        logger.debug(f"SerpAPI not configured: {e}")
        return []
    except httpx.HTTPStatusError as e:
        logger.warning(f"SerpAPI HTTP error for '{query[:50]}': {e.response.status_code}")
        return []
    except httpx.TimeoutException:
        logger.warning(f"SerpAPI timeout for '{query[:50]}'")
        return []
    except httpx.HTTPError as e:
        logger.warning(f"SerpAPI error for '{query[:50]}': {e}")
        return []
