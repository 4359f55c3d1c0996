"""Intelligence agent: market context for the buyer and the CPV sector.

Database aggregates and web news are gathered concurrently. Web news is best
effort; a database failure propagates so the pipeline can record it and carry
on with an empty context.
"""

import asyncio

from tender_engine.core.cancellation import CancellationToken, ensure_token
from tender_engine.core.logging import get_logger
from tender_engine.core.schemas_analysis import (
    MarketIntelligence,
    NewsItem,
    ParsedDce,
    WebIntel,
)
from tender_engine.core.serpapi_service import search_news_safe
from tender_engine.db.market_data import (
    compute_hhi,
    fetch_buyer_history,
    fetch_sector_rows,
    summarize_competitors,
    summarize_sector,
)

logger = get_logger(__name__)


async def _fetch_db_intelligence(parsed: ParsedDce) -> MarketIntelligence:
    buyer_history = await asyncio.to_thread(fetch_buyer_history, parsed.buyer_name)
    sector_rows = await asyncio.to_thread(fetch_sector_rows, parsed.cpv_sector)

    competitors = summarize_competitors(sector_rows)
    return MarketIntelligence(
        buyer_history=buyer_history,
        competitors=competitors,
        sector_stats=summarize_sector(sector_rows),
        hhi=compute_hhi(competitors),
    )


async def _fetch_web_intelligence(parsed: ParsedDce) -> WebIntel | None:
    if not parsed.buyer_name:
        return None
    results = await search_news_safe(f'"{parsed.buyer_name}" marche public', num_results=5)
    if not results:
        return None
    return WebIntel(serp_news=[NewsItem(**r) for r in results])


async def run_intelligence(
    parsed: ParsedDce, token: CancellationToken | None = None
) -> MarketIntelligence:
    """
    Build market intelligence for a parsed tender.

    Raises:
        OperationCancelled: If the token fired
        Exception: If the market database could not be queried
    """
    token = ensure_token(token)

    db_result, web_result = await token.guard(
        asyncio.gather(
            _fetch_db_intelligence(parsed),
            _fetch_web_intelligence(parsed),
            return_exceptions=True,
        )
    )

    if isinstance(web_result, BaseException):
        logger.warning(f"Web intelligence failed: {web_result}", extra={"agent": "intelligence"})
        web_result = None
    if isinstance(db_result, BaseException):
        raise db_result

    db_result.web_intel = web_result
    logger.info(
        f"Market intelligence: {db_result.buyer_history.total_contracts} buyer contracts, "
        f"{len(db_result.competitors)} competitors, hhi={db_result.hhi}",
        extra={"agent": "intelligence"},
    )
    return db_result
