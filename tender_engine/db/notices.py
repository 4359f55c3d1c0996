"""Tender notice reads (BOAMP notices table)."""

from typing import Any

from tender_engine.core.logging import get_logger
from tender_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)

NOTICES_TABLE = "boamp_notices"


def list_open_notices_with_documents() -> list[dict[str, Any]]:
    """
    List open notices that carry a document URL, earliest deadline first.

    Returns:
        List of dicts with id, dce_url, deadline
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table(NOTICES_TABLE)
            .select("id, dce_url, deadline")
            .eq("is_open", True)
            .not_.is_("dce_url", "null")
            .order("deadline", desc=False)
            .execute()
        )
        return response.data or []

    except Exception as e:
        logger.error(f"Failed to list open notices: {e}")
        raise


def get_notice(notice_id: str) -> dict[str, Any] | None:
    """Get one notice by id."""
    supabase = get_supabase()

    response = (
        supabase.table(NOTICES_TABLE)
        .select("id, dce_url, deadline, is_open")
        .eq("id", notice_id)
        .limit(1)
        .execute()
    )
    return response.data[0] if response.data else None
