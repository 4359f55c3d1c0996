"""User settings reads (subscription plan)."""

from tender_engine.core.logging import get_logger
from tender_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)

USER_SETTINGS_TABLE = "user_settings"


def get_user_plan(user_email: str) -> str | None:
    """
    Get the stored plan for a user.

    Returns:
        Plan name, or None when the user has no settings row
    """
    supabase = get_supabase()

    response = (
        supabase.table(USER_SETTINGS_TABLE)
        .select("plan")
        .eq("user_email", user_email)
        .limit(1)
        .execute()
    )
    if not response.data:
        return None
    return response.data[0].get("plan")
