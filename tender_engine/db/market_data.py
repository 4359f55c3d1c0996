"""Market intelligence queries over contract award notices (``decp_attributions``)."""

from collections import Counter
from typing import Any

from tender_engine.core.logging import get_logger
from tender_engine.core.schemas_analysis import (
    BuyerHistory,
    Competitor,
    ContractSummary,
    SectorStats,
    WinnerCount,
    is_siret_like,
)
from tender_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)

ATTRIBUTIONS_TABLE = "decp_attributions"
BUYER_HISTORY_LIMIT = 500
SECTOR_SAMPLE_LIMIT = 5000


def _amount(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def summarize_buyer_history(rows: list[dict[str, Any]]) -> BuyerHistory:
    """Aggregate a buyer's award rows (newest first)."""
    if not rows:
        return BuyerHistory()

    total_volume = sum(_amount(r.get("amount")) for r in rows)
    winners = Counter(
        r["winner_name"]
        for r in rows
        if r.get("winner_name") and not is_siret_like(r["winner_name"])
    )

    return BuyerHistory(
        total_contracts=len(rows),
        avg_amount=round(total_volume / len(rows)),
        top_winners=[WinnerCount(name=name, count=count) for name, count in winners.most_common(5)],
        recent_contracts=[
            ContractSummary(
                title=r.get("title") or "",
                winner=r.get("winner_name") or "",
                amount=_amount(r.get("amount")),
            )
            for r in rows[:5]
        ],
    )


def summarize_competitors(rows: list[dict[str, Any]], top_n: int = 10) -> list[Competitor]:
    """Top sector winners with their share of all (named) wins, in percent."""
    wins = Counter(
        r["winner_name"]
        for r in rows
        if r.get("winner_name") and not is_siret_like(r["winner_name"])
    )
    total = sum(wins.values())
    if not total:
        return []
    return [
        Competitor(name=name, wins=count, market_share=round(count / total * 100, 2))
        for name, count in wins.most_common(top_n)
    ]


def summarize_sector(rows: list[dict[str, Any]]) -> SectorStats:
    amounts = [a for a in (_amount(r.get("amount")) for r in rows) if a > 0]
    offers = [o for o in (_amount(r.get("offers_received")) for r in rows) if o > 0]
    return SectorStats(
        total_contracts=len(rows),
        avg_amount=round(sum(amounts) / len(amounts)) if amounts else 0,
        avg_offers=round(sum(offers) / len(offers), 1) if offers else 0,
    )


def compute_hhi(competitors: list[Competitor]) -> int:
    """
    Herfindahl-Hirschman Index: sum of squared market shares (percent).

    Below 1500 the market is unconcentrated, above 2500 highly concentrated.
    """
    return round(sum(c.market_share * c.market_share for c in competitors))


def fetch_buyer_history(buyer_name: str) -> BuyerHistory:
    if not buyer_name:
        return BuyerHistory()

    supabase = get_supabase()
    response = (
        supabase.table(ATTRIBUTIONS_TABLE)
        .select("title, winner_name, amount, notification_date")
        .eq("buyer_name", buyer_name)
        .order("notification_date", desc=True)
        .limit(BUYER_HISTORY_LIMIT)
        .execute()
    )
    return summarize_buyer_history(response.data or [])


def fetch_sector_rows(cpv_sector: str) -> list[dict[str, Any]]:
    """Award rows for a 2-digit CPV sector (winner, amount, offers)."""
    if not cpv_sector:
        return []

    supabase = get_supabase()
    response = (
        supabase.table(ATTRIBUTIONS_TABLE)
        .select("winner_name, amount, offers_received")
        .eq("cpv_sector", cpv_sector)
        .limit(SECTOR_SAMPLE_LIMIT)
        .execute()
    )
    return response.data or []
