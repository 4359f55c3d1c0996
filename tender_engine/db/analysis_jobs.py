"""Analysis job store (``dce_analyses`` table).

One row per tender notice, keyed by ``notice_id``. Status moves
``pending -> fetching -> analyzing -> done | failed``; ``done`` is terminal and
``failed`` is retried until ``retry_count`` reaches the retry ceiling.

A worker that claims a row writes a lease (``lease_owner`` and
``lease_expires_at``). Final transitions are conditional on the lease owner, so
a worker whose lease was reclaimed can no longer overwrite the row.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Protocol

from tender_engine.core.logging import get_logger
from tender_engine.db.notices import list_open_notices_with_documents
from tender_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)

JOBS_TABLE = "dce_analyses"
STALE_LEASE_ERROR = "Processing interrupted before completion (lease expired)"


class JobStatus(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    ANALYZING = "analyzing"
    DONE = "done"
    FAILED = "failed"


IN_PROGRESS_STATUSES = (JobStatus.FETCHING.value, JobStatus.ANALYZING.value)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO timestamp column into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def is_eligible(job: dict[str, Any] | None, max_retries: int) -> bool:
    """
    Whether a notice needs (re)analysis.

    Eligible: no job row, a ``pending`` row, or a ``failed`` row with retries
    left. ``done`` is terminal and in-progress rows belong to their lease holder.
    """
    if job is None:
        return True
    status = job.get("status")
    if status == JobStatus.PENDING.value:
        return True
    if status == JobStatus.FAILED.value:
        return int(job.get("retry_count") or 0) < max_retries
    return False


def is_lease_expired(job: dict[str, Any], now: datetime, lease_seconds: int) -> bool:
    """An in-progress row is stale once its lease expired.

    Rows written before leases existed fall back to ``updated_at``.
    """
    if job.get("status") not in IN_PROGRESS_STATUSES:
        return False
    expires_at = parse_timestamp(job.get("lease_expires_at"))
    if expires_at is not None:
        return expires_at < now
    updated_at = parse_timestamp(job.get("updated_at"))
    if updated_at is None:
        return True
    return updated_at + timedelta(seconds=lease_seconds) < now


class JobStore(Protocol):
    """Operations the batch scheduler needs from the job store."""

    def list_open_notices(self) -> list[dict[str, Any]]: ...

    def get_jobs(self, notice_ids: list[str]) -> dict[str, dict[str, Any]]: ...

    def list_in_progress(self) -> list[dict[str, Any]]: ...

    def claim(
        self,
        notice_id: str,
        owner: str,
        lease_seconds: int,
        existing: dict[str, Any] | None,
        now: datetime,
    ) -> bool: ...

    def mark_analyzing(self, notice_id: str, owner: str, now: datetime) -> None: ...

    def mark_done(
        self,
        notice_id: str,
        owner: str,
        analysis: dict[str, Any],
        fetch_method: str | None,
        pdf_size_bytes: int | None,
        now: datetime,
    ) -> None: ...

    def mark_failed(
        self, notice_id: str, owner: str, error: str, retry_count: int, now: datetime
    ) -> None: ...

    def expire_stale(self, job: dict[str, Any], error: str, now: datetime) -> bool: ...


class SupabaseJobStore:
    """Job store over Supabase/PostgREST."""

    def __init__(self, client: Any = None):
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def list_open_notices(self) -> list[dict[str, Any]]:
        return list_open_notices_with_documents()

    def get_jobs(self, notice_ids: list[str]) -> dict[str, dict[str, Any]]:
        """Fetch existing job rows for the given notices, keyed by notice id."""
        if not notice_ids:
            return {}
        response = (
            self.client.table(JOBS_TABLE)
            .select("notice_id, status, retry_count, lease_owner, lease_expires_at, updated_at")
            .in_("notice_id", notice_ids)
            .execute()
        )
        return {row["notice_id"]: row for row in response.data or []}

    def list_in_progress(self) -> list[dict[str, Any]]:
        response = (
            self.client.table(JOBS_TABLE)
            .select("notice_id, status, retry_count, lease_owner, lease_expires_at, updated_at")
            .in_("status", list(IN_PROGRESS_STATUSES))
            .execute()
        )
        return response.data or []

    def claim(
        self,
        notice_id: str,
        owner: str,
        lease_seconds: int,
        existing: dict[str, Any] | None,
        now: datetime,
    ) -> bool:
        """
        Atomically move a job to ``fetching`` under a lease.

        A missing row is inserted (losing an insert race returns no data); an
        existing row is updated only if it still has the status it was read with.

        Returns:
            True if claimed, False if another worker got there first
        """
        lease = {
            "status": JobStatus.FETCHING.value,
            "lease_owner": owner,
            "lease_expires_at": (now + timedelta(seconds=lease_seconds)).isoformat(),
            "updated_at": now.isoformat(),
        }

        if existing is None:
            response = (
                self.client.table(JOBS_TABLE)
                .upsert(
                    {
                        "notice_id": notice_id,
                        "retry_count": 0,
                        "created_at": now.isoformat(),
                        **lease,
                    },
                    on_conflict="notice_id",
                    ignore_duplicates=True,
                )
                .execute()
            )
        else:
            response = (
                self.client.table(JOBS_TABLE)
                .update(lease)
                .eq("notice_id", notice_id)
                .eq("status", existing["status"])
                .execute()
            )

        if response.data:
            return True
        logger.info(f"Job {notice_id} already claimed", extra={"notice_id": notice_id})
        return False

    def mark_analyzing(self, notice_id: str, owner: str, now: datetime) -> None:
        (
            self.client.table(JOBS_TABLE)
            .update({"status": JobStatus.ANALYZING.value, "updated_at": now.isoformat()})
            .eq("notice_id", notice_id)
            .eq("lease_owner", owner)
            .execute()
        )

    def mark_done(
        self,
        notice_id: str,
        owner: str,
        analysis: dict[str, Any],
        fetch_method: str | None,
        pdf_size_bytes: int | None,
        now: datetime,
    ) -> None:
        (
            self.client.table(JOBS_TABLE)
            .update(
                {
                    "status": JobStatus.DONE.value,
                    "analysis": analysis,
                    "fetch_method": fetch_method,
                    "pdf_size_bytes": pdf_size_bytes,
                    "error_message": None,
                    "analyzed_at": now.isoformat(),
                    "updated_at": now.isoformat(),
                    "lease_owner": None,
                    "lease_expires_at": None,
                }
            )
            .eq("notice_id", notice_id)
            .eq("lease_owner", owner)
            .execute()
        )

    def mark_failed(
        self, notice_id: str, owner: str, error: str, retry_count: int, now: datetime
    ) -> None:
        (
            self.client.table(JOBS_TABLE)
            .update(
                {
                    "status": JobStatus.FAILED.value,
                    "error_message": error[:2000],
                    "retry_count": retry_count,
                    "updated_at": now.isoformat(),
                    "lease_owner": None,
                    "lease_expires_at": None,
                }
            )
            .eq("notice_id", notice_id)
            .eq("lease_owner", owner)
            .execute()
        )

    def expire_stale(self, job: dict[str, Any], error: str, now: datetime) -> bool:
        """Fail a stale in-progress row, guarded on the ``updated_at`` it was read with."""
        query = (
            self.client.table(JOBS_TABLE)
            .update(
                {
                    "status": JobStatus.FAILED.value,
                    "error_message": error,
                    "retry_count": int(job.get("retry_count") or 0) + 1,
                    "updated_at": now.isoformat(),
                    "lease_owner": None,
                    "lease_expires_at": None,
                }
            )
            .eq("notice_id", job["notice_id"])
            .eq("status", job["status"])
        )
        if job.get("updated_at"):
            query = query.eq("updated_at", job["updated_at"])
        response = query.execute()
        return bool(response.data)


# =============================================================================
# Job inspection
# =============================================================================


def get_job(notice_id: str) -> dict[str, Any] | None:
    """Get the full job row for a notice."""
    supabase = get_supabase()

    response = (
        supabase.table(JOBS_TABLE).select("*").eq("notice_id", notice_id).limit(1).execute()
    )
    return response.data[0] if response.data else None


def list_jobs(status: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
    """
    List job rows, most recently updated first.

    Args:
        status: Optional status filter
        limit: Max rows to return
    """
    supabase = get_supabase()

    query = supabase.table(JOBS_TABLE).select(
        "notice_id, status, retry_count, error_message, fetch_method, "
        "pdf_size_bytes, created_at, updated_at, analyzed_at"
    )
    if status:
        query = query.eq("status", status)
    response = query.order("updated_at", desc=True).limit(limit).execute()
    return response.data or []


def save_analysis(
    notice_id: str,
    analysis: dict[str, Any],
    fetch_method: str,
    pdf_size_bytes: int | None = None,
) -> dict[str, Any] | None:
    """
    Store an analysis produced outside the batch loop (interactive upload).

    The row is upserted as ``done`` with its retry state reset.
    """
    supabase = get_supabase()
    now = utc_now().isoformat()

    response = (
        supabase.table(JOBS_TABLE)
        .upsert(
            {
                "notice_id": notice_id,
                "status": JobStatus.DONE.value,
                "analysis": analysis,
                "fetch_method": fetch_method,
                "pdf_size_bytes": pdf_size_bytes,
                "error_message": None,
                "retry_count": 0,
                "analyzed_at": now,
                "updated_at": now,
                "lease_owner": None,
                "lease_expires_at": None,
            },
            on_conflict="notice_id",
        )
        .execute()
    )
    return response.data[0] if response.data else None
