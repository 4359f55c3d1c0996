"""Deadline-bounded, retrying batch analysis of the open-tender backlog.

One invocation runs under a hard execution limit imposed by its host. The loop
reserves a safety margin below that limit so it can always record the state of
the item in flight, processes eligible jobs strictly one at a time (earliest
tender deadline first), paces itself between items to stay under provider rate
limits, and reports how much of the queue it got through.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import uuid4

from tender_engine.core.cancellation import CancellationToken
from tender_engine.core.cascade import ProviderCascade, get_batch_cascade
from tender_engine.core.config import Settings, get_settings
from tender_engine.core.document_fetcher import DocumentFetcher, FetchLog
from tender_engine.core.errors import DeadlineExceeded, DocumentFetchError, OperationCancelled
from tender_engine.core.logging import get_logger, get_run_logger, log_with_context
from tender_engine.core.metrics import timer
from tender_engine.db.analysis_jobs import (
    STALE_LEASE_ERROR,
    JobStore,
    SupabaseJobStore,
    is_eligible,
    is_lease_expired,
    utc_now,
)

logger = get_logger(__name__)


@dataclass
class BatchResult:
    processed: int = 0
    failed: int = 0
    remaining: int = 0
    skipped: int = 0
    reclaimed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"processed": self.processed, "failed": self.failed, "remaining": self.remaining}


@dataclass
class ItemOutcome:
    """Result of fetching and analysing one notice's document."""

    success: bool
    analysis: dict[str, Any] | None = None
    fetch_method: str | None = None
    pdf_size_bytes: int | None = None
    error: str | None = None
    fetch_log: FetchLog | None = None


ItemProcessor = Callable[[str, str, float], Awaitable[ItemOutcome]]


class DocumentAnalyzer:
    """
    Default item processor: fetch candidate documents, analyse the first usable one.

    The item deadline is soft: it is checked before each analysis attempt, never
    in the middle of one.
    """

    def __init__(
        self,
        fetcher: DocumentFetcher | None = None,
        cascade: ProviderCascade | None = None,
        clock: Callable[[], float] = time.monotonic,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.fetcher = fetcher or DocumentFetcher(max_bytes=self.settings.MAX_DOCUMENT_BYTES)
        self.cascade = cascade
        self.clock = clock

    async def __call__(self, notice_id: str, dce_url: str, item_deadline: float) -> ItemOutcome:
        from tender_engine.chains.analyze_dce import analyze_dce

        log = FetchLog(notice_id=notice_id)
        cascade = self.cascade or get_batch_cascade()
        analysis_error: str | None = None

        try:
            async with aclosing(self.fetcher.iter_candidates(dce_url, log)) as candidates:
                async for document in candidates:
                    if self.clock() > item_deadline:
                        log.add("analyze", "fail", "Item deadline exceeded before analysis", url=document.url)
                        raise DeadlineExceeded("Item deadline exceeded before analysis")
                    try:
                        analysis = await analyze_dce(
                            document.content, cascade=cascade, settings=self.settings
                        )
                    except OperationCancelled:
                        raise
                    except Exception as e:
                        analysis_error = str(e) or e.__class__.__name__
                        log.add("analyze", "fail", analysis_error, url=document.url)
                        continue

                    log.add("analyze", "success", document.fetch_method, url=document.url)
                    return ItemOutcome(
                        success=True,
                        analysis=analysis.to_payload(),
                        fetch_method=document.fetch_method,
                        pdf_size_bytes=document.size_bytes,
                        fetch_log=log,
                    )
        except (DocumentFetchError, DeadlineExceeded) as e:
            return ItemOutcome(success=False, error=str(e), fetch_log=log)

        log.add("exhausted", "fail", "All retrieval methods failed")
        if analysis_error:
            error = f"Document found but AI analysis failed: {analysis_error}"
        else:
            error = "Could not retrieve the document automatically"
        return ItemOutcome(success=False, error=error, fetch_log=log)


class BatchScheduler:
    """Runs one deadline-bounded pass over the eligible job backlog."""

    def __init__(
        self,
        store: JobStore,
        process_item: ItemProcessor | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        now: Callable[[], datetime] = utc_now,
        token: CancellationToken | None = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock
        self.sleep = sleep
        self.now = now
        self.token = token
        self.process_item = process_item or DocumentAnalyzer(clock=clock, settings=self.settings)
        self.run_id = str(uuid4())

    @property
    def budget_seconds(self) -> float:
        return self.settings.BATCH_MAX_DURATION_SECONDS - self.settings.BATCH_SAFETY_MARGIN_SECONDS

    def reclaim_stale(self) -> int:
        """Fail in-progress rows whose lease expired so they re-enter the retry cycle."""
        now = self.now()
        reclaimed = 0
        for job in self.store.list_in_progress():
            if not is_lease_expired(job, now, self.settings.BATCH_LEASE_SECONDS):
                continue
            if self.store.expire_stale(job, STALE_LEASE_ERROR, now):
                reclaimed += 1
                log_with_context(
                    logger,
                    logging.WARNING,
                    f"Reclaimed stale job {job['notice_id']}",
                    run_id=self.run_id,
                    notice_id=job["notice_id"],
                    status=job.get("status"),
                    retry_count=job.get("retry_count"),
                )
        return reclaimed

    def build_queue(self) -> tuple[list[dict[str, Any]], dict[str, dict[str, Any]]]:
        """Eligible notices in tender-deadline order, plus their existing job rows."""
        notices = self.store.list_open_notices()
        if not notices:
            return [], {}
        jobs = self.store.get_jobs([n["id"] for n in notices])
        queue = [
            n for n in notices
            if n.get("dce_url") and is_eligible(jobs.get(n["id"]), self.settings.BATCH_MAX_RETRIES)
        ]
        return queue, jobs

    async def run(self) -> BatchResult:
        """
        Process eligible jobs until the queue is empty or the time budget is spent.

        Returns:
            Counts of processed, failed and remaining (never attempted) jobs.
            Jobs whose claim was lost or whose outcome could not be stored are
            counted as skipped, outside all three.
        """
        function_deadline = self.clock() + self.budget_seconds
        result = BatchResult()

        try:
            result.reclaimed = self.reclaim_stale()
        except Exception as e:
            logger.error(f"Stale job reclaim failed: {e}", extra={"run_id": self.run_id})

        with timer("Batch - build queue", self.run_id, log_level="debug"):
            queue, jobs = self.build_queue()

        logger.info(
            f"Batch {self.run_id} starting: {len(queue)} eligible jobs",
            extra={"run_id": self.run_id, "extra_data": {"reclaimed": result.reclaimed}},
        )

        for index, notice in enumerate(queue):
            if self.clock() > function_deadline:
                logger.info("Batch deadline reached", extra={"run_id": self.run_id})
                break
            if self.token is not None and self.token.cancelled:
                logger.info("Batch cancelled", extra={"run_id": self.run_id})
                break

            succeeded = await self._process(notice, jobs.get(notice["id"]), function_deadline)
            if succeeded is True:
                result.processed += 1
            elif succeeded is False:
                result.failed += 1
            else:
                result.skipped += 1

            is_last = index == len(queue) - 1
            if not is_last and self.clock() < function_deadline:
                await self.sleep(self.settings.BATCH_PACING_SECONDS)

        result.remaining = len(queue) - result.processed - result.failed - result.skipped
        logger.info(
            f"Batch {self.run_id} finished: processed={result.processed} "
            f"failed={result.failed} remaining={result.remaining}",
            extra={"run_id": self.run_id, "extra_data": {"skipped": result.skipped}},
        )
        return result

    async def _process(
        self, notice: dict[str, Any], existing: dict[str, Any] | None, function_deadline: float
    ) -> bool | None:
        """
        Claim, analyse and settle one job.

        Returns:
            True when done, False when the failure was stored, None when the
            job was not claimed or its outcome could not be stored
        """
        notice_id = str(notice["id"])
        retry_count = int((existing or {}).get("retry_count") or 0)
        log = get_run_logger(__name__, run_id=self.run_id, notice_id=notice_id)

        try:
            claimed = self.store.claim(
                notice_id, self.run_id, self.settings.BATCH_LEASE_SECONDS, existing, self.now()
            )
        except Exception as e:
            log.error(f"Failed to claim job {notice_id}: {e}")
            return None
        if not claimed:
            return None

        item_deadline = min(self.clock() + self.settings.BATCH_ITEM_CAP_SECONDS, function_deadline)

        try:
            self.store.mark_analyzing(notice_id, self.run_id, self.now())
            outcome = await self.process_item(notice_id, notice["dce_url"], item_deadline)
        except Exception as e:
            outcome = ItemOutcome(success=False, error=str(e) or e.__class__.__name__)
            log.exception(f"Job {notice_id} raised: {e}")

        try:
            if outcome.success:
                self.store.mark_done(
                    notice_id,
                    self.run_id,
                    outcome.analysis or {},
                    outcome.fetch_method,
                    outcome.pdf_size_bytes,
                    self.now(),
                )
                log.info(f"Job {notice_id} done via {outcome.fetch_method}")
                return True

            self.store.mark_failed(
                notice_id, self.run_id, outcome.error or "Unknown error", retry_count + 1, self.now()
            )
            log.warning(
                f"Job {notice_id} failed (attempt {retry_count + 1}): {outcome.error}",
                extra={"extra_data": {"steps": outcome.fetch_log.summary()} if outcome.fetch_log else {}},
            )
            return False
        except Exception as e:
            log.error(f"Failed to record outcome of job {notice_id}: {e}")
            return None


async def run_batch(store: JobStore | None = None) -> BatchResult:
    """Run one batch pass against the Supabase job store."""
    scheduler = BatchScheduler(store or SupabaseJobStore())
    return await scheduler.run()
