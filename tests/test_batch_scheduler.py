"""Tests for the deadline-bounded, retrying batch scheduler."""

from datetime import datetime, timedelta, timezone

import pytest

from tender_engine.core.batch_scheduler import BatchScheduler, ItemOutcome
from tender_engine.core.config import get_settings
from tender_engine.db.analysis_jobs import STALE_LEASE_ERROR, is_eligible, is_lease_expired
from tests.fakes.fake_job_store import FakeJobStore

NOW = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock advanced explicitly by the test doubles."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeProcessor:
    """Item processor that takes ``duration`` seconds of fake time per item."""

    def __init__(self, clock: FakeClock, duration: float = 10.0, fail: set[str] | None = None, raises: set[str] | None = None):
        self.clock = clock
        self.duration = duration
        self.fail = fail or set()
        self.raises = raises or set()
        self.calls: list[tuple[str, float]] = []

    async def __call__(self, notice_id: str, dce_url: str, item_deadline: float) -> ItemOutcome:
        self.calls.append((notice_id, item_deadline))
        self.clock.now += self.duration
        if notice_id in self.raises:
            raise RuntimeError("extractor crashed")
        if notice_id in self.fail:
            return ItemOutcome(success=False, error="Could not retrieve the document automatically")
        return ItemOutcome(
            success=True, analysis={"ai_summary": notice_id}, fetch_method="direct_pdf", pdf_size_bytes=2048
        )


def _notices(count: int) -> list[dict]:
    return [
        {"id": f"26-{n:05d}", "dce_url": f"https://marches.example.fr/{n}.pdf", "deadline": f"2026-04-{n + 1:02d}"}
        for n in range(count)
    ]


def _scheduler(store, clock, processor, **overrides) -> BatchScheduler:
    settings = get_settings().model_copy(update=overrides)
    return BatchScheduler(
        store,
        process_item=processor,
        settings=settings,
        clock=clock,
        sleep=clock.sleep,
        now=lambda: NOW,
    )


@pytest.mark.asyncio
async def test_processes_all_jobs_with_pacing_between_items():
    clock = FakeClock()
    store = FakeJobStore(_notices(3))
    processor = FakeProcessor(clock)

    result = await _scheduler(store, clock, processor).run()

    assert result.to_dict() == {"processed": 3, "failed": 0, "remaining": 0}
    assert clock.sleeps == [5.0, 5.0]
    assert all(job["status"] == "done" for job in store.jobs.values())
    assert store.jobs["26-00000"]["fetch_method"] == "direct_pdf"
    assert store.jobs["26-00000"]["analyzed_at"] == NOW.isoformat()


@pytest.mark.asyncio
async def test_jobs_run_in_tender_deadline_order_with_status_transitions():
    clock = FakeClock()
    notices = list(reversed(_notices(2)))
    store = FakeJobStore(notices)
    processor = FakeProcessor(clock)

    await _scheduler(store, clock, processor).run()

    assert [c[0] for c in processor.calls] == ["26-00000", "26-00001"]
    assert store.calls[:3] == [("claim", "26-00000"), ("analyzing", "26-00000"), ("done", "26-00000")]


@pytest.mark.asyncio
async def test_deadline_stops_the_batch_and_next_run_resumes():
    clock = FakeClock()
    store = FakeJobStore(_notices(5))
    processor = FakeProcessor(clock, duration=100.0)

    first = await _scheduler(store, clock, processor).run()

    # Budget is 300 - 30 = 270 s: items finish at 100, 205 and 310.
    assert first.to_dict() == {"processed": 3, "failed": 0, "remaining": 2}
    assert clock.sleeps == [5.0, 5.0]

    second_clock = FakeClock()
    second = await _scheduler(store, second_clock, FakeProcessor(second_clock, duration=100.0)).run()

    assert second.to_dict() == {"processed": 2, "failed": 0, "remaining": 0}
    assert all(job["status"] == "done" for job in store.jobs.values())


@pytest.mark.asyncio
async def test_item_deadline_is_capped_by_function_deadline():
    clock = FakeClock()
    store = FakeJobStore(_notices(2))
    processor = FakeProcessor(clock, duration=200.0)

    await _scheduler(store, clock, processor).run()

    assert processor.calls[0][1] == 120.0
    assert processor.calls[1][1] == 270.0


@pytest.mark.asyncio
async def test_failures_increment_retry_count_until_ceiling():
    store = FakeJobStore(_notices(1))
    notice_id = "26-00000"

    for attempt in range(1, 4):
        clock = FakeClock()
        result = await _scheduler(store, clock, FakeProcessor(clock, fail={notice_id})).run()
        assert result.failed == 1
        assert store.jobs[notice_id]["retry_count"] == attempt
        assert store.jobs[notice_id]["status"] == "failed"

    clock = FakeClock()
    processor = FakeProcessor(clock)
    result = await _scheduler(store, clock, processor).run()

    assert result.to_dict() == {"processed": 0, "failed": 0, "remaining": 0}
    assert processor.calls == []
    assert store.jobs[notice_id]["error_message"] == "Could not retrieve the document automatically"


@pytest.mark.asyncio
async def test_processor_exception_is_recorded_and_loop_continues():
    clock = FakeClock()
    store = FakeJobStore(_notices(2))
    processor = FakeProcessor(clock, raises={"26-00000"})

    result = await _scheduler(store, clock, processor).run()

    assert result.to_dict() == {"processed": 1, "failed": 1, "remaining": 0}
    assert store.jobs["26-00000"]["error_message"] == "extractor crashed"
    assert store.jobs["26-00000"]["retry_count"] == 1


@pytest.mark.asyncio
async def test_done_and_in_progress_jobs_are_skipped():
    clock = FakeClock()
    store = FakeJobStore(_notices(3))
    store.add_job("26-00000", status="done")
    store.add_job(
        "26-00001",
        status="analyzing",
        lease_owner="other-worker",
        lease_expires_at=(NOW + timedelta(minutes=5)).isoformat(),
    )
    processor = FakeProcessor(clock)

    result = await _scheduler(store, clock, processor).run()

    assert [c[0] for c in processor.calls] == ["26-00002"]
    assert result.to_dict() == {"processed": 1, "failed": 0, "remaining": 0}
    assert store.jobs["26-00001"]["status"] == "analyzing"


@pytest.mark.asyncio
async def test_stale_lease_is_reclaimed_and_retried():
    clock = FakeClock()
    store = FakeJobStore(_notices(1))
    store.add_job(
        "26-00000",
        status="fetching",
        retry_count=1,
        lease_owner="crashed-worker",
        lease_expires_at=(NOW - timedelta(minutes=1)).isoformat(),
    )
    processor = FakeProcessor(clock, fail={"26-00000"})

    result = await _scheduler(store, clock, processor).run()

    assert result.reclaimed == 1
    assert result.failed == 1
    assert store.jobs["26-00000"]["retry_count"] == 3
    assert not is_eligible(store.jobs["26-00000"], max_retries=3)


@pytest.mark.asyncio
async def test_lost_claim_is_skipped_not_remaining():
    clock = FakeClock()
    store = FakeJobStore(_notices(2))
    store.lost_claims.add("26-00000")
    processor = FakeProcessor(clock)

    result = await _scheduler(store, clock, processor).run()

    assert [c[0] for c in processor.calls] == ["26-00001"]
    assert result.to_dict() == {"processed": 1, "failed": 0, "remaining": 0}
    assert result.skipped == 1


@pytest.mark.asyncio
async def test_claim_error_is_skipped_without_counting_a_failure():
    clock = FakeClock()
    store = FakeJobStore(_notices(2))
    store.broken_claims.add("26-00000")
    processor = FakeProcessor(clock)

    result = await _scheduler(store, clock, processor).run()

    assert [c[0] for c in processor.calls] == ["26-00001"]
    assert result.to_dict() == {"processed": 1, "failed": 0, "remaining": 0}
    assert result.skipped == 1
    assert "26-00000" not in store.jobs


@pytest.mark.asyncio
async def test_unstored_outcome_is_skipped_and_left_to_lease_expiry():
    clock = FakeClock()
    store = FakeJobStore(_notices(2))
    store.broken_writes.add("26-00000")
    processor = FakeProcessor(clock, fail={"26-00000"})

    result = await _scheduler(store, clock, processor).run()

    assert result.to_dict() == {"processed": 1, "failed": 0, "remaining": 0}
    assert result.skipped == 1
    assert store.jobs["26-00000"]["status"] == "analyzing"
    assert store.jobs["26-00000"]["lease_owner"] is not None


@pytest.mark.asyncio
async def test_notice_without_document_url_is_not_queued():
    clock = FakeClock()
    store = FakeJobStore([{"id": "26-00009", "dce_url": None, "deadline": "2026-04-01"}])

    result = await _scheduler(store, clock, FakeProcessor(clock)).run()

    assert result.to_dict() == {"processed": 0, "failed": 0, "remaining": 0}


def test_eligibility_rules():
    assert is_eligible(None, 3)
    assert is_eligible({"status": "pending"}, 3)
    assert is_eligible({"status": "failed", "retry_count": 2}, 3)
    assert not is_eligible({"status": "failed", "retry_count": 3}, 3)
    assert not is_eligible({"status": "done"}, 3)
    assert not is_eligible({"status": "fetching"}, 3)


def test_lease_expiry_falls_back_to_updated_at():
    old = {"status": "analyzing", "updated_at": (NOW - timedelta(hours=1)).isoformat()}
    fresh = {"status": "analyzing", "updated_at": (NOW - timedelta(minutes=1)).isoformat()}

    assert is_lease_expired(old, NOW, lease_seconds=600)
    assert not is_lease_expired(fresh, NOW, lease_seconds=600)
    assert not is_lease_expired({"status": "done"}, NOW, lease_seconds=600)


def test_stale_error_message_is_explanatory():
    assert "lease expired" in STALE_LEASE_ERROR
