"""Tests for the in-memory job tracker."""

import asyncio
import re

import pytest

from shelf_agent.pipeline.jobs import (
    JobAccessDeniedError,
    JobNotFoundError,
    JobStatus,
    JobTracker,
    generate_job_id,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tracker(clock) -> JobTracker:
    return JobTracker(ttl_seconds=300, clock=clock)


class TestJobIds:
    """Tests for job id generation."""

    def test_format(self) -> None:
        job_id = generate_job_id("u1", "s1")
        assert re.fullmatch(r"vision-u1-s1-[0-9a-z]+-[0-9a-f]{8}", job_id)

    def test_unique(self) -> None:
        assert len({generate_job_id("u1", "s1") for _ in range(50)}) == 50


class TestJobLifecycle:
    """Tests for job creation, progress and completion."""

    def test_create_returns_pending_snapshot(self, tracker) -> None:
        job = tracker.create("u1", "s1")

        assert job.status == JobStatus.PENDING
        assert job.progress == 0
        assert job.message == "Starting vision processing..."
        assert len(tracker) == 1

    def test_snapshots_are_copies(self, tracker) -> None:
        job = tracker.create("u1", "s1")
        job.progress = 99
        assert tracker.get(job.job_id).progress == 0

    def test_update_moves_to_processing(self, tracker) -> None:
        job = tracker.create("u1", "s1")

        assert tracker.update(job.job_id, step="extracting", progress=150, message="Reading")

        current = tracker.get(job.job_id)
        assert current.status == JobStatus.PROCESSING
        assert current.step == "extracting"
        assert current.progress == 100
        assert current.message == "Reading"

    def test_complete_sets_result_and_progress(self, tracker) -> None:
        job = tracker.create("u1", "s1")
        tracker.update(job.job_id, progress=40)

        assert tracker.complete(job.job_id, {"addedCount": 2})

        done = tracker.get(job.job_id)
        assert done.status == JobStatus.COMPLETED
        assert done.progress == 100
        assert done.result == {"addedCount": 2}
        assert done.to_dict()["jobId"] == job.job_id

    def test_terminal_jobs_ignore_updates(self, tracker) -> None:
        """Test that a finished job cannot be revived or re-finished."""
        job = tracker.create("u1", "s1")
        tracker.fail(job.job_id, "Extraction failed: boom")

        assert tracker.update(job.job_id, step="matching", progress=50) is False
        assert tracker.complete(job.job_id, {}) is False
        failed = tracker.get(job.job_id)
        assert failed.status == JobStatus.FAILED
        assert failed.message == "Extraction failed: boom"

    def test_unknown_job_updates_are_ignored(self, tracker) -> None:
        assert tracker.update("missing", progress=10) is False
        assert tracker.is_abort_requested("missing") is False


class TestAccess:
    """Tests for job ownership checks."""

    def test_unknown_job(self, tracker) -> None:
        with pytest.raises(JobNotFoundError):
            tracker.get("vision-nope")
        with pytest.raises(JobNotFoundError):
            tracker.abort("vision-nope", "u1")

    def test_other_user_is_denied(self, tracker) -> None:
        job = tracker.create("u1", "s1")
        with pytest.raises(JobAccessDeniedError):
            tracker.get(job.job_id, "u2")
        with pytest.raises(JobAccessDeniedError):
            tracker.abort(job.job_id, "u2")
        assert tracker.get(job.job_id, "u1").user_id == "u1"


class TestAbort:
    """Tests for cooperative cancellation."""

    def test_abort_sets_flag_and_token(self, tracker) -> None:
        job = tracker.create("u1", "s1")
        token = tracker.token(job.job_id)

        assert token.requested is False
        assert tracker.abort(job.job_id, "u1") is True
        assert token.requested is True
        assert tracker.get(job.job_id).message == "Cancelling..."

    def test_progress_messages_do_not_hide_cancellation(self, tracker) -> None:
        job = tracker.create("u1", "s1")
        tracker.abort(job.job_id)
        tracker.update(job.job_id, message="Matching items")
        assert tracker.get(job.job_id).message == "Cancelling..."

    def test_abort_after_completion_returns_false(self, tracker) -> None:
        job = tracker.create("u1", "s1")
        tracker.complete(job.job_id, {})

        assert tracker.abort(job.job_id, "u1") is False
        assert tracker.get(job.job_id).abort_requested is False

    def test_mark_aborted(self, tracker) -> None:
        job = tracker.create("u1", "s1")
        tracker.abort(job.job_id)
        tracker.mark_aborted(job.job_id, {"partial": True})

        aborted = tracker.get(job.job_id)
        assert aborted.status == JobStatus.ABORTED
        assert aborted.message == "Processing cancelled by user"
        assert aborted.result == {"partial": True}


class TestExpiry:
    """Tests for TTL eviction."""

    def test_lazy_expiry_on_read(self, tracker, clock) -> None:
        job = tracker.create("u1", "s1")
        clock.now = 299.0
        assert tracker.get(job.job_id)

        clock.now = 300.0
        with pytest.raises(JobNotFoundError):
            tracker.get(job.job_id)
        assert len(tracker) == 0

    def test_expiry_applies_to_running_jobs(self, tracker, clock) -> None:
        job = tracker.create("u1", "s1")
        tracker.update(job.job_id, progress=10)
        clock.now = 301.0
        with pytest.raises(JobNotFoundError):
            tracker.abort(job.job_id)

    def test_expired_job_rejects_run_updates(self, tracker, clock) -> None:
        job = tracker.create("u1", "s1")
        clock.now = 300.0

        assert tracker.update(job.job_id, step="matching", progress=50) is False
        assert tracker.complete(job.job_id, {"addedCount": 1}) is False
        assert len(tracker) == 0

    def test_sweep_removes_only_expired(self, tracker, clock) -> None:
        old = tracker.create("u1", "s1")
        clock.now = 200.0
        fresh = tracker.create("u1", "s1")
        clock.now = 350.0

        assert tracker.sweep() == 1
        assert tracker.get(fresh.job_id)
        with pytest.raises(JobNotFoundError):
            tracker.get(old.job_id)

    @pytest.mark.asyncio
    async def test_sweeper_task_runs_and_stops(self, clock) -> None:
        tracker = JobTracker(ttl_seconds=1, sweep_interval_seconds=0.01, clock=clock)
        tracker.create("u1", "s1")
        clock.now = 5.0

        task = tracker.start_sweeper()
        assert tracker.start_sweeper() is task
        for _ in range(50):
            if len(tracker) == 0:
                break
            await asyncio.sleep(0.01)

        assert len(tracker) == 0
        await tracker.stop_sweeper()
        assert task.cancelled()
        await tracker.stop_sweeper()
