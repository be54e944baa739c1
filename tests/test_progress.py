"""Tests for the job progress tracker and its event stream."""

import asyncio

import pytest

from portrait_backend.model import GenerationResult
from portrait_backend.progress import JobTracker


def _result():
    return GenerationResult(image_url="https://img.example/out.png")


async def _collect(tracker, job_id):
    return [event async for event in tracker.subscribe(job_id)]


class TestJobState:

    def test_create_starts_at_zero(self, clock):
        tracker = JobTracker(clock=clock)
        job = tracker.create("gen_1")
        assert job.status == "starting"
        assert job.progress == 0.0
        assert job.created_at == clock.now

    def test_duplicate_id_rejected(self):
        tracker = JobTracker()
        tracker.create("gen_1")
        with pytest.raises(ValueError):
            tracker.create("gen_1")

    def test_update_moves_to_generating(self):
        tracker = JobTracker()
        tracker.create("gen_1")
        assert tracker.update("gen_1", 0.3, "Generating portrait...")
        job = tracker.get("gen_1")
        assert job.status == "generating"
        assert job.progress == 0.3

    def test_progress_never_decreases(self):
        tracker = JobTracker()
        tracker.create("gen_1")
        tracker.update("gen_1", 0.6, "a")
        tracker.update("gen_1", 0.2, "b")
        job = tracker.get("gen_1")
        assert job.progress == 0.6
        assert job.message == "b"

    def test_progress_capped_at_one(self):
        tracker = JobTracker()
        tracker.create("gen_1")
        tracker.update("gen_1", 3.0, "a")
        assert tracker.get("gen_1").progress == 1.0

    def test_no_transition_out_of_terminal(self):
        tracker = JobTracker()
        tracker.create("gen_1")
        assert tracker.complete("gen_1", _result())
        assert not tracker.update("gen_1", 0.5, "late")
        assert not tracker.fail("gen_1", "boom")
        assert not tracker.complete("gen_1", _result())
        job = tracker.get("gen_1")
        assert job.status == "completed"
        assert job.error is None

    def test_fail_records_error_class(self):
        tracker = JobTracker()
        tracker.create("gen_1")
        tracker.fail("gen_1", "bad key", error_type="authentication", retryable=False)
        event = tracker.get("gen_1").to_event()
        assert event["type"] == "error"
        assert event["status"] == "failed"
        assert event["errorType"] == "authentication"
        assert event["retryable"] is False

    def test_update_rejects_terminal_status(self):
        tracker = JobTracker()
        tracker.create("gen_1")
        with pytest.raises(ValueError):
            tracker.update("gen_1", 1.0, "done", status="completed")

    def test_unknown_job_updates_are_ignored(self):
        tracker = JobTracker()
        assert not tracker.update("missing", 0.5, "x")
        assert tracker.get("missing") is None

    def test_purge_after_grace_period(self, clock):
        tracker = JobTracker(grace_period=60, clock=clock)
        tracker.create("gen_1")
        tracker.create("gen_2")
        tracker.complete("gen_1", _result())
        clock.advance(59)
        assert tracker.purge_finished() == 0
        clock.advance(1)
        assert tracker.purge_finished() == 1
        assert "gen_1" not in tracker
        assert "gen_2" in tracker


class TestSubscribe:

    async def test_events_are_ordered_and_end_at_terminal(self):
        tracker = JobTracker()
        tracker.create("gen_1")
        task = asyncio.create_task(_collect(tracker, "gen_1"))
        await asyncio.sleep(0)

        for value in (0.1, 0.4, 0.3, 0.9):
            tracker.update("gen_1", value, f"step {value}")
        tracker.complete("gen_1", _result())
        tracker.update("gen_1", 1.0, "after terminal")

        events = await asyncio.wait_for(task, timeout=1)
        progress = [e["progress"] for e in events]
        assert progress == sorted(progress)
        assert events[0]["status"] == "starting"
        assert events[-1]["status"] == "completed"
        assert events[-1]["type"] == "result"
        assert events[-1]["imageUrl"] == "https://img.example/out.png"
        assert all(e["message"] != "after terminal" for e in events)

    async def test_repeated_state_is_not_reemitted(self):
        tracker = JobTracker()
        tracker.create("gen_1")
        task = asyncio.create_task(_collect(tracker, "gen_1"))
        await asyncio.sleep(0)

        tracker.update("gen_1", 0.5, "same")
        tracker.update("gen_1", 0.5, "same")
        tracker.fail("gen_1", "boom")

        events = await asyncio.wait_for(task, timeout=1)
        assert [e["status"] for e in events] == ["starting", "generating", "failed"]

    async def test_job_removed_after_terminal_delivery(self):
        tracker = JobTracker()
        tracker.create("gen_1")
        tracker.complete("gen_1", _result())
        events = await _collect(tracker, "gen_1")
        assert len(events) == 1
        assert events[0]["status"] == "completed"
        assert tracker.get("gen_1") is None

    async def test_disconnect_keeps_job_running(self):
        tracker = JobTracker()
        tracker.create("gen_1")
        stream = tracker.subscribe("gen_1")
        first = await stream.__anext__()
        assert first["status"] == "starting"
        await stream.aclose()

        assert tracker.update("gen_1", 0.5, "still going")
        assert tracker.complete("gen_1", _result())
        # kept for the grace period so a reconnect can still read it
        events = await _collect(tracker, "gen_1")
        assert events[-1]["status"] == "completed"

    async def test_multiple_subscribers_fan_out(self):
        tracker = JobTracker()
        tracker.create("gen_1")
        tasks = [asyncio.create_task(_collect(tracker, "gen_1")) for _ in range(2)]
        await asyncio.sleep(0)
        tracker.update("gen_1", 0.5, "half")
        tracker.complete("gen_1", _result())
        results = await asyncio.wait_for(asyncio.gather(*tasks), timeout=1)
        for events in results:
            assert [e["status"] for e in events] == ["starting", "generating", "completed"]

    async def test_unknown_job(self):
        tracker = JobTracker()
        with pytest.raises(KeyError):
            await _collect(tracker, "missing")
