"""
Trạng thái tạm thời của các job đang chạy + fan-out sự kiện cho SSE.

Vòng đời một job: starting -> generating (lặp lại) -> completed | failed.
Progress không bao giờ giảm, sau trạng thái terminal không nhận update nữa.
"""

import asyncio
import logging
import threading
import time
from typing import AsyncIterator, Callable, Dict, List, Optional

from .model import GenerationResult, Job

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD = 60.0


class JobTracker:
    def __init__(
        self,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        clock: Callable[[], float] = time.time,
    ):
        self.grace_period = grace_period
        self._clock = clock
        self._jobs: Dict[str, Job] = {}
        self._subscribers: Dict[str, List[asyncio.Queue]] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # mutation
    # ------------------------------------------------------------------

    def create(self, job_id: str, message: str = "Initializing generation...") -> Job:
        self.purge_finished()
        with self._lock:
            if job_id in self._jobs:
                raise ValueError(f"Job {job_id} already exists")
            job = Job(id=job_id, message=message, created_at=self._clock())
            self._jobs[job_id] = job
            self._subscribers[job_id] = []
        return job.model_copy()

    def update(self, job_id: str, progress: float, message: str, status: str = "generating") -> bool:
        if status not in ("starting", "generating"):
            raise ValueError(f"update() only accepts non-terminal status, got {status!r}")
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                return False
            # starting -> generating, không quay lại starting
            new_status = "generating" if job.status == "generating" else status
            new_progress = min(1.0, max(job.progress, float(progress)))
            if (new_status, new_progress, message) == (job.status, job.progress, job.message):
                return False
            job.status = new_status
            job.progress = new_progress
            job.message = message
            self._publish(job)
        return True

    def complete(self, job_id: str, result: GenerationResult, message: str = "Generation complete") -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                return False
            job.status = "completed"
            job.progress = 1.0
            job.message = message
            job.result = result
            job.finished_at = self._clock()
            self._publish(job)
        return True

    def fail(
        self,
        job_id: str,
        error: str,
        error_type: str = "internal",
        retryable: bool = False,
    ) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                return False
            job.status = "failed"
            job.message = "Generation failed"
            job.error = error
            job.error_type = error_type
            job.retryable = retryable
            job.finished_at = self._clock()
            self._publish(job)
        return True

    def remove(self, job_id: str) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)
            self._subscribers.pop(job_id, None)

    def purge_finished(self) -> int:
        """Xóa các job terminal đã quá grace period mà chưa ai nhận kết quả."""
        now = self._clock()
        with self._lock:
            stale = [
                job_id
                for job_id, job in self._jobs.items()
                if job.finished_at is not None and now - job.finished_at >= self.grace_period
            ]
            for job_id in stale:
                self._jobs.pop(job_id, None)
                self._subscribers.pop(job_id, None)
        if stale:
            logger.debug("purged %d finished jobs", len(stale))
        return len(stale)

    # ------------------------------------------------------------------
    # read
    # ------------------------------------------------------------------

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy() if job is not None else None

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    async def subscribe(self, job_id: str) -> AsyncIterator[dict]:
        """
        Trả về snapshot hiện tại, sau đó mọi thay đổi theo thứ tự, dừng sau event terminal.
        Client ngắt kết nối chỉ hủy queue của client đó, job vẫn chạy tiếp.
        """
        queue: asyncio.Queue = asyncio.Queue()
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise KeyError(job_id)
            queue.put_nowait(job.to_event())
            self._subscribers[job_id].append(queue)

        delivered_terminal = False
        try:
            while True:
                event = await queue.get()
                yield event
                if event["status"] in ("completed", "failed"):
                    delivered_terminal = True
                    return
        finally:
            with self._lock:
                queues = self._subscribers.get(job_id)
                if queues is not None and queue in queues:
                    queues.remove(queue)
            if delivered_terminal:
                self.remove(job_id)
            else:
                logger.info("subscriber for job %s disconnected before completion", job_id)

    def _publish(self, job: Job) -> None:
        event = job.to_event()
        for queue in self._subscribers.get(job.id, []):
            queue.put_nowait(event)
