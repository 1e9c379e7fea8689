"""Single-flight FIFO queue for reply jobs."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable

import structlog

from ..models.job import DirectJob, DispatchJob
from ..utils.logging import bind_context

log = structlog.get_logger()

JobProcessor = Callable[[DispatchJob], Awaitable[None]]
FailureNotifier = Callable[[DirectJob], Awaitable[None]]


class DispatchQueue:
    """Serializes all outbound replies across every channel.

    One worker task drains the queue in arrival order and processes each job
    fully before popping the next. Enqueuing while the worker is draining
    never starts a second worker. Between jobs the worker pauses for a fixed
    delay so bursts of replies do not read as inhuman.

    Example:
        queue = DispatchQueue(agent.process_job, agent.apologize, inter_job_delay=1.0)
        queue.enqueue(DirectJob(message))
    """

    def __init__(
        self,
        process: JobProcessor,
        on_direct_failure: FailureNotifier | None = None,
        inter_job_delay: float = 1.0,
    ) -> None:
        """Initialize the queue.

        Args:
            process: Coroutine that generates, sends and records one reply
            on_direct_failure: Called when a direct job fails, to apologize
            inter_job_delay: Pause in seconds between consecutive jobs
        """
        self._process = process
        self._on_direct_failure = on_direct_failure
        self._delay = inter_job_delay
        self._jobs: deque[DispatchJob] = deque()
        self._worker: asyncio.Task[None] | None = None
        self._in_flight: DispatchJob | None = None
        self._closed = False
        self._processed = 0
        self._failed = 0

    def __len__(self) -> int:
        return len(self._jobs)

    @property
    def is_draining(self) -> bool:
        """Whether the worker task is currently alive."""
        return self._worker is not None and not self._worker.done()

    @property
    def in_flight(self) -> DispatchJob | None:
        return self._in_flight

    @property
    def stats(self) -> dict[str, int]:
        return {
            "queued": len(self._jobs),
            "processed": self._processed,
            "failed": self._failed,
        }

    def enqueue(self, job: DispatchJob) -> None:
        """Append a job and start the worker if it is idle."""
        if self._closed:
            log.warning("dispatch_job_dropped_closed", channel_id=job.channel_id)
            return

        self._jobs.append(job)
        log.debug(
            "dispatch_job_enqueued",
            channel_id=job.channel_id,
            job_type=job.response_type.value,
            queued=len(self._jobs),
        )

        if not self.is_draining:
            self._worker = asyncio.create_task(self._drain(), name="dispatch-worker")

    async def join(self) -> None:
        """Wait until the queue is empty and the worker is idle."""
        worker = self._worker
        while worker is not None and not worker.done():
            await asyncio.wait({worker})
            worker = self._worker

    async def close(self, timeout: float | None = 30.0) -> None:
        """Stop draining. Queued jobs are dropped; the job in flight may finish.

        Args:
            timeout: Seconds to wait for the in-flight job before cancelling it
        """
        self._closed = True
        dropped = len(self._jobs)
        self._jobs.clear()

        worker = self._worker
        if worker is not None and not worker.done():
            _, pending = await asyncio.wait({worker}, timeout=timeout)
            if pending:
                worker.cancel()
                await asyncio.gather(worker, return_exceptions=True)

        log.info("dispatch_queue_closed", dropped=dropped, processed=self._processed)

    async def _drain(self) -> None:
        while self._jobs and not self._closed:
            job = self._jobs.popleft()
            await self._run(job)
            if self._jobs and not self._closed and self._delay > 0:
                await asyncio.sleep(self._delay)

    async def _run(self, job: DispatchJob) -> None:
        self._in_flight = job
        bind_context(channel_id=job.channel_id, job_type=job.response_type.value)
        try:
            await self._process(job)
            self._processed += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._failed += 1
            log.exception(
                "dispatch_job_failed",
                channel_id=job.channel_id,
                job_type=job.response_type.value,
                error=str(e),
            )
            if isinstance(job, DirectJob):
                await self._notify_failure(job)
        finally:
            self._in_flight = None

    async def _notify_failure(self, job: DirectJob) -> None:
        if self._on_direct_failure is None:
            return
        try:
            await self._on_direct_failure(job)
        except Exception as e:
            log.error("apology_send_failed", channel_id=job.channel_id, error=str(e))
