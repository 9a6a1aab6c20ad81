# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Job scheduler for SiteCast.

JobScheduler accepts recording requests, runs at most ``max_concurrent`` of
them at a time and keeps every job's lifecycle in memory:

    queued -> capturing -> completed
                        -> failed

Admission is strict FIFO. All state lives on one event loop and every
check-then-act on it runs without an intervening await, so no lock is
needed to keep the concurrency bound.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Mapping, Optional, Union

from sitecast.core.models import RecordingRequest, RecordingResult
from sitecast.exceptions import InvalidRequestError, JobStateError
from sitecast.utils.logger import logger

Runner = Callable[[RecordingRequest], Awaitable[RecordingResult]]


class JobStatus(str, Enum):
    """Lifecycle states of a recording job."""

    QUEUED = "queued"
    CAPTURING = "capturing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


_ALLOWED_TRANSITIONS = {
    JobStatus.QUEUED: {JobStatus.CAPTURING, JobStatus.FAILED},
    JobStatus.CAPTURING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


def _isoformat(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


@dataclass
class Job:
    """A recording job and its outcome."""

    id: int
    request: RecordingRequest
    status: JobStatus = JobStatus.QUEUED
    created_at: float = field(default_factory=time.time)
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    error: Optional[str] = None
    result: Optional[RecordingResult] = None

    @property
    def output_path(self) -> Optional[str]:
        return str(self.result.output_path) if self.result else None

    @property
    def output_size(self) -> Optional[int]:
        return self.result.size_bytes if self.result else None

    @property
    def file_name(self) -> Optional[str]:
        return self.result.file_name if self.result else None

    def _transition(self, status: JobStatus) -> None:
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise JobStateError(
                f"Job {self.id}: illegal transition {self.status.value} -> {status.value}"
            )
        self.status = status

    def start(self) -> None:
        self._transition(JobStatus.CAPTURING)
        self.start_time = time.time()

    def complete(self, result: RecordingResult) -> None:
        self._transition(JobStatus.COMPLETED)
        self.result = result
        self.end_time = time.time()

    def fail(self, error: str) -> None:
        self._transition(JobStatus.FAILED)
        self.error = error
        self.end_time = time.time()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the dictionary served by the HTTP API."""
        request = self.request
        data: Dict[str, Any] = {
            "id": self.id,
            "url": request.url,
            "duration": request.duration,
            "width": request.width,
            "height": request.height,
            "cropX": request.crop_x,
            "cropY": request.crop_y,
            "viewportWidth": request.viewport_width,
            "viewportHeight": request.viewport_height,
            "status": self.status.value,
            "progress": 100 if self.status == JobStatus.COMPLETED else 0,
            "createdAt": _isoformat(self.created_at),
            "startTime": _isoformat(self.start_time),
            "endTime": _isoformat(self.end_time),
            "error": self.error,
            "outputPath": self.output_path,
            "fileName": self.file_name,
            "fileSize": self.output_size,
        }
        if self.result is not None:
            data["frames"] = {
                "received": self.result.frames_received,
                "forwarded": self.result.frames_forwarded,
                "dropped": self.result.frames_dropped,
            }
        return data


@dataclass
class SchedulerConfig:
    """Configuration for the job scheduler."""

    max_concurrent: int = 3
    shutdown_timeout: float = 30.0

    @classmethod
    def from_env(cls) -> "SchedulerConfig":
        """Create SchedulerConfig from environment variables.

        Environment variables:
            SITECAST_MAX_CONCURRENT: Maximum concurrent recordings
            SITECAST_SHUTDOWN_TIMEOUT: Seconds to wait for in-flight jobs on shutdown
        """
        return cls(
            max_concurrent=int(os.environ.get("SITECAST_MAX_CONCURRENT", "3")),
            shutdown_timeout=float(os.environ.get("SITECAST_SHUTDOWN_TIMEOUT", "30.0")),
        )


class JobScheduler:
    """
    Bounded FIFO scheduler for recording jobs.

    The runner is called once per admitted job; whatever it raises becomes
    that job's failure and never affects other jobs.

    Example:
        >>> scheduler = JobScheduler(Pipeline(config).run, SchedulerConfig(max_concurrent=3))
        >>> job_id = scheduler.submit({"url": "https://example.com", "duration": 5000})
        >>> scheduler.get_job(job_id).status
        <JobStatus.CAPTURING: 'capturing'>
    """

    def __init__(self, runner: Runner, config: Optional[SchedulerConfig] = None) -> None:
        self.config = config or SchedulerConfig()
        if self.config.max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._runner = runner
        self._jobs: Dict[int, Job] = {}
        self._queue: Deque[int] = deque()
        self._running: Dict[int, asyncio.Task] = {}
        self._next_id = 1
        self._accepting = True
        self._idle = asyncio.Event()
        self._idle.set()

        logger.info(f"[SCHEDULER] Initialized (max concurrent: {self.config.max_concurrent})")

    @property
    def max_concurrent(self) -> int:
        return self.config.max_concurrent

    @property
    def in_flight(self) -> int:
        return len(self._running)

    def submit(self, request: Union[RecordingRequest, Mapping[str, Any]]) -> int:
        """
        Queue a recording and admit it if a slot is free.

        Returns:
            The new job id

        Raises:
            InvalidRequestError: If the request is malformed
            JobStateError: If the scheduler is shutting down
        """
        if not self._accepting:
            raise JobStateError("Scheduler is shutting down")
        if isinstance(request, Mapping):
            request = RecordingRequest.from_mapping(request)
        elif not isinstance(request, RecordingRequest):
            raise InvalidRequestError("URL is required")

        job_id = self._next_id
        self._next_id += 1
        self._jobs[job_id] = Job(id=job_id, request=request)
        self._queue.append(job_id)
        self._idle.clear()
        logger.info(f"[SCHEDULER] Job {job_id} queued: {request.url}")

        self._admit()
        return job_id

    def _admit(self) -> None:
        while self._queue and len(self._running) < self.config.max_concurrent:
            job = self._jobs[self._queue.popleft()]
            job.start()
            self._running[job.id] = asyncio.create_task(self._execute(job))
            logger.info(
                f"[SCHEDULER] Job {job.id} started "
                f"({len(self._running)}/{self.config.max_concurrent} running, {len(self._queue)} queued)"
            )

    async def _execute(self, job: Job) -> None:
        try:
            result = await self._runner(job.request)
            job.complete(result)
            logger.info(f"[SCHEDULER] Job {job.id} completed: {result.output_path}")
        except asyncio.CancelledError:
            job.fail("Interrupted by scheduler shutdown")
            logger.warning(f"[SCHEDULER] Job {job.id} interrupted")
            raise
        except Exception as e:
            job.fail(str(e) or e.__class__.__name__)
            logger.error(f"[SCHEDULER] Job {job.id} failed: {job.error}")
        finally:
            self._running.pop(job.id, None)
            if self._accepting:
                self._admit()
            if not self._running and not self._queue:
                self._idle.set()

    def get_job(self, job_id: int) -> Optional[Job]:
        return self._jobs.get(job_id)

    def list_jobs(self) -> List[Job]:
        """All jobs, most recent first."""
        return sorted(self._jobs.values(), key=lambda job: job.id, reverse=True)

    def get_stats(self) -> Dict[str, Any]:
        """Get scheduler statistics.

        Returns:
            Dictionary with job counts per state
        """
        counts = {status: 0 for status in JobStatus}
        for job in self._jobs.values():
            counts[job.status] += 1
        return {
            "queued": counts[JobStatus.QUEUED],
            "running": counts[JobStatus.CAPTURING],
            "completed": counts[JobStatus.COMPLETED],
            "failed": counts[JobStatus.FAILED],
            "total": len(self._jobs),
            "max_concurrent": self.config.max_concurrent,
        }

    async def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Wait until no job is queued or running."""
        await asyncio.wait_for(self._idle.wait(), timeout=timeout)

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Stop accepting work and wind down.

        Queued jobs are failed without running. In-flight jobs get ``timeout``
        seconds to finish; the rest are cancelled so their pipelines release
        browser and encoder, and are recorded as failed.
        """
        timeout = self.config.shutdown_timeout if timeout is None else timeout
        self._accepting = False

        while self._queue:
            job = self._jobs[self._queue.popleft()]
            job.fail("Scheduler shut down before the job started")

        tasks = list(self._running.values())
        if tasks:
            logger.info(f"[SCHEDULER] Waiting up to {timeout:.1f}s for {len(tasks)} running job(s)")
            _, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        self._idle.set()
        logger.info("[SCHEDULER] Shut down")
