"""Client-side delayed publishing for platforms without native scheduling."""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable

from social_publisher.models import PlatformId, PublishResult, as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class DeferredJob:
    """A publish held in-process until its scheduled time."""

    platform: PlatformId
    post_id: str
    scheduled_for: datetime
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    task: asyncio.Task | None = None
    result: PublishResult | None = None

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()


class DeferredPublisher:
    """Runs publish callbacks at their scheduled time on the current event loop."""

    def __init__(self) -> None:
        self._jobs: dict[str, DeferredJob] = {}

    def submit(
        self,
        platform: PlatformId,
        post_id: str,
        when: datetime,
        run: Callable[[], Awaitable[PublishResult]],
    ) -> DeferredJob:
        """Schedule ``run`` to be awaited at ``when``.

        Args:
            platform: Target platform (for bookkeeping)
            post_id: Post being published
            when: Time to publish at; naive values are taken as UTC
            run: Coroutine factory performing the actual publish

        Returns:
            The registered job
        """
        when = as_utc(when)
        job = DeferredJob(platform=platform, post_id=post_id, scheduled_for=when)
        job.task = asyncio.create_task(self._run(job, run))
        self._jobs[job.id] = job
        logger.info(
            f"Deferred {platform.value} publish of post {post_id} "
            f"until {when.isoformat()} (job {job.id})"
        )
        return job

    async def _run(
        self, job: DeferredJob, run: Callable[[], Awaitable[PublishResult]]
    ) -> PublishResult:
        delay = (job.scheduled_for - utcnow()).total_seconds()
        if delay > 0:
            await asyncio.sleep(delay)
        logger.info(f"Running deferred {job.platform.value} publish (job {job.id})")
        job.result = await run()
        return job.result

    def get(self, job_id: str) -> DeferredJob | None:
        return self._jobs.get(job_id)

    @property
    def pending(self) -> list[DeferredJob]:
        return [job for job in self._jobs.values() if not job.done]

    async def drain(self) -> list[PublishResult]:
        """Wait for every pending job and return the results of finished ones.

        Drained jobs are forgotten, so a later ``drain`` only reports jobs
        submitted after this one.
        """
        jobs = list(self._jobs.values())
        tasks = [job.task for job in jobs if job.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for job in jobs:
            if job.done:
                self._jobs.pop(job.id, None)
        return [job.result for job in jobs if job.result is not None]

    def cancel_all(self) -> int:
        """Cancel every job that has not run yet; returns how many were cancelled."""
        cancelled = 0
        for job in self.pending:
            job.task.cancel()
            cancelled += 1
        if cancelled:
            logger.warning(f"Cancelled {cancelled} deferred publish job(s)")
        return cancelled
