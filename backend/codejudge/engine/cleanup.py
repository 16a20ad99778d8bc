from __future__ import annotations

import asyncio
import logging
import shutil

from codejudge.engine.enums import JobStatus
from codejudge.engine.jobs import ExecutionJob

log = logging.getLogger("codejudge.cleanup")


def remove_artifacts(job: ExecutionJob) -> None:
    """Remove every file a job created. One attempt; failures are logged."""
    for path in job.artifacts:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            log.warning(
                "cleanup failed for %s: %s", path.name, exc, extra={"job_id": job.job_id}
            )

    # sweeps leftovers such as javac's inner class files
    try:
        shutil.rmtree(job.workspace_dir)
    except FileNotFoundError:
        pass
    except OSError as exc:
        log.warning(
            "cleanup failed for %s: %s",
            job.workspace_dir.name,
            exc,
            extra={"job_id": job.job_id},
        )


class CleanupAgent:
    def __init__(self, grace_s: float):
        self.grace_s = grace_s
        self._tasks: dict[asyncio.Task, ExecutionJob] = {}

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, job: ExecutionJob) -> asyncio.Task:
        if job.status is not JobStatus.cleanup_scheduled:
            job.advance(JobStatus.cleanup_scheduled)
        task = asyncio.create_task(self._cleanup_later(job))
        self._tasks[task] = job
        task.add_done_callback(self._tasks.pop)
        return task

    async def _cleanup_later(self, job: ExecutionJob) -> None:
        try:
            await asyncio.sleep(self.grace_s)
        except asyncio.CancelledError:
            # drain() wants the removal now
            pass
        await self._cleanup(job)

    async def _cleanup(self, job: ExecutionJob) -> None:
        try:
            await asyncio.to_thread(remove_artifacts, job)
        except Exception:
            log.exception("cleanup crashed", extra={"job_id": job.job_id})
            return
        job.advance(JobStatus.cleaned_up)
        log.info("workspace removed", extra={"job_id": job.job_id})

    async def drain(self) -> None:
        """Skip the grace delay for every pending cleanup and wait for it."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
