from __future__ import annotations

import asyncio
import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import Callable

from codejudge.engine.enums import JobStatus
from codejudge.engine.errors import WorkspaceError
from codejudge.engine.jobs import ExecutionJob, ExecutionRequest
from codejudge.engine.toolchains import Toolchain

log = logging.getLogger("codejudge.workspace")

MAX_ALLOCATION_ATTEMPTS = 5


def new_job_id() -> str:
    return uuid.uuid4().hex


def _write_atomic(path: Path, text: str) -> None:
    tmp = path.with_name(f".{path.name}.partial")
    try:
        with open(tmp, "w", encoding="utf-8", newline="") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink()


class WorkspaceManager:
    """Allocates one exclusive directory per job under a shared base dir."""

    def __init__(
        self, base_dir: str | Path, id_factory: Callable[[], str] = new_job_id
    ):
        self.base_dir = Path(base_dir)
        self._id_factory = id_factory

    async def allocate(
        self, request: ExecutionRequest, toolchain: Toolchain
    ) -> ExecutionJob:
        return await asyncio.to_thread(self._allocate, request, toolchain)

    def _allocate(
        self, request: ExecutionRequest, toolchain: Toolchain
    ) -> ExecutionJob:
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise WorkspaceError(f"Cannot create work dir: {exc}") from exc

        job_id, job_dir = self._reserve()
        binary_name = toolchain.binary_name(job_id)
        job = ExecutionJob(
            job_id=job_id,
            language=request.language,
            workspace_dir=job_dir,
            source_path=job_dir / toolchain.source_name(job_id),
            input_path=job_dir / f"input-{job_id}.txt",
            binary_path=job_dir / binary_name if binary_name else None,
        )
        try:
            _write_atomic(job.input_path, request.stdin)
            _write_atomic(job.source_path, request.source_code)
        except OSError as exc:
            shutil.rmtree(job_dir, ignore_errors=True)
            log.error(
                "workspace write failed: %s", exc, extra={"job_id": job_id}
            )
            raise WorkspaceError(f"Cannot write job files: {exc}") from exc

        job.advance(JobStatus.input_written)
        log.info(
            "workspace allocated",
            extra={"job_id": job_id, "language": request.language.value},
        )
        return job

    def _reserve(self) -> tuple[str, Path]:
        # mkdir without exist_ok is the atomic claim on an id
        for _ in range(MAX_ALLOCATION_ATTEMPTS):
            job_id = self._id_factory()
            job_dir = self.base_dir / f"job-{job_id}"
            try:
                job_dir.mkdir()
            except FileExistsError:
                log.warning("job id collision, retrying", extra={"job_id": job_id})
                continue
            except OSError as exc:
                raise WorkspaceError(f"Cannot create job dir: {exc}") from exc
            return job_id, job_dir
        raise WorkspaceError("Could not allocate a unique job directory")
