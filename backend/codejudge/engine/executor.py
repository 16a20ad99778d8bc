from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import time

from codejudge.engine.enums import JobStatus, OutcomeKind
from codejudge.engine.jobs import ExecutionJob, ExecutionResult, Stage, StageResult
from codejudge.engine.sandbox import Sandbox

log = logging.getLogger("codejudge.executor")

_CHUNK = 64 * 1024

_TERMINAL_STATUS = {
    OutcomeKind.success: JobStatus.succeeded,
    OutcomeKind.timeout: JobStatus.timed_out,
}


async def _pump(
    stream: asyncio.StreamReader,
    sink: bytearray,
    limit: int,
    overflow: asyncio.Event,
) -> None:
    # keeps draining after the cap so the pipe never stalls the child
    while True:
        chunk = await stream.read(_CHUNK)
        if not chunk:
            return
        if overflow.is_set():
            continue
        if len(sink) + len(chunk) > limit:
            overflow.set()
            continue
        sink.extend(chunk)


def _killpg(proc: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass


def _decode(data: bytes | bytearray) -> str:
    return bytes(data).decode("utf-8", errors="replace")


class ProcessExecutor:
    # stages run in their own process group; a stage is given at most
    # deadline_s + kill_grace_s before its pipes are abandoned
    def __init__(
        self,
        sandbox: Sandbox,
        *,
        max_output_bytes: int,
        kill_grace_s: float = 1.0,
        stderr_fallback: bool = True,
    ):
        self.sandbox = sandbox
        self.max_output_bytes = max_output_bytes
        self.kill_grace_s = kill_grace_s
        self.stderr_fallback = stderr_fallback

    async def execute(self, job: ExecutionJob) -> ExecutionResult:
        if job.recipe is None:
            raise ValueError(f"job {job.job_id} has no recipe")
        self.sandbox.prepare(job)
        results: list[StageResult] = []
        for stage in job.recipe.stages:
            job.advance(
                JobStatus.building if stage.name == "build" else JobStatus.running
            )
            result = await self.run_stage(stage, job)
            results.append(result)
            if not result.ok:
                break
        outcome = self.classify(results)
        job.advance(_TERMINAL_STATUS.get(outcome.kind, JobStatus.failed))
        log.info(
            "job finished",
            extra={
                "job_id": job.job_id,
                "language": job.language.value,
                "kind": outcome.kind.value,
            },
        )
        return outcome

    async def run_stage(self, stage: Stage, job: ExecutionJob) -> StageResult:
        result = StageResult(name=stage.name, argv=stage.argv, deadline_s=stage.deadline_s)
        argv = self.sandbox.command(stage, job)
        started = time.monotonic()
        stdin = None
        try:
            if stage.stdin_path is not None:
                stdin = open(stage.stdin_path, "rb")
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=stdin if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=job.workspace_dir,
                start_new_session=True,
                preexec_fn=self.sandbox.preexec(stage),
            )
        except (OSError, subprocess.SubprocessError) as exc:
            result.error = f"Failed to launch {argv[0]}: {exc}"
            log.error(
                result.error, extra={"job_id": job.job_id, "stage": stage.name}
            )
            return result
        finally:
            # the child holds its own descriptor
            if stdin is not None:
                stdin.close()

        out, err = bytearray(), bytearray()
        overflow = asyncio.Event()
        pumps = [
            asyncio.create_task(_pump(proc.stdout, out, self.max_output_bytes, overflow)),
            asyncio.create_task(_pump(proc.stderr, err, self.max_output_bytes, overflow)),
        ]
        exited = asyncio.create_task(proc.wait())
        tripped = asyncio.create_task(overflow.wait())
        try:
            done, _ = await asyncio.wait(
                {exited, tripped},
                timeout=stage.deadline_s,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if exited not in done:
                if tripped in done:
                    result.overflowed = True
                else:
                    result.timed_out = True
                await self._kill(proc, stage, job)
            else:
                # reap anything the stage left behind in its group
                _killpg(proc)
            await asyncio.wait([exited, *pumps], timeout=self.kill_grace_s)
        finally:
            if proc.returncode is None:
                _killpg(proc)
            for task in (*pumps, exited, tripped):
                if not task.done():
                    task.cancel()

        if overflow.is_set():
            result.overflowed = True
        if proc.returncode == -signal.SIGXCPU:
            # the CPU rlimit fired before the wall-clock deadline
            result.timed_out = True
        result.returncode = proc.returncode
        result.stdout = _decode(out)
        result.stderr = _decode(err)
        result.duration_ms = int((time.monotonic() - started) * 1000)
        log.info(
            "stage %s exited %s in %dms",
            stage.name,
            result.returncode,
            result.duration_ms,
            extra={"job_id": job.job_id, "stage": stage.name},
        )
        return result

    async def _kill(
        self, proc: asyncio.subprocess.Process, stage: Stage, job: ExecutionJob
    ) -> None:
        _killpg(proc)
        try:
            await self.sandbox.kill(stage, job)
        except OSError as exc:
            log.warning(
                "sandbox kill failed: %s",
                exc,
                extra={"job_id": job.job_id, "stage": stage.name},
            )

    def classify(self, results: list[StageResult]) -> ExecutionResult:
        last = results[-1]
        if last.ok:
            output = last.stdout
            if not output and self.stderr_fallback:
                output = last.stderr
            return ExecutionResult(OutcomeKind.success, output=output, stages=results)
        if last.error is not None:
            kind, error = OutcomeKind.infrastructure, last.error
        elif last.overflowed:
            kind = OutcomeKind.overflow
            error = f"Output exceeded {self.max_output_bytes} bytes"
        elif last.timed_out:
            kind = OutcomeKind.timeout
            error = f"Execution timed out after {last.deadline_s:g}s"
        else:
            kind = OutcomeKind.build_error if last.name == "build" else OutcomeKind.run_error
            error = last.stderr or (
                f"Command failed: {' '.join(last.argv)} (exit code {last.returncode})"
            )
        return ExecutionResult(kind, error=error, stages=results)
