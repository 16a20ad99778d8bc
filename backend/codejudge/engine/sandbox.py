from __future__ import annotations

import asyncio
import logging
import math
import os
import resource
from typing import Callable, Protocol

from codejudge.core.config import Settings
from codejudge.engine.jobs import ExecutionJob, Stage

log = logging.getLogger("codejudge.sandbox")


class Sandbox(Protocol):
    name: str

    def prepare(self, job: ExecutionJob) -> None:
        """Adjust the job directory before any stage starts."""
        ...

    def command(self, stage: Stage, job: ExecutionJob) -> list[str]:
        """Return the argv that launches `stage` inside the boundary."""
        ...

    def preexec(self, stage: Stage) -> Callable[[], None] | None:
        """Return a hook run in the child before exec, if any."""
        ...

    async def kill(self, stage: Stage, job: ExecutionJob) -> None:
        """Tear down anything the process group kill does not reach."""
        ...


def _lower(kind: int, soft: int, hard: int) -> None:
    # an unprivileged process cannot raise its hard limit, only lower it
    _, current = resource.getrlimit(kind)
    if current != resource.RLIM_INFINITY:
        soft = min(soft, current)
        hard = min(hard, current)
    resource.setrlimit(kind, (soft, hard))


class LocalSandbox:
    """Runs toolchains on the host with POSIX resource limits only."""

    name = "local"

    def __init__(self, settings: Settings):
        self._memory_mb = settings.RUN_MEMORY_MB
        self._max_file_bytes = settings.SANDBOX_MAX_FILE_BYTES

    def prepare(self, job: ExecutionJob) -> None:
        pass

    def command(self, stage: Stage, job: ExecutionJob) -> list[str]:
        return list(stage.argv)

    def preexec(self, stage: Stage) -> Callable[[], None] | None:
        cpu_s = math.ceil(stage.deadline_s) + 1
        file_bytes = self._max_file_bytes
        memory_bytes = None
        if self._memory_mb and stage.name == "run":
            memory_bytes = self._memory_mb * 1024 * 1024

        def limit():
            _lower(resource.RLIMIT_CPU, cpu_s, cpu_s + 1)
            _lower(resource.RLIMIT_FSIZE, file_bytes, file_bytes)
            _lower(resource.RLIMIT_CORE, 0, 0)
            if memory_bytes is not None:
                _lower(resource.RLIMIT_AS, memory_bytes, memory_bytes)

        return limit

    async def kill(self, stage: Stage, job: ExecutionJob) -> None:
        pass


class DockerSandbox:
    """Runs every stage in a throwaway container that sees only the job dir."""

    name = "docker"

    def __init__(self, settings: Settings):
        self._docker = settings.DOCKER_BIN
        self._kill_grace_s = settings.KILL_GRACE_S
        self._image = settings.DOCKER_IMAGE
        self._memory = settings.RUN_MEMORY
        self._cpus = settings.RUN_CPUS
        self._pids_limit = settings.RUN_PIDS_LIMIT
        self._user = settings.SANDBOX_USER

    def container_name(self, stage: Stage, job: ExecutionJob) -> str:
        return f"codejudge-{job.job_id}-{stage.name}"

    def prepare(self, job: ExecutionJob) -> None:
        # the unprivileged container user writes build outputs here
        os.chmod(job.workspace_dir, 0o777)

    def command(self, stage: Stage, job: ExecutionJob) -> list[str]:
        workdir = str(job.workspace_dir)
        return [
            self._docker,
            "run",
            "--rm",
            "-i",
            "--name",
            self.container_name(stage, job),
            "--network",
            "none",
            "--read-only",
            "--cap-drop",
            "ALL",
            "--security-opt",
            "no-new-privileges",
            "--pids-limit",
            str(self._pids_limit),
            "--memory",
            self._memory,
            "--cpus",
            self._cpus,
            "--user",
            self._user,
            "--tmpfs",
            "/tmp:rw,noexec,nosuid,size=64m",
            "-v",
            f"{workdir}:{workdir}:rw",
            "-w",
            workdir,
            self._image,
            *stage.argv,
        ]

    def preexec(self, stage: Stage) -> Callable[[], None] | None:
        return None

    async def kill(self, stage: Stage, job: ExecutionJob) -> None:
        # killing the CLI client leaves the container running
        name = self.container_name(stage, job)
        proc = await asyncio.create_subprocess_exec(
            self._docker,
            "rm",
            "-f",
            name,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        try:
            await asyncio.wait_for(proc.wait(), self._kill_grace_s)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            log.warning(
                "docker rm -f %s did not finish in %gs",
                name,
                self._kill_grace_s,
                extra={"job_id": job.job_id, "stage": stage.name},
            )
            return
        if proc.returncode != 0:
            log.warning(
                "docker rm -f %s exited %s",
                name,
                proc.returncode,
                extra={"job_id": job.job_id, "stage": stage.name},
            )


SANDBOXES = {
    LocalSandbox.name: LocalSandbox,
    DockerSandbox.name: DockerSandbox,
}


def build_sandbox(settings: Settings) -> Sandbox:
    try:
        factory = SANDBOXES[settings.SANDBOX]
    except KeyError:
        raise ValueError(
            f"SANDBOX must be one of {sorted(SANDBOXES)}, got {settings.SANDBOX!r}"
        ) from None
    return factory(settings)
