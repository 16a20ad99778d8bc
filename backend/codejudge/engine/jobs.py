from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from codejudge.engine.enums import JobStatus, Language, OutcomeKind
from codejudge.engine.errors import InvalidTransition

log = logging.getLogger("codejudge.jobs")

TERMINAL = frozenset({JobStatus.succeeded, JobStatus.failed, JobStatus.timed_out})

TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.created: frozenset({JobStatus.input_written, JobStatus.failed}),
    JobStatus.input_written: frozenset(
        {JobStatus.building, JobStatus.running, JobStatus.failed}
    ),
    JobStatus.building: frozenset(
        {JobStatus.running, JobStatus.failed, JobStatus.timed_out}
    ),
    JobStatus.running: TERMINAL,
    JobStatus.succeeded: frozenset({JobStatus.cleanup_scheduled}),
    JobStatus.failed: frozenset({JobStatus.cleanup_scheduled}),
    JobStatus.timed_out: frozenset({JobStatus.cleanup_scheduled}),
    JobStatus.cleanup_scheduled: frozenset({JobStatus.cleaned_up}),
    JobStatus.cleaned_up: frozenset(),
}


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    language: Language
    source_code: str
    stdin: str


@dataclass(frozen=True, slots=True)
class Stage:
    """One step of a recipe, launched as a single process tree."""

    name: str
    argv: tuple[str, ...]
    deadline_s: float
    stdin_path: Path | None = None


@dataclass(frozen=True, slots=True)
class Recipe:
    stages: tuple[Stage, ...]
    artifacts: tuple[Path, ...]


@dataclass(slots=True)
class StageResult:
    name: str
    argv: tuple[str, ...]
    deadline_s: float = 0
    returncode: int | None = None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    overflowed: bool = False
    duration_ms: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return (
            self.error is None
            and not self.timed_out
            and not self.overflowed
            and self.returncode == 0
        )


@dataclass(slots=True)
class ExecutionResult:
    """Terminal result of a job: `output` on success, `error` otherwise."""

    kind: OutcomeKind
    output: str | None = None
    error: str | None = None
    stages: list[StageResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.success


@dataclass(slots=True)
class ExecutionJob:
    job_id: str
    language: Language
    workspace_dir: Path
    source_path: Path
    input_path: Path
    binary_path: Path | None = None
    recipe: Recipe | None = None
    status: JobStatus = JobStatus.created
    history: list[JobStatus] = field(default_factory=lambda: [JobStatus.created])

    def advance(self, status: JobStatus) -> None:
        if status not in TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"job {self.job_id}: {self.status.value} -> {status.value}"
            )
        self.status = status
        self.history.append(status)
        log.debug(
            "job status %s", status.value, extra={"job_id": self.job_id}
        )

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL

    @property
    def artifacts(self) -> tuple[Path, ...]:
        if self.recipe is not None:
            return self.recipe.artifacts
        paths = [self.source_path, self.input_path]
        if self.binary_path is not None:
            paths.append(self.binary_path)
        return tuple(paths)
