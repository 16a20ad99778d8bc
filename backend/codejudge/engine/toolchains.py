from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from codejudge.core.config import Settings
from codejudge.engine.enums import Language
from codejudge.engine.jobs import ExecutionJob, Recipe, Stage


@dataclass(frozen=True, slots=True)
class Toolchain:
    language: Language
    source_template: str
    binary_template: str | None
    build_argv: Callable[[ExecutionJob, Settings], tuple[str, ...]] | None
    run_argv: Callable[[ExecutionJob, Settings], tuple[str, ...]]

    @property
    def has_build(self) -> bool:
        return self.build_argv is not None

    def source_name(self, job_id: str) -> str:
        return self.source_template.format(id=job_id)

    def binary_name(self, job_id: str) -> str | None:
        if self.binary_template is None:
            return None
        return self.binary_template.format(id=job_id)

    def recipe(self, job: ExecutionJob, settings: Settings) -> Recipe:
        stages = []
        if self.build_argv is not None:
            stages.append(
                Stage(
                    name="build",
                    argv=self.build_argv(job, settings),
                    deadline_s=settings.BUILD_TIME_LIMIT_S,
                )
            )
        stages.append(
            Stage(
                name="run",
                argv=self.run_argv(job, settings),
                deadline_s=settings.RUN_TIME_LIMIT_S,
                stdin_path=job.input_path,
            )
        )
        artifacts = [job.source_path, job.input_path]
        if job.binary_path is not None:
            artifacts.append(job.binary_path)
        return Recipe(stages=tuple(stages), artifacts=tuple(artifacts))


def _java_class(job: ExecutionJob) -> str:
    return Path(job.source_path).stem


TOOLCHAINS: dict[Language, Toolchain] = {
    Language.c: Toolchain(
        language=Language.c,
        source_template="main-{id}.c",
        binary_template="main-{id}",
        build_argv=lambda job, s: (
            s.CC,
            str(job.source_path),
            "-o",
            str(job.binary_path),
        ),
        run_argv=lambda job, s: (str(job.binary_path),),
    ),
    Language.cpp: Toolchain(
        language=Language.cpp,
        source_template="main-{id}.cpp",
        binary_template="main-{id}",
        build_argv=lambda job, s: (
            s.CXX,
            str(job.source_path),
            "-o",
            str(job.binary_path),
        ),
        run_argv=lambda job, s: (str(job.binary_path),),
    ),
    Language.java: Toolchain(
        language=Language.java,
        source_template="Solution{id}.java",
        binary_template="Solution{id}.class",
        build_argv=lambda job, s: (s.JAVAC, str(job.source_path)),
        run_argv=lambda job, s: (
            s.JAVA,
            "-cp",
            str(job.workspace_dir),
            _java_class(job),
        ),
    ),
    Language.python: Toolchain(
        language=Language.python,
        source_template="main-{id}.py",
        binary_template=None,
        build_argv=None,
        run_argv=lambda job, s: (s.PYTHON, str(job.source_path)),
    ),
}


def get_toolchain(language: Language | str) -> Toolchain:
    return TOOLCHAINS[Language(language)]
