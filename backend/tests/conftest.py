import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from codejudge.core.config import Settings
from codejudge.engine.enums import JobStatus, Language
from codejudge.engine.jobs import ExecutionJob, Recipe, Stage
from codejudge.main import create_app


def make_settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "WORK_DIR": str(tmp_path / "work"),
        "PYTHON": sys.executable,
        "RUN_TIME_LIMIT_S": 5,
        "BUILD_TIME_LIMIT_S": 30,
        "KILL_GRACE_S": 0.5,
        "CLEANUP_GRACE_S": 0.05,
        "MAX_CONCURRENT_RUNS": 8,
    }
    values.update(overrides)
    return Settings(**values)


def job_dirs(settings: Settings) -> list[Path]:
    base = Path(settings.WORK_DIR)
    if not base.exists():
        return []
    return sorted(base.iterdir())


def python_job(tmp_path: Path, *stages: Stage, stdin: str = "") -> ExecutionJob:
    """Job whose recipe is built by hand from python `-c` stages."""
    job_dir = tmp_path / "job-manual"
    job_dir.mkdir()
    input_path = job_dir / "input-manual.txt"
    input_path.write_text(stdin)
    source_path = job_dir / "main-manual.py"
    source_path.write_text("")
    job = ExecutionJob(
        job_id="manual",
        language=Language.python,
        workspace_dir=job_dir,
        source_path=source_path,
        input_path=input_path,
    )
    job.recipe = Recipe(stages=tuple(stages), artifacts=(source_path, input_path))
    job.advance(JobStatus.input_written)
    return job


def py_stage(code: str, name: str = "run", deadline_s: float = 5, stdin_path=None) -> Stage:
    return Stage(
        name=name,
        argv=(sys.executable, "-c", code),
        deadline_s=deadline_s,
        stdin_path=stdin_path,
    )


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as c:
        yield c
