import asyncio
import itertools

import pytest

from codejudge.engine import workspace as workspace_mod
from codejudge.engine.enums import JobStatus, Language
from codejudge.engine.errors import WorkspaceError
from codejudge.engine.jobs import ExecutionRequest
from codejudge.engine.toolchains import get_toolchain
from codejudge.engine.workspace import WorkspaceManager

REQUEST = ExecutionRequest(language=Language.c, source_code="int main(){}", stdin="5\n")


def _allocate(manager, request=REQUEST):
    return asyncio.run(manager.allocate(request, get_toolchain(request.language)))


def test_allocate_materializes_input_and_source(tmp_path) -> None:
    base = tmp_path / "missing" / "work"
    job = _allocate(WorkspaceManager(base))

    assert job.workspace_dir.parent == base
    assert job.source_path.name == f"main-{job.job_id}.c"
    assert job.input_path.name == f"input-{job.job_id}.txt"
    assert job.binary_path.name == f"main-{job.job_id}"
    assert job.source_path.read_text() == "int main(){}"
    assert job.input_path.read_text() == "5\n"
    assert job.status is JobStatus.input_written
    # no temporary names left behind
    assert sorted(p.name for p in job.workspace_dir.iterdir()) == sorted(
        [job.source_path.name, job.input_path.name]
    )


def test_empty_stdin_is_written(tmp_path) -> None:
    request = ExecutionRequest(language=Language.python, source_code="print(1)", stdin="")
    job = _allocate(WorkspaceManager(tmp_path), request)
    assert job.input_path.exists()
    assert job.input_path.read_text() == ""
    assert job.binary_path is None


def test_ids_are_unique(tmp_path) -> None:
    manager = WorkspaceManager(tmp_path)

    async def many():
        tc = get_toolchain(Language.python)
        req = ExecutionRequest(language=Language.python, source_code="x", stdin="")
        return await asyncio.gather(*(manager.allocate(req, tc) for _ in range(50)))

    jobs = asyncio.run(many())
    assert len({j.job_id for j in jobs}) == 50
    assert len({j.workspace_dir for j in jobs}) == 50


def test_collision_mints_a_new_id(tmp_path) -> None:
    ids = iter(["same", "same", "other"])
    manager = WorkspaceManager(tmp_path, id_factory=lambda: next(ids))

    first = _allocate(manager)
    second = _allocate(manager)

    assert first.job_id == "same"
    assert second.job_id == "other"


def test_gives_up_after_repeated_collisions(tmp_path) -> None:
    manager = WorkspaceManager(tmp_path, id_factory=lambda: "stuck")
    _allocate(manager)
    with pytest.raises(WorkspaceError):
        _allocate(manager)


def test_write_failure_leaves_nothing_behind(tmp_path, monkeypatch) -> None:
    calls = itertools.count()
    real_write = workspace_mod._write_atomic

    def flaky(path, text):
        if next(calls) == 1:
            raise OSError(28, "No space left on device")
        real_write(path, text)

    monkeypatch.setattr(workspace_mod, "_write_atomic", flaky)

    with pytest.raises(WorkspaceError) as exc:
        _allocate(WorkspaceManager(tmp_path))
    assert "No space left" in exc.value.message
    assert list(tmp_path.iterdir()) == []
