import asyncio

import pytest

from codejudge.engine.enums import JobStatus, Language, OutcomeKind
from codejudge.engine.errors import InvalidRequest
from codejudge.services.run import RunEngine, validate_payload

from conftest import job_dirs, make_settings


def test_validate_payload_accepts_empty_input() -> None:
    req = validate_payload({"language": "cpp", "code": "int main(){}", "input": ""})
    assert req.language is Language.cpp
    assert req.source_code == "int main(){}"
    assert req.stdin == ""


@pytest.mark.parametrize("payload", [None, [], "run", {"language": "c", "code": "x"}])
def test_validate_payload_rejects_malformed(payload) -> None:
    with pytest.raises(InvalidRequest) as exc:
        validate_payload(payload)
    assert exc.value.status_code == 400
    assert exc.value.kind == "validation"


def test_validate_payload_rejects_unknown_language() -> None:
    with pytest.raises(InvalidRequest, match="Unsupported language"):
        validate_payload({"language": "go", "code": "x", "input": ""})


def test_engine_runs_and_cleans_up(tmp_path) -> None:
    settings = make_settings(tmp_path, CLEANUP_GRACE_S=30)
    engine = RunEngine(settings)
    request = validate_payload({"language": "python", "code": "print(input()[::-1])", "input": "abc"})

    async def scenario():
        result = await engine.run(request)
        pending = engine.cleanup.pending
        leftovers = job_dirs(settings)
        await engine.shutdown()
        return result, pending, leftovers

    result, pending, leftovers = asyncio.run(scenario())
    assert result.kind is OutcomeKind.success
    assert result.output == "cba\n"
    assert pending == 1
    assert len(leftovers) == 1
    assert job_dirs(settings) == []


def test_engine_cleans_up_when_pipeline_raises(tmp_path, monkeypatch) -> None:
    settings = make_settings(tmp_path)
    engine = RunEngine(settings)
    seen = []

    async def boom(job):
        seen.append(job)
        raise RuntimeError("executor exploded")

    monkeypatch.setattr(engine.executor, "execute", boom)
    request = validate_payload({"language": "python", "code": "print(1)", "input": ""})

    async def scenario():
        with pytest.raises(RuntimeError):
            await engine.run(request)
        await engine.shutdown()

    asyncio.run(scenario())
    (job,) = seen
    assert job.status is JobStatus.cleaned_up
    assert JobStatus.failed in job.history
    assert job_dirs(settings) == []
    assert engine.admission.active == 0
