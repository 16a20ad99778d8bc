import logging
from typing import Any

from codejudge.core.config import Settings
from codejudge.engine.admission import AdmissionController
from codejudge.engine.cleanup import CleanupAgent
from codejudge.engine.enums import JobStatus, Language
from codejudge.engine.errors import InvalidRequest
from codejudge.engine.executor import ProcessExecutor
from codejudge.engine.jobs import ExecutionJob, ExecutionRequest, ExecutionResult
from codejudge.engine.sandbox import Sandbox, build_sandbox
from codejudge.engine.toolchains import get_toolchain
from codejudge.engine.workspace import WorkspaceManager

log = logging.getLogger("codejudge.run")

SUPPORTED_LANGUAGES = frozenset(lang.value for lang in Language)


def validate_payload(payload: Any) -> ExecutionRequest:
    if not isinstance(payload, dict):
        raise InvalidRequest("Missing language, code, or input")
    language = payload.get("language")
    code = payload.get("code")
    stdin = payload.get("input")
    # empty input is fine, empty language or code is not
    if (
        not isinstance(language, str)
        or not language
        or not isinstance(code, str)
        or not code
        or not isinstance(stdin, str)
    ):
        raise InvalidRequest("Missing language, code, or input")
    if language not in SUPPORTED_LANGUAGES:
        raise InvalidRequest("Unsupported language")
    return ExecutionRequest(language=Language(language), source_code=code, stdin=stdin)


class RunEngine:
    def __init__(
        self,
        settings: Settings,
        sandbox: Sandbox | None = None,
        workspaces: WorkspaceManager | None = None,
    ):
        self.settings = settings
        self.sandbox = sandbox or build_sandbox(settings)
        self.workspaces = workspaces or WorkspaceManager(settings.WORK_DIR)
        self.executor = ProcessExecutor(
            self.sandbox,
            max_output_bytes=settings.RUN_MAX_OUTPUT_BYTES,
            kill_grace_s=settings.KILL_GRACE_S,
            stderr_fallback=settings.STDERR_FALLBACK,
        )
        self.cleanup = CleanupAgent(settings.CLEANUP_GRACE_S)
        self.admission = AdmissionController(
            settings.MAX_CONCURRENT_RUNS,
            settings.MAX_QUEUED_RUNS,
            settings.QUEUE_TIMEOUT_S,
        )

    async def run(self, request: ExecutionRequest) -> ExecutionResult:
        async with self.admission.slot():
            toolchain = get_toolchain(request.language)
            job = await self.workspaces.allocate(request, toolchain)
            try:
                job.recipe = toolchain.recipe(job, self.settings)
                return await self.executor.execute(job)
            finally:
                self._finish(job)

    def _finish(self, job: ExecutionJob) -> None:
        if not job.terminal:
            # an exception escaped mid-pipeline
            log.error("job aborted in %s", job.status.value, extra={"job_id": job.job_id})
            job.advance(JobStatus.failed)
        self.cleanup.schedule(job)

    async def shutdown(self) -> None:
        await self.cleanup.drain()
