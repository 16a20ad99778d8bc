from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from codejudge.api.deps import get_engine
from codejudge.schemas.run import HealthOut, RunCreate, RunError, RunOut
from codejudge.services.run import RunEngine, validate_payload

router = APIRouter(tags=["run"])


@router.post(
    "/run",
    response_model=RunOut,
    responses={400: {"model": RunError}, 500: {"model": RunError}, 503: {"model": RunError}},
)
async def run_code(payload: RunCreate, engine: RunEngine = Depends(get_engine)):
    request = validate_payload(payload.model_dump())
    result = await engine.run(request)
    if not result.ok:
        body = RunError(error=result.error or "", kind=result.kind)
        return JSONResponse(status_code=500, content=body.model_dump(mode="json"))
    return RunOut(output=result.output or "")


@router.get("/health", response_model=HealthOut)
async def health(engine: RunEngine = Depends(get_engine)):
    return HealthOut(
        ok=True,
        sandbox=engine.sandbox.name,
        active=engine.admission.active,
        waiting=engine.admission.waiting,
        pending_cleanups=engine.cleanup.pending,
    )
