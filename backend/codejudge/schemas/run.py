from pydantic import BaseModel
from codejudge.engine.enums import OutcomeKind


class RunCreate(BaseModel):
    language: str | None = None
    code: str | None = None
    input: str | None = None


class RunOut(BaseModel):
    output: str


class RunError(BaseModel):
    error: str
    kind: OutcomeKind | str


class HealthOut(BaseModel):
    ok: bool
    sandbox: str
    active: int
    waiting: int
    pending_cleanups: int
