from fastapi import Request
from codejudge.services.run import RunEngine


def get_engine(request: Request) -> RunEngine:
    return request.app.state.engine
