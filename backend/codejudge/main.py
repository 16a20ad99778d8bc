import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from codejudge.core.config import Settings, get_settings
from codejudge.core.logging import setup_logging
from codejudge.api.routers import run as r_run
from codejudge.engine.errors import EngineError
from codejudge.services.run import RunEngine

log = logging.getLogger("codejudge.api")


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        # pending cleanups run now instead of after their grace delay
        await app.state.engine.shutdown()

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = RunEngine(settings)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_origin_regex=settings.CORS_ORIGIN_REGEX,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.include_router(r_run.router, prefix=settings.API_PREFIX)

    @app.exception_handler(EngineError)
    async def engine_error(request: Request, exc: EngineError):
        if exc.status_code >= 500:
            log.error("engine error: %s", exc.message, extra={"kind": exc.kind})
        return JSONResponse(
            status_code=exc.status_code, content={"error": exc.message, "kind": exc.kind}
        )

    @app.exception_handler(RequestValidationError)
    async def bad_body(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Missing language, code, or input", "kind": "validation"},
        )

    @app.exception_handler(Exception)
    async def unexpected(request: Request, exc: Exception):
        log.exception("unhandled error on %s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "kind": "infrastructure"},
        )

    return app


setup_logging(get_settings().LOG_LEVEL)
app = create_app()
