"""
FastAPI application for the rehearsal service.

Services are built in the lifespan from environment configuration unless the
caller hands a ready Services object to create_app (tests do).
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from logging_setup import get_logger, Component
from voice_turn.config import VoiceConfig, load_env_files
from voice_turn.errors import RehearsalError
from .api import router
from .config import ServerConfig
from .services import Services, build_services

logger = get_logger(Component.ERROR_HANDLER)


def _error_response(status_code: int, category: str, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"category": category, "message": message, **extra}},
    )


async def _handle_rehearsal_error(request: Request, exc: RehearsalError) -> JSONResponse:
    logger.info(
        "Request rejected",
        path=request.url.path,
        category=exc.category,
        status_code=exc.status_code,
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    # pydantic error contexts may hold exception objects; keep only the plain fields.
    details = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    return _error_response(422, "request.invalid", "Request validation failed", details=details)


async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    # Stable error surface: no internal traces
    logger.exception(
        "Unhandled exception",
        path=request.url.path,
        error_class=type(exc).__name__,
    )
    return _error_response(500, "internal.error", "Internal error")


def create_app(services: Optional[Services] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        if owned:
            load_env_files()
            app.state.services = build_services(VoiceConfig.from_env(), ServerConfig.from_env())
        try:
            yield
        finally:
            if owned:
                await app.state.services.aclose()

    app = FastAPI(title="Rehearsal Voice Server", lifespan=lifespan)
    if services is not None:
        app.state.services = services

    app.add_exception_handler(RehearsalError, _handle_rehearsal_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.add_exception_handler(Exception, _handle_unexpected_error)
    app.include_router(router)

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "ok", "component": "rehearsal"}

    return app


app = create_app()
