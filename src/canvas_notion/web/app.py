"""FastAPI application factory for the Canvas to Notion sync service."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from canvas_notion.config import Config
from canvas_notion.errors import SyncServiceError
from canvas_notion.service import SyncService

logger = logging.getLogger(__name__)


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid value")
    return f"{location}: {message}" if location else message


def create_app(config: Config, *, service: SyncService | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(title="Canvas to Notion")

    # Store config and collaborators on app state
    app.state.config = config
    app.state.service = service or SyncService.from_config(config)

    @app.exception_handler(SyncServiceError)
    async def handle_service_error(request: Request, exc: SyncServiceError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": str(exc)},
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": _describe_validation_error(exc)},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": str(exc) or "Internal server error"},
        )

    from canvas_notion.web.routes import create_router

    app.include_router(create_router(app.state.service))

    return app
