"""wastewise - sustainability task workflow for the municipal waste portal."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from wastewise.core.config import constants, settings
from wastewise.core.db_client import close_connection, init_db
from wastewise.core.errors import (
    TaskWorkflowError,
    from_pydantic_error,
    from_request_errors,
    to_error_response,
)
from wastewise.core.logging import configure_logfire, instrument_fastapi
from wastewise.interface.task_router import router as task_router
from wastewise.services import notification_service


logger = logging.getLogger(__name__)


async def check_directory_connectivity() -> None:
    """Check that the resident directory answers.

    The directory is only needed when tasks are assigned, so an unreachable directory
    is logged rather than treated as fatal.
    """
    try:
        async with httpx.AsyncClient(timeout=constants.DIRECTORY_TIMEOUT_SECONDS) as client:
            response = await client.get(settings.resident_directory_url)
        logger.info(
            "startup_validation",
            extra={"service": "resident_directory", "status": "ok", "status_code": response.status_code},
        )
    except httpx.HTTPError as e:
        logger.warning(
            "startup_validation",
            extra={"service": "resident_directory", "status": "unavailable", "error": str(e)},
        )


async def validate_startup() -> None:
    """Validate credentials and external service connectivity.

    Production deployments must have the directory API key and the notification
    webhook configured; elsewhere a missing webhook only disables notifications.

    Raises:
        SystemExit: If a required credential is missing
    """
    logger.info("startup_validation_begin")

    try:
        if settings.is_production:
            settings.require_credential("resident_directory_api_key", "Resident directory API key")
            settings.require_credential("notification_webhook_url", "Notification webhook")
            logger.info("startup_validation", extra={"stage": "credentials", "status": "ok"})
        elif not settings.notification_webhook_url:
            logger.warning("startup_validation", extra={"service": "notifications", "status": "disabled"})
    except ValueError as e:
        logger.error("startup_validation_failed", extra={"error": str(e)})
        print(f"\nStartup validation failed: {e}\n", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    await check_directory_connectivity()
    logger.info("startup_validation_complete", extra={"status": "ok"})


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    # Startup
    # Configure logging first so startup logs are captured
    configure_logfire()

    await init_db()
    logger.info("Database initialized")

    await validate_startup()

    yield
    # Shutdown
    await notification_service.drain()
    await close_connection()


app = FastAPI(
    title="wastewise",
    description="Sustainability task assignment and verification for the municipal waste portal",
    version="0.1.0",
    lifespan=lifespan,
)

# Instrument FastAPI with Logfire
instrument_fastapi(app)

# Register routers
app.include_router(task_router)


@app.exception_handler(TaskWorkflowError)
async def task_workflow_error_handler(_request: Request, exc: TaskWorkflowError) -> JSONResponse:
    """Render workflow errors as structured error bodies."""
    return JSONResponse(status_code=exc.status_code, content=to_error_response(exc).model_dump())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request validation failures in the workflow's error shape."""
    error = from_request_errors(exc.errors())
    return JSONResponse(status_code=error.status_code, content=to_error_response(error).model_dump())


@app.exception_handler(ValidationError)
async def pydantic_validation_error_handler(_request: Request, exc: ValidationError) -> JSONResponse:
    """Render model validation failures raised inside services."""
    error = from_pydantic_error(exc)
    return JSONResponse(status_code=error.status_code, content=to_error_response(error).model_dump())


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "healthy"}, status_code=200)


def run() -> None:
    """Serve the API with uvicorn."""
    import uvicorn

    uvicorn.run("wastewise.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
