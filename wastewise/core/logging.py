"""Logfire setup and structured logging helpers for the task workflow.

Modules log through `logging.getLogger(__name__)` with `extra={...}`; once
`configure_logfire()` has run, Logfire picks those records up alongside the
spans opened by the service layer.

    logger.info("Task created", extra={"task_id": task.id, "assigned_to": task.assigned_to})

    with span("task_engine.transition", task_id=task_id, to_status="verified"):
        ...
"""

import logging
from typing import TYPE_CHECKING

import logfire
from fastapi import FastAPI

from wastewise.core.config import settings


if TYPE_CHECKING:
    from wastewise.domain.user import Actor


logger = logging.getLogger(__name__)


def configure_logfire() -> None:
    """Point Logfire at the wastewise service; records stay local without a token."""
    logfire.configure(
        token=settings.logfire_token,
        service_name="wastewise",
        service_version="0.1.0",
        environment=settings.environment,
        send_to_logfire="if-token-present",
    )
    logger.info("Logfire configured", extra={"environment": settings.environment})


def instrument_fastapi(app: FastAPI) -> None:
    """Trace every task API request."""
    logfire.instrument_fastapi(app)
    logger.info("FastAPI instrumentation configured")


def span(name: str, **attributes: object) -> logfire.LogfireSpan:
    """Open a span around a service operation, e.g. `span("bulk.assign_bulk", residents=3)`."""
    return logfire.span(name, **attributes)


def log_task_event(
    target: logging.Logger,
    level: str,
    message: str,
    *,
    task_id: str,
    actor: "Actor | None" = None,
    **extra: object,
) -> None:
    """Log a task event with the task id and, when known, who caused it.

    Args:
        target: Logger of the calling module
        level: "debug", "info", "warning", "error" or "critical"
        message: Event description, e.g. "Task transitioned"
        task_id: Task the event belongs to
        actor: Acting user; adds `actor_id` and `actor_role`
        **extra: Further fields such as from_status/to_status
    """
    context: dict[str, object] = {"task_id": task_id, **extra}
    if actor is not None:
        context["actor_id"] = actor.id
        context["actor_role"] = str(actor.role)
    getattr(target, level.lower())(message, extra=context)
