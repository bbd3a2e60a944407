"""Notification dispatcher for task events.

Notifications are fire-and-forget: `dispatch` schedules delivery on the running event
loop and returns immediately. Delivery is an HTTP POST to the configured webhook, which
fans out to email/SMS/push. Failures are logged, never raised to the caller.
"""

import asyncio
import logging
from enum import StrEnum

import httpx

from wastewise.core.config import constants, settings
from wastewise.domain.task import Task
from wastewise.models.service_models import NotificationResult


logger = logging.getLogger(__name__)

# HTTP status code constants for error handling
HTTP_CLIENT_ERROR_START = 400
HTTP_CLIENT_ERROR_END = 500


class NotificationEvent(StrEnum):
    """Task events residents and managers are told about."""

    TASK_ASSIGNED = "task_assigned"
    TASK_COMPLETED = "task_completed"
    TASK_VERIFIED = "task_verified"
    TASK_REJECTED = "task_rejected"
    TASK_CANCELLED = "task_cancelled"
    TASK_RECURRENCE_CREATED = "task_recurrence_created"


# Events addressed to the assigning manager; all others go to the resident
_MANAGER_EVENTS = frozenset({NotificationEvent.TASK_COMPLETED})

# Deliveries still in flight; holding a reference keeps them from being garbage collected
_pending: set[asyncio.Task[NotificationResult]] = set()


def recipient_for(*, event: NotificationEvent, task: Task) -> str:
    """Pick who an event is addressed to."""
    return task.assigned_by if event in _MANAGER_EVENTS else task.assigned_to


def build_payload(*, event: NotificationEvent, task: Task) -> dict[str, object]:
    """Build the webhook body for an event."""
    return {
        "event": event.value,
        "recipient_id": recipient_for(event=event, task=task),
        "task": {
            "id": task.id,
            "title": task.title,
            "status": task.status.value,
            "due_date": task.due_date.isoformat(),
            "reward_points": task.reward_points,
            "assigned_to": task.assigned_to,
            "assigned_by": task.assigned_by,
            "rejection_reason": task.rejection_reason,
        },
    }


async def deliver(*, event: NotificationEvent, task: Task) -> NotificationResult:
    """POST one notification to the webhook and report the outcome."""
    recipient_id = recipient_for(event=event, task=task)

    if not settings.notification_webhook_url:
        logger.info(
            "Notification webhook not configured, dropping event",
            extra={"event": event.value, "task_id": task.id, "recipient_id": recipient_id},
        )
        return NotificationResult(
            event=event, task_id=task.id, recipient_id=recipient_id, success=False, error="Webhook not configured"
        )

    try:
        async with httpx.AsyncClient(timeout=constants.NOTIFICATION_TIMEOUT_SECONDS) as client:
            response = await client.post(settings.notification_webhook_url, json=build_payload(event=event, task=task))
    except httpx.HTTPError as e:
        logger.warning(
            "Notification delivery failed",
            extra={"event": event.value, "task_id": task.id, "error": str(e)},
        )
        return NotificationResult(event=event, task_id=task.id, recipient_id=recipient_id, success=False, error=str(e))

    if not response.is_success:
        kind = "Client" if HTTP_CLIENT_ERROR_START <= response.status_code < HTTP_CLIENT_ERROR_END else "Server"
        error = f"{kind} error: {response.status_code}"
        logger.warning(
            "Notification webhook rejected event",
            extra={"event": event.value, "task_id": task.id, "status_code": response.status_code},
        )
        return NotificationResult(event=event, task_id=task.id, recipient_id=recipient_id, success=False, error=error)

    logger.info("Notification sent", extra={"event": event.value, "task_id": task.id, "recipient_id": recipient_id})
    return NotificationResult(event=event, task_id=task.id, recipient_id=recipient_id, success=True)


def dispatch(*, event: NotificationEvent, task: Task) -> None:
    """Schedule delivery of a notification without waiting for it."""
    pending = asyncio.get_running_loop().create_task(deliver(event=event, task=task))
    _pending.add(pending)
    pending.add_done_callback(_pending.discard)


async def drain() -> list[NotificationResult]:
    """Wait for every in-flight delivery; called on shutdown."""
    if not _pending:
        return []

    logger.info("Draining pending notifications", extra={"count": len(_pending)})
    results = await asyncio.gather(*list(_pending), return_exceptions=True)
    return [result for result in results if isinstance(result, NotificationResult)]
