"""Error types for the task workflow and their wire representation."""

from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError


class ErrorCode:
    """Error codes for specific error conditions."""

    ERR_VALIDATION = "ERR_VALIDATION"
    ERR_NOT_FOUND = "ERR_NOT_FOUND"
    ERR_INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    ERR_UNAUTHORIZED = "ERR_UNAUTHORIZED"
    ERR_CONFLICT = "ERR_CONFLICT"
    ERR_DIRECTORY_UNAVAILABLE = "ERR_DIRECTORY_UNAVAILABLE"
    ERR_UNKNOWN = "ERR_UNKNOWN"


class ErrorResponse(BaseModel):
    """Structured error body returned to callers."""

    code: str
    message: str
    field: str | None = None
    reason: str | None = None


class TaskWorkflowError(Exception):
    """Base class for every error the workflow raises on purpose.

    `field` names the offending field or id so the caller can correct and resubmit.
    """

    code: str = ErrorCode.ERR_UNKNOWN
    status_code: int = 500

    def __init__(self, message: str, *, field: str | None = None, reason: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.reason = reason or message


class TaskValidationError(TaskWorkflowError):
    """A field is missing, malformed or out of range."""

    code = ErrorCode.ERR_VALIDATION
    status_code = 422


class NotFoundError(TaskWorkflowError):
    """A task or resident id does not resolve."""

    code = ErrorCode.ERR_NOT_FOUND
    status_code = 404


class InvalidTransitionError(TaskWorkflowError):
    """The requested status move is not allowed from the current status."""

    code = ErrorCode.ERR_INVALID_TRANSITION
    status_code = 409

    def __init__(self, *, task_id: str, from_status: str, to_status: str) -> None:
        super().__init__(
            f"Cannot move task {task_id} from {from_status} to {to_status}",
            field="status",
            reason=f"transition {from_status} -> {to_status} is not allowed",
        )
        self.task_id = task_id
        self.from_status = from_status
        self.to_status = to_status


class UnauthorizedError(TaskWorkflowError):
    """The acting user's role or identity does not permit the operation."""

    code = ErrorCode.ERR_UNAUTHORIZED
    status_code = 403


class ConflictError(TaskWorkflowError):
    """A concurrent write changed the task between read and write."""

    code = ErrorCode.ERR_CONFLICT
    status_code = 409


class DirectoryUnavailableError(TaskWorkflowError):
    """The resident directory could not be reached."""

    code = ErrorCode.ERR_DIRECTORY_UNAVAILABLE
    status_code = 503


def from_pydantic_error(error: PydanticValidationError) -> TaskValidationError:
    """Convert a pydantic validation failure into a TaskValidationError naming the first bad field."""
    details = error.errors()
    if not details:
        return TaskValidationError("Invalid input")

    first = details[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    reason = first.get("msg", "invalid value")
    return TaskValidationError(f"Invalid value for {field}: {reason}", field=field, reason=reason)


def to_error_response(exception: Exception) -> ErrorResponse:
    """Build the wire error body for an exception."""
    if isinstance(exception, TaskWorkflowError):
        return ErrorResponse(
            code=exception.code,
            message=exception.message,
            field=exception.field,
            reason=exception.reason,
        )

    if isinstance(exception, PydanticValidationError):
        return to_error_response(from_pydantic_error(exception))

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message="An unexpected error occurred.",
    )


# Request locations FastAPI prefixes to validation error locs
_REQUEST_LOCATIONS = frozenset({"body", "query", "path", "header"})


def from_request_errors(errors: Sequence[Any]) -> TaskValidationError:
    """Convert FastAPI request validation errors into a TaskValidationError."""
    if not errors:
        return TaskValidationError("Invalid request")

    first = errors[0]
    loc = [str(part) for part in first.get("loc", ())]
    if loc and loc[0] in _REQUEST_LOCATIONS:
        loc = loc[1:]
    field = ".".join(loc) or None
    reason = first.get("msg", "invalid value")
    return TaskValidationError(f"Invalid value for {field}: {reason}", field=field, reason=reason)
