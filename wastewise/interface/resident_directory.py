"""Client for the portal's resident directory API."""

import logging
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from wastewise.core.config import constants, settings
from wastewise.core.errors import DirectoryUnavailableError, NotFoundError
from wastewise.core.logging import span
from wastewise.domain.user import ResidentRef


logger = logging.getLogger(__name__)

HTTP_NOT_FOUND = 404


def _headers() -> dict[str, str]:
    headers = {"Accept": "application/json"}
    if settings.resident_directory_api_key:
        headers["X-Api-Key"] = settings.resident_directory_api_key
    return headers


async def resolve_resident(*, resident_id: str) -> ResidentRef:
    """Resolve a resident ID through the directory.

    Args:
        resident_id: Opaque resident ID

    Returns:
        The resident reference

    Raises:
        NotFoundError: If the directory does not know the resident
        DirectoryUnavailableError: If the directory cannot be reached or answers with an error
    """
    with span("resident_directory.resolve_resident"):
        resident_id = resident_id.strip()
        if not resident_id:
            raise NotFoundError("Resident ID is empty", field="assigned_to", reason="resident id is blank")

        url = f"{settings.resident_directory_url.rstrip('/')}/residents/{quote(resident_id, safe='')}"
        try:
            async with httpx.AsyncClient(timeout=constants.DIRECTORY_TIMEOUT_SECONDS) as client:
                response = await client.get(url, headers=_headers())
        except httpx.HTTPError as e:
            logger.error("Resident directory unreachable", extra={"resident_id": resident_id, "error": str(e)})
            raise DirectoryUnavailableError(
                "Resident directory is unavailable", field="assigned_to", reason=str(e)
            ) from e

        if response.status_code == HTTP_NOT_FOUND:
            raise NotFoundError(
                f"Resident {resident_id} not found", field="assigned_to", reason="unknown resident id"
            )

        if not response.is_success:
            logger.error(
                "Resident directory error",
                extra={"resident_id": resident_id, "status_code": response.status_code},
            )
            raise DirectoryUnavailableError(
                "Resident directory returned an error",
                field="assigned_to",
                reason=f"directory responded with {response.status_code}",
            )

        try:
            body = response.json()
            return ResidentRef.model_validate({**body, "id": str(body.get("id", resident_id))})
        except (ValueError, ValidationError, AttributeError) as e:
            raise DirectoryUnavailableError(
                "Resident directory returned an invalid response", field="assigned_to", reason=str(e)
            ) from e
