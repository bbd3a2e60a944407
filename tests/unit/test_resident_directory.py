"""Tests for the resident directory client using httpx."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from wastewise.core.config import settings
from wastewise.core.errors import DirectoryUnavailableError, NotFoundError
from wastewise.interface.resident_directory import resolve_resident


@pytest.fixture(autouse=True)
def directory_settings(monkeypatch) -> None:
    monkeypatch.setattr(settings, "resident_directory_url", "https://portal.example.org/api/v1/")
    monkeypatch.setattr(settings, "resident_directory_api_key", "directory-key")


def _response(status_code: int, body: object = None) -> MagicMock:
    mock_response = MagicMock(spec=httpx.Response)
    mock_response.status_code = status_code
    mock_response.is_success = 200 <= status_code < 300
    mock_response.json.return_value = body
    return mock_response


@pytest.mark.unit
class TestResolveResident:
    """Resident lookups."""

    async def test_known_resident(self) -> None:
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = _response(200, {"id": 42, "name": "Ada", "email": "ada@example.org"})

            resident = await resolve_resident(resident_id=" 42 ")

        assert resident.id == "42"
        assert resident.name == "Ada"
        mock_get.assert_called_once()
        assert mock_get.call_args.args[0] == "https://portal.example.org/api/v1/residents/42"
        assert mock_get.call_args.kwargs["headers"]["X-Api-Key"] == "directory-key"

    async def test_id_is_quoted_into_one_path_segment(self) -> None:
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = _response(200, {"id": "a/b?c#d"})

            await resolve_resident(resident_id="a/b?c#d")

        assert mock_get.call_args.args[0] == "https://portal.example.org/api/v1/residents/a%2Fb%3Fc%23d"

    async def test_api_key_is_optional(self, monkeypatch) -> None:
        monkeypatch.setattr(settings, "resident_directory_api_key", None)

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = _response(200, {"id": "r1"})

            await resolve_resident(resident_id="r1")

        assert "X-Api-Key" not in mock_get.call_args.kwargs["headers"]

    async def test_unknown_resident(self) -> None:
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = _response(404)

            with pytest.raises(NotFoundError) as exc_info:
                await resolve_resident(resident_id="ghost")

        assert exc_info.value.field == "assigned_to"
        assert exc_info.value.reason == "unknown resident id"

    async def test_blank_id_skips_lookup(self) -> None:
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            with pytest.raises(NotFoundError):
                await resolve_resident(resident_id="   ")

        mock_get.assert_not_called()

    async def test_server_error(self) -> None:
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = _response(500)

            with pytest.raises(DirectoryUnavailableError) as exc_info:
                await resolve_resident(resident_id="r1")

        assert "500" in exc_info.value.reason

    async def test_unreachable(self) -> None:
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.side_effect = httpx.ConnectError("Connection refused")

            with pytest.raises(DirectoryUnavailableError):
                await resolve_resident(resident_id="r1")

    async def test_malformed_body(self) -> None:
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = _response(200, ["not", "an", "object"])

            with pytest.raises(DirectoryUnavailableError):
                await resolve_resident(resident_id="r1")
