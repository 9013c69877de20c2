"""
Unit Tests for the Registration Backend Client

Uses httpx.MockTransport so every request can be inspected:
- Bearer credential on every request
- Endpoint paths and request bodies
- Error mapping (non-2xx, transport failure, timeout, success=false)

Run with: pytest tests/test_client.py -v
"""

import json

import httpx
import pytest

from registration.client import RegistrationApiClient
from registration.errors import ApiError, CreationError, PreconditionError
from registration.models import DraftEntity, EventRef

BASE_URL = "http://registration.test"
TOKEN = "session-token-abc"
REMOTE_ID = "64b7f0c2a1d3e4f5a6b7c8d9"
EVENT = EventRef(name="Summer Classic", year=2025)


def make_entity(**overrides) -> DraftEntity:
    data = {"name": "Hawks", "grade": "5", "sex": "Male", "level": "Gold"}
    data.update(overrides)
    return DraftEntity(**data)


def make_client(handler, requests=None) -> RegistrationApiClient:
    def recording_handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return handler(request)

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(recording_handler))
    return RegistrationApiClient(BASE_URL, TOKEN, timeout=5.0, http_client=http_client)


class TestClientConstruction:
    """Test credential precondition."""

    @pytest.mark.parametrize("token", [None, "", "   "])
    def test_missing_token_rejected(self, token):
        with pytest.raises(PreconditionError) as exc_info:
            RegistrationApiClient(BASE_URL, token)

        assert exc_info.value.parameter == "token"

    def test_headers_carry_bearer(self):
        client = RegistrationApiClient(BASE_URL + "/", TOKEN)

        assert client.headers["Authorization"] == f"Bearer {TOKEN}"
        assert client.base_url == BASE_URL

    def test_from_settings(self):
        from config import Settings

        settings = Settings(REGISTRATION_API_URL="http://backend.test", REGISTRATION_API_TIMEOUT=3.5)
        client = RegistrationApiClient.from_settings(TOKEN, settings=settings)

        assert client.base_url == "http://backend.test"
        assert client.timeout == 3.5


class TestCheckRegistration:
    """Test GET /registrations/check/{id}/{event}/{year}."""

    @pytest.mark.asyncio
    async def test_registered_and_paid(self):
        requests = []
        client = make_client(
            lambda r: httpx.Response(200, json={"isRegistered": True, "isPaid": True}),
            requests,
        )

        result = await client.check_registration(REMOTE_ID, EVENT)

        assert result == {"is_registered": True, "is_paid": True}
        assert requests[0].method == "GET"
        assert requests[0].url.raw_path == f"/registrations/check/{REMOTE_ID}/Summer%20Classic/2025".encode()
        assert requests[0].headers["Authorization"] == f"Bearer {TOKEN}"

    @pytest.mark.asyncio
    async def test_truthy_strings_are_not_true(self):
        client = make_client(lambda r: httpx.Response(200, json={"isRegistered": "yes"}))

        result = await client.check_registration(REMOTE_ID, EVENT)

        assert result == {"is_registered": False, "is_paid": False}

    @pytest.mark.asyncio
    async def test_non_2xx_raises_api_error(self):
        client = make_client(lambda r: httpx.Response(404, json={"message": "Not found"}))

        with pytest.raises(ApiError) as exc_info:
            await client.check_registration(REMOTE_ID, EVENT)

        assert exc_info.value.status_code == 404
        assert "Not found" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout_raises_api_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = make_client(handler)

        with pytest.raises(ApiError, match="timed out"):
            await client.check_registration(REMOTE_ID, EVENT)

    @pytest.mark.asyncio
    async def test_connection_error_raises_api_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler)

        with pytest.raises(ApiError, match="Cannot reach"):
            await client.check_registration(REMOTE_ID, EVENT)

    @pytest.mark.asyncio
    async def test_malformed_body(self):
        client = make_client(lambda r: httpx.Response(200, content=b"<html>"))

        with pytest.raises(ApiError, match="Malformed"):
            await client.check_registration(REMOTE_ID, EVENT)


class TestCreation:
    """Test the creation endpoints."""

    @pytest.mark.asyncio
    async def test_batch_body_and_result(self):
        requests = []
        client = make_client(
            lambda r: httpx.Response(201, json={
                "success": True,
                "entities": [{"_id": REMOTE_ID, "name": "Hawks"}, "junk"],
            }),
            requests,
        )

        created = await client.create_entities_batch([make_entity(name=" Hawks ")], EVENT)

        assert created == [{"_id": REMOTE_ID, "name": "Hawks"}]
        body = json.loads(requests[0].content)
        assert requests[0].url.path == "/register/tournament-team-multiple"
        assert body["eventName"] == "Summer Classic"
        assert body["eventYear"] == 2025
        assert body["entities"][0]["name"] == "Hawks"
        assert body["entities"][0]["levelOfCompetition"] == "Gold"

    @pytest.mark.asyncio
    async def test_batch_success_false_raises(self):
        client = make_client(lambda r: httpx.Response(200, json={"success": False, "error": "Closed"}))

        with pytest.raises(CreationError, match="Closed"):
            await client.create_entities_batch([make_entity()], EVENT)

    @pytest.mark.asyncio
    async def test_batch_http_error_is_creation_error(self):
        client = make_client(lambda r: httpx.Response(500, text="boom"))

        with pytest.raises(CreationError) as exc_info:
            await client.create_entities_batch([make_entity()], EVENT)

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_single_creation(self):
        requests = []
        client = make_client(
            lambda r: httpx.Response(200, json={"success": True, "entity": {"_id": REMOTE_ID}}),
            requests,
        )

        created = await client.create_entity_single(make_entity(), EVENT)

        assert created == {"_id": REMOTE_ID}
        assert requests[0].url.path == "/register/tournament-team"
        assert json.loads(requests[0].content)["entity"]["sex"] == "Male"

    @pytest.mark.asyncio
    async def test_single_without_entity_raises(self):
        client = make_client(lambda r: httpx.Response(200, json={"success": True}))

        with pytest.raises(CreationError):
            await client.create_entity_single(make_entity(), EVENT)

    @pytest.mark.asyncio
    async def test_register_existing(self):
        requests = []
        client = make_client(
            lambda r: httpx.Response(200, json={"entity": {"_id": REMOTE_ID}}),
            requests,
        )

        registered = await client.register_existing_entity(make_entity(remote_id=REMOTE_ID), EVENT)

        assert registered == {"_id": REMOTE_ID}
        body = json.loads(requests[0].content)
        assert requests[0].url.path == "/teams/register-tournament"
        assert body == {
            "entityId": REMOTE_ID,
            "eventName": "Summer Classic",
            "eventYear": 2025,
            "level": "Gold",
        }
