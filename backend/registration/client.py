"""
Registration Backend Client

Thin async wrapper around the four registration backend endpoints:
- GET  /registrations/check/{entity_id}/{event_name}/{event_year}
- POST /register/tournament-team-multiple   (batch creation)
- POST /register/tournament-team            (single creation)
- POST /teams/register-tournament           (register an existing entity)

Every request carries the caller's bearer credential. A missing credential
is a precondition failure raised before any request is built. Every call is
bounded by REGISTRATION_API_TIMEOUT.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from registration.errors import ApiError, CreationError, PreconditionError
from registration.models import DraftEntity, EventRef

logger = logging.getLogger(__name__)


def _entity_body(entity: DraftEntity) -> Dict[str, Any]:
    return {
        "kind": entity.kind.value,
        "name": entity.name.strip(),
        "grade": entity.grade,
        "sex": entity.sex,
        "levelOfCompetition": entity.level,
    }


class RegistrationApiClient:
    """
    Client for the registration backend.

    Pass an `httpx.AsyncClient` to share a connection pool (or to inject a
    mock transport in tests); otherwise one short-lived client is opened per
    request.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str],
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        if not token or not token.strip():
            raise PreconditionError("Not authenticated. Please log in again.", parameter="token")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._token = token.strip()
        self._http_client = http_client

    @classmethod
    def from_settings(cls, token: Optional[str], settings=None, http_client=None) -> "RegistrationApiClient":
        if settings is None:
            from config import get_settings
            settings = get_settings()
        return cls(
            base_url=settings.REGISTRATION_API_URL,
            token=token,
            timeout=settings.REGISTRATION_API_TIMEOUT,
            http_client=http_client,
        )

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }

    # ==================== ENDPOINTS ====================

    async def check_registration(self, entity_id: str, event: EventRef) -> Dict[str, bool]:
        """Registration + payment status of one entity for one event."""
        path = (
            f"/registrations/check/{quote(entity_id, safe='')}"
            f"/{quote(event.name, safe='')}/{event.year}"
        )
        data = await self._request("GET", path, error_cls=ApiError)
        return {
            "is_registered": data.get("isRegistered") is True,
            "is_paid": data.get("isPaid") is True,
        }

    async def create_entities_batch(
        self,
        entities: List[DraftEntity],
        event: EventRef
    ) -> List[Dict[str, Any]]:
        """Create several entities in one request; returns the created payloads."""
        body = {
            "eventName": event.name,
            "eventYear": event.year,
            "entities": [_entity_body(e) for e in entities],
            "agreeToTerms": True,
        }
        data = await self._request(
            "POST", "/register/tournament-team-multiple", json=body, error_cls=CreationError
        )
        if not data.get("success"):
            raise CreationError(data.get("error") or "Batch creation failed - no entities returned")
        created = data.get("entities")
        if not isinstance(created, list):
            raise CreationError("Batch creation returned no entity list")
        return [item for item in created if isinstance(item, dict)]

    async def create_entity_single(self, entity: DraftEntity, event: EventRef) -> Dict[str, Any]:
        """Create one entity; returns the created payload."""
        body = {
            "eventName": event.name,
            "eventYear": event.year,
            "entity": _entity_body(entity),
            "agreeToTerms": True,
        }
        data = await self._request(
            "POST", "/register/tournament-team", json=body, error_cls=CreationError
        )
        created = data.get("entity")
        if not data.get("success") or not isinstance(created, dict):
            raise CreationError(data.get("error") or f"Creation of '{entity.name}' failed - no entity returned")
        return created

    async def register_existing_entity(self, entity: DraftEntity, event: EventRef) -> Dict[str, Any]:
        """Register an entity that already exists server-side for the event."""
        body = {
            "entityId": entity.remote_id,
            "eventName": event.name,
            "eventYear": event.year,
            "level": entity.level,
        }
        data = await self._request(
            "POST", "/teams/register-tournament", json=body, error_cls=CreationError
        )
        registered = data.get("entity")
        if not isinstance(registered, dict):
            raise CreationError(f"Registration of '{entity.name}' returned no entity")
        return registered

    # ==================== TRANSPORT ====================

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        error_cls=ApiError
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            if self._http_client is not None:
                response = await self._http_client.request(
                    method, url, json=json, headers=self.headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(method, url, json=json, headers=self.headers)
        except httpx.TimeoutException:
            raise error_cls("Request timed out. Please try again later.")
        except httpx.RequestError as e:
            raise error_cls(f"Cannot reach registration backend: {str(e)[:100]}")

        if response.status_code not in (200, 201):
            raise error_cls(
                f"HTTP {response.status_code}: {self._error_text(response)}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            raise error_cls("Malformed response from registration backend", status_code=response.status_code)
        if not isinstance(data, dict):
            raise error_cls("Unexpected response shape from registration backend", status_code=response.status_code)
        return data

    @staticmethod
    def _error_text(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text[:100]
        if isinstance(data, dict):
            return str(data.get("message") or data.get("error") or data)[:100]
        return str(data)[:100]
