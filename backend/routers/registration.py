"""
Registration Router

API endpoints wrapping the registration reconciliation engine.

Endpoints:
- POST /api/registration/continue - Reconcile, save and price a draft list
- POST /api/registration/summary - Payment summary only (no I/O)
- POST /api/registration/validate - Field-level validation errors (no I/O)

Sessions:
- X-Session-ID selects the engine for one user session; a second continue
  request for the same session while a pass is running gets 409
- The bearer credential is forwarded to the registration backend and is
  never logged
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from config import get_settings
from logging_config import clear_registration_context, set_registration_context
from registration.engine import ClientFactory, RegistrationEngine
from registration.errors import RegistrationError
from registration.models import DraftEntity, EventRef
from registration.payment import calculate_payment_summary
from registration.validation import has_valid_entity, resolve_divisions, validate_entities
from sentry_integration import set_tag
from utils.validation_errors import (
    raise_pass_in_flight,
    raise_registration_error,
    raise_validation_error,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/registration", tags=["Registration"])

security = HTTPBearer(auto_error=False)


# ==================== REQUEST MODELS ====================

class ContinueRequest(BaseModel):
    """Draft list submitted by the "continue to payment" action."""
    event: Optional[EventRef] = Field(None, description="Tournament name and year")
    entities: List[DraftEntity] = Field(default_factory=list, description="Draft teams or players")
    fee: Optional[Decimal] = Field(None, ge=0, description="Per-entity fee override")
    divisions: Optional[List[str]] = Field(None, description="Event divisions override")

    class Config:
        json_schema_extra = {
            "example": {
                "event": {"name": "Summer Classic", "year": 2025},
                "entities": [
                    {
                        "kind": "team",
                        "name": "Hawks",
                        "grade": "5",
                        "sex": "Male",
                        "level": "Gold"
                    }
                ]
            }
        }


class SummaryRequest(BaseModel):
    entities: List[DraftEntity] = Field(default_factory=list)
    fee: Optional[Decimal] = Field(None, ge=0)
    divisions: Optional[List[str]] = None


class ValidateRequest(BaseModel):
    entities: List[DraftEntity] = Field(default_factory=list)
    divisions: Optional[List[str]] = None


# ==================== SESSION ENGINES ====================

class EngineRegistry:
    """
    One RegistrationEngine per session id, created on first use.

    Only engines with a pass in flight are kept between requests; idle or
    finished engines are dropped whenever another session is looked up.
    """

    def __init__(self, client_factory: Optional[ClientFactory] = None):
        self.client_factory = client_factory
        self._engines: Dict[str, RegistrationEngine] = {}

    def get(self, session_id: str) -> RegistrationEngine:
        self._engines = {
            key: engine for key, engine in self._engines.items()
            if engine.in_flight or key == session_id
        }
        engine = self._engines.get(session_id)
        if engine is None:
            settings = get_settings()
            engine = RegistrationEngine(
                client_factory=self.client_factory,
                per_entity_fee=settings.DEFAULT_ENTITY_FEE,
                divisions=settings.divisions_list,
                retry_pause_seconds=settings.RETRY_PAUSE_SECONDS,
            )
            self._engines[session_id] = engine
        return engine

    def release(self, session_id: str) -> None:
        """Drop the session's engine unless a pass is still running on it."""
        engine = self._engines.get(session_id)
        if engine is not None and not engine.in_flight:
            del self._engines[session_id]

    def __len__(self) -> int:
        return len(self._engines)


_registry = EngineRegistry()


def get_engine_registry() -> EngineRegistry:
    return _registry


# ==================== ENDPOINTS ====================

@router.post("/continue")
async def continue_to_payment(
    request: ContinueRequest,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_session_id: Optional[str] = Header(None),
    registry: EngineRegistry = Depends(get_engine_registry),
):
    """
    Reconcile, save and price the submitted drafts.

    Returns:
    - 200: ContinueResult (entities, buckets, unsaved, summary, checkout)
    - 400: Event information missing
    - 401: No bearer credential
    - 409: A pass is already running for this session
    - 422: Duplicate entity names (every colliding entity listed)
    - 502: Registration backend failure outside the fallback chain
    """
    if not x_session_id or not x_session_id.strip():
        raise_validation_error("X-Session-ID header is required", {"parameter": "X-Session-ID"})

    session_id = x_session_id.strip()
    engine = registry.get(session_id)
    token = credentials.credentials if credentials else None

    set_registration_context(session_id, request.event.label if request.event else None)
    if request.event:
        set_tag("event", request.event.label)
    try:
        result = await engine.continue_to_payment(
            request.entities,
            request.event,
            token,
            per_entity_fee=request.fee,
            divisions=request.divisions,
        )
    except RegistrationError as e:
        logger.warning(f"Continue rejected for session {session_id}: {e.code}")
        raise_registration_error(e)
    finally:
        clear_registration_context()
        registry.release(session_id)

    if result is None:
        raise_pass_in_flight()

    return result.to_dict()


@router.post("/summary")
async def payment_summary(request: SummaryRequest):
    """Recompute the payment summary for a draft list."""
    settings = get_settings()
    fee = request.fee if request.fee is not None else settings.DEFAULT_ENTITY_FEE
    summary = calculate_payment_summary(
        request.entities, fee, request.divisions or settings.divisions_list
    )
    return summary.to_dict()


@router.post("/validate")
async def validate(request: ValidateRequest):
    """Field errors keyed by local_key, plus whether continue is allowed."""
    allowed = resolve_divisions(request.divisions or get_settings().divisions_list)
    return {
        "can_continue": has_valid_entity(request.entities, allowed),
        "divisions": list(allowed),
        "errors": validate_entities(request.entities, allowed),
    }
