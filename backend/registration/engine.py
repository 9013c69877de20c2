"""
Registration Engine

Owns one reconciliation-and-save pass per user session:

    drafts -> validation -> reconciler (resolver fan-out) -> persistence
           -> merged list -> payment summary -> checkout payload

State is a single EngineState value with an explicit transition table.
A call that arrives while a pass is in flight (a double-click) is ignored,
not queued. There is no cancellation: a caller that navigates away checks
its own liveness before applying the result.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from registration.client import RegistrationApiClient
from registration.coordinator import PersistenceCoordinator, UnsavedEntity
from registration.errors import (
    DuplicateNameError,
    InvalidTransitionError,
    PreconditionError,
    RegistrationError,
)
from registration.models import DraftEntity, EventRef
from registration.payment import (
    DEFAULT_ENTITY_FEE,
    Amount,
    PaymentSummary,
    build_checkout_payload,
    calculate_payment_summary,
)
from registration.reconciler import EntityReconciler
from registration.resolver import StatusResolver
from registration.strategies import find_duplicate_names
from registration.validation import (
    has_valid_entity,
    resolve_divisions,
    valid_entities,
    validate_entities,
)
from sentry_integration import capture_exception, capture_message

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    IDLE = "idle"
    RECONCILING = "reconciling"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


ALLOWED_TRANSITIONS = {
    EngineState.IDLE: {EngineState.RECONCILING, EngineState.FAILED},
    EngineState.RECONCILING: {EngineState.PERSISTING, EngineState.DONE, EngineState.FAILED},
    EngineState.PERSISTING: {EngineState.DONE, EngineState.FAILED},
    EngineState.DONE: {EngineState.RECONCILING, EngineState.FAILED},
    EngineState.FAILED: {EngineState.RECONCILING, EngineState.FAILED},
}

ACTIVE_STATES = {EngineState.RECONCILING, EngineState.PERSISTING}


class RegistrationAuditEvent:
    """Log event names for a registration pass."""
    PASS_STARTED = "registration.pass_started"
    PASS_IGNORED = "registration.pass_ignored"
    RECONCILED = "registration.reconciled"
    PERSISTED = "registration.persisted"
    PASS_COMPLETED = "registration.pass_completed"
    PASS_FAILED = "registration.pass_failed"


def log_registration_event(event_type: str, details: Dict[str, Any], level: int = logging.INFO):
    """Log a registration event; credentials never appear in `details`."""
    log_entry = {
        "event": event_type,
        "details": details,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    logger.log(level, f"Registration event: {event_type}", extra=log_entry)


@dataclass
class ContinueResult:
    """Everything the caller needs after a "continue to payment" action."""
    entities: List[DraftEntity] = field(default_factory=list)
    settled: List[DraftEntity] = field(default_factory=list)
    pending_payment: List[DraftEntity] = field(default_factory=list)
    created: List[DraftEntity] = field(default_factory=list)
    unsaved: List[UnsavedEntity] = field(default_factory=list)
    validation_errors: Dict[str, Dict[str, str]] = field(default_factory=dict)
    notices: List[str] = field(default_factory=list)
    summary: Optional[PaymentSummary] = None
    checkout: Optional[Dict[str, Any]] = None
    attempts: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def can_proceed(self) -> bool:
        """True when there is something to pay and every draft was saved."""
        return (
            self.checkout is not None
            and not self.unsaved
            and not self.validation_errors
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entities": [e.model_dump(mode="json") for e in self.entities],
            "settled": [e.local_key for e in self.settled],
            "pending_payment": [e.local_key for e in self.pending_payment],
            "created": [e.local_key for e in self.created],
            "unsaved": [u.to_dict() for u in self.unsaved],
            "validation_errors": self.validation_errors,
            "notices": self.notices,
            "summary": self.summary.to_dict() if self.summary else None,
            "checkout": self.checkout,
            "attempts": self.attempts,
            "can_proceed": self.can_proceed,
        }


ClientFactory = Callable[[str], RegistrationApiClient]


class RegistrationEngine:
    """
    Coordinator for one user session.

    `client_factory` builds an API client for a bearer token; it raises
    PreconditionError for a missing token before any I/O happens.
    """

    def __init__(
        self,
        client_factory: Optional[ClientFactory] = None,
        per_entity_fee: Amount = DEFAULT_ENTITY_FEE,
        divisions: Optional[Iterable[str]] = None,
        retry_pause_seconds: float = 0.3,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None
    ):
        self.client_factory = client_factory or RegistrationApiClient.from_settings
        self.per_entity_fee = per_entity_fee
        self.divisions = list(divisions) if divisions else None
        self.retry_pause_seconds = retry_pause_seconds
        self._sleep = sleep
        self._state = EngineState.IDLE
        self.last_error: Optional[RegistrationError] = None

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def in_flight(self) -> bool:
        return self._state in ACTIVE_STATES

    def _transition(self, target: EngineState) -> None:
        if target not in ALLOWED_TRANSITIONS[self._state]:
            raise InvalidTransitionError(
                f"Cannot move registration engine from {self._state.value} to {target.value}"
            )
        logger.debug(f"Engine state {self._state.value} -> {target.value}")
        self._state = target

    async def continue_to_payment(
        self,
        drafts: Iterable[DraftEntity],
        event: Optional[EventRef],
        token: Optional[str],
        per_entity_fee: Optional[Amount] = None,
        divisions: Optional[Iterable[str]] = None
    ) -> Optional[ContinueResult]:
        """
        Reconcile, save and price the draft list.

        Returns None when a pass is already in flight. Raises
        PreconditionError (missing credential or event) and
        DuplicateNameError before any network call; the engine ends FAILED
        in both cases.
        """
        if self.in_flight:
            log_registration_event(
                RegistrationAuditEvent.PASS_IGNORED,
                {"state": self._state.value},
                level=logging.WARNING,
            )
            return None

        self._transition(EngineState.RECONCILING)
        self.last_error = None
        drafts = list(drafts)
        fee = per_entity_fee if per_entity_fee is not None else self.per_entity_fee
        allowed = resolve_divisions(divisions or self.divisions)

        try:
            if event is None or not event.name or not event.year:
                raise PreconditionError(
                    "Event information is missing. Please try again later.", parameter="event"
                )
            client = self.client_factory(token)

            log_registration_event(
                RegistrationAuditEvent.PASS_STARTED,
                {"event": event.label, "drafts": len(drafts)},
            )

            if not has_valid_entity(drafts, allowed):
                # Nothing valid: report field errors, no I/O
                result = ContinueResult(
                    entities=[],
                    validation_errors=validate_entities(drafts, allowed),
                    notices=["At least one complete entry is required."],
                    summary=calculate_payment_summary([], fee, allowed),
                )
                self._transition(EngineState.DONE)
                return result

            fresh = [
                e for e in valid_entities(drafts, allowed)
                if not e.has_remote_id and not e.is_paid
            ]
            duplicates = find_duplicate_names(fresh)
            if duplicates:
                raise DuplicateNameError(duplicates)

            reconciler = EntityReconciler(StatusResolver(client))
            plan = await reconciler.reconcile(drafts, event, allowed)
            log_registration_event(
                RegistrationAuditEvent.RECONCILED,
                {"event": event.label, **{k: len(v) for k, v in plan.partition_keys().items()}},
            )

            self._transition(EngineState.PERSISTING)
            coordinator = PersistenceCoordinator(
                client, retry_pause_seconds=self.retry_pause_seconds, sleep=self._sleep
            )
            persisted = await coordinator.persist(plan, event)
            log_registration_event(
                RegistrationAuditEvent.PERSISTED,
                {
                    "event": event.label,
                    "created": len(persisted.created),
                    "unsaved": len(persisted.unsaved),
                    "attempts": persisted.attempt_log(),
                },
            )

            summary = calculate_payment_summary(persisted.entities, fee, allowed)
            checkout = (
                build_checkout_payload(summary, persisted.entities, event, allowed)
                if summary.can_continue else None
            )

            result = ContinueResult(
                entities=persisted.entities,
                settled=plan.settled,
                pending_payment=plan.pending_payment,
                created=persisted.created,
                unsaved=persisted.unsaved,
                validation_errors=plan.validation_errors,
                notices=list(plan.already_paid_notices),
                summary=summary,
                checkout=checkout,
                attempts=persisted.attempt_log(),
            )

            if persisted.unsaved:
                capture_message(
                    f"{len(persisted.unsaved)} registration(s) could not be saved",
                    level="warning",
                    event=event.label,
                    unsaved=[u.to_dict() for u in persisted.unsaved],
                )

            self._transition(EngineState.DONE)
            log_registration_event(
                RegistrationAuditEvent.PASS_COMPLETED,
                {
                    "event": event.label,
                    "entities": len(result.entities),
                    "payable": summary.entity_count,
                    "total": str(summary.total),
                },
            )
            return result

        except RegistrationError as e:
            self.last_error = e
            self._transition(EngineState.FAILED)
            log_registration_event(
                RegistrationAuditEvent.PASS_FAILED,
                {"error": e.code, "message": str(e)},
                level=logging.WARNING,
            )
            raise
        except Exception as e:
            self._transition(EngineState.FAILED)
            log_registration_event(
                RegistrationAuditEvent.PASS_FAILED,
                {"error": type(e).__name__, "message": str(e)},
                level=logging.ERROR,
            )
            capture_exception(e)
            raise

    def payment_summary(
        self,
        entities: Iterable[DraftEntity],
        per_entity_fee: Optional[Amount] = None,
        divisions: Optional[Iterable[str]] = None
    ) -> PaymentSummary:
        fee = per_entity_fee if per_entity_fee is not None else self.per_entity_fee
        return calculate_payment_summary(entities, fee, divisions or self.divisions)
