"""
Persistence Coordinator

Turns the reconciler's to_create bucket into remote entities and merges them
with the settled and pending-payment buckets.

Post-condition: every entity in the merged list carries a non-empty remote
id; every entity that could not be saved is listed in `unsaved` with the
reason from its last attempt. Nothing is dropped silently.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from registration.client import RegistrationApiClient
from registration.errors import PreconditionError
from registration.models import DraftEntity, EventRef
from registration.reconciler import ReconciliationPlan
from registration.strategies import (
    CreationContext,
    RetryPolicyRunner,
    TierOutcome,
    creation_policy,
    existing_policy,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnsavedEntity:
    local_key: str
    name: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"local_key": self.local_key, "name": self.name, "reason": self.reason}


@dataclass
class PersistenceResult:
    entities: List[DraftEntity] = field(default_factory=list)
    created: List[DraftEntity] = field(default_factory=list)
    unsaved: List[UnsavedEntity] = field(default_factory=list)
    attempts: List[TierOutcome] = field(default_factory=list)

    @property
    def fully_saved(self) -> bool:
        return not self.unsaved

    def attempt_log(self) -> List[Dict[str, Any]]:
        return [
            {
                "strategy": a.strategy,
                "outcome": a.kind.value,
                "created": len(a.created),
                "failed": len(a.failed),
            }
            for a in self.attempts
        ]


class PersistenceCoordinator:
    """Runs the creation policies and merges their results."""

    def __init__(
        self,
        client: Optional[RegistrationApiClient],
        retry_pause_seconds: float = 0.3,
        creation: Optional[RetryPolicyRunner] = None,
        existing: Optional[RetryPolicyRunner] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None
    ):
        self.client = client
        self.retry_pause_seconds = retry_pause_seconds
        self.creation = creation or creation_policy()
        self.existing = existing or existing_policy()
        self._sleep = sleep

    async def persist(self, plan: ReconciliationPlan, event: Optional[EventRef]) -> PersistenceResult:
        if self.client is None:
            raise PreconditionError("Not authenticated. Please log in again.", parameter="token")
        if event is None or not event.name:
            raise PreconditionError("Event information is missing.", parameter="event")

        ctx = CreationContext(
            client=self.client,
            event=event,
            retry_pause_seconds=self.retry_pause_seconds,
        )
        if self._sleep is not None:
            ctx.sleep = self._sleep

        result = PersistenceResult()
        reasons: Dict[str, str] = {}

        stale = plan.stale_remote
        if stale:
            outcome = await self.existing.run(stale, ctx)
            result.created.extend(outcome.created)
            result.attempts.extend(outcome.attempts)
            reasons.update(outcome.unsaved)

        fresh = plan.fresh
        if fresh:
            outcome = await self.creation.run(fresh, ctx)
            result.created.extend(outcome.created)
            result.attempts.extend(outcome.attempts)
            reasons.update(outcome.unsaved)

        for entity in plan.to_create:
            if entity.local_key in reasons:
                result.unsaved.append(UnsavedEntity(entity.local_key, entity.name, reasons[entity.local_key]))

        result.entities = merge_results(plan, result.created)

        log = logger.warning if result.unsaved else logger.info
        log(
            f"Persisted {len(result.created)} of {len(plan.to_create)} entities for {event.label}",
            extra={
                "event": event.label,
                "created_count": len(result.created),
                "unsaved": len(result.unsaved),
                "attempts": result.attempt_log(),
            }
        )
        return result


def merge_results(plan: ReconciliationPlan, created: List[DraftEntity]) -> List[DraftEntity]:
    """
    settled + pending_payment + created, restored to the caller's order.

    Entities lacking a remote id are never part of the merge, except settled
    ones which are carried through untouched.
    """
    saved = [e for e in created if e.has_remote_id]
    merged = list(plan.settled) + list(plan.pending_payment) + saved
    fallback = len(plan.order)
    return sorted(merged, key=lambda e: plan.order.get(e.local_key, fallback))
