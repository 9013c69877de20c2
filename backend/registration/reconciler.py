"""
Entity Reconciler

Partitions a draft list into disjoint buckets for one "continue to payment"
action:

- settled:          registered and paid; never mutated or charged again
- pending_payment:  registered, payment outstanding; keeps its remote id
- to_create:        not registered (fresh, or stale remote id used as hint)
- validation errors: incomplete entities, reported field by field

Status always comes from a fresh server lookup, so re-running after a partial
failure cannot create duplicates.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from registration.models import DraftEntity, EventRef, PaymentStatus
from registration.resolver import ResolverError, StatusResolver, StatusResult
from registration.validation import resolve_divisions, validate_entity

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationPlan:
    """Disjoint buckets produced by one reconciliation pass."""
    settled: List[DraftEntity] = field(default_factory=list)
    pending_payment: List[DraftEntity] = field(default_factory=list)
    to_create: List[DraftEntity] = field(default_factory=list)
    validation_errors: Dict[str, Dict[str, str]] = field(default_factory=dict)
    resolver_errors: List[ResolverError] = field(default_factory=list)
    already_paid_notices: List[str] = field(default_factory=list)
    # local_key -> position in the caller's list, used to restore ordering
    order: Dict[str, int] = field(default_factory=dict)

    @property
    def stale_remote(self) -> List[DraftEntity]:
        return [e for e in self.to_create if e.has_remote_id]

    @property
    def fresh(self) -> List[DraftEntity]:
        return [e for e in self.to_create if not e.has_remote_id]

    @property
    def valid_count(self) -> int:
        return len(self.settled) + len(self.pending_payment) + len(self.to_create)

    def partition_keys(self) -> Dict[str, List[str]]:
        return {
            "settled": [e.local_key for e in self.settled],
            "pending_payment": [e.local_key for e in self.pending_payment],
            "to_create": [e.local_key for e in self.to_create],
        }


class EntityReconciler:
    """Classifies each draft entity's required next action."""

    def __init__(self, resolver: StatusResolver):
        self.resolver = resolver

    async def reconcile(
        self,
        entities: Iterable[DraftEntity],
        event: EventRef,
        divisions: Optional[Iterable[str]] = None
    ) -> ReconciliationPlan:
        entities = [e.for_event(event) for e in entities]
        allowed = resolve_divisions(divisions)
        plan = ReconciliationPlan(order={e.local_key: i for i, e in enumerate(entities)})

        valid: List[DraftEntity] = []
        for entity in entities:
            result = validate_entity(entity, allowed)
            if result.is_valid:
                valid.append(entity)
            else:
                plan.validation_errors[entity.local_key] = result.errors

        statuses = await self.resolver.resolve_many(valid, event)

        for entity in valid:
            self._classify(entity, statuses.get(entity.local_key), plan)

        logger.info(
            f"Reconciled {len(entities)} entities for {event.label}",
            extra={
                "event": event.label,
                "settled": len(plan.settled),
                "pending_payment": len(plan.pending_payment),
                "to_create": len(plan.to_create),
                "invalid": len(plan.validation_errors),
                "resolver_errors": len(plan.resolver_errors),
            }
        )
        return plan

    def _classify(
        self,
        entity: DraftEntity,
        result: Optional[StatusResult],
        plan: ReconciliationPlan
    ) -> None:
        if result is not None and not result.ok:
            plan.resolver_errors.append(result.error)

        status = result.status_or_default() if result is not None else None

        if status is not None and status.is_registered and status.is_paid:
            plan.settled.append(entity.with_payment_status(PaymentStatus.PAID))
            plan.already_paid_notices.append(
                f"'{entity.name}' is already registered and paid for this event."
            )
            return

        # A locally paid entity is never resubmitted, even when the server
        # cannot confirm it right now.
        if entity.is_paid:
            logger.warning(
                f"Entity {entity.local_key} is marked paid but the server did not confirm it; "
                "keeping it settled",
                extra={"local_key": entity.local_key, "remote_id": entity.remote_id}
            )
            plan.settled.append(entity)
            plan.already_paid_notices.append(
                f"'{entity.name}' is already paid."
            )
            return

        if status is not None and status.is_registered:
            plan.pending_payment.append(entity.with_payment_status(PaymentStatus.PENDING))
            return

        if entity.has_remote_id:
            logger.info(
                f"Entity {entity.local_key} has remote id {entity.remote_id} but is not registered; "
                "queueing registration",
                extra={"local_key": entity.local_key, "remote_id": entity.remote_id}
            )
        plan.to_create.append(entity)
