"""
Creation Strategies and Retry Policy Runner

The fallback chain for turning draft entities into remote entities, written
as an ordered list of strategies. Each strategy declares when it applies and
which failures it recovers from; the runner walks the list, handing every
strategy only the entities that are still unsaved.

Creation policy:  batch -> single (batch failed outright, or only one entity)
                  -> per-item retry (batch failed for a subset)
Existing policy:  register-existing (entity has a stale remote id)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Sequence, Tuple, Type

from registration.client import RegistrationApiClient
from registration.errors import CreationError, DuplicateNameError, InvalidTransitionError
from registration.models import DraftEntity, EventRef, PaymentStatus, merge_server_entity, normalized_name
from registration.validation import is_valid_remote_id

logger = logging.getLogger(__name__)


class OutcomeKind(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class TierOutcome:
    """What one strategy achieved for the entities it was handed."""
    strategy: str
    created: List[DraftEntity] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def kind(self) -> OutcomeKind:
        if not self.failed:
            return OutcomeKind.COMPLETE
        if self.created:
            return OutcomeKind.PARTIAL
        return OutcomeKind.FAILED


@dataclass
class CreationContext:
    client: RegistrationApiClient
    event: EventRef
    retry_pause_seconds: float = 0.3
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep


@dataclass
class PolicyResult:
    created: List[DraftEntity] = field(default_factory=list)
    unsaved: Dict[str, str] = field(default_factory=dict)
    attempts: List[TierOutcome] = field(default_factory=list)


def find_duplicate_names(entities: Sequence[DraftEntity]) -> List[DraftEntity]:
    """All entities whose trimmed, case-folded name occurs more than once."""
    groups: Dict[str, List[DraftEntity]] = {}
    for entity in entities:
        groups.setdefault(entity.name_key, []).append(entity)
    return [e for members in groups.values() if len(members) > 1 for e in members]


def _accept_created(draft: DraftEntity, payload: Dict) -> DraftEntity:
    """
    Merge a server payload; the result must carry a remote id and be at
    least pending. A server-reported paid status is kept.
    """
    merged = merge_server_entity(draft, payload, default_status=PaymentStatus.PENDING)
    if not merged.has_remote_id:
        raise CreationError(f"'{draft.name}' was created but no id was returned")
    if merged.payment_status.rank < PaymentStatus.PENDING.rank:
        merged = merged.with_payment_status(PaymentStatus.PENDING)
    return merged


# ==================== STRATEGIES ====================

class CreationStrategy:
    """Base class: one tier of the fallback chain."""

    name = "strategy"
    recoverable_errors: Tuple[Type[Exception], ...] = (CreationError,)

    def is_applicable(self, pending: Sequence[DraftEntity], history: Sequence[TierOutcome]) -> bool:
        raise NotImplementedError

    async def execute(self, pending: Sequence[DraftEntity], ctx: CreationContext) -> TierOutcome:
        raise NotImplementedError

    async def _one_by_one(
        self,
        pending: Sequence[DraftEntity],
        ctx: CreationContext,
        call: Callable[[DraftEntity], Awaitable[Dict]],
        pause_between: bool = False
    ) -> TierOutcome:
        """Sequential per-entity calls so each failure is attributed to one entity."""
        outcome = TierOutcome(strategy=self.name)
        for index, entity in enumerate(pending):
            if pause_between and index > 0:
                await ctx.sleep(ctx.retry_pause_seconds)
            try:
                payload = await call(entity)
                outcome.created.append(_accept_created(entity, payload))
            except (CreationError, InvalidTransitionError) as e:
                logger.warning(
                    f"[{self.name}] '{entity.name}' failed: {e}",
                    extra={"local_key": entity.local_key, "strategy": self.name}
                )
                outcome.failed[entity.local_key] = str(e)
        return outcome


class RegisterExistingStrategy(CreationStrategy):
    """Register entities that already have a remote id but no registration."""

    name = "register_existing"

    def is_applicable(self, pending, history) -> bool:
        return not history and all(e.has_remote_id for e in pending)

    async def execute(self, pending, ctx) -> TierOutcome:
        async def register(entity: DraftEntity) -> Dict:
            if not is_valid_remote_id(entity.remote_id):
                raise CreationError(f"Invalid id format for '{entity.name}': {entity.remote_id}")
            return await ctx.client.register_existing_entity(entity, ctx.event)

        return await self._one_by_one(pending, ctx, register)


class BatchCreationStrategy(CreationStrategy):
    """One request for all entities; preferred when more than one needs creating."""

    name = "batch"

    def is_applicable(self, pending, history) -> bool:
        return not history and len(pending) > 1

    async def execute(self, pending, ctx) -> TierOutcome:
        duplicates = find_duplicate_names(pending)
        if duplicates:
            raise DuplicateNameError(duplicates)

        payloads = await ctx.client.create_entities_batch(list(pending), ctx.event)

        by_name: Dict[str, List[Dict]] = {}
        for payload in payloads:
            by_name.setdefault(normalized_name(payload.get("name")), []).append(payload)

        outcome = TierOutcome(strategy=self.name)
        for entity in pending:
            matches = by_name.get(entity.name_key) or []
            if not matches:
                outcome.failed[entity.local_key] = "Not returned by batch creation"
                continue
            try:
                outcome.created.append(_accept_created(entity, matches.pop(0)))
            except (CreationError, InvalidTransitionError) as e:
                outcome.failed[entity.local_key] = str(e)

        if outcome.failed:
            logger.warning(
                f"Batch created {len(outcome.created)} of {len(pending)} entities",
                extra={"created_count": len(outcome.created), "requested": len(pending)}
            )
        return outcome


class SingleCreationStrategy(CreationStrategy):
    """Single-item endpoint, sequentially, for one entity or after an outright batch failure."""

    name = "single"

    def is_applicable(self, pending, history) -> bool:
        if not history:
            return len(pending) == 1
        last = history[-1]
        return last.strategy == BatchCreationStrategy.name and last.kind == OutcomeKind.FAILED

    async def execute(self, pending, ctx) -> TierOutcome:
        return await self._one_by_one(
            pending, ctx, lambda entity: ctx.client.create_entity_single(entity, ctx.event)
        )


class PerItemRetryStrategy(CreationStrategy):
    """Retry the subset a batch did not create, one at a time with a pause."""

    name = "per_item_retry"

    def is_applicable(self, pending, history) -> bool:
        if not history:
            return False
        last = history[-1]
        return last.strategy == BatchCreationStrategy.name and last.kind == OutcomeKind.PARTIAL

    async def execute(self, pending, ctx) -> TierOutcome:
        return await self._one_by_one(
            pending,
            ctx,
            lambda entity: ctx.client.create_entity_single(entity, ctx.event),
            pause_between=True,
        )


# ==================== RUNNER ====================

class RetryPolicyRunner:
    """Executes an ordered list of strategies until nothing is left pending."""

    def __init__(self, strategies: Sequence[CreationStrategy]):
        self.strategies = list(strategies)

    async def run(self, entities: Sequence[DraftEntity], ctx: CreationContext) -> PolicyResult:
        result = PolicyResult()
        pending = list(entities)
        last_errors: Dict[str, str] = {}

        for strategy in self.strategies:
            if not pending:
                break
            if not strategy.is_applicable(pending, result.attempts):
                continue

            logger.info(
                f"Running {strategy.name} for {len(pending)} entity(ies)",
                extra={"strategy": strategy.name, "count": len(pending)}
            )
            try:
                outcome = await strategy.execute(pending, ctx)
            except strategy.recoverable_errors as e:
                logger.warning(f"{strategy.name} failed outright: {e}")
                outcome = TierOutcome(
                    strategy=strategy.name,
                    failed={entity.local_key: str(e) for entity in pending},
                )

            result.attempts.append(outcome)
            result.created.extend(outcome.created)
            last_errors.update(outcome.failed)
            pending = [e for e in pending if e.local_key in outcome.failed]

        for entity in pending:
            result.unsaved[entity.local_key] = last_errors.get(
                entity.local_key, "No applicable creation strategy"
            )
        return result


def creation_policy() -> RetryPolicyRunner:
    return RetryPolicyRunner([
        BatchCreationStrategy(),
        SingleCreationStrategy(),
        PerItemRetryStrategy(),
    ])


def existing_policy() -> RetryPolicyRunner:
    return RetryPolicyRunner([RegisterExistingStrategy()])
