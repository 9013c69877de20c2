"""
Registration Status Resolver

Asks the backend whether an entity with a known remote id is already
registered and/or paid for the target event. Failures never propagate: they
come back as a tagged StatusResult so the reconciler can decide the
fallback. All lookups of one pass are issued together (fan-out) and awaited
together (fan-in), so a pass costs one round trip regardless of size.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from registration.client import RegistrationApiClient
from registration.errors import ApiError
from registration.models import DraftEntity, EventRef
from registration.validation import is_valid_remote_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistrationStatus:
    is_registered: bool
    is_paid: bool


NOT_REGISTERED = RegistrationStatus(is_registered=False, is_paid=False)


@dataclass(frozen=True)
class ResolverError:
    """Why a status lookup failed."""
    remote_id: str
    reason: str
    status_code: Optional[int] = None


@dataclass(frozen=True)
class StatusResult:
    """Either a resolved status or the error that prevented resolution."""
    status: Optional[RegistrationStatus] = None
    error: Optional[ResolverError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.status is not None

    def status_or_default(self) -> RegistrationStatus:
        return self.status if self.ok else NOT_REGISTERED


class StatusResolver:
    """Resolves registration status for entities with a remote identity."""

    def __init__(self, client: RegistrationApiClient):
        self.client = client

    async def resolve(self, remote_id: str, event: EventRef) -> StatusResult:
        if not is_valid_remote_id(remote_id):
            return StatusResult(error=ResolverError(remote_id or "", "Invalid remote id format"))

        try:
            data = await self.client.check_registration(remote_id, event)
        except ApiError as e:
            logger.warning(
                f"Registration check failed for {remote_id}: {e}",
                extra={"remote_id": remote_id, "status_code": e.status_code}
            )
            return StatusResult(error=ResolverError(remote_id, str(e), e.status_code))
        except Exception as e:
            logger.warning(f"Registration check errored for {remote_id}: {e}")
            return StatusResult(error=ResolverError(remote_id, f"Unexpected error: {str(e)[:100]}"))

        return StatusResult(status=RegistrationStatus(
            is_registered=data.get("is_registered") is True,
            is_paid=data.get("is_paid") is True,
        ))

    async def resolve_many(
        self,
        entities: Iterable[DraftEntity],
        event: EventRef
    ) -> Dict[str, StatusResult]:
        """
        Resolve every entity that has a remote id, concurrently.

        Returns results keyed by local_key. Entities without a remote id are
        absent from the result; each entity is looked up at most once.
        """
        targets: List[DraftEntity] = []
        seen = set()
        for entity in entities:
            if not entity.has_remote_id or entity.local_key in seen:
                continue
            seen.add(entity.local_key)
            targets.append(entity)

        if not targets:
            return {}

        results = await asyncio.gather(
            *(self.resolve(entity.remote_id, event) for entity in targets)
        )

        failed = sum(1 for r in results if not r.ok)
        logger.info(
            f"Resolved {len(targets)} registration status(es), {failed} failed",
            extra={"event": event.label, "resolved": len(targets), "failed": failed}
        )
        return {entity.local_key: result for entity, result in zip(targets, results)}
