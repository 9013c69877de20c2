"""
Registration Data Model

DraftEntity is the single record the engine moves through a reconciliation
pass. Teams and players are structurally identical here and are told apart
only by `kind`.

Records are frozen: every change produces a new instance through one of the
explicit constructors below, which enforce the remote id and payment status
invariants.
"""

import uuid
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from registration.errors import InvalidTransitionError


class EntityKind(str, Enum):
    TEAM = "team"
    PLAYER = "player"


class PaymentStatus(str, Enum):
    NOT_REGISTERED = "not-registered"
    PENDING = "pending"
    PAID = "paid"

    @property
    def rank(self) -> int:
        return _PAYMENT_ORDER.index(self)

    def can_advance_to(self, other: "PaymentStatus") -> bool:
        return other.rank >= self.rank


_PAYMENT_ORDER = [PaymentStatus.NOT_REGISTERED, PaymentStatus.PENDING, PaymentStatus.PAID]

VALID_SEXES = ("Male", "Female")
DEFAULT_DIVISIONS = ("Gold", "Silver")

# Client-owned fields; a server payload never overrides these on merge.
IDENTITY_FIELDS = ("name", "grade", "sex", "level")


def normalized_name(name: Optional[str]) -> str:
    """Name key used for duplicate detection and batch result matching."""
    return (name or "").strip().casefold()


class EventRef(BaseModel):
    """The event (tournament + year) an entity is being registered against."""
    name: str
    year: int

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return value.strip()

    @property
    def label(self) -> str:
        return f"{self.name} {self.year}"


class DraftEntity(BaseModel):
    """A team or player being assembled client-side and persisted server-side."""

    kind: EntityKind = EntityKind.TEAM
    local_key: str = Field(default_factory=lambda: uuid.uuid4().hex)
    remote_id: Optional[str] = None
    name: str = ""
    grade: str = ""
    sex: str = ""
    level: str = ""
    payment_status: PaymentStatus = PaymentStatus.NOT_REGISTERED
    event: Optional[EventRef] = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("remote_id")
    @classmethod
    def _blank_remote_id_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    @property
    def has_remote_id(self) -> bool:
        return bool(self.remote_id)

    @property
    def name_key(self) -> str:
        return normalized_name(self.name)

    def with_remote_id(self, remote_id: Optional[str]) -> "DraftEntity":
        """Assign the backend identifier. Assigned at most once."""
        remote_id = (remote_id or "").strip()
        if not remote_id:
            raise InvalidTransitionError(
                f"Entity {self.local_key} cannot be given an empty remote id"
            )
        if self.remote_id == remote_id:
            return self
        if self.remote_id:
            raise InvalidTransitionError(
                f"Entity {self.local_key} already has remote id {self.remote_id}; "
                f"refusing to reassign to {remote_id}"
            )
        return self.model_copy(update={"remote_id": remote_id})

    def with_payment_status(self, status: PaymentStatus) -> "DraftEntity":
        """Advance payment status; regressions are rejected."""
        status = PaymentStatus(status)
        if status == self.payment_status:
            return self
        if not self.payment_status.can_advance_to(status):
            raise InvalidTransitionError(
                f"Entity {self.local_key} payment status cannot go from "
                f"{self.payment_status.value} to {status.value}"
            )
        return self.model_copy(update={"payment_status": status})

    def for_event(self, event: EventRef) -> "DraftEntity":
        if self.event == event:
            return self
        return self.model_copy(update={"event": event})

    def identity(self) -> Dict[str, str]:
        return {field: getattr(self, field) for field in IDENTITY_FIELDS}


def extract_remote_id(payload: Optional[Dict[str, Any]]) -> Optional[str]:
    """Servers return the identifier as `_id` or `id`."""
    if not payload:
        return None
    value = payload.get("_id") or payload.get("id") or payload.get("remoteId")
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def merge_server_entity(
    draft: DraftEntity,
    server: Dict[str, Any],
    default_status: PaymentStatus = PaymentStatus.PENDING,
) -> DraftEntity:
    """
    Merge a server payload into a draft.

    Server wins for `remote_id` and `payment_status`, client wins for the
    identity fields. Both server values still pass through the invariant
    checks: an existing remote id is never replaced and payment status never
    moves backwards.
    """
    merged = draft
    remote_id = extract_remote_id(server)
    if remote_id:
        merged = merged.with_remote_id(remote_id)

    raw_status = server.get("paymentStatus") or server.get("payment_status")
    try:
        status = PaymentStatus(raw_status) if raw_status else default_status
    except ValueError:
        status = default_status
    if merged.payment_status.can_advance_to(status):
        merged = merged.with_payment_status(status)
    return merged
