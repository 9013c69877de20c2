"""
Payment Summary Calculator

total = per-entity fee x number of valid, unpaid entities.

Recomputed from scratch on every call; the entity set and its validity can
change between calls. Money is held as Decimal and converted to cents only
for the checkout payload.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Union

from registration.errors import PreconditionError
from registration.models import DraftEntity, EventRef
from registration.validation import is_valid_entity, resolve_divisions

DEFAULT_ENTITY_FEE = Decimal("425")

Amount = Union[int, float, str, Decimal]


def to_money(value: Amount) -> Decimal:
    amount = value if isinstance(value, Decimal) else Decimal(str(value))
    if amount < 0:
        raise ValueError(f"Fee cannot be negative: {value}")
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PaymentSummary:
    per_entity_fee: Decimal
    entity_count: int
    total: Decimal

    @property
    def amount_in_cents(self) -> int:
        return int((self.total * 100).to_integral_value(rounding=ROUND_HALF_UP))

    @property
    def can_continue(self) -> bool:
        return self.entity_count > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "per_entity_fee": str(self.per_entity_fee),
            "entity_count": self.entity_count,
            "total": str(self.total),
            "amount_in_cents": self.amount_in_cents,
            "can_continue": self.can_continue,
        }


def payable_entities(
    entities: Iterable[DraftEntity],
    divisions: Optional[Iterable[str]] = None
) -> List[DraftEntity]:
    """Entities that count toward the total: valid and not paid."""
    allowed = resolve_divisions(divisions)
    return [e for e in entities if not e.is_paid and is_valid_entity(e, allowed)]


def calculate_payment_summary(
    entities: Iterable[DraftEntity],
    per_entity_fee: Amount = DEFAULT_ENTITY_FEE,
    divisions: Optional[Iterable[str]] = None
) -> PaymentSummary:
    fee = to_money(per_entity_fee)
    count = len(payable_entities(entities, divisions))
    total = fee * count if count else Decimal("0.00")
    return PaymentSummary(per_entity_fee=fee, entity_count=count, total=to_money(total))


def build_checkout_payload(
    summary: PaymentSummary,
    entities: Iterable[DraftEntity],
    event: EventRef,
    divisions: Optional[Iterable[str]] = None
) -> Dict[str, Any]:
    """
    Payload handed to the checkout step.

    Only payable entities that carry a remote id are included; the remote id
    is the payment step's sole correctness gate.
    """
    if not summary.can_continue:
        raise PreconditionError("There is nothing to pay for.", parameter="entities")

    payable = [e for e in payable_entities(entities, divisions) if e.has_remote_id]
    if len(payable) != summary.entity_count:
        raise PreconditionError(
            "Some entities have not been saved yet. Please try again.",
            parameter="entities"
        )

    return {
        "amount": str(summary.total),
        "amount_in_cents": summary.amount_in_cents,
        "entity_count": summary.entity_count,
        "per_entity_amount": str(summary.per_entity_fee),
        "breakdown": {
            "base_price": str(summary.per_entity_fee),
            "subtotal": str(summary.total),
            "total": str(summary.total),
        },
        "event": {"name": event.name, "year": event.year},
        "entities": [
            {
                "remote_id": e.remote_id,
                "local_key": e.local_key,
                "kind": e.kind.value,
                "name": e.name.strip(),
                "level": e.level,
            }
            for e in payable
        ],
    }
