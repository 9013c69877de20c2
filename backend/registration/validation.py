"""
Entity Validation

Pure checks deciding whether a draft entity is complete enough to register
and pay for. Called on every render by the UI, so it stays side-effect free
and cheap.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from registration.models import DEFAULT_DIVISIONS, VALID_SEXES, DraftEntity

# Backend identifiers are 24-character hex object ids
REMOTE_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")


@dataclass
class ValidationResult:
    """Outcome of validating one entity."""
    is_valid: bool
    errors: Dict[str, str] = field(default_factory=dict)


def resolve_divisions(divisions: Optional[Iterable[str]]) -> Sequence[str]:
    """Event-configured divisions, or the defaults when none are configured."""
    configured = [d for d in (divisions or []) if d and d.strip()]
    return tuple(configured) if configured else DEFAULT_DIVISIONS


def validate_entity(
    entity: DraftEntity,
    divisions: Optional[Iterable[str]] = None
) -> ValidationResult:
    """
    Validate identity fields of a draft entity.

    Valid iff name and grade are non-blank, sex is one of the closed set and
    level is one of the event's divisions.
    """
    allowed = resolve_divisions(divisions)
    errors: Dict[str, str] = {}

    if not (entity.name or "").strip():
        errors["name"] = "Name is required"
    if not (entity.grade or "").strip():
        errors["grade"] = "Grade is required"
    if entity.sex not in VALID_SEXES:
        errors["sex"] = f"Gender must be one of: {', '.join(VALID_SEXES)}"
    if not entity.level or entity.level not in allowed:
        errors["level"] = f"Valid division is required ({', '.join(allowed)})"

    return ValidationResult(is_valid=not errors, errors=errors)


def is_valid_entity(entity: DraftEntity, divisions: Optional[Iterable[str]] = None) -> bool:
    return validate_entity(entity, divisions).is_valid


def validate_entities(
    entities: Iterable[DraftEntity],
    divisions: Optional[Iterable[str]] = None
) -> Dict[str, Dict[str, str]]:
    """Field errors keyed by local_key, for invalid entities only."""
    allowed = resolve_divisions(divisions)
    report: Dict[str, Dict[str, str]] = {}
    for entity in entities:
        result = validate_entity(entity, allowed)
        if not result.is_valid:
            report[entity.local_key] = result.errors
    return report


def has_valid_entity(
    entities: Iterable[DraftEntity],
    divisions: Optional[Iterable[str]] = None
) -> bool:
    """Gate for the continue action: at least one complete entity."""
    allowed = resolve_divisions(divisions)
    return any(is_valid_entity(e, allowed) for e in entities)


def valid_entities(
    entities: Iterable[DraftEntity],
    divisions: Optional[Iterable[str]] = None
) -> List[DraftEntity]:
    allowed = resolve_divisions(divisions)
    return [e for e in entities if is_valid_entity(e, allowed)]


def is_valid_remote_id(value: Optional[str]) -> bool:
    return bool(value) and bool(REMOTE_ID_PATTERN.match(value))
