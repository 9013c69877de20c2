"""
Registration Error Taxonomy

Exceptions raised by the reconciliation engine. Validation failures and
resolver failures are NOT exceptions: they are returned as data so the
caller can render field-level messages or degrade gracefully.

- PreconditionError: missing credential / event reference (fatal, before I/O)
- DuplicateNameError: two draft entities collide on name (local, before I/O)
- ApiError / CreationError: transport or server failure on an endpoint
- InvalidTransitionError: remote id reassignment, payment regression,
  illegal engine state change
"""

from typing import Any, Dict, List, Optional


class RegistrationError(Exception):
    """Base class for all registration engine errors."""

    code = "registration_error"

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": str(self)}


class PreconditionError(RegistrationError):
    """A required input (credential, event reference) is missing."""

    code = "precondition_failed"

    def __init__(self, message: str, parameter: Optional[str] = None):
        super().__init__(message)
        self.parameter = parameter

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "parameter": self.parameter, "message": str(self)}


class DuplicateNameError(RegistrationError):
    """
    Two or more draft entities share a name (case-insensitive, trimmed).

    Raised before any network call. `entities` holds every colliding draft,
    not just the second occurrence.
    """

    code = "duplicate_name"

    def __init__(self, entities: List[Any]):
        self.entities = list(entities)
        names = sorted({e.name.strip() for e in self.entities})
        super().__init__(
            f"Duplicate names found in your request: {', '.join(names)}. "
            "Please use unique names for each entry."
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": str(self),
            "entities": [
                {"local_key": e.local_key, "name": e.name} for e in self.entities
            ],
        }


class ApiError(RegistrationError):
    """An endpoint call failed (transport error, non-2xx, malformed body)."""

    code = "api_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CreationError(ApiError):
    """A create/register endpoint failed; recoverable by the next tier."""

    code = "creation_failed"


class InvalidTransitionError(RegistrationError):
    """An invariant-breaking state change was attempted."""

    code = "invalid_transition"
