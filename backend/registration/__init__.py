"""
Registration Reconciliation Module

Turns a client-side list of draft teams or players into server-registered
entities that are ready to pay for:
- Field validation against the event's divisions
- Concurrent registration/payment status lookup
- Partitioning into settled / pending payment / to create
- Batch -> single -> per-item retry creation with no silent drops
- Decimal payment summary and checkout payload
"""

from registration.errors import (
    RegistrationError,
    PreconditionError,
    DuplicateNameError,
    ApiError,
    CreationError,
    InvalidTransitionError,
)
from registration.models import (
    EntityKind,
    PaymentStatus,
    EventRef,
    DraftEntity,
    merge_server_entity,
    normalized_name,
)
from registration.validation import (
    ValidationResult,
    validate_entity,
    validate_entities,
    has_valid_entity,
    is_valid_remote_id,
)
from registration.client import RegistrationApiClient
from registration.resolver import (
    RegistrationStatus,
    ResolverError,
    StatusResult,
    StatusResolver,
)
from registration.reconciler import ReconciliationPlan, EntityReconciler
from registration.strategies import (
    RetryPolicyRunner,
    creation_policy,
    existing_policy,
)
from registration.coordinator import (
    UnsavedEntity,
    PersistenceResult,
    PersistenceCoordinator,
)
from registration.payment import (
    PaymentSummary,
    calculate_payment_summary,
    build_checkout_payload,
)
from registration.engine import EngineState, ContinueResult, RegistrationEngine

__all__ = [
    # Errors
    'RegistrationError',
    'PreconditionError',
    'DuplicateNameError',
    'ApiError',
    'CreationError',
    'InvalidTransitionError',
    # Model
    'EntityKind',
    'PaymentStatus',
    'EventRef',
    'DraftEntity',
    'merge_server_entity',
    'normalized_name',
    # Validation
    'ValidationResult',
    'validate_entity',
    'validate_entities',
    'has_valid_entity',
    'is_valid_remote_id',
    # Backend
    'RegistrationApiClient',
    'RegistrationStatus',
    'ResolverError',
    'StatusResult',
    'StatusResolver',
    # Reconciliation and persistence
    'ReconciliationPlan',
    'EntityReconciler',
    'RetryPolicyRunner',
    'creation_policy',
    'existing_policy',
    'UnsavedEntity',
    'PersistenceResult',
    'PersistenceCoordinator',
    # Payment
    'PaymentSummary',
    'calculate_payment_summary',
    'build_checkout_payload',
    # Engine
    'EngineState',
    'ContinueResult',
    'RegistrationEngine',
]
