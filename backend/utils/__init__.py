"""
Utils Package

Provides utility modules for:
- validation_errors: Structured error bodies for the registration API
"""

from .validation_errors import (
    ValidationErrorResponse,
    status_code_for,
    raise_registration_error,
    raise_pass_in_flight,
    raise_validation_error,
)

__all__ = [
    'ValidationErrorResponse',
    'status_code_for',
    'raise_registration_error',
    'raise_pass_in_flight',
    'raise_validation_error',
]
