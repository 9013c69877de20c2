"""
Structured Error Responses

Standardized error bodies for the registration API so the UI can tell
field validation failures apart from backend connectivity issues.

Error Response Format:
{
    "error": "missing_parameter" | "invalid_parameter" | "validation_error"
             | "duplicate_name" | "pass_in_flight" | "api_error",
    "parameter": "event",
    "message": "Event information is missing."
}
"""

from fastapi import HTTPException, status
from typing import Any, Dict, Optional

from registration.errors import (
    ApiError,
    DuplicateNameError,
    PreconditionError,
    RegistrationError,
)


class ValidationErrorResponse:
    """Structured error response builder."""

    @staticmethod
    def missing_parameter(parameter: str, message: Optional[str] = None) -> dict:
        """
        Create a missing parameter error response.

        Args:
            parameter: Name of the missing parameter
            message: Optional custom message

        Returns:
            Structured error dict
        """
        return {
            "error": "missing_parameter",
            "parameter": parameter,
            "message": message or f"{parameter} is required"
        }

    @staticmethod
    def invalid_parameter(parameter: str, message: str, value: Optional[Any] = None) -> dict:
        response = {
            "error": "invalid_parameter",
            "parameter": parameter,
            "message": message
        }
        if value is not None:
            response["received_value"] = str(value)[:100]
        return response

    @staticmethod
    def validation_error(message: str, details: Optional[dict] = None) -> dict:
        response = {
            "error": "validation_error",
            "parameter": None,
            "message": message
        }
        if details:
            response["details"] = details
        return response

    @staticmethod
    def from_registration_error(error: RegistrationError) -> dict:
        """Body for an engine exception; DuplicateNameError lists every collision."""
        if isinstance(error, PreconditionError):
            return ValidationErrorResponse.missing_parameter(
                error.parameter or "request", str(error)
            )
        body = {"parameter": None, **error.to_dict()}
        if isinstance(error, DuplicateNameError):
            body["parameter"] = "entities"
        return body


def status_code_for(error: RegistrationError) -> int:
    """HTTP status for an engine exception."""
    if isinstance(error, PreconditionError):
        if error.parameter == "token":
            return status.HTTP_401_UNAUTHORIZED
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, DuplicateNameError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(error, ApiError):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_409_CONFLICT


def raise_registration_error(error: RegistrationError):
    """
    Raise HTTPException carrying the structured body for an engine exception.

    Raises:
        HTTPException with the mapped status code
    """
    headers: Optional[Dict[str, str]] = None
    code = status_code_for(error)
    if code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    raise HTTPException(
        status_code=code,
        detail=ValidationErrorResponse.from_registration_error(error),
        headers=headers,
    ) from error


def raise_pass_in_flight():
    """
    Raise HTTPException for a continue request that arrived mid-pass.

    Raises:
        HTTPException with 409 status
    """
    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "error": "pass_in_flight",
            "parameter": None,
            "message": "A registration pass is already in progress for this session."
        }
    )


def raise_validation_error(message: str, details: Optional[dict] = None):
    """
    Raise HTTPException with structured validation error.

    Raises:
        HTTPException with 422 status and structured error body
    """
    raise HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=ValidationErrorResponse.validation_error(message, details)
    )
