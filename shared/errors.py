"""
Shared error handling for the Commerce Access Service.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    success: bool = False
    code: str
    message: str
    errors: Optional[List[Dict[str, Any]]] = None
    request_id: Optional[str] = None


class CommerceError(Exception):
    """Base exception for commerce services."""

    status_code = 400

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self.errors = errors
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    @property
    def public_message(self) -> str:
        """Message safe to return to the caller."""
        return self.message

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.public_message,
            errors=self.errors,
            request_id=request_id
        )


class ValidationError(CommerceError):
    """Malformed or missing input."""

    status_code = 400

    def __init__(self, message: str = "Validation errors", errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__("VALIDATION_ERROR", message, errors=errors)


class ConflictError(CommerceError):
    """Duplicate unique key."""

    status_code = 409

    def __init__(self, message: str = "Resource already exists", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFLICT_ERROR", message, details)


class AuthenticationError(CommerceError):
    """Missing, invalid, expired or revoked credential."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class NotFoundError(CommerceError):
    """Unknown entity id.

    Direct lookups answer 404; composite operations such as order placement
    raise it with ``status_code=400``.
    """

    status_code = 404

    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None,
                 status_code: Optional[int] = None):
        super().__init__("NOT_FOUND", message, details, status_code=status_code)


class BusinessRuleError(CommerceError):
    """A request that is well-formed but violates a business rule."""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("BUSINESS_RULE_ERROR", message, details)


class RateLimitError(CommerceError):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, message: str = "Too many requests, please try again later",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("RATE_LIMIT_ERROR", message, details)


class InfrastructureError(CommerceError):
    """Store or cache unavailable. Detail is logged, never returned."""

    status_code = 500

    def __init__(self, message: str = "Infrastructure error", details: Optional[Dict[str, Any]] = None):
        super().__init__("INTERNAL_ERROR", message, details)

    @property
    def public_message(self) -> str:
        return "Internal server error"


class ConfigurationUnavailableError(InfrastructureError):
    """No configuration provider could supply a configuration."""

    def __init__(self, message: str = "Configuration unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.code = "CONFIGURATION_UNAVAILABLE"
