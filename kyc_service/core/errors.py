"""
Error taxonomy for the KYC core.

Every component raises one of these; the HTTP layer turns them into JSON
responses through a single exception handler. ``public_message`` is what the
end user sees and never carries provider or cryptographic detail.
"""
from typing import Any, Optional


class KycError(Exception):
    status_code: int = 500
    code: str = "internal_error"
    default_public_message: str = "Something went wrong. Please try again later."

    def __init__(
        self,
        message: str,
        *,
        public_message: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.public_message = public_message or self.default_public_message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": False,
            "error": self.public_message,
            "code": self.code,
        }


class ValidationError(KycError):
    status_code = 422
    code = "validation_error"

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None):
        # Validation messages are written for the caller and safe to show.
        super().__init__(message, public_message=message, details=details)


class NotFound(KycError):
    status_code = 404
    code = "not_found"

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message, public_message=message, details=details)


class DatabaseError(KycError):
    status_code = 503
    code = "database_error"
    default_public_message = "The verification service is temporarily unavailable."


class ThirdPartyServiceUnavailable(KycError):
    status_code = 502
    code = "provider_unavailable"
    default_public_message = "KYC service unavailable, please try again later."


class SecurityError(KycError):
    status_code = 403
    code = "security_error"
    default_public_message = "Access denied."


class ConfigurationError(KycError):
    status_code = 500
    code = "configuration_error"
