"""
Exception hierarchy for the advisor.

Every error carries a machine code and optional details so the API can
render it without further translation.
"""
from typing import Any, Dict, Optional


class AdvisorError(Exception):
    """Base exception for all advisor errors."""

    status_code = 500

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details
        }


class InvalidInput(AdvisorError):
    """The request cannot be evaluated, e.g. no symptom was selected."""

    status_code = 400

    def __init__(self, message: str = "Select at least one symptom.", details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="INVALID_INPUT", details=details)


class NoMatch(AdvisorError):
    """No rule intersects the selected symptoms."""

    status_code = 404

    def __init__(self, message: str = "No diagnosis found for the selected symptoms.", details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="NO_MATCH", details=details)


class StoreUnavailable(AdvisorError):
    """The backing database could not serve the request."""

    status_code = 503

    def __init__(self, message: str = "Database unavailable, try again later.", details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="STORE_UNAVAILABLE", details=details)


class NotFound(AdvisorError):
    status_code = 404

    def __init__(self, entity: str, key: Any):
        super().__init__(
            message=f"{entity} not found",
            code="NOT_FOUND",
            details={"entity": entity, "key": key}
        )


class Conflict(AdvisorError):
    status_code = 409

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="CONFLICT", details=details)
