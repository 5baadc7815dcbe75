"""
Error taxonomy for the relay and its HTTP mapping
"""
from typing import Any, Dict, Optional


class RelayError(Exception):
    """Base class for errors that map onto an HTTP error response"""

    status_code: int = 500
    error_type: str = "internal"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Body sent to the caller"""
        return {"error": self.message, "details": self.details}


class ValidationError(RelayError):
    """A required field is missing or a field value is unusable"""
    status_code = 400
    error_type = "validation"


class AuthorizationError(RelayError):
    """Caller is not allowed to perform the operation"""
    status_code = 401
    error_type = "authorization"


class RateLimitError(RelayError):
    """Caller exceeded its request budget"""
    status_code = 429
    error_type = "rate_limit"


class UpstreamError(RelayError):
    """
    The provider returned a non-success status or a malformed body.

    ``upstream_status`` keeps the provider's HTTP status (or a synthetic
    502/504 for transport failures); the caller always sees 500.
    """
    status_code = 500
    error_type = "upstream"

    def __init__(self, message: str, details: Optional[Any] = None, upstream_status: Optional[int] = None):
        super().__init__(message, details)
        self.upstream_status = upstream_status


class ExtractionError(RelayError):
    """An uploaded file of a recognized format could not be parsed"""
    status_code = 500
    error_type = "extraction"

    def __init__(self, message: str, filename: str, details: Optional[Any] = None):
        super().__init__(message, details if details is not None else {"file": filename})
        self.filename = filename


class InternalError(RelayError):
    """Unexpected failure inside the pipeline"""
    status_code = 500
    error_type = "internal"
