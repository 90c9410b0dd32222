"""
Dispatch error taxonomy.

Services raise these; the HTTP layer maps ``status_code``/``error_code``
onto the response in a single exception handler.
"""
from typing import Optional


class DispatchError(Exception):
    status_code = 500
    error_code = "dispatch_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class NotFound(DispatchError):
    status_code = 404
    error_code = "not_found"


class InvalidState(DispatchError):
    """Illegal lifecycle transition. Names both the attempted and current state."""

    status_code = 409
    error_code = "invalid_state"

    def __init__(self, attempted: str, current: str, message: Optional[str] = None):
        self.attempted = attempted
        self.current = current
        super().__init__(message or f"Cannot move booking to {attempted} from {current}")


class AccessDenied(DispatchError):
    status_code = 403
    error_code = "access_denied"


class PricingUnavailable(DispatchError):
    status_code = 503
    error_code = "pricing_unavailable"


class ValidationError(DispatchError):
    status_code = 422
    error_code = "validation_error"


class ProviderUnavailable(DispatchError):
    status_code = 409
    error_code = "provider_unavailable"


class ConcurrencyConflict(DispatchError):
    status_code = 409
    error_code = "concurrency_conflict"
