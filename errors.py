"""
Error taxonomy for the API.

Every error carries a client-facing string and renders as
``{"error": error, **extra}`` with its status code. Extra keys such as
``message`` or ``quota_info`` go alongside it.
"""
from typing import Any, Dict


class APIError(Exception):
    status_code = 500

    def __init__(self, error: str, status_code: int = None, **extra: Any):
        super().__init__(error)
        self.error = error
        if status_code is not None:
            self.status_code = status_code
        self.extra: Dict[str, Any] = extra

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.error, **self.extra}


class ValidationError(APIError):
    status_code = 400


class AuthError(APIError):
    status_code = 401


class ForbiddenError(APIError):
    status_code = 403


class NotFoundError(APIError):
    status_code = 404


class ConflictError(APIError):
    status_code = 409


class QuotaExceededError(APIError):
    status_code = 429


class DependencyError(APIError):
    """Tenant database problems: 400 when the owner's configuration is missing, 500 otherwise."""
    status_code = 500
