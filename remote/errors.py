# remote/errors.py
from typing import Any, Dict, Optional


class StorefrontError(Exception):
    """Base class for failures talking to the storefront API."""


class TransportError(StorefrontError):
    """Timeout, refused connection, or other failure before a response arrived."""


class ApiError(StorefrontError):
    def __init__(
        self,
        status_code: int,
        message: str,
        payload: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.payload = payload or {}

    @property
    def is_already_exists(self) -> bool:
        return self.status_code == 400 and "already" in self.message.lower()


class AuthError(ApiError):
    """Token missing, expired or rejected (401/403)."""


class NotFoundError(ApiError):
    """Referenced record no longer exists (404)."""


def error_for_status(
    status_code: int, message: str, payload: Optional[Dict[str, Any]] = None
) -> ApiError:
    if status_code in (401, 403):
        return AuthError(status_code, message, payload)
    if status_code == 404:
        return NotFoundError(status_code, message, payload)
    return ApiError(status_code, message, payload)
