# remote/__init__.py
from .client import StorefrontClient
from .errors import (
    ApiError,
    AuthError,
    NotFoundError,
    StorefrontError,
    TransportError,
)

__all__ = [
    "StorefrontClient",
    "StorefrontError",
    "TransportError",
    "ApiError",
    "AuthError",
    "NotFoundError",
]
