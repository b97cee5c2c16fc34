# remote/client.py
import os
from typing import Any, Dict, Optional, Tuple

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from core.logger import get_logger
from core.models import Product, UserProfile, normalize_product_id
from .errors import ApiError, TransportError, error_for_status

logger = get_logger(__name__)

API_BASE_URL = os.getenv(
    "API_BASE_URL", "https://apiabhushankalakendra.vercel.app/"
).strip()
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "15"))
PROFILE_TIMEOUT = float(os.getenv("PROFILE_TIMEOUT", "10"))
PRODUCT_FETCH_ATTEMPTS = int(os.getenv("PRODUCT_FETCH_ATTEMPTS", "2"))
USER_AGENT = os.getenv("STOREFRONT_USER_AGENT", "storefront-wishlist/0.1")


def _bearer(token: Optional[str]) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"} if token else {}


class StorefrontClient:
    """
    Thin client for the storefront REST API. Every call either returns
    parsed data or raises a StorefrontError subclass.
    """

    def __init__(
        self,
        base_url: str = API_BASE_URL,
        session: Optional[requests.Session] = None,
        timeout: float = REQUEST_TIMEOUT,
        profile_timeout: float = PROFILE_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.profile_timeout = profile_timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        token: Optional[str] = None,
        json_body: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        url = self._url(path)
        try:
            r = self.session.request(
                method,
                url,
                json=json_body,
                headers=_bearer(token),
                timeout=timeout or self.timeout,
            )
        except requests.Timeout as e:
            logger.error("Request timeout: %s %s", method, url)
            raise TransportError(f"timeout calling {url}") from e
        except requests.RequestException as e:
            logger.error("Request failed: %s %s: %s", method, url, e)
            raise TransportError(str(e)) from e

        try:
            data = r.json()
        except ValueError:
            data = None

        if r.status_code >= 400:
            payload = data if isinstance(data, dict) else {}
            message = payload.get("msg") or payload.get("message") or r.reason or ""
            if r.status_code == 401:
                logger.warning("Unauthorized response from %s", url)
            raise error_for_status(r.status_code, str(message), payload)

        return data

    def get_profile(self, token: str) -> UserProfile:
        data = self._request(
            "GET", "/api/auth/profile", token=token, timeout=self.profile_timeout
        )
        return UserProfile.from_api(data)

    def login(self, email: str, password: str) -> Tuple[str, UserProfile]:
        data = self._request(
            "POST",
            "/api/auth/login",
            json_body={"email": email, "password": password},
            timeout=self.profile_timeout,
        )
        token = (data or {}).get("token")
        if not token:
            raise ApiError(500, "Login response did not include a token", data)
        return token, UserProfile.from_api(data.get("user") or {})

    def register(self, name: str, email: str, password: str) -> str:
        data = self._request(
            "POST",
            "/api/auth/register",
            json_body={"name": name, "email": email, "password": password},
        )
        return (data or {}).get("msg") or ""

    def forgot_password(self, email: str):
        self._request("POST", "/api/auth/forgot-password", json_body={"email": email})

    def reset_password(self, reset_token: str, new_password: str):
        self._request(
            "POST",
            "/api/auth/reset-password",
            json_body={"token": reset_token, "newPassword": new_password},
        )

    def add_wishlist_item(self, token: str, product_id: str) -> UserProfile:
        data = self._request(
            "POST",
            "/api/auth/wishlist/add",
            token=token,
            json_body={"productId": normalize_product_id(product_id)},
        )
        return UserProfile.from_api(data)

    def remove_wishlist_item(self, token: str, product_id: str) -> UserProfile:
        data = self._request(
            "POST",
            "/api/auth/wishlist/remove",
            token=token,
            json_body={"productId": normalize_product_id(product_id)},
        )
        return UserProfile.from_api(data)

    @retry(
        retry=retry_if_exception_type(TransportError),
        wait=wait_exponential_jitter(initial=0.5, max=5),
        stop=stop_after_attempt(PRODUCT_FETCH_ATTEMPTS),
        reraise=True,
    )
    def get_product(self, product_id: str, token: Optional[str] = None) -> Product:
        pid = normalize_product_id(product_id)
        data = self._request("GET", f"/api/products/{pid}", token=token)
        return Product.from_api(data)
