"""Tests for the storefront REST client."""

from unittest.mock import MagicMock

import pytest
import requests

from remote.client import StorefrontClient
from remote.errors import ApiError, AuthError, NotFoundError, TransportError


def make_response(status=200, payload=None, reason="OK"):
    r = MagicMock()
    r.status_code = status
    r.reason = reason
    if payload is None:
        r.json.side_effect = ValueError("no json body")
    else:
        r.json.return_value = payload
    return r


@pytest.fixture
def session():
    s = MagicMock()
    s.headers = {}
    return s


@pytest.fixture
def api(session):
    return StorefrontClient("https://api.example/", session=session, timeout=15, profile_timeout=10)


class TestRequests:
    def test_get_profile_sends_bearer_and_short_timeout(self, api, session):
        session.request.return_value = make_response(
            payload={"_id": "u1", "name": "Asha", "wishlist": ["p1"]}
        )

        profile = api.get_profile("tok")

        session.request.assert_called_once_with(
            "GET",
            "https://api.example/api/auth/profile",
            json=None,
            headers={"Authorization": "Bearer tok"},
            timeout=10,
        )
        assert profile.user_id == "u1"
        assert profile.wishlist == ["p1"]

    def test_login_returns_token_and_profile(self, api, session):
        session.request.return_value = make_response(
            payload={"token": "jwt", "user": {"id": "u1", "email": "a@example.com", "wishlist": []}}
        )

        token, profile = api.login("a@example.com", "secret")

        assert token == "jwt"
        assert profile.user_id == "u1"
        args, kwargs = session.request.call_args
        assert args == ("POST", "https://api.example/api/auth/login")
        assert kwargs["json"] == {"email": "a@example.com", "password": "secret"}
        assert kwargs["headers"] == {}

    def test_login_without_token_is_an_error(self, api, session):
        session.request.return_value = make_response(payload={"user": {"id": "u1"}})
        with pytest.raises(ApiError):
            api.login("a@example.com", "secret")

    def test_add_wishlist_item_normalizes_product(self, api, session):
        session.request.return_value = make_response(
            payload={"_id": "u1", "wishlist": [{"_id": "p1", "title": "Ring"}]}
        )

        profile = api.add_wishlist_item("tok", {"_id": "p1"})

        kwargs = session.request.call_args.kwargs
        assert kwargs["json"] == {"productId": "p1"}
        assert kwargs["timeout"] == 15
        assert profile.wishlist == ["p1"]

    def test_reset_password_body(self, api, session):
        session.request.return_value = make_response(payload={"msg": "ok"})
        api.reset_password("reset-token", "new-secret")
        assert session.request.call_args.kwargs["json"] == {
            "token": "reset-token",
            "newPassword": "new-secret",
        }

    def test_get_product(self, api, session):
        session.request.return_value = make_response(
            payload={"_id": "p1", "title": "Ring", "price": 100}
        )
        product = api.get_product("p1")
        assert product.title == "Ring"
        assert session.request.call_args.args[1] == "https://api.example/api/products/p1"


class TestErrors:
    def test_unauthorized(self, api, session):
        session.request.return_value = make_response(401, {"msg": "Token is not valid"}, "Unauthorized")
        with pytest.raises(AuthError) as exc:
            api.get_profile("bad")
        assert exc.value.message == "Token is not valid"

    def test_already_exists(self, api, session):
        session.request.return_value = make_response(400, {"msg": "Product already in wishlist"})
        with pytest.raises(ApiError) as exc:
            api.add_wishlist_item("tok", "p1")
        assert exc.value.is_already_exists is True

    def test_other_400_is_not_already_exists(self, api, session):
        session.request.return_value = make_response(400, {"msg": "Product ID is required"})
        with pytest.raises(ApiError) as exc:
            api.add_wishlist_item("tok", "p1")
        assert exc.value.is_already_exists is False

    def test_missing_product_is_not_retried(self, api, session):
        session.request.return_value = make_response(404, {"message": "Product not found"}, "Not Found")
        with pytest.raises(NotFoundError):
            api.get_product("gone")
        assert session.request.call_count == 1

    def test_error_without_json_uses_reason(self, api, session):
        session.request.return_value = make_response(502, None, "Bad Gateway")
        with pytest.raises(ApiError) as exc:
            api.forgot_password("a@example.com")
        assert exc.value.status_code == 502
        assert exc.value.message == "Bad Gateway"

    def test_timeout_becomes_transport_error(self, api, session):
        session.request.side_effect = requests.Timeout("slow")
        with pytest.raises(TransportError):
            api.get_profile("tok")

    def test_product_fetch_retries_transport_failure(self, api, session):
        session.request.side_effect = [
            requests.ConnectionError("refused"),
            make_response(payload={"_id": "p1", "title": "Ring"}),
        ]
        product = api.get_product("p1")
        assert product.product_id == "p1"
        assert session.request.call_count == 2
