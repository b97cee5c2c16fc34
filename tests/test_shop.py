"""Tests for the command line entry point."""

import pytest

import shop
from core.storage import KeyValueStore, WishlistStore

from conftest import FakeStorefrontClient


@pytest.fixture
def fake_api(monkeypatch):
    api = FakeStorefrontClient()
    monkeypatch.setattr(shop, "StorefrontClient", lambda *args, **kwargs: api)
    return api


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "cli.sqlite3")


def test_guest_add_then_show(fake_api, db_path, capsys):
    assert shop.main(["--db", db_path, "add", "p1"]) == 0
    assert shop.main(["--db", db_path, "show"]) == 0

    out = capsys.readouterr().out
    assert "✔ Added to wishlist" in out
    assert "Wishlist for guest" in out
    assert "Product p1 [p1]" in out
    assert WishlistStore(KeyValueStore(db_path)).load(None) == ["p1"]


def test_failed_command_exits_nonzero(fake_api, db_path, capsys):
    assert shop.main(["--db", db_path, "remove", "p9"]) == 1
    assert "✖ Product not in wishlist" in capsys.readouterr().out


def test_login_and_logout_round(fake_api, db_path):
    shop.main(["--db", db_path, "add", "p2"])

    assert shop.main(["--db", db_path, "login", "asha@example.com", "secret"]) == 0
    assert fake_api.server_wishlist == ["p2"]

    assert shop.main(["--db", db_path, "logout"]) == 0
    kv = KeyValueStore(db_path)
    assert kv.get("token") is None
    assert kv.keys("wishlist_") == []


def test_wrong_password(fake_api, db_path):
    assert shop.main(["--db", db_path, "login", "asha@example.com", "nope"]) == 1
