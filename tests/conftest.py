"""Shared fixtures: sqlite-backed stores in tmp_path and an in-memory storefront API."""

import pytest

from core.models import Product, UserProfile
from core.notifier import Notifier
from core.reconciler import WishlistReconciler
from core.storage import KeyValueStore, WishlistStore
from remote.errors import ApiError, AuthError, NotFoundError, TransportError

VALID_TOKEN = "tok-valid"


def product_payload(pid, title=None, price=1000, discount=0):
    return {
        "_id": pid,
        "title": title or f"Product {pid}",
        "price": price,
        "discount": discount,
        "images": [{"url": f"https://cdn.example/{pid}.jpg", "public_id": pid}],
        "category": {"_id": "c1", "name": "Jewelry"},
    }


class FakeStorefrontClient:
    """In-memory stand-in for StorefrontClient with the same method surface."""

    def __init__(self):
        self.products = {pid: product_payload(pid) for pid in ("p1", "p2", "p3", "p4")}
        self.server_wishlist = []
        self.user = {"_id": "u1", "name": "Asha", "email": "asha@example.com"}
        self.password = "secret"
        self.calls = []
        self.populate = True
        self.transport_down = set()
        self.add_error = None
        self.remove_error = None
        self.on_add = None
        self.on_remove = None
        self.on_get_product = None

    def _profile(self):
        wishlist = [
            self.products[i] if self.populate and i in self.products else i
            for i in self.server_wishlist
        ]
        return UserProfile.from_api({**self.user, "wishlist": wishlist})

    def _check(self, token):
        if token != VALID_TOKEN:
            raise AuthError(401, "Token is not valid")

    def get_profile(self, token):
        self.calls.append(("get_profile", token))
        self._check(token)
        return self._profile()

    def login(self, email, password):
        self.calls.append(("login", email))
        if password != self.password:
            raise ApiError(400, "Invalid credentials")
        data = {
            "id": self.user["_id"],
            "name": self.user["name"],
            "email": email,
            "wishlist": list(self.server_wishlist),
        }
        return VALID_TOKEN, UserProfile.from_api(data)

    def register(self, name, email, password):
        self.calls.append(("register", email))
        if email == "taken@example.com":
            raise ApiError(400, "User already exists")
        return "Registration successful! Please verify your email."

    def forgot_password(self, email):
        self.calls.append(("forgot_password", email))

    def reset_password(self, reset_token, new_password):
        self.calls.append(("reset_password", reset_token))
        if reset_token != "reset-ok":
            raise ApiError(400, "Invalid or expired token")

    def add_wishlist_item(self, token, product_id):
        self.calls.append(("add", product_id))
        if self.on_add:
            self.on_add(product_id)
        self._check(token)
        if self.add_error:
            raise self.add_error
        if product_id in self.server_wishlist:
            raise ApiError(400, "Product already in wishlist")
        self.server_wishlist.append(product_id)
        return self._profile()

    def remove_wishlist_item(self, token, product_id):
        self.calls.append(("remove", product_id))
        if self.on_remove:
            self.on_remove(product_id)
        self._check(token)
        if self.remove_error:
            raise self.remove_error
        self.server_wishlist = [i for i in self.server_wishlist if i != product_id]
        return self._profile()

    def get_product(self, product_id, token=None):
        self.calls.append(("get_product", product_id))
        if self.on_get_product:
            self.on_get_product(product_id)
        if token is not None:
            self._check(token)
        if product_id in self.transport_down:
            raise TransportError(f"timeout fetching {product_id}")
        if product_id not in self.products:
            raise NotFoundError(404, "Product not found")
        return Product.from_api(self.products[product_id])

    def count(self, name):
        return sum(1 for c in self.calls if c[0] == name)


class RecordingNotifier(Notifier):
    def __init__(self):
        self.messages = []
        self.scheduled = []
        super().__init__(
            sink=lambda kind, message: self.messages.append((kind, message)),
            dedup_seconds=1.0,
            clock=lambda: 0.0,
        )

    def schedule(self, message, delay, kind="info"):
        self.scheduled.append((message, delay, kind))


@pytest.fixture
def kv(tmp_path):
    store = KeyValueStore(str(tmp_path / "state.sqlite3"))
    store.ensure_db()
    return store


@pytest.fixture
def wishlist_store(kv):
    return WishlistStore(kv)


@pytest.fixture
def client():
    return FakeStorefrontClient()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def reconciler(client, wishlist_store, notifier):
    r = WishlistReconciler(client, wishlist_store, notifier, login_prompt_delay=60, workers=4)
    yield r
    r.close()
