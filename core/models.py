# core/models.py
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

_INVALID_IDS = ("", "undefined", "null", "None")


def normalize_product_id(value: Any) -> str:
    """
    Reduce a product reference to its canonical string id.

    Accepts a bare id (string, int, ObjectId-like) or a populated API object
    carrying `_id` / `id`. Raises ValueError when nothing usable remains.
    """
    if isinstance(value, dict):
        value = value.get("_id") or value.get("id")
    if value is None:
        raise ValueError("product id is missing")
    pid = str(value).strip()
    if pid in _INVALID_IDS:
        raise ValueError(f"invalid product id: {value!r}")
    return pid


def normalize_product_ids(values: Optional[Iterable[Any]]) -> List[str]:
    """Normalize, drop invalid entries, de-duplicate keeping first-seen order."""
    out: List[str] = []
    seen = set()
    for v in values or []:
        try:
            pid = normalize_product_id(v)
        except ValueError:
            continue
        if pid not in seen:
            seen.add(pid)
            out.append(pid)
    return out


@dataclass
class Product:
    """
    Read-only catalog projection used to render wishlist entries.
    Prices are kept as the catalog returns them (major currency units).
    """
    product_id: str
    title: str
    price: float = 0.0
    discount: float = 0.0
    images: List[str] = field(default_factory=list)
    category: str = ""

    @property
    def discounted_price(self) -> float:
        if not self.discount or self.discount <= 0:
            return self.price
        return round(self.price * (100 - self.discount) / 100.0, 2)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Product":
        images = []
        for img in data.get("images") or []:
            if isinstance(img, dict):
                url = img.get("url")
            else:
                url = img
            if url:
                images.append(str(url))

        category = data.get("category") or ""
        if isinstance(category, dict):
            category = category.get("name") or category.get("_id") or ""

        return cls(
            product_id=normalize_product_id(data),
            title=str(data.get("title") or data.get("name") or "").strip(),
            price=float(data.get("price") or 0),
            discount=float(data.get("discount") or 0),
            images=images,
            category=str(category),
        )


@dataclass
class UserProfile:
    user_id: str
    name: str = ""
    email: str = ""
    wishlist: List[str] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def wishlist_products(self) -> List[Product]:
        """Products the server populated inline on the wishlist, if any."""
        out = []
        for entry in self.raw.get("wishlist") or []:
            if isinstance(entry, dict):
                try:
                    out.append(Product.from_api(entry))
                except ValueError:
                    continue
        return out

    def with_wishlist(self, ids: Iterable[Any]) -> "UserProfile":
        return UserProfile(
            user_id=self.user_id,
            name=self.name,
            email=self.email,
            wishlist=normalize_product_ids(ids),
            raw=self.raw,
        )

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "UserProfile":
        # /login answers with "id", /profile and the wishlist endpoints with "_id"
        user_id = data.get("_id") or data.get("id")
        if not user_id:
            raise ValueError("user payload has no identifier")
        return cls(
            user_id=str(user_id),
            name=data.get("name") or "",
            email=data.get("email") or "",
            wishlist=normalize_product_ids(data.get("wishlist")),
            raw=data,
        )


@dataclass
class OperationResult:
    success: bool
    message: str
    redirect_to: Optional[str] = None
