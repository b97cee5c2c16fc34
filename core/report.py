# core/report.py
import os
from pathlib import Path
from typing import List

from jinja2 import Environment, FileSystemLoader

from core.models import Product

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    trim_blocks=True,
    lstrip_blocks=True,
)

CURRENCY_SYMBOL = os.getenv("CURRENCY_SYMBOL", "₹")


def _money(amount: float) -> str:
    return f"{CURRENCY_SYMBOL}{amount:,.2f}"


def _pct(value: float) -> str:
    if value == int(value):
        return f"{int(value)}%"
    return f"{value:.1f}%"


def build_wishlist_report(
    owner: str,
    wishlist_ids: List[str],
    products: List[Product],
) -> str:
    template = env.get_template("wishlist.txt")

    product_data = []
    for p in products:
        has_discount = p.discount and p.discount > 0
        product_data.append(
            {
                "product_id": p.product_id,
                "title": p.title or "(untitled)",
                "price_str": _money(p.price),
                "discount_str": _pct(p.discount) if has_discount else "",
                "discounted_str": _money(p.discounted_price) if has_discount else "",
                "category": p.category,
            }
        )

    loaded = {p.product_id for p in products}
    unresolved = [pid for pid in wishlist_ids if pid not in loaded]

    summary_text = f"{len(wishlist_ids)} items · {len(products)} loaded"

    ctx = {
        "owner": owner,
        "summary_text": summary_text,
        "products": product_data,
        "unresolved": unresolved,
    }

    return template.render(**ctx)


def render_wishlist(reconciler) -> str:
    user = reconciler.current_user
    if user is not None:
        owner = user.name or user.email or user.user_id
    else:
        owner = "guest"
    return build_wishlist_report(
        owner, list(reconciler.wishlist_ids), list(reconciler.wishlist_products)
    )
