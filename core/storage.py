# core/storage.py
import datetime
import json
import os
import sqlite3
from typing import Any, Iterable, List, Optional

import pytz

from .logger import get_logger
from .models import normalize_product_ids

logger = get_logger(__name__)

DB_PATH = os.getenv("DB_PATH", "/data/storefront_state.sqlite3")

TOKEN_KEY = "token"
CART_KEY = "cart"
WISHLIST_PREFIX = "wishlist_"
GUEST_WISHLIST_KEY = "wishlist_guest"


def now_utc_iso() -> str:
    return datetime.datetime.now(tz=pytz.UTC).isoformat()


class KeyValueStore:
    """
    Durable string key/value store. Every write is an upsert; the last
    writer wins.
    """

    def __init__(self, db_path: str = DB_PATH):
        self.db_path = db_path

    def _connect(self):
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        return sqlite3.connect(self.db_path)

    def ensure_db(self):
        with self._connect() as con:
            cur = con.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    updated_at TEXT
                )
            """
            )
            con.commit()

    def get(self, key: str) -> Optional[str]:
        with self._connect() as con:
            cur = con.cursor()
            cur.execute("SELECT value FROM kv WHERE key=?", (key,))
            row = cur.fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str):
        with self._connect() as con:
            cur = con.cursor()
            cur.execute(
                """
                INSERT INTO kv (key, value, updated_at)
                VALUES (?,?,?)
                ON CONFLICT(key) DO UPDATE SET
                    value=excluded.value,
                    updated_at=excluded.updated_at
            """,
                (key, value, now_utc_iso()),
            )
            con.commit()

    def remove(self, key: str):
        with self._connect() as con:
            cur = con.cursor()
            cur.execute("DELETE FROM kv WHERE key=?", (key,))
            con.commit()

    def keys(self, prefix: str = "") -> List[str]:
        with self._connect() as con:
            cur = con.cursor()
            if prefix:
                # substr match avoids LIKE treating "_" as a wildcard
                cur.execute(
                    "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                    (len(prefix), prefix),
                )
            else:
                cur.execute("SELECT key FROM kv ORDER BY key")
            rows = cur.fetchall()
        return [r[0] for r in rows]


class WishlistStore:
    """
    Session token and per-owner wishlist lists on top of a KeyValueStore.

    Guest lists live under `wishlist_guest`; signed-in users get
    `wishlist_user_<userId>`. Lists are JSON arrays of product id strings.
    """

    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    @staticmethod
    def key_for(user_id: Optional[str] = None) -> str:
        if user_id:
            return f"wishlist_user_{user_id}"
        return GUEST_WISHLIST_KEY

    @property
    def token(self) -> Optional[str]:
        return self.kv.get(TOKEN_KEY) or None

    @token.setter
    def token(self, value: Optional[str]):
        if value:
            self.kv.set(TOKEN_KEY, value)
        else:
            self.kv.remove(TOKEN_KEY)

    def clear_token(self):
        self.kv.remove(TOKEN_KEY)

    def clear_cart(self):
        self.kv.remove(CART_KEY)

    def load(self, user_id: Optional[str] = None) -> List[str]:
        key = self.key_for(user_id)
        stored = self.kv.get(key)
        if not stored:
            return []

        try:
            parsed: Any = json.loads(stored)
        except ValueError as e:
            logger.error("Error parsing stored wishlist %s: %s", key, e)
            return []
        if not isinstance(parsed, list):
            logger.error("Stored wishlist %s is not a list; ignoring.", key)
            return []

        cleaned = normalize_product_ids(parsed)
        if cleaned != parsed:
            logger.debug("Cleaned stored wishlist %s: %s -> %s", key, parsed, cleaned)
            self.kv.set(key, json.dumps(cleaned))
        return cleaned

    def save(self, ids: Iterable[Any], user_id: Optional[str] = None):
        key = self.key_for(user_id)
        self.kv.set(key, json.dumps(normalize_product_ids(ids)))

    def clear(self, user_id: Optional[str] = None):
        self.kv.remove(self.key_for(user_id))

    def clear_all(self) -> List[str]:
        """Remove every wishlist key, including ones orphaned by old sessions."""
        removed = self.kv.keys(WISHLIST_PREFIX)
        for key in removed:
            self.kv.remove(key)
        return removed
