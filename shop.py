import argparse
import os
from typing import List, Optional

from core.logger import get_logger
from core.models import OperationResult
from core.notifier import Notifier
from core.reconciler import WishlistReconciler
from core.report import render_wishlist
from core.storage import KeyValueStore, WishlistStore
from remote.client import StorefrontClient

logger = get_logger(__name__)

API_BASE_URL = os.getenv("API_BASE_URL", "").strip()
DB_PATH = os.getenv("DB_PATH", "/data/storefront_state.sqlite3")


def console_sink(kind: str, message: str):
    prefix = {"success": "✔", "error": "✖"}.get(kind, "ℹ")
    print(f"{prefix} {message}")


def build_reconciler(
    db_path: str = DB_PATH,
    base_url: Optional[str] = None,
) -> WishlistReconciler:
    kv = KeyValueStore(db_path)
    kv.ensure_db()
    client = StorefrontClient(base_url) if base_url else StorefrontClient()
    return WishlistReconciler(client, WishlistStore(kv), Notifier(console_sink))


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="shop", description="Storefront wishlist session")
    p.add_argument("--db", default=DB_PATH, help="local state database")
    p.add_argument("--api", default=API_BASE_URL or None, help="storefront API base URL")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("show")
    sub.add_parser("sync")
    sub.add_parser("logout")

    add = sub.add_parser("add")
    add.add_argument("product_id")

    remove = sub.add_parser("remove")
    remove.add_argument("product_id")

    login = sub.add_parser("login")
    login.add_argument("email")
    login.add_argument("password")

    register = sub.add_parser("register")
    register.add_argument("name")
    register.add_argument("email")
    register.add_argument("password")

    forgot = sub.add_parser("forgot")
    forgot.add_argument("email")

    reset = sub.add_parser("reset")
    reset.add_argument("token")
    reset.add_argument("new_password")
    return p


def dispatch(reconciler: WishlistReconciler, args: argparse.Namespace) -> OperationResult:
    cmd = args.command
    if cmd == "show":
        print(render_wishlist(reconciler))
        return OperationResult(True, "")
    if cmd == "sync":
        return reconciler.sync_wishlist()
    if cmd == "add":
        return reconciler.add_to_wishlist(args.product_id)
    if cmd == "remove":
        # The command line counts as the profile page
        return reconciler.remove_from_wishlist_profile(args.product_id, True)
    if cmd == "login":
        return reconciler.login(args.email, args.password)
    if cmd == "logout":
        return reconciler.logout()
    if cmd == "register":
        return reconciler.register(args.name, args.email, args.password)
    if cmd == "forgot":
        return reconciler.forgot_password(args.email)
    if cmd == "reset":
        return reconciler.reset_password(args.token, args.new_password)
    raise ValueError(f"unknown command {cmd!r}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    reconciler = build_reconciler(args.db, args.api)
    try:
        init = reconciler.initialize_session()
        logger.debug("Session init: %s", init.message)
        result = dispatch(reconciler, args)
        if not result.success:
            logger.info("Command '%s' failed: %s", args.command, result.message)
            return 1
        return 0
    finally:
        reconciler.wait_for_cleanup(timeout=30)
        reconciler.close()


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except SystemExit:
        raise
    except Exception as e:
        logger.exception("Fatal storefront error: %s", e)
        raise SystemExit(2)
