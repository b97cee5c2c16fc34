# core/reconciler.py
"""
Wishlist and session state for one storefront visitor.

The reconciler keeps a single de-duplicated list of wishlisted product ids
consistent across three places: the guest list on this device, the signed-in
user's list on this device, and the wishlist on the user's server profile.
Every public operation returns an OperationResult (or plain data) and never
lets an exception escape to the caller.
"""
import itertools
import os
import sqlite3
import threading
import warnings
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Iterable, List, Optional, Tuple

from remote.errors import ApiError, AuthError, StorefrontError

from .cleanup import CleanupReport, PruneTask
from .guards import PendingOperations
from .logger import get_logger
from .models import (
    OperationResult,
    Product,
    UserProfile,
    normalize_product_id,
    normalize_product_ids,
)
from .notifier import Notifier
from .storage import WishlistStore

logger = get_logger(__name__)

LOGIN_PROMPT_DELAY = float(os.getenv("LOGIN_PROMPT_DELAY", "2.0"))
MATERIALIZE_WORKERS = int(os.getenv("MATERIALIZE_WORKERS", "8"))

MSG_ADDED = "Added to wishlist"
MSG_ALREADY = "Already in wishlist"
MSG_ADD_FAILED = "Failed to add to wishlist"
MSG_IN_PROGRESS = "Operation already in progress"
MSG_PROFILE_ONLY = "Removal only allowed from profile page"
MSG_NOT_IN_WISHLIST = "Product not in wishlist"
MSG_REMOVED = "Removed from wishlist"
MSG_REMOVE_FAILED = "Failed to remove from wishlist"
MSG_LOGIN_PROMPT = "Please login to sync your wishlist"
MSG_LOGGED_IN = "Logged in successfully!"
MSG_LOGIN_FAILED = "Login failed"
MSG_LOGGED_OUT = "Logged out successfully!"
MSG_REGISTERED = "Registration successful! Please check your email to verify your account."
MSG_VERIFY_EMAIL = "Please verify your email before logging in"
MSG_RESET_SENT = "Password reset email sent!"
MSG_RESET_DONE = "Password reset successfully!"
MSG_SESSION_LOST = "Your session has expired, please login again"
MSG_SESSION_SUPERSEDED = "Session changed while signing in, please try again"


def _api_message(err: Exception, default: str) -> str:
    if isinstance(err, ApiError) and err.message:
        return err.message
    return default


class WishlistReconciler:
    def __init__(
        self,
        client,
        store: WishlistStore,
        notifier: Optional[Notifier] = None,
        login_prompt_delay: float = LOGIN_PROMPT_DELAY,
        workers: int = MATERIALIZE_WORKERS,
    ):
        self.client = client
        self.store = store
        self.notifier = notifier or Notifier()
        self.login_prompt_delay = login_prompt_delay
        self.workers = max(1, workers)

        self.current_user: Optional[UserProfile] = None
        self.wishlist_products: List[Product] = []
        self.is_loading = False
        self.is_wishlist_loading = False
        self.last_cleanup: Optional[CleanupReport] = None

        self.pending = PendingOperations()
        self._wishlist_ids: List[str] = []
        self._lock = threading.RLock()
        # Request fencing: responses older than the last applied one are dropped
        self._seq = itertools.count(1)
        self._applied_seq = 0
        self._cleanup_pool = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="wishlist-cleanup"
        )
        self._cleanup_futures = []

    # -- state -------------------------------------------------------------

    @property
    def wishlist_ids(self) -> Tuple[str, ...]:
        with self._lock:
            return tuple(self._wishlist_ids)

    @property
    def is_authenticated(self) -> bool:
        return self.current_user is not None

    def _next_seq(self) -> int:
        with self._lock:
            return next(self._seq)

    def _set_ids(self, ids: Iterable[Any]):
        with self._lock:
            self._wishlist_ids = normalize_product_ids(ids)

    def _reset_state(self):
        with self._lock:
            self.current_user = None
            self._wishlist_ids = []
            self.wishlist_products = []
            self._applied_seq = next(self._seq)

    def _set_session(self, profile: UserProfile, seq: int) -> bool:
        """Install a server-authoritative profile unless a newer one already landed."""
        with self._lock:
            if seq < self._applied_seq:
                logger.debug(
                    "Discarding stale profile response (seq %d < %d).",
                    seq, self._applied_seq,
                )
                return False
            self._applied_seq = seq
            self.current_user = profile
            self._wishlist_ids = list(profile.wishlist)
        self.store.save(profile.wishlist, profile.user_id)
        return True

    def _materialize_profile(self, profile: UserProfile):
        populated = profile.wishlist_products
        if populated and {p.product_id for p in populated} == set(profile.wishlist):
            with self._lock:
                self.wishlist_products = populated
            return
        self.fetch_wishlist_products(profile.wishlist)

    def _load_guest(self):
        guest = self.store.load(None)
        self._set_ids(guest)
        if guest:
            self.fetch_wishlist_products(guest)
        else:
            with self._lock:
                self.wishlist_products = []

    def _forget_token(self, token: Optional[str]):
        """Drop the stored token after a 401/403, unless a different session replaced it."""
        if token and self.store.token == token:
            logger.warning("Unauthorized response; clearing stored session token.")
            self.store.clear_token()

    def _demote_to_guest(self, token: Optional[str]):
        """Fall back to the guest list; callers send the single notification."""
        logger.warning("Session token rejected; continuing as guest.")
        self._forget_token(token)
        with self._lock:
            self.current_user = None
            self._applied_seq = next(self._seq)
        self._load_guest()

    # -- session -----------------------------------------------------------

    def initialize_session(self) -> OperationResult:
        self.is_loading = True
        try:
            token = self.store.token
            if not token:
                with self._lock:
                    self.current_user = None
                self._load_guest()
                return OperationResult(True, "Browsing as guest")

            seq = self._next_seq()
            try:
                profile = self.client.get_profile(token)
            except (StorefrontError, ValueError) as e:
                logger.error("Token validation failed: %s", e)
                self.store.clear_token()
                with self._lock:
                    self.current_user = None
                self._load_guest()
                return OperationResult(False, MSG_SESSION_LOST)

            logger.info(
                "Session restored for user %s (%d wishlist items).",
                profile.user_id, len(profile.wishlist),
            )
            if not self._set_session(profile, seq):
                return OperationResult(False, MSG_SESSION_SUPERSEDED)
            self.store.clear(None)
            self._materialize_profile(profile)
            return OperationResult(True, "Session restored")
        except Exception as e:
            logger.exception("Session initialization failed: %s", e)
            self._reset_state()
            return OperationResult(False, "Session initialization failed")
        finally:
            self.is_loading = False

    def login(self, email: str, password: str) -> OperationResult:
        self.is_loading = True
        try:
            seq = self._next_seq()
            try:
                token, profile = self.client.login(email, password)
            except (StorefrontError, ValueError) as e:
                logger.warning("Login failed for %s: %s", email, e)
                msg = _api_message(e, MSG_LOGIN_FAILED)
                self.notifier.error(msg)
                return OperationResult(False, msg)

            backend = list(profile.wishlist)
            guest = self.store.load(None)
            final = list(backend)
            # Server list wins when it has anything; otherwise adopt the guest list
            if not backend:
                final = normalize_product_ids(backend + guest)

            logger.info(
                "Login wishlist for user %s: backend=%d final=%d source=%s",
                profile.user_id, len(backend), len(final),
                "backend-only" if backend else "backend-plus-guest",
            )

            merged = profile.with_wishlist(final)
            if not self._set_session(merged, seq):
                self.notifier.error(MSG_SESSION_SUPERSEDED)
                return OperationResult(False, MSG_SESSION_SUPERSEDED)
            self.store.token = token
            if self.current_user is None:
                # logged out between installing the profile and storing the token
                self._forget_token(token)
                self.notifier.error(MSG_SESSION_SUPERSEDED)
                return OperationResult(False, MSG_SESSION_SUPERSEDED)
            self.store.clear(None)

            backend_set = set(backend)
            to_push = [pid for pid in final if pid not in backend_set]
            if to_push and not self._push_merged_items(token, to_push):
                # keep the unsynced guest items for the next attempt
                self.store.clear(profile.user_id)
                self.store.save(guest, None)
                self._demote_to_guest(token)
                self.notifier.error(MSG_SESSION_LOST)
                return OperationResult(False, MSG_SESSION_LOST)

            self._materialize_profile(merged)
            self.notifier.success(MSG_LOGGED_IN)
            return OperationResult(True, MSG_LOGGED_IN, redirect_to="/")
        except Exception as e:
            logger.exception("Unexpected login failure: %s", e)
            self.notifier.error(MSG_LOGIN_FAILED)
            return OperationResult(False, MSG_LOGIN_FAILED)
        finally:
            self.is_loading = False

    def _push_merged_items(self, token: str, product_ids: List[str]) -> bool:
        """Best-effort push of guest items; False only when the token was rejected."""
        for pid in product_ids:
            try:
                self.client.add_wishlist_item(token, pid)
            except AuthError as e:
                logger.warning("Wishlist sync on login rejected the new token: %s", e)
                return False
            except ApiError as e:
                if e.is_already_exists:
                    continue
                logger.warning("Failed to sync wishlist item %s on login: %s", pid, e)
            except StorefrontError as e:
                logger.warning("Failed to sync wishlist item %s on login: %s", pid, e)
        return True

    def logout(self) -> OperationResult:
        user = self.current_user
        try:
            self.store.clear_token()
            self.store.clear_cart()
            if user is not None:
                self.store.clear(user.user_id)
            self.store.clear(None)
            orphaned = self.store.clear_all()
            if orphaned:
                logger.info("Removed orphaned wishlist keys on logout: %s", orphaned)
        except sqlite3.Error as e:
            logger.error("Failed to clear local session data on logout: %s", e)

        self._reset_state()
        self.notifier.success(MSG_LOGGED_OUT)
        return OperationResult(True, MSG_LOGGED_OUT, redirect_to="/login")

    def register(self, name: str, email: str, password: str) -> OperationResult:
        # Accounts need email verification first, so no session is started here
        self.is_loading = True
        try:
            msg = self.client.register(name, email, password)
        except StorefrontError as e:
            logger.warning("Registration failed for %s: %s", email, e)
            msg = _api_message(e, "Registration failed")
            self.notifier.error(msg)
            return OperationResult(False, msg)
        finally:
            self.is_loading = False

        self.notifier.success(msg or MSG_REGISTERED)
        return OperationResult(True, MSG_VERIFY_EMAIL, redirect_to="/login")

    def forgot_password(self, email: str) -> OperationResult:
        try:
            self.client.forgot_password(email)
        except StorefrontError as e:
            logger.warning("Forgot-password request failed for %s: %s", email, e)
            msg = _api_message(e, "Failed to send password reset email")
            self.notifier.error(msg)
            return OperationResult(False, msg)
        self.notifier.success(MSG_RESET_SENT)
        return OperationResult(True, MSG_RESET_SENT)

    def reset_password(self, reset_token: str, new_password: str) -> OperationResult:
        try:
            self.client.reset_password(reset_token, new_password)
        except StorefrontError as e:
            logger.warning("Password reset failed: %s", e)
            msg = _api_message(e, "Failed to reset password")
            self.notifier.error(msg)
            return OperationResult(False, msg)
        self.notifier.success(MSG_RESET_DONE)
        return OperationResult(True, MSG_RESET_DONE, redirect_to="/login")

    # -- wishlist ----------------------------------------------------------

    def add_to_wishlist(self, product_id: Any) -> OperationResult:
        try:
            pid = normalize_product_id(product_id)
        except ValueError as e:
            logger.error("Failed to add to wishlist: %s", e)
            self.notifier.error(MSG_ADD_FAILED)
            return OperationResult(False, MSG_ADD_FAILED)

        with self.pending.hold("add", pid) as acquired:
            if not acquired:
                return OperationResult(False, MSG_IN_PROGRESS)
            return self._add(pid)

    def _add(self, pid: str) -> OperationResult:
        token = self.store.token
        try:
            user = self.current_user
            if user is None:
                stored = self.store.load(None)
                if pid in stored:
                    self.notifier.error(MSG_ALREADY)
                    return OperationResult(False, MSG_ALREADY)

                updated = stored + [pid]
                self.store.save(updated, None)
                self._set_ids(updated)
                self.fetch_wishlist_products(updated)
                self.notifier.success(MSG_ADDED)
                self.notifier.schedule(MSG_LOGIN_PROMPT, self.login_prompt_delay)
                return OperationResult(True, MSG_ADDED)

            if pid in self.wishlist_ids:
                self.notifier.error(MSG_ALREADY)
                return OperationResult(False, MSG_ALREADY)

            seq = self._next_seq()
            profile = self.client.add_wishlist_item(token, pid)
            if self._set_session(profile, seq):
                self._materialize_profile(profile)
            self.notifier.success(MSG_ADDED)
            return OperationResult(True, MSG_ADDED)
        except AuthError as e:
            logger.error("Failed to add %s to wishlist: %s", pid, e)
            self._demote_to_guest(token)
            self.notifier.error(MSG_SESSION_LOST)
            return OperationResult(False, MSG_SESSION_LOST)
        except ApiError as e:
            if e.is_already_exists:
                self.notifier.error(MSG_ALREADY)
                return OperationResult(False, MSG_ALREADY)
            logger.error("Failed to add %s to wishlist: %s", pid, e)
            self.notifier.error(MSG_ADD_FAILED)
            return OperationResult(False, MSG_ADD_FAILED)
        except Exception as e:
            logger.exception("Failed to add %s to wishlist: %s", pid, e)
            self.notifier.error(MSG_ADD_FAILED)
            return OperationResult(False, MSG_ADD_FAILED)

    def remove_from_wishlist_profile(
        self, product_id: Any, from_profile_page: bool = True
    ) -> OperationResult:
        if not from_profile_page:
            return OperationResult(False, MSG_PROFILE_ONLY)

        try:
            pid = normalize_product_id(product_id)
        except ValueError as e:
            logger.error("Failed to remove from wishlist: %s", e)
            self.notifier.error(MSG_REMOVE_FAILED)
            return OperationResult(False, MSG_REMOVE_FAILED)

        with self.pending.hold("remove", pid) as acquired:
            if not acquired:
                return OperationResult(False, MSG_IN_PROGRESS)
            return self._remove(pid)

    def _remove(self, pid: str) -> OperationResult:
        token = self.store.token
        try:
            if pid not in self.wishlist_ids:
                self.notifier.error(MSG_NOT_IN_WISHLIST)
                return OperationResult(False, MSG_NOT_IN_WISHLIST)

            if self.current_user is not None:
                seq = self._next_seq()
                profile = self.client.remove_wishlist_item(token, pid)
                if self._set_session(profile, seq):
                    self._materialize_profile(profile)
            else:
                updated = [i for i in self.store.load(None) if i != pid]
                self._set_ids(updated)
                self.store.save(updated, None)
                self.fetch_wishlist_products(updated)

            self.notifier.success(MSG_REMOVED)
            return OperationResult(True, MSG_REMOVED)
        except AuthError as e:
            logger.error("Failed to remove %s from wishlist: %s", pid, e)
            self._demote_to_guest(token)
            self.notifier.error(MSG_SESSION_LOST)
            return OperationResult(False, MSG_SESSION_LOST)
        except Exception as e:
            logger.exception("Failed to remove %s from wishlist: %s", pid, e)
            self.notifier.error(MSG_REMOVE_FAILED)
            return OperationResult(False, MSG_REMOVE_FAILED)

    def remove_from_wishlist(self, product_id: Any) -> OperationResult:
        """
        Deprecated. Always refused: removal is only allowed from the profile
        page, use remove_from_wishlist_profile().
        """
        warnings.warn(
            "remove_from_wishlist() is deprecated and always refused; "
            "use remove_from_wishlist_profile()",
            DeprecationWarning,
            stacklevel=2,
        )
        logger.warning("Legacy remove_from_wishlist(%r) called; refusing.", product_id)
        return self.remove_from_wishlist_profile(product_id, from_profile_page=False)

    def is_in_wishlist(self, product_id: Any) -> bool:
        try:
            return normalize_product_id(product_id) in self.wishlist_ids
        except Exception as e:
            logger.debug("Error checking wishlist membership for %r: %s", product_id, e)
            return False

    def get_current_wishlist(self) -> List[str]:
        try:
            user = self.current_user
            if user is not None:
                return list(user.wishlist)
            return self.store.load(None)
        except Exception as e:
            logger.error("Error getting wishlist: %s", e)
            return []

    def sync_wishlist(self) -> OperationResult:
        """Re-read the active stored list and materialize it again."""
        try:
            user = self.current_user
            stored = self.store.load(user.user_id if user else None)
            if stored:
                if user is not None:
                    with self._lock:
                        self.current_user = user.with_wishlist(stored)
                self._set_ids(stored)
                self.fetch_wishlist_products(stored)
            return OperationResult(True, f"Wishlist synced ({len(stored)} items)")
        except Exception as e:
            logger.error("Error syncing wishlist: %s", e)
            return OperationResult(False, "Failed to sync wishlist")

    # -- materialization ---------------------------------------------------

    def _fetch_one(self, pid: str, token: Optional[str]):
        try:
            return pid, self.client.get_product(pid, token), None
        except (StorefrontError, ValueError) as e:
            logger.warning("Failed to fetch product %s: %s", pid, e)
            return pid, None, e

    def _resolve_products(self, ids: List[str], token: Optional[str]):
        with ThreadPoolExecutor(
            max_workers=min(self.workers, len(ids)),
            thread_name_prefix="wishlist-fetch",
        ) as pool:
            return list(pool.map(lambda pid: self._fetch_one(pid, token), ids))

    def fetch_wishlist_products(self, ids: Optional[Iterable[Any]]) -> List[Product]:
        """
        Resolve ids into catalog products and prune every id that did not
        resolve, so wishlist_ids always matches wishlist_products.

        Pruned ids are removed from local storage right away and, for a
        signed-in user, from the server wishlist by a background task.
        """
        unique_ids = normalize_product_ids(ids)
        if not unique_ids:
            with self._lock:
                self.wishlist_products = []
                self._wishlist_ids = []
            return []

        seq = self._next_seq()
        self.is_wishlist_loading = True
        try:
            token = self.store.token
            results = self._resolve_products(unique_ids, token)

            products: List[Product] = []
            seen = set()
            kept: List[str] = []
            invalid: List[str] = []
            unauthorized = False
            for pid, product, err in results:
                if product is not None:
                    kept.append(pid)
                    if product.product_id not in seen:
                        seen.add(product.product_id)
                        products.append(product)
                else:
                    invalid.append(pid)
                    unauthorized = unauthorized or isinstance(err, AuthError)

            if unauthorized:
                self._forget_token(token)
                token = None

            with self._lock:
                if seq < self._applied_seq:
                    logger.debug("Discarding stale wishlist materialization (seq %d).", seq)
                    return list(self.wishlist_products)
                self._applied_seq = seq
                user = self.current_user
                if invalid and user is not None:
                    self.current_user = user.with_wishlist(kept)
                self.wishlist_products = products
                self._wishlist_ids = kept

            if invalid:
                logger.info("Pruning %d unavailable products from wishlist: %s",
                            len(invalid), invalid)
                self.store.save(kept, user.user_id if user else None)
                if token and user is not None:
                    self._schedule_cleanup(token, invalid)

            return list(products)
        except Exception as e:
            logger.exception("Error fetching wishlist products: %s", e)
            with self._lock:
                self.wishlist_products = []
                self._wishlist_ids = []
            return []
        finally:
            self.is_wishlist_loading = False

    # -- background cleanup ------------------------------------------------

    def _run_cleanup(self, task: PruneTask) -> CleanupReport:
        report = task.run()
        if report.unauthorized:
            self._forget_token(task.token)
        self.last_cleanup = report
        return report

    def _schedule_cleanup(self, token: str, invalid_ids: List[str]):
        task = PruneTask(self.client, token, invalid_ids)
        future = self._cleanup_pool.submit(self._run_cleanup, task)
        with self._lock:
            self._cleanup_futures.append(future)

    def wait_for_cleanup(self, timeout: Optional[float] = None) -> Optional[CleanupReport]:
        with self._lock:
            futures, self._cleanup_futures = self._cleanup_futures, []
        if futures:
            wait(futures, timeout=timeout)
        return self.last_cleanup

    def close(self):
        self.notifier.cancel_all()
        self._cleanup_pool.shutdown(wait=True)
