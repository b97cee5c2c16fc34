# core/cleanup.py
import os
from dataclasses import dataclass, field
from typing import List

from tenacity import (
    RetryError,
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from remote.errors import AuthError

from .logger import get_logger

logger = get_logger(__name__)

CLEANUP_ATTEMPTS = int(os.getenv("CLEANUP_ATTEMPTS", "3"))
CLEANUP_MAX_WAIT = float(os.getenv("CLEANUP_MAX_WAIT", "10"))


@dataclass
class CleanupReport:
    removed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    unauthorized: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed


class PruneTask:
    """
    Remove product ids that no longer resolve from the server-side wishlist.

    Each id is retried independently; a failure is logged and recorded in
    the report, never raised. A rejected token is not retried and ends the
    run, leaving the remaining ids as failed.
    """

    def __init__(self, client, token: str, invalid_ids: List[str],
                 attempts: int = CLEANUP_ATTEMPTS, max_wait: float = CLEANUP_MAX_WAIT):
        self.client = client
        self.token = token
        self.invalid_ids = list(invalid_ids)
        self.attempts = max(1, attempts)
        self.max_wait = max_wait

    def _remove_one(self, product_id: str):
        @retry(
            retry=retry_if_not_exception_type(AuthError),
            wait=wait_exponential_jitter(initial=0.5, max=self.max_wait),
            stop=stop_after_attempt(self.attempts),
        )
        def _call():
            self.client.remove_wishlist_item(self.token, product_id)

        _call()

    def run(self) -> CleanupReport:
        report = CleanupReport()
        for i, pid in enumerate(self.invalid_ids):
            try:
                self._remove_one(pid)
                report.removed.append(pid)
            except AuthError as e:
                logger.warning("Wishlist cleanup stopped, token rejected: %s", e)
                report.unauthorized = True
                report.failed.extend(self.invalid_ids[i:])
                break
            except RetryError as e:
                logger.warning(
                    "Failed to clean invalid item %s from server wishlist after %d attempts: %s",
                    pid, self.attempts, e.last_attempt.exception(),
                )
                report.failed.append(pid)
            except Exception as e:
                logger.warning("Unexpected error cleaning invalid item %s: %s", pid, e)
                report.failed.append(pid)

        logger.info(
            "Wishlist cleanup finished: %d removed, %d failed.",
            len(report.removed), len(report.failed),
        )
        return report
