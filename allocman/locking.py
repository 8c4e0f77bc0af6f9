"""
Lock wait bounds and contention retries.

Business failures (InsufficientInventoryError...) pass straight through.
Only infrastructure failures, i.e. django.db.OperationalError raised by a
lock timeout, a deadlock or a busy database, are retried, and each retry
runs a fresh transaction.
"""

import logging
import random
import time
from dataclasses import dataclass

from django.db import OperationalError, connection

from allocman.conf import allocman_settings
from allocman.exceptions import AllocationUnavailableError

logger = logging.getLogger('allocman')


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff for lock contention."""

    max_attempts: int = 3
    backoff: float = 0.05
    max_backoff: float = 1.0

    @classmethod
    def from_settings(cls) -> 'RetryPolicy':
        return cls(
            max_attempts=allocman_settings.RETRY_MAX_ATTEMPTS,
            backoff=allocman_settings.RETRY_BACKOFF_SECONDS,
            max_backoff=allocman_settings.RETRY_MAX_BACKOFF_SECONDS,
        )

    def delay(self, attempt: int) -> float:
        """Sleep before retry number `attempt` (1-based), with jitter."""
        base = min(self.max_backoff, self.backoff * (2 ** (attempt - 1)))
        return base * (0.6 + 0.4 * random.random())


def bound_lock_wait(timeout_ms: int | None = None) -> str | None:
    """
    Bound row-lock waits inside the current transaction.

    Must run inside transaction.atomic(). PostgreSQL only: other backends
    either serialize writers (SQLite) or have no per-transaction setting.

    set_config(.., true) outlives the savepoint it was issued in and lasts
    until the outermost transaction ends. Pass the returned previous value
    to restore_lock_wait() before leaving the atomic block so a caller's
    own transaction keeps its timeout. A rolled-back savepoint reverts the
    setting by itself.

    Returns:
        The previous lock_timeout, or None when nothing was changed
    """
    if timeout_ms is None:
        timeout_ms = allocman_settings.LOCK_TIMEOUT_MS
    if not timeout_ms or connection.vendor != 'postgresql':
        return None
    with connection.cursor() as cursor:
        cursor.execute("SELECT current_setting('lock_timeout')")
        previous = cursor.fetchone()[0]
        cursor.execute(
            "SELECT set_config('lock_timeout', %s, true)",
            [f"{int(timeout_ms)}ms"],
        )
    return previous


def restore_lock_wait(previous: str | None) -> None:
    """Put back the lock_timeout returned by bound_lock_wait()."""
    if previous is None:
        return
    with connection.cursor() as cursor:
        cursor.execute("SELECT set_config('lock_timeout', %s, true)", [previous])


def run_with_retry(fn, policy: RetryPolicy | None = None, operation: str = '', **context):
    """
    Call fn() until it succeeds, retrying OperationalError with backoff.

    Raises:
        AllocationUnavailableError: after policy.max_attempts failures
    """
    policy = policy or RetryPolicy.from_settings()
    attempts = max(1, policy.max_attempts)

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except OperationalError as exc:
            if attempt >= attempts:
                logger.error(
                    "allocation.unavailable",
                    extra={"operation": operation, "attempts": attempt, "error": str(exc), **context},
                )
                raise AllocationUnavailableError(
                    operation=operation, attempts=attempt, **context,
                ) from exc
            delay = policy.delay(attempt)
            logger.warning(
                "allocation.retry",
                extra={
                    "operation": operation,
                    "attempt": attempt,
                    "max_attempts": attempts,
                    "delay": round(delay, 3),
                    "error": str(exc),
                    **context,
                },
            )
            time.sleep(delay)
