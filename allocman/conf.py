"""
Allocman configuration.

Usage in settings.py:
    ALLOCMAN = {
        "ALLOCATION_STRATEGY": "fefo",
        "LOCK_TIMEOUT_MS": 2000,
        "RETRY_MAX_ATTEMPTS": 3,
        "RETRY_BACKOFF_SECONDS": 0.05,
        "ALLOCATION_ELIGIBLE_STATUS_CODES": ["ORDER_CONFIRMED"],
    }
"""

from dataclasses import dataclass, field
from typing import Any

from django.conf import settings


def _default_eligible_codes() -> list[str]:
    return [
        'ORDER_CONFIRMED',
        'ORDER_ALLOCATING',
        'ORDER_PARTIALLY_ALLOCATED',
        'ORDER_BACKORDERED',
    ]


@dataclass
class AllocmanSettings:
    """Allocman configuration settings."""

    # Batch ordering for reservations: "fefo" or "fifo"
    ALLOCATION_STRATEGY: str = 'fefo'

    # Max wait for a batch row lock (PostgreSQL lock_timeout; 0 = wait forever)
    LOCK_TIMEOUT_MS: int = 2000

    # Retries on lock contention before AllocationUnavailableError
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BACKOFF_SECONDS: float = 0.05
    RETRY_MAX_BACKOFF_SECONDS: float = 1.0

    # Order status codes from which allocation may start
    ALLOCATION_ELIGIBLE_STATUS_CODES: list[str] = field(default_factory=_default_eligible_codes)

    # Batch size for expire_batches processing
    EXPIRED_BATCH_SIZE: int = 200


def get_allocman_settings() -> AllocmanSettings:
    """Load settings from Django settings."""
    user_settings: dict[str, Any] = getattr(settings, "ALLOCMAN", {})
    return AllocmanSettings(**{
        k: v for k, v in user_settings.items()
        if k in AllocmanSettings.__dataclass_fields__
    })


class _LazySettings:
    """Lazy proxy that re-reads settings on every attribute access."""

    def __getattr__(self, name):
        return getattr(get_allocman_settings(), name)


allocman_settings = _LazySettings()
