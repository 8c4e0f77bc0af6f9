"""
Django Allocman: batch allocation and BOM readiness engine.

Usage:
    from allocman import inventory, AllocmanError

    inventory.receive(80, sku, "LOT-A", expiry_date=date(2025, 1, 1))
    inventory.reserve(order)          # FEFO draws across batches
    inventory.confirm(order)
    inventory.compute_readiness(bom)  # max producible units, shortages
"""


def __getattr__(name):
    """Lazy import to avoid circular imports during app loading."""
    if name == 'inventory':
        from allocman.service import Inventory
        return Inventory
    elif name == 'AllocmanError':
        from allocman.exceptions import AllocmanError
        return AllocmanError
    elif name == 'InsufficientInventoryError':
        from allocman.exceptions import InsufficientInventoryError
        return InsufficientInventoryError
    elif name == 'DuplicateRegistrationError':
        from allocman.exceptions import DuplicateRegistrationError
        return DuplicateRegistrationError
    elif name == 'TerminalStateViolationError':
        from allocman.exceptions import TerminalStateViolationError
        return TerminalStateViolationError
    elif name == 'AllocationUnavailableError':
        from allocman.exceptions import AllocationUnavailableError
        return AllocationUnavailableError
    elif name == 'InvariantViolationError':
        from allocman.exceptions import InvariantViolationError
        return InvariantViolationError
    elif name == 'BatchRegistryEntry':
        from allocman.models.registry import BatchRegistryEntry
        return BatchRegistryEntry
    elif name == 'InventoryAllocation':
        from allocman.models.allocation import InventoryAllocation
        return InventoryAllocation
    elif name == 'BatchActivityLog':
        from allocman.models.activity import BatchActivityLog
        return BatchActivityLog
    elif name == 'RetryPolicy':
        from allocman.locking import RetryPolicy
        return RetryPolicy
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    'inventory',
    'AllocmanError',
    'InsufficientInventoryError',
    'DuplicateRegistrationError',
    'TerminalStateViolationError',
    'AllocationUnavailableError',
    'InvariantViolationError',
    'BatchRegistryEntry',
    'InventoryAllocation',
    'BatchActivityLog',
    'RetryPolicy',
]

__version__ = '0.1.0'
