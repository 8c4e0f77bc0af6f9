"""
Exceptions for Allocman.

All errors are AllocmanError with a structured code for programmatic handling.
Subclasses exist for the errors callers branch on by type.
"""

from decimal import Decimal
from typing import Any


class AllocmanError(Exception):
    """
    Structured exception for allocation operations.

    Usage:
        try:
            inventory.reserve_line_item(order_item)
        except InsufficientInventoryError as e:
            print(f"Only {e.available} available")

    Attributes:
        code: Error code for programmatic handling
        message: Human-readable message
        data: Additional context data
    """

    default_code = 'ALLOCMAN_ERROR'

    _default_messages = {
        'ALLOCMAN_ERROR': 'Allocation error',
        'INVALID_QUANTITY': 'Invalid quantity (must be positive)',
        'KIND_MISMATCH': 'Batch kind does not match the batch type',
        'BATCH_NOT_FOUND': 'Batch not registered',
        'ORDER_NOT_ELIGIBLE': 'Order status does not allow allocation',
        'INVALID_ORDER_ITEM': 'Order item does not belong to the order',
        'REASON_REQUIRED': 'A reason is required',
        'INVALID_STATUS': 'Invalid status for this operation',
        'INSUFFICIENT_INVENTORY': 'Requested quantity exceeds eligible supply',
        'DUPLICATE_REGISTRATION': 'Batch is already registered',
        'TERMINAL_STATE': 'Order is in a final status',
        'INVALID_TRANSITION': 'Status transition not allowed',
        'ALLOCATION_UNAVAILABLE': 'Inventory is busy, try again',
        'INVARIANT_VIOLATION': 'Inventory invariant violated',
    }

    def __init__(self, code: str | None = None, message: str | None = None, **data):
        self.code = code or self.default_code
        self.message = message or self._default_messages.get(self.code, self.code)
        self.data = data
        super().__init__(self.message)

    @property
    def available(self) -> Decimal:
        """Shortcut for data['available']."""
        return self.data.get('available', Decimal('0'))

    @property
    def requested(self) -> Decimal:
        """Shortcut for data['requested']."""
        return self.data.get('requested', Decimal('0'))

    def as_dict(self) -> dict[str, Any]:
        """Serialize to dict (useful for APIs)."""
        return {
            'code': self.code,
            'message': self.message,
            'data': {
                k: str(v) if isinstance(v, Decimal) else v
                for k, v in self.data.items()
            }
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code!r}, {self.data!r})"


class InsufficientInventoryError(AllocmanError):
    """Demand exceeds eligible supply. Business fact, never retried."""

    default_code = 'INSUFFICIENT_INVENTORY'

    def __init__(self, message: str | None = None, **data):
        super().__init__(self.default_code, message, **data)


class DuplicateRegistrationError(AllocmanError):
    """The underlying batch already has a registry entry."""

    default_code = 'DUPLICATE_REGISTRATION'

    def __init__(self, message: str | None = None, **data):
        super().__init__(self.default_code, message, **data)


class TerminalStateViolationError(AllocmanError):
    """Transition attempted out of a final order status."""

    default_code = 'TERMINAL_STATE'

    def __init__(self, message: str | None = None, **data):
        super().__init__(self.default_code, message, **data)


class InvalidTransitionError(AllocmanError):
    """Transition goes back in category or is not in the order type's table."""

    default_code = 'INVALID_TRANSITION'

    def __init__(self, message: str | None = None, **data):
        super().__init__(self.default_code, message, **data)


class AllocationUnavailableError(AllocmanError):
    """Lock timeout or store unavailable after bounded retries."""

    default_code = 'ALLOCATION_UNAVAILABLE'

    def __init__(self, message: str | None = None, **data):
        super().__init__(self.default_code, message, **data)


class InvariantViolationError(AllocmanError):
    """
    A quantity invariant does not hold.

    Always a bug. Raised inside the atomic block so the whole transaction
    rolls back; never caught by Allocman.
    """

    default_code = 'INVARIANT_VIOLATION'

    def __init__(self, message: str | None = None, **data):
        super().__init__(self.default_code, message, **data)
