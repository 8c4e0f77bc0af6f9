"""
Order status state machine.

Generic rules, for every order type:
- a final status admits no transition
- the target category may not come before the current one
  (draft → confirmation → processing → shipment → payment → return → completion)

On top of that each OrderType may restrict, per status code, which codes
come next (OrderType.transitions).
"""

import logging
from dataclasses import dataclass

from django.db import transaction
from django.utils import timezone

from allocman.conf import allocman_settings
from allocman.exceptions import (
    AllocmanError,
    InvalidTransitionError,
    TerminalStateViolationError,
)
from allocman.models.enums import OrderStatusCategory
from allocman.models.order import Order, OrderStatus

logger = logging.getLogger('allocman')


@dataclass(frozen=True)
class OrderAllocationState:
    """Where an order stands in its lifecycle."""

    order_id: int
    code: str
    category: str
    is_final: bool

    @property
    def sequence(self) -> int:
        return OrderStatusCategory.sequence(self.category)


class OrderStateMachine:
    """Order status transitions."""

    @classmethod
    def state(cls, order) -> OrderAllocationState:
        status = order.status
        return OrderAllocationState(
            order_id=order.pk,
            code=status.code,
            category=status.category,
            is_final=status.is_final,
        )

    @classmethod
    def is_allocation_eligible(cls, order) -> bool:
        """May stock be reserved for this order in its current status?"""
        status = order.status
        if status.is_final:
            return False
        return status.code in allocman_settings.ALLOCATION_ELIGIBLE_STATUS_CODES

    @classmethod
    def check_transition(cls, order, target: OrderStatus) -> None:
        """
        Raise unless order may move to target.

        Raises:
            TerminalStateViolationError: current status is final
            InvalidTransitionError: backwards in category, or not in the
                order type's transition table
        """
        current = order.status
        if current.code == target.code:
            return

        if current.is_final:
            raise TerminalStateViolationError(
                order=order.order_number,
                from_code=current.code,
                to_code=target.code,
            )

        if target.sequence < current.sequence:
            raise InvalidTransitionError(
                f"Cannot move back from {current.category} to {target.category}",
                order=order.order_number,
                from_code=current.code,
                to_code=target.code,
            )

        allowed = order.order_type.allowed_targets(current.code)
        if allowed is not None and target.code not in allowed:
            raise InvalidTransitionError(
                f"{order.order_type.code}: {current.code} cannot move to {target.code}",
                order=order.order_number,
                from_code=current.code,
                to_code=target.code,
                allowed=allowed,
            )

    @classmethod
    def can_transition(cls, order, to_code: str) -> bool:
        target = OrderStatus.objects.filter(code=to_code).first()
        if target is None:
            return False
        try:
            cls.check_transition(order, target)
        except (TerminalStateViolationError, InvalidTransitionError):
            return False
        return True

    @classmethod
    def transition(cls, order, to_code: str, actor=None, reason: str = '') -> Order:
        """
        Move an order to another status code.

        Concurrency:
            - Runs under transaction.atomic()
            - Locks the order row and checks the rules against the locked state

        Raises:
            AllocmanError('INVALID_STATUS'): unknown status code
            TerminalStateViolationError
            InvalidTransitionError
        """
        target = OrderStatus.objects.filter(code=to_code).first()
        if target is None:
            raise AllocmanError('INVALID_STATUS', requested=to_code)

        with transaction.atomic():
            locked = (
                Order.objects.select_for_update(of=('self',))
                .select_related('status', 'order_type')
                .get(pk=order.pk)
            )
            previous = locked.status
            cls.check_transition(locked, target)

            if previous.code != target.code:
                locked.status = target
                locked.status_date = timezone.now()
                locked.save(update_fields=['status', 'status_date', 'updated_at'])

                logger.info(
                    "order.status_changed",
                    extra={
                        "order": locked.order_number,
                        "from_code": previous.code,
                        "to_code": target.code,
                        "actor": getattr(actor, 'pk', None),
                        "reason": reason,
                    },
                )

        order.status = locked.status
        order.status_date = locked.status_date
        return order
