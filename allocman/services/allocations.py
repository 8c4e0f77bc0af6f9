"""
Allocation engine: reserve, confirm and release batch quantity for orders.

Protocol, per batch:

    reserve:  available -= q, reserved += q    (allocation → RESERVED)
    confirm:  reserved  -= q, consumed += q    (allocation → CONFIRMED)
    release:  reserved  -= q, available += q   (allocation → RELEASED)

Every quantity change happens inside transaction.atomic() after an
exclusive row lock on the batch, and the amounts are re-validated after the
lock is taken. There is no engine-wide lock: orders drawing from disjoint
batches never wait for each other.

A line item is all-or-nothing: when eligible supply cannot cover it, every
draw made for it is rolled back. Line items of the same order succeed or
fail independently.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from django.db import transaction
from django.db.models import Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

from allocman.exceptions import AllocmanError, InsufficientInventoryError
from allocman.locking import RetryPolicy, bound_lock_wait, restore_lock_wait, run_with_retry
from allocman.models.allocation import InventoryAllocation
from allocman.models.enums import ActivityAction, AllocationStatus, BatchStatus
from allocman.models.order import OrderItem
from allocman.ordering import normalize_strategy
from allocman.services.activity import ActivityLog
from allocman.services.registry import (
    BatchHandle,
    BatchRegistry,
    Requirement,
    save_batch,
)
from allocman.snapshots import BatchSnapshot

logger = logging.getLogger('allocman')


@dataclass
class LineItemReservation:
    """Outcome of reserving one order item."""

    order_item: OrderItem
    requested: Decimal
    allocations: list[InventoryAllocation] = field(default_factory=list)
    error: InsufficientInventoryError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def reserved(self) -> Decimal:
        return sum((a.quantity for a in self.allocations), Decimal('0'))


def held_quantity(order_item) -> Decimal:
    """Quantity of an order item currently reserved or confirmed."""
    return InventoryAllocation.objects.filter(
        order_item=order_item,
    ).holding_stock().aggregate(
        t=Coalesce(Sum('quantity'), Decimal('0'))
    )['t']


class AllocationEngine:
    """Reservation lifecycle methods."""

    # ══════════════════════════════════════════════════════════════
    # RESERVE
    # ══════════════════════════════════════════════════════════════

    @classmethod
    def reserve(cls, order, line_items=None, actor=None, strategy=None,
                retry: RetryPolicy | None = None, as_of: date | None = None
                ) -> list[LineItemReservation]:
        """
        Reserve stock for the order's line items.

        Each line item draws its outstanding quantity (ordered minus already
        reserved/confirmed) from eligible batches in strategy order.

        Args:
            order: Order in an allocation-eligible status
            line_items: OrderItems to reserve (None = all items of the order)
            actor: user performing the reservation
            strategy: 'fefo' / 'fifo' (None = ALLOCMAN setting)
            retry: RetryPolicy for lock contention (None = ALLOCMAN settings)
            as_of: date for expiry checks (None = today)

        Returns:
            One LineItemReservation per line item. Shortages are reported
            in .error, never raised.

        Raises:
            AllocmanError('ORDER_NOT_ELIGIBLE'): order status forbids allocation
            AllocationUnavailableError: lock contention outlasted the retries
        """
        from allocman.services.orders import OrderStateMachine

        if not OrderStateMachine.is_allocation_eligible(order):
            raise AllocmanError(
                'ORDER_NOT_ELIGIBLE',
                order=order.order_number,
                status=order.status.code,
            )

        items = list(line_items) if line_items is not None else list(order.items.order_by('pk'))
        results = []

        for item in items:
            try:
                allocations = cls._reserve_item(
                    order, item, None, actor, strategy, retry, as_of,
                )
                results.append(LineItemReservation(
                    order_item=item,
                    requested=item.quantity_ordered,
                    allocations=allocations,
                ))
            except InsufficientInventoryError as exc:
                results.append(LineItemReservation(
                    order_item=item,
                    requested=item.quantity_ordered,
                    error=exc,
                ))

        logger.info(
            "allocation.order_reserved",
            extra={
                "order": order.order_number,
                "items": len(results),
                "failed": sum(1 for r in results if not r.ok),
            },
        )
        return results

    @classmethod
    def reserve_line_item(cls, order_item, quantity=None, actor=None, strategy=None,
                          retry: RetryPolicy | None = None, as_of: date | None = None
                          ) -> list[InventoryAllocation]:
        """
        Reserve one order item.

        Returns:
            The RESERVED allocations created (empty when nothing is outstanding)

        Raises:
            InsufficientInventoryError: eligible supply below the quantity;
                no draw is kept
            AllocmanError('INVALID_QUANTITY'): quantity <= 0 or above outstanding
            AllocmanError('ORDER_NOT_ELIGIBLE')
            AllocationUnavailableError
        """
        from allocman.services.orders import OrderStateMachine

        order = order_item.order
        if not OrderStateMachine.is_allocation_eligible(order):
            raise AllocmanError(
                'ORDER_NOT_ELIGIBLE',
                order=order.order_number,
                status=order.status.code,
            )
        return cls._reserve_item(order, order_item, quantity, actor, strategy, retry, as_of)

    @classmethod
    def _reserve_item(cls, order, item, quantity, actor, strategy, retry, as_of):
        if item.order_id != order.pk:
            raise AllocmanError('INVALID_ORDER_ITEM', order_item_id=item.pk, order=order.order_number)

        if quantity is not None:
            quantity = Decimal(quantity)
            if quantity <= 0:
                raise AllocmanError(
                    'INVALID_QUANTITY',
                    requested=quantity,
                    order_item_id=item.pk,
                )

        strategy = normalize_strategy(strategy)
        as_of = as_of or timezone.localdate()
        requirement = Requirement.for_order_item(item)
        attempted = []

        def attempt():
            attempted.clear()
            return cls._reserve_once(order, item, quantity, requirement,
                                     strategy, as_of, actor, attempted)

        try:
            return run_with_retry(
                attempt, retry, operation='reserve',
                order=order.order_number, order_item_id=item.pk,
            )
        except InsufficientInventoryError:
            cls._record_failed(order, item, attempted, actor)
            raise

    @classmethod
    def _reserve_once(cls, order, item, quantity, requirement, strategy,
                      as_of, actor, attempted) -> list[InventoryAllocation]:
        with transaction.atomic():
            previous_timeout = bound_lock_wait()

            # The item lock serializes reserves of the same line; the
            # outstanding amount is read after it, right before drawing.
            OrderItem.objects.select_for_update().get(pk=item.pk)
            candidates = BatchRegistry.list_eligible(requirement, strategy, as_of)

            outstanding = item.quantity_ordered - held_quantity(item)
            if quantity is None:
                quantity = outstanding
                if quantity <= 0:
                    restore_lock_wait(previous_timeout)
                    return []
            elif quantity > outstanding:
                raise AllocmanError(
                    'INVALID_QUANTITY',
                    requested=quantity,
                    outstanding=outstanding,
                    order_item_id=item.pk,
                )

            remaining = quantity
            allocations = []

            for handle in candidates:
                if remaining <= 0:
                    break

                batch = handle.lock()

                # Re-validate under lock: another writer may have drawn,
                # quarantined or expired it since the listing.
                if batch.status in BatchStatus.ineligible():
                    continue
                if batch.expiry_date is not None and batch.expiry_date < as_of:
                    continue
                take = min(batch.available_quantity, remaining)
                if take <= 0:
                    continue

                previous = BatchSnapshot.of(batch)
                batch.available_quantity -= take
                batch.reserved_quantity += take
                save_batch(batch)

                allocation = InventoryAllocation.objects.create(
                    order=order,
                    order_item=item,
                    registry_entry=handle.entry,
                    quantity=take,
                    status=AllocationStatus.RESERVED,
                    created_by=actor,
                    metadata={'strategy': strategy},
                )
                ActivityLog.record(
                    handle.entry,
                    ActivityAction.RESERVED,
                    previous=previous,
                    new=BatchSnapshot.of(batch),
                    summary=f"Reserved {take} for {order.order_number}",
                    actor=actor,
                    allocation=allocation,
                )
                attempted.append((handle, take))
                allocations.append(allocation)
                remaining -= take

            if remaining > 0:
                logger.warning(
                    "allocation.insufficient",
                    extra={
                        "order": order.order_number,
                        "order_item_id": item.pk,
                        "requested": str(quantity),
                        "available": str(quantity - remaining),
                    },
                )
                raise InsufficientInventoryError(
                    requested=quantity,
                    available=quantity - remaining,
                    shortage=remaining,
                    order=order.order_number,
                    order_item_id=item.pk,
                )

            logger.info(
                "allocation.reserved",
                extra={
                    "order": order.order_number,
                    "order_item_id": item.pk,
                    "qty": str(quantity),
                    "batches": [a.registry_entry.registry_id for a in allocations],
                },
            )
            restore_lock_wait(previous_timeout)
            return allocations

    @classmethod
    def _record_failed(cls, order, item, attempted, actor):
        """Keep the rolled-back draws of a failed line item as FAILED rows."""
        if not attempted:
            return
        with transaction.atomic():
            for handle, take in attempted:
                InventoryAllocation.objects.create(
                    order=order,
                    order_item=item,
                    registry_entry=handle.entry,
                    quantity=take,
                    status=AllocationStatus.FAILED,
                    created_by=actor,
                    resolved_at=timezone.now(),
                    metadata={'reason': 'insufficient_inventory'},
                )

    # ══════════════════════════════════════════════════════════════
    # CONFIRM / RELEASE
    # ══════════════════════════════════════════════════════════════

    @classmethod
    def confirm(cls, order, actor=None, retry: RetryPolicy | None = None
                ) -> list[InventoryAllocation]:
        """
        Turn the order's RESERVED allocations into permanent deductions.

        Idempotent: allocations already confirmed (or released) are left
        alone, so a second call confirms nothing.

        Returns:
            Allocations confirmed by this call
        """
        def attempt():
            with transaction.atomic():
                previous_timeout = bound_lock_wait()
                allocations = cls._lock_allocations(order, [AllocationStatus.RESERVED])
                now = timezone.now()

                for allocation, batch in cls._with_locked_batches(allocations):
                    previous = BatchSnapshot.of(batch)
                    batch.reserved_quantity -= allocation.quantity
                    batch.consumed_quantity += allocation.quantity
                    save_batch(batch)

                    allocation.status = AllocationStatus.CONFIRMED
                    allocation.resolved_at = now
                    allocation.save(update_fields=['status', 'resolved_at'])

                    ActivityLog.record(
                        allocation.registry_entry,
                        ActivityAction.CONFIRMED,
                        previous=previous,
                        new=BatchSnapshot.of(batch),
                        summary=f"Confirmed {allocation.quantity} for {order.order_number}",
                        actor=actor,
                        allocation=allocation,
                    )
                restore_lock_wait(previous_timeout)
                return allocations

        confirmed = run_with_retry(attempt, retry, operation='confirm', order=order.order_number)
        logger.info(
            "allocation.confirmed",
            extra={"order": order.order_number, "allocations": len(confirmed)},
        )
        return confirmed

    @classmethod
    def release(cls, order, actor=None, reason='Released', order_items=None,
                retry: RetryPolicy | None = None) -> list[InventoryAllocation]:
        """
        Give back the stock held by the order's non-confirmed allocations.

        Always safe, including for orders with nothing reserved.

        Args:
            order_items: restrict to these items (None = whole order)

        Returns:
            Allocations released by this call
        """
        def attempt():
            with transaction.atomic():
                previous_timeout = bound_lock_wait()
                allocations = cls._lock_allocations(
                    order, AllocationStatus.releasable(), order_items,
                )
                now = timezone.now()

                for allocation, batch in cls._with_locked_batches(allocations):
                    if allocation.status == AllocationStatus.RESERVED:
                        previous = BatchSnapshot.of(batch)
                        batch.reserved_quantity -= allocation.quantity
                        batch.available_quantity += allocation.quantity
                        save_batch(batch)
                        ActivityLog.record(
                            allocation.registry_entry,
                            ActivityAction.RELEASED,
                            previous=previous,
                            new=BatchSnapshot.of(batch),
                            summary=f"Released {allocation.quantity} from {order.order_number}: {reason}",
                            actor=actor,
                            allocation=allocation,
                        )

                    allocation.status = AllocationStatus.RELEASED
                    allocation.resolved_at = now
                    allocation.metadata['release_reason'] = reason
                    allocation.save(update_fields=['status', 'resolved_at', 'metadata'])
                restore_lock_wait(previous_timeout)
                return allocations

        released = run_with_retry(attempt, retry, operation='release', order=order.order_number)
        logger.info(
            "allocation.released",
            extra={"order": order.order_number, "allocations": len(released), "reason": reason},
        )
        return released

    @classmethod
    def _lock_allocations(cls, order, statuses, order_items=None) -> list[InventoryAllocation]:
        qs = InventoryAllocation.objects.select_for_update(of=('self',)).filter(
            order=order, status__in=statuses,
        )
        if order_items is not None:
            qs = qs.filter(order_item__in=order_items)
        return list(qs.select_related('registry_entry').order_by('registry_entry_id', 'pk'))

    @classmethod
    def _with_locked_batches(cls, allocations):
        """Pair allocations with their batch, each batch locked once, in registry order."""
        locked = {}
        for allocation in allocations:
            entry_id = allocation.registry_entry_id
            if entry_id not in locked:
                locked[entry_id] = BatchHandle.of(allocation.registry_entry).lock()
            yield allocation, locked[entry_id]

    # ══════════════════════════════════════════════════════════════
    # QUERIES
    # ══════════════════════════════════════════════════════════════

    @classmethod
    def allocations_for(cls, order, status=None):
        qs = InventoryAllocation.objects.for_order(order).select_related('registry_entry')
        if status is not None:
            qs = qs.filter(status=status)
        return qs
