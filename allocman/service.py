"""
Inventory Service: the single public interface for allocation operations.

Usage:
    from allocman import inventory, AllocmanError

    handle = inventory.receive(80, sku, "LOT-A", expiry_date=date(2025, 1, 1))
    results = inventory.reserve(order)
    inventory.confirm(order)
    inventory.compute_readiness(bom).max_producible_units
"""

import logging
from datetime import date
from decimal import Decimal

from allocman.locking import RetryPolicy
from allocman.models.order import Order
from allocman.models.registry import BatchRegistryEntry
from allocman.services.activity import ActivityLog
from allocman.services.allocations import AllocationEngine, LineItemReservation
from allocman.services.orders import OrderAllocationState, OrderStateMachine
from allocman.services.readiness import BomReadiness, BomReadinessCalculator
from allocman.services.registry import BatchHandle, BatchRegistry, Requirement

logger = logging.getLogger('allocman')

# Order statuses set by allocate_order(), when the host defines them
ALLOCATED = 'ORDER_ALLOCATED'
PARTIALLY_ALLOCATED = 'ORDER_PARTIALLY_ALLOCATED'
BACKORDERED = 'ORDER_BACKORDERED'


class Inventory:
    """
    Single interface for all allocation operations.

    IMPORTANT: All state-changing methods use atomic transactions
    with per-batch row locks. See each service's docstrings.
    """

    # ══════════════════════════════════════════════════════════════
    # CORE: REGISTRY
    # ══════════════════════════════════════════════════════════════

    @classmethod
    def register(cls, batch, kind=None, actor=None, note='') -> BatchHandle:
        return BatchRegistry.register(batch, kind=kind, actor=actor, note=note)

    @classmethod
    def receive(cls, quantity, target, lot_number, expiry_date=None,
                inbound_date=None, actor=None, supplier='', **metadata) -> BatchHandle:
        return BatchRegistry.receive(
            quantity, target, lot_number,
            expiry_date=expiry_date,
            inbound_date=inbound_date,
            actor=actor,
            supplier=supplier,
            **metadata
        )

    @classmethod
    def resolve(cls, registry_id) -> BatchHandle:
        return BatchRegistry.resolve(registry_id)

    @classmethod
    def list_eligible(cls, requirement: Requirement, strategy=None,
                      as_of: date | None = None) -> list[BatchHandle]:
        return BatchRegistry.list_eligible(requirement, strategy=strategy, as_of=as_of)

    @classmethod
    def available(cls, target, as_of: date | None = None) -> Decimal:
        """Eligible available quantity for a Sku, PackagingMaterial or Part."""
        from allocman.models.catalog import PackagingMaterial, Part, Sku

        if isinstance(target, Sku):
            requirement = Requirement.for_sku(target)
        elif isinstance(target, PackagingMaterial):
            requirement = Requirement.for_material(target)
        elif isinstance(target, Part):
            requirement = Requirement.for_part(target)
        else:
            raise TypeError(f"Cannot compute availability for {type(target).__name__}")
        return BatchRegistry.available_for(requirement, as_of=as_of)

    @classmethod
    def adjust(cls, registry_id, new_available, reason, actor=None):
        return BatchRegistry.adjust(registry_id, new_available, reason, actor=actor)

    @classmethod
    def quarantine(cls, registry_id, reason, actor=None):
        return BatchRegistry.quarantine(registry_id, reason, actor=actor)

    @classmethod
    def release_quarantine(cls, registry_id, reason, actor=None):
        return BatchRegistry.release_quarantine(registry_id, reason, actor=actor)

    @classmethod
    def expire_due(cls, as_of: date | None = None) -> int:
        return BatchRegistry.expire_due(as_of)

    # ══════════════════════════════════════════════════════════════
    # CORE: ALLOCATIONS
    # ══════════════════════════════════════════════════════════════

    @classmethod
    def reserve(cls, order: Order, line_items=None, actor=None, strategy=None,
                retry: RetryPolicy | None = None,
                as_of: date | None = None) -> list[LineItemReservation]:
        return AllocationEngine.reserve(
            order, line_items, actor=actor, strategy=strategy, retry=retry, as_of=as_of,
        )

    @classmethod
    def reserve_line_item(cls, order_item, quantity=None, actor=None, strategy=None,
                          retry: RetryPolicy | None = None, as_of: date | None = None):
        return AllocationEngine.reserve_line_item(
            order_item, quantity, actor=actor, strategy=strategy, retry=retry, as_of=as_of,
        )

    @classmethod
    def confirm(cls, order: Order, actor=None, retry: RetryPolicy | None = None):
        return AllocationEngine.confirm(order, actor=actor, retry=retry)

    @classmethod
    def release(cls, order: Order, actor=None, reason='Released', order_items=None,
                retry: RetryPolicy | None = None):
        return AllocationEngine.release(
            order, actor=actor, reason=reason, order_items=order_items, retry=retry,
        )

    @classmethod
    def allocate_order(cls, order: Order, actor=None, strategy=None,
                       retry: RetryPolicy | None = None) -> list[LineItemReservation]:
        """
        Reserve every line item and move the order to its allocation status.

        All items reserved      → ORDER_ALLOCATED
        Some items reserved     → ORDER_PARTIALLY_ALLOCATED
        Nothing reserved        → ORDER_BACKORDERED

        The status move is skipped when the host has not defined the code
        or the order type's transition table forbids it, and when the order
        has no line items.
        """
        results = AllocationEngine.reserve(order, actor=actor, strategy=strategy, retry=retry)
        if not results:
            logger.info(
                "order.allocation_status_skipped",
                extra={"order": order.order_number, "reason": "no_line_items"},
            )
            return results

        failed = sum(1 for r in results if not r.ok)
        if not failed:
            to_code = ALLOCATED
        elif failed < len(results):
            to_code = PARTIALLY_ALLOCATED
        else:
            to_code = BACKORDERED

        if OrderStateMachine.can_transition(order, to_code):
            OrderStateMachine.transition(order, to_code, actor=actor, reason='allocation')
        else:
            logger.info(
                "order.allocation_status_skipped",
                extra={"order": order.order_number, "to_code": to_code},
            )
        return results

    @classmethod
    def allocations_for(cls, order: Order, status=None):
        return AllocationEngine.allocations_for(order, status)

    # ══════════════════════════════════════════════════════════════
    # CORE: READINESS
    # ══════════════════════════════════════════════════════════════

    @classmethod
    def compute_readiness(cls, bom, target_units: int | None = None,
                          as_of: date | None = None) -> BomReadiness:
        return BomReadinessCalculator.compute_readiness(bom, target_units, as_of)

    # ══════════════════════════════════════════════════════════════
    # CORE: ORDERS
    # ══════════════════════════════════════════════════════════════

    @classmethod
    def order_state(cls, order: Order) -> OrderAllocationState:
        return OrderStateMachine.state(order)

    @classmethod
    def transition(cls, order: Order, to_code: str, actor=None, reason: str = '') -> Order:
        return OrderStateMachine.transition(order, to_code, actor=actor, reason=reason)

    # ══════════════════════════════════════════════════════════════
    # AUDIT
    # ══════════════════════════════════════════════════════════════

    @classmethod
    def history(cls, registry_id):
        """Activity log of a batch, oldest first."""
        return ActivityLog.for_batch(registry_id)

    @classmethod
    def registered(cls):
        return BatchRegistryEntry.objects.select_related(
            'product_batch', 'packaging_material_batch',
        )
