"""
Batch registry: one identity space over product and packaging-material batches.

Registration is the only way a batch becomes allocatable. Every consumer
goes through BatchHandle, a closed variant dispatched on BatchKind.

All state-changing methods use transaction.atomic() with row locks on the
underlying batch.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from allocman.conf import allocman_settings
from allocman.exceptions import (
    AllocmanError,
    DuplicateRegistrationError,
    InvariantViolationError,
)
from allocman.models.batch import PackagingMaterialBatch, ProductBatch
from allocman.models.catalog import PackagingMaterial, Part, Sku
from allocman.models.enums import ActivityAction, BatchKind, BatchStatus
from allocman.models.registry import BatchRegistryEntry
from allocman.ordering import order_by_expressions
from allocman.services.activity import ActivityLog
from allocman.snapshots import BatchSnapshot

logger = logging.getLogger('allocman')


# ══════════════════════════════════════════════════════════════
# KIND DISPATCH
# ══════════════════════════════════════════════════════════════

def batch_model(kind):
    """Concrete batch model for a kind."""
    if kind == BatchKind.PRODUCT:
        return ProductBatch
    if kind == BatchKind.PACKAGING_MATERIAL:
        return PackagingMaterialBatch
    raise InvariantViolationError('Unknown batch kind', kind=kind)


def batch_field(kind) -> str:
    """BatchRegistryEntry field holding the batch of a kind."""
    if kind == BatchKind.PRODUCT:
        return 'product_batch'
    if kind == BatchKind.PACKAGING_MATERIAL:
        return 'packaging_material_batch'
    raise InvariantViolationError('Unknown batch kind', kind=kind)


def kind_of(batch) -> str:
    """Kind of a batch instance, from its type."""
    if isinstance(batch, ProductBatch):
        return BatchKind.PRODUCT
    if isinstance(batch, PackagingMaterialBatch):
        return BatchKind.PACKAGING_MATERIAL
    raise AllocmanError('KIND_MISMATCH', batch_type=type(batch).__name__)


def parse_registry_id(registry_id) -> int:
    """Extract PK from a registry id ("batch:12", 12 or an entry)."""
    if isinstance(registry_id, BatchRegistryEntry):
        return registry_id.pk
    if isinstance(registry_id, int):
        return registry_id
    if isinstance(registry_id, str) and registry_id.startswith('batch:'):
        try:
            return int(registry_id.split(':')[1])
        except (IndexError, ValueError):
            pass
    raise AllocmanError('BATCH_NOT_FOUND', registry_id=str(registry_id))


# ══════════════════════════════════════════════════════════════
# QUANTITY INVARIANTS
# ══════════════════════════════════════════════════════════════

def check_quantities(batch) -> None:
    """
    Raise InvariantViolationError unless the batch ledger is consistent.

        available >= 0, reserved >= 0, consumed >= 0
        available + reserved == received - consumed
    """
    problems = []
    if batch.available_quantity < 0:
        problems.append('available < 0')
    if batch.reserved_quantity < 0:
        problems.append('reserved < 0')
    if batch.consumed_quantity < 0:
        problems.append('consumed < 0')
    if batch.available_quantity + batch.reserved_quantity != batch.on_hand:
        problems.append('available + reserved != received - consumed')

    if problems:
        raise InvariantViolationError(
            f"Batch {batch.kind}:{batch.pk} ledger broken: {', '.join(problems)}",
            kind=str(batch.kind),
            batch_id=batch.pk,
            received=batch.received_quantity,
            available=batch.available_quantity,
            reserved=batch.reserved_quantity,
            consumed=batch.consumed_quantity,
        )


def save_batch(batch) -> None:
    """Derive status, verify the ledger and persist quantity fields."""
    batch.status = batch.derived_status()
    check_quantities(batch)
    batch.save(update_fields=[
        'received_quantity', 'available_quantity', 'reserved_quantity',
        'consumed_quantity', 'status', 'updated_at',
    ])


# ══════════════════════════════════════════════════════════════
# VALUE TYPES
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class BatchHandle:
    """Registered batch of either kind."""

    kind: str
    entry: BatchRegistryEntry
    batch: ProductBatch | PackagingMaterialBatch

    @classmethod
    def of(cls, entry: BatchRegistryEntry) -> 'BatchHandle':
        return cls(kind=entry.kind, entry=entry, batch=entry.batch)

    @property
    def pk(self) -> int:
        return self.entry.pk

    @property
    def registry_id(self) -> str:
        return self.entry.registry_id

    @property
    def expiry_date(self) -> date | None:
        return self.batch.expiry_date

    @property
    def inbound_date(self) -> date:
        return self.batch.inbound_date

    @property
    def available(self) -> Decimal:
        return self.batch.available_quantity

    @property
    def reserved(self) -> Decimal:
        return self.batch.reserved_quantity

    @property
    def target(self):
        """The Sku or PackagingMaterial this batch holds."""
        if self.kind == BatchKind.PRODUCT:
            return self.batch.sku
        if self.kind == BatchKind.PACKAGING_MATERIAL:
            return self.batch.packaging_material
        raise InvariantViolationError('Unknown batch kind', kind=self.kind)

    def lock(self):
        """Re-read the batch row under an exclusive lock."""
        return batch_model(self.kind).objects.select_for_update().get(pk=self.batch.pk)


@dataclass(frozen=True)
class Requirement:
    """What a demand line can be served from: a kind plus target ids."""

    kind: str
    target_ids: tuple[int, ...] = field(default_factory=tuple)

    @classmethod
    def for_sku(cls, sku: Sku) -> 'Requirement':
        return cls(kind=BatchKind.PRODUCT, target_ids=(sku.pk,))

    @classmethod
    def for_material(cls, material: PackagingMaterial) -> 'Requirement':
        return cls(kind=BatchKind.PACKAGING_MATERIAL, target_ids=(material.pk,))

    @classmethod
    def for_part(cls, part: Part) -> 'Requirement':
        ids = tuple(sorted(m.pk for m in part.materials.all()))
        return cls(kind=BatchKind.PACKAGING_MATERIAL, target_ids=ids)

    @classmethod
    def for_order_item(cls, item) -> 'Requirement':
        if item.sku_id is not None:
            return cls(kind=BatchKind.PRODUCT, target_ids=(item.sku_id,))
        if item.packaging_material_id is not None:
            return cls(kind=BatchKind.PACKAGING_MATERIAL, target_ids=(item.packaging_material_id,))
        raise InvariantViolationError('Order item has no target', order_item_id=item.pk)

    def target_filter(self) -> Q:
        if self.kind == BatchKind.PRODUCT:
            return Q(product_batch__sku_id__in=self.target_ids)
        if self.kind == BatchKind.PACKAGING_MATERIAL:
            return Q(packaging_material_batch__packaging_material_id__in=self.target_ids)
        raise InvariantViolationError('Unknown batch kind', kind=self.kind)


# ══════════════════════════════════════════════════════════════
# REGISTRY
# ══════════════════════════════════════════════════════════════

class BatchRegistry:
    """Registration, resolution and eligibility of batches."""

    @classmethod
    def register(cls, batch, kind=None, actor=None, note='') -> BatchHandle:
        """
        Make a saved batch allocatable.

        Raises:
            DuplicateRegistrationError: batch already has a registry entry
            AllocmanError('KIND_MISMATCH'): explicit kind contradicts the batch type

        Concurrency:
            - Locks the batch row, so two registrations of the same batch
              serialize; the one-to-one constraint backs this up.
        """
        actual = kind_of(batch)
        if batch.pk is None:
            raise AllocmanError('BATCH_NOT_FOUND', message='Save the batch before registering it')

        model = batch_model(actual)
        field_name = batch_field(actual)

        with transaction.atomic():
            locked = model.objects.select_for_update().get(pk=batch.pk)

            existing = BatchRegistryEntry.objects.filter(**{field_name: locked}).first()
            if existing is not None:
                raise DuplicateRegistrationError(
                    registry_id=existing.registry_id,
                    kind=existing.kind,
                    requested_kind=str(kind or actual),
                )

            if kind is not None and kind != actual:
                raise AllocmanError('KIND_MISMATCH', kind=str(kind), actual=str(actual))

            check_quantities(locked)

            try:
                with transaction.atomic():
                    entry = BatchRegistryEntry.objects.create(
                        kind=actual, note=note, **{field_name: locked},
                    )
            except IntegrityError as exc:
                raise DuplicateRegistrationError(kind=str(actual), batch_id=locked.pk) from exc

            ActivityLog.record(
                entry,
                ActivityAction.REGISTERED,
                previous=None,
                new=BatchSnapshot.of(locked),
                summary=f"Registered {actual} batch {locked.lot_number}",
                actor=actor,
            )
            logger.info(
                "batch.registered",
                extra={
                    "registry_id": entry.registry_id,
                    "kind": str(actual),
                    "lot_number": locked.lot_number,
                },
            )
            return BatchHandle(kind=actual, entry=entry, batch=locked)

    @classmethod
    def receive(cls, quantity, target, lot_number, expiry_date=None,
                inbound_date=None, actor=None, supplier='', **metadata) -> BatchHandle:
        """
        Create a batch for a Sku or PackagingMaterial and register it.

        Raises:
            AllocmanError('INVALID_QUANTITY'): If quantity <= 0
        """
        quantity = Decimal(quantity)
        if quantity <= 0:
            raise AllocmanError('INVALID_QUANTITY', requested=quantity)

        values = {
            'lot_number': lot_number,
            'received_quantity': quantity,
            'available_quantity': quantity,
            'expiry_date': expiry_date,
            'inbound_date': inbound_date or timezone.localdate(),
            'metadata': metadata,
        }

        with transaction.atomic():
            if isinstance(target, Sku):
                batch = ProductBatch.objects.create(sku=target, **values)
            elif isinstance(target, PackagingMaterial):
                batch = PackagingMaterialBatch.objects.create(
                    packaging_material=target, supplier=supplier, **values,
                )
            else:
                raise AllocmanError('KIND_MISMATCH', target_type=type(target).__name__)
            return cls.register(batch, actor=actor)

    @classmethod
    def resolve(cls, registry_id) -> BatchHandle:
        """
        Registry id → BatchHandle.

        Raises:
            AllocmanError('BATCH_NOT_FOUND')
        """
        pk = parse_registry_id(registry_id)
        entry = (
            BatchRegistryEntry.objects
            .select_related('product_batch', 'packaging_material_batch')
            .filter(pk=pk)
            .first()
        )
        if entry is None:
            raise AllocmanError('BATCH_NOT_FOUND', registry_id=str(registry_id))
        return BatchHandle.of(entry)

    @classmethod
    def list_eligible(cls, requirement: Requirement, strategy: str | None = None,
                      as_of: date | None = None) -> list[BatchHandle]:
        """
        Registered batches that can serve a requirement, in draw order.

        Excludes expired, quarantined and depleted batches, batches past
        their expiry date on `as_of` (default today) and batches with
        nothing available. Reads without locking.
        """
        if not requirement.target_ids:
            return []

        as_of = as_of or timezone.localdate()
        field_name = batch_field(requirement.kind)

        entries = (
            BatchRegistryEntry.objects
            .filter(kind=requirement.kind)
            .filter(requirement.target_filter())
            .exclude(**{f'{field_name}__status__in': BatchStatus.ineligible()})
            .filter(**{f'{field_name}__available_quantity__gt': 0})
            .filter(
                Q(**{f'{field_name}__expiry_date__isnull': True})
                | Q(**{f'{field_name}__expiry_date__gte': as_of})
            )
            .select_related(field_name)
            .order_by(*order_by_expressions(field_name, strategy))
        )
        return [BatchHandle.of(entry) for entry in entries]

    @classmethod
    def available_for(cls, requirement: Requirement, as_of: date | None = None) -> Decimal:
        """Sum of available quantity over eligible batches."""
        return sum(
            (handle.available for handle in cls.list_eligible(requirement, as_of=as_of)),
            Decimal('0'),
        )

    # ══════════════════════════════════════════════════════════════
    # STATUS & ADJUSTMENTS
    # ══════════════════════════════════════════════════════════════

    @classmethod
    def adjust(cls, registry_id, new_available, reason, actor=None):
        """
        Inventory count correction of the available quantity.

        Calculates delta automatically: new_available - available.
        Positive deltas add to received, negative deltas add to consumed.
        Reserved quantity is never touched.

        Returns:
            The activity entry, or None when nothing changed.

        Raises:
            AllocmanError('REASON_REQUIRED'): If reason is empty
            AllocmanError('INVALID_QUANTITY'): If new_available < 0
        """
        if not reason:
            raise AllocmanError('REASON_REQUIRED')
        new_available = Decimal(new_available)
        if new_available < 0:
            raise AllocmanError('INVALID_QUANTITY', requested=new_available)

        handle = cls.resolve(registry_id)

        with transaction.atomic():
            batch = handle.lock()
            delta = new_available - batch.available_quantity
            if delta == 0:
                return None

            previous = BatchSnapshot.of(batch)
            if delta > 0:
                batch.received_quantity += delta
            else:
                batch.consumed_quantity += -delta
            batch.available_quantity = new_available
            save_batch(batch)

            entry = ActivityLog.record(
                handle.entry,
                ActivityAction.ADJUSTED,
                previous=previous,
                new=BatchSnapshot.of(batch),
                summary=f"Adjustment {delta:+}: {reason}",
                actor=actor,
            )
            logger.info(
                "batch.adjusted",
                extra={
                    "registry_id": handle.registry_id,
                    "delta": str(delta),
                    "reason": reason,
                },
            )
            return entry

    @classmethod
    def set_status(cls, registry_id, status, reason, actor=None):
        """
        Put a batch in or out of a sticky status (expired / quarantined).

        Passing BatchStatus.AVAILABLE clears a sticky status; the stored
        status is then derived from the quantities.

        Raises:
            AllocmanError('INVALID_STATUS'): For derived statuses other than AVAILABLE
        """
        if not reason:
            raise AllocmanError('REASON_REQUIRED')
        if status not in BatchStatus.sticky() and status != BatchStatus.AVAILABLE:
            raise AllocmanError('INVALID_STATUS', requested=str(status))

        handle = cls.resolve(registry_id)

        with transaction.atomic():
            batch = handle.lock()
            return cls._change_status(handle.entry, batch, status, reason, actor)

    @classmethod
    def quarantine(cls, registry_id, reason, actor=None):
        return cls.set_status(registry_id, BatchStatus.QUARANTINED, reason, actor)

    @classmethod
    def release_quarantine(cls, registry_id, reason, actor=None):
        return cls.set_status(registry_id, BatchStatus.AVAILABLE, reason, actor)

    @classmethod
    def expire_due(cls, as_of: date | None = None) -> int:
        """
        Flip registered batches past their expiry date to EXPIRED.

        Returns:
            Number of batches expired

        Concurrency:
            - Each chunk runs under its own transaction.atomic()
            - Uses select_for_update() with SKIP LOCKED
            - Safe for multiple instances
        """
        as_of = as_of or timezone.localdate()
        chunk = allocman_settings.EXPIRED_BATCH_SIZE
        total = 0

        for kind in BatchKind.values:
            model = batch_model(kind)
            while True:
                with transaction.atomic():
                    batches = list(
                        model.objects.select_for_update(skip_locked=True, of=("self",))
                        .due_to_expire(as_of)
                        .filter(registry_entry__isnull=False)
                        .order_by('pk')[:chunk]
                    )
                    if not batches:
                        break

                    link = f"{batch_field(kind)}_id"
                    entries = {
                        getattr(e, link): e for e in BatchRegistryEntry.objects
                        .filter(**{f"{link}__in": [b.pk for b in batches]})
                    }
                    for batch in batches:
                        cls._change_status(
                            entries[batch.pk], batch, BatchStatus.EXPIRED,
                            f"Expired on {batch.expiry_date}", actor=None,
                        )
                    total += len(batches)

        if total:
            logger.info(
                "batch.expired",
                extra={"expired": total, "as_of": str(as_of)},
            )
        return total

    @classmethod
    def _change_status(cls, entry, batch, status, reason, actor):
        if batch.status == status:
            return None
        if status == BatchStatus.AVAILABLE and batch.status not in BatchStatus.sticky():
            return None

        previous = BatchSnapshot.of(batch)
        if status == BatchStatus.AVAILABLE:
            batch.status = BatchStatus.AVAILABLE
            batch.status = batch.derived_status()
        else:
            batch.status = status
        check_quantities(batch)
        batch.save(update_fields=['status', 'updated_at'])

        log = ActivityLog.record(
            entry,
            ActivityAction.STATUS_CHANGED,
            previous=previous,
            new=BatchSnapshot.of(batch),
            summary=f"{previous.status} → {batch.status}: {reason}",
            actor=actor,
        )
        logger.info(
            "batch.status_changed",
            extra={
                "registry_id": entry.registry_id,
                "from_status": previous.status,
                "to_status": str(batch.status),
                "reason": reason,
            },
        )
        return log
