"""
Batch models: product batches and packaging-material batches.

Both kinds share the same quantity ledger (received, available, reserved,
consumed) so the allocation engine can treat them alike once registered.

Quantity invariant, kept by the services under row lock:

    available + reserved == received - consumed

Usage:
    batch = ProductBatch.objects.create(
        sku=sku, lot_number="LOT-2025-0101-A",
        received_quantity=80, available_quantity=80,
        expiry_date=date(2025, 1, 1), inbound_date=date(2024, 6, 1),
    )
    inventory.register(batch)
"""

from datetime import date
from decimal import Decimal

from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from allocman.models.enums import BatchKind, BatchStatus


class BatchQuerySet(models.QuerySet):
    """Custom QuerySet for batches with convenience filters."""

    def expiring_before(self, day: date):
        """Batches expiring strictly before the given date."""
        return self.filter(expiry_date__lt=day, expiry_date__isnull=False)

    def due_to_expire(self, as_of: date | None = None):
        """Past-expiry batches whose status has not been flipped yet."""
        as_of = as_of or timezone.localdate()
        return self.expiring_before(as_of).exclude(status=BatchStatus.EXPIRED)


class BaseBatch(models.Model):
    """Fields and quantity rules shared by both batch kinds."""

    kind: str = ''

    lot_number = models.CharField(
        max_length=50,
        verbose_name=_('Lot number'),
    )

    received_quantity = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        verbose_name=_('Received'),
    )
    available_quantity = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        default=Decimal('0'),
        verbose_name=_('Available'),
    )
    reserved_quantity = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        default=Decimal('0'),
        verbose_name=_('Reserved'),
    )
    consumed_quantity = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        default=Decimal('0'),
        verbose_name=_('Consumed'),
        help_text=_('Confirmed deductions and negative adjustments'),
    )

    expiry_date = models.DateField(
        null=True,
        blank=True,
        db_index=True,
        verbose_name=_('Expiry date'),
    )
    inbound_date = models.DateField(
        default=timezone.localdate,
        verbose_name=_('Inbound date'),
    )
    status = models.CharField(
        max_length=20,
        choices=BatchStatus.choices,
        default=BatchStatus.AVAILABLE,
        db_index=True,
        verbose_name=_('Status'),
    )

    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = BatchQuerySet.as_manager()

    class Meta:
        abstract = True
        ordering = ['expiry_date', 'inbound_date']

    @property
    def on_hand(self) -> Decimal:
        """received - consumed: what physically remains in the batch."""
        return self.received_quantity - self.consumed_quantity

    @property
    def is_expired(self) -> bool:
        if self.expiry_date is None:
            return False
        return timezone.localdate() > self.expiry_date

    def derived_status(self) -> str:
        """Status implied by the quantities (sticky statuses win)."""
        if self.status in BatchStatus.sticky():
            return self.status
        if self.available_quantity > 0:
            return BatchStatus.AVAILABLE
        if self.reserved_quantity > 0:
            return BatchStatus.RESERVED
        return BatchStatus.DEPLETED

    def __str__(self) -> str:
        expiry = f" (exp:{self.expiry_date})" if self.expiry_date else ""
        return f"{self.lot_number}{expiry}"


def _quantity_constraints(prefix: str) -> list:
    return [
        models.CheckConstraint(
            condition=Q(available_quantity__gte=0),
            name=f'{prefix}_available_non_negative',
        ),
        models.CheckConstraint(
            condition=Q(reserved_quantity__gte=0),
            name=f'{prefix}_reserved_non_negative',
        ),
        models.CheckConstraint(
            condition=Q(consumed_quantity__gte=0),
            name=f'{prefix}_consumed_non_negative',
        ),
    ]


class ProductBatch(BaseBatch):
    """Batch of a finished-product SKU."""

    kind = BatchKind.PRODUCT

    sku = models.ForeignKey(
        'allocman.Sku',
        on_delete=models.PROTECT,
        related_name='batches',
        verbose_name=_('SKU'),
    )

    class Meta(BaseBatch.Meta):
        verbose_name = _('Product batch')
        verbose_name_plural = _('Product batches')
        constraints = [
            models.UniqueConstraint(
                fields=['sku', 'lot_number'],
                name='unique_product_batch_lot',
            ),
            *_quantity_constraints('product_batch'),
        ]
        indexes = [
            models.Index(fields=['sku', 'status'], name='allocman_pb_sku_status_idx'),
        ]


class PackagingMaterialBatch(BaseBatch):
    """Batch of a packaging material."""

    kind = BatchKind.PACKAGING_MATERIAL

    packaging_material = models.ForeignKey(
        'allocman.PackagingMaterial',
        on_delete=models.PROTECT,
        related_name='batches',
        verbose_name=_('Packaging material'),
    )
    supplier = models.CharField(
        max_length=200,
        blank=True,
        default='',
        verbose_name=_('Supplier'),
    )

    class Meta(BaseBatch.Meta):
        verbose_name = _('Packaging material batch')
        verbose_name_plural = _('Packaging material batches')
        constraints = [
            models.UniqueConstraint(
                fields=['packaging_material', 'lot_number'],
                name='unique_material_batch_lot',
            ),
            *_quantity_constraints('material_batch'),
        ]
        indexes = [
            models.Index(fields=['packaging_material', 'status'], name='allocman_mb_mat_status_idx'),
        ]
