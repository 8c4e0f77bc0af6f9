"""
InventoryAllocation model: a draw of quantity from one batch for one order line.
"""

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from allocman.models.enums import AllocationStatus


class InventoryAllocationQuerySet(models.QuerySet):

    def for_order(self, order):
        return self.filter(order=order)

    def holding_stock(self):
        """Allocations that still hold or have consumed batch quantity."""
        return self.filter(status__in=[AllocationStatus.RESERVED, AllocationStatus.CONFIRMED])


class InventoryAllocation(models.Model):
    """
    Quantity drawn from a registered batch for an order item.

    LIFECYCLE:

        PENDING ──► RESERVED ──confirm()──► CONFIRMED
                       │
                       └──release()──► RELEASED

    A line item split across batches has one row per batch.
    Rows are never deleted: released and failed allocations stay for audit.
    """

    order = models.ForeignKey(
        'allocman.Order',
        on_delete=models.PROTECT,
        related_name='allocations',
        verbose_name=_('Order'),
    )
    order_item = models.ForeignKey(
        'allocman.OrderItem',
        on_delete=models.PROTECT,
        related_name='allocations',
        verbose_name=_('Order item'),
    )
    registry_entry = models.ForeignKey(
        'allocman.BatchRegistryEntry',
        on_delete=models.PROTECT,
        related_name='allocations',
        verbose_name=_('Batch'),
    )

    quantity = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        verbose_name=_('Quantity'),
    )
    status = models.CharField(
        max_length=20,
        choices=AllocationStatus.choices,
        default=AllocationStatus.PENDING,
        db_index=True,
        verbose_name=_('Status'),
    )

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
        verbose_name=_('Created by'),
    )
    created_at = models.DateTimeField(default=timezone.now)
    resolved_at = models.DateTimeField(
        null=True,
        blank=True,
        verbose_name=_('Resolved at'),
        help_text=_('Confirmation or release time'),
    )
    metadata = models.JSONField(default=dict, blank=True)

    objects = InventoryAllocationQuerySet.as_manager()

    class Meta:
        verbose_name = _('Inventory allocation')
        verbose_name_plural = _('Inventory allocations')
        ordering = ['created_at', 'pk']
        constraints = [
            models.CheckConstraint(
                condition=Q(quantity__gt=0),
                name='allocation_quantity_positive',
            ),
        ]
        indexes = [
            models.Index(fields=['order', 'status'], name='allocman_al_order_status_idx'),
            models.Index(fields=['registry_entry', 'status'], name='allocman_al_entry_status_idx'),
        ]

    def delete(self, *args, **kwargs):
        """Allocations are kept for audit."""
        raise ValueError(
            "Allocations are never deleted. Release them instead."
        )

    def __str__(self) -> str:
        return f"{self.quantity}x {self.registry_entry} → {self.order} ({self.status})"
