"""
Order models: the demand side of allocation.
"""

from decimal import Decimal

from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from allocman.models.enums import BatchKind, OrderStatusCategory


class OrderType(models.Model):
    """
    Order type with its own status transition table.

    transitions maps a status code to the codes it may move to:

        {"ORDER_CONFIRMED": ["ORDER_ALLOCATING", "ORDER_CANCELED"], ...}

    Codes absent from the table are only subject to the generic rules
    (no leaving a final status, no going back in category).
    """

    code = models.SlugField(max_length=50, unique=True, verbose_name=_('Code'))
    name = models.CharField(max_length=100, verbose_name=_('Name'))
    transitions = models.JSONField(default=dict, blank=True, verbose_name=_('Transitions'))

    class Meta:
        verbose_name = _('Order type')
        verbose_name_plural = _('Order types')
        ordering = ['code']

    def allowed_targets(self, from_code: str) -> list[str] | None:
        """Codes reachable from from_code, or None when unrestricted."""
        targets = (self.transitions or {}).get(from_code)
        if targets is None:
            return None
        return list(targets)

    def __str__(self) -> str:
        return self.name


class OrderStatus(models.Model):
    """Named order status code within a category."""

    code = models.CharField(max_length=50, unique=True, verbose_name=_('Code'))
    name = models.CharField(max_length=100, verbose_name=_('Name'))
    category = models.CharField(
        max_length=20,
        choices=OrderStatusCategory.choices,
        verbose_name=_('Category'),
    )
    is_final = models.BooleanField(
        default=False,
        verbose_name=_('Final'),
        help_text=_('Final statuses admit no further transition'),
    )

    class Meta:
        verbose_name = _('Order status')
        verbose_name_plural = _('Order statuses')
        ordering = ['code']

    @property
    def sequence(self) -> int:
        return OrderStatusCategory.sequence(self.category)

    def __str__(self) -> str:
        return self.code


class Order(models.Model):
    """Customer or internal order whose items draw from batches."""

    order_number = models.CharField(
        max_length=60,
        unique=True,
        verbose_name=_('Order number'),
    )
    order_type = models.ForeignKey(
        'allocman.OrderType',
        on_delete=models.PROTECT,
        related_name='orders',
        verbose_name=_('Order type'),
    )
    status = models.ForeignKey(
        'allocman.OrderStatus',
        on_delete=models.PROTECT,
        related_name='orders',
        verbose_name=_('Status'),
    )
    status_date = models.DateTimeField(default=timezone.now, verbose_name=_('Status date'))

    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _('Order')
        verbose_name_plural = _('Orders')
        ordering = ['-created_at']

    def __str__(self) -> str:
        return self.order_number


class OrderItem(models.Model):
    """Order line: a quantity of exactly one SKU or one packaging material."""

    order = models.ForeignKey(
        'allocman.Order',
        on_delete=models.CASCADE,
        related_name='items',
        verbose_name=_('Order'),
    )
    sku = models.ForeignKey(
        'allocman.Sku',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='order_items',
        verbose_name=_('SKU'),
    )
    packaging_material = models.ForeignKey(
        'allocman.PackagingMaterial',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='order_items',
        verbose_name=_('Packaging material'),
    )
    quantity_ordered = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        verbose_name=_('Quantity ordered'),
    )

    class Meta:
        verbose_name = _('Order item')
        verbose_name_plural = _('Order items')
        ordering = ['order', 'pk']
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(sku__isnull=False, packaging_material__isnull=True)
                    | Q(sku__isnull=True, packaging_material__isnull=False)
                ),
                name='order_item_exactly_one_target',
            ),
            models.CheckConstraint(
                condition=Q(quantity_ordered__gt=Decimal('0')),
                name='order_item_quantity_positive',
            ),
        ]

    @property
    def kind(self) -> str:
        if self.sku_id is not None:
            return BatchKind.PRODUCT
        return BatchKind.PACKAGING_MATERIAL

    def __str__(self) -> str:
        target = self.sku if self.sku_id is not None else self.packaging_material
        return f"{self.quantity_ordered}x {target}"
