"""
Bill of materials models.
"""

from decimal import Decimal

from django.db import models
from django.db.models import Q
from django.utils.translation import gettext_lazy as _


class Bom(models.Model):
    """Bill of materials to build one unit of a SKU."""

    code = models.CharField(
        max_length=80,
        unique=True,
        verbose_name=_('Code'),
    )
    sku = models.ForeignKey(
        'allocman.Sku',
        on_delete=models.PROTECT,
        related_name='boms',
        verbose_name=_('SKU'),
    )
    revision = models.PositiveIntegerField(default=1, verbose_name=_('Revision'))
    is_active = models.BooleanField(default=True, verbose_name=_('Active'))

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _('BOM')
        verbose_name_plural = _('BOMs')
        ordering = ['code']

    def __str__(self) -> str:
        return f"{self.code} r{self.revision}"


class BomItem(models.Model):
    """One part line of a BOM: how much of the part one unit consumes."""

    bom = models.ForeignKey(
        'allocman.Bom',
        on_delete=models.CASCADE,
        related_name='items',
        verbose_name=_('BOM'),
    )
    part = models.ForeignKey(
        'allocman.Part',
        on_delete=models.PROTECT,
        related_name='bom_items',
        verbose_name=_('Part'),
    )
    quantity_per_unit = models.DecimalField(
        max_digits=12,
        decimal_places=4,
        verbose_name=_('Quantity per unit'),
    )
    unit = models.CharField(max_length=20, default='pc', verbose_name=_('Unit'))
    note = models.CharField(max_length=255, blank=True, default='')

    class Meta:
        verbose_name = _('BOM item')
        verbose_name_plural = _('BOM items')
        ordering = ['bom', 'pk']
        constraints = [
            models.UniqueConstraint(
                fields=['bom', 'part'],
                name='unique_bom_part',
            ),
            models.CheckConstraint(
                condition=Q(quantity_per_unit__gt=Decimal('0')),
                name='bom_item_quantity_positive',
            ),
        ]

    def __str__(self) -> str:
        return f"{self.quantity_per_unit} {self.unit} × {self.part}"
