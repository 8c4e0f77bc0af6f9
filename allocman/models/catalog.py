"""
Catalog models: the things batches are made of.

Only what allocation and readiness need: identity and the part ↔ material
link. Pricing, images and descriptions live in the host catalog.
"""

from django.db import models
from django.utils.translation import gettext_lazy as _


class Sku(models.Model):
    """Sellable finished product variant."""

    code = models.CharField(
        max_length=60,
        unique=True,
        verbose_name=_('SKU'),
    )
    name = models.CharField(max_length=200, verbose_name=_('Name'))
    is_active = models.BooleanField(default=True, verbose_name=_('Active'))

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _('SKU')
        verbose_name_plural = _('SKUs')
        ordering = ['code']

    def __str__(self) -> str:
        return self.code


class PackagingMaterial(models.Model):
    """Packaging material received in batches (bottles, caps, labels...)."""

    code = models.CharField(
        max_length=60,
        unique=True,
        verbose_name=_('Code'),
    )
    name = models.CharField(max_length=200, verbose_name=_('Name'))
    unit = models.CharField(
        max_length=20,
        default='pc',
        verbose_name=_('Unit'),
        help_text=_('Ex: pc, roll, kg'),
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _('Packaging material')
        verbose_name_plural = _('Packaging materials')
        ordering = ['code']

    def __str__(self) -> str:
        return f"{self.code} ({self.name})"


class Part(models.Model):
    """
    Logical BOM component.

    A part is satisfied by stock of any of its materials: "500ml bottle"
    may be sourced from two suppliers' materials interchangeably.
    """

    code = models.CharField(
        max_length=60,
        unique=True,
        verbose_name=_('Code'),
    )
    name = models.CharField(max_length=200, verbose_name=_('Name'))
    materials = models.ManyToManyField(
        'allocman.PackagingMaterial',
        blank=True,
        related_name='parts',
        verbose_name=_('Materials'),
    )

    class Meta:
        verbose_name = _('Part')
        verbose_name_plural = _('Parts')
        ordering = ['code']

    def __str__(self) -> str:
        return self.name
