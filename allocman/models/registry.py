"""
BatchRegistryEntry model: one allocatable identity per physical batch.
"""

from django.db import models
from django.db.models import Q
from django.utils.translation import gettext_lazy as _

from allocman.models.enums import BatchKind


class BatchRegistryEntry(models.Model):
    """
    Registry identity of a batch, whatever its physical kind.

    Exactly one of product_batch / packaging_material_batch is set and it
    matches `kind`. Both links are one-to-one, so a batch can never be
    registered twice.

    Unregistered batches are invisible to allocation and readiness.
    """

    kind = models.CharField(
        max_length=20,
        choices=BatchKind.choices,
        verbose_name=_('Kind'),
    )
    product_batch = models.OneToOneField(
        'allocman.ProductBatch',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='registry_entry',
        verbose_name=_('Product batch'),
    )
    packaging_material_batch = models.OneToOneField(
        'allocman.PackagingMaterialBatch',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='registry_entry',
        verbose_name=_('Packaging material batch'),
    )

    registered_at = models.DateTimeField(auto_now_add=True)
    note = models.CharField(max_length=255, blank=True, default='')

    class Meta:
        verbose_name = _('Batch registry entry')
        verbose_name_plural = _('Batch registry')
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(
                        kind=BatchKind.PRODUCT,
                        product_batch__isnull=False,
                        packaging_material_batch__isnull=True,
                    )
                    | Q(
                        kind=BatchKind.PACKAGING_MATERIAL,
                        product_batch__isnull=True,
                        packaging_material_batch__isnull=False,
                    )
                ),
                name='registry_entry_exactly_one_batch',
            ),
        ]

    @property
    def batch(self):
        """The underlying batch, dispatched on kind."""
        if self.kind == BatchKind.PRODUCT:
            return self.product_batch
        if self.kind == BatchKind.PACKAGING_MATERIAL:
            return self.packaging_material_batch
        from allocman.exceptions import InvariantViolationError
        raise InvariantViolationError(
            'Unknown batch kind', registry_id=self.pk, kind=self.kind,
        )

    @property
    def registry_id(self) -> str:
        """Registry identifier in standard format."""
        return f"batch:{self.pk}"

    def __str__(self) -> str:
        return f"{self.registry_id} [{self.kind}]"
