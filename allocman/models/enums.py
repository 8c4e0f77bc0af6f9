"""
Enums for Allocman models.
"""

from django.db import models
from django.utils.translation import gettext_lazy as _


class BatchKind(models.TextChoices):
    """
    Physical kind of a registered batch.

    PRODUCT:            finished goods, one SKU per batch.
    PACKAGING_MATERIAL: bottles, labels, boxes... consumed by BOMs.
    """
    PRODUCT = 'product', _('Product')
    PACKAGING_MATERIAL = 'packaging_material', _('Packaging material')


class BatchStatus(models.TextChoices):
    """Batch lifecycle status."""
    AVAILABLE = 'available', _('Available')          # Has free quantity
    RESERVED = 'reserved', _('Reserved')             # Everything left is held by orders
    DEPLETED = 'depleted', _('Depleted')             # Nothing left
    EXPIRED = 'expired', _('Expired')                # Past expiry date (sticky)
    QUARANTINED = 'quarantined', _('Quarantined')    # Blocked by QA (sticky)

    @classmethod
    def ineligible(cls) -> list[str]:
        """Statuses that never take part in allocation or readiness."""
        return [cls.EXPIRED, cls.QUARANTINED, cls.DEPLETED]

    @classmethod
    def sticky(cls) -> list[str]:
        """Statuses only changed on purpose, never derived from quantities."""
        return [cls.EXPIRED, cls.QUARANTINED]


class AllocationStatus(models.TextChoices):
    """InventoryAllocation lifecycle status."""
    PENDING = 'pending', _('Pending')
    RESERVED = 'reserved', _('Reserved')
    CONFIRMED = 'confirmed', _('Confirmed')
    RELEASED = 'released', _('Released')
    FAILED = 'failed', _('Failed')

    @classmethod
    def releasable(cls) -> list[str]:
        return [cls.PENDING, cls.RESERVED]


class AllocationStrategy(models.TextChoices):
    """Batch ordering used when drawing stock."""
    FEFO = 'fefo', _('First expiring, first out')
    FIFO = 'fifo', _('First in, first out')


class ActivityAction(models.TextChoices):
    """Kinds of batch mutation recorded in the activity log."""
    REGISTERED = 'registered', _('Registered')
    RESERVED = 'reserved', _('Reserved')
    CONFIRMED = 'confirmed', _('Confirmed')
    RELEASED = 'released', _('Released')
    ADJUSTED = 'adjusted', _('Manual adjustment')
    STATUS_CHANGED = 'status_changed', _('Status changed')


class OrderStatusCategory(models.TextChoices):
    """
    Order status categories, declared in lifecycle sequence.

    An order may stay in its category or move forward, never backward.
    """
    DRAFT = 'draft', _('Draft')
    CONFIRMATION = 'confirmation', _('Confirmation')
    PROCESSING = 'processing', _('Processing')
    SHIPMENT = 'shipment', _('Shipment')
    PAYMENT = 'payment', _('Payment')
    RETURN = 'return', _('Return')
    COMPLETION = 'completion', _('Completion')

    @classmethod
    def sequence(cls, category) -> int:
        """Position of a category in the lifecycle."""
        return cls.values.index(str(category))
