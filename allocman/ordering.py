"""
Batch ordering: decides which batch is drawn from first.

    FEFO: expiry date ascending (undated batches last), then inbound date,
          then registry id.
    FIFO: inbound date ascending, then expiry date (undated last),
          then registry id.

The registry id tiebreak makes the order total: the same snapshot of
batch metadata always yields the same draw sequence.
"""

from django.db.models import F

from allocman.models.enums import AllocationStrategy


def normalize_strategy(strategy: str | None) -> str:
    """Validate a strategy name, falling back to the configured default."""
    if strategy is None:
        from allocman.conf import allocman_settings
        strategy = allocman_settings.ALLOCATION_STRATEGY
    strategy = str(strategy).lower()
    if strategy not in AllocationStrategy.values:
        raise ValueError(f"Unknown allocation strategy: {strategy!r}")
    return strategy


def order_by_expressions(batch_field: str, strategy: str | None = None) -> list:
    """
    Draw order as ORM expressions over BatchRegistryEntry, with the batch
    reached through batch_field.

    Args:
        batch_field: 'product_batch' or 'packaging_material_batch'
        strategy: 'fefo' / 'fifo' (None = configured default)
    """
    strategy = normalize_strategy(strategy)
    expiry = F(f'{batch_field}__expiry_date').asc(nulls_last=True)
    inbound = F(f'{batch_field}__inbound_date').asc()

    if strategy == AllocationStrategy.FIFO:
        return [inbound, expiry, 'pk']
    return [expiry, inbound, 'pk']
