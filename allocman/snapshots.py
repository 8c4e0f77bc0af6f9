"""
Batch snapshots: the stable record format of the activity log.

Each snapshot carries an explicit field list and a version number so that
audit and replay tooling can read old entries after the schema moves on.
"""

from dataclasses import asdict, dataclass
from decimal import Decimal

SNAPSHOT_VERSION = 1


@dataclass(frozen=True)
class BatchSnapshot:
    """Quantity and status state of a batch at one instant."""

    kind: str
    batch_id: int
    lot_number: str
    status: str
    received: Decimal
    available: Decimal
    reserved: Decimal
    consumed: Decimal
    expiry_date: str | None
    version: int = SNAPSHOT_VERSION

    @classmethod
    def of(cls, batch) -> 'BatchSnapshot':
        return cls(
            kind=str(batch.kind),
            batch_id=batch.pk,
            lot_number=batch.lot_number,
            status=str(batch.status),
            received=Decimal(batch.received_quantity),
            available=Decimal(batch.available_quantity),
            reserved=Decimal(batch.reserved_quantity),
            consumed=Decimal(batch.consumed_quantity),
            expiry_date=batch.expiry_date.isoformat() if batch.expiry_date else None,
        )

    @classmethod
    def from_dict(cls, data: dict) -> 'BatchSnapshot':
        if data.get('version') != SNAPSHOT_VERSION:
            raise ValueError(f"Unsupported snapshot version: {data.get('version')!r}")
        return cls(
            kind=data['kind'],
            batch_id=data['batch_id'],
            lot_number=data['lot_number'],
            status=data['status'],
            received=Decimal(data['received']),
            available=Decimal(data['available']),
            reserved=Decimal(data['reserved']),
            consumed=Decimal(data['consumed']),
            expiry_date=data['expiry_date'],
        )

    def as_dict(self) -> dict:
        """JSON-safe dict (decimals as strings)."""
        return {
            k: str(v) if isinstance(v, Decimal) else v
            for k, v in asdict(self).items()
        }
