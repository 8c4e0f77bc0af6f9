"""
BOM readiness: how many units can be built from current stock.

For each BOM item needing q per unit with a available (eligible,
non-expired batches of any of the part's materials):

    ceiling = floor(a / q)
    max_producible_units = min(ceiling over all items)
    shortage = max(0, q * target - a)

where target defaults to max_producible_units + 1 ("what is missing to
build one more").

Read-only: no locks are taken, so the result is an advisory snapshot that
concurrent allocations may outdate immediately.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_FLOOR, Decimal

from django.utils import timezone

from allocman.models.bom import Bom, BomItem
from allocman.services.registry import BatchRegistry, Requirement

logger = logging.getLogger('allocman')


@dataclass(frozen=True)
class PartReadiness:
    """Readiness of one BOM item."""

    bom_item: BomItem
    required_per_unit: Decimal
    available: Decimal
    ceiling: int
    shortage: Decimal
    is_bottleneck: bool = False

    @property
    def part(self):
        return self.bom_item.part

    @property
    def is_missing(self) -> bool:
        """No eligible stock at all."""
        return self.available <= 0


@dataclass(frozen=True)
class BomReadiness:
    """Readiness snapshot of a BOM."""

    bom: Bom
    max_producible_units: int
    target_units: int
    parts: list[PartReadiness] = field(default_factory=list)
    computed_at: object = None

    @property
    def bottlenecks(self) -> list[PartReadiness]:
        return [p for p in self.parts if p.is_bottleneck]

    @property
    def missing_parts(self) -> list[PartReadiness]:
        return [p for p in self.parts if p.is_missing]

    @property
    def total_shortage(self) -> Decimal:
        return sum((p.shortage for p in self.parts), Decimal('0'))

    def is_ready(self, units: int = 1) -> bool:
        """Could `units` be built from this snapshot?"""
        return bool(self.parts) and self.max_producible_units >= units


def part_ceiling(available: Decimal, per_unit: Decimal) -> int:
    """floor(available / per_unit), never negative."""
    if available <= 0:
        return 0
    return int((available / per_unit).to_integral_value(rounding=ROUND_FLOOR))


def part_shortage(available: Decimal, per_unit: Decimal, target_units: int) -> Decimal:
    return max(Decimal('0'), per_unit * target_units - available)


class BomReadinessCalculator:
    """Production feasibility of BOMs against live batch inventory."""

    @classmethod
    def compute_readiness(cls, bom, target_units: int | None = None,
                          as_of: date | None = None) -> BomReadiness:
        """
        Compute producible units and per-part shortages.

        Args:
            bom: Bom instance or pk
            target_units: production goal for shortages (None = max + 1)
            as_of: date for expiry checks (None = today)

        Raises:
            ValueError: target_units < 0
        """
        if target_units is not None and target_units < 0:
            raise ValueError("target_units must be >= 0")
        if not isinstance(bom, Bom):
            bom = Bom.objects.get(pk=bom)

        as_of = as_of or timezone.localdate()
        items = list(
            BomItem.objects.filter(bom=bom)
            .select_related('part')
            .prefetch_related('part__materials')
            .order_by('pk')
        )

        supply = []
        for item in items:
            per_unit = Decimal(item.quantity_per_unit)
            available = BatchRegistry.available_for(Requirement.for_part(item.part), as_of=as_of)
            supply.append((item, per_unit, available, part_ceiling(available, per_unit)))

        max_units = min((ceiling for *_, ceiling in supply), default=0)
        target = max_units + 1 if target_units is None else target_units

        parts = [
            PartReadiness(
                bom_item=item,
                required_per_unit=per_unit,
                available=available,
                ceiling=ceiling,
                shortage=part_shortage(available, per_unit, target),
                is_bottleneck=(ceiling == max_units),
            )
            for item, per_unit, available, ceiling in supply
        ]

        readiness = BomReadiness(
            bom=bom,
            max_producible_units=max_units,
            target_units=target,
            parts=parts,
            computed_at=timezone.now(),
        )
        logger.info(
            "bom.readiness",
            extra={
                "bom": bom.code,
                "max_units": max_units,
                "target_units": target,
                "bottlenecks": [p.part.code for p in readiness.bottlenecks],
            },
        )
        return readiness
