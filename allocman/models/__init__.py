"""
Allocman Models.

- Sku / PackagingMaterial / Part: what batches hold and BOMs need
- ProductBatch / PackagingMaterialBatch: physical batches with a quantity ledger
- BatchRegistryEntry: single allocatable identity over both batch kinds
- Bom / BomItem: parts needed to build one unit
- OrderType / OrderStatus / Order / OrderItem: demand
- InventoryAllocation: quantity drawn from a batch for an order item
- BatchActivityLog: immutable audit trail
"""

from allocman.models.activity import BatchActivityLog
from allocman.models.allocation import InventoryAllocation
from allocman.models.batch import PackagingMaterialBatch, ProductBatch
from allocman.models.bom import Bom, BomItem
from allocman.models.catalog import PackagingMaterial, Part, Sku
from allocman.models.enums import (
    ActivityAction,
    AllocationStatus,
    AllocationStrategy,
    BatchKind,
    BatchStatus,
    OrderStatusCategory,
)
from allocman.models.order import Order, OrderItem, OrderStatus, OrderType
from allocman.models.registry import BatchRegistryEntry

__all__ = [
    'ActivityAction',
    'AllocationStatus',
    'AllocationStrategy',
    'BatchKind',
    'BatchStatus',
    'OrderStatusCategory',
    'Sku',
    'PackagingMaterial',
    'Part',
    'ProductBatch',
    'PackagingMaterialBatch',
    'BatchRegistryEntry',
    'Bom',
    'BomItem',
    'OrderType',
    'OrderStatus',
    'Order',
    'OrderItem',
    'InventoryAllocation',
    'BatchActivityLog',
]
