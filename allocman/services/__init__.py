"""
Allocation services: modular organization of inventory operations.

    from allocman.services import (
        BatchRegistry, ActivityLog, AllocationEngine,
        BomReadinessCalculator, OrderStateMachine,
    )
"""

from allocman.services.activity import ActivityLog
from allocman.services.allocations import AllocationEngine
from allocman.services.orders import OrderStateMachine
from allocman.services.readiness import BomReadinessCalculator
from allocman.services.registry import BatchRegistry

__all__ = [
    'ActivityLog',
    'AllocationEngine',
    'BatchRegistry',
    'BomReadinessCalculator',
    'OrderStateMachine',
]
