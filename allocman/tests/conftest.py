"""
Pytest fixtures for Allocman tests.
"""

from datetime import timedelta
from decimal import Decimal
from itertools import count

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone

from allocman import inventory
from allocman.models import (
    Bom,
    BomItem,
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusCategory,
    OrderType,
    PackagingMaterial,
    PackagingMaterialBatch,
    Part,
    ProductBatch,
    Sku,
)


User = get_user_model()

STATUSES = [
    # code, category, is_final
    ('ORDER_DRAFT', OrderStatusCategory.DRAFT, False),
    ('ORDER_CONFIRMED', OrderStatusCategory.CONFIRMATION, False),
    ('ORDER_ALLOCATING', OrderStatusCategory.PROCESSING, False),
    ('ORDER_ALLOCATED', OrderStatusCategory.PROCESSING, False),
    ('ORDER_PARTIALLY_ALLOCATED', OrderStatusCategory.PROCESSING, False),
    ('ORDER_BACKORDERED', OrderStatusCategory.PROCESSING, False),
    ('ORDER_SHIPPED', OrderStatusCategory.SHIPMENT, False),
    ('ORDER_PAID', OrderStatusCategory.PAYMENT, False),
    ('ORDER_COMPLETED', OrderStatusCategory.COMPLETION, True),
    ('ORDER_CANCELED', OrderStatusCategory.COMPLETION, True),
]


@pytest.fixture
def user(db):
    """Create a test user."""
    return User.objects.create_user(
        username='testuser',
        password='testpass123'
    )


@pytest.fixture
def today():
    """Return today's date."""
    return timezone.localdate()


@pytest.fixture
def statuses(db):
    """Seed the order status table, keyed by code."""
    return {
        code: OrderStatus.objects.create(
            code=code,
            name=code.replace('ORDER_', '').title(),
            category=category,
            is_final=is_final,
        )
        for code, category, is_final in STATUSES
    }


@pytest.fixture
def order_type(db):
    """Sales order type without a restricted transition table."""
    return OrderType.objects.create(code='sales', name='Sales order')


@pytest.fixture
def sku(db):
    return Sku.objects.create(code='OIL-500', name='Olive oil 500ml')


@pytest.fixture
def other_sku(db):
    return Sku.objects.create(code='OIL-1000', name='Olive oil 1l')


@pytest.fixture
def bottle(db):
    return PackagingMaterial.objects.create(code='BOT-500', name='Glass bottle 500ml')


@pytest.fixture
def cap(db):
    return PackagingMaterial.objects.create(code='CAP-28', name='Screw cap 28mm')


@pytest.fixture
def product_batch(sku, today):
    """Factory for registered product batches."""
    lots = count(1)

    def make(quantity, expiry_days=None, inbound_days=-30, lot=None):
        expiry = today + timedelta(days=expiry_days) if expiry_days is not None else None
        return inventory.receive(
            Decimal(quantity), sku, lot or f'LOT-{next(lots):03d}',
            expiry_date=expiry,
            inbound_date=today + timedelta(days=inbound_days),
        )

    return make


@pytest.fixture
def material_batch(today):
    """Factory for registered packaging-material batches."""
    lots = count(1)

    def make(material, quantity, expiry_days=None, inbound_days=-30):
        expiry = today + timedelta(days=expiry_days) if expiry_days is not None else None
        return inventory.receive(
            Decimal(quantity), material, f'M-{material.code}-{next(lots):03d}',
            expiry_date=expiry,
            inbound_date=today + timedelta(days=inbound_days),
            supplier='Vidraria Sul',
        )

    return make


@pytest.fixture
def unregistered_batch(sku, today):
    """Saved product batch without a registry entry."""
    return ProductBatch.objects.create(
        sku=sku,
        lot_number='LOT-UNREG',
        received_quantity=Decimal('50'),
        available_quantity=Decimal('50'),
        expiry_date=today + timedelta(days=60),
    )


@pytest.fixture
def unregistered_material_batch(bottle, today):
    return PackagingMaterialBatch.objects.create(
        packaging_material=bottle,
        lot_number='M-UNREG',
        received_quantity=Decimal('10'),
        available_quantity=Decimal('10'),
    )


@pytest.fixture
def make_order(statuses, order_type):
    """Factory for orders with line items: make_order((sku, 120), (bottle, 5))."""
    numbers = count(1001)

    def make(*lines, status='ORDER_CONFIRMED', order_type=order_type):
        order = Order.objects.create(
            order_number=f'SO-{next(numbers)}',
            order_type=order_type,
            status=statuses[status],
        )
        for target, quantity in lines:
            field = 'sku' if isinstance(target, Sku) else 'packaging_material'
            OrderItem.objects.create(
                order=order,
                quantity_ordered=Decimal(quantity),
                **{field: target},
            )
        return order

    return make


@pytest.fixture
def bom(db, sku, bottle, cap):
    """
    BOM needing 2 bottle parts and 3 caps per unit.

    The bottle part accepts only the bottle material; the cap part only caps.
    """
    bottle_part = Part.objects.create(code='P-BOTTLE', name='Bottle')
    bottle_part.materials.add(bottle)
    cap_part = Part.objects.create(code='P-CAP', name='Cap')
    cap_part.materials.add(cap)

    bom = Bom.objects.create(code='BOM-OIL-500', sku=sku)
    BomItem.objects.create(bom=bom, part=bottle_part, quantity_per_unit=Decimal('2'))
    BomItem.objects.create(bom=bom, part=cap_part, quantity_per_unit=Decimal('3'))
    return bom
