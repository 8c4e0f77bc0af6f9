"""
Tests for the allocation engine: reserve, confirm, release.
"""

import threading
from decimal import Decimal

import pytest
from django.db import OperationalError, connection, transaction

from allocman import (
    inventory,
    AllocationUnavailableError,
    AllocmanError,
    InsufficientInventoryError,
)
from allocman.locking import RetryPolicy, bound_lock_wait
from allocman.models import (
    ActivityAction,
    AllocationStatus,
    BatchStatus,
    InventoryAllocation,
    Order,
    OrderItem,
)
from allocman.services.registry import BatchRegistry, check_quantities


pytestmark = pytest.mark.django_db


def fresh(handle):
    """Current state of a handle's batch."""
    handle.batch.refresh_from_db()
    return handle.batch


class TestReserve:
    """Tests for inventory.reserve()."""

    def test_fefo_spans_batches(self, sku, product_batch, make_order):
        """120 units from an 80-unit and a 50-unit batch: 80 from the earlier, 40 from the later."""
        early = product_batch(80, expiry_days=10)
        late = product_batch(50, expiry_days=40)
        order = make_order((sku, 120))

        [result] = inventory.reserve(order)

        assert result.ok
        assert result.reserved == Decimal('120')
        assert [(a.registry_entry_id, a.quantity) for a in result.allocations] == [
            (early.pk, Decimal('80')),
            (late.pk, Decimal('40')),
        ]

        batch = fresh(early)
        assert batch.available_quantity == Decimal('0')
        assert batch.reserved_quantity == Decimal('80')
        assert batch.status == BatchStatus.RESERVED

        batch = fresh(late)
        assert batch.available_quantity == Decimal('10')
        assert batch.reserved_quantity == Decimal('40')
        assert batch.status == BatchStatus.AVAILABLE

    def test_earlier_batch_alone_when_sufficient(self, sku, product_batch, make_order):
        early = product_batch(80, expiry_days=10)
        late = product_batch(100, expiry_days=40)
        order = make_order((sku, 50))

        [result] = inventory.reserve(order)

        assert [a.registry_entry_id for a in result.allocations] == [early.pk]
        assert fresh(late).reserved_quantity == Decimal('0')

    def test_fifo_strategy(self, sku, product_batch, make_order):
        recent = product_batch(10, expiry_days=5, inbound_days=-1)
        old = product_batch(10, expiry_days=30, inbound_days=-60)
        order = make_order((sku, 10))

        [result] = inventory.reserve(order, strategy='fifo')

        assert [a.registry_entry_id for a in result.allocations] == [old.pk]
        assert result.allocations[0].metadata == {'strategy': 'fifo'}
        assert fresh(recent).reserved_quantity == Decimal('0')

    def test_unknown_strategy(self, sku, product_batch, make_order):
        product_batch(10)
        order = make_order((sku, 5))

        with pytest.raises(ValueError):
            inventory.reserve(order, strategy='lifo')

    def test_expired_batch_never_drawn(self, sku, product_batch, make_order):
        expired = product_batch(100, expiry_days=-1)
        product_batch(10, expiry_days=5)
        order = make_order((sku, 20))

        [result] = inventory.reserve(order)

        assert not result.ok
        assert fresh(expired).reserved_quantity == Decimal('0')

    def test_quarantined_batch_never_drawn(self, sku, product_batch, make_order):
        held = product_batch(100, expiry_days=5)
        inventory.quarantine(held.registry_id, reason='QA')
        order = make_order((sku, 20))

        [result] = inventory.reserve(order)

        assert not result.ok
        assert result.error.available == Decimal('0')

    def test_material_line_item(self, bottle, material_batch, make_order):
        handle = material_batch(bottle, 500)
        order = make_order((bottle, 120))

        [result] = inventory.reserve(order)

        assert result.ok
        assert fresh(handle).reserved_quantity == Decimal('120')

    def test_insufficient_is_all_or_nothing(self, sku, product_batch, make_order):
        """A short line item keeps no draw."""
        first = product_batch(20, expiry_days=5)
        second = product_batch(10, expiry_days=9)
        order = make_order((sku, 50))

        [result] = inventory.reserve(order)

        assert not result.ok
        assert result.allocations == []
        assert result.error.code == 'INSUFFICIENT_INVENTORY'
        assert result.error.requested == Decimal('50')
        assert result.error.available == Decimal('30')
        assert result.error.data['shortage'] == Decimal('20')

        for handle in (first, second):
            batch = fresh(handle)
            assert batch.available_quantity == batch.received_quantity
            assert batch.reserved_quantity == Decimal('0')

    def test_failed_line_item_leaves_failed_rows(self, sku, product_batch, make_order):
        """The rolled-back draws are kept as FAILED allocations for audit."""
        first = product_batch(20, expiry_days=5)
        second = product_batch(10, expiry_days=9)
        order = make_order((sku, 50))

        inventory.reserve(order)

        failed = inventory.allocations_for(order, AllocationStatus.FAILED)
        assert [(a.registry_entry_id, a.quantity) for a in failed] == [
            (first.pk, Decimal('20')),
            (second.pk, Decimal('10')),
        ]
        assert all(a.resolved_at is not None for a in failed)
        assert not inventory.allocations_for(order, AllocationStatus.RESERVED).exists()
        assert not inventory.history(first.registry_id).filter(action=ActivityAction.RESERVED).exists()

    def test_no_stock_leaves_no_rows(self, sku, make_order):
        order = make_order((sku, 5))

        [result] = inventory.reserve(order)

        assert not result.ok
        assert not InventoryAllocation.objects.exists()

    def test_line_items_are_independent(self, sku, bottle, product_batch, make_order):
        """One short line item does not undo the others."""
        product_batch(100, expiry_days=5)
        order = make_order((sku, 50), (bottle, 10))

        ok, short = inventory.reserve(order)

        assert ok.ok and ok.reserved == Decimal('50')
        assert not short.ok
        assert short.order_item.packaging_material == bottle

    def test_only_outstanding_quantity_is_reserved(self, sku, product_batch, make_order):
        handle = product_batch(100)
        order = make_order((sku, 30))
        item = order.items.get()

        inventory.reserve_line_item(item, 10)
        [result] = inventory.reserve(order)

        assert result.reserved == Decimal('20')
        assert fresh(handle).reserved_quantity == Decimal('30')

        [again] = inventory.reserve(order)
        assert again.ok and again.allocations == []

    def test_overlapping_reserves_of_one_line_do_not_overdraw(
            self, sku, product_batch, make_order, monkeypatch):
        """A reserve that lands between another's start and its draws sees them."""
        handle = product_batch(100)
        order = make_order((sku, 30))
        item = order.items.get()
        listing = BatchRegistry.list_eligible
        overlapping = []

        def list_eligible(requirement, strategy=None, as_of=None):
            if not overlapping:
                overlapping.append(None)
                overlapping[0] = inventory.reserve_line_item(OrderItem.objects.get(pk=item.pk))
            return listing(requirement, strategy, as_of)

        monkeypatch.setattr(BatchRegistry, 'list_eligible', list_eligible)

        [result] = inventory.reserve(order)

        assert result.ok
        assert result.allocations == []
        assert sum(a.quantity for a in overlapping[0]) == Decimal('30')
        batch = fresh(handle)
        assert batch.reserved_quantity == Decimal('30')
        assert batch.available_quantity == Decimal('70')

    def test_selected_line_items(self, sku, bottle, product_batch, make_order):
        product_batch(100)
        order = make_order((sku, 5), (bottle, 10))
        sku_item = order.items.get(sku=sku)

        results = inventory.reserve(order, line_items=[sku_item])

        assert [r.order_item for r in results] == [sku_item]

    def test_item_of_another_order(self, sku, product_batch, make_order):
        product_batch(100)
        order = make_order((sku, 5))
        other = make_order((sku, 5))

        with pytest.raises(AllocmanError) as exc:
            inventory.reserve(order, line_items=list(other.items.all()))

        assert exc.value.code == 'INVALID_ORDER_ITEM'

    def test_order_not_eligible(self, sku, product_batch, make_order):
        product_batch(100)
        order = make_order((sku, 5), status='ORDER_DRAFT')

        with pytest.raises(AllocmanError) as exc:
            inventory.reserve(order)

        assert exc.value.code == 'ORDER_NOT_ELIGIBLE'
        assert not InventoryAllocation.objects.exists()

    def test_final_order_not_eligible(self, sku, product_batch, make_order):
        product_batch(100)
        order = make_order((sku, 5), status='ORDER_COMPLETED')

        with pytest.raises(AllocmanError) as exc:
            inventory.reserve(order)

        assert exc.value.code == 'ORDER_NOT_ELIGIBLE'

    def test_reserve_logs_activity(self, sku, product_batch, make_order, user):
        handle = product_batch(100)
        order = make_order((sku, 40))

        [result] = inventory.reserve(order, actor=user)

        log = inventory.history(handle.registry_id).get(action=ActivityAction.RESERVED)
        assert log.allocation == result.allocations[0]
        assert log.previous['available'] == '100.000'
        assert log.new['available'] == '60.000'
        assert log.new['reserved'] == '40.000'
        assert log.actor == user
        assert result.allocations[0].created_by == user


class TestReserveLineItem:
    """Tests for inventory.reserve_line_item()."""

    def test_raises_on_shortage(self, sku, product_batch, make_order):
        product_batch(30)
        order = make_order((sku, 50))

        with pytest.raises(InsufficientInventoryError) as exc:
            inventory.reserve_line_item(order.items.get())

        assert exc.value.requested == Decimal('50')
        assert exc.value.available == Decimal('30')

    def test_partial_quantity(self, sku, product_batch, make_order):
        product_batch(100)
        order = make_order((sku, 50))

        allocations = inventory.reserve_line_item(order.items.get(), 20)

        assert sum(a.quantity for a in allocations) == Decimal('20')

    @pytest.mark.parametrize('quantity', [0, -1, 51])
    def test_invalid_quantity(self, sku, product_batch, make_order, quantity):
        product_batch(100)
        order = make_order((sku, 50))

        with pytest.raises(AllocmanError) as exc:
            inventory.reserve_line_item(order.items.get(), quantity)

        assert exc.value.code == 'INVALID_QUANTITY'


class TestConfirm:
    """Tests for inventory.confirm()."""

    def test_confirm_consumes_reserved(self, sku, product_batch, make_order):
        handle = product_batch(100)
        order = make_order((sku, 40))
        inventory.reserve(order)

        confirmed = inventory.confirm(order)

        assert [a.status for a in confirmed] == [AllocationStatus.CONFIRMED]
        assert confirmed[0].resolved_at is not None
        batch = fresh(handle)
        assert batch.reserved_quantity == Decimal('0')
        assert batch.consumed_quantity == Decimal('40')
        assert batch.available_quantity == Decimal('60')

    def test_confirm_is_idempotent(self, sku, product_batch, make_order):
        handle = product_batch(100)
        order = make_order((sku, 40))
        inventory.reserve(order)
        inventory.confirm(order)

        assert inventory.confirm(order) == []
        assert fresh(handle).consumed_quantity == Decimal('40')
        assert inventory.history(handle.registry_id).filter(action=ActivityAction.CONFIRMED).count() == 1

    def test_confirm_depletes_batch(self, sku, product_batch, make_order):
        handle = product_batch(40)
        order = make_order((sku, 40))
        inventory.reserve(order)

        inventory.confirm(order)

        assert fresh(handle).status == BatchStatus.DEPLETED

    def test_confirm_split_line_item(self, sku, product_batch, make_order):
        early = product_batch(80, expiry_days=10)
        late = product_batch(100, expiry_days=40)
        order = make_order((sku, 120))
        inventory.reserve(order)

        inventory.confirm(order)

        assert fresh(early).consumed_quantity == Decimal('80')
        assert fresh(late).consumed_quantity == Decimal('40')

    def test_confirm_without_reservations(self, sku, make_order):
        assert inventory.confirm(make_order((sku, 5))) == []


class TestRelease:
    """Tests for inventory.release()."""

    def test_release_restores_available(self, sku, product_batch, make_order):
        handle = product_batch(100)
        order = make_order((sku, 40))
        inventory.reserve(order)

        released = inventory.release(order, reason='Customer canceled')

        assert [a.status for a in released] == [AllocationStatus.RELEASED]
        assert released[0].metadata['release_reason'] == 'Customer canceled'
        batch = fresh(handle)
        assert batch.available_quantity == Decimal('100')
        assert batch.reserved_quantity == Decimal('0')
        assert batch.status == BatchStatus.AVAILABLE

    def test_release_twice_is_noop(self, sku, product_batch, make_order):
        handle = product_batch(100)
        order = make_order((sku, 40))
        inventory.reserve(order)
        inventory.release(order)

        assert inventory.release(order) == []
        assert fresh(handle).available_quantity == Decimal('100')

    def test_release_without_reservations(self, sku, make_order):
        assert inventory.release(make_order((sku, 5))) == []

    def test_release_leaves_confirmed_alone(self, sku, product_batch, make_order):
        handle = product_batch(100)
        order = make_order((sku, 40))
        inventory.reserve(order)
        inventory.confirm(order)

        assert inventory.release(order) == []
        batch = fresh(handle)
        assert batch.consumed_quantity == Decimal('40')
        assert batch.available_quantity == Decimal('60')

    def test_release_selected_items(self, sku, bottle, product_batch, material_batch, make_order):
        product_batch(100)
        bottles = material_batch(bottle, 100)
        order = make_order((sku, 10), (bottle, 10))
        inventory.reserve(order)
        sku_item = order.items.get(sku=sku)

        released = inventory.release(order, order_items=[sku_item])

        assert [a.order_item_id for a in released] == [sku_item.pk]
        assert fresh(bottles).reserved_quantity == Decimal('10')

    def test_released_stock_can_be_reserved_again(self, sku, product_batch, make_order):
        product_batch(50)
        first = make_order((sku, 50))
        second = make_order((sku, 50))
        inventory.reserve(first)

        [blocked] = inventory.reserve(second)
        inventory.release(first)
        [result] = inventory.reserve(second)

        assert not blocked.ok
        assert result.ok

    def test_pending_allocations_are_released_without_touching_batch(
        self, sku, product_batch, make_order,
    ):
        handle = product_batch(100)
        order = make_order((sku, 10))
        pending = InventoryAllocation.objects.create(
            order=order,
            order_item=order.items.get(),
            registry_entry=handle.entry,
            quantity=Decimal('10'),
        )

        inventory.release(order)

        pending.refresh_from_db()
        assert pending.status == AllocationStatus.RELEASED
        assert fresh(handle).available_quantity == Decimal('100')


class TestInvariants:
    """Quantity invariants across a full lifecycle."""

    def test_ledger_holds_after_every_step(self, sku, product_batch, make_order):
        handles = [product_batch(80, expiry_days=10), product_batch(100, expiry_days=40)]
        orders = [make_order((sku, 120)), make_order((sku, 30)), make_order((sku, 50))]

        def check():
            for handle in handles:
                batch = fresh(handle)
                check_quantities(batch)
                assert batch.available_quantity + batch.reserved_quantity == (
                    batch.received_quantity - batch.consumed_quantity
                )

        for order in orders:
            inventory.reserve(order)
            check()
        inventory.confirm(orders[0])
        check()
        inventory.release(orders[1])
        check()
        inventory.adjust(handles[1].registry_id, 5, reason='Recount')
        check()

    def test_allocations_cannot_be_deleted(self, sku, product_batch, make_order):
        product_batch(100)
        order = make_order((sku, 10))
        [result] = inventory.reserve(order)

        with pytest.raises(ValueError):
            result.allocations[0].delete()

    def test_sequential_orders_never_oversell(self, sku, product_batch, make_order):
        """Two orders of 60 against 100 units: one succeeds, one fails."""
        handle = product_batch(100)

        [first] = inventory.reserve(make_order((sku, 60)))
        [second] = inventory.reserve(make_order((sku, 60)))

        assert first.ok
        assert not second.ok
        assert second.error.available == Decimal('40')
        assert fresh(handle).reserved_quantity == Decimal('60')


class TestLockContention:
    """Retry on OperationalError, surfaced as AllocationUnavailableError."""

    @pytest.fixture
    def no_sleep(self, monkeypatch):
        sleeps = []
        monkeypatch.setattr('allocman.locking.time.sleep', sleeps.append)
        return sleeps

    def test_retries_then_succeeds(self, sku, product_batch, make_order, monkeypatch, no_sleep):
        from allocman.services import allocations

        handle = product_batch(100)
        order = make_order((sku, 10))
        calls = []

        def flaky(timeout_ms=None):
            calls.append(timeout_ms)
            if len(calls) == 1:
                raise OperationalError('lock timeout')

        monkeypatch.setattr(allocations, 'bound_lock_wait', flaky)

        [result] = inventory.reserve(order, retry=RetryPolicy(max_attempts=3, backoff=0.01))

        assert result.ok
        assert len(calls) == 2
        assert len(no_sleep) == 1
        assert fresh(handle).reserved_quantity == Decimal('10')
        assert inventory.allocations_for(order).count() == 1

    def test_gives_up_after_max_attempts(self, sku, product_batch, make_order, monkeypatch, no_sleep):
        from allocman.services import allocations

        handle = product_batch(100)
        order = make_order((sku, 10))

        def busy(timeout_ms=None):
            raise OperationalError('lock timeout')

        monkeypatch.setattr(allocations, 'bound_lock_wait', busy)

        with pytest.raises(AllocationUnavailableError) as exc:
            inventory.reserve(order, retry=RetryPolicy(max_attempts=2, backoff=0))

        assert exc.value.code == 'ALLOCATION_UNAVAILABLE'
        assert exc.value.data['attempts'] == 2
        assert isinstance(exc.value.__cause__, OperationalError)
        assert len(no_sleep) == 1
        assert fresh(handle).reserved_quantity == Decimal('0')
        assert not InventoryAllocation.objects.exists()

    def test_insufficient_is_not_retried(self, sku, product_batch, make_order, monkeypatch, no_sleep):
        from allocman.services import allocations

        product_batch(5)
        order = make_order((sku, 10))
        calls = []
        monkeypatch.setattr(allocations, 'bound_lock_wait', lambda timeout_ms=None: calls.append(1))

        [result] = inventory.reserve(order)

        assert not result.ok
        assert len(calls) == 1
        assert no_sleep == []

    def test_backoff_is_bounded(self):
        policy = RetryPolicy(max_attempts=10, backoff=0.1, max_backoff=0.3)

        assert all(policy.delay(attempt) <= 0.3 for attempt in range(1, 11))
        assert policy.delay(1) >= 0.06


class TestLockTimeout:
    """Lock wait bound around engine transactions."""

    @pytest.mark.skipif(connection.vendor == 'postgresql', reason='PostgreSQL sets lock_timeout')
    def test_noop_without_postgresql(self):
        with transaction.atomic():
            assert bound_lock_wait(500) is None

    @pytest.mark.skipif(connection.vendor != 'postgresql', reason='needs lock_timeout (PostgreSQL)')
    def test_caller_timeout_survives_reserve(self, sku, product_batch, make_order):
        product_batch(100)
        order = make_order((sku, 10))

        with transaction.atomic(), connection.cursor() as cursor:
            cursor.execute("SELECT set_config('lock_timeout', '7s', true)")
            inventory.reserve(order)
            inventory.confirm(order)
            cursor.execute("SELECT current_setting('lock_timeout')")
            assert cursor.fetchone()[0] == '7s'

    @pytest.mark.skipif(connection.vendor != 'postgresql', reason='needs lock_timeout (PostgreSQL)')
    def test_timeout_applies_inside_the_engine(self, sku, product_batch, make_order, monkeypatch, settings):
        from allocman.services import registry

        settings.ALLOCMAN = {'LOCK_TIMEOUT_MS': 1500}
        product_batch(100)
        order = make_order((sku, 10))
        seen = []
        listing = registry.BatchRegistry.list_eligible

        def list_eligible(requirement, strategy=None, as_of=None):
            with connection.cursor() as cursor:
                cursor.execute("SELECT current_setting('lock_timeout')")
                seen.append(cursor.fetchone()[0])
            return listing(requirement, strategy, as_of)

        monkeypatch.setattr(registry.BatchRegistry, 'list_eligible', list_eligible)

        inventory.reserve(order)

        assert seen == ['1500ms']


@pytest.mark.skipif(connection.vendor != 'postgresql', reason='needs row locks (PostgreSQL)')
@pytest.mark.django_db(transaction=True)
class TestConcurrentReservations:
    """Real concurrent reservations against one batch."""

    def test_concurrent_orders_never_oversell(self, sku, product_batch, make_order):
        handle = product_batch(100)
        orders = [make_order((sku, 60)), make_order((sku, 60))]
        results = {}
        barrier = threading.Barrier(len(orders))

        def worker(order):
            try:
                barrier.wait()
                [results[order.pk]] = inventory.reserve(Order.objects.get(pk=order.pk))
            finally:
                connection.close()

        threads = [threading.Thread(target=worker, args=(order,)) for order in orders]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(r.ok for r in results.values()) == [False, True]
        batch = fresh(handle)
        assert batch.reserved_quantity == Decimal('60')
        assert batch.available_quantity == Decimal('40')

    def test_disjoint_batches_both_succeed(self, sku, bottle, product_batch, material_batch, make_order):
        product_batch(100)
        material_batch(bottle, 100)
        orders = [make_order((sku, 60)), make_order((bottle, 60))]
        results = {}
        barrier = threading.Barrier(len(orders))

        def worker(order):
            try:
                barrier.wait()
                [results[order.pk]] = inventory.reserve(Order.objects.get(pk=order.pk))
            finally:
                connection.close()

        threads = [threading.Thread(target=worker, args=(order,)) for order in orders]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert all(r.ok for r in results.values())

    def test_same_order_reserved_twice_at_once(self, sku, product_batch, make_order):
        handle = product_batch(100)
        order = make_order((sku, 30))
        barrier = threading.Barrier(2)

        def worker():
            try:
                barrier.wait()
                inventory.reserve(Order.objects.get(pk=order.pk))
            finally:
                connection.close()

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        batch = fresh(handle)
        assert batch.reserved_quantity == Decimal('30')
        assert batch.available_quantity == Decimal('70')
        held = InventoryAllocation.objects.filter(order=order, status=AllocationStatus.RESERVED)
        assert sum(a.quantity for a in held) == Decimal('30')
