"""
Tests for the batch activity log and its snapshots.
"""

from decimal import Decimal

import pytest

from allocman import inventory
from allocman.models import ActivityAction, BatchActivityLog
from allocman.services.activity import ActivityLog
from allocman.snapshots import SNAPSHOT_VERSION, BatchSnapshot


pytestmark = pytest.mark.django_db


class TestActivityLog:
    """Tests for the append-only activity log."""

    def test_lifecycle_is_recorded_in_order(self, sku, product_batch, make_order):
        handle = product_batch(100)
        order = make_order((sku, 40))
        inventory.reserve(order)
        inventory.confirm(order)

        actions = [log.action for log in inventory.history(handle.registry_id)]

        assert actions == [
            ActivityAction.REGISTERED,
            ActivityAction.RESERVED,
            ActivityAction.CONFIRMED,
        ]

    def test_snapshots_chain(self, sku, product_batch, make_order):
        """Each entry's previous snapshot is the prior entry's new snapshot."""
        handle = product_batch(100)
        order = make_order((sku, 40))
        inventory.reserve(order)
        inventory.release(order)

        logs = list(inventory.history(handle.registry_id))

        for before, after in zip(logs, logs[1:]):
            assert after.previous == before.new

    def test_entries_are_immutable(self, product_batch):
        handle = product_batch(10)
        log = inventory.history(handle.registry_id).get()

        log.summary = 'Edited'
        with pytest.raises(ValueError):
            log.save()
        with pytest.raises(ValueError):
            log.delete()

    def test_summary_is_required(self, product_batch):
        handle = product_batch(10)
        snapshot = BatchSnapshot.of(handle.batch)

        with pytest.raises(ValueError):
            ActivityLog.record(handle.entry, ActivityAction.ADJUSTED, snapshot, snapshot, summary='')

        assert BatchActivityLog.objects.filter(action=ActivityAction.ADJUSTED).count() == 0

    def test_long_summary_is_truncated(self, product_batch):
        handle = product_batch(10)
        snapshot = BatchSnapshot.of(handle.batch)

        log = ActivityLog.record(handle.entry, ActivityAction.ADJUSTED, snapshot, snapshot, summary='x' * 300)

        assert len(log.summary) == 255


class TestBatchSnapshot:
    """Tests for the versioned snapshot format."""

    def test_stored_snapshot_reads_back(self, product_batch, today):
        handle = product_batch(80, expiry_days=10)
        log = inventory.history(handle.registry_id).get()

        snapshot = BatchSnapshot.from_dict(log.new)

        assert snapshot.version == SNAPSHOT_VERSION
        assert snapshot.kind == 'product'
        assert snapshot.available == Decimal('80')
        assert snapshot.reserved == Decimal('0')
        assert snapshot.expiry_date == handle.batch.expiry_date.isoformat()

    def test_unknown_version_rejected(self, product_batch):
        handle = product_batch(10)
        data = dict(inventory.history(handle.registry_id).get().new, version=99)

        with pytest.raises(ValueError):
            BatchSnapshot.from_dict(data)
