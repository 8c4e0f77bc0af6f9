"""
Activity log: append-only record of batch mutations.

record() does not open its own transaction: it joins the caller's, so a
mutation and its audit entry commit or roll back together. Store errors
propagate unchanged.
"""

from allocman.models.activity import BatchActivityLog
from allocman.models.enums import ActivityAction
from allocman.snapshots import BatchSnapshot


class ActivityLog:
    """Batch activity log methods."""

    @classmethod
    def record(cls, registry_entry, action: ActivityAction,
               previous: BatchSnapshot | None, new: BatchSnapshot,
               summary: str, actor=None, allocation=None) -> BatchActivityLog:
        """
        Append one activity entry.

        Args:
            registry_entry: BatchRegistryEntry the mutation applies to
            action: ActivityAction kind
            previous: snapshot before the mutation (None on registration)
            new: snapshot after the mutation
            summary: short human-readable description
            actor: user performing the mutation (optional)
            allocation: InventoryAllocation involved (optional)
        """
        return BatchActivityLog.objects.create(
            registry_entry=registry_entry,
            action=action,
            previous=previous.as_dict() if previous is not None else None,
            new=new.as_dict(),
            summary=summary[:255],
            actor=actor,
            allocation=allocation,
        )

    @classmethod
    def for_batch(cls, registry_id):
        """Entries for a batch, oldest first."""
        from allocman.services.registry import parse_registry_id
        return BatchActivityLog.objects.filter(
            registry_entry_id=parse_registry_id(registry_id),
        ).order_by('timestamp', 'pk')
