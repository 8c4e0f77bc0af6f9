"""
BatchActivityLog model: immutable audit trail of batch mutations.
"""

from django.conf import settings
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from allocman.models.enums import ActivityAction


class BatchActivityLog(models.Model):
    """
    Immutable record of a batch mutation.

    Rules:
    - NEVER update() or delete()
    - Written in the same transaction as the mutation it describes
    - previous / new hold versioned BatchSnapshot dicts, not free-form blobs
    """

    registry_entry = models.ForeignKey(
        'allocman.BatchRegistryEntry',
        on_delete=models.PROTECT,
        related_name='activity',
        verbose_name=_('Batch'),
    )
    action = models.CharField(
        max_length=20,
        choices=ActivityAction.choices,
        verbose_name=_('Action'),
    )
    previous = models.JSONField(
        null=True,
        blank=True,
        verbose_name=_('Previous snapshot'),
    )
    new = models.JSONField(verbose_name=_('New snapshot'))
    summary = models.CharField(
        max_length=255,
        verbose_name=_('Summary'),
        help_text=_('Required. Ex: "Reserved 40 for SO-1001"'),
    )
    allocation = models.ForeignKey(
        'allocman.InventoryAllocation',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='activity',
        verbose_name=_('Allocation'),
    )

    timestamp = models.DateTimeField(default=timezone.now, db_index=True, verbose_name=_('Timestamp'))
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
        verbose_name=_('Actor'),
    )

    class Meta:
        verbose_name = _('Batch activity')
        verbose_name_plural = _('Batch activity log')
        ordering = ['timestamp', 'pk']
        indexes = [
            models.Index(fields=['registry_entry', 'timestamp'], name='allocman_log_entry_ts_idx'),
        ]

    def save(self, *args, **kwargs):
        if self.pk:
            raise ValueError(
                "Activity log entries are immutable. "
                "Record a new entry instead."
            )
        if not self.summary:
            raise ValueError("Summary is required")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Activity log entries are immutable.")

    def __str__(self) -> str:
        return f"{self.timestamp:%Y-%m-%d %H:%M} {self.action} | {self.summary}"
