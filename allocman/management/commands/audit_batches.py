"""
Management command to verify the quantity ledger of every registered batch.

Usage:
    python manage.py audit_batches
"""

from django.core.management.base import BaseCommand, CommandError

from allocman import inventory
from allocman.exceptions import InvariantViolationError
from allocman.services.registry import check_quantities


class Command(BaseCommand):
    """Audit batch quantities command."""

    help = 'Checks available + reserved == received - consumed on every registered batch'

    def handle(self, *args, **options):
        checked = 0
        broken = []
        for entry in inventory.registered().order_by('pk').iterator():
            checked += 1
            try:
                check_quantities(entry.batch)
            except InvariantViolationError as exc:
                broken.append(entry.registry_id)
                self.stderr.write(f'{entry.registry_id}: {exc.message}')

        if broken:
            raise CommandError(f'{len(broken)} of {checked} batch(es) have a broken ledger')
        self.stdout.write(self.style.SUCCESS(f'{checked} batch(es) checked, ledger consistent'))
