"""
Management command to expire batches past their expiry date.

Usage:
    python manage.py expire_batches
    python manage.py expire_batches --dry-run
    python manage.py expire_batches --as-of 2025-01-02
"""

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone
from django.utils.dateparse import parse_date

from allocman import inventory
from allocman.models import PackagingMaterialBatch, ProductBatch


class Command(BaseCommand):
    """Expire due batches command."""

    help = 'Marks registered batches past their expiry date as expired'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show how many batches would expire without changing them'
        )
        parser.add_argument(
            '--as-of',
            help='Reference date (YYYY-MM-DD), defaults to today'
        )

    def handle(self, *args, **options):
        as_of = timezone.localdate()
        if options['as_of']:
            try:
                as_of = parse_date(options['as_of'])
            except ValueError:
                as_of = None
            if as_of is None:
                raise CommandError(f"Invalid date: {options['as_of']}")

        if options['dry_run']:
            due = sum(
                model.objects.due_to_expire(as_of).filter(registry_entry__isnull=False).count()
                for model in (ProductBatch, PackagingMaterialBatch)
            )
            self.stdout.write(f'{due} batch(es) would expire as of {as_of}')
        else:
            count = inventory.expire_due(as_of)
            self.stdout.write(
                self.style.SUCCESS(f'{count} batch(es) expired as of {as_of}')
            )
