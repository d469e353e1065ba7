"""
Management command to check every grade record and repair inconsistencies:
- Scores for assessment types that no longer exist
- More than one score for the same assessment type
- Final scores that differ from the sum of their scores
"""
from django.core.management.base import BaseCommand

from gradebook.cascade import sweep_orphaned_entries


class Command(BaseCommand):
    help = 'Check grade records and repair orphaned or duplicate scores and stale final scores'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Report inconsistent records without changing them',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        prefix = '[DRY RUN] ' if dry_run else ''

        summary = sweep_orphaned_entries(dry_run=dry_run)

        self.stdout.write(f"{prefix}Examined {summary['examined']} grade record(s)")
        self.stdout.write(f"{prefix}Found {summary['inconsistent']} inconsistent record(s)")

        if dry_run:
            return

        if summary['failed']:
            failed = ', '.join(str(pk) for pk in summary['failed'])
            self.stdout.write(self.style.ERROR(f"Could not repair record(s): {failed}"))

        self.stdout.write(self.style.SUCCESS(f"Repaired {summary['repaired']} grade record(s)"))
