"""
Management command for the scheduled trending decay tick.

Usage: python manage.py decay_trending [--min-interval-hours N]
"""

from datetime import timedelta

from django.core.management.base import BaseCommand, CommandError

from songs.exceptions import StorageError
from songs.trending import decay_trending_scores


class Command(BaseCommand):
    help = 'Halve the trending score of every song above the decay epsilon'

    def add_arguments(self, parser):
        parser.add_argument(
            '--min-interval-hours',
            type=float,
            default=None,
            help='Skip songs decayed within the last N hours (guards against double firing)'
        )

    def handle(self, *args, **options):
        min_interval = None
        if options['min_interval_hours'] is not None:
            min_interval = timedelta(hours=options['min_interval_hours'])

        try:
            updated = decay_trending_scores(min_interval=min_interval)
        except StorageError as exc:
            raise CommandError(exc.message) from exc

        self.stdout.write(self.style.SUCCESS(f'Decayed trending scores of {updated} songs'))
