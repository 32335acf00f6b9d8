"""
Django management command to view application logs
"""
from collections import deque

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError


class Command(BaseCommand):
    help = 'View application logs'

    def add_arguments(self, parser):
        parser.add_argument(
            '--log-type',
            type=str,
            default='errors',
            choices=['general', 'errors', 'connections', 'evolution_api'],
            help='Type of log to view (default: errors)'
        )
        parser.add_argument(
            '--lines',
            type=int,
            default=50,
            help='Number of lines to show (default: 50)'
        )

    def handle(self, *args, **options):
        log_type = options['log_type']
        lines = options['lines']
        if lines <= 0:
            raise CommandError('--lines must be a positive number')

        log_file = settings.LOGS_DIR / f'{log_type}.log'

        if not log_file.exists():
            self.stdout.write(
                self.style.ERROR(f'Log file {log_file} does not exist')
            )
            return

        with open(log_file, encoding='utf-8', errors='replace') as handle:
            tail = deque(handle, maxlen=lines)

        self.stdout.write(
            self.style.SUCCESS(f'Showing last {len(tail)} lines from {log_type}.log:')
        )
        self.stdout.write('=' * 80)
        for line in tail:
            self.stdout.write(line.rstrip('\n'))
