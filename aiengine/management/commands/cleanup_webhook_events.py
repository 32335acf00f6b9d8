"""
Django management command to purge old webhook message records.
Message ids older than the dedup window can no longer be redelivered, so their rows are dead weight.
"""
from datetime import timedelta

from django.conf import settings
from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone

from aiengine.models import WebhookData
import logging

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Delete webhook message records older than the dedup window'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be deleted without actually deleting'
        )
        parser.add_argument(
            '--older-than',
            type=int,
            default=None,
            help='Age in minutes (default: WHATSAPP_WEBHOOK_DEDUP_WINDOW)'
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        minutes = options['older_than']
        if minutes is None:
            minutes = settings.WHATSAPP_WEBHOOK_DEDUP_WINDOW // 60

        cutoff = timezone.now() - timedelta(minutes=minutes)
        stale = WebhookData.objects.filter(received_at__lt=cutoff)
        count = stale.count()

        self.stdout.write(f"Found {count} webhook records received before {cutoff:%Y-%m-%d %H:%M:%S}")

        if dry_run:
            self.stdout.write(f"Dry run complete. Would delete {count} webhook records.")
            return

        with transaction.atomic():
            deleted, _ = stale.delete()

        logger.info(f"Purged {deleted} webhook records older than {minutes} minutes")
        self.stdout.write(
            self.style.SUCCESS(f"Cleanup complete. Deleted {deleted} webhook records.")
        )
