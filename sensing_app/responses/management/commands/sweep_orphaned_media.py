"""
Remove media whose survey response no longer exists.

Deleting a survey response removes its media first and the row second; a
failure between or during those steps can leave media behind. Run this
periodically (e.g. a daily cron job) to collect it.

Usage:
    python manage.py sweep_orphaned_media
    python manage.py sweep_orphaned_media --dry-run
    python manage.py sweep_orphaned_media --verbose
"""

from datetime import timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from sensing_app.responses.models import Media
from sensing_app.responses.services import get_survey_response_service


class Command(BaseCommand):
    help = "Delete media not attached to any survey response"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be deleted without deleting it",
        )
        parser.add_argument(
            "--verbose",
            action="store_true",
            help="List every media item considered",
        )
        parser.add_argument(
            "--min-age-minutes",
            type=int,
            default=60,
            help="Only sweep media older than this many minutes",
        )

    def handle(self, *args, **options):
        dry_run = options["dry_run"]
        verbose = options["verbose"]
        cutoff = timezone.now() - timedelta(minutes=options["min_age_minutes"])

        orphans = Media.objects.filter(survey_response__isnull=True, created_at__lte=cutoff)
        media_store = get_survey_response_service().media_store

        if dry_run:
            self.stdout.write(self.style.WARNING("DRY RUN MODE - No changes will be made"))

        swept = 0
        for media_id in list(orphans.values_list("uuid", flat=True)):
            if verbose or dry_run:
                self.stdout.write(f"  orphaned media {media_id}")
            if not dry_run:
                media_store.delete_media(media_id)
            swept += 1

        verb = "Would delete" if dry_run else "Deleted"
        self.stdout.write(self.style.SUCCESS(f"{verb} {swept} orphaned media item(s)"))
