"""Management command to reconcile quota usage with stored files."""

import logging
from typing import Any

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError
from django.db.models import Sum

from server.apps.drive.logic.quota_operations import (
    get_or_create_quota,
    recalculate_usage,
)
from server.apps.drive.models import Node, NodeKind

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Recalculate used storage of users from their file nodes."""

    help = 'Recalculate storage usage from stored files'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--user',
            dest='username',
            default=None,
            help='Only recalculate this user (default: all users)',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show drifted users without fixing them',
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the recalculation.

        Args:
            args: Positional arguments (unused).
            options: Command options.

        Raises:
            CommandError: If the requested user doesn't exist.
        """
        dry_run = options['dry_run']
        users = get_user_model().objects.order_by('pk')
        if options['username']:
            users = users.filter(username=options['username'])
            if not users.exists():
                raise CommandError(f'User not found: {options["username"]}')

        drifted = 0
        for user in users:
            quota = get_or_create_quota(user)
            actual = Node.objects.filter(owner=user).exclude(
                kind=NodeKind.FOLDER,
            ).aggregate(total=Sum('size_bytes'))['total'] or 0

            if actual == quota.used_bytes:
                continue

            drifted += 1
            if dry_run:
                self.stdout.write(
                    f'Would fix {user.username}: '
                    f'{quota.used_bytes} -> {actual} bytes',
                )
                continue

            recalculate_usage(user)
            logger.info(
                'Fixed quota drift for %s: %d -> %d bytes',
                user.username,
                quota.used_bytes,
                actual,
            )

        if dry_run:
            self.stdout.write(
                self.style.SUCCESS(f'Would fix {drifted} users'),
            )
        else:
            self.stdout.write(
                self.style.SUCCESS(f'Fixed {drifted} users'),
            )
