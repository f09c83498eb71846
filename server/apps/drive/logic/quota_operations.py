"""Business logic for storage quota operations.

This module is the quota ledger and the only module that changes
``UserQuota.used_bytes``: ``apply_delta`` for uploads and deletes,
``recalculate_usage`` for repairs.
"""

import logging
from dataclasses import dataclass
from typing import Any, Final, final

from django.db import transaction
from django.db.models import F, Sum, Value  # noqa: WPS347
from django.db.models.functions import Greatest

from server.apps.drive.exceptions import QuotaExceededError
from server.apps.drive.models import Node, NodeKind, UserQuota

# User type for Django's dynamic user model
_User = Any

# Field name constant to avoid string literal over-use
_USED_BYTES_FIELD: Final = 'used_bytes'  # noqa: WPS226

logger = logging.getLogger(__name__)


@final
@dataclass(frozen=True, slots=True)
class QuotaState:
    """Snapshot of a user's quota."""

    quota_bytes: int
    used_bytes: int

    @property
    def available_bytes(self) -> int:
        """Bytes left before reaching the quota (never negative)."""
        return max(0, self.quota_bytes - self.used_bytes)


def get_or_create_quota(user: _User) -> UserQuota:
    """Get or create quota for user (on-demand creation).

    Args:
        user: User to get quota for.

    Returns:
        UserQuota instance for the user.
    """
    quota, created = UserQuota.objects.get_or_create(user=user)
    if created:
        logger.info(
            'Created quota for user %s: %d bytes',
            user.username,
            quota.quota_bytes,
        )
    return quota


def get_quota_state(user: _User) -> QuotaState:
    """Read the current quota and usage of a user.

    Args:
        user: User to read quota for.

    Returns:
        QuotaState snapshot.
    """
    quota = get_or_create_quota(user)
    return QuotaState(
        quota_bytes=quota.quota_bytes,
        used_bytes=quota.used_bytes,
    )


def check_quota(user: _User, size_bytes: int) -> None:
    """Check if user has enough quota for an upload.

    Advisory only: the authoritative check happens in ``apply_delta``
    when the upload is committed. Creates quota on-demand if it doesn't
    exist.

    Args:
        user: User to check quota for.
        size_bytes: Size of the upload in bytes.

    Raises:
        QuotaExceededError: If upload would exceed quota.
    """
    quota = get_or_create_quota(user)

    if not quota.has_space_for(size_bytes):
        logger.warning(
            'Quota exceeded for user %s: need %d, have %d available',
            user.username,
            size_bytes,
            quota.available_bytes(),
        )
        raise QuotaExceededError(
            quota_bytes=quota.quota_bytes,
            used_bytes=quota.used_bytes,
            required_bytes=size_bytes,
        )


def apply_delta(user: _User, delta_bytes: int) -> int:
    """Atomically apply a usage change to the user's quota.

    Positive deltas are a single conditional ``UPDATE`` that only matches
    while ``used_bytes + delta <= quota_bytes``, so two concurrent
    callers can never jointly overcommit. The updated row stays locked
    until the surrounding transaction commits, which serializes writers
    of the same user.

    Negative deltas skip the check and clamp the result at 0.

    Args:
        user: User whose usage changes.
        delta_bytes: Bytes to add (positive) or release (negative).

    Returns:
        New ``used_bytes`` value.

    Raises:
        QuotaExceededError: If a positive delta does not fit.
    """
    get_or_create_quota(user)
    quotas = UserQuota.objects.filter(user=user)

    with transaction.atomic():
        if delta_bytes > 0:
            updated = quotas.filter(
                used_bytes__lte=F('quota_bytes') - delta_bytes,
            ).update(used_bytes=F(_USED_BYTES_FIELD) + delta_bytes)

            if updated == 0:
                quota = quotas.get()
                logger.warning(
                    'Quota exceeded for user %s: need %d, have %d available',
                    user.username,
                    delta_bytes,
                    quota.available_bytes(),
                )
                raise QuotaExceededError(
                    quota_bytes=quota.quota_bytes,
                    used_bytes=quota.used_bytes,
                    required_bytes=delta_bytes,
                )
        elif delta_bytes < 0:
            quotas.update(
                used_bytes=Greatest(
                    F(_USED_BYTES_FIELD) + delta_bytes,
                    Value(0),
                ),
            )

        new_usage = quotas.values_list(_USED_BYTES_FIELD, flat=True).get()

    logger.debug(
        'Applied usage delta for user %s: %+d bytes (new: %d)',
        user.username,
        delta_bytes,
        new_usage,
    )
    return new_usage


def recalculate_usage(user: _User) -> int:
    """Recalculate user's storage usage from actual files.

    This is useful for fixing inconsistencies after a crash between
    the metadata commit and blob cleanup, or after manual repairs.

    Args:
        user: User to recalculate usage for.

    Returns:
        New calculated usage in bytes.
    """
    with transaction.atomic():
        quota = get_or_create_quota(user)
        quota = UserQuota.objects.select_for_update().get(pk=quota.pk)
        # Sum under the row lock so no concurrent delta is overwritten
        total = Node.objects.filter(owner=user).exclude(
            kind=NodeKind.FOLDER,
        ).aggregate(
            total=Sum('size_bytes'),
        )['total'] or 0
        old_usage = quota.used_bytes
        quota.used_bytes = total
        quota.save(update_fields=[_USED_BYTES_FIELD])

    logger.info(
        'Recalculated usage for user %s: %d -> %d bytes',
        user.username,
        old_usage,
        total,
    )

    return total
