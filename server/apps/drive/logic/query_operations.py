"""Read-only queries over a user's drive.

All queries are scoped to a single owner.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, final
from zoneinfo import ZoneInfo

from django.conf import settings
from django.db.models import (
    Case,
    CharField,
    F,
    IntegerField,
    Q,
    QuerySet,
    Sum,
    Value,
    When,
)

from server.apps.drive.exceptions import InvalidArgumentError
from server.apps.drive.logic.node_operations import get_folder
from server.apps.drive.models import Node, NodeKind

# User type for Django's dynamic user model
_User = Any

logger = logging.getLogger(__name__)


@final
@dataclass(frozen=True, slots=True)
class DashboardStats:
    """Aggregates shown on a user's dashboard."""

    total_files: int
    total_size_bytes: int
    recent_nodes: list[Node]
    favorites: list[Node]


def list_children(
    owner: _User,
    parent_id: int | None = None,
    kind: str | None = None,
    is_private: bool | None = None,
) -> QuerySet[Node]:
    """List the direct children of a folder (or of the root level).

    Folders come first ordered by name, then files newest first.

    Args:
        owner: Owner of the nodes.
        parent_id: Folder ID, or None for the root level.
        kind: Only return nodes of this kind.
        is_private: Only return nodes with this privacy flag.

    Returns:
        QuerySet of child nodes.

    Raises:
        InvalidArgumentError: If ``kind`` is unknown.
    """
    children = Node.objects.filter(owner=owner, parent_id=parent_id)

    if kind is not None:
        if kind not in NodeKind.values:
            raise InvalidArgumentError(f'Invalid kind: {kind}')
        children = children.filter(kind=kind)

    if is_private is not None:
        children = children.filter(is_private=is_private)

    return children.order_by(
        Case(
            When(kind=NodeKind.FOLDER, then=Value(0)),
            default=Value(1),
            output_field=IntegerField(),
        ),
        Case(
            When(kind=NodeKind.FOLDER, then=F('name')),
            default=Value(''),
            output_field=CharField(),
        ),
        '-created_at',
        '-id',
    )


def get_folder_contents(
    owner: _User,
    folder_id: int,
) -> tuple[Node, QuerySet[Node]]:
    """Get a folder together with its direct children.

    Args:
        owner: Folder owner.
        folder_id: ID of the folder.

    Returns:
        Tuple of the folder and its children (see ``list_children``).

    Raises:
        NotFoundError: If no such folder is owned by the user.
    """
    folder = get_folder(owner, folder_id)
    return folder, list_children(owner, folder.pk)


def search(owner: _User, text: str) -> QuerySet[Node]:
    """Search nodes by name or kind.

    Matching is a case-insensitive substring match; the query text is
    never interpreted as a pattern.

    Args:
        owner: Owner of the nodes.
        text: Search text.

    Returns:
        Up to ``DRIVE_SEARCH_MAX_RESULTS`` matches, newest first.

    Raises:
        InvalidArgumentError: If the text is empty or too long.
    """
    max_length = settings.DRIVE_SEARCH_MAX_QUERY_LENGTH
    query = (text or '').strip()
    if not query:
        raise InvalidArgumentError('Search query is required')
    if len(query) > max_length:
        raise InvalidArgumentError(
            f'Search query must be at most {max_length} characters',
        )

    logger.debug('Searching drive of %s for %r', owner.username, query)
    return Node.objects.filter(
        Q(name__icontains=query) | Q(kind__icontains=query),
        owner=owner,
    ).order_by('-created_at', '-id')[:settings.DRIVE_SEARCH_MAX_RESULTS]


def list_favorites(owner: _User) -> QuerySet[Node]:
    """List favorite nodes, newest first.

    Args:
        owner: Owner of the nodes.

    Returns:
        QuerySet of favorite nodes.
    """
    return Node.objects.filter(
        owner=owner,
        is_favorite=True,
    ).order_by('-created_at', '-id')


def list_recent(owner: _User, limit: int | None = None) -> QuerySet[Node]:
    """List the most recently created nodes.

    Args:
        owner: Owner of the nodes.
        limit: Maximum number of nodes (``DRIVE_RECENT_LIMIT`` by default).

    Returns:
        QuerySet of nodes, newest first.

    Raises:
        InvalidArgumentError: If ``limit`` is not positive.
    """
    if limit is None:
        limit = settings.DRIVE_RECENT_LIMIT
    if limit < 1:
        raise InvalidArgumentError('Limit must be positive')
    return Node.objects.filter(
        owner=owner,
    ).order_by('-created_at', '-id')[:limit]


def list_by_creation_date(owner: _User, day: date) -> QuerySet[Node]:
    """List nodes created on a calendar day.

    The day runs from 00:00:00.000 up to (not including) the next
    midnight in ``DRIVE_REFERENCE_TIMEZONE``.

    Args:
        owner: Owner of the nodes.
        day: Calendar day.

    Returns:
        QuerySet of nodes created that day, newest first.
    """
    start, end = day_bounds(day)
    return Node.objects.filter(
        owner=owner,
        created_at__gte=start,
        created_at__lt=end,
    ).order_by('-created_at', '-id')


def dashboard_stats(owner: _User) -> DashboardStats:
    """Compute dashboard aggregates.

    File count and total size cover non-folder nodes only; recent nodes
    and favorites cover all nodes.

    Args:
        owner: Owner of the nodes.

    Returns:
        DashboardStats snapshot.
    """
    limit = settings.DRIVE_DASHBOARD_LIMIT
    owned = Node.objects.filter(owner=owner)
    files = owned.exclude(kind=NodeKind.FOLDER)

    totals = files.aggregate(total_size=Sum('size_bytes'))
    return DashboardStats(
        total_files=files.count(),
        total_size_bytes=totals['total_size'] or 0,
        recent_nodes=list(owned.order_by('-created_at', '-id')[:limit]),
        favorites=list(list_favorites(owner)[:limit]),
    )


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Get the start and the exclusive end of a day.

    Args:
        day: Calendar day.

    Returns:
        Aware datetimes in ``DRIVE_REFERENCE_TIMEZONE``.
    """
    tz = ZoneInfo(settings.DRIVE_REFERENCE_TIMEZONE)
    start = datetime.combine(day, time.min, tzinfo=tz)
    return start, start + timedelta(days=1)
