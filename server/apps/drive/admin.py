"""Django admin configuration for drive app."""

from django.contrib import admin
from django.db.models import QuerySet
from django.http import HttpRequest
from django.utils.html import format_html

from server.apps.drive.exceptions import NotFoundError
from server.apps.drive.logic.node_operations import delete_node
from server.apps.drive.models import Node, UserQuota


def _format_bytes(size_bytes: int) -> str:
    """Format bytes in human-readable format.

    Args:
        size_bytes: Size in bytes.

    Returns:
        Formatted size string (e.g., '1.5 MB', '234 KB').
    """
    if size_bytes < 1024:
        return f'{size_bytes} B'
    if size_bytes < 1024 * 1024:  # noqa: WPS531
        return f'{size_bytes / 1024:.1f} KB'
    if size_bytes < 1024 * 1024 * 1024:  # noqa: WPS531
        return f'{size_bytes / (1024 * 1024):.1f} MB'
    return f'{size_bytes / (1024 * 1024 * 1024):.1f} GB'


@admin.register(Node)
class NodeAdmin(admin.ModelAdmin[Node]):
    """Admin interface for Node model.

    Deletes go through ``delete_node`` so that folder subtrees, quota
    usage and blobs stay consistent.
    """

    list_display = [
        'name',
        'kind',
        'owner',
        'parent',
        'size_display',
        'is_favorite',
        'is_private',
        'created_at',
    ]

    list_filter = [
        'kind',
        'is_favorite',
        'is_private',
        'created_at',
    ]

    search_fields = [
        'name',
        'owner__username',
    ]

    readonly_fields = [
        'name',
        'owner',
        'kind',
        'parent',
        'size_bytes',
        'blob_ref',
        'mime_type',
        'extension',
        'created_at',
        'updated_at',
    ]

    fieldsets = (
        ('Node Information', {
            'fields': ('name', 'kind', 'owner', 'parent'),
        }),
        ('Content', {
            'fields': ('size_bytes', 'blob_ref', 'mime_type', 'extension'),
        }),
        ('Flags', {
            'fields': ('is_favorite', 'is_private'),
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at'),
        }),
    )

    def size_display(self, obj: Node) -> str:
        """Display size in human-readable format.

        Args:
            obj: Node instance.

        Returns:
            Formatted size string, '-' for folders.
        """
        if obj.is_folder:
            return '-'
        return _format_bytes(obj.size_bytes)
    size_display.short_description = 'Size'  # type: ignore[attr-defined]

    def has_add_permission(self, request: HttpRequest) -> bool:
        """Nodes are only created through drive operations.

        Args:
            request: HTTP request.

        Returns:
            Always False.
        """
        return False

    def delete_model(self, request: HttpRequest, obj: Node) -> None:
        """Delete a node with its subtree, quota release and blobs.

        Args:
            request: HTTP request.
            obj: Node to delete.
        """
        delete_node(obj.owner, obj.pk)

    def delete_queryset(
        self,
        request: HttpRequest,
        queryset: QuerySet[Node],
    ) -> None:
        """Delete selected nodes one by one through ``delete_node``.

        Args:
            request: HTTP request.
            queryset: Selected nodes.
        """
        for node in queryset.select_related('owner'):
            try:
                delete_node(node.owner, node.pk)
            except NotFoundError:
                # Already removed with a selected ancestor folder
                continue

    def get_queryset(self, request: HttpRequest) -> QuerySet[Node]:
        """Optimize queryset with select_related.

        Args:
            request: HTTP request.

        Returns:
            Optimized QuerySet.
        """
        return super().get_queryset(request).select_related('owner', 'parent')


@admin.register(UserQuota)
class UserQuotaAdmin(admin.ModelAdmin[UserQuota]):
    """Admin interface for UserQuota model."""

    list_display = [
        'user',
        'quota_display',
        'used_display',
        'percentage_display',
        'status_display',
    ]

    search_fields = [
        'user__username',
        'user__email',
    ]

    readonly_fields = [
        'user',
        'used_bytes',
    ]

    fieldsets = (
        ('User', {
            'fields': ('user',),
        }),
        ('Quota Settings', {
            'fields': ('quota_bytes',),
        }),
        ('Current Usage', {
            'fields': ('used_bytes',),
        }),
    )

    def quota_display(self, obj: UserQuota) -> str:
        """Display quota in human-readable format.

        Args:
            obj: UserQuota instance.

        Returns:
            Formatted quota string.
        """
        return _format_bytes(obj.quota_bytes)
    quota_display.short_description = 'Quota'  # type: ignore[attr-defined]

    def used_display(self, obj: UserQuota) -> str:
        """Display used bytes in human-readable format.

        Args:
            obj: UserQuota instance.

        Returns:
            Formatted used bytes string.
        """
        return _format_bytes(obj.used_bytes)
    used_display.short_description = 'Used'  # type: ignore[attr-defined]

    def percentage_display(self, obj: UserQuota) -> str:
        """Display percentage of quota used.

        Args:
            obj: UserQuota instance.

        Returns:
            Percentage string.
        """
        if obj.quota_bytes == 0:
            return '0%'
        percentage = (obj.used_bytes / obj.quota_bytes) * 100
        return f'{percentage:.1f}%'
    percentage_display.short_description = '%'  # type: ignore[attr-defined]

    def status_display(self, obj: UserQuota) -> str:
        """Display status indicator based on usage.

        Args:
            obj: UserQuota instance.

        Returns:
            HTML formatted status indicator.
        """
        if obj.quota_bytes == 0:
            percentage = 0.0
        else:
            percentage = (obj.used_bytes / obj.quota_bytes) * 100

        if percentage >= 100:
            color = '#dc3545'  # Red - over quota
            status = 'Over Quota'
        elif percentage >= 90:
            color = '#ffc107'  # Yellow - warning
            status = 'Warning'
        else:
            color = '#28a745'  # Green - ok
            status = 'OK'

        return format_html(
            '<span style="color: {color}; font-weight: bold;">'
            '{status}</span>',
            color=color,
            status=status,
        )
    status_display.short_description = 'Status'  # type: ignore[attr-defined]

    def get_queryset(self, request: HttpRequest) -> QuerySet[UserQuota]:
        """Optimize queryset with select_related.

        Args:
            request: HTTP request.

        Returns:
            Optimized QuerySet.
        """
        return super().get_queryset(request).select_related('user')
