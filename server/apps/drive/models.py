"""Database models for drive app."""

from typing import Final, final, override

from django.conf import settings
from django.db import models

# Constants for field max lengths
NODE_NAME_MAX_LENGTH: Final = 255
_KIND_MAX_LENGTH: Final = 16
_BLOB_REF_MAX_LENGTH: Final = 512
_MIME_TYPE_MAX_LENGTH: Final = 255
_EXTENSION_MAX_LENGTH: Final = 32

_FOLDER_ONLY = models.Q(kind='folder')
_FILES_ONLY = ~models.Q(kind='folder')


class NodeKind(models.TextChoices):
    """Kinds of nodes in the drive tree."""

    FOLDER = 'folder', 'Folder'
    IMAGE = 'image', 'Image'
    PDF = 'pdf', 'PDF'
    NOTE = 'note', 'Note'


@final
class Node(models.Model):
    """A file or folder in a user's drive.

    Nodes of one owner form a forest through ``parent``. Folders carry
    no blob and have ``size_bytes == 0``; their effective size is the
    sum of descendant file sizes and is computed on demand.

    Files reference their content in the blob store through
    ``blob_ref``, which is opaque to everything except the blob store.
    """

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='drive_nodes',
        db_index=True,
    )

    name = models.CharField(
        max_length=NODE_NAME_MAX_LENGTH,
    )

    kind = models.CharField(
        max_length=_KIND_MAX_LENGTH,
        choices=NodeKind.choices,
    )

    # Subtrees are removed by delete_node; the FK rejects dangling children
    parent = models.ForeignKey(
        'self',
        on_delete=models.DO_NOTHING,
        related_name='children',
        null=True,
        blank=True,
    )

    size_bytes = models.BigIntegerField(
        default=0,
        help_text='File size in bytes (always 0 for folders)',
    )

    blob_ref = models.CharField(
        max_length=_BLOB_REF_MAX_LENGTH,
        blank=True,
        default='',
        help_text='Blob store reference (empty for folders)',
    )

    mime_type = models.CharField(
        max_length=_MIME_TYPE_MAX_LENGTH,
        blank=True,
        default='',
    )

    extension = models.CharField(
        max_length=_EXTENSION_MAX_LENGTH,
        blank=True,
        default='',
    )

    is_private = models.BooleanField(default=False)
    is_favorite = models.BooleanField(default=False)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'Node'  # type: ignore[mutable-override]
        verbose_name_plural = 'Nodes'  # type: ignore[mutable-override]
        ordering = ['-created_at', '-id']

        indexes = [
            # Optimize directory listing queries
            models.Index(
                fields=['owner', 'parent'],
                name='drive_owner_parent_idx',
            ),
            # Optimize recent and date-range queries
            models.Index(
                fields=['owner', '-created_at'],
                name='drive_owner_recent_idx',
            ),
            models.Index(
                fields=['owner', 'kind'],
                name='drive_owner_kind_idx',
            ),
            models.Index(
                fields=['owner', 'is_favorite'],
                name='drive_owner_favorite_idx',
            ),
        ]

        constraints = [
            # Sibling folder names are unique per parent
            models.UniqueConstraint(
                fields=['owner', 'parent', 'name'],
                condition=_FOLDER_ONLY,
                name='drive_folder_name_unique',
            ),
            models.UniqueConstraint(
                fields=['owner', 'name'],
                condition=_FOLDER_ONLY & models.Q(parent__isnull=True),
                name='drive_root_folder_name_unique',
            ),
            # Sibling file names are unique per parent
            models.UniqueConstraint(
                fields=['owner', 'parent', 'name'],
                condition=_FILES_ONLY,
                name='drive_file_name_unique',
            ),
            models.UniqueConstraint(
                fields=['owner', 'name'],
                condition=_FILES_ONLY & models.Q(parent__isnull=True),
                name='drive_root_file_name_unique',
            ),
            models.CheckConstraint(
                condition=models.Q(size_bytes__gte=0),
                name='drive_size_non_negative',
            ),
            # Folders have no content, files always have a blob
            models.CheckConstraint(
                condition=(
                    (_FOLDER_ONLY & models.Q(size_bytes=0, blob_ref=''))
                    | (_FILES_ONLY & ~models.Q(blob_ref=''))
                ),
                name='drive_folder_blob_consistency',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.owner.username}:{self.kind}:{self.name}'

    @property
    def is_folder(self) -> bool:
        """Whether this node is a folder."""
        return self.kind == NodeKind.FOLDER


def default_quota_bytes() -> int:
    """Default quota for new users, from settings.

    Returns:
        Quota in bytes.
    """
    return settings.DRIVE_DEFAULT_QUOTA_BYTES


@final
class UserQuota(models.Model):
    """Storage quota for a user.

    Tracks user's storage limit and current usage. ``used_bytes`` is
    only ever changed by the quota ledger module
    (``server.apps.drive.logic.quota_operations``).

    When over quota, users can still read and delete files, but uploads
    are blocked until usage falls below the limit.
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='drive_quota',
        primary_key=True,
    )

    quota_bytes = models.BigIntegerField(
        default=default_quota_bytes,
        help_text='Storage quota limit in bytes',
    )

    used_bytes = models.BigIntegerField(
        default=0,
        help_text='Currently used storage in bytes',
    )

    class Meta:
        """Model metadata."""

        verbose_name = 'User Quota'  # type: ignore[mutable-override]
        verbose_name_plural = 'User Quotas'  # type: ignore[mutable-override]

        constraints = [
            models.CheckConstraint(
                condition=models.Q(quota_bytes__gte=0),
                name='drive_quota_bytes_non_negative',
            ),
            models.CheckConstraint(
                condition=models.Q(used_bytes__gte=0),
                name='drive_used_bytes_non_negative',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.user.username}: {self.used_bytes}/{self.quota_bytes}'

    def has_space_for(self, size_bytes: int) -> bool:
        """Check if there's enough space for the given size.

        Args:
            size_bytes: Size to check in bytes.

        Returns:
            True if there's enough space, False otherwise.
        """
        return self.used_bytes + size_bytes <= self.quota_bytes

    def available_bytes(self) -> int:
        """Get available storage space.

        Returns:
            Available bytes (never negative).
        """
        available = self.quota_bytes - self.used_bytes
        return max(0, available)
