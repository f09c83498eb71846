"""Blob store adapter over a Django storage backend.

Blobs are addressed by references of the form
``{owner_id}/{token}-{file name}``. References are path-like, so renaming
a file renames its blob. Callers treat references as opaque strings.
"""

import logging
import secrets
from pathlib import Path
from typing import BinaryIO, Final

from django.core.exceptions import SuspiciousFileOperation
from django.core.files.base import ContentFile
from django.core.files.base import File as DjangoFile
from django.core.files.storage import Storage, default_storage
from django.utils.text import get_valid_filename

from server.apps.drive.exceptions import StorageBackendError

logger = logging.getLogger(__name__)

_TOKEN_BYTES: Final = 8
_MAX_STEM_LENGTH: Final = 120
_MAX_SUFFIX_LENGTH: Final = 16
_FALLBACK_STEM: Final = 'blob'


class BlobStore:
    """Byte storage for file nodes.

    Wraps a Django ``Storage`` and turns every backend failure into
    ``StorageBackendError``. Deleting an absent blob is not an error.
    """

    def __init__(self, storage: Storage) -> None:
        """Initialize the blob store.

        Args:
            storage: Django storage backend holding the bytes.
        """
        self._storage = storage

    def make_ref(self, owner_id: int, name: str) -> str:
        """Build a fresh reference for a blob of the given file name.

        Args:
            owner_id: ID of the owning user.
            name: Display name of the file.

        Returns:
            New, unused blob reference.
        """
        token = secrets.token_hex(_TOKEN_BYTES)
        return f'{owner_id}/{token}-{_safe_filename(name)}'

    def put(
        self,
        content: bytes | BinaryIO | DjangoFile,
        owner_id: int,
        name: str,
    ) -> str:
        """Store content under a new reference.

        Args:
            content: Raw bytes or a file-like object.
            owner_id: ID of the owning user.
            name: Display name of the file.

        Returns:
            Reference of the stored blob.

        Raises:
            StorageBackendError: If the backend write fails.
        """
        ref = self.make_ref(owner_id, name)
        try:
            saved_ref = self._storage.save(ref, _as_django_file(content))
        except Exception as exc:
            logger.exception('Failed to store blob: %s', ref)
            raise StorageBackendError('Failed to store file content') from exc
        logger.info('Stored blob: %s', saved_ref)
        return saved_ref

    def get(self, ref: str) -> bytes:
        """Read the full content of a blob.

        Args:
            ref: Blob reference.

        Returns:
            Blob bytes.

        Raises:
            StorageBackendError: If the blob is missing or unreadable.
        """
        try:
            with self._storage.open(ref, 'rb') as blob:
                return blob.read()
        except Exception as exc:
            logger.exception('Failed to read blob: %s', ref)
            raise StorageBackendError('File content is unavailable') from exc

    def exists(self, ref: str) -> bool:
        """Check whether a blob exists.

        Args:
            ref: Blob reference.

        Returns:
            True if the blob exists.

        Raises:
            StorageBackendError: If the backend cannot be queried.
        """
        try:
            return self._storage.exists(ref)
        except Exception as exc:
            logger.exception('Failed to check blob: %s', ref)
            raise StorageBackendError('Storage is unavailable') from exc

    def delete(self, ref: str) -> bool:
        """Delete a blob; deleting an absent blob is a no-op.

        Args:
            ref: Blob reference.

        Returns:
            True if a blob was deleted, False if it was already absent.

        Raises:
            StorageBackendError: If the backend delete fails.
        """
        if not self.exists(ref):
            logger.warning(
                'Blob not found in storage (already deleted?): %s',
                ref,
            )
            return False
        try:
            self._storage.delete(ref)
        except Exception as exc:
            logger.exception('Failed to delete blob: %s', ref)
            raise StorageBackendError('Failed to delete file content') from exc
        logger.info('Deleted blob: %s', ref)
        return True

    def rename(self, ref: str, new_ref: str) -> None:
        """Move a blob to a new reference.

        Uses the backend's server-side ``move_object`` when available,
        otherwise copies through the storage API and deletes the source.

        Args:
            ref: Current blob reference.
            new_ref: Target blob reference (must be unused).

        Raises:
            StorageBackendError: If the source is missing, the target is
                taken, or the backend fails.
        """
        if not self.exists(ref):
            raise StorageBackendError('File content is unavailable')
        if self.exists(new_ref):
            raise StorageBackendError('Target location is already taken')

        try:
            move_object = getattr(self._storage, 'move_object', None)
            if move_object is not None:
                move_object(ref, new_ref)
            else:
                self._copy_through(ref, new_ref)
                self._storage.delete(ref)
        except StorageBackendError:
            raise
        except Exception as exc:
            logger.exception('Failed to rename blob: %s -> %s', ref, new_ref)
            raise StorageBackendError('Failed to rename file content') from exc
        logger.info('Renamed blob: %s -> %s', ref, new_ref)

    def copy(self, ref: str, owner_id: int, name: str) -> str:
        """Copy a blob to a new reference.

        Args:
            ref: Source blob reference.
            owner_id: ID of the owner of the copy.
            name: Display name of the copy.

        Returns:
            Reference of the new blob.

        Raises:
            StorageBackendError: If the source is missing or the backend
                fails.
        """
        if not self.exists(ref):
            raise StorageBackendError('File content is unavailable')

        new_ref = self.make_ref(owner_id, name)
        try:
            copy_object = getattr(self._storage, 'copy_object', None)
            if copy_object is not None:
                copy_object(ref, new_ref)
            else:
                self._copy_through(ref, new_ref)
        except StorageBackendError:
            raise
        except Exception as exc:
            logger.exception('Failed to copy blob: %s -> %s', ref, new_ref)
            raise StorageBackendError('Failed to copy file content') from exc
        logger.info('Copied blob: %s -> %s', ref, new_ref)
        return new_ref

    def _copy_through(self, ref: str, new_ref: str) -> None:
        with self._storage.open(ref, 'rb') as source:
            saved_ref = self._storage.save(new_ref, source)
        if saved_ref != new_ref:
            # Backend picked another name; undo to keep refs predictable
            self._storage.delete(saved_ref)
            raise StorageBackendError('Target location is already taken')


def get_default_blob_store() -> BlobStore:
    """Get a blob store over the configured default storage backend.

    Returns:
        BlobStore wrapping ``default_storage``.
    """
    return BlobStore(default_storage)


def _as_django_file(content: bytes | BinaryIO | DjangoFile) -> DjangoFile:
    if isinstance(content, bytes):
        return ContentFile(content)
    if isinstance(content, DjangoFile):
        return content
    return DjangoFile(content)


def _safe_filename(name: str) -> str:
    try:
        safe = get_valid_filename(name)
    except SuspiciousFileOperation:
        return _FALLBACK_STEM
    path = Path(safe)
    stem = path.stem[:_MAX_STEM_LENGTH] or _FALLBACK_STEM
    return f'{stem}{path.suffix[:_MAX_SUFFIX_LENGTH]}'
