"""Custom storage backend for S3-compatible storage."""

import logging
from typing import Any, final, override

from storages.backends.s3 import S3Storage
from storages.utils import clean_name

logger = logging.getLogger(__name__)


@final
class FileStorage(S3Storage):
    """Custom S3 storage backend for drive blobs.

    Extends django-storages S3Storage with:
    - Server-side move and copy used by the blob store
    - Enhanced error logging
    """

    @override
    def save(  # noqa: WPS211
        self,
        name: str,
        content: Any,
        max_length: int | None = None,
    ) -> str:
        """Save blob to S3 with error handling and logging.

        Args:
            name: Storage key for the blob.
            content: File content (file-like object).
            max_length: Optional maximum length for the key.

        Returns:
            Actual storage key used (may differ from name if conflicts).

        Raises:
            Exception: If S3 upload fails.
        """
        try:
            logger.info('Uploading blob to storage: %s', name)
            saved_name = super().save(name, content, max_length)
            logger.info('Successfully uploaded blob: %s', saved_name)
        except Exception:
            logger.exception('Failed to upload blob to storage: %s', name)
            raise
        else:
            return saved_name

    @override
    def delete(self, name: str) -> None:
        """Delete blob from S3 with error handling and logging.

        Args:
            name: Storage key of blob to delete.

        Raises:
            Exception: If S3 delete fails.
        """
        try:
            logger.info('Deleting blob from storage: %s', name)
            super().delete(name)
            logger.info('Successfully deleted blob: %s', name)
        except Exception:
            logger.exception('Failed to delete blob from storage: %s', name)
            raise

    def copy_object(self, source: str, destination: str) -> None:
        """Copy an object inside the bucket without downloading it.

        Args:
            source: Source storage key.
            destination: Destination storage key.

        Raises:
            Exception: If the copy fails.
        """
        try:
            logger.info('Copying blob: %s -> %s', source, destination)
            copy_source = {
                'Bucket': self.bucket_name,
                'Key': self._normalize_name(clean_name(source)),
            }
            self.bucket.copy(
                copy_source,
                self._normalize_name(clean_name(destination)),
            )
        except Exception:
            logger.exception('Copy failed: %s -> %s', source, destination)
            raise

    def move_object(self, source: str, destination: str) -> None:
        """Move/rename an object in S3 storage.

        S3 doesn't support native rename, so this performs a server-side
        copy followed by deletion of the source.

        Note: This operation is not atomic. If copy succeeds but delete
        fails, both objects will exist (source becomes orphaned). The
        error is logged and raised so the caller can compensate.

        Args:
            source: Source storage key.
            destination: Destination storage key.

        Raises:
            Exception: If copy or delete fails.
        """
        self.copy_object(source, destination)
        try:
            self.delete(source)
        except Exception:
            logger.exception(
                'Move left source behind (orphaned): %s -> %s',
                source,
                destination,
            )
            raise
        logger.info('Moved blob: %s -> %s', source, destination)
