"""Shared fixtures for drive app tests."""

import boto3
import pytest
from django.contrib.auth import get_user_model
from django.core.files.storage import FileSystemStorage
from moto import mock_aws

from server.apps.drive.exceptions import StorageBackendError
from server.apps.drive.infrastructure.blob_store import BlobStore
from server.apps.drive.infrastructure.storage import FileStorage
from server.apps.drive.models import UserQuota

User = get_user_model()

TEST_BUCKET = 'drive-test'


class FlakyBlobStore(BlobStore):
    """Blob store whose selected operations fail with a backend error."""

    def __init__(self, storage, failing=()):
        """Initialize with the names of operations that should fail."""
        super().__init__(storage)
        self.failing = set(failing)

    def delete(self, ref):
        """Delete, or fail if configured to."""
        self._maybe_fail('delete')
        return super().delete(ref)

    def rename(self, ref, new_ref):
        """Rename, or fail if configured to."""
        self._maybe_fail('rename')
        super().rename(ref, new_ref)

    def copy(self, ref, owner_id, name):
        """Copy, or fail if configured to."""
        self._maybe_fail('copy')
        return super().copy(ref, owner_id, name)

    def _maybe_fail(self, operation):
        if operation in self.failing:
            raise StorageBackendError(f'{operation} failed')


@pytest.fixture
def user(db):
    """Create test user.

    Returns:
        User instance for testing.
    """
    return User.objects.create_user(
        username='testuser',
        password='testpass123',
        email='test@example.com',
    )


@pytest.fixture
def other_user(db):
    """Create second test user for isolation tests.

    Returns:
        Second user instance.
    """
    return User.objects.create_user(
        username='otheruser',
        password='testpass123',
        email='other@example.com',
    )


@pytest.fixture
def quota(user):
    """Give the test user a small quota.

    Returns:
        UserQuota with 1000 bytes and nothing used.
    """
    return UserQuota.objects.create(
        user=user,
        quota_bytes=1000,
        used_bytes=0,
    )


@pytest.fixture
def blob_storage(tmp_path):
    """Local filesystem storage in a temporary directory.

    Returns:
        FileSystemStorage rooted at tmp_path.
    """
    return FileSystemStorage(location=tmp_path)


@pytest.fixture
def blob_store(blob_storage):
    """Blob store over the temporary filesystem storage.

    Returns:
        BlobStore instance.
    """
    return BlobStore(blob_storage)


@pytest.fixture
def default_blob_storage(settings, tmp_path):
    """Point the default storage backend at a temporary directory.

    Used where code falls back to the default blob store (admin, etc.).

    Returns:
        Path of the storage root.
    """
    location = tmp_path / 'default-storage'
    settings.STORAGES = {
        'default': {
            'BACKEND': 'django.core.files.storage.FileSystemStorage',
            'OPTIONS': {'location': str(location)},
        },
        'staticfiles': {
            'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage',
        },
    }
    return location


@pytest.fixture
def mock_s3():
    """Mock S3 service with the test bucket.

    Yields:
        boto3 S3 resource with the test bucket created.
    """
    with mock_aws():
        conn = boto3.resource('s3', region_name='us-east-1')
        conn.create_bucket(Bucket=TEST_BUCKET)
        yield conn


@pytest.fixture
def flaky_blob_store(blob_storage):
    """Factory for blob stores whose named operations fail.

    Returns:
        Callable taking operation names ('delete', 'rename', 'copy').
    """
    def factory(*failing):
        return FlakyBlobStore(blob_storage, failing)
    return factory


@pytest.fixture
def s3_storage(mock_s3):
    """S3 storage backend pointed at the mocked bucket.

    Returns:
        FileStorage instance.
    """
    return FileStorage(
        bucket_name=TEST_BUCKET,
        access_key='testing',
        secret_key='testing',
        region_name='us-east-1',
        endpoint_url=None,
        file_overwrite=False,
        default_acl=None,
    )
