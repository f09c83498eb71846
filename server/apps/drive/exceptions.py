"""Exceptions for drive app.

Every error carries a stable ``code`` and ``status_code`` so an outer
layer can translate it deterministically. Messages never contain blob
references or storage paths; those only go to logs.
"""

from typing import ClassVar


class DriveError(Exception):
    """Base class for all drive errors."""

    code: ClassVar[str] = 'drive_error'
    status_code: ClassVar[int] = 500


class NotFoundError(DriveError):
    """Raised when a node is absent or not owned by the caller."""

    code = 'not_found'
    status_code = 404


class ConflictError(DriveError):
    """Raised when a name collides with an existing sibling."""

    code = 'conflict'
    status_code = 409


class InvalidArgumentError(DriveError):
    """Raised for malformed names or queries."""

    code = 'invalid_argument'
    status_code = 400


class InvalidOperationError(DriveError):
    """Raised for operations that are not supported on a node."""

    code = 'invalid_operation'
    status_code = 422


class InvariantViolationError(DriveError):
    """Raised when stored state breaks a tree or accounting invariant.

    Signals a bug or data corruption, never a user error. It is never
    retried automatically.
    """

    code = 'invariant_violation'
    status_code = 500


class StorageBackendError(DriveError):
    """Raised when the blob store fails to read or write."""

    code = 'storage_backend_error'
    status_code = 502


class QuotaExceededError(DriveError):
    """Raised when an upload would exceed user's storage quota."""

    code = 'quota_exceeded'
    status_code = 413

    def __init__(
        self,
        quota_bytes: int,
        used_bytes: int,
        required_bytes: int,
    ) -> None:
        """Initialize QuotaExceededError.

        Args:
            quota_bytes: Total quota limit in bytes.
            used_bytes: Currently used bytes.
            required_bytes: Bytes needed for the operation.
        """
        self.quota_bytes = quota_bytes
        self.used_bytes = used_bytes
        self.required_bytes = required_bytes

        available = max(0, quota_bytes - used_bytes)
        super().__init__(
            f'Quota exceeded: need {required_bytes} bytes, '
            f'only {available} bytes available '
            f'(quota: {quota_bytes}, used: {used_bytes})',
        )
