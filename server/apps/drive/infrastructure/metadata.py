"""Name validation and metadata extraction for drive nodes."""

import mimetypes
from pathlib import Path
from typing import BinaryIO, Final

from django.core.files.base import File as DjangoFile

from server.apps.drive.exceptions import InvalidArgumentError
from server.apps.drive.models import NODE_NAME_MAX_LENGTH, NodeKind

_RESERVED_NAMES: Final = frozenset(('.', '..'))
_FORBIDDEN_CHARS: Final = frozenset('/\\\x00')

_DEFAULT_MIME_TYPE: Final = 'application/octet-stream'


def validate_node_name(name: str) -> str:
    """Validate and normalize a node name.

    Surrounding whitespace is stripped before validation.

    Args:
        name: Proposed file or folder name.

    Returns:
        Stripped name.

    Raises:
        InvalidArgumentError: If the name is empty, too long, reserved or
            contains path separators.
    """
    if not isinstance(name, str):
        raise InvalidArgumentError('Name must be a string')

    cleaned = name.strip()
    if not cleaned:
        raise InvalidArgumentError('Name is required')
    if len(cleaned) > NODE_NAME_MAX_LENGTH:
        raise InvalidArgumentError(
            f'Name must be at most {NODE_NAME_MAX_LENGTH} characters',
        )
    if cleaned in _RESERVED_NAMES:
        raise InvalidArgumentError(f'Name "{cleaned}" is reserved')
    if _FORBIDDEN_CHARS.intersection(cleaned):
        raise InvalidArgumentError('Name cannot contain path separators')
    return cleaned


def detect_mime_type(filename: str) -> str:
    """Detect MIME type from filename.

    Uses Python's built-in mimetypes module to guess MIME type
    from filename extension.

    Args:
        filename: Filename with extension.

    Returns:
        MIME type string (e.g., 'image/jpeg', 'application/pdf').
        Returns 'application/octet-stream' if type cannot be determined.
    """
    mime_type, _ = mimetypes.guess_type(filename)
    if mime_type is None:
        return _DEFAULT_MIME_TYPE
    return mime_type


def kind_for_mime_type(mime_type: str) -> NodeKind:
    """Map a MIME type to the node kind used in listings.

    Args:
        mime_type: MIME type string.

    Returns:
        IMAGE for ``image/*``, PDF for ``application/pdf``, NOTE otherwise.
    """
    if mime_type.startswith('image/'):
        return NodeKind.IMAGE
    if mime_type == 'application/pdf':
        return NodeKind.PDF
    return NodeKind.NOTE


def get_file_extension(filename: str) -> str:
    """Get file extension from filename.

    Args:
        filename: Filename (e.g., 'document.pdf').

    Returns:
        Extension without dot, lowercase (e.g., 'pdf').
        Returns empty string if no extension.
    """
    extension = Path(filename).suffix
    return extension.lstrip('.').lower()


def get_content_size(content: bytes | BinaryIO | DjangoFile) -> int:
    """Get size of upload content.

    Args:
        content: Raw bytes or a file-like object.

    Returns:
        Size in bytes.
    """
    if isinstance(content, bytes):
        return len(content)
    if hasattr(content, 'size'):
        return content.size
    file_size = len(content.read())
    content.seek(0)  # Reset after reading for size
    return file_size
