"""Business logic for the drive tree: folders, files and their blobs.

Transaction safety follows one rule: blob I/O never runs inside a
database transaction. Uploads write the blob first and commit metadata
plus quota afterwards; deletes commit metadata plus quota first and
remove blobs afterwards. A crash between the two steps leaves at worst
an orphaned blob, which is logged for cleanup.
"""

import logging
from itertools import batched
from pathlib import Path
from typing import Any, BinaryIO, Final

from django.conf import settings
from django.core.files.base import File as DjangoFile
from django.db import IntegrityError, transaction

from server.apps.drive.exceptions import (
    ConflictError,
    InvalidArgumentError,
    InvalidOperationError,
    InvariantViolationError,
    NotFoundError,
    StorageBackendError,
)
from server.apps.drive.infrastructure.blob_store import (
    BlobStore,
    get_default_blob_store,
)
from server.apps.drive.infrastructure.metadata import (
    detect_mime_type,
    get_content_size,
    get_file_extension,
    kind_for_mime_type,
    validate_node_name,
)
from server.apps.drive.logic.quota_operations import apply_delta, check_quota
from server.apps.drive.models import NODE_NAME_MAX_LENGTH, Node, NodeKind

# User type for Django's dynamic user model
_User = Any

_COPY_PREFIX: Final = 'Copy of '
_MAX_COPY_ATTEMPTS: Final = 1000
_DELETE_BATCH_SIZE: Final = 500
_UPDATED_AT_FIELD: Final = 'updated_at'

logger = logging.getLogger(__name__)


def get_node(owner: _User, node_id: int) -> Node:
    """Get a node owned by the user.

    Args:
        owner: Node owner.
        node_id: ID of the node.

    Returns:
        Node instance.

    Raises:
        NotFoundError: If the node doesn't exist or belongs to someone else.
    """
    try:
        return Node.objects.get(owner=owner, pk=node_id)
    except Node.DoesNotExist as error:
        raise NotFoundError('Node not found') from error


def get_folder(owner: _User, folder_id: int, *, lock: bool = False) -> Node:
    """Get a folder owned by the user.

    Args:
        owner: Folder owner.
        folder_id: ID of the folder.
        lock: Lock the row until the current transaction ends.

    Returns:
        Folder node.

    Raises:
        NotFoundError: If no such folder is owned by the user.
    """
    folders = Node.objects.filter(owner=owner, kind=NodeKind.FOLDER)
    if lock:
        folders = folders.select_for_update()
    try:
        return folders.get(pk=folder_id)
    except Node.DoesNotExist as error:
        raise NotFoundError('Folder not found') from error


def create_folder(
    owner: _User,
    name: str,
    parent_id: int | None = None,
) -> Node:
    """Create an empty folder.

    Args:
        owner: Folder owner.
        name: Folder name.
        parent_id: Parent folder ID, or None for the root level.

    Returns:
        Created folder node.

    Raises:
        InvalidArgumentError: If the name is invalid.
        NotFoundError: If the parent folder doesn't exist.
        ConflictError: If a sibling folder has the same name.
    """
    name = validate_node_name(name)

    try:
        with transaction.atomic():
            parent = _resolve_parent(owner, parent_id)
            _ensure_name_available(owner, parent_id, name, is_folder=True)
            folder = Node.objects.create(
                owner=owner,
                name=name,
                kind=NodeKind.FOLDER,
                parent=parent,
            )
    except IntegrityError as error:
        logger.warning('Folder name collision on insert: %s', name)
        raise ConflictError(
            f'A folder named "{name}" already exists here',
        ) from error

    logger.info(
        'Folder created: %s (ID: %d, owner: %s)',
        name,
        folder.id,
        owner.username,
    )
    return folder


def upload_file(  # noqa: WPS211
    owner: _User,
    name: str,
    content: bytes | BinaryIO | DjangoFile,
    parent_id: int | None = None,
    *,
    kind: str | None = None,
    is_private: bool = False,
    blob_store: BlobStore | None = None,
) -> Node:
    """Store file content and create its node.

    Transaction safety: Write the blob first, then commit node and quota
    in one transaction (``ingest_file``). Nothing is reserved before the
    blob write, so an upload that fails or is cancelled at that point
    leaves no trace.

    Args:
        owner: File owner.
        name: File name.
        content: Raw bytes or a file-like object.
        parent_id: Parent folder ID, or None for the root level.
        kind: Node kind; detected from the file name when omitted.
        is_private: Initial privacy flag.
        blob_store: Blob store to write to.

    Returns:
        Created file node.

    Raises:
        InvalidArgumentError: If the name or kind is invalid.
        NotFoundError: If the parent folder doesn't exist.
        QuotaExceededError: If the file doesn't fit into the quota.
        StorageBackendError: If the blob write fails.
    """
    blob_store = blob_store or get_default_blob_store()
    name = validate_node_name(name)
    size_bytes = get_content_size(content)
    mime_type = detect_mime_type(name)
    kind = kind or kind_for_mime_type(mime_type)

    # Fail fast before writing bytes that cannot be committed
    check_quota(owner, size_bytes)
    _resolve_parent(owner, parent_id, lock=False)

    logger.info(
        'Uploading file: %s (%d bytes, owner: %s)',
        name,
        size_bytes,
        owner.username,
    )
    blob_ref = blob_store.put(content, owner.id, name)

    return ingest_file(
        owner,
        name,
        kind,
        size_bytes,
        blob_ref,
        parent_id,
        mime_type=mime_type,
        is_private=is_private,
        blob_store=blob_store,
    )


def ingest_file(  # noqa: WPS211
    owner: _User,
    name: str,
    kind: str,
    size_bytes: int,
    blob_ref: str,
    parent_id: int | None = None,
    *,
    mime_type: str = '',
    is_private: bool = False,
    blob_store: BlobStore | None = None,
) -> Node:
    """Create a file node for an already stored blob.

    The quota increment and the node insert are one transaction. On any
    failure the blob is deleted, because no committed node refers to it.

    Args:
        owner: File owner.
        name: File name.
        kind: Non-folder node kind.
        size_bytes: Blob length in bytes.
        blob_ref: Reference of the stored blob.
        parent_id: Parent folder ID, or None for the root level.
        mime_type: MIME type of the content.
        is_private: Initial privacy flag.
        blob_store: Blob store holding ``blob_ref``.

    Returns:
        Created file node.

    Raises:
        InvalidArgumentError: If the name, kind or size is invalid.
        NotFoundError: If the parent folder doesn't exist.
        ConflictError: If a sibling file has the same name.
        QuotaExceededError: If the file doesn't fit into the quota.
        InvariantViolationError: If the blob cannot be cleaned up after
            a failure.
    """
    blob_store = blob_store or get_default_blob_store()

    try:
        file_node = _commit_file(
            owner,
            name,
            kind,
            size_bytes,
            blob_ref,
            parent_id,
            mime_type=mime_type,
            is_private=is_private,
        )
    except Exception:
        logger.exception(
            'File commit failed, rolling back blob upload: %s',
            blob_ref,
        )
        _discard_blob(blob_store, blob_ref)
        raise

    logger.info(
        'File record created: %s (ID: %d, %d bytes)',
        file_node.name,
        file_node.id,
        file_node.size_bytes,
    )
    return file_node


def read_file(
    owner: _User,
    node_id: int,
    *,
    blob_store: BlobStore | None = None,
) -> bytes:
    """Read the content of a file node.

    Args:
        owner: File owner.
        node_id: ID of the file.
        blob_store: Blob store holding the content.

    Returns:
        File content.

    Raises:
        NotFoundError: If no such file is owned by the user.
        StorageBackendError: If the blob is missing or unreadable.
    """
    blob_store = blob_store or get_default_blob_store()
    file_node = get_node(owner, node_id)
    if file_node.is_folder:
        raise NotFoundError('File not found')
    return blob_store.get(file_node.blob_ref)


def delete_node(
    owner: _User,
    node_id: int,
    *,
    blob_store: BlobStore | None = None,
) -> None:
    """Delete a file, or a folder together with everything below it.

    Transaction safety: Node rows and the quota release are committed as
    one unit; blobs are removed afterwards on a best-effort basis.
    Descendant folders are locked while collected, so a concurrent
    upload into the subtree either lands before the collection (and is
    deleted and released with it) or finds its folder gone.

    Args:
        owner: Node owner.
        node_id: ID of the file or folder.
        blob_store: Blob store holding the content.

    Raises:
        NotFoundError: If the node doesn't exist or belongs to someone else.
        InvariantViolationError: If the folder tree is corrupted (cycle or
            excessive depth); nothing is deleted then.
    """
    blob_store = blob_store or get_default_blob_store()

    with transaction.atomic():
        node = _get_locked_node(owner, node_id)

        doomed = [node]
        if node.is_folder:
            doomed.extend(collect_descendants(owner, node, lock=True))

        file_nodes = [
            doomed_node for doomed_node in doomed if not doomed_node.is_folder
        ]
        released_bytes = sum(file_node.size_bytes for file_node in file_nodes)

        doomed_ids = [doomed_node.pk for doomed_node in doomed]
        for batch in batched(doomed_ids, _DELETE_BATCH_SIZE):
            Node.objects.filter(pk__in=batch).delete()

        if released_bytes:
            apply_delta(owner, -released_bytes)

    logger.info(
        'Deleted %s %s (ID: %d) with %d nodes, released %d bytes',
        node.kind,
        node.name,
        node_id,
        len(doomed),
        released_bytes,
    )

    _delete_blobs(blob_store, [file_node.blob_ref for file_node in file_nodes])


def collect_descendants(
    owner: _User,
    folder: Node,
    *,
    lock: bool = False,
) -> list[Node]:
    """Collect every node below a folder, level by level.

    The walk is iterative and bounded by ``DRIVE_MAX_FOLDER_DEPTH``; a
    node reached twice means the tree has a cycle.

    Args:
        owner: Folder owner.
        folder: Root of the subtree (not included in the result).
        lock: Lock collected rows until the current transaction ends.

    Returns:
        All descendant nodes, parents before their children.

    Raises:
        InvariantViolationError: On a cycle or a tree deeper than allowed.
    """
    max_depth = settings.DRIVE_MAX_FOLDER_DEPTH
    visited = {folder.pk}
    descendants: list[Node] = []
    frontier = [folder.pk]
    depth = 0

    while frontier:
        depth += 1
        if depth > max_depth:
            logger.error(
                'Folder %d is nested deeper than %d levels',
                folder.pk,
                max_depth,
            )
            raise InvariantViolationError(
                'Folder tree is deeper than supported',
            )

        children = Node.objects.filter(
            owner=owner,
            parent_id__in=frontier,
        ).order_by('pk')
        if lock:
            children = children.select_for_update()

        next_frontier = []
        for child in children:
            if child.pk in visited:
                logger.error(
                    'Cycle detected below folder %d at node %d',
                    folder.pk,
                    child.pk,
                )
                raise InvariantViolationError('Folder tree contains a cycle')
            visited.add(child.pk)
            descendants.append(child)
            if child.is_folder:
                next_frontier.append(child.pk)
        frontier = next_frontier

    return descendants


def compute_folder_size(owner: _User, folder_id: int) -> int:
    """Sum the sizes of all files below a folder.

    Folder sizes are never stored; this walks the subtree every time.

    Args:
        owner: Folder owner.
        folder_id: ID of the folder.

    Returns:
        Total size in bytes.

    Raises:
        NotFoundError: If no such folder is owned by the user.
    """
    folder = get_folder(owner, folder_id)
    return sum(
        descendant.size_bytes
        for descendant in collect_descendants(owner, folder)
        if not descendant.is_folder
    )


def rename_node(
    owner: _User,
    node_id: int,
    new_name: str,
    *,
    blob_store: BlobStore | None = None,
) -> Node:
    """Rename a file or folder.

    Blob references embed the file name, so renaming a file also moves
    its blob. The blob is moved first; if the metadata update fails the
    blob is moved back.

    Args:
        owner: Node owner.
        node_id: ID of the node.
        new_name: New name.
        blob_store: Blob store holding the content.

    Returns:
        Renamed node.

    Raises:
        InvalidArgumentError: If the name is invalid.
        NotFoundError: If the node doesn't exist or belongs to someone else.
        ConflictError: If a sibling has the name or the blob can't be moved.
        InvariantViolationError: If a failed rename can't be undone.
    """
    blob_store = blob_store or get_default_blob_store()
    new_name = validate_node_name(new_name)
    node = get_node(owner, node_id)

    if node.name == new_name:
        return node

    _ensure_name_available(
        owner,
        node.parent_id,
        new_name,
        is_folder=node.is_folder,
        exclude_id=node.pk,
    )

    if node.is_folder:
        return _commit_rename(owner, node_id, new_name)

    old_ref = node.blob_ref
    new_ref = blob_store.make_ref(owner.id, new_name)
    try:
        blob_store.rename(old_ref, new_ref)
    except StorageBackendError as error:
        raise ConflictError('File content could not be renamed') from error

    try:
        renamed = _commit_rename(
            owner,
            node_id,
            new_name,
            old_ref=old_ref,
            new_ref=new_ref,
        )
    except Exception:
        logger.exception('Rename commit failed, moving blob back: %s', new_ref)
        _undo_blob_rename(blob_store, new_ref, old_ref)
        raise

    logger.info('Renamed file (ID: %d) to %s', node_id, new_name)
    return renamed


def move_node(
    owner: _User,
    node_id: int,
    new_parent_id: int | None = None,
) -> Node:
    """Move a node under another folder (or to the root level).

    Metadata only: no quota or blob effect.

    Args:
        owner: Node owner.
        node_id: ID of the node to move.
        new_parent_id: Target folder ID, or None for the root level.

    Returns:
        Moved node.

    Raises:
        NotFoundError: If the node or target folder doesn't exist.
        InvalidOperationError: If a folder would move into its own subtree.
        ConflictError: If the target already holds a sibling with the name.
        InvariantViolationError: If a cycle is found above the target.
    """
    try:
        with transaction.atomic():
            node = _get_locked_node(owner, node_id)
            parent = _resolve_parent(owner, new_parent_id)

            if node.parent_id == new_parent_id:
                return node

            if parent is not None and node.is_folder:
                _ensure_not_own_ancestor(owner, node, parent)

            _ensure_name_available(
                owner,
                new_parent_id,
                node.name,
                is_folder=node.is_folder,
                exclude_id=node.pk,
            )
            node.parent = parent
            node.save(update_fields=['parent', _UPDATED_AT_FIELD])
    except IntegrityError as error:
        raise ConflictError(
            f'"{node.name}" already exists in the target folder',
        ) from error

    logger.info(
        'Moved node %d to folder %s',
        node_id,
        new_parent_id if new_parent_id is not None else 'root',
    )
    return node


def duplicate_node(
    owner: _User,
    node_id: int,
    *,
    blob_store: BlobStore | None = None,
) -> Node:
    """Duplicate a file next to the original.

    The copy is named ``Copy of <name>`` (numbered when taken), keeps
    kind, size, parent and privacy, and is never a favorite. It consumes
    quota like a new upload.

    Args:
        owner: File owner.
        node_id: ID of the file.
        blob_store: Blob store holding the content.

    Returns:
        The new file node.

    Raises:
        NotFoundError: If the node doesn't exist or belongs to someone else.
        InvalidOperationError: If the node is a folder.
        QuotaExceededError: If the copy doesn't fit into the quota.
        StorageBackendError: If the blob copy fails.
    """
    blob_store = blob_store or get_default_blob_store()
    original = get_node(owner, node_id)
    if original.is_folder:
        raise InvalidOperationError('Folders cannot be duplicated')

    check_quota(owner, original.size_bytes)
    copy_name = _copy_name(owner, original)
    copy_ref = blob_store.copy(original.blob_ref, owner.id, copy_name)

    duplicate = ingest_file(
        owner,
        copy_name,
        original.kind,
        original.size_bytes,
        copy_ref,
        original.parent_id,
        mime_type=original.mime_type,
        is_private=original.is_private,
        blob_store=blob_store,
    )
    logger.info('Duplicated file %d as %d', original.pk, duplicate.pk)
    return duplicate


def toggle_favorite(owner: _User, node_id: int) -> Node:
    """Flip the favorite flag of a node.

    Args:
        owner: Node owner.
        node_id: ID of the node.

    Returns:
        Updated node.
    """
    return _toggle_flag(owner, node_id, 'is_favorite')


def toggle_private(owner: _User, node_id: int) -> Node:
    """Flip the privacy flag of a node.

    Args:
        owner: Node owner.
        node_id: ID of the node.

    Returns:
        Updated node.
    """
    return _toggle_flag(owner, node_id, 'is_private')


def _toggle_flag(owner: _User, node_id: int, field_name: str) -> Node:
    with transaction.atomic():
        node = _get_locked_node(owner, node_id)
        setattr(node, field_name, not getattr(node, field_name))
        node.save(update_fields=[field_name, _UPDATED_AT_FIELD])
    return node


def _get_locked_node(owner: _User, node_id: int) -> Node:
    try:
        return Node.objects.select_for_update().get(owner=owner, pk=node_id)
    except Node.DoesNotExist as error:
        raise NotFoundError('Node not found') from error


def _resolve_parent(
    owner: _User,
    parent_id: int | None,
    *,
    lock: bool = True,
) -> Node | None:
    """Resolve and lock the parent folder, if any.

    Locking the parent makes inserts under it wait for a cascading
    delete of that folder, and fail once it is gone.
    """
    if parent_id is None:
        return None
    return get_folder(owner, parent_id, lock=lock)


def _ensure_name_available(
    owner: _User,
    parent_id: int | None,
    name: str,
    *,
    is_folder: bool,
    exclude_id: int | None = None,
) -> None:
    """Raise ConflictError if a sibling in the same slot has the name.

    Folders compete with folders, files with files.
    """
    siblings = Node.objects.filter(owner=owner, parent_id=parent_id, name=name)
    if is_folder:
        siblings = siblings.filter(kind=NodeKind.FOLDER)
    else:
        siblings = siblings.exclude(kind=NodeKind.FOLDER)
    if exclude_id is not None:
        siblings = siblings.exclude(pk=exclude_id)

    if siblings.exists():
        noun = 'folder' if is_folder else 'file'
        raise ConflictError(f'A {noun} named "{name}" already exists here')


def _ensure_not_own_ancestor(owner: _User, folder: Node, target: Node) -> None:
    """Walk up from ``target`` and refuse if ``folder`` is on the way."""
    max_depth = settings.DRIVE_MAX_FOLDER_DEPTH
    seen: set[int] = set()
    ancestor_id: int | None = target.pk

    while ancestor_id is not None:
        if ancestor_id == folder.pk:
            raise InvalidOperationError(
                'A folder cannot be moved into itself or its subfolders',
            )
        if ancestor_id in seen or len(seen) >= max_depth:
            logger.error(
                'Cycle or excessive depth above folder %d (at %d)',
                target.pk,
                ancestor_id,
            )
            raise InvariantViolationError('Folder tree contains a cycle')
        seen.add(ancestor_id)
        ancestor_id = Node.objects.filter(
            owner=owner,
            pk=ancestor_id,
        ).values_list('parent_id', flat=True).first()


def _commit_file(  # noqa: WPS211
    owner: _User,
    name: str,
    kind: str,
    size_bytes: int,
    blob_ref: str,
    parent_id: int | None,
    *,
    mime_type: str,
    is_private: bool,
) -> Node:
    name = validate_node_name(name)
    if kind not in NodeKind.values or kind == NodeKind.FOLDER:
        raise InvalidArgumentError(f'Invalid file kind: {kind}')
    if size_bytes < 0:
        raise InvalidArgumentError('File size cannot be negative')
    if not blob_ref:
        raise InvalidArgumentError('File content reference is required')

    try:
        with transaction.atomic():
            parent = _resolve_parent(owner, parent_id)
            _ensure_name_available(owner, parent_id, name, is_folder=False)
            apply_delta(owner, size_bytes)
            return Node.objects.create(
                owner=owner,
                name=name,
                kind=kind,
                parent=parent,
                size_bytes=size_bytes,
                blob_ref=blob_ref,
                mime_type=mime_type,
                extension=get_file_extension(name),
                is_private=is_private,
                is_favorite=False,
            )
    except IntegrityError as error:
        raise ConflictError(
            f'A file named "{name}" already exists here',
        ) from error


def _commit_rename(
    owner: _User,
    node_id: int,
    new_name: str,
    *,
    old_ref: str = '',
    new_ref: str = '',
) -> Node:
    try:
        with transaction.atomic():
            node = _get_locked_node(owner, node_id)
            if node.blob_ref != old_ref:
                raise ConflictError('Node was changed concurrently')
            _ensure_name_available(
                owner,
                node.parent_id,
                new_name,
                is_folder=node.is_folder,
                exclude_id=node.pk,
            )
            node.name = new_name
            node.blob_ref = new_ref
            node.save(update_fields=['name', 'blob_ref', _UPDATED_AT_FIELD])
    except IntegrityError as error:
        raise ConflictError(
            f'"{new_name}" already exists here',
        ) from error
    return node


def _copy_name(owner: _User, original: Node) -> str:
    path = Path(original.name)
    stem, suffix = path.stem, path.suffix
    taken = set(
        Node.objects.filter(
            owner=owner,
            parent_id=original.parent_id,
            name__startswith=_COPY_PREFIX,
        ).exclude(
            kind=NodeKind.FOLDER,
        ).values_list('name', flat=True),
    )

    for attempt in range(1, _MAX_COPY_ATTEMPTS + 1):
        marker = '' if attempt == 1 else f' ({attempt})'
        budget = (
            NODE_NAME_MAX_LENGTH - len(_COPY_PREFIX) - len(marker) - len(suffix)
        )
        candidate = f'{_COPY_PREFIX}{stem[:max(budget, 1)]}{marker}{suffix}'
        candidate = candidate[:NODE_NAME_MAX_LENGTH]
        if candidate not in taken:
            return candidate

    raise ConflictError('Too many copies of this file')


def _discard_blob(blob_store: BlobStore, blob_ref: str) -> None:
    """Delete a blob no committed node refers to.

    Raises:
        InvariantViolationError: If the blob can't be deleted; the
            reference is logged for manual cleanup.
    """
    try:
        blob_store.delete(blob_ref)
    except StorageBackendError as error:
        logger.critical(
            'Failed to roll back upload, orphaned blob: %s',
            blob_ref,
        )
        raise InvariantViolationError(
            'Failed to clean up after an unsuccessful upload',
        ) from error


def _undo_blob_rename(
    blob_store: BlobStore,
    new_ref: str,
    old_ref: str,
) -> None:
    try:
        blob_store.rename(new_ref, old_ref)
    except StorageBackendError as error:
        logger.critical(
            'Failed to undo blob rename, node points at %s but blob is at %s',
            old_ref,
            new_ref,
        )
        raise InvariantViolationError(
            'Failed to undo an unsuccessful rename',
        ) from error


def _delete_blobs(blob_store: BlobStore, blob_refs: list[str]) -> None:
    orphaned = []
    for blob_ref in blob_refs:
        try:
            blob_store.delete(blob_ref)
        except StorageBackendError:
            orphaned.append(blob_ref)

    if orphaned:
        # Metadata is already gone, these need manual cleanup
        logger.error(
            'Failed to delete %d blobs (orphaned): %s',
            len(orphaned),
            ', '.join(orphaned),
        )
