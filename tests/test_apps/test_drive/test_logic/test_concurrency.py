"""Tests for drive operations racing each other in separate threads."""

import threading
from functools import partial

import pytest
from django.db import connection

from server.apps.drive.logic.node_operations import (
    create_folder,
    delete_node,
    ingest_file,
    upload_file,
)
from server.apps.drive.logic.quota_operations import get_quota_state
from server.apps.drive.models import Node, NodeKind, UserQuota


def _run_concurrently(*operations):
    """Start all operations at once and collect their outcomes.

    Returns:
        'ok' or the exception class name, one per operation.
    """
    barrier = threading.Barrier(len(operations))
    outcomes = [''] * len(operations)

    def runner(index, operation):
        try:
            barrier.wait()
            operation()
        except Exception as error:  # noqa: BLE001
            outcomes[index] = type(error).__name__
        else:
            outcomes[index] = 'ok'
        finally:
            connection.close()

    threads = [
        threading.Thread(target=runner, args=(index, operation))
        for index, operation in enumerate(operations)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return outcomes


@pytest.mark.django_db(transaction=True)
def test_concurrent_ingests_never_overcommit(user, blob_store):
    """Test one of two uploads that only fit alone fails on quota."""
    UserQuota.objects.create(user=user, quota_bytes=100)
    refs = [
        blob_store.put(b'x' * 60, user.id, f'{index}.bin')
        for index in range(2)
    ]

    outcomes = _run_concurrently(*(
        partial(
            ingest_file,
            user,
            f'{index}.bin',
            NodeKind.NOTE,
            60,
            ref,
            blob_store=blob_store,
        )
        for index, ref in enumerate(refs)
    ))

    assert sorted(outcomes) == ['QuotaExceededError', 'ok']
    assert get_quota_state(user).used_bytes == 60
    assert Node.objects.filter(owner=user).count() == 1
    assert [blob_store.exists(ref) for ref in refs].count(True) == 1


@pytest.mark.django_db(transaction=True)
def test_upload_racing_folder_delete(user, quota, blob_store, tmp_path):
    """Test an upload into a folder being deleted leaves nothing behind.

    The upload either lands first and is removed with the folder, or
    finds the folder gone.
    """
    folder = create_folder(user, 'F')
    upload_file(user, 'old.txt', b'o' * 100, folder.pk, blob_store=blob_store)

    delete_outcome, upload_outcome = _run_concurrently(
        partial(delete_node, user, folder.pk, blob_store=blob_store),
        partial(
            upload_file,
            user,
            'new.txt',
            b'n' * 50,
            folder.pk,
            blob_store=blob_store,
        ),
    )

    assert delete_outcome == 'ok'
    assert upload_outcome in {'ok', 'NotFoundError'}
    assert Node.objects.filter(owner=user).count() == 0
    assert get_quota_state(user).used_bytes == 0
    assert [path for path in tmp_path.rglob('*') if path.is_file()] == []
