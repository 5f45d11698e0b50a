"""
Tests for orphan blob detection and deletion.
"""

import io
import os
import time
from datetime import timedelta
from unittest.mock import patch

from walkie.services.exceptions import StorageFault
from walkie.services.orphans import find_orphan_blobs, sweep_orphan_blobs

HOUR = timedelta(hours=1)


def _age(path, seconds):
    past = time.time() - seconds
    os.utime(path, (past, past))


def _setup(services):
    """One referenced blob, one orphan and one abandoned temp file, all two hours old."""
    message_id = services.delivery.upload('alice', io.BytesIO(b'kept'), 3, original_filename='k.m4a')
    kept = services.messages.get(message_id).blob_locator

    orphan = services.blob_store.put(io.BytesIO(b'orphaned'), original_filename='o.m4a')

    partial = os.path.join(services.blob_store.local.root, 'messages', '.upload-crashed.part')
    with open(partial, 'wb') as f:
        f.write(b'half')

    for _, path in services.blob_store.iter_stored(include_partial=True):
        _age(path, 2 * 3600)
    return kept, orphan.locator, partial


def test_find_orphans(services):
    kept, orphan, partial = _setup(services)

    found = find_orphan_blobs(services.blob_store, services.messages.referenced_locators(), HOUR)

    locators = {o.locator for o in found}
    assert orphan in locators
    assert 'local://messages/.upload-crashed.part' in locators
    assert kept not in locators


def test_recent_files_are_left_alone(services):
    _, orphan, _ = _setup(services)
    path = dict(services.blob_store.iter_stored())[orphan]
    _age(path, 60)

    found = find_orphan_blobs(services.blob_store, services.messages.referenced_locators(), HOUR)
    assert orphan not in {o.locator for o in found}


def test_soft_deleted_messages_keep_their_blob(services):
    message_id = services.delivery.upload('alice', io.BytesIO(b'x'), 1)
    locator = services.messages.get(message_id).blob_locator
    services.messages.soft_delete(message_id)
    for _, path in services.blob_store.iter_stored():
        _age(path, 2 * 3600)

    found = find_orphan_blobs(services.blob_store, services.messages.referenced_locators(), HOUR)
    assert found == []
    assert services.blob_store.exists(locator)


def test_dry_run_deletes_nothing(services):
    kept, orphan, partial = _setup(services)
    reported = []

    stats = sweep_orphan_blobs(services.blob_store, services.messages, HOUR, dry_run=True,
                               on_blob=lambda o, action, error: reported.append((o.locator, action)))

    assert stats['orphans'] == 2
    assert stats['deleted'] == 0
    assert services.blob_store.exists(orphan)
    assert os.path.exists(partial)
    assert {action for _, action in reported} == {'would_delete'}


def test_sweep_deletes_orphans_only(services):
    kept, orphan, partial = _setup(services)

    stats = sweep_orphan_blobs(services.blob_store, services.messages, HOUR)

    assert stats['orphans'] == 2
    assert stats['deleted'] == 2
    assert stats['bytes_reclaimed'] == len(b'orphaned') + len(b'half')
    assert stats['scanned_referenced'] == 1
    assert not services.blob_store.exists(orphan)
    assert not os.path.exists(partial)
    assert services.blob_store.exists(kept)


def test_sweep_counts_delete_errors(services):
    _setup(services)
    with patch.object(services.blob_store, 'delete', side_effect=StorageFault('read-only')):
        stats = sweep_orphan_blobs(services.blob_store, services.messages, HOUR)
    assert stats['errors'] == 2
    assert stats['deleted'] == 0
