"""
Orphan blob detection.

An orphan is a blob on disk that no ledger row references. The upload
path removes its blob when the ledger insert fails, so orphans only
appear after a crash between the two writes (or as abandoned temp files
from an interrupted upload). Recently written files are left alone since
their ledger row may still be on its way.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional

from walkie.services.exceptions import StorageFault
from walkie.utils.datetime import utcnow

logger = logging.getLogger(__name__)


@dataclass
class OrphanBlob:
    locator: str
    path: str
    size: int
    modified_at: datetime


def _modified_at(path: str) -> datetime:
    return datetime.fromtimestamp(os.path.getmtime(path), tz=timezone.utc).replace(tzinfo=None)


def find_orphan_blobs(blob_store, referenced: Iterable[str], min_age: timedelta,
                      now: Optional[datetime] = None) -> List[OrphanBlob]:
    """
    List unreferenced blobs (including abandoned upload temp files) older than `min_age`.
    """
    now = now or utcnow()
    referenced = set(referenced)
    orphans = []
    for locator, path in blob_store.iter_stored(include_partial=True):
        if locator in referenced:
            continue
        try:
            modified_at = _modified_at(path)
            size = os.path.getsize(path)
        except FileNotFoundError:
            # Renamed or deleted while we were walking
            continue
        if now - modified_at < min_age:
            continue
        orphans.append(OrphanBlob(locator=locator, path=path, size=size, modified_at=modified_at))
    return orphans


def sweep_orphan_blobs(blob_store, messages, min_age: timedelta, dry_run: bool = False,
                       now: Optional[datetime] = None,
                       on_blob: Optional[Callable[[OrphanBlob, str, Optional[str]], None]] = None) -> dict:
    """
    Delete orphan blobs.

    Args:
        blob_store: BlobStore to walk
        messages: MessageLedger supplying the referenced locators
        min_age: only files older than this are touched
        dry_run: report without deleting
        on_blob: optional callback(orphan, action, error) for reporting

    Returns:
        Dictionary with sweep statistics
    """
    stats = {
        'scanned_referenced': 0,
        'orphans': 0,
        'deleted': 0,
        'bytes_reclaimed': 0,
        'errors': 0,
    }

    referenced = messages.referenced_locators()
    stats['scanned_referenced'] = len(referenced)

    for orphan in find_orphan_blobs(blob_store, referenced, min_age, now=now):
        stats['orphans'] += 1
        if dry_run:
            if on_blob:
                on_blob(orphan, 'would_delete', None)
            continue
        try:
            blob_store.delete(orphan.locator)
        except StorageFault as e:
            stats['errors'] += 1
            logger.error(f"Failed to delete orphan blob {orphan.locator}: {e}")
            if on_blob:
                on_blob(orphan, 'error', str(e))
            continue
        stats['deleted'] += 1
        stats['bytes_reclaimed'] += orphan.size
        logger.info(f"Deleted orphan blob {orphan.locator} ({orphan.size} bytes)")
        if on_blob:
            on_blob(orphan, 'delete', None)

    return stats
