"""Blob store facade hiding the storage backend from delivery logic."""

from __future__ import annotations

import logging
import mimetypes
import os
from datetime import datetime
from typing import BinaryIO, Iterator, Optional, Tuple
from uuid import uuid4

from walkie.services.exceptions import NotFound, StorageFault
from walkie.utils.datetime import utcnow

from .factory import StorageSettings, build_local_backend, load_storage_settings
from .interfaces import AudioDeliveryResult, ObjectStat, StorageLocator, StoredObject
from .locator import build_local_locator, parse_locator, relative_key_from_local_path

logger = logging.getLogger(__name__)

# Extensions kept on stored blobs as content-type hints. Anything else is stored as .bin.
ALLOWED_AUDIO_EXTENSIONS = frozenset({
    '.m4a', '.aac', '.mp3', '.wav', '.ogg', '.oga', '.opus',
    '.webm', '.flac', '.3gp', '.amr', '.caf',
})
DEFAULT_EXTENSION = '.bin'

mimetypes.add_type('audio/mp4', '.m4a')
mimetypes.add_type('audio/aac', '.aac')
mimetypes.add_type('audio/webm', '.webm')
mimetypes.add_type('audio/flac', '.flac')
mimetypes.add_type('audio/ogg', '.ogg')
mimetypes.add_type('audio/ogg', '.oga')
mimetypes.add_type('audio/opus', '.opus')
mimetypes.add_type('audio/amr', '.amr')
mimetypes.add_type('audio/3gpp', '.3gp')
mimetypes.add_type('audio/x-caf', '.caf')


def safe_extension(original_filename: Optional[str]) -> str:
    """Return an allow-listed, lower-cased extension for a client file name."""
    base_name = os.path.basename((original_filename or '').replace('\\', '/'))
    _, ext = os.path.splitext(base_name)
    ext = ext.lower()
    return ext if ext in ALLOWED_AUDIO_EXTENSIONS else DEFAULT_EXTENSION


class BlobStore:
    """Stores audio bytes under generated names and hands back opaque locators."""

    def __init__(self, settings: Optional[StorageSettings] = None):
        self.settings = settings or load_storage_settings()
        self.local = build_local_backend(self.settings)

    @property
    def max_upload_bytes(self) -> int:
        return self.settings.max_upload_bytes

    def _parse(self, locator_value: str) -> StorageLocator:
        try:
            locator = parse_locator(locator_value)
        except ValueError as exc:
            raise NotFound(f"Invalid blob locator: {locator_value}") from exc
        if not locator:
            raise NotFound('Empty blob locator')
        try:
            self.local.resolve_path(locator)
        except ValueError as exc:
            raise NotFound(f"Invalid blob locator: {locator_value}") from exc
        return locator

    def build_blob_key(self, original_filename: Optional[str] = None, *, now: Optional[datetime] = None) -> str:
        """Key derived from a fresh unique id; the client file name only contributes a vetted extension."""
        now = now or utcnow()
        prefix = self.settings.key_prefix or 'messages'
        return f"{prefix}/{now.strftime('%Y/%m')}/{uuid4().hex}{safe_extension(original_filename)}"

    def put(self, fileobj: BinaryIO, original_filename: Optional[str] = None,
            size_limit: Optional[int] = None) -> StoredObject:
        """
        Write a bounded byte stream and return where it landed.

        Raises:
            PayloadTooLarge: the stream exceeded `size_limit` (defaults to the configured limit)
            StorageFault: the filesystem refused the write
        """
        limit = self.max_upload_bytes if size_limit is None else size_limit
        key = self.build_blob_key(original_filename)
        content_type = mimetypes.guess_type(key)[0]
        try:
            stored = self.local.save_fileobj(fileobj, key, max_bytes=limit, content_type=content_type)
        except OSError as exc:
            raise StorageFault(f"Failed to write audio blob: {exc}") from exc
        logger.debug(f"Stored blob {stored.locator} ({stored.size} bytes)")
        return stored

    def open(self, locator_value: str) -> BinaryIO:
        locator = self._parse(locator_value)
        try:
            return self.local.open(locator)
        except FileNotFoundError as exc:
            raise NotFound(f"Blob not found: {locator_value}") from exc
        except OSError as exc:
            raise StorageFault(f"Failed to open audio blob: {exc}") from exc

    def exists(self, locator_value: str) -> bool:
        return self.local.exists(self._parse(locator_value))

    def stat(self, locator_value: str) -> ObjectStat:
        try:
            return self.local.stat(self._parse(locator_value))
        except FileNotFoundError as exc:
            raise NotFound(f"Blob not found: {locator_value}") from exc

    def delete(self, locator_value: Optional[str]) -> bool:
        """Remove a blob. Absence of the target is not an error."""
        if not locator_value:
            return True
        try:
            locator = self._parse(locator_value)
        except NotFound:
            logger.warning(f"Ignoring delete for unparseable locator: {locator_value}")
            return True
        try:
            return self.local.delete(locator, missing_ok=True)
        except OSError as exc:
            raise StorageFault(f"Failed to delete audio blob {locator_value}: {exc}") from exc

    def get_audio_delivery(self, locator_value: str) -> AudioDeliveryResult:
        locator = self._parse(locator_value)
        local_path = self.local.resolve_path(locator)
        if not os.path.isfile(local_path):
            raise NotFound(f"Blob not found: {locator_value}")
        mimetype = mimetypes.guess_type(local_path)[0] or 'application/octet-stream'
        return AudioDeliveryResult(
            mode='local_file',
            local_path=local_path,
            mimetype=mimetype,
            size=os.path.getsize(local_path),
        )

    def iter_stored(self, include_partial: bool = False) -> Iterator[Tuple[str, str]]:
        """Yield (locator, absolute path) for every blob on disk."""
        for path in self.local.iter_paths(include_partial=include_partial):
            key = relative_key_from_local_path(path, self.local.root)
            yield build_local_locator(key), path
