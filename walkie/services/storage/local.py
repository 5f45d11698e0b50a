"""Local filesystem storage backend."""

from __future__ import annotations

import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

from walkie.services.exceptions import PayloadTooLarge

from .interfaces import ObjectStat, StorageLocator, StoredObject
from .locator import build_local_locator, local_path_from_key

CHUNK_SIZE = 64 * 1024
PARTIAL_PREFIX = '.upload-'
PARTIAL_SUFFIX = '.part'


class LocalStorageBackend:
    """Local filesystem implementation for the storage contract."""

    def __init__(self, root: str):
        self.root = str(Path(root))
        Path(self.root).mkdir(parents=True, exist_ok=True)

    def build_locator(self, key: str) -> str:
        return build_local_locator(key)

    def resolve_path(self, locator: StorageLocator) -> str:
        if locator.scheme == 'local':
            if not locator.key:
                raise ValueError('local locator missing key')
            return local_path_from_key(self.root, locator.key)
        raise ValueError(f"Unsupported locator for local backend: {locator.scheme}")

    def save_fileobj(self, fileobj: BinaryIO, key: str, max_bytes: Optional[int] = None,
                     content_type: Optional[str] = None) -> StoredObject:
        """
        Stream `fileobj` into the blob named by `key`.

        Bytes go to a hidden temp file in the destination directory and are
        renamed into place only once complete, so readers never see a
        partial blob. Exceeding `max_bytes` aborts the copy and removes the
        temp file.
        """
        dst = local_path_from_key(self.root, key)
        parent = Path(dst).parent
        parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(prefix=PARTIAL_PREFIX, suffix=PARTIAL_SUFFIX, dir=str(parent))
        size = 0
        try:
            with os.fdopen(fd, 'wb') as out_f:
                while True:
                    chunk = fileobj.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if max_bytes is not None and size > max_bytes:
                        raise PayloadTooLarge(max_bytes)
                    out_f.write(chunk)
                out_f.flush()
                os.fsync(out_f.fileno())
            os.replace(tmp_path, dst)
        except BaseException:
            try:
                os.remove(tmp_path)
            except FileNotFoundError:
                pass
            raise
        return StoredObject(locator=self.build_locator(key), key=key, size=size, content_type=content_type)

    def open(self, locator: StorageLocator) -> BinaryIO:
        return open(self.resolve_path(locator), 'rb')

    def exists(self, locator: StorageLocator) -> bool:
        return os.path.isfile(self.resolve_path(locator))

    def delete(self, locator: StorageLocator, missing_ok: bool = True) -> bool:
        path = self.resolve_path(locator)
        try:
            os.remove(path)
        except FileNotFoundError:
            if not missing_ok:
                raise
        return True

    def stat(self, locator: StorageLocator) -> ObjectStat:
        path = self.resolve_path(locator)
        st = os.stat(path)
        modified = datetime.fromtimestamp(st.st_mtime, tz=timezone.utc).replace(tzinfo=None)
        return ObjectStat(size=st.st_size, last_modified=modified)

    def iter_paths(self, include_partial: bool = False) -> Iterator[str]:
        """Yield absolute paths of every stored blob under the root."""
        for dirpath, _dirnames, filenames in os.walk(self.root):
            for name in filenames:
                is_partial = name.startswith(PARTIAL_PREFIX) and name.endswith(PARTIAL_SUFFIX)
                if is_partial and not include_partial:
                    continue
                yield os.path.join(dirpath, name)
