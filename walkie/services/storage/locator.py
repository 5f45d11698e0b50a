"""Locator parsing/serialization helpers for blob storage."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from .interfaces import StorageLocator

LOCAL_SCHEME = 'local://'


def _normalize_key(key: str) -> str:
    key = (key or '').replace('\\', '/').strip()
    while '//' in key:
        key = key.replace('//', '/')
    return key.lstrip('/')


def build_local_locator(key: str) -> str:
    return f"{LOCAL_SCHEME}{_normalize_key(key)}"


def parse_locator(value: Optional[str]) -> Optional[StorageLocator]:
    """Parse locator string into a typed structure."""
    if value is None:
        return None

    raw = str(value).strip()
    if not raw:
        return None

    if raw.startswith(LOCAL_SCHEME):
        key = _normalize_key(raw[len(LOCAL_SCHEME):])
        if not key:
            raise ValueError(f"Invalid local locator (missing key): {raw}")
        return StorageLocator(scheme='local', raw=raw, key=key)

    raise ValueError(f"Unsupported storage locator: {raw}")


def local_path_from_key(local_root: str, key: str) -> str:
    """Resolve a storage key under local_root and prevent path traversal."""
    safe_key = _normalize_key(key)
    root = Path(local_root).resolve()
    candidate = (root / Path(*safe_key.split('/'))).resolve()
    try:
        candidate.relative_to(root)
    except Exception as exc:
        raise ValueError(f"Local storage key resolves outside root: {key}") from exc
    if candidate == root:
        raise ValueError(f"Local storage key is empty: {key!r}")
    return str(candidate)


def relative_key_from_local_path(abs_path: str, local_root: str) -> str:
    """Convert absolute local path to a storage key relative to local root."""
    root = Path(local_root).resolve()
    path = Path(abs_path).resolve()
    try:
        rel = path.relative_to(root)
    except Exception as exc:
        raise ValueError(f"Path '{abs_path}' is outside local storage root '{local_root}'") from exc
    rel_key = _normalize_key(rel.as_posix())
    if not rel_key:
        raise ValueError(f"Cannot build key from path '{abs_path}'")
    return rel_key
