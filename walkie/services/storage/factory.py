"""Factory for configuring the blob store from application config."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from .local import LocalStorageBackend

DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024


@dataclass
class StorageSettings:
    local_root: str
    key_prefix: str = 'messages'
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES


def load_storage_settings(config: Optional[Mapping] = None) -> StorageSettings:
    # Values come from the Flask app config so env parsing lives in one place.
    if config is None:
        from flask import current_app
        config = current_app.config

    return StorageSettings(
        local_root=config['AUDIO_DIRECTORY'],
        key_prefix=(config.get('AUDIO_KEY_PREFIX') or 'messages').strip().strip('/').replace('\\', '/'),
        max_upload_bytes=int(config.get('MAX_UPLOAD_BYTES') or DEFAULT_MAX_UPLOAD_BYTES),
    )


def build_local_backend(settings: StorageSettings) -> LocalStorageBackend:
    return LocalStorageBackend(settings.local_root)
