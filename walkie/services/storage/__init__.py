"""Blob storage for uploaded audio."""

from .interfaces import AudioDeliveryResult, ObjectStat, StorageLocator, StoredObject
from .locator import build_local_locator, parse_locator, relative_key_from_local_path
from .factory import StorageSettings, load_storage_settings
from .service import ALLOWED_AUDIO_EXTENSIONS, BlobStore, safe_extension

__all__ = [
    'AudioDeliveryResult',
    'ObjectStat',
    'StorageLocator',
    'StoredObject',
    'build_local_locator',
    'parse_locator',
    'relative_key_from_local_path',
    'StorageSettings',
    'load_storage_settings',
    'ALLOWED_AUDIO_EXTENSIONS',
    'BlobStore',
    'safe_extension',
]
