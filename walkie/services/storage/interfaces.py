"""Storage interfaces and shared dataclasses for the blob store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class StorageLocator:
    """Parsed blob locator."""

    scheme: str  # local
    raw: str
    key: Optional[str] = None


@dataclass
class StoredObject:
    """Result of storing a blob."""

    locator: str
    key: str
    size: Optional[int] = None
    content_type: Optional[str] = None


@dataclass
class ObjectStat:
    """Blob metadata."""

    size: Optional[int] = None
    last_modified: Optional[datetime] = None


@dataclass
class AudioDeliveryResult:
    """How the API should deliver a blob to the client."""

    mode: str  # local_file
    mimetype: Optional[str] = None
    local_path: Optional[str] = None
    size: Optional[int] = None
