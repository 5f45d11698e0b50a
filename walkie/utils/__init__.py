"""
Utility functions package.

- Datetime helpers (naive UTC timestamps)
- Token and device id hashing for API authentication
"""

from .datetime import utcnow, isoformat_or_none
from .token_auth import (
    extract_token_from_request,
    hash_token,
    hash_device_id,
    generate_token,
    load_user_from_token,
)

__all__ = [
    'utcnow',
    'isoformat_or_none',
    'extract_token_from_request',
    'hash_token',
    'hash_device_id',
    'generate_token',
    'load_user_from_token',
]
