"""
Database models package.

- User and API token models (identity)
- Audio message and receipt models (delivery)
"""

# Import database instance
from walkie.database import db

from .user import User, APIToken
from .message import AudioMessage, MessageReceipt

__all__ = [
    'db',
    'User',
    'APIToken',
    'AudioMessage',
    'MessageReceipt',
]
