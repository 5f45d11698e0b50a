"""
Token authentication utilities.

This module provides token-based authentication for the mobile clients.
Devices log in with their device id and receive an API token; every
request under /api and /admin carries it as a Bearer token.
"""

import hashlib
import secrets

from flask import request

from walkie.database import db
from walkie.utils.datetime import utcnow


def extract_token_from_request():
    """
    Extract API token from the request.

    Checks in order:
    1. Authorization header with Bearer scheme
    2. X-API-Token header

    Returns:
        str: The extracted token, or None if not found
    """
    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        return auth_header[7:].strip() or None

    token = request.headers.get('X-API-Token')
    if token:
        return token

    return None


def hash_token(token):
    """
    Hash a token using SHA-256.

    Args:
        token (str): The plaintext token to hash

    Returns:
        str: The hexadecimal hash of the token
    """
    return hashlib.sha256(token.encode()).hexdigest()


def hash_device_id(device_id):
    """Device ids are never stored in plaintext."""
    return hashlib.sha256(device_id.encode()).hexdigest()


def generate_token():
    """Generate a secure random API token."""
    return secrets.token_urlsafe(32)


def load_user_from_token():
    """
    Load a user from an API token in the request.

    Used as Flask-Login's request_loader. Only approved users holding a
    valid token are authenticated.

    Returns:
        User: The authenticated user, or None if authentication fails
    """
    from walkie.models import APIToken

    token = extract_token_from_request()
    if not token:
        return None

    api_token = APIToken.query.filter_by(token_hash=hash_token(token)).first()
    if not api_token or not api_token.is_valid():
        return None

    user = api_token.user
    if user is None or not user.approved:
        return None

    api_token.last_used_at = utcnow()
    db.session.commit()

    return user
