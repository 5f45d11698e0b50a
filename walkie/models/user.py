"""
User and API token database models.

Users register with a device id and must be approved by an admin before
they can log in. Logging in issues an API token; only its hash is stored.
"""

import uuid
from datetime import timedelta

from flask_login import UserMixin

from walkie.database import db
from walkie.utils.datetime import utcnow, isoformat_or_none


class User(db.Model, UserMixin):
    """A registered device owner."""

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(100), nullable=False)
    device_hash = db.Column(db.String(64), unique=True, nullable=False, index=True)
    approved = db.Column(db.Boolean, default=False, nullable=False, index=True)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    last_active_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self):
        return f"User('{self.name}', approved={self.approved})"

    def to_public_dict(self):
        return {'id': self.id, 'name': self.name}

    def to_dict(self):
        """Convert model to dictionary representation."""
        return {
            'id': self.id,
            'name': self.name,
            'approved': self.approved,
            'is_admin': self.is_admin,
            'created_at': isoformat_or_none(self.created_at),
            'last_active_at': isoformat_or_none(self.last_active_at),
        }


class APIToken(db.Model):
    """API Token model for token-based authentication."""

    __tablename__ = 'api_token'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False, index=True)
    token_hash = db.Column(db.String(64), unique=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    last_used_at = db.Column(db.DateTime, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=True)
    revoked = db.Column(db.Boolean, default=False, nullable=False, index=True)

    user = db.relationship('User', backref=db.backref('api_tokens', lazy=True, cascade='all, delete-orphan'))

    def __repr__(self):
        return f"APIToken(user_id={self.user_id}, revoked={self.revoked})"

    @classmethod
    def issue(cls, user, token_hash, ttl_days):
        expires_at = utcnow() + timedelta(days=ttl_days) if ttl_days > 0 else None
        return cls(user_id=user.id, token_hash=token_hash, expires_at=expires_at)

    def is_expired(self):
        """Check if token has expired."""
        if not self.expires_at:
            return False
        return self.expires_at < utcnow()

    def is_valid(self):
        """Check if token is valid (not revoked and not expired)."""
        return not self.revoked and not self.is_expired()
