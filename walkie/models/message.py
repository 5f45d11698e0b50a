"""
Audio message and receipt database models.

A message is created once by an upload and is afterwards only touched by
the retention sweeper. A receipt records that one user has consumed one
message; the (message, user) pair is unique.
"""

import uuid

from walkie.database import db
from walkie.utils.datetime import utcnow, isoformat_or_none


class AudioMessage(db.Model):
    """A stored walkie-talkie clip."""

    __tablename__ = 'audio_message'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    sender_user_id = db.Column(db.String(36), nullable=False, index=True)
    blob_locator = db.Column(db.String(500), nullable=False)
    duration = db.Column(db.Integer, nullable=False)  # seconds
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)

    receipts = db.relationship(
        'MessageReceipt',
        back_populates='message',
        cascade='all, delete-orphan',
        passive_deletes=True,
        lazy='dynamic',
    )

    def __repr__(self):
        return f'<AudioMessage {self.id} sender={self.sender_user_id}>'

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    def to_dict(self):
        """Convert message to dictionary for API responses. Audio bytes are never inlined."""
        return {
            'id': self.id,
            'sender_user_id': self.sender_user_id,
            'blob_locator': self.blob_locator,
            'duration': self.duration,
            'created_at': isoformat_or_none(self.created_at),
        }


class MessageReceipt(db.Model):
    """Proof that a user has received a message."""

    __tablename__ = 'message_receipt'

    audio_message_id = db.Column(
        db.String(36),
        db.ForeignKey('audio_message.id', ondelete='CASCADE'),
        primary_key=True,
    )
    user_id = db.Column(db.String(36), primary_key=True, index=True)
    received_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    message = db.relationship('AudioMessage', back_populates='receipts')

    def __repr__(self):
        return f'<MessageReceipt message={self.audio_message_id} user={self.user_id}>'

    def to_dict(self):
        return {
            'message_id': self.audio_message_id,
            'user_id': self.user_id,
            'received_at': isoformat_or_none(self.received_at),
        }
