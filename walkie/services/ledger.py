"""
Message and receipt ledgers.

Both ledgers wrap a SQLAlchemy session (normally Flask-SQLAlchemy's scoped
`db.session`) and translate database failures into StorageFault so the
delivery layer only deals with its own error taxonomy.
"""

import logging
import uuid
from datetime import datetime
from typing import List, Optional, Set

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from walkie.models import AudioMessage, MessageReceipt
from walkie.services.exceptions import NotFound, StorageFault, ValidationError
from walkie.utils.datetime import utcnow

logger = logging.getLogger(__name__)


def parse_duration(value) -> int:
    """
    Validate a clip duration in whole seconds.

    Accepts ints and decimal-digit strings (as sent in multipart forms).

    Raises:
        ValidationError: missing, non-numeric, fractional or negative
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError('Duration is required')
    if isinstance(value, bool):
        raise ValidationError('Invalid duration format')
    if isinstance(value, int):
        duration = value
    elif isinstance(value, str):
        text = value.strip()
        sign = 1
        if text[:1] in ('+', '-'):
            sign = -1 if text[0] == '-' else 1
            text = text[1:]
        # ASCII digits only: int() rejects some Unicode digits str.isdigit() accepts
        if not (text.isascii() and text.isdigit()):
            raise ValidationError('Invalid duration format')
        duration = sign * int(text)
    else:
        raise ValidationError('Invalid duration format')
    if duration < 0:
        raise ValidationError('Duration must not be negative')
    return duration


class MessageLedger:
    """Durable record of uploaded messages."""

    def __init__(self, session):
        self.session = session

    def create(self, sender_id: str, blob_locator: str, duration, *,
               message_id: Optional[str] = None, created_at: Optional[datetime] = None) -> AudioMessage:
        if not sender_id:
            raise ValidationError('sender_id is required')
        if not blob_locator:
            raise ValidationError('blob_locator is required')
        duration = parse_duration(duration)

        message = AudioMessage(
            id=message_id or str(uuid.uuid4()),
            sender_user_id=sender_id,
            blob_locator=blob_locator,
            duration=duration,
            created_at=created_at or utcnow(),
        )
        try:
            self.session.add(message)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFault(f"Failed to create message record: {exc}") from exc
        return message

    def get(self, message_id: str, include_deleted: bool = False) -> AudioMessage:
        """
        Fetch a message by id.

        Soft-deleted messages are reported as NotFound unless
        `include_deleted` is set (administrative callers only).
        """
        if not message_id:
            raise NotFound('Message not found')
        try:
            message = self.session.get(AudioMessage, message_id)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFault(f"Failed to retrieve message: {exc}") from exc
        if message is None or (message.deleted_at is not None and not include_deleted):
            raise NotFound('Message not found')
        return message

    def list_unreceived_for(self, user_id: str) -> List[AudioMessage]:
        """Active messages from other users that `user_id` holds no receipt for, oldest first."""
        received = (
            select(MessageReceipt.audio_message_id)
            .where(MessageReceipt.user_id == user_id)
        )
        stmt = (
            select(AudioMessage)
            .where(
                AudioMessage.deleted_at.is_(None),
                AudioMessage.sender_user_id != user_id,
                AudioMessage.id.not_in(received),
            )
            .order_by(AudioMessage.created_at.asc(), AudioMessage.id.asc())
        )
        try:
            return list(self.session.scalars(stmt).all())
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFault(f"Failed to retrieve messages: {exc}") from exc

    def soft_delete(self, message_id: str, at: Optional[datetime] = None) -> bool:
        """
        Mark a message as logically deleted. Idempotent.

        Returns True if this call set `deleted_at`, False if it was already set.
        Raises NotFound for an unknown id.
        """
        stmt = (
            update(AudioMessage)
            .where(AudioMessage.id == message_id, AudioMessage.deleted_at.is_(None))
            .values(deleted_at=at or utcnow())
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.session.execute(stmt)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFault(f"Failed to soft-delete message {message_id}: {exc}") from exc

        if result.rowcount == 1:
            self.session.expire_all()
            return True
        self.get(message_id, include_deleted=True)
        return False

    def list_active_created_before(self, cutoff: datetime) -> List[AudioMessage]:
        stmt = (
            select(AudioMessage)
            .where(AudioMessage.deleted_at.is_(None), AudioMessage.created_at <= cutoff)
            .order_by(AudioMessage.created_at.asc())
        )
        try:
            return list(self.session.scalars(stmt).all())
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFault(f"Failed to list messages: {exc}") from exc

    def list_soft_deleted_before(self, before: datetime) -> List[AudioMessage]:
        stmt = (
            select(AudioMessage)
            .where(AudioMessage.deleted_at.is_not(None), AudioMessage.deleted_at <= before)
            .order_by(AudioMessage.deleted_at.asc())
        )
        try:
            return list(self.session.scalars(stmt).all())
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFault(f"Failed to list deleted messages: {exc}") from exc

    def purge(self, message_id: str) -> bool:
        """
        Remove a soft-deleted message row together with its receipts.

        Active messages are never purged; returns False when nothing was removed.
        """
        try:
            deleted = self.session.execute(
                delete(AudioMessage)
                .where(AudioMessage.id == message_id, AudioMessage.deleted_at.is_not(None))
                .execution_options(synchronize_session=False)
            )
            if deleted.rowcount:
                self.session.execute(
                    delete(MessageReceipt)
                    .where(MessageReceipt.audio_message_id == message_id)
                    .execution_options(synchronize_session=False)
                )
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFault(f"Failed to purge message {message_id}: {exc}") from exc
        self.session.expire_all()
        return bool(deleted.rowcount)

    def referenced_locators(self) -> Set[str]:
        """Every blob locator still referenced by a ledger row, deleted or not."""
        try:
            return set(self.session.scalars(select(AudioMessage.blob_locator)).all())
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFault(f"Failed to list blob locators: {exc}") from exc


class ReceiptLedger:
    """Durable (message, user) receipts. At most one row per pair."""

    def __init__(self, session):
        self.session = session

    def get(self, message_id: str, user_id: str) -> MessageReceipt:
        try:
            receipt = self.session.get(MessageReceipt, (message_id, user_id))
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFault(f"Failed to retrieve receipt: {exc}") from exc
        if receipt is None:
            raise NotFound('Receipt not found')
        return receipt

    def create_if_absent(self, message_id: str, user_id: str) -> MessageReceipt:
        """
        Record that `user_id` received `message_id`.

        A single constraint-backed upsert: concurrent callers converge on one
        row and the first insert's timestamp wins. Duplicate inserts are
        absorbed here and never reach the caller.
        """
        if not message_id or not user_id:
            raise ValidationError('message_id and user_id are required')

        values = {
            'audio_message_id': message_id,
            'user_id': user_id,
            'received_at': utcnow(),
        }
        try:
            dialect = self.session.get_bind().dialect.name
            if dialect in ('sqlite', 'postgresql'):
                insert = sqlite_insert if dialect == 'sqlite' else pg_insert
                stmt = insert(MessageReceipt).values(**values).on_conflict_do_nothing(
                    index_elements=['audio_message_id', 'user_id']
                )
                self.session.execute(stmt)
            else:
                try:
                    with self.session.begin_nested():
                        self.session.add(MessageReceipt(**values))
                except IntegrityError:
                    logger.debug(f"Receipt for message {message_id} user {user_id} already exists")
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFault(f"Failed to record receipt: {exc}") from exc

        # The upsert bypasses the identity map; make sure we read the stored row.
        self.session.expire_all()
        return self.get(message_id, user_id)

    def user_ids_for(self, message_id: str) -> Set[str]:
        try:
            return set(self.session.scalars(
                select(MessageReceipt.user_id).where(MessageReceipt.audio_message_id == message_id)
            ).all())
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFault(f"Failed to list receipts: {exc}") from exc

    def count_for(self, message_id: str) -> int:
        return len(self.user_ids_for(message_id))
