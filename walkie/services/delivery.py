"""
Delivery service for walkie-talkie audio messages.

Orchestrates the blob store and the two ledgers:
- upload: blob write, then ledger insert; the blob is removed again if the insert fails
- list_unread: messages the user has not received yet
- download: serves the blob and lazily records a receipt
- mark_received: records a receipt on explicit request
"""

import logging
from dataclasses import dataclass
from typing import BinaryIO, List, Optional
from uuid import uuid4

from walkie.models import AudioMessage, MessageReceipt
from walkie.services.exceptions import IntegrityFault, NotFound, StorageFault, ValidationError
from walkie.services.ledger import MessageLedger, ReceiptLedger, parse_duration
from walkie.services.storage import AudioDeliveryResult, BlobStore

logger = logging.getLogger(__name__)


@dataclass
class DownloadResult:
    message: AudioMessage
    delivery: AudioDeliveryResult
    receipt_recorded: bool


def _require_user(user_id: Optional[str]) -> str:
    if not user_id:
        raise ValidationError('user_id is required')
    return user_id


class DeliveryService:
    """Public operations of the delivery core. Callers supply an authenticated user id."""

    def __init__(self, blob_store: BlobStore, messages: MessageLedger, receipts: ReceiptLedger):
        self.blob_store = blob_store
        self.messages = messages
        self.receipts = receipts

    def upload(self, sender_id: str, audio: Optional[BinaryIO], duration,
               original_filename: Optional[str] = None) -> str:
        """
        Store a clip and create its message record.

        Returns:
            The new message id. No id is ever returned for a message that
            failed to persist.

        Raises:
            ValidationError: missing sender, audio or malformed duration (nothing is written)
            PayloadTooLarge: audio over the size limit (nothing is kept)
            StorageFault: blob store or ledger failure
        """
        _require_user(sender_id)
        duration = parse_duration(duration)
        if audio is None:
            raise ValidationError('Audio file is required')

        message_id = str(uuid4())
        stored = self.blob_store.put(audio, original_filename=original_filename)

        try:
            self.messages.create(sender_id, stored.locator, duration, message_id=message_id)
        except Exception:
            logger.error(f"Failed to create message record, removing blob {stored.locator}")
            try:
                self.blob_store.delete(stored.locator)
            except StorageFault as cleanup_exc:
                logger.error(f"Failed to remove blob {stored.locator} after ledger failure: {cleanup_exc}")
            raise

        logger.info(f"Audio message created: message_id={message_id} sender_id={sender_id} "
                    f"duration={duration}s size={stored.size}")
        return message_id

    def list_unread(self, user_id: str) -> List[AudioMessage]:
        return self.messages.list_unreceived_for(_require_user(user_id))

    def download(self, user_id: str, message_id: str) -> DownloadResult:
        """
        Resolve a message's audio for delivery and record a receipt as a side effect.

        The receipt write is best effort: a failure is logged and the
        download still succeeds, leaving the message unread for next time.

        Raises:
            NotFound: unknown or soft-deleted message
            IntegrityFault: the ledger row exists but its blob is gone
        """
        _require_user(user_id)
        message = self.messages.get(message_id)

        try:
            delivery = self.blob_store.get_audio_delivery(message.blob_locator)
        except NotFound as exc:
            logger.error(f"Audio blob missing for message {message.id}: locator={message.blob_locator}")
            raise IntegrityFault('Audio file not found') from exc

        receipt_recorded = True
        try:
            self.receipts.create_if_absent(message_id, user_id)
        except Exception as exc:
            receipt_recorded = False
            logger.error(f"Failed to record receipt on download: message_id={message_id} "
                         f"user_id={user_id}: {exc}", exc_info=True)

        return DownloadResult(message=message, delivery=delivery, receipt_recorded=receipt_recorded)

    def mark_received(self, user_id: str, message_id: str) -> MessageReceipt:
        """Explicitly mark a message as received. Failures propagate to the caller."""
        _require_user(user_id)
        message = self.messages.get(message_id)
        receipt = self.receipts.create_if_absent(message.id, user_id)
        logger.info(f"Message marked as received: message_id={message_id} user_id={user_id}")
        return receipt
