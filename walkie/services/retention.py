"""
Message retention and blob reclamation.

A sweep tick takes a cutoff snapshot and then works in two phases:

1. mark: active messages created before the cutoff that the retention
   policy deems eligible are soft-deleted (they disappear from unread
   lists and downloads immediately)
2. reclaim: messages soft-deleted longer than the grace period lose their
   blob first and their ledger row (with receipts) second. A failed blob
   delete leaves the row soft-deleted so the next tick retries it.

Policies are pluggable; the sweeper only owns scheduling and ordering.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, FrozenSet, Iterable, Optional, Set

from sqlalchemy import select

from walkie.models import AudioMessage, User
from walkie.services.exceptions import DeliveryError, StorageFault
from walkie.utils.datetime import utcnow

logger = logging.getLogger(__name__)


@dataclass
class RetentionContext:
    """Snapshot shared by every policy check within one sweep tick."""

    cutoff: datetime
    approved_user_ids: FrozenSet[str]
    receipts: object  # ReceiptLedger
    _received_cache: Dict[str, Set[str]] = field(default_factory=dict)

    def received_by(self, message_id: str) -> Set[str]:
        if message_id not in self._received_cache:
            self._received_cache[message_id] = self.receipts.user_ids_for(message_id)
        return self._received_cache[message_id]


class RetentionPolicy:
    """Decides whether a message may be reclaimed."""

    name = 'base'

    def is_eligible(self, message: AudioMessage, context: RetentionContext) -> bool:
        raise NotImplementedError

    def __repr__(self):
        return f'<{self.__class__.__name__}>'


class AllRecipientsReceivedPolicy(RetentionPolicy):
    """Eligible once every approved user other than the sender holds a receipt."""

    name = 'all_received'

    def is_eligible(self, message, context):
        recipients = set(context.approved_user_ids) - {message.sender_user_id}
        if not recipients:
            # Nobody to deliver to yet; leave it to the age policy.
            return False
        return recipients <= context.received_by(message.id)


class MaxAgePolicy(RetentionPolicy):
    """Eligible once the message is older than `max_age` at the sweep cutoff."""

    name = 'max_age'

    def __init__(self, max_age: timedelta):
        self.max_age = max_age

    def is_eligible(self, message, context):
        return message.created_at <= context.cutoff - self.max_age

    def __repr__(self):
        return f'<MaxAgePolicy max_age={self.max_age}>'


class AnyOfPolicy(RetentionPolicy):
    """Eligible if any of the wrapped policies says so."""

    name = 'any_of'

    def __init__(self, *policies: RetentionPolicy):
        self.policies = policies

    def is_eligible(self, message, context):
        return any(policy.is_eligible(message, context) for policy in self.policies)

    def __repr__(self):
        return f'<AnyOfPolicy {list(self.policies)}>'


def build_default_policy(retention_days: int) -> RetentionPolicy:
    """
    All recipients received, or older than `retention_days`.

    `retention_days <= 0` disables the age horizon.
    """
    if retention_days and retention_days > 0:
        return AnyOfPolicy(AllRecipientsReceivedPolicy(), MaxAgePolicy(timedelta(days=retention_days)))
    return AllRecipientsReceivedPolicy()


def approved_user_ids(session) -> FrozenSet[str]:
    return frozenset(session.scalars(select(User.id).where(User.approved.is_(True))).all())


class RetentionSweeper:
    """Runs sweep ticks. Never overlaps itself."""

    def __init__(self, blob_store, messages, receipts, policy: RetentionPolicy,
                 approved_users: Callable[[], Iterable[str]],
                 grace: timedelta = timedelta(minutes=5),
                 clock: Callable[[], datetime] = utcnow):
        self.blob_store = blob_store
        self.messages = messages
        self.receipts = receipts
        self.policy = policy
        self.approved_users = approved_users
        self.grace = grace
        self.clock = clock
        self._run_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def run_once(self) -> dict:
        """
        Run one sweep tick.

        Returns:
            Dictionary with sweep statistics, or {'skipped': True} if a tick
            is already in progress
        """
        if not self._run_lock.acquire(blocking=False):
            logger.info("Retention sweep already running, skipping this tick")
            return {'skipped': True}
        try:
            return self._sweep()
        finally:
            self._run_lock.release()

    def _sweep(self) -> dict:
        cutoff = self.clock()
        stats = {
            'skipped': False,
            'cutoff': cutoff.isoformat(),
            'checked': 0,
            'marked': 0,
            'reclaimed': 0,
            'blob_errors': 0,
            'errors': 0,
        }

        context = RetentionContext(
            cutoff=cutoff,
            approved_user_ids=frozenset(self.approved_users()),
            receipts=self.receipts,
        )

        for message in self.messages.list_active_created_before(cutoff):
            stats['checked'] += 1
            message_id = message.id
            try:
                if self.policy.is_eligible(message, context):
                    if self.messages.soft_delete(message_id, at=cutoff):
                        stats['marked'] += 1
                        logger.info(f"Message {message_id} eligible for reclamation, soft-deleted")
            except DeliveryError as e:
                stats['errors'] += 1
                logger.error(f"Error evaluating retention for message {message_id}: {e}")

        reclaim_before = cutoff - self.grace
        for message in self.messages.list_soft_deleted_before(reclaim_before):
            message_id = message.id
            locator = message.blob_locator
            try:
                self.blob_store.delete(locator)
            except StorageFault as e:
                stats['blob_errors'] += 1
                logger.error(f"Failed to delete blob for message {message_id}, will retry: {e}")
                continue

            try:
                if self.messages.purge(message_id):
                    stats['reclaimed'] += 1
                    logger.info(f"Reclaimed message {message_id} ({locator})")
            except StorageFault as e:
                stats['errors'] += 1
                logger.error(f"Failed to purge message {message_id}: {e}")

        logger.info(f"Retention sweep completed: {stats}")
        return stats


class RetentionScheduler:
    """Background thread running the sweeper on a fixed interval, strictly sequentially."""

    def __init__(self, app, sweeper: RetentionSweeper, interval_seconds: float = 60.0):
        self.app = app
        self.sweeper = sweeper
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="RetentionSweeper", daemon=True)
        self._thread.start()
        self.app.logger.info(f"Retention sweeper started - running every {self.interval_seconds:g}s")

    def stop(self, timeout: float = 5.0):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self.app.logger.info("Retention sweeper stopped")

    def _loop(self):
        while not self._stop.wait(self.interval_seconds):
            try:
                with self.app.app_context():
                    self.sweeper.run_once()
            except Exception as e:
                self.app.logger.error(f"Error in retention sweeper: {e}", exc_info=True)
