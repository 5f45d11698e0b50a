#!/usr/bin/env python3
"""
Test for the receipt race condition.

Verifies that the download path (lazy receipt) and the explicit
mark-received path converge on a single receipt row when they race for
the same (message, user) pair, and that no caller ever sees a
uniqueness violation.
"""

import io
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed

from walkie.database import db
from walkie.models import MessageReceipt


def test_download_and_mark_received_race(app, services):
    """
    Half the workers download, half explicitly mark the message received,
    all released at the same instant.
    """
    message_id = services.delivery.upload('alice', io.BytesIO(b'race-audio'), 3, original_filename='r.m4a')

    errors = []
    errors_lock = threading.Lock()

    def attempt(worker_id):
        with app.app_context():
            try:
                if worker_id % 2:
                    result = services.delivery.download('bob', message_id)
                    return f"Worker {worker_id}: downloaded (receipt_recorded={result.receipt_recorded})"
                receipt = services.delivery.mark_received('bob', message_id)
                return f"Worker {worker_id}: marked at {receipt.received_at}"
            except Exception as e:
                with errors_lock:
                    errors.append((worker_id, e))
                return f"Worker {worker_id}: Error - {e}"

    num_workers = 10

    # Use a barrier to ensure all threads start at the same time
    barrier = threading.Barrier(num_workers)

    def worker_with_barrier(worker_id):
        barrier.wait()
        return attempt(worker_id)

    with ThreadPoolExecutor(max_workers=num_workers) as executor:
        futures = {executor.submit(worker_with_barrier, i): i for i in range(num_workers)}
        for future in as_completed(futures):
            print(f"  {future.result()}")

    db.session.expire_all()
    rows = db.session.query(MessageReceipt).filter_by(audio_message_id=message_id, user_id='bob').all()

    assert errors == [], f"Expected no errors, got {errors}"
    assert len(rows) == 1, f"Expected exactly 1 receipt, got {len(rows)}"
    assert services.delivery.list_unread('bob') == []


def test_many_users_racing_on_one_message(app, services):
    """Different users never block each other's receipts."""
    message_id = services.delivery.upload('alice', io.BytesIO(b'fan-out'), 2)
    users = [f'user-{i}' for i in range(6)]

    barrier = threading.Barrier(len(users) * 2)

    def mark(user_id):
        barrier.wait()
        with app.app_context():
            services.delivery.mark_received(user_id, message_id)

    with ThreadPoolExecutor(max_workers=len(users) * 2) as executor:
        futures = [executor.submit(mark, user_id) for user_id in users + users]
        for future in as_completed(futures):
            future.result()

    assert services.receipts.user_ids_for(message_id) == set(users)
