"""
Database initialization.

This module handles:
- Database schema creation
- SQLite connection pragmas (WAL, busy timeout, foreign keys)
- Admin bootstrap from ADMIN_DEVICE_IDS
"""

from sqlalchemy import event, text

from walkie.database import db
from walkie.models import User
from walkie.utils import hash_device_id


def _install_sqlite_pragmas(engine, busy_timeout_seconds):
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_seconds * 1000)}")
        cursor.close()


def initialize_database(app):
    """
    Initialize database schema.

    This function should be called within an app context.
    """
    engine = db.engine

    if engine.name == 'sqlite':
        _install_sqlite_pragmas(engine, app.config.get('DB_BUSY_TIMEOUT_SECONDS', 15))
        # Connections opened before the listener existed would miss the pragmas.
        engine.dispose()

    db.create_all()

    # Enable WAL mode for SQLite (better concurrent write performance)
    if engine.name == 'sqlite':
        try:
            with engine.connect() as conn:
                conn.execute(text('PRAGMA journal_mode=WAL'))
                conn.commit()
                app.logger.info("SQLite WAL mode enabled for better concurrency")
        except Exception as e:
            app.logger.warning(f"Could not enable WAL mode: {e}")

    promote_admin_devices(app)


def promote_admin_devices(app):
    """Approve and promote already-registered users whose device is listed in ADMIN_DEVICE_IDS."""
    device_hashes = [hash_device_id(device_id) for device_id in app.config.get('ADMIN_DEVICE_IDS') or []]
    if not device_hashes:
        return

    promoted = 0
    for user in User.query.filter(User.device_hash.in_(device_hashes)).all():
        if not user.is_admin or not user.approved:
            user.is_admin = True
            user.approved = True
            promoted += 1
    if promoted:
        db.session.commit()
        app.logger.info(f"Promoted {promoted} user(s) to admin from ADMIN_DEVICE_IDS")
