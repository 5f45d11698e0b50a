"""
Shared fixtures: one app per test on a throwaway SQLite file and audio directory.

`app` is not bound to a context so test-client requests get fresh
request state; service-level tests use `services`, which pushes one.
"""

import os
import sys

import pytest

# Add the parent directory to the path to import walkie
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from walkie.app import create_app  # noqa: E402
from walkie.database import db  # noqa: E402
from walkie.models import APIToken, User  # noqa: E402
from walkie.utils import generate_token, hash_device_id, hash_token  # noqa: E402

ADMIN_DEVICE_ID = 'admin-device-0001'


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'walkie.db'}",
        'AUDIO_DIRECTORY': str(tmp_path / 'audio'),
        'MAX_UPLOAD_BYTES': 64 * 1024,
        'ENABLE_RETENTION_SWEEPER': False,
        'RATELIMIT_ENABLED': False,
        'ADMIN_DEVICE_IDS': [ADMIN_DEVICE_ID],
        'LOG_LEVEL': 'WARNING',
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    with app.app_context():
        yield app.extensions['walkie']


@pytest.fixture
def make_user(app):
    """Factory creating a user and returning (user_id, auth headers)."""
    counter = {'n': 0}

    def _make_user(name=None, approved=True, is_admin=False):
        counter['n'] += 1
        name = name or f"user{counter['n']}"
        with app.app_context():
            user = User(
                name=name,
                device_hash=hash_device_id(f"device-{name}-{counter['n']}"),
                approved=approved,
                is_admin=is_admin,
            )
            db.session.add(user)
            db.session.commit()

            plaintext = generate_token()
            db.session.add(APIToken.issue(user, hash_token(plaintext), 30))
            db.session.commit()
            return user.id, {'Authorization': f'Bearer {plaintext}'}

    return _make_user
