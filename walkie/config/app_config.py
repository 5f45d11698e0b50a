"""
Application configuration.

Values come from the environment (optionally a .env file) and end up in
the Flask app config, where every other module reads them.
"""

import os

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024


class ConfigurationError(RuntimeError):
    """Required configuration is missing or invalid."""


def _env_bool(key, default):
    return os.environ.get(key, default).strip().lower() == 'true'


def _env_int(key, default):
    raw = os.environ.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.split('#')[0].strip())
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from exc


def load_config():
    """Build the config mapping for create_app() from the environment."""
    env = os.environ.get('ENV', 'local').strip().lower()

    secret_key = os.environ.get('SECRET_KEY')
    secret_key_file = os.environ.get('SECRET_KEY_FILE')
    if secret_key_file:
        with open(secret_key_file, 'r') as f:
            secret_key = f.read().strip()

    default_db_path = os.path.join(os.getcwd(), 'tmp', 'walkie.db')
    admin_device_ids = [
        item.strip() for item in os.environ.get('ADMIN_DEVICE_IDS', '').split(',') if item.strip()
    ]
    max_upload_bytes = _env_int('MAX_UPLOAD_BYTES', DEFAULT_MAX_UPLOAD_BYTES)

    return {
        'ENV': env,
        'SECRET_KEY': secret_key or ('dev-key-change-in-production' if env == 'local' else None),
        'SQLALCHEMY_DATABASE_URI': os.environ.get('SQLALCHEMY_DATABASE_URI', f'sqlite:///{default_db_path}'),
        'AUDIO_DIRECTORY': os.environ.get('AUDIO_DIRECTORY', './tmp/audio'),
        'AUDIO_KEY_PREFIX': os.environ.get('AUDIO_KEY_PREFIX', 'messages'),
        'MAX_UPLOAD_BYTES': max_upload_bytes,
        # Werkzeug rejects grossly oversized bodies before parsing; the blob store enforces the exact limit.
        'MAX_CONTENT_LENGTH': max_upload_bytes + 1024 * 1024,
        'TOKEN_TTL_DAYS': _env_int('TOKEN_TTL_DAYS', 30),
        'ENABLE_RETENTION_SWEEPER': _env_bool('ENABLE_RETENTION_SWEEPER', 'true'),
        'RETENTION_INTERVAL_SECONDS': _env_int('RETENTION_INTERVAL_SECONDS', 60),
        'MESSAGE_RETENTION_DAYS': _env_int('MESSAGE_RETENTION_DAYS', 7),
        'RETENTION_GRACE_SECONDS': _env_int('RETENTION_GRACE_SECONDS', 300),
        'DB_BUSY_TIMEOUT_SECONDS': _env_int('DB_BUSY_TIMEOUT_SECONDS', 15),
        'ADMIN_DEVICE_IDS': admin_device_ids,
        'LOG_LEVEL': os.environ.get('LOG_LEVEL', 'INFO').upper(),
        'RATELIMIT_ENABLED': _env_bool('RATELIMIT_ENABLED', 'true'),
    }


def validate_config(config):
    if not config.get('SECRET_KEY'):
        raise ConfigurationError('SECRET_KEY (or SECRET_KEY_FILE) must be set unless ENV=local')
    if int(config.get('MAX_UPLOAD_BYTES') or 0) <= 0:
        raise ConfigurationError('MAX_UPLOAD_BYTES must be positive')
    if int(config.get('RETENTION_INTERVAL_SECONDS') or 0) <= 0:
        raise ConfigurationError('RETENTION_INTERVAL_SECONDS must be positive')
