# Walkie relay - asynchronous walkie-talkie audio message server
import logging
import sys
import time
from datetime import timedelta

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import RequestEntityTooLarge
from werkzeug.middleware.proxy_fix import ProxyFix

from walkie.api.admin import admin_bp
from walkie.api.auth import auth_bp
from walkie.api.messages import messages_bp
from walkie.api.users import users_bp
from walkie.config.app_config import load_config, validate_config
from walkie.config.startup import run_startup_tasks
from walkie.database import db
from walkie.extensions import limiter, login_manager
from walkie.init_db import initialize_database
from walkie.models import User
from walkie.services import ServiceRegistry
from walkie.services.delivery import DeliveryService
from walkie.services.ledger import MessageLedger, ReceiptLedger
from walkie.services.retention import RetentionSweeper, approved_user_ids, build_default_policy
from walkie.services.storage import BlobStore, load_storage_settings
from walkie.utils import load_user_from_token


def configure_logging(log_level):
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    handler.setFormatter(formatter)

    # Get the root logger and clear any existing handlers to avoid duplicates
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)
    root_logger.addHandler(handler)

    # Werkzeug logs every request on its own; ours carries the user and timing
    logging.getLogger('werkzeug').setLevel(logging.WARNING)


def build_services(app):
    """Wire the delivery core. Must be called within an app context."""
    blob_store = BlobStore(load_storage_settings(app.config))
    messages = MessageLedger(db.session)
    receipts = ReceiptLedger(db.session)
    delivery = DeliveryService(blob_store, messages, receipts)
    sweeper = RetentionSweeper(
        blob_store,
        messages,
        receipts,
        policy=build_default_policy(app.config['MESSAGE_RETENTION_DAYS']),
        approved_users=lambda: approved_user_ids(db.session),
        grace=timedelta(seconds=app.config['RETENTION_GRACE_SECONDS']),
    )
    return ServiceRegistry(
        blob_store=blob_store,
        messages=messages,
        receipts=receipts,
        delivery=delivery,
        sweeper=sweeper,
    )


def _register_auth(app):
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, user_id)

    @login_manager.request_loader
    def load_user_from_request(req):
        return load_user_from_token()

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Authentication required'}), 401


def _register_request_logging(app):
    @app.before_request
    def start_timer():
        g.request_started = time.monotonic()

    @app.after_request
    def log_request(response):
        started = g.pop('request_started', None)
        elapsed_ms = (time.monotonic() - started) * 1000 if started is not None else 0.0
        message = f"{request.method} {request.path} {response.status_code} {elapsed_ms:.1f}ms"
        if response.status_code >= 500:
            app.logger.error(message)
        elif response.status_code >= 400:
            app.logger.warning(message)
        else:
            app.logger.info(message)
        return response


def create_app(config_overrides=None):
    """
    Application factory.

    Args:
        config_overrides: optional mapping applied on top of the
            environment-derived configuration (used by tests and scripts)
    """
    config = load_config()
    if config_overrides:
        config.update(config_overrides)
        if 'MAX_UPLOAD_BYTES' in config_overrides and 'MAX_CONTENT_LENGTH' not in config_overrides:
            config['MAX_CONTENT_LENGTH'] = int(config['MAX_UPLOAD_BYTES']) + 1024 * 1024
    validate_config(config)

    configure_logging(config['LOG_LEVEL'])

    app = Flask(__name__)
    app.config.update(config)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    db.init_app(app)
    _register_auth(app)
    limiter.init_app(app)

    with app.app_context():
        initialize_database(app)
        app.extensions['walkie'] = build_services(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(messages_bp)
    app.register_blueprint(admin_bp)

    _register_request_logging(app)

    @app.errorhandler(RequestEntityTooLarge)
    def handle_request_too_large(error):
        limit_mb = app.config['MAX_UPLOAD_BYTES'] / (1024 * 1024)
        return jsonify({'error': f'File too large. Maximum size is {limit_mb:.1f} MB.'}), 413

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({'status': 'ok'})

    run_startup_tasks(app)

    return app


if __name__ == '__main__':
    import argparse
    parser = argparse.ArgumentParser()
    parser.add_argument('--debug', action='store_true', help='Run in debug mode')
    parser.add_argument('--port', type=int, default=8080, help='Port to listen on')
    args = parser.parse_args()

    app = create_app()
    # Consider using waitress or gunicorn for production
    # For development:
    app.run(host='0.0.0.0', port=args.port, debug=args.debug, use_reloader=False)
