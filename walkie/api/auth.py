"""
Device registration and login.

Devices register with a name and device id, wait for an admin to approve
them, then log in to receive an API token.
"""

from flask import Blueprint, current_app, jsonify, request

from walkie.database import db
from walkie.extensions import limiter
from walkie.models import APIToken, User
from walkie.utils import generate_token, hash_device_id, hash_token, isoformat_or_none, utcnow

# Create blueprint
auth_bp = Blueprint('auth', __name__, url_prefix='/auth')


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


@auth_bp.route('/register', methods=['POST'])
@limiter.limit("20 per hour")
def register():
    """
    Register a device.

    Request JSON:
        name (str): display name
        device_id (str): stable identifier of the device
    """
    data = _json_body()
    if data is None:
        return jsonify({'error': 'Invalid request body'}), 400

    name = (data.get('name') or '').strip() if isinstance(data.get('name'), str) else ''
    device_id = data.get('device_id') if isinstance(data.get('device_id'), str) else ''
    if not name or not device_id:
        return jsonify({'error': 'Name and device_id are required'}), 400

    device_hash = hash_device_id(device_id)
    existing = User.query.filter_by(device_hash=device_hash).first()
    if existing:
        return jsonify({
            'message': 'Device already registered. Awaiting approval.',
            'user_id': existing.id,
        }), 200

    is_admin = device_id in (current_app.config.get('ADMIN_DEVICE_IDS') or [])
    user = User(name=name[:100], device_hash=device_hash, approved=is_admin, is_admin=is_admin)
    db.session.add(user)
    db.session.commit()

    current_app.logger.info(f"User registered: user_id={user.id} name={user.name} admin={is_admin}")

    message = 'Registration successful.' if is_admin else 'Registration successful. Awaiting admin approval.'
    return jsonify({'message': message, 'user_id': user.id}), 201


@auth_bp.route('/login', methods=['POST'])
@limiter.limit("60 per hour")
def login():
    """
    Exchange a registered, approved device id for an API token.

    The plaintext token is only ever returned here.
    """
    data = _json_body()
    if data is None:
        return jsonify({'error': 'Invalid request body'}), 400

    device_id = data.get('device_id') if isinstance(data.get('device_id'), str) else ''
    if not device_id:
        return jsonify({'error': 'device_id is required'}), 400

    user = User.query.filter_by(device_hash=hash_device_id(device_id)).first()
    if not user:
        return jsonify({'error': 'Device not registered'}), 401
    if not user.approved:
        return jsonify({'error': 'User not approved yet'}), 403

    plaintext_token = generate_token()
    api_token = APIToken.issue(user, hash_token(plaintext_token), current_app.config.get('TOKEN_TTL_DAYS', 30))
    user.last_active_at = utcnow()
    db.session.add(api_token)
    db.session.commit()

    current_app.logger.info(f"User logged in: user_id={user.id} name={user.name}")

    return jsonify({
        'token': plaintext_token,
        'user_id': user.id,
        'name': user.name,
        'expires_at': isoformat_or_none(api_token.expires_at),
    })
