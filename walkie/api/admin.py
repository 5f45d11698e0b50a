"""
Administrative functions: user approval and on-demand retention sweeps.
"""

from functools import wraps

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from walkie.database import db
from walkie.models import User
from walkie.services import get_services

# Create blueprint
admin_bp = Blueprint('admin', __name__, url_prefix='/admin')


def admin_required(f):
    @wraps(f)
    @login_required
    def wrapper(*args, **kwargs):
        if not current_user.is_admin:
            return jsonify({'error': 'User is not an admin'}), 403
        return f(*args, **kwargs)
    return wrapper


@admin_bp.route('/users/pending', methods=['GET'])
@admin_required
def list_pending_users():
    users = User.query.filter_by(approved=False).order_by(User.created_at.asc()).all()
    return jsonify({'users': [u.to_dict() for u in users]})


@admin_bp.route('/users/approve', methods=['POST'])
@admin_required
def approve_user():
    """
    Approve a pending user so they can log in.

    Request JSON:
        user_id (str): the user to approve
    """
    data = request.get_json(silent=True)
    user_id = data.get('user_id') if isinstance(data, dict) else None
    if not user_id:
        return jsonify({'error': 'user_id is required'}), 400

    user = db.session.get(User, user_id)
    if not user:
        return jsonify({'error': 'User not found'}), 404

    user.approved = True
    db.session.commit()
    current_app.logger.info(f"User approved: user_id={user.id} name={user.name} by={current_user.id}")

    return jsonify({'message': 'User approved successfully'})


@admin_bp.route('/retention/run', methods=['POST'])
@admin_required
def run_retention_sweep():
    """Run one retention sweep tick now and return its statistics."""
    stats = get_services().sweeper.run_once()
    return jsonify(stats)
