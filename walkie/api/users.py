"""
User directory for approved devices.
"""

from flask import Blueprint, jsonify
from flask_login import login_required

from walkie.models import User

users_bp = Blueprint('users', __name__, url_prefix='/api/users')


@users_bp.route('', methods=['GET'])
@login_required
def list_users():
    users = User.query.filter_by(approved=True).order_by(User.name.asc()).all()
    return jsonify({'users': [u.to_public_dict() for u in users]})
