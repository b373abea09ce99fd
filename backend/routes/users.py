"""User administration routes."""
from flask import Blueprint, request, jsonify
from backend.app import db
from backend.models import USER_ROLES, User
from backend.auth_utils import admin_required, login_required
from backend.services.accounts import (
    build_user, detach_user_participations, normalize_display_name,
)
from backend.services.leaderboard import users_with_records
from backend.services.ledger import atomic, get_user_or_404
from backend.services.scoring_engine import reset_user_joker

users_bp = Blueprint('users', __name__)


@users_bp.route('', methods=['GET'])
@admin_required
def list_users():
    users = User.query.order_by(User.created_at.desc(), User.id.desc()).all()
    return jsonify({'users': [u.to_dict() for u in users]})


@users_bp.route('/available', methods=['GET'])
@login_required
def available_users():
    """Users eligible for match participation, with win/loss records."""
    return jsonify({'users': users_with_records()})


@users_bp.route('/<int:user_id>', methods=['GET'])
@admin_required
def get_user(user_id):
    return jsonify({'user': get_user_or_404(user_id).to_dict()})


@users_bp.route('', methods=['POST'])
@admin_required
def create_user():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({'error': 'Invalid JSON payload'}), 400
    with atomic('Username already exists'):
        user = build_user(
            data.get('username'), data.get('password'),
            role=data.get('role') or 'player',
            display_name=data.get('display_name'),
        )
    return jsonify({'user': user.to_dict()}), 201


@users_bp.route('/<int:user_id>/role', methods=['PATCH'])
@admin_required
def update_role(user_id):
    data = request.get_json(silent=True) or {}
    role = data.get('role')
    if role not in USER_ROLES:
        return jsonify({'error': 'Role must be admin, mini_admin, or player'}), 400
    with atomic():
        user = get_user_or_404(user_id)
        user.role = role
    return jsonify({'user': user.to_dict()})


@users_bp.route('/<int:user_id>/display-name', methods=['PATCH'])
@login_required
def update_display_name(user_id):
    if user_id != request.current_user.id and not request.current_user.is_admin:
        return jsonify({'error': 'You can only update your own display name'}), 403
    data = request.get_json(silent=True) or {}
    with atomic():
        user = get_user_or_404(user_id)
        user.display_name = normalize_display_name(data.get('display_name'))
    return jsonify({'user': user.to_dict()})


@users_bp.route('/<int:user_id>/reset-joker', methods=['POST'])
@admin_required
def reset_joker(user_id):
    return jsonify({'user': reset_user_joker(user_id)})


@users_bp.route('/<int:user_id>', methods=['DELETE'])
@admin_required
def delete_user(user_id):
    if user_id == request.current_user.id:
        return jsonify({'error': 'You cannot delete your own account'}), 400
    with atomic():
        user = get_user_or_404(user_id)
        record = user.to_dict()
        detach_user_participations(user)
        db.session.delete(user)
    return jsonify({'message': 'User deleted successfully', 'user': record})
