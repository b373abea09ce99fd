import logging

from flask import Blueprint, request, jsonify
from werkzeug.security import check_password_hash
from backend.models import User
from backend.auth_utils import generate_token, login_required

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)


@auth_bp.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({'error': 'Invalid JSON payload'}), 400
    username = str(data.get('username') or '').strip()
    password = str(data.get('password') or '')
    if not username or not password:
        return jsonify({'error': 'Username and password are required'}), 400

    user = User.query.filter_by(username=username).first()
    if not user or not check_password_hash(user.password_hash, password):
        logger.info('Failed login for username %r', username)
        return jsonify({'error': 'Invalid credentials'}), 401

    return jsonify({'token': generate_token(user), 'user': user.to_dict()})


@auth_bp.route('/me', methods=['GET'])
@login_required
def me():
    return jsonify({'user': request.current_user.to_dict()})
