from datetime import datetime, timedelta, timezone
from functools import wraps

import jwt
from flask import request, jsonify, current_app

from backend.app import db
from backend.models import Match, User


def generate_token(user):
    """Generate a JWT token for a user."""
    payload = {
        'user_id': user.id,
        'role': user.role,
        'exp': datetime.now(timezone.utc) + timedelta(
            hours=current_app.config.get('JWT_EXPIRATION_HOURS', 24)
        ),
    }
    return jwt.encode(payload, current_app.config['SECRET_KEY'], algorithm='HS256')


def _normalize_bearer_token(raw_token):
    token = str(raw_token or '').strip()
    if token.startswith('Bearer '):
        token = token.split(' ', 1)[1].strip()
    return token


def _decode_user_from_token(token):
    normalized = _normalize_bearer_token(token)
    if not normalized:
        return None, 'Authentication required'
    try:
        payload = jwt.decode(
            normalized, current_app.config['SECRET_KEY'], algorithms=['HS256']
        )
        user = db.session.get(User, payload['user_id'])
        if not user:
            return None, 'User not found'
        return user, None
    except jwt.ExpiredSignatureError:
        return None, 'Token expired'
    except jwt.InvalidTokenError:
        return None, 'Invalid token'


def login_required(f):
    """Decorator to require authentication on a route."""
    @wraps(f)
    def decorated(*args, **kwargs):
        user, error = _decode_user_from_token(request.headers.get('Authorization', ''))
        if error:
            return jsonify({'error': error}), 401
        request.current_user = user
        return f(*args, **kwargs)
    return decorated


def roles_required(*roles):
    """Decorator to require an authenticated user holding one of ``roles``."""
    allowed = set(roles)

    def decorator(f):
        @wraps(f)
        @login_required
        def decorated(*args, **kwargs):
            if request.current_user.role not in allowed:
                return jsonify({'error': 'Insufficient permissions'}), 403
            return f(*args, **kwargs)
        return decorated
    return decorator


def admin_required(f):
    """Decorator to require an authenticated admin user on a route."""
    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not request.current_user.is_admin:
            return jsonify({'error': 'Admin access required'}), 403
        return f(*args, **kwargs)
    return decorated


def match_manager_required(f):
    """Require an admin, or the admin/mini-admin of the match in ``match_id``."""
    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        match = db.session.get(Match, kwargs.get('match_id'))
        if not match:
            return jsonify({'error': 'Match not found'}), 404
        if not match.is_manager(request.current_user):
            return jsonify({'error': 'Admin or match mini-admin access required'}), 403
        return f(*args, **kwargs)
    return decorated
