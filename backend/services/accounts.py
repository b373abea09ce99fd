"""User account creation and the first-run admin seed."""
import logging

from flask import current_app
from werkzeug.security import generate_password_hash

from backend.app import db
from backend.errors import ConflictError, ValidationError
from backend.models import USER_ROLES, Match, MatchParticipant, User
from backend.services.ledger import lock_match, refresh_pending_pot

logger = logging.getLogger(__name__)

_MAX_DISPLAY_NAME_LENGTH = 100


def normalize_display_name(raw_value):
    display_name = str(raw_value or '').strip()
    if not display_name:
        raise ValidationError('Display name is required')
    if len(display_name) > _MAX_DISPLAY_NAME_LENGTH:
        raise ValidationError(
            f'Display name must be {_MAX_DISPLAY_NAME_LENGTH} characters or less'
        )
    return display_name


def build_user(username, password, role='player', display_name=None):
    """Validate and stage a new user in the session (not committed)."""
    username = str(username or '').strip()
    if not username or not password:
        raise ValidationError('Username and password are required')
    if role not in USER_ROLES:
        raise ValidationError('Role must be admin, mini_admin, or player')
    if User.query.filter_by(username=username).first():
        raise ConflictError('Username already exists')

    user = User(
        username=username,
        display_name=normalize_display_name(display_name) if display_name else username,
        password_hash=generate_password_hash(password),
        role=role,
    )
    db.session.add(user)
    return user


def detach_user_participations(user):
    """Drop the user's seats in open matches and anonymize completed ones."""
    open_matches = []
    for participant in MatchParticipant.query.filter_by(user_id=user.id).all():
        if participant.match.status == 'completed':
            participant.user_id = None
        else:
            open_matches.append(participant.match)
            db.session.delete(participant)
    Match.query.filter(Match.admin_id == user.id).update(
        {'admin_id': None}, synchronize_session='fetch',
    )
    Match.query.filter(Match.mini_admin_id == user.id).update(
        {'mini_admin_id': None}, synchronize_session='fetch',
    )
    db.session.flush()
    for match in open_matches:
        refresh_pending_pot(lock_match(match.id))


def ensure_bootstrap_admin():
    """Create the configured admin account when no admin exists yet."""
    username = str(current_app.config.get('BOOTSTRAP_ADMIN_USERNAME') or '').strip()
    password = current_app.config.get('BOOTSTRAP_ADMIN_PASSWORD') or ''
    if not username or not password:
        return None
    if User.query.filter_by(role='admin').first():
        return None

    try:
        user = build_user(
            username, password, role='admin',
            display_name=current_app.config.get('BOOTSTRAP_ADMIN_DISPLAY_NAME') or username,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info('Bootstrap admin %s created', username)
    return user
