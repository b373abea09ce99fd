"""Match lifecycle routes: setup, participation, jokers and scoring."""
from flask import Blueprint, request, jsonify, current_app
from backend.app import db
from backend.errors import AuthorizationError, ConflictError, ValidationError
from backend.models import Match, MatchParticipant
from backend.auth_utils import (
    admin_required, login_required, match_manager_required, roles_required,
)
from backend.services.ledger import (
    atomic, find_participant, get_game_or_404, get_match_or_404,
    get_user_or_404, lock_match, refresh_pending_pot,
)
from backend.services.scoring_engine import (
    complete_match, complete_tournament, delete_match, get_match_results,
)

matches_bp = Blueprint('matches', __name__)

_EDITABLE_STATUSES = ('pending', 'in_progress')


def _strict_int(raw_value):
    """Integer from a JSON int or a digit string; floats and booleans are rejected."""
    if isinstance(raw_value, bool):
        return None
    if isinstance(raw_value, int):
        return raw_value
    if isinstance(raw_value, str) and raw_value.strip().isdigit():
        return int(raw_value.strip())
    return None


def _parse_user_ids(raw_ids):
    if not isinstance(raw_ids, list):
        return None
    ids = []
    for raw in raw_ids:
        value = _strict_int(raw)
        if value is None or value <= 0:
            return None
        ids.append(value)
    return ids


def _parse_optional_id(raw_value):
    """Return ``(value, ok)``; an absent value parses to ``(None, True)``."""
    if raw_value in (None, ''):
        return None, True
    value = _strict_int(raw_value)
    if value is None or value <= 0:
        return None, False
    return value, True


def _parse_rankings(raw_rankings):
    if not isinstance(raw_rankings, list) or not raw_rankings:
        return None
    pairs = []
    for entry in raw_rankings:
        if not isinstance(entry, dict):
            return None
        user_id = _strict_int(entry.get('user_id'))
        rank = _strict_int(entry.get('rank'))
        if user_id is None or rank is None:
            return None
        pairs.append((user_id, rank))
    return pairs


def _ensure_open(match):
    if match.status == 'completed':
        raise ConflictError('Completed matches cannot be modified')


def _add_participant(match, user):
    _ensure_open(match)
    if find_participant(match.id, user.id):
        raise ConflictError('User already joined this match')
    max_players = match.game.max_players if match.game else None
    active_count = MatchParticipant.query.filter(
        MatchParticipant.match_id == match.id,
        MatchParticipant.user_id.isnot(None),
    ).count()
    if max_players and active_count >= max_players:
        raise ValidationError('Match is full')
    db.session.add(MatchParticipant(match_id=match.id, user_id=user.id))
    db.session.flush()
    refresh_pending_pot(match)


def _remove_participant(match, user_id):
    _ensure_open(match)
    participant = find_participant(match.id, user_id)
    if not participant:
        return False
    db.session.delete(participant)
    db.session.flush()
    refresh_pending_pot(match)
    return True


@matches_bp.route('', methods=['GET'])
@login_required
def list_matches():
    query = Match.query
    status = request.args.get('status')
    if status:
        query = query.filter(Match.status == status)
    matches = query.order_by(Match.timestamp.desc(), Match.id.desc()).all()
    return jsonify({'matches': [m.to_dict() for m in matches]})


@matches_bp.route('/participation', methods=['GET'])
@login_required
def my_participation():
    """Which matches the current user is in, and where a joker is declared."""
    rows = MatchParticipant.query.filter_by(user_id=request.current_user.id).all()
    participation = {
        str(row.match_id): {
            'joined': True,
            'joker_declared': row.joker_declared,
            'team_id': row.team_id,
            'status': row.match.status,
        }
        for row in rows
    }
    return jsonify({
        'participation': participation,
        'joker_available': not request.current_user.joker_used,
    })


@matches_bp.route('/<int:match_id>', methods=['GET'])
@login_required
def get_match(match_id):
    match = get_match_or_404(match_id)
    return jsonify({'match': match.to_dict(include_participants=True)})


@matches_bp.route('', methods=['POST'])
@roles_required('admin', 'mini_admin')
def create_match():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({'error': 'Invalid JSON payload'}), 400

    game_id, ok = _parse_optional_id(data.get('game_id'))
    if not ok or game_id is None:
        return jsonify({'error': 'A valid game_id is required'}), 400
    mini_admin_id, ok = _parse_optional_id(data.get('mini_admin_id'))
    if not ok:
        return jsonify({'error': 'mini_admin_id must be a user id'}), 400

    time_factor = 1.0
    if data.get('time_factor') not in (None, ''):
        try:
            time_factor = float(data['time_factor'])
        except (TypeError, ValueError):
            time_factor = 0
        if time_factor <= 0:
            return jsonify({'error': 'time_factor must be a positive number'}), 400

    with atomic():
        game = get_game_or_404(game_id)
        if mini_admin_id is None:
            mini_admin_id = current_app.config.get('FALLBACK_ADMIN_ID')
        if mini_admin_id is not None:
            get_user_or_404(mini_admin_id)
        match = Match(
            game_id=game.id,
            admin_id=request.current_user.id,
            mini_admin_id=mini_admin_id,
            time_factor=time_factor,
            pot=0,
            status='pending',
        )
        db.session.add(match)
    return jsonify({'match': match.to_dict()}), 201


@matches_bp.route('/<int:match_id>/join', methods=['POST'])
@login_required
def join_match(match_id):
    with atomic('User already joined this match'):
        match = lock_match(match_id)
        _add_participant(match, request.current_user)
    return jsonify({'match': match.to_dict(include_participants=True)}), 201


@matches_bp.route('/<int:match_id>/leave', methods=['DELETE'])
@login_required
def leave_match(match_id):
    with atomic():
        match = lock_match(match_id)
        if not _remove_participant(match, request.current_user.id):
            return jsonify({'error': 'You are not in this match'}), 404
    return jsonify({'match': match.to_dict(include_participants=True)})


@matches_bp.route('/<int:match_id>/participants', methods=['POST'])
@match_manager_required
def add_participant(match_id):
    data = request.get_json(silent=True) or {}
    user_id, ok = _parse_optional_id(data.get('user_id'))
    if not ok or user_id is None:
        return jsonify({'error': 'A valid user_id is required'}), 400
    with atomic('User already joined this match'):
        match = lock_match(match_id)
        _add_participant(match, get_user_or_404(user_id))
    return jsonify({'match': match.to_dict(include_participants=True)}), 201


@matches_bp.route('/<int:match_id>/participants/<int:user_id>', methods=['DELETE'])
@match_manager_required
def remove_participant(match_id, user_id):
    with atomic():
        match = lock_match(match_id)
        if not _remove_participant(match, user_id):
            return jsonify({'error': 'User is not in this match'}), 404
    return jsonify({'match': match.to_dict(include_participants=True)})


@matches_bp.route('/<int:match_id>/status', methods=['PATCH'])
@match_manager_required
def update_status(match_id):
    data = request.get_json(silent=True) or {}
    status = data.get('status')
    if status not in _EDITABLE_STATUSES:
        return jsonify({
            'error': 'Status must be pending or in_progress; use the completion routes to finish a match',
        }), 400
    with atomic():
        match = get_match_or_404(match_id)
        _ensure_open(match)
        match.status = status
    return jsonify({'match': match.to_dict()})


def _reassign(match_id, field):
    data = request.get_json(silent=True) or {}
    user_id, ok = _parse_optional_id(data.get('user_id'))
    if not ok:
        return jsonify({'error': 'user_id must be a user id'}), 400
    with atomic():
        match = get_match_or_404(match_id)
        if user_id is not None:
            get_user_or_404(user_id)
        setattr(match, field, user_id)
    return jsonify({'match': match.to_dict()})


@matches_bp.route('/<int:match_id>/admin', methods=['PATCH'])
@admin_required
def update_match_admin(match_id):
    return _reassign(match_id, 'admin_id')


@matches_bp.route('/<int:match_id>/mini-admin', methods=['PATCH'])
@admin_required
def update_match_mini_admin(match_id):
    return _reassign(match_id, 'mini_admin_id')


@matches_bp.route('/<int:match_id>/declare-joker', methods=['POST'])
@login_required
def declare_joker(match_id):
    user = request.current_user
    with atomic():
        match = get_match_or_404(match_id)
        if match.status != 'pending':
            raise ValidationError('Jokers can only be declared before the match starts')
        participant = find_participant(match.id, user.id)
        if not participant:
            raise ValidationError('You must join the match before declaring a joker')
        if user.joker_used:
            raise ValidationError('Your joker has already been used')
        participant.joker_declared = True
    return jsonify({'participant': participant.to_dict()})


@matches_bp.route('/<int:match_id>/declare-joker', methods=['DELETE'])
@login_required
def withdraw_joker(match_id):
    with atomic():
        match = get_match_or_404(match_id)
        if match.status != 'pending':
            raise ValidationError('Jokers can only be withdrawn before the match starts')
        participant = find_participant(match.id, request.current_user.id)
        if not participant:
            raise ValidationError('You are not in this match')
        participant.joker_declared = False
    return jsonify({'participant': participant.to_dict()})


@matches_bp.route('/<int:match_id>/complete', methods=['POST'])
@match_manager_required
def complete(match_id):
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({'error': 'Invalid JSON payload'}), 400

    winners = _parse_user_ids(data.get('winners'))
    if winners is None:
        return jsonify({'error': 'winners must be a list of user IDs'}), 400
    mvp_id, ok = _parse_optional_id(data.get('mvp_id'))
    if not ok:
        return jsonify({'error': 'mvp_id must be a user ID'}), 400
    jokers_played = _parse_user_ids(data.get('jokers_played') or [])
    if jokers_played is None:
        return jsonify({'error': 'jokers_played must be a list of user IDs'}), 400

    results = complete_match(match_id, winners, mvp_id=mvp_id, jokers_played=jokers_played)
    return jsonify({'message': 'Match completed', 'match': results})


@matches_bp.route('/<int:match_id>/complete-tournament', methods=['POST'])
@match_manager_required
def complete_ranked(match_id):
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({'error': 'Invalid JSON payload'}), 400

    rankings = _parse_rankings(data.get('player_rankings'))
    if rankings is None:
        return jsonify({
            'error': 'player_rankings must be a non-empty list of {user_id, rank} objects',
        }), 400

    results = complete_tournament(match_id, rankings)
    return jsonify({'message': 'Tournament completed', 'match': results})


@matches_bp.route('/<int:match_id>/results', methods=['GET'])
@login_required
def results(match_id):
    return jsonify({'match': get_match_results(match_id)})


@matches_bp.route('/<int:match_id>', methods=['DELETE'])
@login_required
def remove_match(match_id):
    match = get_match_or_404(match_id)
    user = request.current_user
    if match.status == 'completed' and not user.is_admin:
        raise AuthorizationError('Only admins can delete completed matches')
    if not match.is_manager(user):
        raise AuthorizationError('Admin or match mini-admin access required')
    record = delete_match(match_id)
    return jsonify({'message': 'Match deleted successfully', 'match': record})
