"""Team setup for team matches, and completion by winning team."""
from flask import Blueprint, request, jsonify
from backend.app import db
from backend.errors import ConflictError, NotFoundError, ValidationError
from backend.models import TEAM_COLORS, MatchParticipant, MatchTeam
from backend.auth_utils import login_required, match_manager_required
from backend.services.ledger import (
    atomic, find_participant, get_match_or_404, get_team_or_404,
)
from backend.services.scoring_engine import complete_team_match

teams_bp = Blueprint('teams', __name__)


def _parse_id(raw_value):
    if isinstance(raw_value, bool):
        return None
    if isinstance(raw_value, str) and raw_value.strip().isdigit():
        raw_value = int(raw_value.strip())
    if not isinstance(raw_value, int):
        return None
    return raw_value if raw_value > 0 else None


def _team_for_match(match_id, team_id):
    team = get_team_or_404(team_id)
    if team.match_id != match_id:
        raise NotFoundError('Team not found in this match')
    return team


@teams_bp.route('/match/<int:match_id>', methods=['GET'])
@login_required
def get_match_teams(match_id):
    match = get_match_or_404(match_id)
    unassigned = [
        p.to_dict() for p in match.participants
        if p.user_id is not None and p.team_id is None
    ]
    return jsonify({
        'teams': [t.to_dict(include_participants=True) for t in match.teams],
        'unassigned': unassigned,
    })


@teams_bp.route('/match/<int:match_id>', methods=['POST'])
@match_manager_required
def create_teams(match_id):
    data = request.get_json(silent=True) or {}
    raw_names = data.get('teamNames')
    if not isinstance(raw_names, list):
        return jsonify({'error': 'teamNames must be a list'}), 400
    names = [str(name or '').strip() for name in raw_names]
    if len(names) < 2 or not all(names):
        return jsonify({'error': 'At least 2 non-empty team names are required'}), 400
    if len(set(names)) != len(names):
        return jsonify({'error': 'Team names must be unique'}), 400

    with atomic('Team name already exists in this match'):
        match = get_match_or_404(match_id)
        if match.status == 'completed':
            raise ConflictError('Completed matches cannot be modified')
        offset = len(match.teams)
        teams = []
        for index, name in enumerate(names):
            if any(t.name == name for t in match.teams):
                raise ConflictError(f'Team "{name}" already exists in this match')
            team = MatchTeam(
                match_id=match.id, name=name,
                color=TEAM_COLORS[(offset + index) % len(TEAM_COLORS)],
            )
            db.session.add(team)
            teams.append(team)
    return jsonify({'teams': [t.to_dict() for t in teams]}), 201


@teams_bp.route('/match/<int:match_id>/assign', methods=['POST'])
@match_manager_required
def assign_player(match_id):
    data = request.get_json(silent=True) or {}
    user_id = _parse_id(data.get('user_id'))
    team_id = _parse_id(data.get('team_id'))
    if not user_id or not team_id:
        return jsonify({'error': 'user_id and team_id are required'}), 400

    with atomic():
        match = get_match_or_404(match_id)
        if match.status == 'completed':
            raise ConflictError('Completed matches cannot be modified')
        team = _team_for_match(match.id, team_id)
        participant = find_participant(match.id, user_id)
        if not participant:
            raise ValidationError('User is not a participant of this match')
        participant.team_id = team.id
    return jsonify({'participant': participant.to_dict()})


@teams_bp.route('/match/<int:match_id>/unassign/<int:user_id>', methods=['DELETE'])
@match_manager_required
def unassign_player(match_id, user_id):
    with atomic():
        match = get_match_or_404(match_id)
        if match.status == 'completed':
            raise ConflictError('Completed matches cannot be modified')
        participant = find_participant(match.id, user_id)
        if not participant:
            raise NotFoundError('User is not a participant of this match')
        participant.team_id = None
    return jsonify({'participant': participant.to_dict()})


@teams_bp.route('/<int:team_id>', methods=['DELETE'])
@login_required
def delete_team(team_id):
    team = get_team_or_404(team_id)
    if not team.match.is_manager(request.current_user):
        return jsonify({'error': 'Admin or match mini-admin access required'}), 403
    if team.match.status == 'completed':
        return jsonify({'error': 'Completed matches cannot be modified'}), 409

    record = team.to_dict()
    with atomic():
        MatchParticipant.query.filter_by(team_id=team.id).update(
            {'team_id': None}, synchronize_session='fetch',
        )
        db.session.delete(team)
    return jsonify({'message': 'Team deleted successfully', 'team': record})


@teams_bp.route('/match/<int:match_id>/complete-team', methods=['POST'])
@match_manager_required
def complete_by_team(match_id):
    data = request.get_json(silent=True) or {}
    winning_team_id = _parse_id(data.get('winning_team_id'))
    if not winning_team_id:
        return jsonify({'error': 'winning_team_id is required'}), 400
    mvp_user_id = None
    if data.get('mvp_user_id') not in (None, ''):
        mvp_user_id = _parse_id(data.get('mvp_user_id'))
        if mvp_user_id is None:
            return jsonify({'error': 'mvp_user_id must be a user ID'}), 400

    results = complete_team_match(match_id, winning_team_id, mvp_user_id=mvp_user_id)
    winning_team = db.session.get(MatchTeam, winning_team_id)
    return jsonify({
        'message': 'Team match completed',
        'match': results,
        'winning_team': winning_team.to_dict(include_participants=True),
    })
