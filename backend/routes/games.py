from flask import Blueprint, request, jsonify
from backend.app import db
from backend.models import GAME_TYPES, Game
from backend.auth_utils import admin_required, login_required
from backend.services.ledger import (
    atomic, get_game_or_404, lock_match, refresh_pending_pot,
)

games_bp = Blueprint('games', __name__)


def _parse_positive_int(raw_value):
    if isinstance(raw_value, (bool, float)):
        return None
    try:
        value = int(raw_value)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def _parse_time_factor(raw_value):
    if isinstance(raw_value, bool):
        return None
    try:
        value = float(raw_value)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


@games_bp.route('', methods=['GET'])
@login_required
def get_games():
    games = Game.query.order_by(Game.name.asc()).all()
    return jsonify({'games': [g.to_dict() for g in games]})


@games_bp.route('/<int:game_id>', methods=['GET'])
@login_required
def get_game(game_id):
    return jsonify({'game': get_game_or_404(game_id).to_dict()})


@games_bp.route('', methods=['POST'])
@admin_required
def create_game():
    data = request.get_json(silent=True) or {}
    name = str(data.get('name') or '').strip()
    game_type = data.get('type')
    min_players = _parse_positive_int(data.get('min_players'))
    if not name or not game_type or not min_players:
        return jsonify({'error': 'Name, type, and min_players are required'}), 400
    if game_type not in GAME_TYPES:
        return jsonify({'error': 'Type must be team, individual, or tournament'}), 400

    max_players = None
    if data.get('max_players') not in (None, ''):
        max_players = _parse_positive_int(data.get('max_players'))
        if max_players is None or max_players < min_players:
            return jsonify({'error': 'max_players must be at least min_players'}), 400

    time_factor = 1.0
    if data.get('time_factor') not in (None, ''):
        time_factor = _parse_time_factor(data.get('time_factor'))
        if time_factor is None:
            return jsonify({'error': 'time_factor must be a positive number'}), 400

    with atomic():
        game = Game(
            name=name, type=game_type,
            min_players=min_players, max_players=max_players,
            time_factor=time_factor,
        )
        db.session.add(game)
    return jsonify({'game': game.to_dict()}), 201


@games_bp.route('/<int:game_id>', methods=['PUT'])
@admin_required
def update_game(game_id):
    data = request.get_json(silent=True) or {}
    game = get_game_or_404(game_id)

    if data.get('type') is not None and data['type'] not in GAME_TYPES:
        return jsonify({'error': 'Type must be team, individual, or tournament'}), 400
    updates = {}
    if data.get('name'):
        updates['name'] = str(data['name']).strip()
    if data.get('type'):
        updates['type'] = data['type']
    for field in ('min_players', 'max_players'):
        if data.get(field) not in (None, ''):
            value = _parse_positive_int(data[field])
            if value is None:
                return jsonify({'error': f'{field} must be a positive integer'}), 400
            updates[field] = value
    if data.get('time_factor') not in (None, ''):
        time_factor = _parse_time_factor(data['time_factor'])
        if time_factor is None:
            return jsonify({'error': 'time_factor must be a positive number'}), 400
        updates['time_factor'] = time_factor

    with atomic():
        for field, value in updates.items():
            setattr(game, field, value)
        if 'time_factor' in updates:
            for match in game.matches:
                if match.status != 'completed':
                    refresh_pending_pot(lock_match(match.id))
    return jsonify({'game': game.to_dict()})


@games_bp.route('/<int:game_id>', methods=['DELETE'])
@admin_required
def delete_game(game_id):
    game = get_game_or_404(game_id)
    if game.matches:
        return jsonify({'error': 'Game is referenced by existing matches'}), 409
    record = game.to_dict()
    with atomic():
        db.session.delete(game)
    return jsonify({'message': 'Game deleted successfully', 'game': record})
