from flask import Blueprint, jsonify
from backend.auth_utils import login_required
from backend.services.leaderboard import get_head_to_head, get_leaderboard

leaderboard_bp = Blueprint('leaderboard', __name__)


@leaderboard_bp.route('', methods=['GET'])
@login_required
def leaderboard():
    return jsonify({'leaderboard': get_leaderboard()})


@leaderboard_bp.route('/head-to-head/<int:user1_id>/<int:user2_id>', methods=['GET'])
@login_required
def head_to_head(user1_id, user2_id):
    return jsonify(get_head_to_head(user1_id, user2_id))
