"""Read-only projections over the ticket ledger."""
from sqlalchemy import case, func
from sqlalchemy.orm import aliased

from backend.app import db
from backend.errors import ValidationError
from backend.models import Game, Match, MatchParticipant, User
from backend.services.ledger import get_user_or_404
from backend.time_utils import isoformat_or_none


def get_leaderboard():
    """Users with at least one completed match, best efficiency first."""
    users = User.query.filter(User.matches_played > 0).order_by(
        User.efficiency.desc(),
        User.tickets_total.desc(),
        User.username.asc(),
    ).all()

    leaderboard = []
    for rank, user in enumerate(users, 1):
        leaderboard.append({
            'rank': rank, 'user_id': user.id,
            'username': user.username,
            'display_name': user.display_name or user.username,
            'matches_played': user.matches_played,
            'tickets_total': user.tickets_total,
            'efficiency': round(user.efficiency, 2),
            'joker_available': not user.joker_used,
            'momentum_flag': user.momentum_flag,
        })
    return leaderboard


def get_head_to_head(user1_id, user2_id):
    """Every completed match both users played, with the ticket differential."""
    if user1_id == user2_id:
        raise ValidationError('Cannot compare a player with themselves')
    user1 = get_user_or_404(user1_id)
    user2 = get_user_or_404(user2_id)

    mp1 = aliased(MatchParticipant)
    mp2 = aliased(MatchParticipant)
    rows = db.session.query(
        Match.id, Match.timestamp, Game.name,
        mp1.total_tickets, mp2.total_tickets,
    ).join(Game, Game.id == Match.game_id).join(
        mp1, (mp1.match_id == Match.id) & (mp1.user_id == user1.id),
    ).join(
        mp2, (mp2.match_id == Match.id) & (mp2.user_id == user2.id),
    ).filter(
        Match.status == 'completed',
    ).order_by(Match.timestamp.desc(), Match.id.desc()).all()

    matches = []
    for match_id, timestamp, game_name, user1_tickets, user2_tickets in rows:
        user1_tickets = int(user1_tickets or 0)
        user2_tickets = int(user2_tickets or 0)
        matches.append({
            'match_id': match_id,
            'timestamp': isoformat_or_none(timestamp),
            'game_name': game_name,
            'user1_tickets': user1_tickets,
            'user2_tickets': user2_tickets,
            'ticket_differential': user1_tickets - user2_tickets,
        })

    return {
        'user1': {'id': user1.id, 'username': user1.username},
        'user2': {'id': user2.id, 'username': user2.username},
        'matches': matches,
        'total_differential': sum(m['ticket_differential'] for m in matches),
        'match_count': len(matches),
    }


def users_with_records():
    """All users with win/loss counts from completed matches."""
    wins = func.coalesce(func.sum(case(
        (MatchParticipant.is_winner.is_(True), 1), else_=0,
    )), 0)
    played = func.count(MatchParticipant.id)
    completed_rows = db.session.query(
        MatchParticipant.user_id.label('user_id'),
        wins.label('wins'),
        played.label('played'),
    ).join(Match, Match.id == MatchParticipant.match_id).filter(
        Match.status == 'completed',
    ).group_by(MatchParticipant.user_id).subquery()

    rows = db.session.query(
        User, completed_rows.c.wins, completed_rows.c.played,
    ).outerjoin(completed_rows, completed_rows.c.user_id == User.id).all()

    results = []
    for user, wins_count, played_count in rows:
        wins_count = int(wins_count or 0)
        played_count = int(played_count or 0)
        data = user.to_dict()
        data['wins'] = wins_count
        data['losses'] = played_count - wins_count
        data['win_percentage'] = round(100.0 * wins_count / played_count, 1) if played_count else 0
        results.append(data)
    results.sort(key=lambda d: (-d['matches_played'], -d['wins'], d['display_name']))
    return results
