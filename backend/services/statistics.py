"""Per-user aggregates derived from completed-match participations."""
import logging
from dataclasses import dataclass

from sqlalchemy import func

from backend.app import db
from backend.models import Match, MatchParticipant, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserStats:
    matches_played: int
    tickets_total: int
    efficiency: float


def calculate_efficiency(tickets_total, matches_played, k=40):
    """Tickets earned as a percentage of the K-per-match baseline."""
    if matches_played <= 0:
        return 0.0
    return tickets_total * 100.0 / (k * matches_played)


def completed_totals_by_user(user_ids):
    """Return {user_id: (matches_played, tickets_total)} over completed matches."""
    ids = [uid for uid in set(user_ids) if uid is not None]
    if not ids:
        return {}
    rows = db.session.query(
        MatchParticipant.user_id,
        func.count(MatchParticipant.id),
        func.coalesce(func.sum(MatchParticipant.total_tickets), 0),
    ).join(Match, Match.id == MatchParticipant.match_id).filter(
        Match.status == 'completed',
        MatchParticipant.user_id.in_(ids),
    ).group_by(MatchParticipant.user_id).all()
    return {user_id: (int(count), int(total)) for user_id, count, total in rows}


def recompute_user_stats(user_ids, k=40):
    """Rewrite matches_played, tickets_total and efficiency for ``user_ids``.

    Runs inside the caller's transaction; nothing is committed here.
    """
    ids = [uid for uid in set(user_ids) if uid is not None]
    if not ids:
        return {}
    totals = completed_totals_by_user(ids)
    users = User.query.filter(User.id.in_(ids)).all()

    results = {}
    for user in users:
        matches_played, tickets_total = totals.get(user.id, (0, 0))
        stats = UserStats(
            matches_played=matches_played,
            tickets_total=tickets_total,
            efficiency=calculate_efficiency(tickets_total, matches_played, k),
        )
        user.matches_played = stats.matches_played
        user.tickets_total = stats.tickets_total
        user.efficiency = stats.efficiency
        results[user.id] = stats
    db.session.flush()
    logger.debug('Recomputed statistics for %d user(s)', len(results))
    return results
