"""Momentum flags: a catch-up bonus for players trailing in recent standings.

A flagged player earns x1.25 on their next win. The rule deciding who is
flagged is a policy object so it can be swapped per app without touching the
scoring engine.
"""
import logging

from flask import current_app
from sqlalchemy import func

from backend.app import db
from backend.models import Match, MatchParticipant, User

logger = logging.getLogger(__name__)

_POLICY_EXTENSION_KEY = 'momentum_policy'


class RecentStandingsPolicy:
    """Flag players ranked ``rank_threshold`` or worse over recent matches.

    Standings are each player's ticket total across the last ``window``
    most recently completed matches, ordered by tickets descending then
    username. Players absent from the window are never flagged.
    """

    def __init__(self, window=5, rank_threshold=4):
        self.window = max(1, int(window))
        self.rank_threshold = max(1, int(rank_threshold))

    def standings(self, rows):
        """Rank ``(user_id, username, total_tickets)`` rows into a list of user ids."""
        totals = {}
        usernames = {}
        for user_id, username, tickets in rows:
            if user_id is None:
                continue
            totals[user_id] = totals.get(user_id, 0) + int(tickets or 0)
            usernames[user_id] = username or ''
        return sorted(totals, key=lambda uid: (-totals[uid], usernames[uid]))

    def flagged_user_ids(self, rows):
        ranked = self.standings(rows)
        return {
            user_id
            for rank, user_id in enumerate(ranked, 1)
            if rank >= self.rank_threshold
        }

    def recent_rows(self):
        recent_ids = db.session.query(Match.id).filter(
            Match.status == 'completed',
        ).order_by(
            func.coalesce(Match.completed_at, Match.timestamp).desc(), Match.id.desc(),
        ).limit(self.window).all()
        match_ids = [row[0] for row in recent_ids]
        if not match_ids:
            return []
        return db.session.query(
            MatchParticipant.user_id, User.username, MatchParticipant.total_tickets,
        ).join(User, User.id == MatchParticipant.user_id).filter(
            MatchParticipant.match_id.in_(match_ids),
        ).all()


def set_momentum_policy(app, policy):
    app.extensions[_POLICY_EXTENSION_KEY] = policy


def get_momentum_policy():
    policy = current_app.extensions.get(_POLICY_EXTENSION_KEY)
    if policy is None:
        policy = RecentStandingsPolicy(
            window=current_app.config.get('MOMENTUM_WINDOW', 5),
            rank_threshold=current_app.config.get('MOMENTUM_RANK_THRESHOLD', 4),
        )
    return policy


def recompute_momentum_flags(policy=None):
    """Set momentum flags for every user from current standings.

    Idempotent: running it twice without new results changes nothing.
    Runs inside the caller's transaction.
    """
    policy = policy or get_momentum_policy()
    flagged = set(policy.flagged_user_ids(policy.recent_rows()))

    if flagged:
        User.query.filter(User.id.in_(flagged)).update(
            {'momentum_flag': True}, synchronize_session='fetch',
        )
        User.query.filter(User.id.notin_(flagged)).update(
            {'momentum_flag': False}, synchronize_session='fetch',
        )
    else:
        User.query.update({'momentum_flag': False}, synchronize_session='fetch')
    db.session.flush()
    logger.info('Momentum flags recomputed: %d user(s) flagged', len(flagged))
    return flagged
