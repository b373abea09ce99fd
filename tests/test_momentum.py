"""Tests for momentum flag policies and recomputation."""
from backend.app import db
from backend.models import User
from backend.services.momentum import (
    RecentStandingsPolicy, get_momentum_policy, recompute_momentum_flags,
    set_momentum_policy,
)
from backend.services.scoring_engine import complete_match


def test_standings_sum_tickets_and_break_ties_by_username():
    policy = RecentStandingsPolicy(window=5, rank_threshold=4)
    rows = [
        (1, 'dave', 10), (2, 'carl', 30), (3, 'bea', 10),
        (1, 'dave', 25), (4, 'abe', 10), (None, None, 99),
    ]
    assert policy.standings(rows) == [1, 2, 4, 3]
    assert policy.flagged_user_ids(rows) == {3}


def test_threshold_flags_everyone_at_or_below_rank():
    policy = RecentStandingsPolicy(rank_threshold=2)
    rows = [(1, 'a', 30), (2, 'b', 20), (3, 'c', 10)]
    assert policy.flagged_user_ids(rows) == {2, 3}


def test_policy_defaults_come_from_config(app):
    app.config['MOMENTUM_WINDOW'] = 2
    app.config['MOMENTUM_RANK_THRESHOLD'] = 3
    policy = get_momentum_policy()
    assert (policy.window, policy.rank_threshold) == (2, 3)


def test_recompute_is_idempotent(players, make_match):
    complete_match(make_match(players).id, [players[0].id])
    first = recompute_momentum_flags()
    db.session.commit()
    second = recompute_momentum_flags()
    db.session.commit()
    assert first == second == {players[3].id}


def test_window_only_counts_recent_matches(app, players, make_match):
    p1, p2, p3, p4 = players
    set_momentum_policy(app, RecentStandingsPolicy(window=1, rank_threshold=2))
    complete_match(make_match(players).id, [p4.id])
    complete_match(make_match([p1, p2]).id, [p1.id])

    db.session.expire_all()
    flagged = {u.id for u in User.query.filter_by(momentum_flag=True)}
    assert flagged == {p2.id}


def test_replaced_policy_is_used(app, players, make_match):
    class _FlagFirst:
        def recent_rows(self):
            return []

        def flagged_user_ids(self, rows):
            return {players[0].id}

    set_momentum_policy(app, _FlagFirst())
    complete_match(make_match(players).id, [players[1].id])

    db.session.expire_all()
    assert db.session.get(User, players[0].id).momentum_flag is True
    assert db.session.get(User, players[3].id).momentum_flag is False


def test_window_follows_completion_order_not_match_date(app, players, make_match):
    from datetime import timedelta

    from backend.models import Match
    from backend.time_utils import utcnow_naive

    p1, p2, p3, p4 = players
    set_momentum_policy(app, RecentStandingsPolicy(window=1, rank_threshold=2))
    older = make_match([p1, p2], timestamp=utcnow_naive() - timedelta(days=30))
    newer = make_match([p3, p4], timestamp=utcnow_naive())

    complete_match(newer.id, [p3.id])
    complete_match(older.id, [p1.id])

    db.session.expire_all()
    assert db.session.get(Match, older.id).completed_at is not None
    flagged = {u.id for u in User.query.filter_by(momentum_flag=True)}
    assert flagged == {p2.id}
