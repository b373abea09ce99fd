"""Tests for transactional match completion."""
import pytest
from sqlalchemy.exc import SQLAlchemyError

from backend.app import db
from backend.errors import ConflictError, NotFoundError, StorageError, ValidationError
from backend.models import Match, MatchParticipant, User
from backend.services import scoring_engine
from backend.services.momentum import set_momentum_policy
from backend.services.scoring_engine import (
    complete_match, complete_tournament, delete_match, get_match_results,
    reset_user_joker,
)


class _NobodyPolicy:
    def recent_rows(self):
        return []

    def flagged_user_ids(self, rows):
        return set()


def _tickets(match_id):
    rows = MatchParticipant.query.filter_by(match_id=match_id).all()
    return {row.user_id: row.total_tickets for row in rows}


def test_complete_match_awards_and_persists(players, make_match):
    match = make_match(players)
    results = complete_match(match.id, [players[0].id])

    assert results['status'] == 'completed'
    assert results['pot'] == 160
    assert [p['total_tickets'] for p in results['participants']] == [112, 16, 16, 16]
    assert results['participants'][0]['username'] == 'p1'

    db.session.expire_all()
    assert db.session.get(Match, match.id).status == 'completed'
    winner = db.session.get(User, players[0].id)
    assert winner.matches_played == 1
    assert winner.tickets_total == 112
    assert winner.efficiency == pytest.approx(280.0)
    loser = db.session.get(User, players[1].id)
    assert loser.efficiency == pytest.approx(40.0)


def test_results_ties_are_ordered_by_username(players, make_match):
    match = make_match(players)
    results = complete_match(match.id, [players[3].id])
    assert [p['username'] for p in results['participants']] == ['p4', 'p1', 'p2', 'p3']


def test_second_completion_is_a_conflict(players, make_match):
    match = make_match(players)
    complete_match(match.id, [players[0].id])
    with pytest.raises(ConflictError):
        complete_match(match.id, [players[1].id])

    db.session.expire_all()
    assert _tickets(match.id)[players[0].id] == 112
    assert db.session.get(User, players[0].id).matches_played == 1


def test_validation_failure_writes_nothing(players, make_match):
    match = make_match(players)
    with pytest.raises(ValidationError):
        complete_match(match.id, [players[0].id], mvp_id=999)
    with pytest.raises(ValidationError):
        complete_match(match.id, [])

    db.session.expire_all()
    assert db.session.get(Match, match.id).status == 'pending'
    assert set(_tickets(match.id).values()) == {0}


def test_missing_match_is_not_found(app):
    with pytest.raises(NotFoundError):
        complete_match(4242, [1])


def test_failure_after_awarding_rolls_back_everything(players, make_match, monkeypatch):
    match = make_match(players)

    def _boom(*args, **kwargs):
        raise RuntimeError('boom')

    monkeypatch.setattr(scoring_engine, 'recompute_momentum_flags', _boom)
    with pytest.raises(RuntimeError):
        complete_match(match.id, [players[0].id], jokers_played=[players[0].id])

    db.session.expire_all()
    assert db.session.get(Match, match.id).status == 'pending'
    assert set(_tickets(match.id).values()) == {0}
    winner = db.session.get(User, players[0].id)
    assert winner.joker_used is False
    assert winner.matches_played == 0


def test_storage_failure_is_reported_as_storage_error(players, make_match, monkeypatch):
    match = make_match(players)

    def _broken_store(*args, **kwargs):
        raise SQLAlchemyError('store unavailable')

    monkeypatch.setattr(scoring_engine, 'recompute_user_stats', _broken_store)
    with pytest.raises(StorageError):
        complete_match(match.id, [players[0].id])

    db.session.expire_all()
    assert db.session.get(Match, match.id).status == 'pending'


def test_joker_is_consumed_once(players, make_match):
    first = make_match(players)
    results = complete_match(first.id, [players[0].id], jokers_played=[players[0].id])
    assert results['participants'][0]['joker_played'] is True
    assert results['participants'][0]['total_tickets'] == 224

    db.session.expire_all()
    assert db.session.get(User, players[0].id).joker_used is True

    second = make_match(players)
    results = complete_match(second.id, [players[0].id], jokers_played=[players[0].id])
    assert results['participants'][0]['joker_played'] is False
    assert results['participants'][0]['total_tickets'] == 112


def test_declared_joker_on_participant_row_is_played(players, make_match):
    match = make_match(players)
    row = MatchParticipant.query.filter_by(match_id=match.id, user_id=players[1].id).first()
    row.joker_declared = True
    db.session.commit()

    results = complete_match(match.id, [players[0].id])
    by_user = {p['user_id']: p for p in results['participants']}
    assert by_user[players[1].id]['total_tickets'] == 32


def test_joker_for_non_participant_is_rejected(players, make_match, make_user):
    outsider = make_user('outsider')
    match = make_match(players)
    with pytest.raises(ValidationError):
        complete_match(match.id, [players[0].id], jokers_played=[outsider.id])


def test_reset_user_joker(players, make_match):
    match = make_match(players)
    complete_match(match.id, [players[0].id], jokers_played=[players[0].id])
    data = reset_user_joker(players[0].id)
    assert data['joker_used'] is False


def test_momentum_flag_is_set_and_cleared_on_use(players, make_match):
    p1, p2, p3, p4 = players
    complete_match(make_match(players).id, [p1.id])

    db.session.expire_all()
    assert db.session.get(User, p4.id).momentum_flag is True
    assert db.session.get(User, p1.id).momentum_flag is False

    results = complete_match(make_match(players).id, [p4.id])
    winner = results['participants'][0]
    assert winner['user_id'] == p4.id
    assert winner['momentum_triggered'] is True
    assert winner['total_tickets'] == 140

    db.session.expire_all()
    assert db.session.get(User, p4.id).momentum_flag is False


def test_momentum_flag_cleared_under_replaced_policy(app, players, make_match):
    p4 = players[3]
    p4.momentum_flag = True
    db.session.commit()
    set_momentum_policy(app, _NobodyPolicy())

    results = complete_match(make_match(players).id, [p4.id])
    assert results['participants'][0]['momentum_triggered'] is True

    db.session.expire_all()
    assert db.session.get(User, p4.id).momentum_flag is False


def test_effective_time_factor_combines_match_and_game(players, make_match, make_game):
    game = make_game(name='Relay', time_factor=1.5)
    match = make_match(players[:3], game=game, time_factor=2.0)
    results = complete_match(match.id, [players[0].id])
    assert results['effective_time_factor'] == pytest.approx(3.0)
    assert results['pot'] == 360
    assert results['participants'][0]['total_tickets'] == 252


def test_tournament_completion(players, make_match):
    p1, p2, p3, _ = players
    match = make_match([p1, p2, p3])
    results = complete_tournament(match.id, [(p2.id, 1), (p1.id, 2), (p3.id, 3)])

    assert results['pot'] == 120
    assert [(p['user_id'], p['total_tickets']) for p in results['participants']] == [
        (p2.id, 60), (p1.id, 40), (p3.id, 20),
    ]
    assert results['participants'][0]['is_winner'] is True
    db.session.expire_all()
    assert db.session.get(User, p2.id).tickets_total == 60


def test_tournament_rejects_repeated_user_and_bad_rank(players, make_match):
    p1, p2 = players[:2]
    match = make_match([p1, p2])
    with pytest.raises(ValidationError):
        complete_tournament(match.id, [(p1.id, 1), (p1.id, 2)])
    with pytest.raises(ValidationError):
        complete_tournament(match.id, [(p1.id, 0), (p2.id, 1)])
    db.session.expire_all()
    assert db.session.get(Match, match.id).status == 'pending'


def test_tournament_missing_participant_is_rejected(players, make_match):
    match = make_match(players[:3])
    with pytest.raises(ValidationError):
        complete_tournament(match.id, [(players[0].id, 1), (players[1].id, 2)])


def test_results_are_stable_between_reads(players, make_match):
    match = make_match(players)
    complete_match(match.id, [players[0].id], mvp_id=players[1].id)
    assert get_match_results(match.id) == get_match_results(match.id)


def test_results_need_participants(make_match):
    match = make_match([])
    with pytest.raises(NotFoundError):
        get_match_results(match.id)
    with pytest.raises(NotFoundError):
        get_match_results(4242)


def test_deleting_completed_match_recomputes_aggregates(players, make_match):
    p1, p2, p3, p4 = players
    first = make_match(players)
    complete_match(first.id, [p1.id])
    second = make_match([p1, p2])
    complete_match(second.id, [p2.id])

    db.session.expire_all()
    assert db.session.get(User, p1.id).matches_played == 2
    assert db.session.get(User, p1.id).tickets_total == 112 + 24

    record = delete_match(second.id)
    assert record['recalculated_user_ids'] == sorted([p1.id, p2.id])

    db.session.expire_all()
    assert db.session.get(Match, second.id) is None
    user1 = db.session.get(User, p1.id)
    assert (user1.matches_played, user1.tickets_total) == (1, 112)
    assert user1.efficiency == pytest.approx(280.0)
    user2 = db.session.get(User, p2.id)
    assert (user2.matches_played, user2.tickets_total) == (1, 16)
    assert MatchParticipant.query.filter_by(match_id=second.id).count() == 0


def test_deleting_pending_match_leaves_stats_alone(players, make_match):
    complete_match(make_match(players).id, [players[0].id])
    pending = make_match(players)
    record = delete_match(pending.id)
    assert record['recalculated_user_ids'] == []

    db.session.expire_all()
    assert db.session.get(User, players[0].id).matches_played == 1
