"""Scoring engine: turns declared match outcomes into persisted ticket awards.

Each completion loads and locks the match, scores it with the pure rules in
``backend.services.scoring``, writes the participant rows, the match and the
affected user state, then refreshes statistics and momentum flags. All of
that happens in a single transaction.
"""
import logging

from backend.app import db, socketio
from backend.errors import NotFoundError, ValidationError
from backend.models import Match
from backend.services.ledger import (
    active_participants, atomic, claim_completion, get_team_or_404,
    get_user_or_404, lock_match, scoring_settings,
)
from backend.services.momentum import recompute_momentum_flags
from backend.services.scoring import (
    ParticipantState, calculate_regular_awards, calculate_tournament_awards,
    validate_rankings,
)
from backend.services.statistics import recompute_user_stats
from backend.time_utils import isoformat_or_none, utcnow_naive

logger = logging.getLogger(__name__)


def _emit_scoreboard_update(match_id=None, reason=''):
    socketio.emit('scoreboard_update', {
        'match_id': match_id,
        'reason': reason,
        'updated_at': utcnow_naive().isoformat(),
    })


def _participant_states(participants, declared_now=()):
    declared_now = set(declared_now)
    return [
        ParticipantState(
            user_id=p.user_id,
            joker_declared=bool(p.joker_declared or p.user_id in declared_now),
            joker_used=bool(p.user.joker_used),
            momentum_flag=bool(p.user.momentum_flag),
        )
        for p in participants
    ]


def _persist_awards(participants, awards):
    rows_by_user = {p.user_id: p for p in participants}
    for award in awards:
        row = rows_by_user[award.user_id]
        row.is_winner = award.is_winner
        row.is_mvp = award.is_mvp
        row.joker_played = award.joker_played
        row.momentum_triggered = award.momentum_triggered
        row.base_tickets = award.base_tickets
        row.bonus_tickets = award.bonus_tickets
        row.total_tickets = award.total_tickets
        if award.consumes_joker:
            row.user.joker_used = True
        if award.clears_momentum:
            row.user.momentum_flag = False


def _refresh_derived_state(user_ids, settings):
    db.session.flush()
    recompute_user_stats(user_ids, settings.k)
    recompute_momentum_flags()


def _score_regular(match, winners, mvp_id, jokers_played, settings):
    participants = active_participants(match)
    participant_ids = {p.user_id for p in participants}

    declared_now = set(jokers_played or [])
    unknown_jokers = declared_now - participant_ids
    if unknown_jokers:
        raise ValidationError(
            f'Jokers can only be played by participants (unknown: {sorted(unknown_jokers)})'
        )

    pot, awards = calculate_regular_awards(
        _participant_states(participants, declared_now),
        winners, mvp_id,
        settings=settings,
        time_factor=match.effective_time_factor,
    )

    claim_completion(match)
    match.pot = pot
    _persist_awards(participants, awards)
    _refresh_derived_state(participant_ids, settings)
    return awards


def complete_match(match_id, winners, mvp_id=None, jokers_played=None):
    """Complete a winner/loser match and return its results projection."""
    settings = scoring_settings()
    with atomic('Match was completed concurrently'):
        match = lock_match(match_id)
        awards = _score_regular(match, winners, mvp_id, jokers_played, settings)

    logger.info(
        'Match %s completed: %d participant(s), %d ticket(s) awarded',
        match_id, len(awards), sum(a.total_tickets for a in awards),
    )
    _emit_scoreboard_update(match_id=match_id, reason='match_completed')
    return get_match_results(match_id)


def complete_team_match(match_id, winning_team_id, mvp_user_id=None):
    """Complete a team match: every member of the winning team is a winner."""
    settings = scoring_settings()
    with atomic('Match was completed concurrently'):
        match = lock_match(match_id)
        team = get_team_or_404(winning_team_id)
        if team.match_id != match.id:
            raise NotFoundError('Winning team not found in this match')

        winners = [p.user_id for p in team.participants if p.user_id is not None]
        if not winners:
            raise ValidationError('Winning team has no players')
        if mvp_user_id is not None and mvp_user_id not in winners:
            raise ValidationError('MVP must be from the winning team')

        _score_regular(match, winners, mvp_user_id, None, settings)
        match.winning_team_id = team.id

    logger.info('Team match %s completed, winning team %s', match_id, winning_team_id)
    _emit_scoreboard_update(match_id=match_id, reason='team_match_completed')
    return get_match_results(match_id)


def _rankings_to_map(rankings):
    mapping = {}
    for user_id, rank in rankings:
        if user_id in mapping:
            raise ValidationError(f'User {user_id} is ranked more than once')
        mapping[user_id] = rank
    return mapping


def complete_tournament(match_id, rankings):
    """Complete a ranked match from ``(user_id, rank)`` pairs, rank 1 best."""
    settings = scoring_settings()
    with atomic('Match was completed concurrently'):
        match = lock_match(match_id)
        participants = active_participants(match)
        rank_map = _rankings_to_map(rankings)
        validate_rankings(rank_map, [p.user_id for p in participants])

        pot, awards = calculate_tournament_awards(rank_map, settings.k)
        claim_completion(match)
        match.pot = pot
        _persist_awards(participants, awards)
        _refresh_derived_state(rank_map.keys(), settings)

    logger.info('Tournament match %s completed with %d ranked player(s)', match_id, len(rank_map))
    _emit_scoreboard_update(match_id=match_id, reason='tournament_completed')
    return get_match_results(match_id)


def _result_row(participant):
    user = participant.user
    return {
        'user_id': participant.user_id,
        'username': user.username,
        'display_name': user.display_name or user.username,
        'team_id': participant.team_id,
        'is_winner': participant.is_winner,
        'is_mvp': participant.is_mvp,
        'joker_played': participant.joker_played,
        'momentum_triggered': participant.momentum_triggered,
        'base_tickets': participant.base_tickets,
        'bonus_tickets': participant.bonus_tickets,
        'total_tickets': participant.total_tickets,
    }


def get_match_results(match_id):
    """Match metadata plus participants ordered by tickets, best first."""
    match = db.session.get(Match, match_id)
    if match is None:
        raise NotFoundError('Match not found')
    participants = active_participants(match)
    if not participants:
        raise NotFoundError('Match has no participants')

    participants.sort(key=lambda p: (-(p.total_tickets or 0), p.user.username))
    return {
        'id': match.id,
        'game_id': match.game_id,
        'game_name': match.game.name if match.game else None,
        'game_type': match.game.type if match.game else None,
        'pot': match.pot,
        'status': match.status,
        'timestamp': isoformat_or_none(match.timestamp),
        'completed_at': isoformat_or_none(match.completed_at),
        'time_factor': match.time_factor,
        'effective_time_factor': match.effective_time_factor,
        'winning_team_id': match.winning_team_id,
        'admin_id': match.admin_id,
        'mini_admin_id': match.mini_admin_id,
        'participants': [_result_row(p) for p in participants],
    }


def delete_match(match_id):
    """Delete a match; removing a completed one rewrites its players' aggregates."""
    settings = scoring_settings()
    with atomic():
        match = lock_match(match_id)
        record = match.to_dict()
        was_completed = match.status == 'completed'
        affected_user_ids = sorted({p.user_id for p in active_participants(match)}) \
            if was_completed else []

        db.session.delete(match)
        db.session.flush()
        if was_completed:
            recompute_user_stats(affected_user_ids, settings.k)
            recompute_momentum_flags()

    record['recalculated_user_ids'] = affected_user_ids
    if was_completed:
        logger.info(
            'Completed match %s deleted, statistics recalculated for %d user(s)',
            match_id, len(affected_user_ids),
        )
        _emit_scoreboard_update(match_id=match_id, reason='completed_match_deleted')
    else:
        logger.info('Match %s deleted', match_id)
    return record


def reset_user_joker(user_id):
    """Give a user their joker back (administrative action)."""
    with atomic():
        user = get_user_or_404(user_id)
        user.joker_used = False
    logger.info('Joker reset for user %s', user_id)
    return user.to_dict()
