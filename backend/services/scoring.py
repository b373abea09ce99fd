"""
Ticket scoring rules for Mini Olympics matches.

Everything here is a pure function of explicit inputs so the rules can be
exercised without a database:

- Pot: K tickets per player, scaled by the match's effective time factor.
  pot = round(K * players * time_factor)
- Regular matches split the pot between winners (WIN share) and losers
  (LOSE share). The MVP gets an extra MVP_BONUS slice of the pot, added as
  bonus before any multiplier.
- Multipliers run in a fixed order: joker (x2) then momentum (x1.25). The
  order matters because momentum rounds.
- Tournaments use a flat pot split by rank weight:
  weight = P - rank + 1, tickets = round(pot * weight / (P(P+1)/2))

Shares are rounded independently, so the awarded total may drift from the
pot by a few tickets.
"""
import math
from dataclasses import dataclass, field
from typing import Callable

from backend.errors import ValidationError

JOKER_MULTIPLIER = 2
MOMENTUM_MULTIPLIER = 1.25


def round_half_up(value):
    """Round to the nearest integer, halves away from zero for positive values."""
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class ScoringSettings:
    k: int = 40
    win_fraction: float = 0.70
    lose_fraction: float = 0.30
    mvp_fraction: float = 0.05

    @classmethod
    def from_config(cls, app_config):
        return cls(
            k=int(app_config.get('SCORING_K', 40)),
            win_fraction=float(app_config.get('SCORING_WIN', 0.70)),
            lose_fraction=float(app_config.get('SCORING_LOSE', 0.30)),
            mvp_fraction=float(app_config.get('SCORING_MVP_BONUS', 0.05)),
        )


@dataclass(frozen=True)
class ParticipantState:
    """What the engine needs to know about a participant before scoring."""
    user_id: int
    joker_declared: bool = False
    joker_used: bool = False
    momentum_flag: bool = False


@dataclass(frozen=True)
class ParticipantAward:
    """Scored outcome for one participant plus the user-state changes it implies."""
    user_id: int
    is_winner: bool
    is_mvp: bool
    joker_played: bool
    momentum_triggered: bool
    base_tickets: int
    bonus_tickets: int
    total_tickets: int
    applied_multipliers: tuple = field(default=())

    @property
    def consumes_joker(self):
        return self.joker_played

    @property
    def clears_momentum(self):
        return self.momentum_triggered


@dataclass(frozen=True)
class MultiplierStage:
    name: str
    flag: str
    apply: Callable[[int], int]


MULTIPLIER_STAGES = (
    MultiplierStage('joker', 'joker_played', lambda total: total * JOKER_MULTIPLIER),
    MultiplierStage(
        'momentum', 'momentum_triggered',
        lambda total: round_half_up(total * MOMENTUM_MULTIPLIER),
    ),
)


def apply_multipliers(subtotal, flags, stages=MULTIPLIER_STAGES):
    """Run ``subtotal`` through each enabled stage in order.

    Args:
        subtotal: base + bonus tickets.
        flags: mapping of stage flag name -> bool.
        stages: ordered multiplier stages.

    Returns:
        (total, names of the stages that were applied)
    """
    total = subtotal
    applied = []
    for stage in stages:
        if flags.get(stage.flag):
            total = stage.apply(total)
            applied.append(stage.name)
    return total, tuple(applied)


def calculate_pot(k, participant_count, time_factor=1.0):
    return round_half_up(k * participant_count * time_factor)


def calculate_shares(pot, winner_count, loser_count, settings):
    """Return (winner_share, loser_share, mvp_bonus) for a regular match."""
    if winner_count <= 0:
        raise ValidationError('At least one winner is required')
    winner_share = round_half_up(pot * settings.win_fraction / winner_count)
    loser_share = round_half_up(pot * settings.lose_fraction / loser_count) if loser_count > 0 else 0
    mvp_bonus = round_half_up(pot * settings.mvp_fraction)
    return winner_share, loser_share, mvp_bonus


def calculate_regular_awards(states, winner_ids, mvp_id=None, settings=None, time_factor=1.0):
    """Score a winner/loser match.

    Args:
        states: list of ParticipantState, one per participant.
        winner_ids: iterable of winning user ids (non-empty, all participants).
        mvp_id: optional MVP user id, must be a participant.
        settings: ScoringSettings; defaults apply when omitted.
        time_factor: effective time factor of the match.

    Returns:
        (pot, list of ParticipantAward in the order of ``states``)
    """
    settings = settings or ScoringSettings()
    participant_ids = {state.user_id for state in states}
    winners = set(winner_ids or [])

    if not states:
        raise ValidationError('Match has no participants')
    if not winners:
        raise ValidationError('Winners list is required and cannot be empty')
    unknown = winners - participant_ids
    if unknown:
        raise ValidationError(f'Winners must be match participants (unknown: {sorted(unknown)})')
    if mvp_id is not None and mvp_id not in participant_ids:
        raise ValidationError('MVP must be a match participant')

    pot = calculate_pot(settings.k, len(states), time_factor)
    winner_share, loser_share, mvp_bonus = calculate_shares(
        pot, len(winners), len(states) - len(winners), settings,
    )

    awards = []
    for state in states:
        is_winner = state.user_id in winners
        is_mvp = mvp_id is not None and state.user_id == mvp_id
        joker_played = bool(state.joker_declared and not state.joker_used)
        momentum_triggered = bool(state.momentum_flag and is_winner)

        base = winner_share if is_winner else loser_share
        bonus = mvp_bonus if is_mvp else 0
        total, applied = apply_multipliers(base + bonus, {
            'joker_played': joker_played,
            'momentum_triggered': momentum_triggered,
        })
        awards.append(ParticipantAward(
            user_id=state.user_id,
            is_winner=is_winner,
            is_mvp=is_mvp,
            joker_played=joker_played,
            momentum_triggered=momentum_triggered,
            base_tickets=base,
            bonus_tickets=bonus,
            total_tickets=total,
            applied_multipliers=applied,
        ))
    return pot, awards


def validate_rankings(rankings, participant_ids):
    """Check a {user_id: rank} mapping against the match's participants."""
    participant_ids = set(participant_ids)
    if not participant_ids:
        raise ValidationError('Match has no participants')

    count = len(participant_ids)
    for user_id, rank in rankings.items():
        if user_id not in participant_ids:
            raise ValidationError(f'User {user_id} is not a participant in this match')
        if not isinstance(rank, int) or isinstance(rank, bool) or rank < 1:
            raise ValidationError('Each ranking must have a rank starting from 1')
        if rank > count:
            raise ValidationError(f'Rank {rank} exceeds the number of participants ({count})')

    missing = participant_ids - set(rankings)
    if missing:
        raise ValidationError(f'Rankings are missing participants: {sorted(missing)}')
    if len(set(rankings.values())) != len(rankings):
        raise ValidationError('Ranks must be unique per participant')


def calculate_tournament_awards(rankings, k=40):
    """Score a ranked tournament. ``rankings`` maps user id -> rank (1 = best).

    Returns:
        (pot, list of ParticipantAward ordered by rank)
    """
    count = len(rankings)
    pot = k * count
    weight_sum = count * (count + 1) / 2

    awards = []
    for user_id, rank in sorted(rankings.items(), key=lambda item: item[1]):
        weight = count - rank + 1
        tickets = round_half_up(pot * weight / weight_sum)
        awards.append(ParticipantAward(
            user_id=user_id,
            is_winner=rank == 1,
            is_mvp=False,
            joker_played=False,
            momentum_triggered=False,
            base_tickets=tickets,
            bonus_tickets=0,
            total_tickets=tickets,
        ))
    return pot, awards
