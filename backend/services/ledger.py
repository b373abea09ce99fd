"""Data-access helpers shared by the scoring engine and the CRUD routes."""
import logging
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from backend.app import db
from backend.errors import ConflictError, LedgerError, NotFoundError, StorageError
from backend.models import Game, Match, MatchParticipant, MatchTeam, User
from backend.services.scoring import ScoringSettings, calculate_pot
from backend.time_utils import utcnow_naive

logger = logging.getLogger(__name__)


@contextmanager
def atomic(conflict_message='Conflicting update'):
    """Commit everything done in the block, or roll all of it back.

    Ledger errors are re-raised unchanged; integrity errors become
    ConflictError and other database errors become StorageError.
    """
    try:
        yield db.session
        db.session.commit()
    except LedgerError as exc:
        db.session.rollback()
        logger.warning('Transaction rolled back: %s', exc.message)
        raise
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning('Transaction rolled back on integrity error: %s', exc.orig)
        raise ConflictError(conflict_message) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception('Transaction rolled back on storage error')
        raise StorageError('Storage error, no changes were saved') from exc
    except Exception:
        db.session.rollback()
        raise


def scoring_settings():
    return ScoringSettings.from_config(current_app.config)


def get_or_404(model, object_id, label):
    obj = db.session.get(model, object_id) if object_id is not None else None
    if obj is None:
        raise NotFoundError(f'{label} not found')
    return obj


def get_user_or_404(user_id):
    return get_or_404(User, user_id, 'User')


def get_game_or_404(game_id):
    return get_or_404(Game, game_id, 'Game')


def get_team_or_404(team_id):
    return get_or_404(MatchTeam, team_id, 'Team')


def get_match_or_404(match_id):
    return get_or_404(Match, match_id, 'Match')


def lock_match(match_id):
    """Load a match with a row lock for the rest of the transaction."""
    match = db.session.query(Match).filter(
        Match.id == match_id,
    ).with_for_update().populate_existing().first()
    if match is None:
        raise NotFoundError('Match not found')
    return match


def claim_completion(match):
    """Move ``match`` to completed unless someone already did.

    The conditional UPDATE is the double-award guard: a second completion
    sees zero affected rows and gets a ConflictError.
    """
    if match.status == 'completed':
        raise ConflictError('Match is already completed')
    completed_at = utcnow_naive()
    affected = Match.query.filter(
        Match.id == match.id,
        Match.status != 'completed',
    ).update({'status': 'completed', 'completed_at': completed_at}, synchronize_session=False)
    if affected != 1:
        raise ConflictError('Match is already completed')
    match.status = 'completed'
    match.completed_at = completed_at


def active_participants(match):
    return [p for p in match.participants if p.user_id is not None]


def find_participant(match_id, user_id):
    return MatchParticipant.query.filter_by(match_id=match_id, user_id=user_id).first()


def refresh_pending_pot(match):
    """Keep a not-yet-completed match's pot in line with its participant count."""
    if match.status == 'completed':
        return match.pot
    count = MatchParticipant.query.filter(
        MatchParticipant.match_id == match.id,
        MatchParticipant.user_id.isnot(None),
    ).count()
    match.pot = calculate_pot(scoring_settings().k, count, match.effective_time_factor)
    return match.pot
