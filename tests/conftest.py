import pytest
from werkzeug.security import generate_password_hash

from backend.app import create_app, db
from backend.auth_utils import generate_token
from backend.models import Game, Match, MatchParticipant, User
from backend.services.scoring import calculate_pot


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    """Create a user directly in the database."""
    def _make_user(username, role='player', password='password123', **fields):
        user = User(
            username=username, display_name=fields.pop('display_name', username),
            password_hash=generate_password_hash(password), role=role, **fields,
        )
        db.session.add(user)
        db.session.commit()
        return user
    return _make_user


@pytest.fixture
def headers_for(app):
    def _headers_for(user):
        return {'Authorization': f'Bearer {generate_token(user)}'}
    return _headers_for


@pytest.fixture
def admin(make_user):
    return make_user('admin', role='admin')


@pytest.fixture
def admin_headers(admin, headers_for):
    return headers_for(admin)


@pytest.fixture
def make_game(app):
    def _make_game(name='Darts', game_type='individual', time_factor=1.0, **fields):
        game = Game(
            name=name, type=game_type, time_factor=time_factor,
            min_players=fields.pop('min_players', 2), **fields,
        )
        db.session.add(game)
        db.session.commit()
        return game
    return _make_game


@pytest.fixture
def make_match(app, make_game):
    """Create a pending match with the given users seated."""
    def _make_match(players=(), game=None, admin=None, time_factor=1.0, **fields):
        game = game or make_game()
        match = Match(
            game_id=game.id, admin_id=admin.id if admin else None,
            time_factor=time_factor, **fields,
        )
        db.session.add(match)
        db.session.flush()
        for player in players:
            db.session.add(MatchParticipant(match_id=match.id, user_id=player.id))
        match.pot = calculate_pot(40, len(players), time_factor * game.time_factor)
        db.session.commit()
        return match
    return _make_match


@pytest.fixture
def players(make_user):
    """Four players named p1..p4."""
    return [make_user(f'p{i}') for i in range(1, 5)]
