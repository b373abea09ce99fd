import logging
import sys

from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_socketio import SocketIO
from flask_cors import CORS
from werkzeug.exceptions import InternalServerError
from backend.config import config

db = SQLAlchemy()
socketio = SocketIO()

logger = logging.getLogger(__name__)


def _parse_allowed_origins(raw_origins):
    if not raw_origins:
        return '*'

    if isinstance(raw_origins, (list, tuple, set)):
        cleaned = [origin for origin in raw_origins if origin]
        return cleaned or '*'

    raw_text = str(raw_origins).strip()
    if not raw_text or raw_text == '*':
        return '*'

    origins = [origin.strip() for origin in raw_text.split(',') if origin.strip()]
    return origins or '*'


def _configure_logging(app):
    level_name = str(app.config.get('LOG_LEVEL') or 'INFO').upper()
    level = getattr(logging, level_name, logging.INFO)
    root = logging.getLogger()
    if not any(getattr(h, '_mini_olympics', False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        ))
        handler._mini_olympics = True
        root.addHandler(handler)
    root.setLevel(level)
    logging.getLogger('engineio').setLevel(logging.WARNING)
    logging.getLogger('socketio').setLevel(logging.WARNING)


def _register_error_handlers(app):
    from backend.errors import LedgerError

    @app.errorhandler(LedgerError)
    def _handle_ledger_error(exc):
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(InternalServerError)
    def _handle_internal_error(exc):
        original = getattr(exc, 'original_exception', None)
        logger.error('Unhandled exception', exc_info=original or exc)
        return jsonify({'error': 'Internal server error', 'kind': 'internal'}), 500


def create_app(config_name='development'):
    app = Flask(__name__)
    app.config.from_object(config[config_name])
    _configure_logging(app)

    allowed_origins = _parse_allowed_origins(app.config.get('CORS_ALLOWED_ORIGINS', '*'))
    if str(config_name).strip().lower() == 'production':
        secret_key = str(app.config.get('SECRET_KEY') or '').strip()
        if not secret_key or secret_key == 'dev-secret-key-change-in-prod':
            raise RuntimeError('SECRET_KEY must be set to a non-default value in production')

    db.init_app(app)
    socketio.init_app(
        app,
        cors_allowed_origins=allowed_origins,
        async_mode=app.config.get('SOCKETIO_ASYNC_MODE', 'threading'),
    )
    CORS(app, resources={r'/api/*': {'origins': allowed_origins}})
    _register_error_handlers(app)

    from backend.routes.auth import auth_bp
    from backend.routes.users import users_bp
    from backend.routes.games import games_bp
    from backend.routes.matches import matches_bp
    from backend.routes.teams import teams_bp
    from backend.routes.leaderboard import leaderboard_bp

    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(users_bp, url_prefix='/api/users')
    app.register_blueprint(games_bp, url_prefix='/api/games')
    app.register_blueprint(matches_bp, url_prefix='/api/matches')
    app.register_blueprint(teams_bp, url_prefix='/api/teams')
    app.register_blueprint(leaderboard_bp, url_prefix='/api/leaderboard')

    @app.route('/api/health')
    def health():
        return jsonify({'status': 'ok'})

    with app.app_context():
        from backend import models  # noqa: F401
        from backend.services.accounts import ensure_bootstrap_admin
        db.create_all()
        ensure_bootstrap_admin()

    return app
