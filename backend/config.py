import os

basedir = os.path.abspath(os.path.dirname(__file__))


def _env_bool(name, default=False):
    raw = os.environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in {'1', 'true', 'yes', 'on'}


def _env_int(name, default):
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _env_float(name, default):
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def _env_optional_int(name):
    raw = str(os.environ.get(name) or '').strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _normalize_database_url(raw_url):
    if not raw_url:
        return raw_url
    if raw_url.startswith('postgres://'):
        return raw_url.replace('postgres://', 'postgresql://', 1)
    return raw_url


class BaseConfig:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-prod')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JWT_EXPIRATION_HOURS = _env_int('JWT_EXPIRATION_HOURS', 24)
    CORS_ALLOWED_ORIGINS = os.environ.get('CORS_ALLOWED_ORIGINS', '*')
    SOCKETIO_ASYNC_MODE = os.environ.get('SOCKETIO_ASYNC_MODE', 'threading')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Ticket scoring
    SCORING_K = _env_int('K', 40)
    SCORING_WIN = _env_float('WIN', 0.70)
    SCORING_LOSE = _env_float('LOSE', 0.30)
    SCORING_MVP_BONUS = _env_float('MVP_BONUS', 0.05)

    # Momentum: flag players ranked this low or worse over the recent window
    MOMENTUM_WINDOW = _env_int('MOMENTUM_WINDOW', 5)
    MOMENTUM_RANK_THRESHOLD = _env_int('MOMENTUM_RANK_THRESHOLD', 4)

    # Mini-admin assigned to matches created without one
    FALLBACK_ADMIN_ID = _env_optional_int('FALLBACK_ADMIN_ID')

    BOOTSTRAP_ADMIN_USERNAME = os.environ.get('BOOTSTRAP_ADMIN_USERNAME', '')
    BOOTSTRAP_ADMIN_PASSWORD = os.environ.get('BOOTSTRAP_ADMIN_PASSWORD', '')
    BOOTSTRAP_ADMIN_DISPLAY_NAME = os.environ.get('BOOTSTRAP_ADMIN_DISPLAY_NAME', '')


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _normalize_database_url(
        os.environ.get(
            'DATABASE_URL',
            'sqlite:///' + os.path.join(basedir, '..', 'mini_olympics_dev.db')
        )
    )


class TestingConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SCORING_K = 40
    SCORING_WIN = 0.70
    SCORING_LOSE = 0.30
    SCORING_MVP_BONUS = 0.05
    MOMENTUM_WINDOW = 5
    MOMENTUM_RANK_THRESHOLD = 4
    FALLBACK_ADMIN_ID = None
    BOOTSTRAP_ADMIN_USERNAME = ''
    BOOTSTRAP_ADMIN_PASSWORD = ''


class ProductionConfig(BaseConfig):
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _normalize_database_url(os.environ.get('DATABASE_URL'))


config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}
