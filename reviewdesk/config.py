"""
ReviewDesk - Configuration
Environment-based configuration for different deployment stages
"""
import os
from dataclasses import dataclass
from typing import Any, Mapping


def _database_url(default: str) -> str:
    """Read DATABASE_URL, handling Render's postgres:// prefix"""
    db_url = os.environ.get('DATABASE_URL', '')
    if not db_url:
        return default

    # Render uses postgres:// but SQLAlchemy needs postgresql+psycopg://
    if db_url.startswith('postgres://'):
        db_url = db_url.replace('postgres://', 'postgresql+psycopg://', 1)
    elif db_url.startswith('postgresql://'):
        db_url = db_url.replace('postgresql://', 'postgresql+psycopg://', 1)
    return db_url


class BaseConfig:
    """Base configuration"""

    # Flask - Secret key (required in production)
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')

    # Warn if using dev key in production-like environment
    _is_production = os.environ.get('RENDER') or os.environ.get('FLASK_ENV') == 'production'
    if SECRET_KEY == 'dev-secret-key-change-in-production' and _is_production:
        import warnings
        warnings.warn("SECRET_KEY is using default dev value in production! Set SECRET_KEY env var.")

    # CORS
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*')

    @property
    def SQLALCHEMY_DATABASE_URI(self):
        return _database_url('sqlite:///reviewdesk.db')

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 300,
    }

    # Review platforms
    GOOGLE_PLACES_API_KEY = os.environ.get('GOOGLE_PLACES_API_KEY', '')
    YELP_API_KEY = os.environ.get('YELP_API_KEY', '')
    FACEBOOK_GRAPH_VERSION = os.environ.get('FACEBOOK_GRAPH_VERSION', 'v18.0')

    # Reply coach
    OPENAI_API_KEY = os.environ.get('OPENAI_API_KEY', '')
    REPLY_MODEL = os.environ.get('REPLY_MODEL', 'gpt-4o-mini')
    AUTO_DRAFT_REPLIES = os.environ.get('AUTO_DRAFT_REPLIES', 'true').lower() == 'true'

    # SMS (Twilio)
    TWILIO_ACCOUNT_SID = os.environ.get('TWILIO_ACCOUNT_SID', '')
    TWILIO_AUTH_TOKEN = os.environ.get('TWILIO_AUTH_TOKEN', '')
    TWILIO_FROM_NUMBER = os.environ.get('TWILIO_FROM_NUMBER', '')

    # Email (SendGrid, or SMTP when SendGrid is not configured)
    SENDGRID_API_KEY = os.environ.get('SENDGRID_API_KEY', '')
    FROM_EMAIL = os.environ.get('FROM_EMAIL', 'reviews@reviewdesk.app')
    FROM_NAME = os.environ.get('FROM_NAME', 'ReviewDesk')
    SMTP_HOST = os.environ.get('SMTP_HOST', '')
    SMTP_PORT = int(os.environ.get('SMTP_PORT', '587'))
    SMTP_USER = os.environ.get('SMTP_USER', '')
    SMTP_PASS = os.environ.get('SMTP_PASS', '')

    # Inbound webhook secrets
    ZAPIER_TOKEN = os.environ.get('ZAPIER_TOKEN', '')
    QBO_WEBHOOK_VERIFIER_TOKEN = os.environ.get('QBO_WEBHOOK_VERIFIER_TOKEN', '')
    INTERNAL_API_KEY = os.environ.get('INTERNAL_API_KEY', '')

    # Timeouts and retry policy
    FETCH_TIMEOUT_SECONDS = float(os.environ.get('FETCH_TIMEOUT_SECONDS', '20'))
    REPLY_TIMEOUT_SECONDS = float(os.environ.get('REPLY_TIMEOUT_SECONDS', '15'))
    NOTIFY_TIMEOUT_SECONDS = float(os.environ.get('NOTIFY_TIMEOUT_SECONDS', '10'))
    NOTIFY_MAX_ATTEMPTS = int(os.environ.get('NOTIFY_MAX_ATTEMPTS', '3'))
    NOTIFY_BACKOFF_SECONDS = float(os.environ.get('NOTIFY_BACKOFF_SECONDS', '2'))
    NOTIFY_STALE_PENDING_SECONDS = int(os.environ.get('NOTIFY_STALE_PENDING_SECONDS', '900'))
    SYNC_FAILURE_THRESHOLD = int(os.environ.get('SYNC_FAILURE_THRESHOLD', '3'))
    SYNC_INTERVAL_MINUTES = int(os.environ.get('SYNC_INTERVAL_MINUTES', '60'))

    # Rate limiting (flask-limiter)
    RATELIMIT_ENABLED = os.environ.get('RATE_LIMIT_ENABLED', 'true').lower() == 'true'


class DevelopmentConfig(BaseConfig):
    """Development configuration"""
    DEBUG = True
    TESTING = False


class ProductionConfig(BaseConfig):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    @property
    def SQLALCHEMY_DATABASE_URI(self):
        return _database_url('')


class TestingConfig(BaseConfig):
    """Testing configuration"""
    DEBUG = True
    TESTING = True

    @property
    def SQLALCHEMY_DATABASE_URI(self):
        """Use DATABASE_URL if set, otherwise in-memory SQLite"""
        return _database_url('sqlite:///:memory:')

    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False

    # Never talk to real services from tests
    GOOGLE_PLACES_API_KEY = 'test-key'
    YELP_API_KEY = 'test-key'
    OPENAI_API_KEY = 'test-key'
    TWILIO_ACCOUNT_SID = ''
    TWILIO_AUTH_TOKEN = ''
    SENDGRID_API_KEY = ''
    SMTP_HOST = ''
    ZAPIER_TOKEN = 'test-zapier-token'
    QBO_WEBHOOK_VERIFIER_TOKEN = 'test-qbo-verifier'
    INTERNAL_API_KEY = 'test-internal-key'
    AUTO_DRAFT_REPLIES = False
    NOTIFY_BACKOFF_SECONDS = 0.0


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


@dataclass(frozen=True)
class PipelineSettings:
    """
    Everything the pipeline components need, passed in at construction.

    Built once from the Flask config so services never read the process
    environment themselves.
    """
    google_places_api_key: str = ''
    yelp_api_key: str = ''
    facebook_graph_version: str = 'v18.0'
    openai_api_key: str = ''
    reply_model: str = 'gpt-4o-mini'
    auto_draft_replies: bool = True
    twilio_account_sid: str = ''
    twilio_auth_token: str = ''
    twilio_from_number: str = ''
    sendgrid_api_key: str = ''
    from_email: str = 'reviews@reviewdesk.app'
    from_name: str = 'ReviewDesk'
    smtp_host: str = ''
    smtp_port: int = 587
    smtp_user: str = ''
    smtp_pass: str = ''
    zapier_token: str = ''
    qbo_webhook_verifier_token: str = ''
    internal_api_key: str = ''
    fetch_timeout: float = 20.0
    reply_timeout: float = 15.0
    notify_timeout: float = 10.0
    notify_max_attempts: int = 3
    notify_backoff: float = 2.0
    notify_stale_pending: int = 900
    sync_failure_threshold: int = 3

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> 'PipelineSettings':
        """Build settings from a Flask config mapping"""
        return cls(
            google_places_api_key=cfg.get('GOOGLE_PLACES_API_KEY', ''),
            yelp_api_key=cfg.get('YELP_API_KEY', ''),
            facebook_graph_version=cfg.get('FACEBOOK_GRAPH_VERSION', 'v18.0'),
            openai_api_key=cfg.get('OPENAI_API_KEY', ''),
            reply_model=cfg.get('REPLY_MODEL', 'gpt-4o-mini'),
            auto_draft_replies=bool(cfg.get('AUTO_DRAFT_REPLIES', True)),
            twilio_account_sid=cfg.get('TWILIO_ACCOUNT_SID', ''),
            twilio_auth_token=cfg.get('TWILIO_AUTH_TOKEN', ''),
            twilio_from_number=cfg.get('TWILIO_FROM_NUMBER', ''),
            sendgrid_api_key=cfg.get('SENDGRID_API_KEY', ''),
            from_email=cfg.get('FROM_EMAIL', 'reviews@reviewdesk.app'),
            from_name=cfg.get('FROM_NAME', 'ReviewDesk'),
            smtp_host=cfg.get('SMTP_HOST', ''),
            smtp_port=int(cfg.get('SMTP_PORT', 587)),
            smtp_user=cfg.get('SMTP_USER', ''),
            smtp_pass=cfg.get('SMTP_PASS', ''),
            zapier_token=cfg.get('ZAPIER_TOKEN', ''),
            qbo_webhook_verifier_token=cfg.get('QBO_WEBHOOK_VERIFIER_TOKEN', ''),
            internal_api_key=cfg.get('INTERNAL_API_KEY', ''),
            fetch_timeout=float(cfg.get('FETCH_TIMEOUT_SECONDS', 20)),
            reply_timeout=float(cfg.get('REPLY_TIMEOUT_SECONDS', 15)),
            notify_timeout=float(cfg.get('NOTIFY_TIMEOUT_SECONDS', 10)),
            notify_max_attempts=max(1, int(cfg.get('NOTIFY_MAX_ATTEMPTS', 3))),
            notify_backoff=float(cfg.get('NOTIFY_BACKOFF_SECONDS', 2)),
            notify_stale_pending=max(1, int(cfg.get('NOTIFY_STALE_PENDING_SECONDS', 900))),
            sync_failure_threshold=max(1, int(cfg.get('SYNC_FAILURE_THRESHOLD', 3))),
        )
