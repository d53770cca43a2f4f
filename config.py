import os
import secrets
from dotenv import load_dotenv
from typing import Optional

# Find the absolute path of the root directory
basedir = os.path.abspath(os.path.dirname(__file__))

# Load the .env file from the root directory
load_dotenv(os.path.join(basedir, '.env'))


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid"""
    pass


def _env_flag(name: str, default: str = 'false') -> bool:
    return os.environ.get(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """
    Base configuration class. Contains default configuration settings
    and settings applicable to all environments.
    """
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)
    FLASK_ENV = os.environ.get('FLASK_ENV')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    @classmethod
    def validate_required_config(cls) -> None:
        """Validate that all required configuration is present"""
        # Skip validation in testing environment or during migrations
        if os.environ.get('FLASK_ENV') == 'testing' or os.environ.get('SKIP_ENV_VALIDATION'):
            return

        required_vars = []
        if not (os.environ.get('DATABASE_URL') or os.environ.get('POSTGRES_URI')):
            required_vars.append('DATABASE_URL')
        if os.environ.get('BILLING_API_KEY') and not os.environ.get('BILLING_WEBHOOK_SECRET'):
            # Webhook signatures are checked whenever a provider is configured
            required_vars.append('BILLING_WEBHOOK_SECRET')

        missing_vars = [var for var in required_vars if not os.environ.get(var)]
        if missing_vars:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing_vars)}"
            )

    @staticmethod
    def get_required_env(key: str) -> str:
        """Get required environment variable or raise error"""
        value = os.environ.get(key)
        if not value:
            raise ConfigurationError(f"Required environment variable {key} is not set")
        return value

    # Database settings
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or os.environ.get('POSTGRES_URI') or \
        'sqlite:///' + os.path.join(basedir, 'portal.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Billing provider
    BILLING_API_KEY = os.environ.get('BILLING_API_KEY')
    BILLING_API_BASE_URL = os.environ.get('BILLING_API_BASE_URL', 'https://api.billing.example.com/v1')
    BILLING_WEBHOOK_SECRET = os.environ.get('BILLING_WEBHOOK_SECRET')

    # Notification delivery service
    NOTIFICATION_SERVICE_URL = os.environ.get('NOTIFICATION_SERVICE_URL')
    NOTIFICATION_QUEUE_ENABLED = _env_flag('NOTIFICATION_QUEUE_ENABLED', 'true')

    # Calendar feed
    CALENDAR_FEED_DOMAIN = os.environ.get('CALENDAR_FEED_DOMAIN', 'portal.local')
    # Local time shown in feed event descriptions
    PORTAL_TIMEZONE = os.environ.get('PORTAL_TIMEZONE', 'America/New_York')

    ADMIN_EMAIL = os.environ.get('ADMIN_EMAIL')

    # Celery Configuration (standard uppercase prefixes)
    REDIS_URL = os.environ.get('REDIS_URL') or 'redis://redis:6379/0'
    CELERY_BROKER_URL = os.environ.get('REDIS_URL') or 'redis://redis:6379/0'
    CELERY_RESULT_BACKEND = os.environ.get('REDIS_URL') or 'redis://redis:6379/0'

    # Application settings
    MAX_CONTENT_LENGTH = 1 * 1024 * 1024  # JSON bodies only
    JSON_SORT_KEYS = False

    @classmethod
    def init_app(cls, app):
        """Initialize application with this config"""
        pass


class DevelopmentConfig(Config):
    """Development environment configuration"""
    DEBUG = True
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or \
        Config.SQLALCHEMY_DATABASE_URI

    # Deliver notifications only when a worker is actually running
    NOTIFICATION_QUEUE_ENABLED = _env_flag('NOTIFICATION_QUEUE_ENABLED', 'false')


class TestingConfig(Config):
    """Testing environment configuration"""
    TESTING = True
    DEBUG = True

    # Use in-memory SQLite for tests
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    # Disable login requirement for testing; identity comes from X-Test-User-Id
    LOGIN_DISABLED = True

    # Outbox rows stay pending; no broker in tests
    NOTIFICATION_QUEUE_ENABLED = False

    BILLING_API_KEY = None
    BILLING_WEBHOOK_SECRET = None
    NOTIFICATION_SERVICE_URL = None
    CALENDAR_FEED_DOMAIN = 'portal.test'

    CELERY_BROKER_URL = 'memory://'
    CELERY_RESULT_BACKEND = 'cache+memory://'

    @classmethod
    def init_app(cls, app):
        """Testing-specific initialization"""
        # SQLite only enforces foreign keys when asked to
        from sqlalchemy import event
        from sqlalchemy.engine import Engine

        @event.listens_for(Engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            if 'sqlite' in type(dbapi_connection).__module__:
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()


class ProductionConfig(Config):
    """Production environment configuration"""
    DEBUG = False
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', '')

    REDIS_URL = os.environ.get('REDIS_URL', '')
    CELERY_BROKER_URL = os.environ.get('REDIS_URL', '')
    CELERY_RESULT_BACKEND = os.environ.get('REDIS_URL', '')

    # If using rediss:// (SSL), append required parameters
    if CELERY_BROKER_URL.startswith('rediss://'):
        if 'ssl_cert_reqs' not in CELERY_BROKER_URL:
            # Use CERT_NONE for managed Redis/Valkey services
            separator = '&' if '?' in CELERY_BROKER_URL else '?'
            ssl_params = f"{separator}ssl_cert_reqs=CERT_NONE"
            CELERY_BROKER_URL += ssl_params
            CELERY_RESULT_BACKEND += ssl_params

    @classmethod
    def init_app(cls, app):
        """Production-specific initialization"""
        if not app.config.get('SQLALCHEMY_DATABASE_URI'):
            app.config['SQLALCHEMY_DATABASE_URI'] = cls.get_required_env('POSTGRES_URI')

        # Validate all required config
        cls.validate_required_config()


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name: Optional[str] = None) -> type[Config]:
    """Get configuration class based on environment"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    return config.get(config_name, DevelopmentConfig)
