# app.py

from flask import Flask, g, request, jsonify, has_app_context
from flask_migrate import Migrate
from config import get_config
from extensions import db, login_manager
import os
import uuid
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix
from logging_config import setup_logging, get_logger

# Configure logging as early as possible
setup_logging(app_name="field-service-portal", log_level=os.environ.get('LOG_LEVEL', 'INFO'))
logger = get_logger(__name__)


# Configure Sentry for production error tracking
def init_sentry():
    """Initialize Sentry error tracking in production."""
    sentry_dsn = os.environ.get('SENTRY_DSN')
    if sentry_dsn and os.environ.get('FLASK_ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
        from sentry_sdk.integrations.celery import CeleryIntegration

        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[
                FlaskIntegration(transaction_style='endpoint'),
                SqlalchemyIntegration(),
                CeleryIntegration()
            ],
            traces_sample_rate=0.1,
            environment=os.environ.get('FLASK_ENV', 'development'),
            release=os.environ.get('GIT_SHA', 'unknown')
        )
        logger.info("Sentry error tracking initialized")


init_sentry()


def create_app(config_name=None, test_config=None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__)

    config_class = get_config(config_name)
    app.config.from_object(config_class)

    if test_config:
        app.config.update(test_config)

    config_class.init_app(app)

    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    db.init_app(app)
    Migrate(app, db)

    # Service registry with lazy factories
    from services.registry import ServiceRegistry
    registry = ServiceRegistry()

    registry.register_transient('store', _get_request_store)
    registry.register_singleton('billing_client', lambda: _create_billing_client(app.config))

    registry.register_transient(
        'dispatcher',
        lambda store: _create_dispatcher(store, app.config),
        dependencies=['store']
    )
    registry.register_transient(
        'availability',
        lambda store: _create_availability_service(store),
        dependencies=['store']
    )
    registry.register_transient(
        'setting',
        lambda store: _create_setting_service(store),
        dependencies=['store']
    )
    registry.register_transient(
        'engagement',
        lambda store, billing_client: _create_engagement_service(store, billing_client, app.config),
        dependencies=['store', 'billing_client']
    )
    registry.register_transient(
        'recurrence',
        lambda store: _create_recurrence_service(store, app.config),
        dependencies=['store']
    )
    registry.register_transient(
        'billing_reconciliation',
        lambda store, billing_client: _create_billing_reconciliation_service(store, billing_client, app.config),
        dependencies=['store', 'billing_client']
    )
    registry.register_transient(
        'calendar',
        lambda store: _create_calendar_service(store, app.config),
        dependencies=['store']
    )

    errors = registry.validate_dependencies()
    if errors:
        raise RuntimeError(f"Service registry misconfigured: {errors}")

    # Attach registry to app
    app.services = registry

    # Identity comes from the session issued by the auth service
    login_manager.init_app(app)

    from portal_database import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Authentication required', 'code': 'UNAUTHORIZED'}), 401

    # Add request tracking middleware
    @app.before_request
    def before_request():
        g.request_id = request.headers.get('X-Request-ID') or str(uuid.uuid4())
        logger.info("Request started",
                    request_id=g.request_id,
                    method=request.method,
                    path=request.path)

    @app.after_request
    def after_request(response):
        response.headers['X-Request-ID'] = getattr(g, 'request_id', '')
        logger.info("Request completed",
                    request_id=getattr(g, 'request_id', None),
                    status_code=response.status_code)
        return response

    # Global error handlers
    from services.common.errors import EngagementError, StoreFailure

    @app.errorhandler(EngagementError)
    def engagement_error(error):
        log = logger.error if isinstance(error, StoreFailure) else logger.info
        log("Request rejected",
            request_id=getattr(g, 'request_id', None),
            code=error.code,
            error=error.message)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(HTTPException)
    def http_error(error):
        return jsonify({'error': error.description, 'code': error.name.upper().replace(' ', '_')}), error.code

    @app.errorhandler(500)
    def internal_error(error):
        logger.error("Internal server error",
                     request_id=getattr(g, 'request_id', None),
                     error=str(error))
        return jsonify({'error': 'Internal server error', 'code': 'INTERNAL_ERROR'}), 500

    # Health check endpoint - no auth required
    @app.route('/health')
    def health_check():
        """Health check endpoint for monitoring - no auth required"""
        from sqlalchemy import text
        from sqlalchemy.exc import SQLAlchemyError
        health_status = {
            'status': 'healthy',
            'service': 'field-service-portal'
        }

        try:
            db.session.execute(text('SELECT 1'))
            health_status['database'] = 'connected'
        except SQLAlchemyError as e:
            health_status['database'] = 'error'
            health_status['status'] = 'degraded'
            logger.error("Health check database error", error=str(e))

        return jsonify(health_status), 200 if health_status['status'] == 'healthy' else 503

    # Register blueprints for routes
    from routes.engagement_routes import engagement_bp
    from routes.availability_routes import availability_bp
    from routes.recurrence_routes import recurrence_bp
    from routes.calendar_routes import calendar_bp
    from routes.webhook_routes import webhook_bp

    app.register_blueprint(engagement_bp, url_prefix='/api/engagements')
    app.register_blueprint(availability_bp, url_prefix='/api')
    app.register_blueprint(recurrence_bp, url_prefix='/api')
    app.register_blueprint(calendar_bp, url_prefix='/api')
    app.register_blueprint(webhook_bp, url_prefix='/api')

    return app


# Service Factory Functions
# These are only called when the service is first requested

def _get_request_store():
    """One EngagementStore per application context over the scoped session"""
    from repositories.engagement_store import EngagementStore
    if has_app_context():
        store = g.get('engagement_store')
        if store is None:
            store = EngagementStore(db.session)
            g.engagement_store = store
        return store
    return EngagementStore(db.session)


def _create_billing_client(config):
    """Create BillingProviderClient, or None when no key is configured"""
    api_key = config.get('BILLING_API_KEY')
    if not api_key:
        logger.info("Billing provider not configured; provider commands disabled")
        return None
    from services.billing_provider_client import BillingProviderClient
    logger.info("Initializing BillingProviderClient")
    return BillingProviderClient(api_key=api_key, base_url=config.get('BILLING_API_BASE_URL'))


def _create_dispatcher(store, config):
    from services.notification_dispatcher import NotificationDispatcher, default_enqueue
    enqueue = default_enqueue if config.get('NOTIFICATION_QUEUE_ENABLED') else None
    return NotificationDispatcher(store, enqueue=enqueue)


def _create_availability_service(store):
    from services.availability_service import AvailabilityService
    return AvailabilityService(store.calendar_events)


def _create_setting_service(store):
    from services.setting_service import SettingService
    return SettingService(store.settings)


def _create_engagement_service(store, billing_client, config):
    from services.engagement_service import EngagementService
    return EngagementService(
        store=store,
        availability_service=_create_availability_service(store),
        dispatcher=_create_dispatcher(store, config),
        billing_client=billing_client,
    )


def _create_recurrence_service(store, config):
    from services.recurrence_service import RecurrenceService
    return RecurrenceService(
        store=store,
        setting_service=_create_setting_service(store),
        dispatcher=_create_dispatcher(store, config),
    )


def _create_billing_reconciliation_service(store, billing_client, config):
    from services.billing_reconciliation_service import BillingReconciliationService
    return BillingReconciliationService(
        store=store,
        engagement_service=_create_engagement_service(store, billing_client, config),
    )


def _create_calendar_service(store, config):
    from services.calendar_service import CalendarService
    return CalendarService(
        store,
        feed_domain=config.get('CALENDAR_FEED_DOMAIN', 'portal.local'),
        timezone_name=config.get('PORTAL_TIMEZONE', 'America/New_York'),
    )
