# app.py

from flask import Flask, g, request, jsonify
from config import Config, get_config
from extensions import db, migrate
import atexit
import os
import uuid
from werkzeug.middleware.proxy_fix import ProxyFix
from logging_config import setup_logging, get_logger

# Configure logging as early as possible
setup_logging(
    app_name="conversion-engine",
    log_level=os.environ.get("LOG_LEVEL", "INFO"),
    json_logs=os.environ.get("FLASK_ENV") != "development"
)
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

    # Initialize app with config
    config_class.init_app(app)

    if test_config:
        app.config.update(test_config)

    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    db.init_app(app)
    migrate.init_app(app, db)

    # Shared with the worker so .delay() from routes reaches the same broker
    from celery_config import get_celery_app
    app.extensions['celery'] = get_celery_app()

    # Service registry with lazy loading
    from services.service_registry import create_registry
    registry = create_registry()

    # Repositories (db.session is scoped per app context)
    registry.register_singleton('booking_repository', _create_booking_repository)
    registry.register_singleton('conversion_attempt_repository', _create_conversion_attempt_repository)
    registry.register_singleton('alert_repository', _create_alert_repository)

    # Configuration and metrics
    registry.register_singleton('tracking_settings', lambda: _create_tracking_settings(app))
    registry.register_singleton('tracking_metrics', _create_tracking_metrics)

    # Delivery channels
    registry.register_singleton('event_sinks', lambda: _create_event_sinks(app))
    registry.register_singleton(
        'tag_transport',
        lambda tracking_settings: _create_tag_transport(app, tracking_settings),
        dependencies=['tracking_settings']
    )
    registry.register_singleton(
        'google_ads_client',
        _create_google_ads_client,
        dependencies=['tracking_settings']
    )

    # Monitoring
    registry.register_singleton(
        'alert',
        lambda alert_repository: _create_alert_service(app, alert_repository),
        dependencies=['alert_repository']
    )
    registry.register_singleton(
        'health_check',
        _create_health_check_service,
        dependencies=['tracking_settings', 'tag_transport', 'event_sinks',
                      'tracking_metrics', 'conversion_attempt_repository']
    )
    registry.register_singleton(
        'tracking_monitor',
        _create_tracking_monitor_service,
        dependencies=['alert', 'health_check', 'tracking_metrics', 'tracking_settings', 'tag_transport']
    )
    registry.register_singleton(
        'monitoring_lifecycle',
        lambda tracking_monitor: _create_monitoring_lifecycle(app, tracking_monitor),
        dependencies=['tracking_monitor']
    )

    # Delivery paths and reconciliation
    registry.register_singleton(
        'conversion_dispatcher',
        lambda tracking_settings, tag_transport, conversion_attempt_repository, tracking_monitor, event_sinks:
            _create_conversion_dispatcher(app, tracking_settings, tag_transport,
                                          conversion_attempt_repository, tracking_monitor, event_sinks),
        dependencies=['tracking_settings', 'tag_transport', 'conversion_attempt_repository',
                      'tracking_monitor', 'event_sinks']
    )
    registry.register_singleton(
        'backup_conversion',
        _create_backup_conversion_service,
        dependencies=['booking_repository', 'conversion_attempt_repository',
                      'google_ads_client', 'tracking_settings', 'tracking_monitor']
    )
    registry.register_singleton(
        'reconciliation',
        _create_reconciliation_service,
        dependencies=['booking_repository', 'conversion_attempt_repository']
    )

    # Validate dependencies at startup
    errors = registry.validate_dependencies()
    if errors:
        for error in errors:
            logger.error(f"Service dependency error: {error}")
        raise RuntimeError("Service registry has unresolved dependencies")

    order = registry.get_initialization_order()
    logger.debug(f"Service initialization order: {order}")

    # In-process timers for single-process deployments; workers use Celery beat.
    # Building the monitor loads persisted alerts, which needs the app context.
    if app.config.get('MONITORING_TIMERS_ENABLED'):
        with app.app_context():
            registry.get('monitoring_lifecycle').start()

    # Attach registry to app
    app.services = registry
    atexit.register(registry.shutdown)

    # Add request tracking middleware
    @app.before_request
    def before_request():
        g.request_id = str(uuid.uuid4())
        logger.info("Request started",
                    request_id=g.request_id,
                    method=request.method,
                    path=request.path)

    @app.after_request
    def after_request(response):
        logger.info("Request completed",
                    request_id=getattr(g, 'request_id', None),
                    status_code=response.status_code)
        return response

    # Global error handlers
    @app.errorhandler(500)
    def internal_error(error):
        logger.error("Internal server error",
                     request_id=getattr(g, 'request_id', None),
                     error=str(error))
        return jsonify({'success': False, 'error': 'Internal server error'}), 500

    @app.errorhandler(404)
    def not_found_error(error):
        logger.warning("Not found",
                       request_id=getattr(g, 'request_id', None),
                       path=request.path)
        return jsonify({'success': False, 'error': 'Not found'}), 404

    @app.errorhandler(403)
    def forbidden_error(error):
        return jsonify({'success': False, 'error': 'Forbidden'}), 403

    # Liveness endpoint - no API key required
    @app.route('/health')
    def health_check():
        """Health check endpoint for monitoring"""
        from sqlalchemy import text
        health_status = {
            'status': 'healthy',
            'service': app.config.get('SERVICE_NAME', 'google-ads-tracking')
        }

        try:
            db.session.execute(text('SELECT 1'))
            health_status['database'] = 'connected'
        except Exception as e:
            health_status['database'] = 'error'
            health_status['status'] = 'degraded'
            logger.error(f"Health check database error: {e}")

        return jsonify(health_status), 200 if health_status['status'] == 'healthy' else 503

    # Register blueprints for routes
    from routes.conversion_routes import conversion_bp
    app.register_blueprint(conversion_bp)

    return app


# Service Factory Functions
# These are only called when the service is first requested

def _create_booking_repository():
    from repositories.booking_repository import BookingRepository
    return BookingRepository(db.session)

def _create_conversion_attempt_repository():
    from repositories.conversion_attempt_repository import ConversionAttemptRepository
    return ConversionAttemptRepository(db.session)

def _create_alert_repository():
    from repositories.alert_repository import AlertRepository
    return AlertRepository(db.session)

def _create_tracking_settings(app):
    from services.tracking_settings import TrackingSettings
    settings = TrackingSettings.from_config(app.config)
    unresolved = settings.unresolved_labels()
    if unresolved:
        logger.warning("Conversion labels missing for actions", actions=unresolved)
    return settings

def _create_tracking_metrics():
    from services.tracking_metrics import TrackingMetrics
    return TrackingMetrics()

def _create_event_sinks(app):
    """Tag-manager queue sinks; an in-memory recorder when testing"""
    from services.event_sinks import InMemoryEventSink, RedisEventQueueSink
    if app.config.get('TESTING'):
        return [InMemoryEventSink(name='tag_manager_queue')]
    logger.info("Initializing tag-manager queue sink", queue=app.config['TAG_MANAGER_QUEUE_KEY'])
    return [RedisEventQueueSink.from_url(app.config['REDIS_URL'], app.config['TAG_MANAGER_QUEUE_KEY'])]

def _create_tag_transport(app, tracking_settings):
    from services.event_sinks import HttpTagTransport
    return HttpTagTransport(
        conversion_id=tracking_settings.conversion_id,
        endpoint_url=app.config['TAG_ENDPOINT_URL'],
        placeholder_check=Config.is_placeholder
    )

def _create_google_ads_client(tracking_settings):
    """Create GoogleAdsClient - token is fetched lazily on first upload"""
    from services.google_ads_client import GoogleAdsClient, GoogleAdsTokenProvider
    logger.info("Initializing GoogleAdsClient", api_version=tracking_settings.api_version)
    token_provider = GoogleAdsTokenProvider(
        client_id=tracking_settings.client_id,
        client_secret=tracking_settings.client_secret,
        refresh_token=tracking_settings.refresh_token
    )
    return GoogleAdsClient(
        developer_token=tracking_settings.developer_token,
        customer_id=tracking_settings.customer_id,
        token_provider=token_provider,
        api_version=tracking_settings.api_version,
        login_customer_id=tracking_settings.login_customer_id
    )

def _create_alert_service(app, alert_repository):
    from services.alert_service import AlertService
    logger.info("Initializing AlertService", webhook_configured=bool(app.config.get('ALERT_WEBHOOK_URL')))
    return AlertService(
        alert_repository=alert_repository,
        webhook_url=app.config.get('ALERT_WEBHOOK_URL'),
        environment=app.config.get('ENVIRONMENT', 'production'),
        service_name=app.config.get('SERVICE_NAME', 'google-ads-tracking'),
        retention_days=app.config.get('ALERTS_RETENTION_DAYS', 90)
    )

def _create_health_check_service(tracking_settings, tag_transport, event_sinks,
                                 tracking_metrics, conversion_attempt_repository):
    from services.health_check_service import HealthCheckService
    return HealthCheckService(
        settings=tracking_settings,
        tag_transport=tag_transport,
        event_sinks=event_sinks,
        metrics=tracking_metrics,
        attempt_repository=conversion_attempt_repository
    )

def _create_tracking_monitor_service(alert, health_check, tracking_metrics, tracking_settings, tag_transport):
    from services.tracking_monitor_service import TrackingMonitorService
    monitor = TrackingMonitorService(
        alert_service=alert,
        health_check_service=health_check,
        metrics=tracking_metrics,
        settings=tracking_settings
    )
    # Script-load timings and failures are reported by the transport itself
    tag_transport.monitor = monitor
    return monitor

def _create_conversion_dispatcher(app, tracking_settings, tag_transport, conversion_attempt_repository,
                                  tracking_monitor, event_sinks):
    from services.conversion_dispatcher_service import ConversionDispatcherService
    logger.info("Initializing ConversionDispatcherService", sinks=[sink.name for sink in event_sinks])
    return ConversionDispatcherService(
        settings=tracking_settings,
        tag_transport=tag_transport,
        attempt_repository=conversion_attempt_repository,
        monitor=tracking_monitor,
        event_sinks=event_sinks,
        context_factory=app.app_context,
        max_workers=int(app.config.get('TRACKING_DISPATCH_WORKERS', 4))
    )

def _create_backup_conversion_service(booking_repository, conversion_attempt_repository,
                                      google_ads_client, tracking_settings, tracking_monitor):
    from services.backup_conversion_service import BackupConversionService
    logger.info("Initializing BackupConversionService")
    return BackupConversionService(
        booking_repository=booking_repository,
        attempt_repository=conversion_attempt_repository,
        google_ads_client=google_ads_client,
        settings=tracking_settings,
        monitor=tracking_monitor
    )

def _create_reconciliation_service(booking_repository, conversion_attempt_repository):
    from services.reconciliation_service import ReconciliationService
    return ReconciliationService(
        booking_repository=booking_repository,
        attempt_repository=conversion_attempt_repository
    )

def _create_monitoring_lifecycle(app, tracking_monitor):
    from services.monitoring_lifecycle import MonitoringLifecycle, ThreadingScheduler
    return MonitoringLifecycle(
        monitor=tracking_monitor,
        scheduler=ThreadingScheduler(),
        basic_interval=app.config.get('HEALTH_CHECK_INTERVAL', 300),
        deep_interval=app.config.get('DEEP_HEALTH_CHECK_INTERVAL', 1800),
        is_active=lambda: not app.config.get('MONITORING_PAUSED', False),
        context_factory=app.app_context
    )


if __name__ == '__main__':
    app = create_app()
    app.run(debug=True)
