import os
import json
import secrets
from dotenv import load_dotenv
from typing import Optional, Dict

# Find the absolute path of the root directory
basedir = os.path.abspath(os.path.dirname(__file__))

# Load the .env file from the root directory
load_dotenv(os.path.join(basedir, '.env'))

# Values shipped in example env files that must never reach the ad platform
PLACEHOLDER_MARKERS = ('XXXXXXXXX', 'your_', 'placeholder', 'changeme')


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid"""
    pass


def _load_labels(raw: Optional[str]) -> Dict[str, str]:
    """Parse GOOGLE_ADS_CONVERSION_LABELS ({"purchase": "AbC..."})"""
    if not raw:
        return {}
    try:
        labels = json.loads(raw)
    except ValueError:
        raise ConfigurationError("GOOGLE_ADS_CONVERSION_LABELS must be a JSON object")
    if not isinstance(labels, dict):
        raise ConfigurationError("GOOGLE_ADS_CONVERSION_LABELS must be a JSON object")
    return {str(k): str(v) for k, v in labels.items()}


class Config:
    """
    Base configuration class. Contains default configuration settings
    and settings applicable to all environments.
    """
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)
    FLASK_ENV = os.environ.get('FLASK_ENV')
    ENVIRONMENT = os.environ.get('ENVIRONMENT', 'production')
    SERVICE_NAME = 'google-ads-tracking'

    # Google Ads credentials that must be present outside of testing
    REQUIRED_GOOGLE_ADS_VARS = [
        'GOOGLE_ADS_DEVELOPER_TOKEN',
        'GOOGLE_ADS_CLIENT_ID',
        'GOOGLE_ADS_CLIENT_SECRET',
        'GOOGLE_ADS_REFRESH_TOKEN',
        'GOOGLE_ADS_CUSTOMER_ID',
    ]

    @classmethod
    def validate_required_config(cls) -> None:
        """Validate that all required configuration is present"""
        # Skip validation in testing environment or during migrations
        if os.environ.get('FLASK_ENV') == 'testing' or os.environ.get('SKIP_ENV_VALIDATION'):
            return

        missing_vars = []
        for var in cls.REQUIRED_GOOGLE_ADS_VARS:
            value = os.environ.get(var)
            if not value or cls.is_placeholder(value):
                missing_vars.append(var)

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

    @staticmethod
    def is_placeholder(value: Optional[str]) -> bool:
        """True for empty values and the dummy ids shipped in .env.example"""
        if not value:
            return True
        lowered = str(value).lower()
        return any(marker.lower() in lowered for marker in PLACEHOLDER_MARKERS)

    # Database settings
    SQLALCHEMY_DATABASE_URI = os.environ.get('POSTGRES_URI') or \
        'sqlite:///' + os.path.join(basedir, 'bookings.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Google Ads API
    GOOGLE_ADS_DEVELOPER_TOKEN = os.environ.get('GOOGLE_ADS_DEVELOPER_TOKEN')
    GOOGLE_ADS_CLIENT_ID = os.environ.get('GOOGLE_ADS_CLIENT_ID')
    GOOGLE_ADS_CLIENT_SECRET = os.environ.get('GOOGLE_ADS_CLIENT_SECRET')
    GOOGLE_ADS_REFRESH_TOKEN = os.environ.get('GOOGLE_ADS_REFRESH_TOKEN')
    GOOGLE_ADS_CUSTOMER_ID = os.environ.get('GOOGLE_ADS_CUSTOMER_ID')
    GOOGLE_ADS_LOGIN_CUSTOMER_ID = os.environ.get('GOOGLE_ADS_LOGIN_CUSTOMER_ID')
    GOOGLE_ADS_PURCHASE_CONVERSION_ACTION = os.environ.get('GOOGLE_ADS_PURCHASE_CONVERSION_ACTION')
    GOOGLE_ADS_API_VERSION = os.environ.get('GOOGLE_ADS_API_VERSION', 'v14')
    GOOGLE_ADS_TIMEZONE = os.environ.get('GOOGLE_ADS_TIMEZONE', 'Asia/Tokyo')

    # Client-side tag (gtag) settings
    GOOGLE_ADS_CONVERSION_ID = os.environ.get('GOOGLE_ADS_CONVERSION_ID')
    GOOGLE_ADS_CONVERSION_LABELS = _load_labels(os.environ.get('GOOGLE_ADS_CONVERSION_LABELS'))
    TAG_ENDPOINT_URL = os.environ.get(
        'TAG_ENDPOINT_URL', 'https://www.googleadservices.com/pagead/conversion'
    )
    TAG_MANAGER_QUEUE_KEY = os.environ.get('TAG_MANAGER_QUEUE_KEY', 'tracking:datalayer')
    REQUIRED_TRACKING_ACTIONS = ['purchase', 'begin_checkout', 'view_item', 'add_payment_info']

    # Dispatcher retry policy (seconds)
    TRACKING_MAX_ATTEMPTS = int(os.environ.get('TRACKING_MAX_ATTEMPTS', '3'))
    TRACKING_RETRY_BASE_DELAY = float(os.environ.get('TRACKING_RETRY_BASE_DELAY', '1.0'))
    TRACKING_MAX_RETRY_DELAY = float(os.environ.get('TRACKING_MAX_RETRY_DELAY', '10.0'))
    TRACKING_REQUEST_TIMEOUT = float(os.environ.get('TRACKING_REQUEST_TIMEOUT', '5.0'))
    TRACKING_DISPATCH_WORKERS = int(os.environ.get('TRACKING_DISPATCH_WORKERS', '4'))
    DEFAULT_CURRENCY = os.environ.get('DEFAULT_CURRENCY', 'JPY')

    # Monitoring
    ALERT_WEBHOOK_URL = os.environ.get('ALERT_WEBHOOK_URL')
    HEALTH_CHECK_INTERVAL = 5 * 60
    DEEP_HEALTH_CHECK_INTERVAL = 30 * 60
    MONITORING_TIMERS_ENABLED = os.environ.get('MONITORING_TIMERS_ENABLED', 'false').lower() == 'true'
    # Toggled at runtime (app.config) to skip timer ticks, e.g. while draining for a deploy
    MONITORING_PAUSED = os.environ.get('MONITORING_PAUSED', 'false').lower() == 'true'
    ERROR_RATE_THRESHOLD = float(os.environ.get('ERROR_RATE_THRESHOLD', '0.05'))
    SCRIPT_LOAD_TIME_THRESHOLD = 10.0  # seconds
    TRACKING_CALL_TIME_THRESHOLD = 2.0  # seconds
    ALERTS_RETENTION_DAYS = int(os.environ.get('ALERTS_RETENTION_DAYS', '90'))
    ATTEMPT_LOG_RETENTION_DAYS = int(os.environ.get('ATTEMPT_LOG_RETENTION_DAYS', '90'))
    RECONCILIATION_ACCURACY_THRESHOLD = float(
        os.environ.get('RECONCILIATION_ACCURACY_THRESHOLD', '95.0')
    )

    # Celery / Redis
    REDIS_URL = os.environ.get('REDIS_URL') or 'redis://redis:6379/0'
    CELERY_BROKER_URL = os.environ.get('REDIS_URL') or 'redis://redis:6379/0'
    CELERY_RESULT_BACKEND = os.environ.get('REDIS_URL') or 'redis://redis:6379/0'

    # Backup conversions run through Celery; routes fall back to inline execution when False
    BACKUP_CONVERSIONS_ASYNC = True

    # Shared secret for the /api routes (X-API-Key header)
    CONVERSIONS_API_KEY = os.environ.get('CONVERSIONS_API_KEY')

    @classmethod
    def init_app(cls, app):
        """Initialize application with this config"""
        pass


class DevelopmentConfig(Config):
    """Development environment configuration"""
    DEBUG = True
    TESTING = False
    ENVIRONMENT = 'development'

    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or \
        Config.SQLALCHEMY_DATABASE_URI

    @classmethod
    def init_app(cls, app):
        """Development-specific initialization"""
        Config.init_app(app)

        import logging
        logger = logging.getLogger(__name__)
        unset = [var for var in cls.REQUIRED_GOOGLE_ADS_VARS if cls.is_placeholder(app.config.get(var))]
        if unset:
            logger.warning("Server-side backup uploads will fail until these are set: %s", ", ".join(unset))


class TestingConfig(Config):
    """Testing environment configuration"""
    TESTING = True
    DEBUG = True
    ENVIRONMENT = 'testing'

    # Use in-memory SQLite for tests
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    CELERY_BROKER_URL = 'redis://localhost:6379/1'
    CELERY_RESULT_BACKEND = 'redis://localhost:6379/1'

    GOOGLE_ADS_DEVELOPER_TOKEN = 'test-developer-token'
    GOOGLE_ADS_CLIENT_ID = 'test-client-id'
    GOOGLE_ADS_CLIENT_SECRET = 'test-client-secret'
    GOOGLE_ADS_REFRESH_TOKEN = 'test-refresh-token'
    GOOGLE_ADS_CUSTOMER_ID = '1234567890'
    GOOGLE_ADS_PURCHASE_CONVERSION_ACTION = '987654321'
    GOOGLE_ADS_CONVERSION_ID = 'AW-1234567890'
    GOOGLE_ADS_CONVERSION_LABELS = {
        'purchase': 'PurchaseLbl01',
        'begin_checkout': 'CheckoutLbl01',
        'view_item': 'ViewItemLbl01',
        'add_payment_info': 'PaymentLbl01',
        'add_to_cart': 'AddToCartLbl1',
    }
    ALERT_WEBHOOK_URL = None
    CONVERSIONS_API_KEY = 'test-api-key'

    # No real sleeping between dispatcher retries in tests
    TRACKING_RETRY_BASE_DELAY = 0.0
    BACKUP_CONVERSIONS_ASYNC = False

    @classmethod
    def init_app(cls, app):
        """Testing-specific initialization"""
        import logging
        logger = logging.getLogger(__name__)
        logger.info("Testing mode: in-memory database, inline backup conversions")


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
            separator = '&' if '?' in CELERY_BROKER_URL else '?'
            ssl_params = f"{separator}ssl_cert_reqs=CERT_NONE"
            CELERY_BROKER_URL += ssl_params
            CELERY_RESULT_BACKEND += ssl_params

    @classmethod
    def init_app(cls, app):
        """Production-specific initialization"""
        Config.init_app(app)

        if not cls.SQLALCHEMY_DATABASE_URI:
            cls.SQLALCHEMY_DATABASE_URI = cls.get_required_env('POSTGRES_URI')
            app.config['SQLALCHEMY_DATABASE_URI'] = cls.SQLALCHEMY_DATABASE_URI

        # Validate all required config
        cls.validate_required_config()
        if not app.config.get('CONVERSIONS_API_KEY'):
            raise ConfigurationError('CONVERSIONS_API_KEY must be set in production')


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
