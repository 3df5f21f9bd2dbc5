"""
Service layer enums
These enums are used by services and should match the values stored in the
database, but allow services to work without importing database models
"""

from enum import Enum


class ConversionAction(str, Enum):
    """Funnel events reported to the ad platform"""
    VIEW_ITEM = 'view_item'
    ADD_TO_CART = 'add_to_cart'
    BEGIN_CHECKOUT = 'begin_checkout'
    ADD_PAYMENT_INFO = 'add_payment_info'
    PURCHASE = 'purchase'


class ConversionType(str, Enum):
    """Which delivery path wrote an attempt-log row"""
    CLIENT = 'client'
    SERVER = 'server'


class TrackingErrorType(str, Enum):
    """Error categories; each maps to a distinct alert severity"""
    SCRIPT_LOAD_FAILURE = 'script_load_failure'
    CONFIGURATION_ERROR = 'configuration_error'
    TRACKING_FAILURE = 'tracking_failure'
    NETWORK_ERROR = 'network_error'
    VALIDATION_ERROR = 'validation_error'
    PRIVACY_ERROR = 'privacy_error'
    UNKNOWN = 'unknown'


class AlertSeverity(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'


class HealthStatus(str, Enum):
    HEALTHY = 'healthy'
    WARNING = 'warning'
    CRITICAL = 'critical'
