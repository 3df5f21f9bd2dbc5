"""
Tracking error taxonomy.

These are raised inside the tracking services and caught at their public
boundary, where they are written to the attempt log and reported to the
monitor. None of them escape to the booking flow.
"""

from typing import Any, Dict, Optional

from services.enums import TrackingErrorType


class TrackingError(Exception):
    """Base class for conversion tracking errors"""
    error_type = TrackingErrorType.UNKNOWN
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error_type': self.error_type.value,
            'message': self.message,
            **self.details,
        }


class ValidationError(TrackingError):
    """Malformed event; never sent anywhere"""
    error_type = TrackingErrorType.VALIDATION_ERROR

    def __init__(self, message: str, issues=None):
        super().__init__(message, {'issues': [issue.to_dict() for issue in (issues or [])]})
        self.issues = list(issues or [])


class ConfigurationError(TrackingError):
    """Missing or placeholder credentials/labels; retrying will not help"""
    error_type = TrackingErrorType.CONFIGURATION_ERROR


class ScriptLoadError(TrackingError):
    error_type = TrackingErrorType.SCRIPT_LOAD_FAILURE


class NetworkError(TrackingError):
    """Transport-level failure (timeout, connection reset, 5xx)"""
    error_type = TrackingErrorType.NETWORK_ERROR
    retryable = True


class TrackingFailure(TrackingError):
    """The endpoint answered but did not accept the conversion"""
    error_type = TrackingErrorType.TRACKING_FAILURE
    retryable = True


class PrivacyError(TrackingError):
    """Consent absent or raw PII found where a hash was expected"""
    error_type = TrackingErrorType.PRIVACY_ERROR


class TokenRefreshError(NetworkError):
    """OAuth refresh-token exchange failed"""


class AdPlatformError(TrackingFailure):
    """Upload rejected by the ad platform, including partial failures"""
    retryable = False
