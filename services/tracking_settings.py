"""
TrackingSettings - the slice of app configuration the tracking services use
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from config import Config


@dataclass
class TrackingSettings:
    # Client-side tag
    conversion_id: Optional[str] = None
    conversion_labels: Dict[str, str] = field(default_factory=dict)
    required_actions: List[str] = field(
        default_factory=lambda: ['purchase', 'begin_checkout', 'view_item', 'add_payment_info']
    )

    # Server-side upload
    developer_token: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    refresh_token: Optional[str] = None
    customer_id: Optional[str] = None
    login_customer_id: Optional[str] = None
    purchase_conversion_action: Optional[str] = None
    api_version: str = 'v14'
    account_timezone: str = 'Asia/Tokyo'

    # Dispatcher policy (seconds)
    max_attempts: int = 3
    retry_base_delay: float = 1.0
    max_retry_delay: float = 10.0
    request_timeout: float = 5.0
    default_currency: str = 'JPY'

    # Health thresholds
    error_rate_threshold: float = 0.05
    script_load_time_threshold: float = 10.0
    tracking_call_time_threshold: float = 2.0

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'TrackingSettings':
        """Build from a Flask app.config mapping"""
        return cls(
            conversion_id=config.get('GOOGLE_ADS_CONVERSION_ID'),
            conversion_labels=dict(config.get('GOOGLE_ADS_CONVERSION_LABELS') or {}),
            required_actions=list(config.get('REQUIRED_TRACKING_ACTIONS') or cls().required_actions),
            developer_token=config.get('GOOGLE_ADS_DEVELOPER_TOKEN'),
            client_id=config.get('GOOGLE_ADS_CLIENT_ID'),
            client_secret=config.get('GOOGLE_ADS_CLIENT_SECRET'),
            refresh_token=config.get('GOOGLE_ADS_REFRESH_TOKEN'),
            customer_id=config.get('GOOGLE_ADS_CUSTOMER_ID'),
            login_customer_id=config.get('GOOGLE_ADS_LOGIN_CUSTOMER_ID'),
            purchase_conversion_action=config.get('GOOGLE_ADS_PURCHASE_CONVERSION_ACTION'),
            api_version=config.get('GOOGLE_ADS_API_VERSION', 'v14'),
            account_timezone=config.get('GOOGLE_ADS_TIMEZONE', 'Asia/Tokyo'),
            max_attempts=int(config.get('TRACKING_MAX_ATTEMPTS', 3)),
            retry_base_delay=float(config.get('TRACKING_RETRY_BASE_DELAY', 1.0)),
            max_retry_delay=float(config.get('TRACKING_MAX_RETRY_DELAY', 10.0)),
            request_timeout=float(config.get('TRACKING_REQUEST_TIMEOUT', 5.0)),
            default_currency=config.get('DEFAULT_CURRENCY', 'JPY'),
            error_rate_threshold=float(config.get('ERROR_RATE_THRESHOLD', 0.05)),
            script_load_time_threshold=float(config.get('SCRIPT_LOAD_TIME_THRESHOLD', 10.0)),
            tracking_call_time_threshold=float(config.get('TRACKING_CALL_TIME_THRESHOLD', 2.0)),
        )

    def resolve_label(self, action: str) -> Optional[str]:
        """Conversion label for an action, or None if missing or a placeholder"""
        label = self.conversion_labels.get(action)
        if Config.is_placeholder(label):
            return None
        return label

    def missing_client_configuration(self) -> List[str]:
        missing = []
        if Config.is_placeholder(self.conversion_id):
            missing.append('GOOGLE_ADS_CONVERSION_ID')
        if self.resolve_label('purchase') is None:
            missing.append('GOOGLE_ADS_CONVERSION_LABELS[purchase]')
        return missing

    def missing_server_configuration(self) -> List[str]:
        required = {
            'GOOGLE_ADS_DEVELOPER_TOKEN': self.developer_token,
            'GOOGLE_ADS_CLIENT_ID': self.client_id,
            'GOOGLE_ADS_CLIENT_SECRET': self.client_secret,
            'GOOGLE_ADS_REFRESH_TOKEN': self.refresh_token,
            'GOOGLE_ADS_CUSTOMER_ID': self.customer_id,
            'GOOGLE_ADS_PURCHASE_CONVERSION_ACTION': self.purchase_conversion_action,
        }
        return [name for name, value in required.items() if Config.is_placeholder(value)]

    def unresolved_labels(self) -> List[str]:
        return [action for action in self.required_actions if self.resolve_label(action) is None]
