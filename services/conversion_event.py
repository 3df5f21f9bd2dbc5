"""
Canonical conversion event and its validator.

Both delivery paths build a ConversionEvent and refuse to send anything that
fails validate(). Core problems (action, value, currency, transaction id)
fail closed; problems confined to the hashed user identifiers only downgrade
the event to a standard, non-enhanced conversion.
"""

import re
from dataclasses import dataclass, field, asdict
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional

from services.enums import ConversionAction
from utils.datetime_utils import ensure_utc, parse_utc_iso, utc_now
from utils.hashing import is_sha256_hex

# ISO-4217 codes accepted for conversion values
KNOWN_CURRENCIES = frozenset({
    'AED', 'ARS', 'AUD', 'BRL', 'CAD', 'CHF', 'CLP', 'CNY', 'COP', 'CZK',
    'DKK', 'EGP', 'EUR', 'GBP', 'HKD', 'HUF', 'IDR', 'ILS', 'INR', 'ISK',
    'JPY', 'KRW', 'MXN', 'MYR', 'NOK', 'NZD', 'PEN', 'PHP', 'PLN', 'RON',
    'RUB', 'SAR', 'SEK', 'SGD', 'THB', 'TRY', 'TWD', 'UAH', 'USD', 'VND',
    'ZAR',
})

IDENTIFIER_FIELDS = (
    'email', 'phone', 'first_name', 'last_name',
    'street', 'city', 'region', 'postal_code', 'country',
)
ATTRIBUTION_FIELDS = ('gclid', 'wbraid', 'gbraid', 'source', 'medium', 'campaign')

# Actions that must carry a value and currency
VALUED_ACTIONS = {
    ConversionAction.PURCHASE,
    ConversionAction.BEGIN_CHECKOUT,
    ConversionAction.ADD_PAYMENT_INFO,
}
ITEM_ACTIONS = {ConversionAction.VIEW_ITEM, ConversionAction.ADD_TO_CART}

_EMAIL_LIKE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
_PHONE_LIKE = re.compile(r'^\+?[\d\s\-().]{7,20}$')


@dataclass
class ValidationIssue:
    field: str
    message: str
    code: str
    core: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Attribution:
    gclid: Optional[str] = None
    wbraid: Optional[str] = None
    gbraid: Optional[str] = None
    source: Optional[str] = None
    medium: Optional[str] = None
    campaign: Optional[str] = None

    @property
    def has_click_id(self) -> bool:
        return bool(self.gclid or self.wbraid or self.gbraid)

    def to_dict(self) -> Dict[str, str]:
        return {k: v for k, v in asdict(self).items() if v}


@dataclass
class UserIdentifiers:
    """SHA-256 hex digests only; raw values never get here"""
    email: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None

    def is_empty(self) -> bool:
        return not any(asdict(self).values())

    def to_dict(self) -> Dict[str, str]:
        return {k: v for k, v in asdict(self).items() if v}

    def to_upload_identifiers(self) -> List[Dict[str, Any]]:
        """Shape used by the ad platform's user_identifiers list"""
        identifiers = []
        if self.email:
            identifiers.append({'hashed_email': self.email})
        if self.phone:
            identifiers.append({'hashed_phone_number': self.phone})
        address = {
            'hashed_first_name': self.first_name,
            'hashed_last_name': self.last_name,
            'hashed_street_address': self.street,
            'city': self.city,
            'state': self.region,
            'postal_code': self.postal_code,
            'country_code': self.country,
        }
        address = {k: v for k, v in address.items() if v}
        if address:
            identifiers.append({'address_info': address})
        return identifiers


@dataclass
class ConversionEvent:
    action: ConversionAction
    value: Optional[Decimal] = None
    currency: Optional[str] = None
    transaction_id: Optional[str] = None
    attribution: Attribution = field(default_factory=Attribution)
    user_identifiers: Optional[UserIdentifiers] = None
    timestamp: datetime = field(default_factory=utc_now)
    item_id: Optional[str] = None
    item_name: Optional[str] = None
    item_category: Optional[str] = None
    quantity: int = 1

    @property
    def is_enhanced(self) -> bool:
        return self.user_identifiers is not None and not self.user_identifiers.is_empty()

    def to_payload(self) -> Dict[str, Any]:
        """Structured object pushed to the tag-manager queue"""
        payload: Dict[str, Any] = {
            'event': self.action.value,
            'timestamp': self.timestamp.isoformat(),
        }
        if self.value is not None:
            payload['value'] = float(self.value)
        if self.currency:
            payload['currency'] = self.currency
        if self.transaction_id:
            payload['transaction_id'] = self.transaction_id
        if self.item_id or self.item_name:
            payload['items'] = [{
                'item_id': self.item_id,
                'item_name': self.item_name,
                'item_category': self.item_category,
                'quantity': self.quantity,
                'price': float(self.value) if self.value is not None else None,
            }]
        attribution = self.attribution.to_dict()
        if attribution:
            payload['attribution'] = attribution
        if self.is_enhanced:
            payload['user_data'] = self.user_identifiers.to_dict()
        return payload


@dataclass
class ValidationResult:
    event: Optional[ConversionEvent] = None
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.event is not None

    @property
    def core_issues(self) -> List[ValidationIssue]:
        return [issue for issue in self.issues if issue.core]

    @property
    def degraded(self) -> bool:
        """Valid, but enhanced data was dropped"""
        return self.is_valid and any(not issue.core for issue in self.issues)

    def issues_as_dicts(self) -> List[Dict[str, Any]]:
        return [issue.to_dict() for issue in self.issues]


def validate(raw: Mapping[str, Any], default_currency: Optional[str] = None) -> ValidationResult:
    """
    Validate raw tracking input and build a ConversionEvent.

    Args:
        raw: Mapping with action, value, currency, transaction_id,
             attribution, user_identifiers, timestamp and item fields
        default_currency: Currency applied when the input carries a value but no currency

    Returns:
        ValidationResult with the event, or with event=None and the core issues
    """
    issues: List[ValidationIssue] = []

    action = _parse_action(raw.get('action'), issues)
    value = _parse_value(raw.get('value'), issues)
    currency = _parse_currency(raw.get('currency') or (default_currency if value is not None else None), issues)
    transaction_id = _parse_transaction_id(raw.get('transaction_id'), issues)
    timestamp = _parse_timestamp(raw.get('timestamp'), issues)
    quantity = _parse_quantity(raw.get('quantity', 1), issues)

    if action in VALUED_ACTIONS:
        if value is None and not _has_issue(issues, 'value'):
            issues.append(ValidationIssue('value', f"value is required for {action.value}", 'required'))
        if currency is None and not _has_issue(issues, 'currency'):
            issues.append(ValidationIssue('currency', f"currency is required for {action.value}", 'required'))
    if action == ConversionAction.PURCHASE and transaction_id is None and not _has_issue(issues, 'transaction_id'):
        issues.append(ValidationIssue('transaction_id', 'transaction_id is required for purchase', 'required'))
    if action in ITEM_ACTIONS and not raw.get('item_id'):
        issues.append(ValidationIssue('item_id', f"item_id is required for {action.value}", 'required'))

    attribution = _parse_attribution(raw.get('attribution'), issues)
    identifiers = _parse_identifiers(raw.get('user_identifiers'), issues)

    if any(issue.core for issue in issues):
        return ValidationResult(event=None, issues=issues)

    event = ConversionEvent(
        action=action,
        value=value,
        currency=currency,
        transaction_id=transaction_id,
        attribution=attribution,
        user_identifiers=identifiers,
        timestamp=timestamp,
        item_id=_as_optional_str(raw.get('item_id')),
        item_name=_as_optional_str(raw.get('item_name')),
        item_category=_as_optional_str(raw.get('item_category')),
        quantity=quantity,
    )
    return ValidationResult(event=event, issues=issues)


def _has_issue(issues: List[ValidationIssue], field_name: str) -> bool:
    return any(issue.field == field_name for issue in issues)


def _as_optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_action(raw_action: Any, issues: List[ValidationIssue]) -> Optional[ConversionAction]:
    if raw_action is None or raw_action == '':
        issues.append(ValidationIssue('action', 'action is required', 'required'))
        return None
    try:
        return ConversionAction(raw_action)
    except ValueError:
        issues.append(ValidationIssue('action', f"unknown action {raw_action!r}", 'invalid_choice'))
        return None


def _parse_value(raw_value: Any, issues: List[ValidationIssue]) -> Optional[Decimal]:
    if raw_value is None or raw_value == '':
        return None
    if isinstance(raw_value, bool):
        issues.append(ValidationIssue('value', 'value must be a number', 'invalid_type'))
        return None
    try:
        value = Decimal(str(raw_value))
    except (InvalidOperation, ValueError):
        issues.append(ValidationIssue('value', 'value must be a number', 'invalid_type'))
        return None
    if not value.is_finite():
        issues.append(ValidationIssue('value', 'value must be finite', 'invalid_type'))
        return None
    if value < 0:
        issues.append(ValidationIssue('value', 'value must not be negative', 'negative'))
        return None
    return value


def _parse_currency(raw_currency: Any, issues: List[ValidationIssue]) -> Optional[str]:
    if raw_currency is None or raw_currency == '':
        return None
    code = str(raw_currency).strip().upper()
    if len(code) != 3 or code not in KNOWN_CURRENCIES:
        issues.append(ValidationIssue('currency', f"unknown currency code {raw_currency!r}", 'invalid_currency'))
        return None
    return code


def _parse_transaction_id(raw_id: Any, issues: List[ValidationIssue]) -> Optional[str]:
    if raw_id is None:
        return None
    if isinstance(raw_id, (dict, list, bool)):
        issues.append(ValidationIssue('transaction_id', 'transaction_id must be a string', 'invalid_type'))
        return None
    return _as_optional_str(raw_id)


def _parse_timestamp(raw_ts: Any, issues: List[ValidationIssue]) -> datetime:
    if raw_ts is None:
        return utc_now()
    if isinstance(raw_ts, datetime):
        return ensure_utc(raw_ts)
    try:
        return parse_utc_iso(str(raw_ts))
    except ValueError:
        issues.append(ValidationIssue('timestamp', 'timestamp must be ISO-8601', 'invalid_type'))
        return utc_now()


def _parse_quantity(raw_quantity: Any, issues: List[ValidationIssue]) -> int:
    try:
        quantity = int(raw_quantity)
    except (TypeError, ValueError):
        issues.append(ValidationIssue('quantity', 'quantity must be an integer', 'invalid_type'))
        return 1
    if quantity < 0:
        issues.append(ValidationIssue('quantity', 'quantity must not be negative', 'negative'))
        return 1
    return quantity


def _parse_attribution(raw: Any, issues: List[ValidationIssue]) -> Attribution:
    if not raw:
        return Attribution()
    if not isinstance(raw, Mapping):
        issues.append(ValidationIssue('attribution', 'attribution must be an object', 'invalid_type', core=False))
        return Attribution()
    values = {}
    for name in ATTRIBUTION_FIELDS:
        item = raw.get(name)
        if item is None or item == '':
            continue
        if not isinstance(item, str):
            issues.append(ValidationIssue(f'attribution.{name}', 'must be a string', 'invalid_type', core=False))
            continue
        values[name] = item.strip()
    return Attribution(**values)


def _parse_identifiers(raw: Any, issues: List[ValidationIssue]) -> Optional[UserIdentifiers]:
    """Any problem here drops the identifiers entirely (standard conversion)"""
    if not raw:
        return None
    if not isinstance(raw, Mapping):
        issues.append(ValidationIssue('user_identifiers', 'user_identifiers must be an object', 'invalid_type', core=False))
        return None

    found_issue = False
    values = {}
    for name, item in raw.items():
        path = f'user_identifiers.{name}'
        if name not in IDENTIFIER_FIELDS:
            issues.append(ValidationIssue(path, 'unknown identifier', 'unknown_field', core=False))
            found_issue = True
            continue
        if item is None or item == '':
            continue
        if not isinstance(item, str):
            issues.append(ValidationIssue(path, 'must be a SHA-256 hex digest', 'invalid_type', core=False))
            found_issue = True
            continue
        candidate = item.strip()
        if is_sha256_hex(candidate.lower()):
            values[name] = candidate.lower()
        elif _EMAIL_LIKE.match(candidate) or _PHONE_LIKE.match(candidate):
            issues.append(ValidationIssue(path, 'raw personal data under a hashed field', 'raw_pii', core=False))
            found_issue = True
        else:
            issues.append(ValidationIssue(path, 'must be a SHA-256 hex digest', 'not_hashed', core=False))
            found_issue = True

    if found_issue or not values:
        return None
    return UserIdentifiers(**values)
