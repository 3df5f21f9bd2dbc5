"""
BackupConversionService - server-side purchase conversion upload

Independent of the browser: given a booking id, reads the booking from the
system of record and uploads a purchase conversion (with enhanced
conversion identifiers when the booking has contact data) directly to the
Google Ads API. Each upload attempt is logged as a 'server' row.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from config import Config
from logging_config import get_logger
from services.common.exceptions import ConfigurationError, TrackingError, ValidationError
from services.common.result import Result
from services.conversion_event import ConversionEvent, validate
from services.enums import ConversionAction, ConversionType
from services.tracking_settings import TrackingSettings
from utils.clock import Clock, system_clock
from utils.datetime_utils import to_ads_datetime
from utils.hashing import hash_email, hash_phone, hash_text

logger = get_logger(__name__)


@dataclass
class BackupConversionResult:
    """Outcome of one validate_and_convert call"""
    success: bool
    booking_data: Optional[Dict[str, Any]] = None
    conversion_data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    retryable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        result = {'success': self.success}
        if self.booking_data is not None:
            result['booking_data'] = self.booking_data
        if self.conversion_data is not None:
            result['conversion_data'] = self.conversion_data
        if self.error:
            result['error'] = self.error
        return result


class BackupConversionService:
    """Server-side upload path"""

    def __init__(
        self,
        booking_repository,
        attempt_repository,
        google_ads_client,
        settings: TrackingSettings,
        monitor=None,
        clock: Clock = system_clock
    ):
        self.booking_repository = booking_repository
        self.attempt_repository = attempt_repository
        self.google_ads_client = google_ads_client
        self.settings = settings
        self.monitor = monitor
        self.clock = clock

    def validate_and_convert(self, booking_id: str) -> BackupConversionResult:
        """
        Look up a booking and upload it as a purchase conversion.

        Unknown or ineligible bookings fail without touching the attempt log.
        Never raises.
        """
        try:
            booking = self.booking_repository.get_by_id(booking_id)
        except Exception as e:
            logger.error("Booking lookup failed", booking_id=booking_id, error=str(e))
            return BackupConversionResult(success=False, error=f"Booking lookup failed: {e}")

        if booking is None:
            logger.warning("Booking not found for backup conversion", booking_id=booking_id)
            return BackupConversionResult(success=False, error='Booking not found')

        booking_data = self.booking_to_dict(booking)
        if not booking.is_eligible_for_conversion:
            logger.info("Booking not eligible for conversion", booking_id=booking.id, status=booking.status)
            return BackupConversionResult(
                success=False,
                booking_data=booking_data,
                error=f"Booking status '{booking.status}' is not eligible for conversion",
            )

        conversion_data: Optional[Dict[str, Any]] = None
        try:
            event = self.build_purchase_event(booking)
            conversion_data = self.build_conversion_row(event)
            response = self.google_ads_client.upload_conversions([conversion_data])
        except TrackingError as e:
            self._log_attempt(booking.id, False, {
                **e.to_dict(),
                'conversion_data': conversion_data,
            }, e)
            self._report(e, booking.id)
            logger.error("Backup conversion failed", booking_id=booking.id, error=e.message)
            return BackupConversionResult(
                success=False,
                booking_data=booking_data,
                conversion_data=conversion_data,
                error=e.message,
                retryable=e.retryable,
            )
        except Exception as e:
            logger.exception("Unexpected error in backup conversion", booking_id=booking.id)
            error = TrackingError(f"Unexpected error: {e}")
            self._log_attempt(booking.id, False, {**error.to_dict(), 'conversion_data': conversion_data}, error)
            self._report(error, booking.id)
            return BackupConversionResult(
                success=False,
                booking_data=booking_data,
                conversion_data=conversion_data,
                error=str(e),
            )

        self._log_attempt(booking.id, True, {
            'conversion_data': conversion_data,
            'enhanced': event.is_enhanced,
            'response': response,
        })
        logger.info("Backup conversion uploaded", booking_id=booking.id,
                    value=conversion_data['conversion_value'], currency=conversion_data['currency_code'])
        return BackupConversionResult(
            success=True,
            booking_data=booking_data,
            conversion_data=conversion_data,
        )

    def upload_manual_conversion(self, data: Dict[str, Any]) -> Result[Dict[str, Any]]:
        """
        Upload an operator-supplied purchase conversion.

        No booking lookup and no attempt row; used to repair gaps found by
        reconciliation.

        Args:
            data: transaction_id (or order_id), value, currency, optional
                  conversion_date_time, gclid/wbraid/gbraid and hashed identifiers
        """
        raw = {
            'action': ConversionAction.PURCHASE.value,
            'transaction_id': data.get('transaction_id') or data.get('order_id'),
            'value': data.get('value', data.get('conversion_value')),
            'currency': data.get('currency') or data.get('currency_code'),
            'attribution': {k: data.get(k) for k in ('gclid', 'wbraid', 'gbraid') if data.get(k)},
            'user_identifiers': data.get('user_identifiers'),
        }
        validation = validate(raw, default_currency=self.settings.default_currency)
        if not validation.is_valid:
            return Result.failure(
                "Invalid manual conversion",
                code='VALIDATION_ERROR',
                metadata={'issues': validation.issues_as_dicts()},
            )

        try:
            row = self.build_conversion_row(validation.event)
            if data.get('conversion_date_time'):
                row['conversion_date_time'] = data['conversion_date_time']
            response = self.google_ads_client.upload_conversions([row])
        except TrackingError as e:
            logger.error("Manual conversion upload failed", order_id=raw['transaction_id'], error=e.message)
            return Result.failure(e.message, code=e.error_type.value.upper(), metadata=e.to_dict())

        logger.info("Manual conversion uploaded", order_id=raw['transaction_id'])
        return Result.success({'conversion_data': row, 'response': response})

    def build_purchase_event(self, booking) -> ConversionEvent:
        """
        Purchase event for a booking: value is the booking amount and
        transaction_id the booking id.

        Raises:
            ValidationError: Booking data does not form a valid purchase
        """
        identifiers = {
            'email': hash_email(booking.customer_email),
            'phone': hash_phone(booking.customer_phone),
            'first_name': hash_text(booking.customer_first_name),
            'last_name': hash_text(booking.customer_last_name),
        }
        raw = {
            'action': ConversionAction.PURCHASE.value,
            'value': booking.amount,
            'currency': booking.currency,
            'transaction_id': booking.id,
            'attribution': {
                'gclid': booking.gclid,
                'wbraid': booking.wbraid,
                'gbraid': booking.gbraid,
                'source': booking.utm_source,
                'medium': booking.utm_medium,
                'campaign': booking.utm_campaign,
            },
            'user_identifiers': {k: v for k, v in identifiers.items() if v},
            'item_id': booking.tour_id,
            'item_name': booking.tour_name,
            'quantity': booking.guests or 1,
        }
        validation = validate(raw, default_currency=self.settings.default_currency)
        if not validation.is_valid:
            raise ValidationError(f"Booking {booking.id} is not a valid purchase", validation.core_issues)
        return validation.event

    def build_conversion_row(self, event: ConversionEvent) -> Dict[str, Any]:
        """
        One click-conversion row for the upload API.

        conversion_date_time is the upload time in the account timezone.

        Raises:
            ConfigurationError: Purchase conversion action not configured
        """
        if Config.is_placeholder(self.settings.purchase_conversion_action):
            raise ConfigurationError("Google Ads purchase conversion action not configured")

        row: Dict[str, Any] = {
            'conversion_action': self.google_ads_client.conversion_action_resource(
                self.settings.purchase_conversion_action
            ),
            'conversion_value': float(event.value if event.value is not None else Decimal('0')),
            'currency_code': event.currency,
            'order_id': event.transaction_id,
            'conversion_date_time': to_ads_datetime(self.clock.now(), self.settings.account_timezone),
        }
        for click_id in ('gclid', 'wbraid', 'gbraid'):
            value = getattr(event.attribution, click_id)
            if value:
                row[click_id] = value
        if event.is_enhanced:
            row['user_identifiers'] = event.user_identifiers.to_upload_identifiers()
        return row

    @staticmethod
    def booking_to_dict(booking) -> Dict[str, Any]:
        """Booking summary returned to callers; contact data is left out"""
        return {
            'id': booking.id,
            'status': booking.status,
            'amount': float(booking.amount) if booking.amount is not None else None,
            'currency': booking.currency,
            'tour_id': booking.tour_id,
            'tour_name': booking.tour_name,
            'guests': booking.guests,
            'created_at': booking.created_at.isoformat() if booking.created_at else None,
        }

    def _log_attempt(self, booking_id: str, success: bool, details: Dict[str, Any],
                     error: Optional[TrackingError] = None) -> None:
        try:
            self.attempt_repository.append(
                booking_id=booking_id,
                conversion_type=ConversionType.SERVER.value,
                success=success,
                details=details,
                action=ConversionAction.PURCHASE.value,
                error_type=error.error_type.value if error else None,
            )
        except Exception as e:
            logger.error("Failed to write conversion attempt", booking_id=booking_id, error=str(e))

    def _report(self, error: TrackingError, booking_id: str) -> None:
        if self.monitor is None:
            return
        try:
            self.monitor.report_error(error, {'booking_id': booking_id, 'path': ConversionType.SERVER.value})
        except Exception as e:
            logger.error("Failed to report tracking error", error=str(e))
