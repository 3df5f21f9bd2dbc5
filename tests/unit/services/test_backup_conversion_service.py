"""
Tests for BackupConversionService - server-side purchase upload
"""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock, Mock

import pytest

from booking_database import Booking
from repositories.booking_repository import BookingRepository
from repositories.conversion_attempt_repository import ConversionAttemptRepository
from services.backup_conversion_service import BackupConversionResult, BackupConversionService
from services.common.exceptions import AdPlatformError, ConfigurationError, NetworkError
from tests.fixtures.clock_fixtures import FakeClock
from tests.fixtures.tracking_fixtures import make_settings
from utils.hashing import hash_email, hash_phone, hash_text

pytestmark = pytest.mark.usefixtures('app_context')


def make_booking(**overrides):
    booking = Mock(spec=Booking)
    values = dict(
        id='B1',
        status='confirmed',
        amount=Decimal('9000.00'),
        currency='JPY',
        customer_email=' Guest@Example.com ',
        customer_phone='+81 90-1234-5678',
        customer_first_name='Hanako',
        customer_last_name='Yamada',
        tour_id='T-100',
        tour_name='Kyoto Night Walk',
        guests=2,
        gclid='Cj0-test',
        wbraid=None,
        gbraid=None,
        utm_source='google',
        utm_medium='cpc',
        utm_campaign='spring',
        created_at=datetime(2025, 3, 1, 10, 0),
    )
    values.update(overrides)
    for name, value in values.items():
        setattr(booking, name, value)
    booking.is_eligible_for_conversion = values['status'] in ('confirmed', 'paid')
    return booking


class TestBackupConversionService:

    @pytest.fixture
    def booking_repository(self):
        return Mock(spec=BookingRepository)

    @pytest.fixture
    def attempt_repository(self):
        return Mock(spec=ConversionAttemptRepository)

    @pytest.fixture
    def google_ads_client(self):
        client = MagicMock()
        client.conversion_action_resource.side_effect = \
            lambda action_id: f"customers/1234567890/conversionActions/{action_id}"
        client.upload_conversions.return_value = {'results': [{'orderId': 'B1'}]}
        return client

    @pytest.fixture
    def monitor(self):
        return MagicMock()

    @pytest.fixture
    def clock(self):
        # 03:00 UTC is noon in Tokyo
        return FakeClock(datetime(2025, 3, 1, 3, 0, 0, tzinfo=timezone.utc))

    @pytest.fixture
    def service(self, booking_repository, attempt_repository, google_ads_client, monitor, clock):
        return BackupConversionService(
            booking_repository=booking_repository,
            attempt_repository=attempt_repository,
            google_ads_client=google_ads_client,
            settings=make_settings(),
            monitor=monitor,
            clock=clock,
        )

    # ===== validate_and_convert =====

    def test_uploads_booking_amount_keyed_by_booking_id(self, service, booking_repository,
                                                        google_ads_client, attempt_repository):
        # Arrange
        booking_repository.get_by_id.return_value = make_booking()

        # Act
        result = service.validate_and_convert('B1')

        # Assert
        assert result.success is True
        row = google_ads_client.upload_conversions.call_args.args[0][0]
        assert row['conversion_value'] == 9000.0
        assert row['currency_code'] == 'JPY'
        assert row['order_id'] == 'B1'
        assert row['gclid'] == 'Cj0-test'
        assert row['conversion_action'] == 'customers/1234567890/conversionActions/987654321'
        assert row['conversion_date_time'] == '2025-03-01 12:00:00+09:00'
        assert result.conversion_data == row
        assert result.booking_data['id'] == 'B1'

        attempt_repository.append.assert_called_once()
        logged = attempt_repository.append.call_args.kwargs
        assert logged['booking_id'] == 'B1'
        assert logged['conversion_type'] == 'server'
        assert logged['action'] == 'purchase'
        assert logged['success'] is True
        assert logged['details']['enhanced'] is True

    def test_enhanced_identifiers_are_hashed_after_normalising(self, service, booking_repository,
                                                               google_ads_client):
        booking_repository.get_by_id.return_value = make_booking()

        service.validate_and_convert('B1')

        identifiers = google_ads_client.upload_conversions.call_args.args[0][0]['user_identifiers']
        assert {'hashed_email': hash_email('guest@example.com')} in identifiers
        assert {'hashed_phone_number': hash_phone('+819012345678')} in identifiers
        address = [i for i in identifiers if 'address_info' in i][0]['address_info']
        assert address['hashed_first_name'] == hash_text('hanako')
        assert address['hashed_last_name'] == hash_text('yamada')

    def test_booking_without_contact_data_uploads_standard_conversion(self, service, booking_repository,
                                                                       google_ads_client, attempt_repository):
        booking_repository.get_by_id.return_value = make_booking(
            customer_email=None, customer_phone=None, customer_first_name=None, customer_last_name=None
        )

        result = service.validate_and_convert('B1')

        assert result.success is True
        assert 'user_identifiers' not in google_ads_client.upload_conversions.call_args.args[0][0]
        assert attempt_repository.append.call_args.kwargs['details']['enhanced'] is False

    def test_booking_data_leaves_out_contact_details(self, service, booking_repository):
        booking_repository.get_by_id.return_value = make_booking()

        result = service.validate_and_convert('B1')

        assert 'customer_email' not in result.booking_data
        assert result.booking_data['amount'] == 9000.0

    def test_unknown_booking_fails_without_attempt_row(self, service, booking_repository,
                                                       attempt_repository, google_ads_client):
        booking_repository.get_by_id.return_value = None

        result = service.validate_and_convert('missing')

        assert result.success is False
        assert result.error == 'Booking not found'
        assert result.booking_data is None
        attempt_repository.append.assert_not_called()
        google_ads_client.upload_conversions.assert_not_called()

    def test_ineligible_booking_fails_without_attempt_row(self, service, booking_repository,
                                                          attempt_repository, google_ads_client):
        booking_repository.get_by_id.return_value = make_booking(status='cancelled')

        result = service.validate_and_convert('B1')

        assert result.success is False
        assert 'cancelled' in result.error
        assert result.booking_data['status'] == 'cancelled'
        attempt_repository.append.assert_not_called()
        google_ads_client.upload_conversions.assert_not_called()

    def test_lookup_error_is_returned_not_raised(self, service, booking_repository):
        booking_repository.get_by_id.side_effect = RuntimeError('connection reset')

        result = service.validate_and_convert('B1')

        assert result.success is False
        assert result.error.startswith('Booking lookup failed')

    def test_partial_failure_is_a_failure(self, service, booking_repository, google_ads_client,
                                          attempt_repository, monitor):
        booking_repository.get_by_id.return_value = make_booking()
        google_ads_client.upload_conversions.side_effect = AdPlatformError(
            "Conversion rejected by Google Ads (partial failure)",
            {'partial_failure_error': {'code': 3, 'message': 'invalid gclid'}}
        )

        result = service.validate_and_convert('B1')

        assert result.success is False
        assert result.retryable is False
        logged = attempt_repository.append.call_args.kwargs
        assert logged['success'] is False
        assert logged['error_type'] == 'tracking_failure'
        assert logged['details']['partial_failure_error']['message'] == 'invalid gclid'
        assert logged['details']['conversion_data']['order_id'] == 'B1'
        error, context = monitor.report_error.call_args.args
        assert isinstance(error, AdPlatformError)
        assert context == {'booking_id': 'B1', 'path': 'server'}

    def test_network_error_is_retryable(self, service, booking_repository, google_ads_client):
        booking_repository.get_by_id.return_value = make_booking()
        google_ads_client.upload_conversions.side_effect = NetworkError('Google Ads API unavailable: HTTP 503')

        result = service.validate_and_convert('B1')

        assert result.success is False
        assert result.retryable is True

    def test_unconfigured_conversion_action_fails_before_upload(self, booking_repository, attempt_repository,
                                                                google_ads_client, monitor, clock):
        service = BackupConversionService(
            booking_repository=booking_repository,
            attempt_repository=attempt_repository,
            google_ads_client=google_ads_client,
            settings=make_settings(purchase_conversion_action='your_conversion_action_id'),
            monitor=monitor,
            clock=clock,
        )
        booking_repository.get_by_id.return_value = make_booking()

        result = service.validate_and_convert('B1')

        assert result.success is False
        google_ads_client.upload_conversions.assert_not_called()
        assert attempt_repository.append.call_args.kwargs['error_type'] == 'configuration_error'
        assert isinstance(monitor.report_error.call_args.args[0], ConfigurationError)

    def test_booking_without_currency_uses_default(self, service, booking_repository, google_ads_client):
        booking_repository.get_by_id.return_value = make_booking(currency=None)

        service.validate_and_convert('B1')

        assert google_ads_client.upload_conversions.call_args.args[0][0]['currency_code'] == 'JPY'

    def test_unexpected_error_is_logged_as_failed_attempt(self, service, booking_repository,
                                                          google_ads_client, attempt_repository):
        booking_repository.get_by_id.return_value = make_booking()
        google_ads_client.upload_conversions.side_effect = KeyError('results')

        result = service.validate_and_convert('B1')

        assert result.success is False
        assert attempt_repository.append.call_args.kwargs['error_type'] == 'unknown'

    def test_attempt_log_failure_does_not_raise(self, service, booking_repository, attempt_repository):
        booking_repository.get_by_id.return_value = make_booking()
        attempt_repository.append.side_effect = RuntimeError('disk full')

        result = service.validate_and_convert('B1')

        assert result.success is True

    # ===== upload_manual_conversion =====

    def test_manual_upload_accepts_operator_field_names(self, service, google_ads_client, attempt_repository):
        result = service.upload_manual_conversion({
            'order_id': 'B9',
            'conversion_value': '12000',
            'currency_code': 'JPY',
            'gclid': 'Cj0-manual',
            'conversion_date_time': '2025-02-28 18:30:00+09:00',
        })

        assert result.is_success
        row = result.data['conversion_data']
        assert row['order_id'] == 'B9'
        assert row['conversion_value'] == 12000.0
        assert row['gclid'] == 'Cj0-manual'
        assert row['conversion_date_time'] == '2025-02-28 18:30:00+09:00'
        attempt_repository.append.assert_not_called()

    def test_manual_upload_rejects_invalid_input(self, service, google_ads_client):
        result = service.upload_manual_conversion({'value': 100, 'currency': 'JPY'})

        assert result.is_failure
        assert result.error_code == 'VALIDATION_ERROR'
        assert result.metadata['issues'][0]['field'] == 'transaction_id'
        google_ads_client.upload_conversions.assert_not_called()

    def test_manual_upload_reports_platform_errors(self, service, google_ads_client):
        google_ads_client.upload_conversions.side_effect = AdPlatformError('Failed to upload conversion: HTTP 400')

        result = service.upload_manual_conversion({'transaction_id': 'B9', 'value': 100, 'currency': 'JPY'})

        assert result.is_failure
        assert result.error_code == 'TRACKING_FAILURE'


class TestBackupConversionResult:

    def test_to_dict_omits_empty_fields(self):
        assert BackupConversionResult(success=False, error='Booking not found').to_dict() == {
            'success': False,
            'error': 'Booking not found',
        }
