"""
Tests for the client-path delivery channels
"""

import json
from unittest.mock import MagicMock, Mock, patch

import pytest
import redis
import requests

from services.common.exceptions import ConfigurationError, NetworkError, TrackingFailure
from services.event_sinks import HttpTagTransport, InMemoryEventSink, RedisEventQueueSink

EVENT = {
    'event': 'purchase',
    'value': 9000.0,
    'currency': 'JPY',
    'transaction_id': 'B1',
    'attribution': {'gclid': 'Cj0-test', 'source': 'google'},
}


def is_placeholder(value):
    return not value or 'XXXXXXXXX' in value


class TestHttpTagTransport:

    @pytest.fixture
    def transport(self):
        return HttpTagTransport(
            conversion_id='AW-1234567890',
            endpoint_url='https://www.googleadservices.com/pagead/conversion/',
            placeholder_check=is_placeholder,
        )

    @patch('services.event_sinks.requests.get')
    def test_send_builds_conversion_hit(self, mock_get, transport):
        mock_get.return_value = Mock(status_code=200)

        transport.send('PurchaseLbl01', EVENT, timeout=5.0)

        url = mock_get.call_args.args[0]
        params = mock_get.call_args.kwargs['params']
        assert url == 'https://www.googleadservices.com/pagead/conversion/1234567890/'
        assert params['label'] == 'PurchaseLbl01'
        assert params['value'] == 9000.0
        assert params['currency_code'] == 'JPY'
        assert params['oid'] == 'B1'
        assert params['gclid'] == 'Cj0-test'
        assert 'source' not in params
        assert mock_get.call_args.kwargs['timeout'] == 5.0

    @patch('services.event_sinks.requests.get')
    def test_placeholder_conversion_id_is_configuration_error(self, mock_get):
        transport = HttpTagTransport('AW-XXXXXXXXX', 'https://example.com', placeholder_check=is_placeholder)

        with pytest.raises(ConfigurationError):
            transport.send('PurchaseLbl01', EVENT, timeout=5.0)
        mock_get.assert_not_called()

    @patch('services.event_sinks.requests.get')
    def test_timeout_is_network_error(self, mock_get, transport):
        mock_get.side_effect = requests.Timeout('read timed out')

        with pytest.raises(NetworkError) as exc_info:
            transport.send('PurchaseLbl01', EVENT, timeout=5.0)
        assert exc_info.value.retryable

    @patch('services.event_sinks.requests.get')
    def test_server_error_is_network_error(self, mock_get, transport):
        mock_get.return_value = Mock(status_code=503)

        with pytest.raises(NetworkError) as exc_info:
            transport.send('PurchaseLbl01', EVENT, timeout=5.0)
        assert exc_info.value.details == {'status_code': 503}

    @patch('services.event_sinks.requests.get')
    def test_client_error_is_tracking_failure(self, mock_get, transport):
        mock_get.return_value = Mock(status_code=400)

        with pytest.raises(TrackingFailure):
            transport.send('PurchaseLbl01', EVENT, timeout=5.0)

    @patch('services.event_sinks.requests.get')
    def test_load_records_script_timing_once(self, mock_get, transport):
        mock_get.return_value = Mock(status_code=200)
        transport.monitor = MagicMock()

        assert transport.load() is True
        assert transport.load() is True

        mock_get.assert_called_once()
        transport.monitor.record_script_load.assert_called_once()

    @patch('services.event_sinks.requests.get')
    def test_load_failure_reports_script_load_error(self, mock_get, transport):
        mock_get.side_effect = requests.ConnectionError('dns')
        transport.monitor = MagicMock()

        assert transport.load() is False

        error = transport.monitor.report_error.call_args.args[0]
        assert error.error_type.value == 'script_load_failure'
        assert transport.loaded is False


class TestRedisEventQueueSink:

    def test_push_appends_json_to_queue(self):
        client = Mock(spec=redis.Redis)
        sink = RedisEventQueueSink(client, 'tracking:datalayer')

        sink.push(EVENT)

        key, body = client.rpush.call_args.args
        assert key == 'tracking:datalayer'
        assert json.loads(body) == EVENT

    def test_is_ready_pings(self):
        client = Mock(spec=redis.Redis)
        client.ping.return_value = True

        assert RedisEventQueueSink(client, 'q').is_ready() is True

    def test_unreachable_redis_is_not_ready(self):
        client = Mock(spec=redis.Redis)
        client.ping.side_effect = redis.ConnectionError('refused')

        assert RedisEventQueueSink(client, 'q').is_ready() is False


class TestInMemoryEventSink:

    def test_records_copies_of_events(self):
        sink = InMemoryEventSink()
        event = dict(EVENT)

        sink.push(event)
        event['value'] = 1

        assert sink.events[0]['value'] == 9000.0

    def test_fail_with_raises(self):
        sink = InMemoryEventSink(fail_with=RuntimeError('down'))

        with pytest.raises(RuntimeError):
            sink.push(EVENT)
        assert sink.is_ready() is False
