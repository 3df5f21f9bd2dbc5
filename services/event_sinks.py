"""
Delivery channels for client-side conversion events

TagTransport is the primary path: a direct call to the ad platform's
conversion tag endpoint. EventSinks are the secondary, best-effort
tag-manager queue that independently configured tag rules consume.
"""

import json
import threading
import time
from typing import Any, Dict, List, Optional, Protocol

import redis
import requests

from logging_config import get_logger, performance_logger
from services.common.exceptions import ConfigurationError, NetworkError, ScriptLoadError, TrackingFailure

logger = get_logger(__name__)


class EventSink(Protocol):
    """Anything that accepts a structured event object"""
    name: str

    def push(self, event: Dict[str, Any]) -> None:
        ...

    def is_ready(self) -> bool:
        ...


class RedisEventQueueSink:
    """Appends JSON events to a Redis list consumed by the tag-manager worker"""

    name = 'tag_manager_queue'

    def __init__(self, redis_client: redis.Redis, queue_key: str):
        self.redis_client = redis_client
        self.queue_key = queue_key

    @classmethod
    def from_url(cls, redis_url: str, queue_key: str) -> 'RedisEventQueueSink':
        return cls(redis.from_url(redis_url, decode_responses=True), queue_key)

    def push(self, event: Dict[str, Any]) -> None:
        self.redis_client.rpush(self.queue_key, json.dumps(event, default=str))

    def is_ready(self) -> bool:
        try:
            return bool(self.redis_client.ping())
        except redis.RedisError as e:
            logger.warning("Event queue unavailable", queue=self.queue_key, error=str(e))
            return False


class InMemoryEventSink:
    """Records pushed events; used by tests and local development"""

    def __init__(self, name: str = 'memory', fail_with: Optional[Exception] = None):
        self.name = name
        self.events: List[Dict[str, Any]] = []
        self.fail_with = fail_with
        self._lock = threading.Lock()

    def push(self, event: Dict[str, Any]) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        with self._lock:
            self.events.append(dict(event))

    def is_ready(self) -> bool:
        return self.fail_with is None


class HttpTagTransport:
    """
    Direct call to the conversion tag endpoint
    (https://www.googleadservices.com/pagead/conversion/<id>/).
    """

    SCRIPT_URL = 'https://www.googletagmanager.com/gtag/js'

    def __init__(self, conversion_id: Optional[str], endpoint_url: str, monitor=None,
                 placeholder_check=None):
        self.conversion_id = conversion_id
        self.endpoint_url = endpoint_url.rstrip('/')
        self.monitor = monitor
        self._is_placeholder = placeholder_check or (lambda value: not value)
        self.loaded = False
        self._load_lock = threading.Lock()

    @property
    def numeric_conversion_id(self) -> str:
        return (self.conversion_id or '').replace('AW-', '')

    def is_available(self) -> bool:
        """Configured with a real conversion id"""
        return not self._is_placeholder(self.conversion_id)

    def load(self, timeout: float = 10.0) -> bool:
        """
        Fetch the tag script once and record how long it took.

        Returns:
            True if the script is (now) loaded
        """
        if self.loaded:
            return True
        with self._load_lock:
            if self.loaded:
                return True
            started = time.monotonic()
            try:
                response = requests.get(self.SCRIPT_URL, params={'id': self.conversion_id}, timeout=timeout)
                response.raise_for_status()
            except requests.RequestException as e:
                logger.error("Tag script failed to load", error=str(e))
                if self.monitor is not None:
                    self.monitor.report_error(ScriptLoadError(f"Tag script failed to load: {e}"))
                return False
            duration = time.monotonic() - started
            if self.monitor is not None:
                self.monitor.record_script_load(duration)
            self.loaded = True
            logger.info("Tag script loaded", duration_ms=round(duration * 1000, 1))
            return True

    def send(self, label: str, event: Dict[str, Any], timeout: float) -> None:
        """
        Fire one conversion hit.

        Raises:
            ConfigurationError: No usable conversion id
            NetworkError: Timeout, connection failure or 5xx
            TrackingFailure: Endpoint answered but refused the hit
        """
        if not self.is_available():
            raise ConfigurationError("Google Ads conversion ID not configured")

        params = {
            'label': label,
            'guid': 'ON',
            'script': '0',
        }
        if event.get('value') is not None:
            params['value'] = event['value']
        if event.get('currency'):
            params['currency_code'] = event['currency']
        if event.get('transaction_id'):
            params['oid'] = event['transaction_id']
        attribution = event.get('attribution') or {}
        for click_id in ('gclid', 'wbraid', 'gbraid'):
            if attribution.get(click_id):
                params[click_id] = attribution[click_id]

        url = f"{self.endpoint_url}/{self.numeric_conversion_id}/"
        started = time.monotonic()
        try:
            response = requests.get(url, params=params, timeout=timeout)
        except requests.Timeout as e:
            raise NetworkError(f"Conversion tag request timed out: {e}")
        except requests.RequestException as e:
            raise NetworkError(f"Conversion tag request failed: {e}")

        duration_ms = (time.monotonic() - started) * 1000
        performance_logger.log_api_call('google_ads_tag', 'pagead/conversion', duration_ms, response.status_code)

        if response.status_code >= 500:
            raise NetworkError(f"Conversion tag endpoint returned HTTP {response.status_code}",
                               {'status_code': response.status_code})
        if response.status_code >= 400:
            raise TrackingFailure(f"Conversion tag rejected: HTTP {response.status_code}",
                                  {'status_code': response.status_code})
