"""
Google Ads API client for server-side conversion uploads

Handles the OAuth refresh-token exchange and the uploadConversions call.
Access tokens are cached in memory only and refreshed shortly before expiry;
a lock makes concurrent callers share a single refresh.
"""

import threading
import time
from datetime import timedelta
from typing import Any, Dict, List, Optional

import requests

from logging_config import get_logger, performance_logger
from services.common.exceptions import AdPlatformError, NetworkError, TokenRefreshError
from utils.clock import Clock, system_clock

logger = get_logger(__name__)


class GoogleAdsTokenProvider:
    """Refresh-token exchange with expiry-aware, single-flight caching"""

    TOKEN_URL = 'https://oauth2.googleapis.com/token'
    REFRESH_MARGIN = timedelta(seconds=60)

    def __init__(self, client_id: str, client_secret: str, refresh_token: str,
                 clock: Clock = system_clock, timeout=(5, 10)):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.clock = clock
        self.timeout = timeout
        self._access_token: Optional[str] = None
        self._expires_at = None
        self._lock = threading.Lock()

    def get_access_token(self) -> str:
        """
        Return a valid access token, refreshing it if needed.

        Raises:
            TokenRefreshError: If the exchange fails
        """
        if self._token_is_fresh():
            return self._access_token

        with self._lock:
            # Another thread may have refreshed while we waited
            if self._token_is_fresh():
                return self._access_token
            self._refresh()
            return self._access_token

    def invalidate(self) -> None:
        with self._lock:
            self._access_token = None
            self._expires_at = None

    def _token_is_fresh(self) -> bool:
        return (
            self._access_token is not None
            and self._expires_at is not None
            and self.clock.now() < self._expires_at - self.REFRESH_MARGIN
        )

    def _refresh(self) -> None:
        data = {
            'client_id': self.client_id,
            'client_secret': self.client_secret,
            'refresh_token': self.refresh_token,
            'grant_type': 'refresh_token',
        }
        try:
            response = requests.post(self.TOKEN_URL, data=data, timeout=self.timeout)
        except requests.RequestException as e:
            raise TokenRefreshError(f"Failed to get access token: {e}")

        if response.status_code != 200:
            raise TokenRefreshError(
                f"Failed to get access token: HTTP {response.status_code}",
                {'status_code': response.status_code}
            )

        try:
            token_data = response.json()
            self._access_token = token_data['access_token']
        except (ValueError, KeyError):
            raise TokenRefreshError("Token response did not contain an access_token")

        expires_in = int(token_data.get('expires_in', 3600))
        self._expires_at = self.clock.now() + timedelta(seconds=expires_in)
        logger.info("Refreshed Google Ads access token", expires_in=expires_in)


class GoogleAdsClient:
    """Thin client over the uploadConversions REST endpoint"""

    BASE_URL = 'https://googleads.googleapis.com'

    def __init__(self, developer_token: str, customer_id: str,
                 token_provider: GoogleAdsTokenProvider, api_version: str = 'v14',
                 login_customer_id: Optional[str] = None, timeout=(5, 10)):
        self.developer_token = developer_token
        self.customer_id = (customer_id or '').replace('-', '')
        self.login_customer_id = (login_customer_id or '').replace('-', '') or None
        self.token_provider = token_provider
        self.api_version = api_version
        self.timeout = timeout

    @property
    def upload_url(self) -> str:
        return f"{self.BASE_URL}/{self.api_version}/customers/{self.customer_id}:uploadConversions"

    def conversion_action_resource(self, conversion_action_id: str) -> str:
        return f"customers/{self.customer_id}/conversionActions/{conversion_action_id}"

    def upload_conversions(self, conversions: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Upload conversion rows with partial failure enabled.

        A partial_failure_error in the response is treated as a failure of
        the whole batch; callers upload one booking per batch. A 401 drops
        the cached token and resends once with a fresh one.

        Returns:
            Parsed response body

        Raises:
            TokenRefreshError: Access token could not be obtained or was rejected twice
            NetworkError: Transport failure, timeout, 429 or 5xx
            AdPlatformError: Request or row rejected by the API
        """
        body = {
            'conversions': conversions,
            'partial_failure_enabled': True,
        }

        response = self._post(body)
        if response.status_code == 401:
            logger.warning("Google Ads rejected the access token, refreshing")
            self.token_provider.invalidate()
            response = self._post(body)
            if response.status_code == 401:
                self.token_provider.invalidate()
                raise TokenRefreshError("Google Ads rejected a freshly refreshed access token",
                                        {'status_code': 401})

        if response.status_code == 429 or response.status_code >= 500:
            raise NetworkError(
                f"Google Ads API unavailable: HTTP {response.status_code}",
                {'status_code': response.status_code}
            )
        if response.status_code != 200:
            raise AdPlatformError(
                f"Failed to upload conversion: HTTP {response.status_code}",
                {'status_code': response.status_code, 'response': response.text[:500]}
            )

        try:
            result = response.json()
        except ValueError:
            raise AdPlatformError("Google Ads returned a non-JSON response")

        partial_failure = result.get('partial_failure_error') or result.get('partialFailureError')
        if partial_failure:
            logger.error("Partial failure in conversion upload", partial_failure_error=partial_failure)
            raise AdPlatformError(
                "Conversion rejected by Google Ads (partial failure)",
                {'partial_failure_error': partial_failure}
            )

        return result

    def _post(self, body: Dict[str, Any]) -> requests.Response:
        headers = {
            'Authorization': f'Bearer {self.token_provider.get_access_token()}',
            'developer-token': self.developer_token,
            'Content-Type': 'application/json',
        }
        if self.login_customer_id:
            headers['login-customer-id'] = self.login_customer_id

        started = time.monotonic()
        try:
            response = requests.post(self.upload_url, json=body, headers=headers, timeout=self.timeout)
        except requests.Timeout as e:
            raise NetworkError(f"Google Ads upload timed out: {e}")
        except requests.RequestException as e:
            raise NetworkError(f"Google Ads upload failed: {e}")

        duration_ms = (time.monotonic() - started) * 1000
        performance_logger.log_api_call('google_ads', 'uploadConversions', duration_ms, response.status_code)
        return response
