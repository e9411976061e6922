"""
UniFi controller API client for the v2 traffic endpoints
Handles cookie based authentication, session expiry and retries with linear backoff
"""
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

import requests
import urllib3

from errors import AuthError, InsightsError, RequestTimeoutError, ResponseError
from logger import debug, info, warning
from utils import api_request, sleep_ms

# UniFi OS uses a self-signed certificate by default
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

LOGIN_PATH = '/api/auth/login'
LOGOUT_PATH = '/api/auth/logout'
SESSION_EXPIRED_STATUSES = (401, 403)


@dataclass
class SessionCredential:
    """Cookie header plus optional anti-forgery token from a successful login."""
    cookies: str
    csrf_token: Optional[str] = None
    acquired_at: float = field(default_factory=time.time)
    valid: bool = True

    def invalidate(self):
        self.valid = False

    def headers(self) -> Dict[str, str]:
        headers = {'Cookie': self.cookies}
        if self.csrf_token:
            headers['X-CSRF-Token'] = self.csrf_token
        return headers


def _extract_cookies(response) -> str:
    """Build a Cookie header value from a login response."""
    jar = getattr(response, 'cookies', None)
    if jar:
        pairs = [f"{name}={value}" for name, value in jar.items()]
        if pairs:
            return '; '.join(pairs)

    set_cookie = response.headers.get('set-cookie')
    if set_cookie:
        return '; '.join(cookie.split(';')[0].strip() for cookie in set_cookie.split(','))
    return ''


class UniFiClient:
    """Client for the UniFi OS network application (v2 API)."""

    def __init__(self, url: str, username: str, password: str, site: str = 'default',
                 verify_ssl: bool = False, timeout: int = 30000, max_retries: int = 3,
                 retry_delay: int = 5000):
        """
        Args:
            url: Controller base URL (e.g. https://192.168.8.1)
            username: Local controller account
            password: Account password
            site: Site identifier used in the v2 paths
            verify_ssl: Verify the controller certificate
            timeout: Per-request timeout in milliseconds
            max_retries: Total attempts per request
            retry_delay: Base delay in milliseconds, multiplied by the attempt number
        """
        self.base_url = url.rstrip('/')
        self.username = username
        self.password = password
        self.site = site or 'default'
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._credential: Optional[SessionCredential] = None

    @property
    def is_authenticated(self) -> bool:
        return self._credential is not None and self._credential.valid

    def _clear_session(self):
        if self._credential is not None:
            self._credential.invalidate()
        self._credential = None

    def _send(self, method: str, path: str, headers: Optional[Dict] = None,
              timeout: Optional[int] = None, **kwargs):
        """Issue one HTTP call, translating a requests timeout into RequestTimeoutError."""
        url = f"{self.base_url}{path}"
        timeout_ms = timeout if timeout is not None else self.timeout

        try:
            return api_request(
                method,
                url,
                headers=headers or {},
                timeout=timeout_ms / 1000.0,
                verify=self.verify_ssl,
                **kwargs
            )
        except requests.exceptions.Timeout as e:
            raise RequestTimeoutError(f"Request timeout after {timeout_ms}ms: {url}",
                                      timeout_ms=timeout_ms) from e

    def login(self) -> bool:
        """
        Authenticate with the controller and store the session credential.

        Raises:
            AuthError: Controller answered with a non-success status
            RequestTimeoutError / requests.ConnectionError: Controller unreachable
        """
        debug("Authenticating with UniFi controller at %s", self.base_url)

        response = self._send(
            'POST',
            LOGIN_PATH,
            headers={'Content-Type': 'application/json'},
            json={'username': self.username, 'password': self.password},
        )

        if not response.ok:
            raise AuthError(f"Authentication failed: {response.status_code} {response.reason}",
                            status_code=response.status_code)

        self._credential = SessionCredential(
            cookies=_extract_cookies(response),
            csrf_token=response.headers.get('x-csrf-token'),
        )

        info("Successfully authenticated with UniFi controller")
        return True

    # alias used by the startup wait
    authenticate = login

    def request(self, path: str, method: str = 'GET', **options):
        """
        Make an authenticated request, re-authenticating and retrying as needed.

        A missing credential is acquired first. A 401/403 answer drops the
        credential so the next attempt logs in again. Timeouts and connection
        errors also drop it, since the session may be stale. Each failed
        attempt waits retry_delay * attempt before the next one.

        Args:
            path: Path below the controller base URL
            method: HTTP method
            **options: Extra keyword arguments for requests (headers, json, params)

        Returns:
            requests.Response: The first response that is not a 401/403

        Raises:
            The last error once max_retries attempts are exhausted
        """
        last_error = None
        extra_headers = options.pop('headers', None) or {}

        for attempt in range(1, self.max_retries + 1):
            try:
                if not self.is_authenticated:
                    self.login()

                headers = {'Content-Type': 'application/json'}
                headers.update(self._credential.headers())
                headers.update(extra_headers)

                debug("Requesting %s%s (attempt %d)", self.base_url, path, attempt)
                response = self._send(method, path, headers=headers, **options)

                if response.status_code in SESSION_EXPIRED_STATUSES:
                    warning("Session expired (%d), re-authenticating...", response.status_code)
                    self._clear_session()
                    last_error = AuthError(
                        f"Session rejected: {response.status_code} {response.reason}",
                        status_code=response.status_code,
                    )
                    continue

                return response

            except (RequestTimeoutError, requests.exceptions.ConnectionError) as e:
                last_error = e
                self._clear_session()
                warning("Request attempt %d/%d failed: %s", attempt, self.max_retries, e)

            except (InsightsError, requests.exceptions.RequestException) as e:
                last_error = e
                warning("Request attempt %d/%d failed: %s", attempt, self.max_retries, e)

            if attempt < self.max_retries:
                delay = self.retry_delay * attempt
                info("Retrying in %.1fs...", delay / 1000.0)
                sleep_ms(delay)

        raise last_error

    def _get_json(self, path: str, what: str):
        response = self.request(path)

        if not response.ok:
            raise ResponseError(f"Failed to get {what}: {response.status_code} {response.reason}",
                                status_code=response.status_code, body=response.text)

        return response.json()

    def get_traffic_by_app(self, start: int, end: int) -> Dict:
        """
        Get traffic data by application for all clients.

        Args:
            start: Start timestamp in milliseconds
            end: End timestamp in milliseconds
        """
        path = f"/proxy/network/v2/api/site/{self.site}/traffic?start={start}&end={end}"
        data = self._get_json(path, 'traffic data')
        debug("Got traffic data for %d clients", len(data.get('client_usage_by_app') or []))
        return data

    def get_traffic_by_country(self, start: int, end: int) -> Dict:
        """
        Get traffic data by country.

        Args:
            start: Start timestamp in milliseconds
            end: End timestamp in milliseconds
        """
        path = f"/proxy/network/v2/api/site/{self.site}/country-traffic?start={start}&end={end}"
        data = self._get_json(path, 'country traffic')
        debug("Got traffic data for %d countries", len(data.get('usage_by_country') or []))
        return data

    def logout(self, timeout: Optional[int] = None):
        """
        Best-effort logout. Local session state is always cleared.

        Args:
            timeout: Optional override of the request timeout in milliseconds
        """
        if not self.is_authenticated:
            return

        try:
            self._send('POST', LOGOUT_PATH, headers=self._credential.headers(), timeout=timeout)
            debug("Logged out from UniFi controller")
        except Exception as e:
            warning("Logout failed (non-critical): %s", e)
        finally:
            self._clear_session()
