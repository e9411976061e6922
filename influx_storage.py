"""
InfluxDB storage for UniFi traffic data.

Writes points with influxdb-client (InfluxDB 1.8+ compatibility endpoint:
token "user:password", org "-", bucket "database/retention_policy") and runs
raw InfluxQL read queries for the gateway over the 1.x /query API.

Features:
- Generators per measurement so large controller payloads are streamed
- Batched synchronous writes (500 points per request by default)
- Linear backoff retry on rejected or failed writes
- Ping that never raises, for startup polling

Measurements written:
- traffic_by_app: per client, per application byte counts
- traffic_total_by_app: per application totals across clients
- traffic_by_country: per country byte counts
"""
from typing import Dict, Iterable, Iterator, List, Optional

import requests
import urllib3
from influxdb_client import InfluxDBClient, Point, WritePrecision
from influxdb_client.client.write_api import SYNCHRONOUS
from influxdb_client.rest import ApiException

from dpi_mappings import get_application_name, get_category_name
from errors import RequestTimeoutError, ResponseError, WriteError
from logger import debug, warning
from utils import retry_linear, sleep_ms

# Milliseconds to nanoseconds
NS_PER_MS = 1000000

# Tag value used when the controller leaves a tag empty
UNKNOWN_TAG = 'unknown'


def tag_value(value) -> str:
    """Tag value as a string; None and blank values become "unknown"."""
    if value is None:
        return UNKNOWN_TAG
    text = str(value)
    return text if text.strip() else UNKNOWN_TAG


def _int_field(value) -> int:
    """Integer field value; missing or non-numeric input counts as zero."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError, OverflowError):
            return 0


def _app_point(measurement: str, record: Dict) -> Point:
    app_id = record.get('application')
    category_id = record.get('category')
    app_name = record.get('application_name') or get_application_name(app_id, category_id)
    category_name = record.get('category_name') or get_category_name(category_id)

    return (Point(measurement)
            .tag('application', tag_value(app_id))
            .tag('category', tag_value(category_id))
            .tag('application_name', tag_value(app_name))
            .tag('category_name', tag_value(category_name)))


class InfluxStorage:
    """InfluxDB writer and query client."""

    def __init__(self, url: str, database: str, username: str = '', password: str = '',
                 retention_policy: str = 'autogen', timeout: int = 30000, max_retries: int = 3,
                 retry_delay: int = 5000, batch_size: int = 500):
        """
        Args:
            url: InfluxDB base URL (e.g. http://localhost:8086)
            database: Database name for writes and queries
            username: Optional user
            password: Optional password
            retention_policy: Retention policy points are written to
            timeout: Per-request timeout in milliseconds
            max_retries: Total attempts per write or ping
            retry_delay: Base delay in milliseconds, multiplied by the attempt number
            batch_size: Points per write request
        """
        self.base_url = url.rstrip('/')
        self.database = database
        self.username = username
        self.password = password
        self.bucket = f"{database}/{retention_policy or 'autogen'}"
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.batch_size = max(1, batch_size)

        token = f"{username}:{password}" if username else None
        self._client = InfluxDBClient(url=self.base_url, token=token, org='-', timeout=timeout)
        self._write_api = self._client.write_api(write_options=SYNCHRONOUS)

    @property
    def _auth(self):
        if self.username and self.password:
            return (self.username, self.password)
        return None

    def close(self):
        """Release the client's HTTP connections."""
        self._client.close()

    # ------------------------------------------------------------------
    # Point conversion
    # ------------------------------------------------------------------

    def traffic_by_app_points(self, data: Dict, timestamp: int) -> Iterator[Point]:
        """
        Convert per-client application usage to traffic_by_app points.

        Args:
            data: Controller payload containing client_usage_by_app
            timestamp: Reference time in milliseconds
        """
        ts = int(timestamp) * NS_PER_MS

        for client_data in data.get('client_usage_by_app') or []:
            client = client_data.get('client') if isinstance(client_data, dict) else None
            if not client:
                continue

            client_mac = tag_value(client.get('mac'))
            client_name = tag_value(client.get('name') or client.get('hostname') or client.get('mac'))
            is_wired = 'true' if client.get('is_wired') else 'false'

            for usage in client_data.get('usage_by_app') or []:
                try:
                    point = (_app_point('traffic_by_app', usage)
                             .tag('client_mac', client_mac)
                             .tag('client_name', client_name)
                             .tag('is_wired', is_wired)
                             .field('bytes_rx', _int_field(usage.get('bytes_received')))
                             .field('bytes_tx', _int_field(usage.get('bytes_transmitted')))
                             .field('bytes_total', _int_field(usage.get('total_bytes')))
                             .field('activity_seconds', _int_field(usage.get('activity_seconds')))
                             .time(ts, WritePrecision.NS))
                except AttributeError:
                    warning("Skipping malformed usage record for client %s: %r", client_mac, usage)
                    continue

                yield point

    def total_usage_by_app_points(self, data: Dict, timestamp: int) -> Iterator[Point]:
        """Convert aggregate application usage to traffic_total_by_app points."""
        ts = int(timestamp) * NS_PER_MS

        for app_data in data.get('total_usage_by_app') or []:
            try:
                point = (_app_point('traffic_total_by_app', app_data)
                         .field('bytes_rx', _int_field(app_data.get('bytes_received')))
                         .field('bytes_tx', _int_field(app_data.get('bytes_transmitted')))
                         .field('bytes_total', _int_field(app_data.get('total_bytes')))
                         .field('client_count', _int_field(app_data.get('client_count')))
                         .time(ts, WritePrecision.NS))
            except AttributeError:
                warning("Skipping malformed application total: %r", app_data)
                continue

            yield point

    def traffic_by_country_points(self, data: Dict, timestamp: int) -> Iterator[Point]:
        """Convert usage_by_country to traffic_by_country points."""
        ts = int(timestamp) * NS_PER_MS

        for country_data in data.get('usage_by_country') or []:
            try:
                point = (Point('traffic_by_country')
                         .tag('country', tag_value(country_data.get('country')))
                         .field('bytes_rx', _int_field(country_data.get('bytes_received')))
                         .field('bytes_tx', _int_field(country_data.get('bytes_transmitted')))
                         .field('bytes_total', _int_field(country_data.get('total_bytes')))
                         .time(ts, WritePrecision.NS))
            except AttributeError:
                warning("Skipping malformed country record: %r", country_data)
                continue

            yield point

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @retry_linear(retry_on=(WriteError,))
    def write_batch(self, points: List[Point]) -> int:
        """
        Write one batch of points.

        Returns:
            int: Number of points written

        Raises:
            WriteError: InfluxDB rejected the batch or could not be reached on every attempt
        """
        if not points:
            return 0

        try:
            self._write_api.write(bucket=self.bucket, record=points, write_precision=WritePrecision.NS)
        except ApiException as e:
            raise WriteError(f"InfluxDB write failed: {e.status} {e.reason} - {e.body}",
                             status_code=e.status) from e
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise WriteError(f"InfluxDB write failed: {e}") from e

        return len(points)

    def write_points(self, points: Iterable[Point]) -> int:
        """
        Consume points and write them in batches.

        Returns:
            int: Total points written

        Raises:
            WriteError: A batch failed after retries; ``points`` holds what was
            written before the failure
        """
        batch = []
        total_written = 0

        def flush():
            nonlocal total_written
            try:
                total_written += self.write_batch(batch)
            except WriteError as e:
                e.points = total_written
                raise

        for point in points:
            batch.append(point)
            if len(batch) >= self.batch_size:
                flush()
                batch = []

        if batch:
            flush()

        return total_written

    def write_traffic_by_app(self, data: Dict, timestamp: int) -> int:
        return self.write_points(self.traffic_by_app_points(data, timestamp))

    def write_total_usage_by_app(self, data: Dict, timestamp: int) -> int:
        return self.write_points(self.total_usage_by_app_points(data, timestamp))

    def write_traffic_by_country(self, data: Dict, timestamp: int) -> int:
        return self.write_points(self.traffic_by_country_points(data, timestamp))

    # ------------------------------------------------------------------
    # Health and queries
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """
        Check that InfluxDB answers /ping, retrying with linear backoff.

        Returns:
            bool: True when reachable, False otherwise (never raises)
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                if self._client.ping():
                    return True
                warning("Ping attempt %d/%d failed", attempt, self.max_retries)
            except (ApiException, urllib3.exceptions.HTTPError, OSError) as e:
                warning("Ping attempt %d/%d failed: %s", attempt, self.max_retries, e)

            if attempt < self.max_retries:
                delay = self.retry_delay * attempt
                debug("Retrying ping in %.1fs...", delay / 1000.0)
                sleep_ms(delay)

        return False

    def query(self, statement: str, epoch: Optional[str] = None) -> Dict:
        """
        Run an InfluxQL statement through /query and return the decoded JSON body.

        influxdb-client only speaks Flux for reads, so InfluxQL goes to the
        1.x endpoint directly. Callers outside the collector must go through
        QueryGateway, which validates the statement first.

        Args:
            statement: InfluxQL statement
            epoch: Optional timestamp precision (ms, s, ...) instead of RFC3339

        Raises:
            ResponseError: Non-success HTTP status (status_code and body attached)
            RequestTimeoutError: The request exceeded its deadline
        """
        params = {'db': self.database}
        if epoch:
            params['epoch'] = epoch

        url = f"{self.base_url}/query"
        debug("Querying InfluxDB: %s", statement[:200])
        try:
            response = requests.post(url, params=params, data={'q': statement},
                                     auth=self._auth, timeout=self.timeout / 1000.0)
        except requests.exceptions.Timeout as e:
            raise RequestTimeoutError(f"Request timeout after {self.timeout}ms: {url}",
                                      timeout_ms=self.timeout) from e

        if not response.ok:
            raise ResponseError(f"InfluxDB query failed: {response.status_code} {response.reason}",
                                status_code=response.status_code, body=response.text)

        return response.json()
