"""
Traffic Collector Module

Polls the UniFi controller for DPI traffic (per application and per country)
and writes it to InfluxDB. Runs as a scheduled job via APScheduler (see clock.py).

The collector never gives up: startup waits retry forever, and a failing data
family only marks the cycle as degraded.

Lifecycle:
    WAITING_STORE -> WAITING_CONTROLLER -> READY -> COLLECTING -> READY
                                                              \\-> FAULTED_CONTINUING -> COLLECTING ...
"""

import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from config import get_collector_config, get_influx_config, get_unifi_config
from influx_storage import InfluxStorage
from logger import debug, error, exception, info, warning
from unifi_api import UniFiClient
from utils import get_api_stats, sanitize_url_for_log, sleep_ms


class CollectorState(Enum):
    WAITING_STORE = 'waiting_store'
    WAITING_CONTROLLER = 'waiting_controller'
    READY = 'ready'
    COLLECTING = 'collecting'
    FAULTED_CONTINUING = 'faulted_continuing'


_TRANSITIONS = {
    CollectorState.WAITING_STORE: {CollectorState.WAITING_CONTROLLER},
    CollectorState.WAITING_CONTROLLER: {CollectorState.READY},
    CollectorState.READY: {CollectorState.COLLECTING},
    CollectorState.COLLECTING: {CollectorState.READY, CollectorState.FAULTED_CONTINUING},
    CollectorState.FAULTED_CONTINUING: {CollectorState.COLLECTING},
}


class InvalidTransition(RuntimeError):
    pass


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


@dataclass
class HealthState:
    """Process-wide collection health. Only a process restart resets it."""
    consecutive_failures: int = 0
    total_collections: int = 0
    total_errors: int = 0
    last_success: Optional[str] = None
    last_error: Optional[Dict] = None
    influx_connected: bool = False
    unifi_connected: bool = False

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class CollectionResult:
    points: int = 0
    errors: List[str] = field(default_factory=list)


class TrafficCollector:
    """Background collector for UniFi DPI traffic data."""

    def __init__(self, unifi: UniFiClient, storage: InfluxStorage, config: Optional[Dict] = None):
        """
        Args:
            unifi: Controller client
            storage: InfluxDB writer
            config: Timing settings (see config.get_collector_config())
        """
        config = config or get_collector_config()
        self.unifi = unifi
        self.storage = storage
        self.collection_interval = config['collection_interval']
        self.startup_retry_delay = config['startup_retry_delay']
        self.startup_log_every = config.get('startup_log_every', 10)
        self.health_warning_every = config.get('health_warning_every', 5)

        self.health = HealthState()
        self.state = CollectorState.WAITING_STORE
        self._lock = threading.Lock()

        debug("TrafficCollector initialized (interval: %ds)", self.collection_interval // 1000)

    def transition(self, new_state: CollectorState):
        """
        Move to a new lifecycle state.

        Raises:
            InvalidTransition: The move is not part of the lifecycle
        """
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.name} -> {new_state.name}")
        debug("Collector state: %s -> %s", self.state.name, new_state.name)
        self.state = new_state

    def reset_lifecycle(self):
        """Back to WAITING_STORE for a fresh startup. Health is kept."""
        with self._lock:
            self.state = CollectorState.WAITING_STORE

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def _log_waiting(self, attempt: int, service: str, reason: str = ''):
        detail = f" ({reason})" if reason else ''
        if attempt == 1:
            warning("%s not reachable%s, will keep retrying every %ds...",
                    service, detail, self.startup_retry_delay // 1000)
        elif attempt % self.startup_log_every == 0:
            warning("Still waiting for %s (attempt %d)%s...", service, attempt, detail)

    def wait_for_store(self) -> int:
        """
        Block until InfluxDB answers /ping. Retries forever.

        Returns:
            int: Number of attempts it took
        """
        attempt = 0
        while True:
            attempt += 1
            if self.storage.ping():
                if not self.health.influx_connected:
                    info("InfluxDB connection established")
                    self.health.influx_connected = True
                return attempt

            self.health.influx_connected = False
            self._log_waiting(attempt, 'InfluxDB')
            sleep_ms(self.startup_retry_delay)

    def wait_for_controller(self) -> int:
        """
        Block until the controller accepts our credentials. Retries forever.

        Returns:
            int: Number of attempts it took
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                self.unifi.authenticate()
                if not self.health.unifi_connected:
                    info("UniFi authentication successful")
                    self.health.unifi_connected = True
                return attempt
            except Exception as e:
                self.health.unifi_connected = False
                self._log_waiting(attempt, 'UniFi', str(e))
                sleep_ms(self.startup_retry_delay)

    def initialize(self):
        """Wait for both services, then become READY."""
        info("=" * 60)
        info("UniFi Traffic Collector starting")
        info("UniFi URL: %s", sanitize_url_for_log(self.unifi.base_url))
        info("InfluxDB URL: %s", sanitize_url_for_log(self.storage.base_url))
        info("Database: %s", self.storage.database)
        info("Collection interval: %ds", self.collection_interval // 1000)
        info("Request timeout: %ds", self.unifi.timeout // 1000)
        info("Max retries per request: %d", self.unifi.max_retries)
        info("=" * 60)

        info("Waiting for InfluxDB...")
        self.wait_for_store()
        self.transition(CollectorState.WAITING_CONTROLLER)

        info("Waiting for UniFi controller...")
        self.wait_for_controller()
        self.transition(CollectorState.READY)

        info("All services connected")

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------

    def _collect_app_traffic(self, start: int, end: int) -> int:
        traffic = self.unifi.get_traffic_by_app(start, end)

        client_points = self.storage.write_traffic_by_app(traffic, end)
        debug("Wrote %d traffic_by_app points", client_points)

        total_points = self.storage.write_total_usage_by_app(traffic, end)
        debug("Wrote %d traffic_total_by_app points", total_points)

        return client_points + total_points

    def _collect_country_traffic(self, start: int, end: int) -> int:
        countries = self.unifi.get_traffic_by_country(start, end)
        points = self.storage.write_traffic_by_country(countries, end)
        debug("Wrote %d traffic_by_country points", points)
        return points

    def collect(self) -> CollectionResult:
        """
        Run one collection cycle over the last collection interval.

        Each data family is isolated: a failure is recorded and the next
        family still runs.
        """
        with self._lock:
            self.transition(CollectorState.COLLECTING)

            end = int(time.time() * 1000)
            start = end - self.collection_interval
            info("Starting collection cycle (%s to %s)",
                 datetime.fromtimestamp(start / 1000, timezone.utc).isoformat(),
                 datetime.fromtimestamp(end / 1000, timezone.utc).isoformat())

            result = CollectionResult()
            families = (
                ('traffic_by_app', self._collect_app_traffic),
                ('traffic_by_country', self._collect_country_traffic),
            )

            for family, collect_family in families:
                try:
                    result.points += collect_family(start, end)
                except Exception as e:
                    error("Failed to collect %s: %s", family.replace('_', ' '), e)
                    result.points += getattr(e, 'points', 0) or 0
                    result.errors.append(f"{family}: {e}")

            self._record(result)
            return result

    def _record(self, result: CollectionResult):
        health = self.health
        health.total_collections += 1

        if result.errors:
            health.consecutive_failures += 1
            health.total_errors += len(result.errors)
            health.last_error = {'time': _now_iso(), 'errors': list(result.errors)}
            warning("Collection completed with %d error(s): %d points written (consecutive failures: %d)",
                    len(result.errors), result.points, health.consecutive_failures)
            self.transition(CollectorState.FAULTED_CONTINUING)
        else:
            health.consecutive_failures = 0
            health.last_success = _now_iso()
            info("Collection completed: %d points written", result.points)
            self.transition(CollectorState.READY)

        self._check_escalation()

    def _check_escalation(self):
        failures = self.health.consecutive_failures
        if failures > 0 and failures % self.health_warning_every == 0:
            error("HEALTH WARNING: %d consecutive collection failures", failures)

    def run_cycle(self) -> Optional[CollectionResult]:
        """
        Scheduler entry point. Never raises: an unexpected failure counts as
        one failed cycle.
        """
        try:
            return self.collect()
        except Exception as e:
            exception("Collection cycle failed unexpectedly: %s", e)
            with self._lock:
                self.health.consecutive_failures += 1
                self.health.total_errors += 1
                self.health.last_error = {'time': _now_iso(), 'errors': [str(e)]}
                if self.state == CollectorState.COLLECTING:
                    self.transition(CollectorState.FAULTED_CONTINUING)
                self._check_escalation()
            return None

    def get_collector_stats(self) -> Dict:
        """
        Get statistics about the collector.

        Returns:
            Dictionary with state, health and API call counters
        """
        return {
            'state': self.state.value,
            'health': self.health.to_dict(),
            'collection_interval': self.collection_interval,
            'api_stats': get_api_stats(),
        }


# Global collector instance (initialized in clock.py)
collector = None


def init_collector(config: Optional[Dict] = None) -> TrafficCollector:
    """
    Initialize the global traffic collector from environment configuration.

    Returns:
        TrafficCollector instance
    """
    global collector

    unifi = UniFiClient(**get_unifi_config())
    storage = InfluxStorage(**get_influx_config())
    collector = TrafficCollector(unifi, storage, config or get_collector_config())

    info("Traffic collector initialized")
    return collector


def get_collector() -> Optional[TrafficCollector]:
    """
    Get the global collector instance.

    Returns:
        TrafficCollector instance or None if not initialized
    """
    return collector
