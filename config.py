"""
Configuration constants and settings for the UniFi Insights collector and gateway
All values come from environment variables; there is no settings file
"""
import os
from urllib.parse import urlparse


# Environment values replaced by their defaults, logged by the collector at startup
CONFIG_WARNINGS = []


def _env_int(name, default):
    """Read an integer environment variable, falling back to default on bad input"""
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_positive_int(name, default):
    """Like _env_int, but values below 1 fall back to default with a warning"""
    value = _env_int(name, default)
    if value < 1:
        CONFIG_WARNINGS.append(f'{name} must be at least 1, got {value}; using {default}')
        return default
    return value


def _env_url(name, default):
    """Read an http(s) URL, falling back to default with a warning when malformed"""
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    parsed = urlparse(raw)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        CONFIG_WARNINGS.append(f'{name} must be an http(s) URL, got {raw!r}; using {default}')
        return default
    return raw


def _env_bool(name, default=False):
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in ('true', '1', 'yes')


# =========================================
# UniFi Controller Configuration
# =========================================
UNIFI_URL = _env_url('UNIFI_URL', 'https://192.168.8.1')
UNIFI_USER = os.getenv('UNIFI_USER', 'unpoller')
UNIFI_PASS = os.getenv('UNIFI_PASS', '')
UNIFI_SITE = os.getenv('UNIFI_SITE', 'default')

# UniFi OS ships a self-signed certificate, so verification is opt-in
UNIFI_VERIFY_SSL = _env_bool('UNIFI_VERIFY_SSL', False)

# =========================================
# InfluxDB Configuration (1.8+ compatibility API)
# =========================================
INFLUX_URL = _env_url('INFLUX_URL', 'http://localhost:8086')
INFLUX_DB = os.getenv('INFLUX_DB', 'unpoller')
INFLUX_USER = os.getenv('INFLUX_USER', '')
INFLUX_PASS = os.getenv('INFLUX_PASS', '')
INFLUX_RETENTION_POLICY = os.getenv('INFLUX_RETENTION_POLICY', 'autogen')

# Points per write request
INFLUX_BATCH_SIZE = _env_int('INFLUX_BATCH_SIZE', 500)

# =========================================
# Collector Timing (milliseconds, matching the controller API units)
# =========================================
COLLECTION_INTERVAL = _env_positive_int('COLLECTION_INTERVAL', 300000)   # 5 minutes
REQUEST_TIMEOUT = _env_int('REQUEST_TIMEOUT', 30000)            # 30 seconds
MAX_RETRIES = _env_positive_int('MAX_RETRIES', 3)
RETRY_DELAY = _env_int('RETRY_DELAY', 5000)                     # multiplied by attempt number
STARTUP_RETRY_DELAY = _env_int('STARTUP_RETRY_DELAY', 30000)    # 30 seconds
STARTUP_LOG_EVERY = 10                                          # log every Nth startup attempt
HEALTH_WARNING_EVERY = 5                                        # escalate every Nth consecutive failure
RESTART_DELAY = _env_int('RESTART_DELAY', 30000)                # delay before re-running main()
SHUTDOWN_LOGOUT_TIMEOUT = _env_int('SHUTDOWN_LOGOUT_TIMEOUT', 5000)

# =========================================
# Logging
# =========================================
LOG_LEVEL = os.getenv('LOG_LEVEL', 'info').lower()
# Optional rotating log file; stdout is always used
LOG_FILE = os.getenv('LOG_FILE', '')

# =========================================
# Web Gateway
# =========================================
PORT = _env_int('PORT', 3001)
SITE_NAME = os.getenv('SITE_NAME', 'UniFi Network')
CORS_ORIGINS = os.getenv('CORS_ORIGINS', '*')

# Lookback used for "historical total" columns (window-delta queries)
TRAFFIC_TOTAL_RANGE = os.getenv('TRAFFIC_TOTAL_RANGE', '24h')


def get_unifi_config():
    """
    Build the controller client configuration.

    Returns:
        dict: Keyword arguments accepted by UniFiClient
    """
    return {
        'url': UNIFI_URL,
        'username': UNIFI_USER,
        'password': UNIFI_PASS,
        'site': UNIFI_SITE,
        'verify_ssl': UNIFI_VERIFY_SSL,
        'timeout': REQUEST_TIMEOUT,
        'max_retries': MAX_RETRIES,
        'retry_delay': RETRY_DELAY,
    }


def get_influx_config():
    """
    Build the InfluxDB storage configuration.

    Returns:
        dict: Keyword arguments accepted by InfluxStorage
    """
    return {
        'url': INFLUX_URL,
        'database': INFLUX_DB,
        'username': INFLUX_USER,
        'password': INFLUX_PASS,
        'retention_policy': INFLUX_RETENTION_POLICY,
        'timeout': REQUEST_TIMEOUT,
        'max_retries': MAX_RETRIES,
        'retry_delay': RETRY_DELAY,
        'batch_size': INFLUX_BATCH_SIZE,
    }


def get_collector_config():
    """Collector loop timing settings"""
    return {
        'collection_interval': COLLECTION_INTERVAL,
        'startup_retry_delay': STARTUP_RETRY_DELAY,
        'startup_log_every': STARTUP_LOG_EVERY,
        'health_warning_every': HEALTH_WARNING_EVERY,
    }


def validate_config():
    """
    Check the collector configuration for problems that prevent startup.

    Malformed URLs and non-positive timing values are not problems: they fall
    back to their defaults and are listed in CONFIG_WARNINGS instead.

    Returns:
        list: Human readable problems (empty when the configuration is usable)
    """
    problems = []

    if not UNIFI_PASS:
        problems.append('UNIFI_PASS environment variable is required')

    return problems
