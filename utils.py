"""
Utility functions for outbound API call tracking and retry handling
Note: Logging lives in logger.py
"""
import time
from functools import wraps
from urllib.parse import urlparse, urlunparse

import requests

from logger import debug, warning

# API call counter
api_call_count = 0
api_call_start_time = time.time()


def increment_api_call():
    """Increment the API call counter"""
    global api_call_count
    api_call_count += 1


def get_api_stats():
    """Get API call statistics"""
    uptime_seconds = time.time() - api_call_start_time
    calls_per_minute = (api_call_count / uptime_seconds) * 60 if uptime_seconds > 0 else 0
    return {
        'total_calls': api_call_count,
        'calls_per_minute': round(calls_per_minute, 1)
    }


def sleep_ms(milliseconds):
    """Sleep for the given number of milliseconds"""
    if milliseconds > 0:
        time.sleep(milliseconds / 1000.0)


def retry_linear(max_retries=None, delay_ms=None, retry_on=(requests.exceptions.RequestException,)):
    """
    Decorator to retry a function with linear backoff.

    The wait after failed attempt N is ``delay_ms * N``. When max_retries or
    delay_ms are not given, they are read from the ``max_retries`` and
    ``retry_delay`` attributes of the first positional argument, so the
    decorator can be applied to methods of configurable clients.

    Args:
        max_retries: Total number of attempts (default: self.max_retries)
        delay_ms: Base delay in milliseconds (default: self.retry_delay)
        retry_on: Exception types that trigger a retry; anything else propagates

    Example:
        @retry_linear()
        def write_batch(self, lines):
            ...

    Retry delays with max_retries=3, delay_ms=5000:
        Attempt 1: Immediate
        Attempt 2: 5 seconds after failure
        Attempt 3: 10 seconds after failure
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            owner = args[0] if args else None
            attempts = max_retries if max_retries is not None else getattr(owner, 'max_retries', 3)
            base_delay = delay_ms if delay_ms is not None else getattr(owner, 'retry_delay', 0)
            attempts = max(1, attempts)
            last_exception = None

            for attempt in range(1, attempts + 1):
                try:
                    result = func(*args, **kwargs)
                    if attempt > 1:
                        debug("%s succeeded on attempt %d", func.__name__, attempt)
                    return result

                except retry_on as e:
                    last_exception = e
                    warning("%s attempt %d/%d failed: %s", func.__name__, attempt, attempts, e)

                    if attempt < attempts:
                        delay = base_delay * attempt
                        debug("Retrying %s in %.1fs...", func.__name__, delay / 1000.0)
                        sleep_ms(delay)

            raise last_exception

        return wrapper
    return decorator


def sanitize_url_for_log(url_string):
    """
    Mask credentials embedded in a URL before it is logged.

    Args:
        url_string: URL that may contain user:password@

    Returns:
        str: URL with username and password replaced by ***
    """
    try:
        parsed = urlparse(url_string)
    except (TypeError, ValueError):
        return url_string

    if not parsed.username and not parsed.password:
        return url_string

    host = parsed.hostname or ''
    if parsed.port:
        host = f"{host}:{parsed.port}"
    return urlunparse(parsed._replace(netloc=f"***:***@{host}"))


def api_request(method, url, **kwargs):
    """Wrapper for requests.request that tracks API calls"""
    increment_api_call()
    return requests.request(method, url, **kwargs)
