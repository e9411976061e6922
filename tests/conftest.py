"""Shared fixtures. Modules live at the repository root (flat layout)."""
import os
import sys
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    """Retry and startup waits return immediately; the mock records requested delays."""
    sleeper = MagicMock()
    monkeypatch.setattr('time.sleep', sleeper)
    return sleeper


def make_response(status_code=200, json_data=None, headers=None, cookies=None, text=''):
    """MagicMock shaped like a requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 400
    response.reason = 'OK' if response.ok else 'Error'
    response.headers = headers or {}
    response.cookies = cookies or {}
    response.text = text
    response.json.return_value = json_data if json_data is not None else {}
    return response


def influx_response(*series):
    """A /query body with one statement result holding the given series."""
    return {'results': [{'statement_id': 0, 'series': list(series)}]}
