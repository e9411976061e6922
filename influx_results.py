"""
Parsing helpers for InfluxDB /query responses

Response shape:
    {"results": [{"statement_id": 0,
                  "series": [{"name": ..., "tags": {...},
                              "columns": ["time", ...],
                              "values": [[...], ...]}]}]}

Missing-value policy: every numeric read goes through to_number(), which turns
None, NaN, infinities, booleans and unparseable strings into the default (0).
Callers that need to exclude placeholder readings (e.g. signal == 0) filter
explicitly after parsing.
"""
import math
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from errors import ValidationError

_FRACTION_PATTERN = re.compile(r'\.(\d+)')


def get_series(response: Optional[Dict], statement_index: int = 0) -> List[Dict]:
    """Series list for one statement, empty when the statement returned nothing."""
    if not response:
        return []
    results = response.get('results') or []
    if statement_index >= len(results):
        return []
    series = results[statement_index].get('series')
    return series if isinstance(series, list) else []


def to_number(value: Any, default: float = 0) -> float:
    """Numeric value or default for missing/invalid input."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else default
    if isinstance(value, str):
        try:
            parsed = float(value)
        except ValueError:
            return default
        return parsed if math.isfinite(parsed) else default
    return default


def to_string(value: Any, default: str = '') -> str:
    return default if value is None else str(value)


def to_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() == 'true'
    if isinstance(value, (int, float)):
        return value != 0
    return default


def parse_time(value: Any) -> float:
    """
    Sort key for a time column value.

    Accepts RFC3339 strings (the default response format) and epoch numbers
    (milliseconds, as requested with epoch=ms).
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, str):
        text = value.replace('Z', '+00:00')
        # Python < 3.11 cannot parse nanosecond fractions
        text = _FRACTION_PATTERN.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), text, count=1)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return 0.0
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp() * 1000.0
    return 0.0


class ValueGetter:
    """
    Column lookup for one row. Column indices are computed once.

    Example:
        get = ValueGetter(series['columns'], row)
        get.number('rx_bytes')   # 0 when missing
        get.string('hostname')
        get('time')              # raw value
    """

    def __init__(self, columns: List[str], values: List[Any]):
        self.columns = columns or []
        self.values = values or []
        self._index = {name: i for i, name in enumerate(self.columns)}

    def __call__(self, key: str) -> Any:
        idx = self._index.get(key)
        if idx is None or idx >= len(self.values):
            return None
        return self.values[idx]

    def number(self, key: str, default: float = 0) -> float:
        return to_number(self(key), default)

    def string(self, key: str, default: str = '') -> str:
        return to_string(self(key), default)

    def boolean(self, key: str, default: bool = False) -> bool:
        return to_bool(self(key), default)


def parse_grouped_results(response: Dict, mapper: Callable[[Dict[str, str], ValueGetter], Any]) -> List[Any]:
    """
    Map the first row of every series in a GROUP BY result.

    Args:
        response: /query response
        mapper: Called with (tags, getter) for each series
    """
    parsed = []
    for series in get_series(response):
        rows = series.get('values') or []
        parsed.append(mapper(series.get('tags') or {}, ValueGetter(series.get('columns'), rows[0] if rows else [])))
    return parsed


def parse_time_series_results(response: Dict, mapper: Callable[[ValueGetter], Any]) -> List[Any]:
    """Map every row of the first series."""
    series = get_series(response)
    if not series:
        return []
    columns = series[0].get('columns') or []
    return [mapper(ValueGetter(columns, row)) for row in series[0].get('values') or []]


# ----------------------------------------------------------------------
# Query safety
# ----------------------------------------------------------------------

_TIME_RANGE_PATTERN = re.compile(r'\d+[mhd]')


def escape_influx_string(value) -> str:
    """Escape a value for a single-quoted InfluxQL string literal."""
    return str(value).replace("'", "''")


def validate_time_range(value) -> str:
    """
    Accept durations like 5m, 24h, 7d.

    Raises:
        ValidationError: Anything else
    """
    if not isinstance(value, str) or not _TIME_RANGE_PATTERN.fullmatch(value):
        raise ValidationError(f"Invalid time range: {value}")
    return value
