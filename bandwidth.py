"""
Bandwidth calculation utilities

UnPoller stores bandwidth in two forms:
1. Cumulative counters (rx_bytes, tx_bytes) - bytes since device boot
2. Rate fields (rx_bytes_r, "rx_bytes-r") - bytes per second at collection time

Rules:
- Bytes transferred in a window: LAST(counter) - FIRST(counter), clamped at 0
- Rate trend: MEAN(rate) per entity per bucket, then summed across entities
- Counters without a rate field: NON_NEGATIVE_DERIVATIVE(MAX(counter), 1s)
- Never SUM() counters or rate samples across time

A counter that goes down (device reboot, counter wrap) never produces a
negative delta or rate.
"""
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from influx_results import ValueGetter, get_series, parse_time, to_number

# UnPoller field naming differs per measurement (underscore vs hyphen)
BANDWIDTH_FIELDS = {
    'clients': {
        'table': 'clients',
        'counter': {'rx': 'rx_bytes', 'tx': 'tx_bytes'},
        'rate': {'rx': 'rx_bytes_r', 'tx': 'tx_bytes_r'},
    },
    'wan': {
        'table': 'usg_wan_ports',
        'counter': {'rx': 'rx_bytes', 'tx': 'tx_bytes'},
        'rate': {'rx': '"rx_bytes-r"', 'tx': '"tx_bytes-r"'},
    },
    'switch_ports': {
        'table': 'usw_ports',
        'counter': {'rx': 'rx_bytes', 'tx': 'tx_bytes'},
        'rate': {'rx': '"rx_bytes-r"', 'tx': '"tx_bytes-r"'},
    },
    'uap_vaps': {
        'table': 'uap_vaps',
        'counter': {'rx': 'rx_bytes', 'tx': 'tx_bytes'},
        'rate': None,  # derivative of counters
    },
}

COMPOSITE_KEY_DELIMITER = '|'

FILL_NONE = 'none'
FILL_ZERO = 'zero'

# Signal readings at or above -1 dBm (including 0) are "no reading" placeholders
SIGNAL_FILTER_SQL = 'avg_client_signal < -1'

_RANGE_INTERVALS = {
    '1h': '2m',
    '3h': '5m',
    '6h': '10m',
    '12h': '15m',
    '24h': '30m',
    '7d': '2h',
    '30d': '6h',
}
DEFAULT_INTERVAL = '5m'


def parse_bandwidth_value(value: Any) -> float:
    """
    Number from a query result cell, 0 when missing or invalid.

    Negative values pass through so callers can clamp deltas themselves.
    """
    return to_number(value, 0)


def window_delta(first: Any, last: Any) -> float:
    """Bytes added between two counter readings. A decrease counts as 0."""
    return max(0, parse_bandwidth_value(last) - parse_bandwidth_value(first))


def non_negative_derivative(samples: Iterable[Tuple[Any, Any]], unit_seconds: float = 1.0) -> List[Dict[str, float]]:
    """
    Per-unit rate between consecutive counter samples.

    Args:
        samples: (time, counter) pairs; time is RFC3339 or epoch milliseconds
        unit_seconds: Rate unit (1 = per second)

    Returns:
        list: {'time': ms, 'value': rate} for every sample after the first.
        A decreasing counter yields 0 for that interval.
    """
    ordered = sorted(((parse_time(t), parse_bandwidth_value(v)) for t, v in samples), key=lambda s: s[0])
    rates = []

    for (prev_time, prev_value), (time_ms, value) in zip(ordered, ordered[1:]):
        elapsed = (time_ms - prev_time) / 1000.0
        if elapsed <= 0:
            continue
        delta = value - prev_value
        if delta < 0:
            delta = 0
        rates.append({'time': time_ms, 'value': delta / elapsed * unit_seconds})

    return rates


def is_valid_signal(value: Any) -> bool:
    """True for a real dBm reading (below -1)."""
    if value is None or isinstance(value, bool):
        return False
    signal = to_number(value, 0)
    return signal < -1


def get_interval_for_range(time_range: str) -> str:
    """GROUP BY time() interval that keeps charts readable for a range."""
    return _RANGE_INTERVALS.get(time_range, DEFAULT_INTERVAL)


def aggregate_bandwidth_by_time(series: Sequence[Dict], rx_index: int = 1, tx_index: int = 2) -> List[Dict[str, float]]:
    """
    Sum rx/tx across entities into one row per time bucket.

    Used with queries grouped by entity (mac, ifname, ...). Rows where both
    values are 0 or missing are skipped; negative values count as 0.

    Returns:
        list: {'time': ms, 'rx': float, 'tx': float} sorted by time
    """
    buckets = {}

    for s in series:
        for row in s.get('values') or []:
            if not row or not row[0]:
                continue

            rx = max(0, parse_bandwidth_value(row[rx_index] if len(row) > rx_index else None))
            tx = max(0, parse_bandwidth_value(row[tx_index] if len(row) > tx_index else None))
            if rx == 0 and tx == 0:
                continue

            time_ms = parse_time(row[0])
            bucket = buckets.setdefault(time_ms, {'rx': 0, 'tx': 0})
            bucket['rx'] += rx
            bucket['tx'] += tx

    return [{'time': t, 'rx': v['rx'], 'tx': v['tx']} for t, v in sorted(buckets.items())]


def parse_bandwidth_totals(series: Sequence[Dict], id_tag: str, name_tag: Optional[str] = None,
                           rx_index: int = 1, tx_index: int = 2,
                           meta_tags: Sequence[str] = ()) -> List[Dict[str, Any]]:
    """
    Per-entity totals from a LAST() - FIRST() query.

    Negative deltas (counter resets) are clamped to 0. Entities with no
    traffic are dropped.

    Returns:
        list: {'id', 'name', 'rx', 'tx', 'total'[, 'meta']} sorted by total descending
    """
    totals = []

    for s in series:
        rows = s.get('values') or []
        if not rows or not rows[0]:
            continue
        row = rows[0]
        tags = s.get('tags') or {}

        rx = max(0, parse_bandwidth_value(row[rx_index] if len(row) > rx_index else None))
        tx = max(0, parse_bandwidth_value(row[tx_index] if len(row) > tx_index else None))
        if rx + tx <= 0:
            continue

        entry = {
            'id': tags.get(id_tag) or '',
            'name': tags.get(name_tag or id_tag) or tags.get(id_tag) or 'Unknown',
            'rx': rx,
            'tx': tx,
            'total': rx + tx,
        }
        meta = {tag: tags[tag] for tag in meta_tags if tags.get(tag)}
        if meta:
            entry['meta'] = meta
        totals.append(entry)

    totals.sort(key=lambda t: t['total'], reverse=True)
    return totals


def _series_traffic(series: Dict, rx_field: str, tx_field: str) -> Dict[str, float]:
    rows = series.get('values') or []
    get = ValueGetter(series.get('columns'), rows[0] if rows else [])
    return {
        'rx': max(0, get.number(rx_field)),
        'tx': max(0, get.number(tx_field)),
    }


def composite_key(values: Sequence[Any]) -> str:
    """Join tag values into one key; missing values become empty strings."""
    return COMPOSITE_KEY_DELIMITER.join('' if v is None else str(v) for v in values)


def build_traffic_map_composite(response: Dict, key_tags: Sequence[str], rx_field: str = 'rx_bytes',
                                tx_field: str = 'tx_bytes') -> Dict[str, Dict[str, float]]:
    """
    Map several tags, joined with "|", to window totals from a LAST() - FIRST() query.

    Lets current-state rows (device_name, radio, bssid) look up their window
    totals without querying both together. Series with every key tag missing
    are skipped.
    """
    traffic = {}
    for s in get_series(response):
        tags = s.get('tags') or {}
        parts = [tags.get(tag) or '' for tag in key_tags]
        if all(part == '' for part in parts):
            continue
        traffic[composite_key(parts)] = _series_traffic(s, rx_field, tx_field)
    return traffic


def aggregate_multi_entity_time_series(response: Dict, entity_tag: str,
                                       row_mapper: Callable[[ValueGetter, str], Dict[str, float]],
                                       point_filter: Optional[Callable[[Dict], bool]] = None,
                                       value_filter: Optional[Callable[[float, str], bool]] = None,
                                       fill: str = FILL_NONE) -> Dict[str, List]:
    """
    Merge the series of several entities (APs, WAN ports, ...) into one row
    per time bucket.

    Args:
        response: /query response grouped by entity_tag and time
        entity_tag: Tag holding the entity name ("unknown" when absent)
        row_mapper: (getter, entity) -> {column: value}; the mapper names the
            columns, usually after the entity
        point_filter: Keep a merged point only when this returns True
        value_filter: Keep a single value only when this returns True
            (e.g. is_valid_signal); rows whose values are all rejected add nothing
        fill: FILL_NONE leaves an entity's column absent at buckets where it
            has no sample; FILL_ZERO writes 0 there instead

    Returns:
        dict: {'data': [{'time': ..., <column>: value, ...}], 'entities': [...]}
        with data sorted by time and entities sorted by name
    """
    all_series = get_series(response)
    buckets = {}
    columns = set()

    for s in all_series:
        entity = (s.get('tags') or {}).get(entity_tag) or 'unknown'
        series_columns = s.get('columns') or []

        for row in s.get('values') or []:
            if not row:
                continue
            mapped = row_mapper(ValueGetter(series_columns, row), entity)

            if value_filter:
                mapped = {k: v for k, v in mapped.items() if value_filter(v, k)}
                if not mapped:
                    continue

            time_value = row[0]
            point = buckets.setdefault(parse_time(time_value), {'time': time_value})
            point.update(mapped)
            columns.update(mapped)

    if fill == FILL_ZERO:
        for point in buckets.values():
            for column in columns:
                point.setdefault(column, 0)

    data = [buckets[t] for t in sorted(buckets)]
    if point_filter:
        data = [point for point in data if point_filter(point)]

    entities = sorted({(s.get('tags') or {}).get(entity_tag) or 'unknown' for s in all_series})

    return {'data': data, 'entities': entities}


def filter_zero_points(point: Dict) -> bool:
    """True when any numeric value in the point is above 0."""
    return any(
        isinstance(v, (int, float)) and not isinstance(v, bool) and v > 0
        for k, v in point.items() if k != 'time'
    )
