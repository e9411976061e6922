"""
History queries for UnPoller measurements
Builds InfluxQL for APs, WAN ports, SSIDs, switch ports and clients, runs it
through the query gateway and reshapes the results into chart-ready rows

Window totals use LAST() - FIRST() on counters; trends use MEAN() of rate
fields or NON_NEGATIVE_DERIVATIVE(MAX(counter), 1s). Every user-supplied
duration/interval is validated and every tag value escaped before it lands in
a statement.
"""
from bandwidth import (BANDWIDTH_FIELDS, FILL_NONE, SIGNAL_FILTER_SQL, aggregate_bandwidth_by_time,
                       aggregate_multi_entity_time_series, build_traffic_map_composite, composite_key,
                       filter_zero_points, get_interval_for_range, is_valid_signal, parse_bandwidth_totals)
from config import TRAFFIC_TOTAL_RANGE
from errors import ValidationError
from influx_results import (escape_influx_string, get_series, parse_grouped_results, parse_time_series_results,
                            validate_time_range, ValueGetter)
from logger import debug

VAP_KEY_TAGS = ('device_name', 'radio', 'bssid')

_RATE_SELECT = ('non_negative_derivative(max(rx_bytes), 1s) as rx_rate, '
                'non_negative_derivative(max(tx_bytes), 1s) as tx_rate')


def _window(duration, interval=None):
    validate_time_range(duration)
    if interval is not None:
        validate_time_range(interval)


# ----------------------------------------------------------------------
# Query builders
# ----------------------------------------------------------------------

def ap_bandwidth_history_query(name, duration, interval):
    _window(duration, interval)
    return (f"SELECT {_RATE_SELECT} FROM uap "
            f"WHERE time > now() - {duration} AND \"name\" = '{escape_influx_string(name)}' "
            f"GROUP BY time({interval}) fill(none)")


def all_ap_bandwidth_history_query(duration, interval):
    _window(duration, interval)
    return (f"SELECT {_RATE_SELECT} FROM uap "
            f"WHERE time > now() - {duration} "
            f"GROUP BY time({interval}), \"name\" fill(none)")


def all_ap_clients_history_query(duration, interval):
    _window(duration, interval)
    return ("SELECT mean(num_sta) as num_sta FROM uap "
            f"WHERE time > now() - {duration} "
            f"GROUP BY time({interval}), \"name\" fill(previous)")


def all_ap_signal_history_query(duration, interval):
    _window(duration, interval)
    return ("SELECT mean(avg_client_signal) as avg_signal FROM uap_vaps "
            f"WHERE time > now() - {duration} AND {SIGNAL_FILTER_SQL} "
            f"GROUP BY time({interval}), \"device_name\" fill(previous)")


def wan_bandwidth_history_query(duration, interval):
    """Uplink WAN ports only"""
    _window(duration, interval)
    return ("SELECT mean(\"rx_bytes-r\") as rx_rate, mean(\"tx_bytes-r\") as tx_rate FROM usg_wan_ports "
            f"WHERE time > now() - {duration} AND is_uplink = true "
            f"GROUP BY time({interval}) fill(0)")


def multi_wan_bandwidth_history_query(duration, interval):
    _window(duration, interval)
    return ("SELECT mean(\"rx_bytes-r\") as rx_rate, mean(\"tx_bytes-r\") as tx_rate FROM usg_wan_ports "
            f"WHERE time > now() - {duration} "
            f"GROUP BY time({interval}), \"ifname\" fill(0)")


def ssid_bandwidth_history_query(essid, duration, interval):
    _window(duration, interval)
    return (f"SELECT {_RATE_SELECT} FROM uap_vaps "
            f"WHERE time > now() - {duration} AND \"essid\" = '{escape_influx_string(essid)}' "
            f"GROUP BY time({interval}) fill(none)")


def port_packets_history_query(switch_name, port_idx, duration, interval):
    _window(duration, interval)
    rates = ', '.join(
        f"non_negative_derivative(max({field}), 1s) as {alias}"
        for field, alias in (
            ('rx_packets', 'rx_pps'), ('tx_packets', 'tx_pps'),
            ('rx_broadcast', 'rx_bcast'), ('tx_broadcast', 'tx_bcast'),
            ('rx_multicast', 'rx_mcast'), ('tx_multicast', 'tx_mcast'),
        )
    )
    return (f"SELECT {rates} FROM usw_ports "
            f"WHERE time > now() - {duration} AND \"device_name\" = '{escape_influx_string(switch_name)}' "
            f"AND \"port_idx\" = '{escape_influx_string(port_idx)}' "
            f"GROUP BY time({interval}) fill(none)")


def client_historical_traffic_query(mac, lookback='7d'):
    _window(lookback)
    return ("SELECT LAST(rx_bytes) - FIRST(rx_bytes) as rx_bytes, "
            "LAST(tx_bytes) - FIRST(tx_bytes) as tx_bytes, "
            "LAST(\"wired-rx_bytes\") - FIRST(\"wired-rx_bytes\") as wired_rx, "
            "LAST(\"wired-tx_bytes\") - FIRST(\"wired-tx_bytes\") as wired_tx "
            "FROM clients "
            f"WHERE time > now() - {lookback} AND \"mac\" = '{escape_influx_string(mac)}'")


def client_historical_state_query(mac, lookback='7d'):
    _window(lookback)
    return ("SELECT last(ip) as ip, last(hostname) as hostname, last(essid) as essid "
            "FROM clients "
            f"WHERE time > now() - {lookback} AND \"mac\" = '{escape_influx_string(mac)}' "
            "GROUP BY \"name\", \"is_wired\"")


def top_consumers_query(time_range, guest=None):
    """
    Bytes per client over the range.

    Args:
        guest: True for guests only, False for non-guests, None for everyone
    """
    _window(time_range)
    guest_filter = ''
    if guest is True:
        guest_filter = " AND is_guest = 'true'"
    elif guest is False:
        guest_filter = " AND is_guest = 'false'"

    return ("SELECT LAST(rx_bytes) - FIRST(rx_bytes) AS rx, LAST(tx_bytes) - FIRST(tx_bytes) AS tx "
            f"FROM clients WHERE time > now() - {time_range}{guest_filter} "
            "GROUP BY mac, \"name\", vlan")


def bandwidth_by_vlan_query(time_range):
    _window(time_range)
    return ("SELECT LAST(rx_bytes) - FIRST(rx_bytes) AS rx, LAST(tx_bytes) - FIRST(tx_bytes) AS tx "
            f"FROM clients WHERE time > now() - {time_range} GROUP BY vlan")


# source -> (measurement key in BANDWIDTH_FIELDS, entity tag, extra WHERE)
TREND_SOURCES = {
    'clients': ('clients', 'mac', ''),
    'guests': ('clients', 'mac', " AND is_guest = 'true'"),
    'wan': ('wan', 'ifname', ''),
}


def bandwidth_trend_query(source, time_range, interval=None):
    """MEAN of the rate fields per entity per bucket."""
    if source not in TREND_SOURCES:
        raise ValidationError(f"Unknown bandwidth source: {source}")
    interval = interval or get_interval_for_range(time_range)
    _window(time_range, interval)

    fields_key, entity_tag, extra = TREND_SOURCES[source]
    fields = BANDWIDTH_FIELDS[fields_key]
    return (f"SELECT MEAN({fields['rate']['rx']}) AS rx, MEAN({fields['rate']['tx']}) AS tx "
            f"FROM {fields['table']} WHERE time > now() - {time_range}{extra} "
            f"GROUP BY time({interval}), {entity_tag}")


def ssid_vap_state_query(essid):
    return ("SELECT last(channel) as channel, last(num_sta) as num_sta, "
            "last(avg_client_signal) as avg_client_signal, last(satisfaction) as satisfaction, "
            "last(ccq) as ccq, last(tx_power) as tx_power, "
            "last(tx_retries) as tx_retries, last(tx_dropped) as tx_dropped, "
            "last(rx_errors) as rx_errors, last(tx_errors) as tx_errors, "
            "last(tx_tcp_lat_avg) as tx_tcp_lat_avg "
            "FROM uap_vaps "
            f"WHERE time > now() - 5m AND \"essid\" = '{escape_influx_string(essid)}' "
            "GROUP BY \"device_name\", \"radio\", \"bssid\"")


def ssid_vap_traffic_query(essid, time_range=None):
    time_range = time_range or TRAFFIC_TOTAL_RANGE
    _window(time_range)
    return ("SELECT LAST(rx_bytes) - FIRST(rx_bytes) as rx_bytes, "
            "LAST(tx_bytes) - FIRST(tx_bytes) as tx_bytes "
            "FROM uap_vaps "
            f"WHERE time > now() - {time_range} AND \"essid\" = '{escape_influx_string(essid)}' "
            "GROUP BY \"device_name\", \"radio\", \"bssid\"")


# ----------------------------------------------------------------------
# History functions
# ----------------------------------------------------------------------

def _rate_point(get: ValueGetter):
    return {
        'time': get('time'),
        'rx_rate': max(0, get.number('rx_rate')),
        'tx_rate': max(0, get.number('tx_rate')),
    }


def _has_rate(point):
    return point['rx_rate'] > 0 or point['tx_rate'] > 0


def get_ap_bandwidth_history(gateway, name, duration='1h', interval='1m'):
    """Rate history for one AP (derivative of its counters)"""
    response = gateway.execute(ap_bandwidth_history_query(name, duration, interval))
    return [p for p in parse_time_series_results(response, _rate_point) if _has_rate(p)]


def get_all_ap_bandwidth_history(gateway, duration='3h', interval='5m'):
    response = gateway.execute(all_ap_bandwidth_history_query(duration, interval))
    result = aggregate_multi_entity_time_series(
        response,
        entity_tag='name',
        row_mapper=lambda get, ap: {
            f"{ap}_rx": max(0, get.number('rx_rate')),
            f"{ap}_tx": max(0, get.number('tx_rate')),
        },
        point_filter=filter_zero_points,
    )
    return {'data': result['data'], 'ap_names': result['entities']}


def get_all_ap_clients_history(gateway, duration='3h', interval='5m'):
    response = gateway.execute(all_ap_clients_history_query(duration, interval))
    result = aggregate_multi_entity_time_series(
        response,
        entity_tag='name',
        row_mapper=lambda get, ap: {ap: get.number('num_sta')},
        point_filter=filter_zero_points,
    )
    return {'data': result['data'], 'ap_names': result['entities']}


def get_all_ap_signal_history(gateway, duration='3h', interval='5m'):
    """Average client signal per AP; 0 dBm placeholders are left out, not plotted"""
    response = gateway.execute(all_ap_signal_history_query(duration, interval))
    result = aggregate_multi_entity_time_series(
        response,
        entity_tag='device_name',
        row_mapper=lambda get, ap: {ap: get('avg_signal')},
        value_filter=lambda value, key: is_valid_signal(value),
    )
    return {'data': result['data'], 'ap_names': result['entities']}


def get_wan_bandwidth_history(gateway, duration='1h', interval='1m'):
    response = gateway.execute(wan_bandwidth_history_query(duration, interval))
    return [p for p in parse_time_series_results(response, _rate_point) if _has_rate(p)]


def get_multi_wan_bandwidth_history(gateway, duration='1h', interval='1m', fill=FILL_NONE):
    """Per-interface WAN rates merged into one row per bucket"""
    response = gateway.execute(multi_wan_bandwidth_history_query(duration, interval))
    result = aggregate_multi_entity_time_series(
        response,
        entity_tag='ifname',
        row_mapper=lambda get, ifname: {
            f"{ifname}_rx": max(0, get.number('rx_rate')),
            f"{ifname}_tx": max(0, get.number('tx_rate')),
        },
        point_filter=filter_zero_points,
        fill=fill,
    )
    return {'data': result['data'], 'ifnames': result['entities']}


def get_ssid_bandwidth_history(gateway, essid, duration='3h', interval='5m'):
    response = gateway.execute(ssid_bandwidth_history_query(essid, duration, interval))
    return [p for p in parse_time_series_results(response, _rate_point) if _has_rate(p)]


def get_port_packets_history(gateway, switch_name, port_idx, duration='1h', interval='1m'):
    response = gateway.execute(port_packets_history_query(switch_name, port_idx, duration, interval))

    def mapper(get):
        return {
            'time': get('time'),
            'rx_packets': max(0, get.number('rx_pps')),
            'tx_packets': max(0, get.number('tx_pps')),
            'rx_broadcast': max(0, get.number('rx_bcast')),
            'tx_broadcast': max(0, get.number('tx_bcast')),
            'rx_multicast': max(0, get.number('rx_mcast')),
            'tx_multicast': max(0, get.number('tx_mcast')),
        }

    return [p for p in parse_time_series_results(response, mapper)
            if p['rx_packets'] > 0 or p['tx_packets'] > 0]


def get_client_historical_traffic(gateway, mac, lookback='7d'):
    """
    Last known state plus bytes transferred for a client that may be offline

    Wired clients report their counters under wired-rx_bytes/wired-tx_bytes.

    Returns:
        dict or None: None when the client has no data in the lookback window
    """
    state = get_series(gateway.execute(client_historical_state_query(mac, lookback)))
    if not state or not state[0].get('values'):
        return None

    traffic = get_series(gateway.execute(client_historical_traffic_query(mac, lookback)))
    traffic_rows = traffic[0].get('values') if traffic else None
    totals = ValueGetter(traffic[0].get('columns') if traffic else [], traffic_rows[0] if traffic_rows else [])

    tags = state[0].get('tags') or {}
    get = ValueGetter(state[0].get('columns'), state[0]['values'][0])
    is_wired = tags.get('is_wired') == 'true'

    return {
        'mac': mac,
        'name': tags.get('name') or 'Unknown',
        'hostname': get.string('hostname'),
        'ip': get.string('ip'),
        'essid': get.string('essid'),
        'is_wired': is_wired,
        'rx_bytes': max(0, totals.number('wired_rx' if is_wired else 'rx_bytes')),
        'tx_bytes': max(0, totals.number('wired_tx' if is_wired else 'tx_bytes')),
    }


def get_top_bandwidth_consumers(gateway, time_range='24h', limit=20, guest=None):
    response = gateway.execute(top_consumers_query(time_range, guest))
    totals = parse_bandwidth_totals(get_series(response), id_tag='mac', name_tag='name', meta_tags=('vlan',))
    return totals[:limit]


def get_bandwidth_by_vlan(gateway, time_range='24h'):
    response = gateway.execute(bandwidth_by_vlan_query(time_range))
    return parse_bandwidth_totals(get_series(response), id_tag='vlan')


def get_bandwidth_trend(gateway, source, time_range='24h', interval=None):
    """
    Network-wide rate trend for clients, guests or WAN

    Each entity is averaged within a bucket first, then the buckets are summed
    across entities.
    """
    response = gateway.execute(bandwidth_trend_query(source, time_range, interval))
    return aggregate_bandwidth_by_time(get_series(response), 1, 2)


def get_ssid_vap_details(gateway, essid, time_range=None):
    """
    Current state of every VAP broadcasting an SSID, with bytes transferred
    over the traffic window

    The state and traffic queries are grouped by the same tags, so they are
    joined on a device_name|radio|bssid key.
    """
    current = gateway.execute(ssid_vap_state_query(essid))
    traffic_by_vap = build_traffic_map_composite(
        gateway.execute(ssid_vap_traffic_query(essid, time_range)), VAP_KEY_TAGS)
    debug("SSID %s: %d VAPs with traffic totals", essid, len(traffic_by_vap))

    def mapper(tags, get):
        traffic = traffic_by_vap.get(composite_key([tags.get(tag) or '' for tag in VAP_KEY_TAGS]), {})
        return {
            'ap_name': tags.get('device_name') or '',
            'radio': tags.get('radio') or '',
            'bssid': tags.get('bssid') or '',
            'channel': get.number('channel'),
            'num_sta': get.number('num_sta'),
            'rx_bytes': traffic.get('rx', 0),
            'tx_bytes': traffic.get('tx', 0),
            'satisfaction': get.number('satisfaction'),
            'avg_client_signal': get.number('avg_client_signal'),
            'ccq': get.number('ccq'),
            'tx_power': get.number('tx_power'),
            'tx_retries': get.number('tx_retries'),
            'tx_dropped': get.number('tx_dropped'),
            'rx_errors': get.number('rx_errors'),
            'tx_errors': get.number('tx_errors'),
            'tcp_latency_avg': get.number('tx_tcp_lat_avg'),
        }

    return parse_grouped_results(current, mapper)
