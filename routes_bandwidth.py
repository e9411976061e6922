"""
Flask route handlers for bandwidth and device history
Every statement is built server-side and still passes through the query gateway
"""
from functools import wraps

import requests
from flask import jsonify, request

import history_queries
from bandwidth import FILL_NONE, FILL_ZERO
from errors import InsightsError, ValidationError
from logger import debug, safe_error_response, warning

MAX_TOP_LIMIT = 100


def _guest_filter(value):
    if value is None or value == '':
        return None
    return value.lower() in ('true', '1', 'yes')


def _int_arg(name, default, maximum=None):
    try:
        value = int(request.args.get(name, default))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {name}: {request.args.get(name)}")
    if value < 1:
        raise ValidationError(f"Invalid {name}: {value}")
    return min(value, maximum) if maximum else value


def _history_errors(view):
    """Map history failures to JSON errors: bad input 400, InfluxDB problems 502/500."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        try:
            return view(*args, **kwargs)
        except ValidationError as e:
            warning("Rejected history request %s: %s", request.path, e.reason)
            return jsonify({'error': e.reason}), 400
        except InsightsError as e:
            return jsonify({'error': safe_error_response(e, 'InfluxDB query failed')}), 502
        except requests.exceptions.RequestException as e:
            return jsonify({'error': safe_error_response(e, 'Failed to query InfluxDB')}), 500
    return wrapper


def register_bandwidth_routes(app, limiter, gateway):
    """Register bandwidth, WAN, AP, SSID, switch port and client history routes"""
    debug("Registering bandwidth routes")

    @app.route('/api/bandwidth/top')
    @limiter.limit("600 per hour")
    @_history_errors
    def bandwidth_top():
        """Top clients by bytes transferred (LAST - FIRST, resets clamped)

        Query parameters:
            range: Window (default 24h)
            limit: Maximum rows (default 20)
            guest: true for guests only, false to exclude guests
        """
        return jsonify(history_queries.get_top_bandwidth_consumers(
            gateway,
            time_range=request.args.get('range', '24h'),
            limit=_int_arg('limit', 20, MAX_TOP_LIMIT),
            guest=_guest_filter(request.args.get('guest')),
        ))

    @app.route('/api/bandwidth/vlans')
    @limiter.limit("600 per hour")
    @_history_errors
    def bandwidth_by_vlan():
        return jsonify(history_queries.get_bandwidth_by_vlan(gateway, request.args.get('range', '24h')))

    @app.route('/api/bandwidth/trend/<source>')
    @limiter.limit("600 per hour")
    @_history_errors
    def bandwidth_trend(source):
        """Network-wide rate trend for clients, guests or wan"""
        return jsonify(history_queries.get_bandwidth_trend(
            gateway,
            source,
            time_range=request.args.get('range', '24h'),
            interval=request.args.get('interval') or None,
        ))

    @app.route('/api/wan/history')
    @limiter.limit("600 per hour")
    @_history_errors
    def wan_history():
        """Per-interface WAN rates; fill=zero writes 0 where an interface has no sample"""
        fill = request.args.get('fill', FILL_NONE)
        if fill not in (FILL_NONE, FILL_ZERO):
            raise ValidationError(f"Invalid fill: {fill}")
        return jsonify(history_queries.get_multi_wan_bandwidth_history(
            gateway,
            duration=request.args.get('duration', '1h'),
            interval=request.args.get('interval', '1m'),
            fill=fill,
        ))

    @app.route('/api/wan/uplink')
    @limiter.limit("600 per hour")
    @_history_errors
    def wan_uplink_history():
        return jsonify(history_queries.get_wan_bandwidth_history(
            gateway,
            duration=request.args.get('duration', '1h'),
            interval=request.args.get('interval', '1m'),
        ))

    @app.route('/api/aps/history/<metric>')
    @limiter.limit("600 per hour")
    @_history_errors
    def all_ap_history(metric):
        """All APs in one chart: metric is bandwidth, clients or signal"""
        handlers = {
            'bandwidth': history_queries.get_all_ap_bandwidth_history,
            'clients': history_queries.get_all_ap_clients_history,
            'signal': history_queries.get_all_ap_signal_history,
        }
        if metric not in handlers:
            raise ValidationError(f"Unknown AP metric: {metric}")
        return jsonify(handlers[metric](
            gateway,
            duration=request.args.get('duration', '3h'),
            interval=request.args.get('interval', '5m'),
        ))

    @app.route('/api/aps/<name>/bandwidth')
    @limiter.limit("600 per hour")
    @_history_errors
    def ap_bandwidth(name):
        return jsonify(history_queries.get_ap_bandwidth_history(
            gateway, name,
            duration=request.args.get('duration', '1h'),
            interval=request.args.get('interval', '1m'),
        ))

    @app.route('/api/ssids/<essid>/vaps')
    @limiter.limit("600 per hour")
    @_history_errors
    def ssid_vaps(essid):
        """Current VAP state joined with bytes transferred over the traffic window"""
        return jsonify(history_queries.get_ssid_vap_details(gateway, essid, request.args.get('range') or None))

    @app.route('/api/ssids/<essid>/bandwidth')
    @limiter.limit("600 per hour")
    @_history_errors
    def ssid_bandwidth(essid):
        return jsonify(history_queries.get_ssid_bandwidth_history(
            gateway, essid,
            duration=request.args.get('duration', '3h'),
            interval=request.args.get('interval', '5m'),
        ))

    @app.route('/api/switches/<switch_name>/ports/<int:port_idx>/packets')
    @limiter.limit("600 per hour")
    @_history_errors
    def port_packets(switch_name, port_idx):
        return jsonify(history_queries.get_port_packets_history(
            gateway, switch_name, port_idx,
            duration=request.args.get('duration', '1h'),
            interval=request.args.get('interval', '1m'),
        ))

    @app.route('/api/clients/<mac>/history')
    @limiter.limit("600 per hour")
    @_history_errors
    def client_history(mac):
        """Last known state and bytes transferred for a (possibly offline) client"""
        result = history_queries.get_client_historical_traffic(gateway, mac, request.args.get('lookback', '7d'))
        if result is None:
            return jsonify({'error': 'No data for client'}), 404
        return jsonify(result)
