"""History query builders and the chart-ready reshaping on top of them."""
from unittest.mock import MagicMock

import pytest

from bandwidth import FILL_ZERO
from conftest import influx_response
from errors import ValidationError
from history_queries import (TREND_SOURCES, all_ap_signal_history_query, ap_bandwidth_history_query,
                             bandwidth_trend_query, get_all_ap_signal_history, get_bandwidth_by_vlan,
                             get_bandwidth_trend, get_client_historical_traffic, get_multi_wan_bandwidth_history,
                             get_port_packets_history, get_ssid_vap_details, get_top_bandwidth_consumers,
                             get_wan_bandwidth_history, top_consumers_query)
from query_gateway import QueryGateway
from query_validator import validate_query

T0 = '2024-05-01T12:00:00Z'
T1 = '2024-05-01T12:05:00Z'
T0_MS = 1714564800000


def series(tags, columns, values):
    return {'name': 'm', 'tags': tags, 'columns': columns, 'values': values}


@pytest.fixture
def storage():
    storage = MagicMock()
    storage.query.return_value = {'results': [{'statement_id': 0}]}
    return storage


@pytest.fixture
def gateway(storage):
    return QueryGateway(storage)


def statements(storage):
    return [c[0][0] for c in storage.query.call_args_list]


# ----------------------------------------------------------------------
# Builders
# ----------------------------------------------------------------------

class TestBuilders:

    def test_tag_values_are_escaped(self):
        query = ap_bandwidth_history_query("Bob's AP", '1h', '1m')

        assert "\"name\" = 'Bob''s AP'" in query
        assert validate_query(query).valid

    @pytest.mark.parametrize('duration,interval', [('1h; DROP', '1m'), ('1h', '1m)'), ('', '1m'), ('1h', 'now()')])
    def test_rejects_bad_windows(self, duration, interval):
        with pytest.raises(ValidationError):
            ap_bandwidth_history_query('ap', duration, interval)

    def test_signal_query_excludes_placeholders(self):
        assert 'avg_client_signal < -1' in all_ap_signal_history_query('3h', '5m')

    def test_top_consumers_guest_filter(self):
        assert "is_guest = 'true'" in top_consumers_query('24h', guest=True)
        assert "is_guest = 'false'" in top_consumers_query('24h', guest=False)
        assert 'is_guest' not in top_consumers_query('24h')

    def test_trend_uses_mean_of_rate_fields(self):
        query = bandwidth_trend_query('wan', '24h')

        assert 'MEAN("rx_bytes-r")' in query
        assert 'FROM usg_wan_ports' in query
        assert 'GROUP BY time(30m), ifname' in query
        assert 'SUM(' not in query.upper()

    def test_trend_unknown_source(self):
        with pytest.raises(ValidationError):
            bandwidth_trend_query('printers', '24h')

    @pytest.mark.parametrize('source', sorted(TREND_SOURCES))
    def test_trend_queries_pass_validation(self, source):
        assert validate_query(bandwidth_trend_query(source, '7d')).valid


# ----------------------------------------------------------------------
# History functions
# ----------------------------------------------------------------------

class TestRateHistory:

    def test_wan_history_drops_idle_points_and_clamps(self, gateway, storage):
        storage.query.return_value = influx_response(
            series(None, ['time', 'rx_rate', 'tx_rate'], [[T0, 0, 0], [T1, 120.5, -3]]))

        assert get_wan_bandwidth_history(gateway, '1h', '1m') == [{'time': T1, 'rx_rate': 120.5, 'tx_rate': 0}]

    def test_multi_wan_fill(self, gateway, storage):
        storage.query.return_value = influx_response(
            series({'ifname': 'wan2'}, ['time', 'rx_rate', 'tx_rate'], [[T1, 5, 1]]),
            series({'ifname': 'wan1'}, ['time', 'rx_rate', 'tx_rate'], [[T0, 10, 2], [T1, 20, 4]]),
        )

        absent = get_multi_wan_bandwidth_history(gateway)
        zero = get_multi_wan_bandwidth_history(gateway, fill=FILL_ZERO)

        assert absent['ifnames'] == ['wan1', 'wan2']
        assert absent['data'][0] == {'time': T0, 'wan1_rx': 10, 'wan1_tx': 2}
        assert zero['data'][0] == {'time': T0, 'wan1_rx': 10, 'wan1_tx': 2, 'wan2_rx': 0, 'wan2_tx': 0}

    def test_signal_history_skips_zero_readings(self, gateway, storage):
        storage.query.return_value = influx_response(
            series({'device_name': 'ap1'}, ['time', 'avg_signal'], [[T0, -58], [T1, 0]]))

        result = get_all_ap_signal_history(gateway)

        assert result == {'data': [{'time': T0, 'ap1': -58}], 'ap_names': ['ap1']}

    def test_port_packets(self, gateway, storage):
        storage.query.return_value = influx_response(series(
            None,
            ['time', 'rx_pps', 'tx_pps', 'rx_bcast', 'tx_bcast', 'rx_mcast', 'tx_mcast'],
            [[T0, 10, 20, 1, 2, 3, None], [T1, 0, 0, 5, 5, 5, 5]],
        ))

        points = get_port_packets_history(gateway, 'core-sw', 7)

        assert points == [{'time': T0, 'rx_packets': 10, 'tx_packets': 20, 'rx_broadcast': 1,
                           'tx_broadcast': 2, 'rx_multicast': 3, 'tx_multicast': 0}]
        assert "\"port_idx\" = '7'" in statements(storage)[0]


class TestTotals:

    def test_top_consumers_limit_and_meta(self, gateway, storage):
        storage.query.return_value = influx_response(
            series({'mac': 'a', 'name': 'nas', 'vlan': '20'}, ['time', 'rx', 'tx'], [[T0, 900, 100]]),
            series({'mac': 'b', 'name': 'tv', 'vlan': '10'}, ['time', 'rx', 'tx'], [[T0, 50, 0]]),
            series({'mac': 'c', 'name': 'phone', 'vlan': '10'}, ['time', 'rx', 'tx'], [[T0, -10, 300]]),
        )

        top = get_top_bandwidth_consumers(gateway, '24h', limit=2)

        assert [c['id'] for c in top] == ['a', 'c']
        assert top[0]['meta'] == {'vlan': '20'}
        assert top[1]['rx'] == 0

    def test_vlan_totals(self, gateway, storage):
        storage.query.return_value = influx_response(
            series({'vlan': '10'}, ['time', 'rx', 'tx'], [[T0, 5, 5]]))

        assert get_bandwidth_by_vlan(gateway) == [{'id': '10', 'name': '10', 'rx': 5, 'tx': 5, 'total': 10}]

    def test_trend_sums_entity_means(self, gateway, storage):
        storage.query.return_value = influx_response(
            series({'mac': 'a'}, ['time', 'rx', 'tx'], [[T0, 100.0, 10.0]]),
            series({'mac': 'b'}, ['time', 'rx', 'tx'], [[T0, 50.0, 5.0]]),
        )

        assert get_bandwidth_trend(gateway, 'clients', '1h') == [{'time': T0_MS, 'rx': 150.0, 'tx': 15.0}]

    def test_invalid_range_never_reaches_storage(self, gateway, storage):
        with pytest.raises(ValidationError):
            get_bandwidth_trend(gateway, 'clients', '1 hour')

        storage.query.assert_not_called()


class TestClientHistory:

    def state(self, is_wired):
        return influx_response(series(
            {'name': 'Desk PC', 'is_wired': 'true' if is_wired else 'false'},
            ['time', 'ip', 'hostname', 'essid'],
            [[T0, '10.0.0.5', 'desk', None]],
        ))

    def traffic(self):
        return influx_response(series(
            None, ['time', 'rx_bytes', 'tx_bytes', 'wired_rx', 'wired_tx'], [[T0, 100, 200, 3000, -1]]))

    def test_wired_client_uses_wired_counters(self, gateway, storage):
        storage.query.side_effect = [self.state(True), self.traffic()]

        result = get_client_historical_traffic(gateway, 'aa:bb')

        assert result == {
            'mac': 'aa:bb', 'name': 'Desk PC', 'hostname': 'desk', 'ip': '10.0.0.5', 'essid': '',
            'is_wired': True, 'rx_bytes': 3000, 'tx_bytes': 0,
        }

    def test_wireless_client(self, gateway, storage):
        storage.query.side_effect = [self.state(False), self.traffic()]

        result = get_client_historical_traffic(gateway, 'aa:bb')

        assert result['rx_bytes'] == 100
        assert result['tx_bytes'] == 200

    def test_unknown_client(self, gateway, storage):
        assert get_client_historical_traffic(gateway, 'aa:bb') is None
        assert storage.query.call_count == 1

    def test_missing_traffic_counts_as_zero(self, gateway, storage):
        storage.query.side_effect = [self.state(False), {'results': [{}]}]

        result = get_client_historical_traffic(gateway, 'aa:bb')

        assert result['rx_bytes'] == 0
        assert result['tx_bytes'] == 0


class TestSsidVaps:

    def test_joins_state_and_traffic_on_vap_key(self, gateway, storage):
        state = influx_response(
            series({'device_name': 'ap1', 'radio': 'na', 'bssid': 'b1'},
                   ['time', 'channel', 'num_sta', 'avg_client_signal'], [[T0, 36, 4, -61]]),
            series({'device_name': 'ap1', 'radio': 'ng', 'bssid': 'b2'},
                   ['time', 'channel', 'num_sta', 'avg_client_signal'], [[T0, 6, 1, -70]]),
        )
        traffic = influx_response(
            series({'device_name': 'ap1', 'radio': 'na', 'bssid': 'b1'},
                   ['time', 'rx_bytes', 'tx_bytes'], [[T0, 1000, 2000]]),
        )
        storage.query.side_effect = [state, traffic]

        vaps = get_ssid_vap_details(gateway, 'Home')

        assert [(v['radio'], v['rx_bytes'], v['tx_bytes']) for v in vaps] == [('na', 1000, 2000), ('ng', 0, 0)]
        assert vaps[0]['channel'] == 36
        assert vaps[1]['avg_client_signal'] == -70
        assert all(validate_query(q).valid for q in statements(storage))
