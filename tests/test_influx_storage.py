"""InfluxDB writer: point conversion, batching, retries, ping and queries."""
import re
from unittest.mock import patch

import pytest
import requests
import urllib3
from influxdb_client.rest import ApiException

from conftest import make_response
from errors import ResponseError, WriteError
from influx_storage import InfluxStorage, tag_value

TS_MS = 1700000000000
TS_NS = TS_MS * 1000000


@pytest.fixture
def influx_client():
    with patch('influx_storage.InfluxDBClient') as client_cls:
        yield client_cls


@pytest.fixture
def storage(influx_client):
    return InfluxStorage('http://influx:8086/', 'unpoller', username='u', password='p',
                         timeout=1000, max_retries=3, retry_delay=100, batch_size=2)


@pytest.fixture
def write(storage, influx_client):
    return influx_client.return_value.write_api.return_value.write


@pytest.fixture
def app_traffic():
    return {
        'client_usage_by_app': [
            {
                'client': {'mac': 'aa:bb:cc:dd:ee:ff', 'name': 'Living Room TV', 'is_wired': False},
                'usage_by_app': [
                    {'application': 95, 'category': 5, 'bytes_received': 1000,
                     'bytes_transmitted': 200, 'total_bytes': 1200, 'activity_seconds': 60},
                ],
            },
            {'client': None, 'usage_by_app': [{'application': 1}]},
        ],
        'total_usage_by_app': [
            {'application': 21, 'category': 0, 'application_name': 'Domain Name System',
             'bytes_received': 10, 'bytes_transmitted': 5, 'total_bytes': 15, 'client_count': 4},
        ],
    }


def tag_set(line):
    """Tags of one line-protocol line, split on unescaped separators."""
    head = re.split(r'(?<!\\) ', line)[0]
    return re.split(r'(?<!\\),', head)[1:]


def client_line(storage, client):
    data = {'client_usage_by_app': [{'client': client, 'usage_by_app': [{'application': 95, 'category': 5}]}]}
    points = list(storage.traffic_by_app_points(data, TS_MS))
    assert len(points) == 1
    return points[0].to_line_protocol()


class TestConnection:

    def test_compatibility_settings(self, storage, influx_client):
        kwargs = influx_client.call_args[1]

        assert kwargs['url'] == 'http://influx:8086'
        assert kwargs['token'] == 'u:p'
        assert kwargs['org'] == '-'
        assert kwargs['timeout'] == 1000
        assert storage.bucket == 'unpoller/autogen'

    def test_no_credentials_no_token(self, influx_client):
        InfluxStorage('http://influx:8086', 'unpoller', retention_policy='short')

        assert influx_client.call_args[1]['token'] is None

    def test_close(self, storage, influx_client):
        storage.close()

        influx_client.return_value.close.assert_called_once_with()


class TestPoints:

    def test_tag_value(self):
        assert tag_value(None) == 'unknown'
        assert tag_value('') == 'unknown'
        assert tag_value('  ') == 'unknown'
        assert tag_value(42) == '42'

    def test_traffic_by_app_point(self, storage, app_traffic):
        points = list(storage.traffic_by_app_points(app_traffic, TS_MS))

        assert len(points) == 1
        line = points[0].to_line_protocol()
        assert line.startswith('traffic_by_app,')
        assert line.endswith(f' {TS_NS}')
        assert set(tag_set(line)) == {
            'application=95', 'category=5', 'application_name=YouTube', 'category_name=Video',
            'client_mac=aa:bb:cc:dd:ee:ff', 'client_name=Living\\ Room\\ TV', 'is_wired=false',
        }
        for field in ('bytes_rx=1000i', 'bytes_tx=200i', 'bytes_total=1200i', 'activity_seconds=60i'):
            assert field in line

    def test_total_usage_keeps_controller_names(self, storage, app_traffic):
        points = list(storage.total_usage_by_app_points(app_traffic, TS_MS))

        assert len(points) == 1
        line = points[0].to_line_protocol()
        assert 'application_name=Domain\\ Name\\ System' in tag_set(line)
        assert 'category_name=Network\\ Protocol' in tag_set(line)
        assert 'client_count=4i' in line

    def test_country_missing_fields_count_as_zero(self, storage):
        points = list(storage.traffic_by_country_points({'usage_by_country': [{'country': 'US'}]}, TS_MS))

        line = points[0].to_line_protocol()
        assert tag_set(line) == ['country=US']
        for field in ('bytes_rx=0i', 'bytes_tx=0i', 'bytes_total=0i'):
            assert field in line

    def test_malformed_records_are_skipped(self, storage):
        data = {'usage_by_country': ['garbage', {'country': 'DE', 'total_bytes': 5}]}
        points = list(storage.traffic_by_country_points(data, TS_MS))

        assert len(points) == 1
        assert 'country=DE' in tag_set(points[0].to_line_protocol())

    def test_empty_payload_yields_nothing(self, storage):
        assert list(storage.traffic_by_app_points({}, TS_MS)) == []
        assert list(storage.total_usage_by_app_points({'total_usage_by_app': None}, TS_MS)) == []


class TestTagEscaping:

    def test_trailing_backslash_does_not_swallow_next_tag(self, storage):
        line = client_line(storage, {'mac': 'aa', 'name': 'PC\\', 'is_wired': True})

        assert 'is_wired=true' in tag_set(line)
        assert 'client_mac=aa' in tag_set(line)

    def test_newline_stays_on_one_line(self, storage):
        line = client_line(storage, {'mac': 'aa', 'name': 'a\nb'})

        assert '\n' not in line
        assert 'is_wired=false' in tag_set(line)

    def test_empty_mac_is_unknown(self, storage):
        line = client_line(storage, {'mac': '', 'name': 'n'})

        assert 'client_mac=unknown' in tag_set(line)
        assert all(not tag.endswith('=') for tag in tag_set(line))


class TestWrites:

    def test_write_points_batches(self, storage, write):
        points = storage.traffic_by_country_points(
            {'usage_by_country': [{'country': c} for c in ('US', 'DE', 'FR', 'NL', 'GB')]}, TS_MS)

        assert storage.write_points(points) == 5
        assert write.call_count == 3
        assert write.call_args[1]['bucket'] == 'unpoller/autogen'
        assert len(write.call_args[1]['record']) == 1

    def test_write_retries_then_succeeds(self, storage, write, no_sleep):
        write.side_effect = [ApiException(status=500, reason='busy'), None]

        assert storage.write_batch(['point']) == 1
        assert no_sleep.call_count == 1

    def test_failed_batch_reports_partial_count(self, storage, write):
        write.side_effect = [None] + [ApiException(status=400, reason='bad point')] * 3

        with pytest.raises(WriteError) as exc_info:
            storage.write_points(['a', 'b', 'c'])

        assert exc_info.value.points == 2
        assert exc_info.value.status_code == 400
        assert write.call_count == 4

    def test_transport_error_becomes_write_error(self, storage, write):
        write.side_effect = urllib3.exceptions.NewConnectionError(None, 'refused')

        with pytest.raises(WriteError) as exc_info:
            storage.write_points(['a'])

        assert exc_info.value.points == 0

    def test_write_traffic_by_app_returns_point_count(self, storage, write, app_traffic):
        assert storage.write_traffic_by_app(app_traffic, TS_MS) == 1
        assert storage.write_total_usage_by_app(app_traffic, TS_MS) == 1

    def test_no_points_no_request(self, storage, write):
        assert storage.write_traffic_by_country({}, TS_MS) == 0

        write.assert_not_called()


class TestPingAndQuery:

    def test_ping_true(self, storage, influx_client):
        influx_client.return_value.ping.return_value = True

        assert storage.ping() is True

    def test_ping_never_raises(self, storage, influx_client, no_sleep):
        ping = influx_client.return_value.ping
        ping.side_effect = [False, OSError('down'), False]

        assert storage.ping() is False
        assert ping.call_count == 3
        assert no_sleep.call_count == 2

    def test_query_returns_json(self, storage):
        body = {'results': [{'statement_id': 0}]}
        with patch('influx_storage.requests.post', return_value=make_response(200, json_data=body)) as post:
            assert storage.query('SHOW MEASUREMENTS', epoch='ms') == body

        assert post.call_args[0][0] == 'http://influx:8086/query'
        assert post.call_args[1]['params'] == {'db': 'unpoller', 'epoch': 'ms'}
        assert post.call_args[1]['data'] == {'q': 'SHOW MEASUREMENTS'}
        assert post.call_args[1]['auth'] == ('u', 'p')

    def test_query_error_carries_status_and_body(self, storage):
        response = make_response(400, text='{"error":"error parsing query"}')
        with patch('influx_storage.requests.post', return_value=response):
            with pytest.raises(ResponseError) as exc_info:
                storage.query('SELECT')

        assert exc_info.value.status_code == 400
        assert 'error parsing query' in exc_info.value.body

    def test_query_timeout(self, storage):
        with patch('influx_storage.requests.post', side_effect=requests.exceptions.Timeout('slow')):
            with pytest.raises(Exception) as exc_info:
                storage.query('SHOW MEASUREMENTS')

        assert isinstance(exc_info.value, TimeoutError)
