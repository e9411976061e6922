"""Query result parsing and query-safety helpers."""
import pytest

from conftest import influx_response
from errors import ValidationError
from influx_results import (ValueGetter, escape_influx_string, get_series, parse_grouped_results, parse_time,
                            parse_time_series_results, to_number, validate_time_range)


class TestValueGetter:

    def test_typed_accessors(self):
        get = ValueGetter(['time', 'rx', 'name', 'is_wired'], ['t', '12', 'ap-1', 'true'])

        assert get('time') == 't'
        assert get.number('rx') == 12.0
        assert get.string('name') == 'ap-1'
        assert get.boolean('is_wired') is True

    def test_missing_values_use_defaults(self):
        get = ValueGetter(['time', 'rx'], ['t'])

        assert get('rx') is None
        assert get.number('rx') == 0
        assert get.number('nope', default=-1) == -1
        assert get.string('nope') == ''
        assert get.boolean('nope') is False

    @pytest.mark.parametrize('value', [None, float('nan'), float('-inf'), 'abc', True, [1]])
    def test_to_number_invalid_is_zero(self, value):
        assert to_number(value) == 0


class TestSeriesParsing:

    def test_get_series_handles_empty_shapes(self):
        assert get_series(None) == []
        assert get_series({}) == []
        assert get_series({'results': []}) == []
        assert get_series({'results': [{'statement_id': 0}]}) == []
        assert get_series({'results': [{'series': []}]}, statement_index=3) == []

    def test_parse_grouped_results_uses_first_row(self):
        response = influx_response(
            {'tags': {'name': 'ap1'}, 'columns': ['time', 'num_sta'], 'values': [['t1', 4], ['t2', 9]]},
            {'tags': {'name': 'ap2'}, 'columns': ['time', 'num_sta'], 'values': []},
        )

        parsed = parse_grouped_results(response, lambda tags, get: (tags['name'], get.number('num_sta')))

        assert parsed == [('ap1', 4), ('ap2', 0)]

    def test_parse_time_series_results(self):
        response = influx_response({'columns': ['time', 'v'], 'values': [['t1', 1], ['t2', None]]})

        assert parse_time_series_results(response, lambda get: get.number('v')) == [1, 0]
        assert parse_time_series_results({'results': []}, lambda get: get) == []

    def test_parse_time(self):
        assert parse_time('1970-01-01T00:00:01Z') == 1000.0
        assert parse_time('1970-01-01T00:00:01.123456789Z') == pytest.approx(1123.456, abs=0.001)
        assert parse_time('1970-01-01T00:00:01.5Z') == 1500.0
        assert parse_time(2500) == 2500.0
        assert parse_time('not a time') == 0.0


class TestQuerySafety:

    def test_escaping(self):
        assert escape_influx_string("O'Brien's AP") == "O''Brien''s AP"
        assert escape_influx_string(5) == '5'

    @pytest.mark.parametrize('value', ['5m', '24h', '30d'])
    def test_valid_time_ranges(self, value):
        assert validate_time_range(value) == value

    @pytest.mark.parametrize('value', ['', '5', '5s', '1h; DROP', '1h\n', None, '-1h'])
    def test_invalid_time_ranges(self, value):
        with pytest.raises(ValidationError):
            validate_time_range(value)
