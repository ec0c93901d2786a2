"""Unit tests for the record flattener and envelope helpers."""
import json

import pytest

from processor.flattener import (
    flatten_calendar_data,
    iter_payloads,
    reshape_documents,
    wrap_reconstruction,
)
from processor.models import AlmanacRecord


@pytest.fixture
def calendar_document():
    """Daily almanac response as returned by the API."""
    return {
        'errno': 0,
        'errmsg': 'success',
        'data': {
            'date': '2025-02-03',
            'hour': 10,
            'minute': 5,
            'second': 0,
            'festivals': ['立春', '财神节'],
            'lunar': {
                'zodiac': '蛇',
                'cnYear': '二〇二五',
                'cnMonth': '正',
                'cnDay': '初六',
                'cyclicalYear': '乙巳',
                'cyclicalMonth': '戊寅',
                'cyclicalDay': '甲子',
                'hour': '巳',
                'maxDayInMonth': 29,
                'leapMonth': 6,
                'solarTerms': [{'name': '立春', 'time': '2025-02-03 22:10:13'}],
            },
            'almanac': {
                'yi': ['祭祀', '祈福'],
                'ji': ['动土'],
                'chong': '冲马',
                'sha': '煞南',
                'nayin': '海中金',
                'pengzubaiji': ['甲不开仓', '子不问卜'],
                'jishenfangwei': {'xi': '东北', 'fu': '正北', 'cai': '东北'},
                'liuyao': '先胜',
                'jiuxing': '七赤',
                'taisui': '太岁在巳',
            },
        },
    }


class TestFlattenCalendarData:
    """Test cases for flatten_calendar_data."""

    def test_flatten_produces_reconstruction_envelope(self, calendar_document):
        """Test the output is keyed by date and wrapped in the envelope."""
        result = flatten_calendar_data(calendar_document, '2025-02-03')

        assert list(result) == ['2025-02-03']
        envelope = result['2025-02-03']['Reconstruction'][0]
        assert envelope['errno'] == 0
        assert envelope['errmsg'] == 'success'
        assert len(envelope['data']) == 1

    def test_flatten_joins_list_fields(self, calendar_document):
        """Test festivals and pengzubaiji lists are comma-joined."""
        record = flatten_calendar_data(calendar_document, '2025-02-03')[
            '2025-02-03']['Reconstruction'][0]['data'][0]

        assert record['festivals'] == '立春,财神节'
        assert record['pengzubaiji'] == '甲不开仓,子不问卜'

    def test_flatten_merges_lunar_and_almanac(self, calendar_document):
        """Test lunar and almanac sub-fields land in the flat record."""
        record = flatten_calendar_data(calendar_document, '2025-02-03')[
            '2025-02-03']['Reconstruction'][0]['data'][0]

        assert record['zodiac'] == '蛇'
        assert record['cyclicalDay'] == '甲子'
        assert record['hour'] == 10
        assert record['hourLunar'] == '巳'
        assert record['maxDayInMonthLunar'] == 29
        assert record['naYin'] == '海中金'
        assert record['liuyao'] == '先胜'
        assert record['taisui'] == '太岁在巳'

    def test_flatten_inlines_and_serializes_positions(self, calendar_document):
        """Test jishenfangwei is both inlined and kept as JSON text."""
        record = flatten_calendar_data(calendar_document, '2025-02-03')[
            '2025-02-03']['Reconstruction'][0]['data'][0]

        assert record['xi'] == '东北'
        assert record['fu'] == '正北'
        assert json.loads(record['jishenfangwei']) == {
            'xi': '东北', 'fu': '正北', 'cai': '东北'
        }

    def test_flatten_serializes_solar_terms(self, calendar_document):
        """Test solarTerms survives as a JSON string."""
        record = flatten_calendar_data(calendar_document, '2025-02-03')[
            '2025-02-03']['Reconstruction'][0]['data'][0]

        assert isinstance(record['solarTerms'], str)
        assert json.loads(record['solarTerms'])[0]['name'] == '立春'

    def test_flatten_defaults_missing_almanac_scalars(self):
        """Test absent almanac and festivals default to empty strings."""
        document = {'errno': 0, 'errmsg': '', 'data': {'date': '2025-02-04'}}

        record = flatten_calendar_data(document, '2025-02-04')[
            '2025-02-04']['Reconstruction'][0]['data'][0]

        assert record['festivals'] == ''
        assert record['pengzubaiji'] == ''
        assert record['liuyao'] == ''
        assert record['jiuxing'] == ''
        assert record['taisui'] == ''
        assert record['jishenfangwei'] is None

    @pytest.mark.parametrize('document', [
        None,
        'not a mapping',
        {'errno': 0},
        {'errno': 0, 'data': {}},
        {'errno': 0, 'data': {'lunar': {}}},
    ])
    def test_flatten_returns_empty_for_unusable_input(self, document):
        """Test missing data or data.date yields an empty result."""
        assert flatten_calendar_data(document, '2025-02-03') == {}

    def test_flattened_record_round_trips_through_model(self, calendar_document):
        """Test AlmanacRecord.from_dict recovers the inlined positions."""
        record = flatten_calendar_data(calendar_document, '2025-02-03')[
            '2025-02-03']['Reconstruction'][0]['data'][0]

        rebuilt = AlmanacRecord.from_dict(record)

        assert rebuilt.date == '2025-02-03'
        assert rebuilt.festivals == '立春,财神节'
        assert rebuilt.positions == {'xi': '东北', 'fu': '正北', 'cai': '东北'}


class TestEnvelopes:
    """Test cases for wrapping and unwrapping envelopes."""

    def test_wrap_reconstruction_keeps_envelope_fields(self):
        """Test an API envelope is wrapped unchanged."""
        document = {'errno': 0, 'errmsg': 'ok', 'data': [{'name': '立春'}]}

        result = wrap_reconstruction(document, '2025-02-03')

        assert result == {
            '2025-02-03': {
                'Reconstruction': [
                    {'errno': 0, 'errmsg': 'ok', 'data': [{'name': '立春'}]}
                ]
            }
        }

    def test_wrap_reconstruction_bare_mapping(self):
        """Test a bare holidays mapping becomes the envelope data."""
        holidays = {'2025-01-01': {'date': '2025-01-01', 'name': '元旦', 'isOffDay': True}}

        envelope = wrap_reconstruction(holidays, '2025-01-01')['2025-01-01']['Reconstruction'][0]

        assert envelope['errno'] == 0
        assert envelope['errmsg'] == ''
        assert envelope['data'] == holidays

    def test_wrap_reconstruction_empty_document(self):
        """Test an empty document contributes nothing."""
        assert wrap_reconstruction({}, '2025-02-03') == {}

    def test_reshape_documents_flattens_calendar_only(self, calendar_document):
        """Test the calendar source is flattened and others wrapped."""
        raw = {
            'calendar': calendar_document,
            'shichen': {'errno': 0, 'errmsg': '', 'data': {'hour': '子'}},
            'astro': {},
        }

        reshaped = reshape_documents(raw, '2025-02-03')

        calendar_data = reshaped['calendar']['2025-02-03']['Reconstruction'][0]['data']
        assert isinstance(calendar_data, list)
        assert calendar_data[0]['festivals'] == '立春,财神节'
        assert reshaped['shichen']['2025-02-03']['Reconstruction'][0]['data'] == {'hour': '子'}
        assert reshaped['astro'] == {}

    def test_iter_payloads_sorted_by_date(self):
        """Test stored documents unwrap in date order."""
        document = {
            '2025-02-04': {'Reconstruction': [{'errno': 0, 'data': 'b'}]},
            '2025-02-03': {'Reconstruction': [{'errno': 0, 'data': 'a'}]},
        }

        assert iter_payloads(document) == ['a', 'b']

    def test_iter_payloads_bare_envelope(self):
        """Test a bare API envelope yields its data."""
        assert iter_payloads({'errno': 0, 'data': [1, 2]}) == [[1, 2]]

    def test_iter_payloads_non_mapping(self):
        """Test unusable documents yield nothing."""
        assert iter_payloads(None) == []
        assert iter_payloads({'2025-02-03': 'junk'}) == []
