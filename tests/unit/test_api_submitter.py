"""Unit tests for the API channel"""

import json

import httpx
import pytest

from src.submission.api_submitter import (
    API_CONFIGS,
    USER_AGENT,
    APISubmitter,
    build_payload,
    extract_ticket_number,
    set_nested,
)
from src.submission.errors import ChannelUnavailableError, SubmissionTransportError

REQUEST_DATA = {
    'request_id': 'REQ-1',
    'contact_name': 'Dana Ruiz',
    'company_name': 'Ruiz Fencing',
    'phone': '916-555-0142',
    'email': 'dana@ruizfencing.com',
    'address': '1200 J Street, Sacramento, CA 95814',
    'street': '1200 J Street',
    'city': 'Sacramento',
    'state': 'CA',
    'zip_code': '95814',
    'work_type': 'Fence installation',
    'work_description': 'Chain link fence',
    'start_date': '2026-11-02',
    'depth': '3 ft',
    'county': None,
}


@pytest.fixture
def usanorth(make_district):
    return make_district(id='CA-USANORTH', name='USA North 811', methods=['api', 'web', 'phone'],
                         api_available=True, api_url='https://api.usanorth.org/tickets')


class TestPayload:
    """Test nested payload construction"""

    def test_set_nested_creates_intermediates(self):
        """Test that dotted paths create missing dicts"""
        target = {}
        set_nested(target, 'a.b.c', 1)
        set_nested(target, 'a.d', 2)
        assert target == {'a': {'b': {'c': 1}, 'd': 2}}

    def test_usanorth_mapping(self):
        """Test USA North contact/location/work layout"""
        payload = build_payload(REQUEST_DATA, API_CONFIGS['CA-USANORTH'])

        assert payload['contact'] == {'name': 'Dana Ruiz', 'phone': '916-555-0142', 'email': 'dana@ruizfencing.com'}
        assert payload['location']['zip'] == '95814'
        assert payload['work']['startDate'] == '2026-11-02'

    def test_defaults_merged(self):
        """Test that per-district defaults are added"""
        payload = build_payload(REQUEST_DATA, API_CONFIGS['CA-DIGALERT'])

        assert payload['ticketType'] == 'NORMAL'
        assert payload['site']['postalCode'] == '95814'

    def test_none_values_skipped(self):
        """Test that missing fields do not create keys"""
        config = {'field_mapping': {'county': 'location.county'}}
        assert build_payload(REQUEST_DATA, config) == {}


class TestTicketExtraction:
    """Test ticket number lookup in API responses"""

    def test_configured_path(self):
        assert extract_ticket_number({'data': {'ticketId': 'DA-778899'}}, 'data.ticketId') == 'DA-778899'

    def test_common_fields(self):
        """Test fallback through the common field names"""
        assert extract_ticket_number({'referenceNumber': 42}, 'ticketNumber') == '42'

    def test_synthetic_fallback(self):
        """Test 'API-<ms>' when the response has no ticket"""
        assert extract_ticket_number({'ok': True}, None).startswith('API-')


class TestAPISubmitter:
    """Test HTTP submission with a mocked transport"""

    @pytest.mark.asyncio
    async def test_successful_submission(self, usanorth, monkeypatch):
        """Test request shape and ticket from response"""
        monkeypatch.setenv('USANORTH_API_KEY', 'k-123')
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured['request'] = request
            return httpx.Response(201, json={'ticketNumber': '2026110200123'})

        submitter = APISubmitter(transport=httpx.MockTransport(handler))
        result = await submitter.submit(REQUEST_DATA, usanorth)

        assert result.success is True
        assert result.ticket_number == '2026110200123'
        assert result.confirmation_number == '2026110200123'
        assert result.data['status_code'] == 201

        sent = captured['request']
        assert sent.method == 'POST'
        assert str(sent.url) == 'https://api.usanorth.org/tickets'
        assert sent.headers['User-Agent'] == USER_AGENT
        assert sent.headers['X-API-Key'] == 'k-123'
        assert json.loads(sent.content)['location']['city'] == 'Sacramento'

    @pytest.mark.asyncio
    async def test_non_2xx_is_failure(self, usanorth):
        """Test 'API error: <status> - <body>' on rejection"""
        transport = httpx.MockTransport(lambda request: httpx.Response(422, text='zip_code invalid'))
        submitter = APISubmitter(transport=transport)

        with pytest.raises(SubmissionTransportError, match=r'API error: 422 - zip_code invalid'):
            await submitter.submit(REQUEST_DATA, usanorth)

    @pytest.mark.asyncio
    async def test_network_error_is_failure(self, usanorth):
        """Test that transport errors surface as submission failures"""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        submitter = APISubmitter(transport=httpx.MockTransport(handler))

        with pytest.raises(SubmissionTransportError, match='API request failed'):
            await submitter.submit(REQUEST_DATA, usanorth)

    @pytest.mark.asyncio
    async def test_unmapped_district_unavailable(self, make_district):
        """Test that a district without a mapping table fails before any request"""
        calls = []
        transport = httpx.MockTransport(lambda request: calls.append(request) or httpx.Response(200))
        submitter = APISubmitter(transport=transport)

        with pytest.raises(ChannelUnavailableError):
            await submitter.submit(REQUEST_DATA, make_district(id='CO811', api_available=True))

        assert calls == []
