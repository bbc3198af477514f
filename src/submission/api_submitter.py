"""Programmatic API channel

Districts with a ticketing API get a JSON payload shaped by a static
per-district field mapping (flat field name -> dotted path in the payload).
"""

import os
from typing import Dict, Any, Optional
from datetime import datetime
from loguru import logger
import httpx

from src.districts.models import District
from .base import BaseSubmitter
from .channels import Channel
from .errors import ChannelUnavailableError, SubmissionTransportError
from .extractor import synthetic_id
from .models import SubmissionResult
from .sanitize import redact

USER_AGENT = '811-Integration-API/1.0'
API_TIMEOUT_SECONDS = 30.0

# Checked in order when the district's configured response field is missing
COMMON_TICKET_FIELDS = ['ticketNumber', 'ticketId', 'confirmationNumber', 'id', 'referenceNumber']


# =============================================================================
# DISTRICT API CONFIGURATION
# =============================================================================

API_CONFIGS: Dict[str, Dict[str, Any]] = {
    'CA-USANORTH': {
        'endpoint': 'https://api.usanorth.org/tickets',
        'method': 'POST',
        'auth_header': 'X-API-Key',
        'auth_env': 'USANORTH_API_KEY',
        'field_mapping': {
            'contact_name': 'contact.name',
            'phone': 'contact.phone',
            'email': 'contact.email',
            'address': 'location.address',
            'city': 'location.city',
            'state': 'location.state',
            'zip_code': 'location.zip',
            'work_type': 'work.type',
            'work_description': 'work.description',
            'start_date': 'work.startDate',
            'depth': 'work.depth',
        },
        'response_ticket_field': 'ticketNumber',
    },
    'CA-DIGALERT': {
        'endpoint': 'https://api.digalert.org/v2/tickets',
        'method': 'POST',
        'auth_header': 'Authorization',
        'auth_env': 'DIGALERT_API_TOKEN',
        'auth_prefix': 'Bearer ',
        'field_mapping': {
            'contact_name': 'requester.name',
            'company_name': 'requester.company',
            'phone': 'requester.phone',
            'email': 'requester.email',
            'street': 'site.streetAddress',
            'city': 'site.city',
            'state': 'site.state',
            'zip_code': 'site.postalCode',
            'work_type': 'excavation.type',
            'work_description': 'excavation.description',
            'start_date': 'excavation.startDate',
        },
        'defaults': {'ticketType': 'NORMAL'},
        'response_ticket_field': 'data.ticketId',
    },
}


def set_nested(target: Dict[str, Any], dotted_path: str, value: Any):
    """Set value at a dotted path, creating intermediate dicts as needed"""
    keys = dotted_path.split('.')
    current = target
    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]
    current[keys[-1]] = value


def get_nested(source: Any, dotted_path: str) -> Any:
    """Read value at a dotted path, None if any segment is missing"""
    current = source
    for key in dotted_path.split('.'):
        if not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def build_payload(request_data: Dict[str, Any], api_config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build the nested district payload from normalized request data

    Args:
        request_data: Normalized request data
        api_config: District API configuration with field_mapping and optional defaults

    Returns:
        Nested payload dict
    """
    payload: Dict[str, Any] = {}
    for field, path in api_config['field_mapping'].items():
        value = request_data.get(field)
        if value is not None:
            set_nested(payload, path, value)

    for key, value in api_config.get('defaults', {}).items():
        payload.setdefault(key, value)

    return payload


def extract_ticket_number(response_data: Any, response_field: Optional[str]) -> str:
    """Ticket number from the configured path, common fields, or a synthetic id"""
    if response_field:
        ticket = get_nested(response_data, response_field)
        if ticket:
            return str(ticket)

    if isinstance(response_data, dict):
        for field in COMMON_TICKET_FIELDS:
            if response_data.get(field):
                return str(response_data[field])

    return synthetic_id('API')


class APISubmitter(BaseSubmitter):
    """Submit requests to district ticketing APIs over HTTP"""

    channel = Channel.API

    def __init__(
        self,
        api_configs: Optional[Dict[str, Dict[str, Any]]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize API submitter

        Args:
            api_configs: Per-district API configuration (defaults to API_CONFIGS)
            transport: Optional httpx transport (used to stub the network)
        """
        self.api_configs = api_configs if api_configs is not None else API_CONFIGS
        self.transport = transport
        super().__init__()

    def _build_headers(self, api_config: Dict[str, Any]) -> Dict[str, str]:
        headers = {
            'Content-Type': 'application/json',
            'User-Agent': USER_AGENT,
        }
        auth_env = api_config.get('auth_env')
        if auth_env:
            secret = os.getenv(auth_env)
            if secret:
                headers[api_config['auth_header']] = f"{api_config.get('auth_prefix', '')}{secret}"
            else:
                logger.warning(f"{auth_env} not set; calling API without credentials")
        headers.update(api_config.get('headers', {}))
        return headers

    async def submit(self, request_data: Dict[str, Any], district: District) -> SubmissionResult:
        request_id = request_data.get('request_id', 'N/A')

        api_config = self.api_configs.get(district.id)
        if not api_config:
            raise ChannelUnavailableError(f"No API configuration for district {district.id}")

        endpoint = district.api_url or api_config.get('endpoint')
        if not endpoint:
            raise ChannelUnavailableError(f"No API endpoint for district {district.id}")

        payload = build_payload(request_data, api_config)
        headers = self._build_headers(api_config)
        method = api_config.get('method', 'POST').upper()

        logger.info(f"[{request_id}] Submitting to {district.id} API: {method} {endpoint}")
        logger.debug(f"[{request_id}] Headers: {redact(headers)}")

        try:
            async with httpx.AsyncClient(timeout=API_TIMEOUT_SECONDS, transport=self.transport) as client:
                response = await client.request(method, endpoint, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            body = _response_body(e.response)
            raise SubmissionTransportError(f"API error: {e.response.status_code} - {redact(body)}") from e
        except httpx.HTTPError as e:
            raise SubmissionTransportError(f"API request failed: {redact(str(e))}") from e

        response_data = _response_body(response)
        ticket_number = extract_ticket_number(response_data, api_config.get('response_ticket_field'))

        logger.success(f"[{request_id}] API submission accepted by {district.id}: {ticket_number}")
        return SubmissionResult(
            success=True,
            ticket_number=ticket_number,
            confirmation_number=ticket_number,
            data={
                'response': response_data,
                'status_code': response.status_code,
                'submitted_at': datetime.now().isoformat(),
            },
        )


def _response_body(response: httpx.Response) -> Any:
    """JSON body if parseable, else raw text"""
    try:
        return response.json()
    except ValueError:
        return response.text
