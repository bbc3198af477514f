"""Pytest configuration and shared fixtures for testing"""

import sys
from pathlib import Path
from typing import Dict, Any

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.districts.models import District
from src.memory.store import RequestStore
from src.submission.models import SubmissionResult


@pytest.fixture
def request_data() -> Dict[str, Any]:
    """Raw request fields as a caller would post them"""
    return {
        'contact_name': 'Dana Ruiz',
        'company_name': 'Ruiz Fencing',
        'phone': '916-555-0142',
        'email': 'dana@ruizfencing.com',
        'street': '1200 J Street',
        'city': 'Sacramento',
        'state': 'ca',
        'zip_code': '95814',
        'county': 'Sacramento',
        'work_type': 'Fence installation',
        'work_description': 'Install 40 ft of chain link fence along the rear property line',
        'start_date': '2026-11-02',
        'duration': 2,
        'depth': '3 ft',
        'district_id': 'CA-USANORTH',
    }


@pytest.fixture
def store(tmp_path) -> RequestStore:
    """Request store backed by a temp JSON file"""
    return RequestStore(store_file=str(tmp_path / "requests.json"))


@pytest.fixture
def make_district():
    """Build a District with sensible defaults"""
    def _make(**overrides) -> District:
        fields = {
            'id': 'TEST-811',
            'name': 'Test One Call',
            'state': 'CA',
            'methods': ['web', 'phone'],
            'web_portal': 'https://portal.test811.org',
            'phone': '800-555-0100',
        }
        fields.update(overrides)
        return District(**fields)
    return _make


@pytest.fixture
def make_result():
    """Build a successful SubmissionResult"""
    def _make(ticket_number: str = 'XY7788', **data) -> SubmissionResult:
        return SubmissionResult(success=True, ticket_number=ticket_number,
                                confirmation_number=ticket_number, data=data)
    return _make


# Pytest async configuration
def pytest_configure(config):
    """Configure pytest-asyncio and custom markers"""
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )
