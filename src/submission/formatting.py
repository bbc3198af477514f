"""Flatten a stored request into the shape every channel adapter consumes"""

from typing import Dict, Any

from src.memory.models import LocateRequest


def format_address(request: LocateRequest) -> str:
    """Single-line address: 'street, city, state zip'"""
    return f"{request.street}, {request.city}, {request.state} {request.zip_code}"


def format_request_for_submission(request: LocateRequest) -> Dict[str, Any]:
    """
    Build the normalized request data shared by all channel adapters

    Args:
        request: Stored locate request

    Returns:
        Flat dict with contact block, address (single line and components),
        work details, work-area fields and flags
    """
    return {
        # Contact
        'contact_name': request.contact_name,
        'company_name': request.company_name,
        'phone': request.phone,
        'email': request.email,

        # Location
        'address': format_address(request),
        'street': request.street,
        'city': request.city,
        'state': request.state,
        'zip_code': request.zip_code,
        'county': request.county,
        'nearest_cross_street': request.nearest_cross_street,

        # Work details
        'work_type': request.work_type,
        'work_description': request.work_description,
        'start_date': request.start_date,
        'duration': request.duration or 1,
        'depth': request.depth or 'Unknown',

        # Work area
        'work_area_length': request.work_area_length,
        'work_area_width': request.work_area_width,
        'marked_area': request.marked_area,
        'marking_instructions': request.marking_instructions,

        # Flags
        'explosives_used': request.explosives_used,
        'emergency_work': request.emergency_work,
        'permit_number': request.permit_number,

        # Metadata
        'request_id': request.request_id,
        'created_at': request.created_at,
    }
