"""Data models for the request store"""

from enum import Enum
from typing import Dict, Any, Optional
from datetime import datetime
from pydantic import BaseModel, Field, field_validator


class RequestStatus(str, Enum):
    """Locate request lifecycle states"""
    PENDING = 'pending'
    SUBMITTING = 'submitting'
    SUBMITTED = 'submitted'
    FAILED = 'failed'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


# Statuses the poller keeps checking
ACTIVE_STATUSES = {RequestStatus.SUBMITTED.value, RequestStatus.IN_PROGRESS.value}


def _new_request_id() -> str:
    return f"REQ-{datetime.now().strftime('%Y%m%d%H%M%S%f')}"


class LocateRequest(BaseModel):
    """Locate request record"""
    request_id: str = Field(default_factory=_new_request_id)

    # Contact
    contact_name: str
    company_name: Optional[str] = None
    phone: str
    email: Optional[str] = None

    # Work location
    street: str
    city: str
    state: str
    zip_code: str
    county: Optional[str] = None
    nearest_cross_street: Optional[str] = None

    # Work details
    work_type: str
    work_description: str
    start_date: str
    duration: Optional[int] = None  # days
    depth: Optional[str] = None
    work_area_length: Optional[str] = None
    work_area_width: Optional[str] = None
    marked_area: bool = False
    marking_instructions: Optional[str] = None
    explosives_used: bool = False
    emergency_work: bool = False
    permit_number: Optional[str] = None

    # Submission state
    district_id: str
    submission_method: Optional[str] = None  # Channel of the latest attempt
    requested_method: Optional[str] = None  # Channel the caller asked for, restored on retry
    status: str = RequestStatus.PENDING.value
    ticket_number: Optional[str] = None
    confirmation_number: Optional[str] = None
    retry_count: int = 0
    error: Optional[str] = None
    response_data: Optional[Dict[str, Any]] = None
    submitted_at: Optional[str] = None
    failed_at: Optional[str] = None
    created_at: str = Field(default_factory=lambda: datetime.now().isoformat())
    updated_at: str = Field(default_factory=lambda: datetime.now().isoformat())

    @field_validator('state')
    @classmethod
    def upper_state(cls, v: str) -> str:
        return v.strip().upper()


class StatusUpdate(BaseModel):
    """Append-only status log entry"""
    request_id: str
    kind: str  # 'submitting', 'submitted', 'failed', 'status_changed', 'manual_check', ...
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())
