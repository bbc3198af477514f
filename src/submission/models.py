"""Submission result model"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class SubmissionResult(BaseModel):
    """Outcome of one channel attempt, consumed once by the orchestrator"""
    success: bool
    ticket_number: Optional[str] = None
    confirmation_number: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
