"""Base channel adapter abstraction

Each adapter turns normalized request data into one submission against a
district and reports the outcome as a SubmissionResult. Adapters raise a
SubmissionError subclass on failure; the orchestrator decides what to do next.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any
from loguru import logger

from src.districts.models import District
from .channels import Channel
from .models import SubmissionResult


class BaseSubmitter(ABC):
    """Abstract base class for channel adapters"""

    channel: Channel

    def __init__(self):
        logger.info(f"Initialized {self.channel.value} submitter")

    @abstractmethod
    async def submit(self, request_data: Dict[str, Any], district: District) -> SubmissionResult:
        """
        Submit a locate request through this channel

        Args:
            request_data: Output of format_request_for_submission
            district: Target district

        Returns:
            SubmissionResult with success=True and a non-empty ticket number

        Raises:
            SubmissionError: On any channel failure
        """
        pass
