"""Submission error kinds"""

from typing import List, Tuple


class SubmissionError(Exception):
    """Base class for channel submission failures"""


class ChannelUnavailableError(SubmissionError):
    """District lacks the capability for the requested channel (no external call made)"""


class UnknownChannelError(SubmissionError):
    """Method name does not map to any channel adapter"""


class SubmissionTransportError(SubmissionError):
    """Remote rejected the submission or could not be reached"""


class SubmissionTimeoutError(SubmissionError):
    """Channel never reached a terminal state in time"""


class AllChannelsFailedError(SubmissionError):
    """Every channel attempted in one submission episode failed"""

    def __init__(self, request_id: str, attempts: List[Tuple[str, str]]):
        self.request_id = request_id
        self.attempts = attempts
        summary = '; '.join(f"{channel}: {error}" for channel, error in attempts)
        super().__init__(f"All submission channels failed for {request_id} ({summary})")


class SubmissionInProgressError(SubmissionError):
    """Another submission episode for the same request is still running"""
