"""Submission orchestrator: channel selection and bounded fallback.

One submission episode is a fold over the district's channel list, starting
at the request's chosen channel. Each channel is tried at most once (tracked
in a tried-set); the first success ends the episode, and exhausting the list
raises AllChannelsFailedError with every attempted channel and its error.
Every attempt leaves entries in the request's status log.
"""

from typing import Dict, Any, FrozenSet, List, Optional, Tuple
from datetime import datetime
from loguru import logger

from src.districts.models import District
from src.memory.models import LocateRequest, RequestStatus
from .base import BaseSubmitter
from .channels import Channel, CHANNEL_PRIORITY
from .errors import AllChannelsFailedError, ChannelUnavailableError, SubmissionError, UnknownChannelError
from .formatting import format_request_for_submission
from .models import SubmissionResult


def is_method_available(district: District, channel: Channel) -> bool:
    """
    Check a channel against the district's channel list and capability flags

    Every channel must be listed by the district; API and email additionally
    need api_available/email_available.
    """
    if channel is Channel.API:
        return district.supports('api') and district.api_available
    if channel is Channel.EMAIL:
        return district.supports('email') and district.email_available
    if channel is Channel.WEBFORM:
        return district.supports('web') or district.supports('webform')
    if channel is Channel.PHONE:
        return district.supports('phone')
    raise UnknownChannelError(f"Unhandled channel {channel}")


def get_best_submission_method(district: District) -> Optional[str]:
    """Highest-priority channel (api > web > email > phone) the district can take"""
    for channel in CHANNEL_PRIORITY:
        if is_method_available(district, channel):
            return channel.value
    return None


def _channel_key(method: str) -> str:
    channel = Channel.parse(method)
    return channel.value if channel else method.strip().lower()


def plan_channels(request: LocateRequest, district: District) -> List[str]:
    """
    Ordered channel names for one episode

    Starts at the request's submission_method (or the district's first channel)
    and continues with the district channels listed after it. A method the
    district does not list is tried first, followed by the full district list.
    """
    initial = request.submission_method or (district.methods[0] if district.methods else None)
    if not initial:
        return []

    initial_key = _channel_key(initial)
    for index, method in enumerate(district.methods):
        if _channel_key(method) == initial_key:
            return district.methods[index:]
    return [initial] + list(district.methods)


class SubmissionOrchestrator:
    """Choose channels for a request, invoke adapters and persist outcomes"""

    def __init__(
        self,
        store,
        api_submitter: Optional[BaseSubmitter] = None,
        email_submitter: Optional[BaseSubmitter] = None,
        phone_submitter: Optional[BaseSubmitter] = None,
        webform_submitter: Optional[BaseSubmitter] = None,
        metrics=None
    ):
        """
        Initialize orchestrator

        Args:
            store: Persistent request store
            api_submitter: Adapter for Channel.API
            email_submitter: Adapter for Channel.EMAIL
            phone_submitter: Adapter for Channel.PHONE
            webform_submitter: Adapter for Channel.WEBFORM
            metrics: Optional SubmissionMetrics
        """
        self.store = store
        self.api_submitter = api_submitter
        self.email_submitter = email_submitter
        self.phone_submitter = phone_submitter
        self.webform_submitter = webform_submitter
        self.metrics = metrics
        logger.info("Submission orchestrator initialized")

    def _adapter_for(self, channel: Channel) -> BaseSubmitter:
        if channel is Channel.API:
            adapter = self.api_submitter
        elif channel is Channel.EMAIL:
            adapter = self.email_submitter
        elif channel is Channel.PHONE:
            adapter = self.phone_submitter
        elif channel is Channel.WEBFORM:
            adapter = self.webform_submitter
        else:
            raise UnknownChannelError(f"Unhandled channel {channel}")

        if adapter is None:
            raise ChannelUnavailableError(f"No {channel.value} submitter configured")
        return adapter

    async def submit(self, request: LocateRequest, district: District) -> SubmissionResult:
        """
        Run one submission episode

        Args:
            request: Request snapshot (all writes go through the store)
            district: Target district

        Returns:
            The first successful SubmissionResult

        Raises:
            AllChannelsFailedError: When every planned channel failed
        """
        request_id = request.request_id
        request_data = format_request_for_submission(request)
        plan = plan_channels(request, district)
        if self.metrics:
            self.metrics.record_episode()

        logger.info(f"[{request_id}] Submission plan for {district.id}: {plan}")

        tried: FrozenSet[str] = frozenset()
        attempts: List[Tuple[str, str]] = []

        for method in plan:
            key = _channel_key(method)
            if key in tried:
                continue
            tried = tried | {key}

            try:
                return await self._attempt(request_id, method, request_data, district)
            except Exception as e:
                error = str(e) or type(e).__name__
                attempts.append((method, error))
                logger.error(f"[{request_id}] Submission via {method} failed: {error}")
                self.store.append_status_update(request_id, 'failed', {
                    'method': key,
                    'error': error,
                    'error_type': type(e).__name__,
                    'message': f"Submission via {method} failed: {error}",
                })
                if self.metrics:
                    self.metrics.record_channel_failure(key, error, {'request_id': request_id, 'district_id': district.id})
                if not isinstance(e, SubmissionError):
                    logger.exception(f"[{request_id}] Unexpected error from {method} submitter")

                remaining = [m for m in plan if _channel_key(m) not in tried]
                if remaining:
                    logger.warning(f"[{request_id}] Falling back to {remaining[0]}")

        if not plan:
            error = f"District {district.id} has no submission channels"
            self.store.append_status_update(request_id, 'failed', {'error': error, 'message': error})
            attempts.append(('none', error))

        failure = AllChannelsFailedError(request_id, attempts)
        self.store.update_status(request_id, RequestStatus.FAILED.value, {
            'error': str(failure),
            'failed_at': datetime.now().isoformat(),
        })
        logger.error(f"[{request_id}] {failure}")
        raise failure

    async def _attempt(
        self,
        request_id: str,
        method: str,
        request_data: Dict[str, Any],
        district: District
    ) -> SubmissionResult:
        """One channel attempt: log, validate, invoke adapter, persist success"""
        channel = Channel.parse(method)
        stored_method = channel.value if channel else method

        self.store.append_status_update(request_id, 'submitting', {
            'method': stored_method,
            'message': f"Submitting request to {district.name} via {stored_method}",
        })
        self.store.update_status(request_id, RequestStatus.SUBMITTING.value, {'submission_method': stored_method})
        if self.metrics:
            self.metrics.record_attempt(stored_method)

        if channel is None:
            raise UnknownChannelError(f"Unknown submission method: {method}")
        if not is_method_available(district, channel):
            raise ChannelUnavailableError(f"{channel.value.upper()} submission not available for district {district.id}")

        adapter = self._adapter_for(channel)
        result = await adapter.submit(request_data, district)
        if not result.success or not result.ticket_number:
            raise SubmissionError(f"{channel.value} submitter returned no ticket")

        submitted_at = datetime.now().isoformat()
        self.store.update_status(request_id, RequestStatus.SUBMITTED.value, {
            'ticket_number': result.ticket_number,
            'confirmation_number': result.confirmation_number,
            'submitted_at': submitted_at,
            'submission_method': channel.value,
            'response_data': result.data,
            'error': None,
        })
        self.store.append_status_update(request_id, 'submitted', {
            'method': channel.value,
            'ticket_number': result.ticket_number,
            'confirmation_number': result.confirmation_number,
            'message': f"Request submitted to {district.name} via {channel.value}",
        })
        if self.metrics:
            self.metrics.record_success(channel.value, result.ticket_number)

        logger.success(f"[{request_id}] Submitted to {district.id} via {channel.value}: {result.ticket_number}")
        return result
