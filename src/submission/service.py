"""Request-creation path: create, submit in the background, retry, reconcile"""

import asyncio
from typing import Dict, Any, Optional, Set
from datetime import datetime
from loguru import logger

from src.memory.models import LocateRequest, RequestStatus
from .errors import AllChannelsFailedError, SubmissionInProgressError
from .models import SubmissionResult

# Statuses from which a new submission episode may start
SUBMITTABLE_STATUSES = {RequestStatus.PENDING.value, RequestStatus.SUBMITTING.value}


class SubmissionService:
    """
    Front door for locate requests.

    Submissions run as fire-and-forget asyncio tasks. Episodes for the same
    request id are serialized by a per-request lock; a trigger that arrives
    while an episode is running is rejected with SubmissionInProgressError.
    """

    def __init__(self, store, registry, orchestrator):
        self.store = store
        self.registry = registry
        self.orchestrator = orchestrator
        self._locks: Dict[str, asyncio.Lock] = {}
        self._tasks: Set[asyncio.Task] = set()

    async def create_request(self, request_data: Dict[str, Any], submit: bool = True) -> LocateRequest:
        """
        Store a new request and optionally start its submission

        Args:
            request_data: Request fields, including district_id
            submit: Start a background submission episode

        Returns:
            The stored request (status 'pending')

        Raises:
            ValueError: If the district is unknown
        """
        district_id = request_data.get('district_id')
        if not district_id or self.registry.get_by_id(district_id) is None:
            raise ValueError(f"Unknown district: {district_id}")

        request = self.store.create(request_data)
        if submit:
            self.submit_in_background(request.request_id)
        return request

    async def submit_request(self, request_id: str) -> SubmissionResult:
        """
        Run one submission episode for a stored request

        Raises:
            SubmissionInProgressError: If an episode for this request is already running
            KeyError: If the request does not exist
            ValueError: If the request is not pending or its district is unknown
            AllChannelsFailedError: If every channel failed
        """
        lock = self._locks.setdefault(request_id, asyncio.Lock())
        if lock.locked():
            raise SubmissionInProgressError(f"Submission already running for {request_id}")

        try:
            async with lock:
                request = self.store.get(request_id)
                if request is None:
                    raise KeyError(f"Request {request_id} not found")
                if request.status not in SUBMITTABLE_STATUSES:
                    raise ValueError(f"Request {request_id} is '{request.status}', not submittable")

                district = self.registry.get_by_id(request.district_id)
                if district is None:
                    error = f"District {request.district_id} not found"
                    self.store.update_status(request_id, RequestStatus.FAILED.value, {
                        'error': error,
                        'failed_at': datetime.now().isoformat(),
                    })
                    raise ValueError(error)

                return await self.orchestrator.submit(request, district)
        finally:
            if not lock.locked():
                self._locks.pop(request_id, None)

    def submit_in_background(self, request_id: str) -> asyncio.Task:
        """Schedule submit_request without awaiting it"""
        task = asyncio.create_task(self._run_submission(request_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"[{request_id}] Submission scheduled")
        return task

    async def _run_submission(self, request_id: str) -> Optional[SubmissionResult]:
        try:
            return await self.submit_request(request_id)
        except SubmissionInProgressError as e:
            logger.warning(f"[{request_id}] {e}")
        except AllChannelsFailedError:
            # Already persisted as 'failed' by the orchestrator
            logger.error(f"[{request_id}] Background submission failed on every channel")
        except Exception as e:
            logger.exception(f"[{request_id}] Background submission crashed: {e}")
        return None

    async def retry_request(self, request_id: str, submit: bool = True) -> LocateRequest:
        """
        Move a failed request back to pending and resubmit it

        Raises:
            KeyError: If the request does not exist
            ValueError: If the request is not in 'failed' state
        """
        request = self.store.get(request_id)
        if request is None:
            raise KeyError(f"Request {request_id} not found")
        if request.status != RequestStatus.FAILED.value:
            raise ValueError(f"Only failed requests can be retried ({request_id} is '{request.status}')")

        retry_count = request.retry_count + 1
        updated = self.store.update_status(request_id, RequestStatus.PENDING.value, {
            'retry_count': retry_count,
            'submission_method': request.requested_method,
            'error': None,
            'failed_at': None,
        })
        self.store.append_status_update(request_id, 'retry_requested', {
            'retry_count': retry_count,
            'previous_error': request.error,
        })
        logger.info(f"[{request_id}] Retry #{retry_count} requested")

        if submit:
            self.submit_in_background(request_id)
        return updated

    def reconcile_ticket(self, request_id: str, real_ticket_number: str) -> LocateRequest:
        """
        Replace a synthetic ticket id with the district's real ticket number

        Used when the real number arrives later (e.g. in a district's email reply).

        Raises:
            KeyError: If the request does not exist
            ValueError: If the ticket number is empty
        """
        ticket_number = (real_ticket_number or '').strip()
        if not ticket_number:
            raise ValueError("Ticket number is required")

        request = self.store.get(request_id)
        if request is None:
            raise KeyError(f"Request {request_id} not found")

        updated = self.store.update_status(request_id, request.status, {
            'ticket_number': ticket_number,
            'confirmation_number': ticket_number,
        })
        self.store.append_status_update(request_id, 'ticket_reconciled', {
            'previous_ticket_number': request.ticket_number,
            'ticket_number': ticket_number,
        })
        logger.success(f"[{request_id}] Ticket reconciled: {request.ticket_number} -> {ticket_number}")
        return updated

    async def wait_for_pending(self):
        """Wait for every background submission started by this service"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks))
