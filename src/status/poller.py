"""Periodic ticket status polling"""

import os
import asyncio
from typing import Dict, Any, Optional
from datetime import datetime, timedelta
from loguru import logger

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from src.memory.models import LocateRequest, RequestStatus
from .web_status_checker import UNKNOWN_STATUS

SWEEP_JOB_ID = 'status_sweep'
INITIAL_SWEEP_JOB_ID = 'status_sweep_initial'

KNOWN_STATUSES = {status.value for status in RequestStatus}


class StatusPoller:
    """
    Re-check submitted tickets against district portals.

    A recurring sweep (every STATUS_POLL_INTERVAL_MINUTES) plus one initial
    sweep STATUS_POLL_INITIAL_DELAY_MINUTES after start. Requests are checked
    one at a time with STATUS_CHECK_DELAY_SECONDS between lookups.
    """

    def __init__(
        self,
        store,
        registry,
        checker,
        metrics=None,
        interval_minutes: Optional[float] = None,
        initial_delay_minutes: Optional[float] = None,
        check_delay_seconds: Optional[float] = None
    ):
        """
        Initialize status poller

        Args:
            store: Persistent request store
            registry: District registry
            checker: WebStatusChecker (or anything with async check_status)
            metrics: Optional SubmissionMetrics
            interval_minutes: Sweep interval (env STATUS_POLL_INTERVAL_MINUTES, default 30)
            initial_delay_minutes: Delay of the first sweep (env STATUS_POLL_INITIAL_DELAY_MINUTES, default 5)
            check_delay_seconds: Pause between lookups (env STATUS_CHECK_DELAY_SECONDS, default 5)
        """
        self.store = store
        self.registry = registry
        self.checker = checker
        self.metrics = metrics

        self.interval_minutes = interval_minutes if interval_minutes is not None else float(
            os.getenv('STATUS_POLL_INTERVAL_MINUTES', '30'))
        self.initial_delay_minutes = initial_delay_minutes if initial_delay_minutes is not None else float(
            os.getenv('STATUS_POLL_INITIAL_DELAY_MINUTES', '5'))
        self.check_delay_seconds = check_delay_seconds if check_delay_seconds is not None else float(
            os.getenv('STATUS_CHECK_DELAY_SECONDS', '5'))

        self._scheduler: Optional[AsyncIOScheduler] = None
        self._sweep_lock = asyncio.Lock()

    # =========================================================================
    # Scheduling
    # =========================================================================

    async def start(self):
        """Start the recurring sweep and schedule the initial one"""
        if self._scheduler is not None:
            logger.warning("Status poller already running")
            return

        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            self.run_sweep,
            IntervalTrigger(minutes=self.interval_minutes),
            id=SWEEP_JOB_ID,
            name="Ticket status sweep",
            replace_existing=True,
            max_instances=1,
        )
        scheduler.add_job(
            self.run_sweep,
            DateTrigger(run_date=datetime.now() + timedelta(minutes=self.initial_delay_minutes)),
            id=INITIAL_SWEEP_JOB_ID,
            name="Initial ticket status sweep",
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(f"Status poller started - checking every {self.interval_minutes:g} minutes")

    async def stop(self):
        """Stop the scheduler; a sweep already running is not interrupted"""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Status poller stopped")

    def get_polling_status(self) -> Dict[str, Any]:
        """Return {'active': bool, 'next_run': ISO timestamp or None}"""
        next_run = None
        if self._scheduler is not None:
            job = self._scheduler.get_job(SWEEP_JOB_ID)
            if job is not None and job.next_run_time is not None:
                next_run = job.next_run_time.isoformat()
        return {'active': self._scheduler is not None, 'next_run': next_run}

    # =========================================================================
    # Sweeps
    # =========================================================================

    async def run_sweep(self) -> Dict[str, int]:
        """
        Check every active ticket at every district with a web portal

        Returns:
            Counts of checked and changed requests
        """
        summary = {'checked': 0, 'changed': 0}
        if self._sweep_lock.locked():
            logger.warning("Status sweep already running, skipping")
            return summary

        async with self._sweep_lock:
            logger.info("Starting status polling cycle")
            first = True

            for district in self.registry.all():
                if not district.web_portal or not district.supports('web'):
                    continue

                for request in self.store.list_active_by_district(district.id):
                    if not first:
                        await asyncio.sleep(self.check_delay_seconds)
                    first = False

                    try:
                        result = await self.checker.check_status(district, request.ticket_number, request.request_id)
                        changed = self._apply_status(request, result)
                    except Exception as e:
                        logger.error(f"[{request.request_id}] Failed to check status: {e}")
                        if self.metrics:
                            self.metrics.record_failure(
                                failure_type="status_check",
                                component="status_poller",
                                reason=str(e),
                                context={"request_id": request.request_id, "district_id": district.id}
                            )
                        continue

                    summary['checked'] += 1
                    if changed:
                        summary['changed'] += 1
                    if self.metrics:
                        self.metrics.record_status_check(changed)

            logger.info(f"Status polling cycle done: {summary['checked']} checked, {summary['changed']} changed")
        return summary

    def _apply_status(self, request: LocateRequest, result: Optional[Dict[str, Any]]) -> bool:
        """Persist a fetched status if it differs from the stored one; unknown never overwrites"""
        if not result:
            return False

        new_status = result.get('status')
        if not new_status or new_status == UNKNOWN_STATUS or new_status not in KNOWN_STATUSES:
            logger.debug(f"[{request.request_id}] Portal status not recognized: {new_status}")
            return False
        if new_status == request.status:
            return False

        self.store.append_status_update(request.request_id, 'status_changed', {
            'previous_status': request.status,
            'new_status': new_status,
            'details': result.get('details'),
            'checked_at': datetime.now().isoformat(),
        })
        self.store.update_status(request.request_id, new_status)
        logger.info(f"[{request.request_id}] Status updated: {request.status} -> {new_status}")
        return True

    async def check_request_status(self, request_id: str) -> Optional[Dict[str, Any]]:
        """
        Look up one request's ticket status on demand

        Records a 'manual_check' status update when the portal returns anything.

        Raises:
            KeyError: If the request or its district does not exist
            ValueError: If the request has no ticket number yet
        """
        request = self.store.get(request_id)
        if request is None:
            raise KeyError(f"Request {request_id} not found")
        if not request.ticket_number:
            raise ValueError(f"No ticket number available for status check on {request_id}")

        district = self.registry.get_by_id(request.district_id)
        if district is None:
            raise KeyError(f"District {request.district_id} not found")

        result = await self.checker.check_status(district, request.ticket_number, request_id)
        if self.metrics:
            self.metrics.record_status_check(False)
        if not result:
            logger.info(f"[{request_id}] No status found for ticket {request.ticket_number}")
            return None

        self.store.append_status_update(request_id, 'manual_check', {
            'status': result.get('status'),
            'details': result.get('details'),
            'checked_at': datetime.now().isoformat(),
        })
        return result
