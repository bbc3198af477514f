"""Submission metrics tracking"""

from typing import Dict, Any, List
from datetime import datetime
from loguru import logger
from collections import defaultdict


class SubmissionMetrics:
    """Track channel attempts, outcomes and failure reasons"""

    def __init__(self):
        """Initialize metrics tracker"""
        self.metrics = {
            'episodes': 0,
            'attempts': 0,
            'successes': 0,
            'errors': 0,
            'synthetic_tickets': 0,
            'attempts_by_channel': defaultdict(int),
            'successes_by_channel': defaultdict(int),
            'failures_by_channel': defaultdict(int),
            'status_checks': 0,
            'status_changes': 0,
            'failures': []  # Detailed failure log with reasons
        }
        logger.info("Metrics tracker initialized")

    def record_episode(self):
        """Record the start of a submission episode"""
        self.metrics['episodes'] += 1

    def record_attempt(self, channel: str):
        """Record a channel attempt"""
        self.metrics['attempts'] += 1
        self.metrics['attempts_by_channel'][channel] += 1

    def record_success(self, channel: str, ticket_number: str):
        """Record a successful channel submission"""
        self.metrics['successes'] += 1
        self.metrics['successes_by_channel'][channel] += 1
        if ticket_number.split('-', 1)[0] in ('API', 'EMAIL', 'PHONE', 'TEMP') and '-' in ticket_number:
            self.metrics['synthetic_tickets'] += 1

    def record_channel_failure(self, channel: str, reason: str, context: Dict[str, Any] = None):
        """Record a failed channel attempt"""
        self.metrics['failures_by_channel'][channel] += 1
        self.record_failure('channel_submission', f"{channel}_submitter", reason, context)

    def record_status_check(self, changed: bool):
        """Record a poller status lookup"""
        self.metrics['status_checks'] += 1
        if changed:
            self.metrics['status_changes'] += 1

    def record_failure(
        self,
        failure_type: str,
        component: str,
        reason: str,
        context: Dict[str, Any] = None
    ):
        """
        Record a detailed failure

        Args:
            failure_type: Type of failure (channel_submission, form_instruction, status_check, etc.)
            component: Component that failed (api_submitter, webform_interpreter, etc.)
            reason: Detailed reason for failure
            context: Additional context (request_id, district_id, instruction, etc.)
        """
        self.metrics['failures'].append({
            'timestamp': datetime.now().isoformat(),
            'type': failure_type,
            'component': component,
            'reason': reason,
            'context': context or {}
        })
        self.metrics['errors'] += 1

    def replay_status_log(self, updates: List[Any]):
        """
        Rebuild counters from persisted status updates

        Args:
            updates: StatusUpdate entries, oldest first
        """
        for update in updates:
            details = update.details or {}
            method = details.get('method', 'unknown')
            if update.kind == 'submitting':
                self.record_attempt(method)
            elif update.kind == 'submitted':
                self.record_success(method, details.get('ticket_number') or '')
            elif update.kind == 'failed' and 'method' in details:
                self.record_channel_failure(method, details.get('error', ''), {'request_id': update.request_id})
            elif update.kind == 'status_changed':
                self.record_status_check(True)
            elif update.kind == 'manual_check':
                self.record_status_check(False)
        logger.debug(f"Replayed {len(updates)} status updates into metrics")

    def get_summary(self) -> Dict[str, Any]:
        """Get metrics summary"""
        attempts = self.metrics['attempts']
        return {
            'episodes': self.metrics['episodes'],
            'attempts': attempts,
            'successes': self.metrics['successes'],
            'success_rate': self.metrics['successes'] / attempts if attempts else 0.0,
            'synthetic_tickets': self.metrics['synthetic_tickets'],
            'errors': self.metrics['errors'],
            'attempts_by_channel': dict(self.metrics['attempts_by_channel']),
            'successes_by_channel': dict(self.metrics['successes_by_channel']),
            'failures_by_channel': dict(self.metrics['failures_by_channel']),
            'status_checks': self.metrics['status_checks'],
            'status_changes': self.metrics['status_changes'],
            'failures': list(self.metrics['failures']),
        }
