"""Console reports for the command line"""

import json
from typing import Dict, Any, List, Optional
from loguru import logger

from src.submission.sanitize import redact


class Reporter:
    """Print districts, requests and metrics summaries"""

    def __init__(self, store, registry):
        """Initialize reporter"""
        self.store = store
        self.registry = registry
        logger.debug("Reporter initialized")

    def display_districts(self, state: Optional[str] = None):
        """Display the district catalog, optionally for one state/province"""
        districts = self.registry.find_by_location(state) if state else self.registry.all()

        if not districts:
            print(f"No districts found{f' for {state.upper()}' if state else ''}.")
            return

        headers = ["ID", "Name", "State", "Channels", "Phone"]
        widths = {"ID": 14, "Name": 40, "State": 6, "Channels": 20, "Phone": 16}

        header_line = " | ".join(f"{h:<{widths[h]}}" for h in headers)
        print(header_line)
        print("-" * len(header_line))

        for district in districts:
            name = district.name
            if len(name) > widths["Name"] - 1:
                name = name[:widths["Name"] - 4] + "..."
            row = {
                "ID": district.id,
                "Name": name,
                "State": district.state,
                "Channels": ", ".join(district.methods),
                "Phone": district.phone or "-",
            }
            print(" | ".join(f"{row[h]:<{widths[h]}}" for h in headers))

        print("\n")

    def display_request(self, request_id: str) -> bool:
        """Display one request and its status log; False when it does not exist"""
        request = self.store.get(request_id)
        if request is None:
            print(f"Request {request_id} not found.")
            return False

        print(f"Request {request.request_id}")
        print("-" * (len(request.request_id) + 8))
        print(f"  District: {request.district_id}")
        print(f"  Status: {request.status}")
        print(f"  Channel: {request.submission_method or 'N/A'}")
        print(f"  Ticket: {request.ticket_number or 'N/A'}")
        print(f"  Confirmation: {request.confirmation_number or 'N/A'}")
        print(f"  Retries: {request.retry_count}")
        if request.error:
            print(f"  Error: {request.error}")
        print("\n")

        updates = self.store.list_status_updates(request_id)
        if updates:
            print("Status Log")
            print("----------")
            for update in updates:
                details = json.dumps(redact(update.details), default=str)
                print(f"  {update.timestamp}  {update.kind:<18} {details}")
            print("\n")
        return True

    def display_metrics(self, summary: Dict[str, Any]):
        """Display a SubmissionMetrics summary"""
        if not summary.get('attempts') and not summary.get('status_checks'):
            print("No submission activity recorded.")
            return

        print("Overall Performance")
        print("-------------------")
        print(f"  Channel Attempts: {summary['attempts']}")
        print(f"  Successful Submissions: {summary['successes']}")
        print(f"  Success Rate (of attempts): {summary['success_rate'] * 100:.2f}%")
        print(f"  Synthetic Ticket Ids: {summary['synthetic_tickets']}")
        print(f"  Status Checks: {summary['status_checks']} ({summary['status_changes']} changed)")
        print("\n")

        self._print_counts("Attempts by Channel", summary['attempts_by_channel'])
        self._print_counts("Successes by Channel", summary['successes_by_channel'])
        self._print_counts("Failures by Channel", summary['failures_by_channel'])

        reasons = self._failures_by_component_reason(summary['failures'])
        if reasons:
            print("Failures by Component and Reason")
            print("--------------------------------")
            for component, by_reason in reasons.items():
                print(f"  Component: {component}")
                for reason, count in by_reason.items():
                    print(f"    - {reason}: {count} failures")
            print("\n")

    @staticmethod
    def _print_counts(title: str, counts: Dict[str, int]):
        if not counts:
            return
        print(title)
        print("-" * len(title))
        for channel, count in counts.items():
            print(f"  - {channel}: {count}")
        print("\n")

    @staticmethod
    def _failures_by_component_reason(failures: List[Dict[str, Any]]) -> Dict[str, Dict[str, int]]:
        grouped: Dict[str, Dict[str, int]] = {}
        for failure in failures:
            by_reason = grouped.setdefault(failure['component'], {})
            by_reason[failure['reason']] = by_reason.get(failure['reason'], 0) + 1
        return grouped
