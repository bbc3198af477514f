"""Local JSON request store"""

import os
import json
from typing import Dict, Any, Optional, List
from datetime import datetime
from loguru import logger

from .models import LocateRequest, StatusUpdate, ACTIVE_STATUSES


class RequestStore:
    """Persistent store for locate requests and their status log using local JSON storage.

    The request record holds the latest status/ticket projection; the status log is
    append-only and never rewritten.
    """

    def __init__(self, store_file: Optional[str] = None):
        """
        Initialize request store

        Args:
            store_file: JSON file path. Falls back to REQUEST_STORE_PATH env var
        """
        self.local_store_file = store_file or os.getenv('REQUEST_STORE_PATH', 'request_store.json')
        logger.info(f"Using local JSON storage for requests: {self.local_store_file}")
        self._load_local_store()

    def _empty_store(self) -> Dict[str, Any]:
        return {'requests': {}, 'status_updates': []}

    def _load_local_store(self):
        """Load local JSON store"""
        try:
            if os.path.exists(self.local_store_file) and os.path.getsize(self.local_store_file) > 0:
                with open(self.local_store_file, 'r') as f:
                    self.local_data = json.load(f)
            else:
                self.local_data = self._empty_store()
        except Exception as e:
            logger.error(f"Error loading local store: {e}")
            self.local_data = self._empty_store()

        if not isinstance(self.local_data.get('requests'), dict):
            logger.warning("Resetting malformed 'requests' section of local store")
            self.local_data['requests'] = {}
        if not isinstance(self.local_data.get('status_updates'), list):
            self.local_data['status_updates'] = []

    def _save_local_store(self):
        """Save local JSON store"""
        directory = os.path.dirname(self.local_store_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.local_store_file, 'w') as f:
            json.dump(self.local_data, f, indent=2, default=str)

    # =========================================================================
    # Requests
    # =========================================================================

    def create(self, request_data: Dict[str, Any]) -> LocateRequest:
        """
        Create a new locate request in 'pending' state

        Args:
            request_data: Request fields (contact, location, work details, district_id)

        Returns:
            The stored request
        """
        request_data = dict(request_data)
        request_data.setdefault('requested_method', request_data.get('submission_method'))
        request = LocateRequest(**request_data)
        if request.request_id in self.local_data['requests']:
            raise ValueError(f"Request {request.request_id} already exists")

        self.local_data['requests'][request.request_id] = request.model_dump()
        self._save_local_store()
        logger.info(f"📁 Created request {request.request_id} for district {request.district_id}")
        return request

    def get(self, request_id: str) -> Optional[LocateRequest]:
        """Get request by id"""
        record = self.local_data['requests'].get(request_id)
        if record is None:
            return None
        return LocateRequest(**record)

    def update_status(
        self,
        request_id: str,
        status: str,
        extra_fields: Optional[Dict[str, Any]] = None
    ) -> LocateRequest:
        """
        Update a request's status and any extra fields

        Args:
            request_id: Request identifier
            status: New status value
            extra_fields: Additional fields to set (ticket_number, error, ...)

        Returns:
            The updated request

        Raises:
            KeyError: If the request does not exist
        """
        record = self.local_data['requests'].get(request_id)
        if record is None:
            raise KeyError(f"Request {request_id} not found")

        updated = {**record, **(extra_fields or {}), 'status': status, 'updated_at': datetime.now().isoformat()}
        # Round-trip through the model so bad fields fail before hitting disk
        request = LocateRequest(**updated)
        self.local_data['requests'][request_id] = request.model_dump()
        self._save_local_store()
        logger.debug(f"[{request_id}] Status -> {status}")
        return request

    def list_active_by_district(self, district_id: str) -> List[LocateRequest]:
        """List submitted/in-progress requests with a ticket number for a district"""
        return [
            LocateRequest(**record)
            for record in self.local_data['requests'].values()
            if record.get('district_id') == district_id
            and record.get('status') in ACTIVE_STATUSES
            and record.get('ticket_number')
        ]

    def list_requests(self, status: Optional[str] = None) -> List[LocateRequest]:
        records = self.local_data['requests'].values()
        return [LocateRequest(**r) for r in records if status is None or r.get('status') == status]

    # =========================================================================
    # Status log
    # =========================================================================

    def append_status_update(
        self,
        request_id: str,
        kind: str,
        details: Optional[Dict[str, Any]] = None
    ) -> StatusUpdate:
        """
        Append an entry to the status log

        Args:
            request_id: Request identifier
            kind: Update kind ('submitting', 'submitted', 'failed', 'status_changed', ...)
            details: Free-form details

        Returns:
            The appended entry
        """
        update = StatusUpdate(request_id=request_id, kind=kind, details=details or {})
        self.local_data['status_updates'].append(update.model_dump())
        self._save_local_store()
        logger.debug(f"[{request_id}] Status update appended: {kind}")
        return update

    def list_status_updates(self, request_id: Optional[str] = None) -> List[StatusUpdate]:
        """Get the status log for a request (or every request), oldest first"""
        return [
            StatusUpdate(**entry)
            for entry in self.local_data['status_updates']
            if request_id is None or entry.get('request_id') == request_id
        ]
