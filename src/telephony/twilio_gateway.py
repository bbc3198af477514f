"""Twilio voice gateway: outbound recorded calls, call status and recordings"""

import os
from typing import Dict, Any, List, Optional
from urllib.parse import urlencode
from loguru import logger
import httpx

from twilio.rest import Client


class TwilioGateway:
    """Thin wrapper over the Twilio REST client"""

    def __init__(self, client: Optional[Client] = None):
        """
        Initialize Twilio gateway

        Args:
            client: Twilio REST client (created from TWILIO_ACCOUNT_SID/TWILIO_AUTH_TOKEN if omitted)
        """
        self.account_sid = os.getenv('TWILIO_ACCOUNT_SID')
        self.auth_token = os.getenv('TWILIO_AUTH_TOKEN')
        self.from_number = os.getenv('TWILIO_PHONE_NUMBER')
        self.webhook_base_url = os.getenv('WEBHOOK_BASE_URL')

        if client is None:
            if not (self.account_sid and self.auth_token):
                raise ValueError("TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN must be set")
            client = Client(self.account_sid, self.auth_token)
        self.client = client
        logger.info("Twilio gateway initialized")

    def place_call(self, to_number: str, twiml: str, tag: str, time_limit: int = 600) -> str:
        """
        Place an outbound recorded call

        Args:
            to_number: District phone number
            twiml: Voice-flow instructions
            tag: Correlation tag carried on status callbacks
            time_limit: Maximum call length in seconds

        Returns:
            Call SID
        """
        params: Dict[str, Any] = {
            'to': to_number,
            'from_': self.from_number,
            'twiml': twiml,
            'record': True,
            'time_limit': time_limit,
        }
        if self.webhook_base_url:
            params['status_callback'] = (
                f"{self.webhook_base_url}/webhooks/twilio/status?{urlencode({'tag': tag})}"
            )
            params['status_callback_event'] = ['completed']

        call = self.client.calls.create(**params)
        logger.info(f"Call placed: {call.sid} (tag: {tag})")
        return call.sid

    def get_call_status(self, call_sid: str) -> str:
        """Current status of a call ('queued', 'in-progress', 'completed', ...)"""
        return self.client.calls(call_sid).fetch().status

    def list_recordings(self, call_sid: str, limit: int = 1) -> List[Dict[str, Any]]:
        """Most recent recordings for a call with their media URLs"""
        recordings = self.client.recordings.list(call_sid=call_sid, limit=limit)
        return [
            {
                'sid': rec.sid,
                'duration': rec.duration,
                'url': f"https://api.twilio.com/2010-04-01/Accounts/{self.account_sid}/Recordings/{rec.sid}.mp3",
            }
            for rec in recordings
        ]

    def download_recording(self, url: str) -> bytes:
        """Fetch recording audio (Twilio media URLs need account basic auth)"""
        with httpx.Client(auth=(self.account_sid, self.auth_token), timeout=60.0) as client:
            response = client.get(url, headers={'Accept': 'audio/*'})
            response.raise_for_status()
            return response.content

    def end_call(self, call_sid: str):
        """Hang up a call that is still running"""
        self.client.calls(call_sid).update(status='completed')
        logger.info(f"Call {call_sid} ended")
