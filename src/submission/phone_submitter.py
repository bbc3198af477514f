"""Voice channel

Places a recorded call to the district, reads a generated (or fixed fallback)
script, then transcribes the recording to pull out the ticket number the
operator read back.
"""

import time
import asyncio
from typing import Dict, Any, List, Optional
from datetime import datetime
from uuid import uuid4
from loguru import logger

from pydantic import BaseModel, Field
from twilio.twiml.voice_response import VoiceResponse

from src.districts.models import District
from .base import BaseSubmitter
from .channels import Channel
from .errors import ChannelUnavailableError, SubmissionTransportError, SubmissionTimeoutError
from .extractor import extract_confirmation_number, synthetic_id
from .models import SubmissionResult
from .sanitize import mask_phone

CALL_TIMEOUT_SECONDS = 600
CALL_POLL_INTERVAL_SECONDS = 5

VOICE = 'alice'
LANGUAGE = 'en-US'
CLOSING_LINE = "Thank you for processing our request. Have a great day. Goodbye."

SEGMENT_TYPES = {'speak', 'gather', 'pause'}
FAILED_CALL_STATUSES = {'failed', 'busy', 'no-answer', 'canceled'}


# =============================================================================
# SCRIPT BUILDING
# =============================================================================

def build_fallback_script(request_data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Fixed call script covering the same fields, in the same order, as a generated one"""
    company = request_data.get('company_name') or 'a private residence'
    callback = ' '.join(ch for ch in (request_data.get('phone') or '') if ch.isdigit())
    email = request_data.get('email')
    contact_line = f"My callback number is {callback}."
    if email:
        contact_line += f" My email is {email}."

    lines = [
        ('pause', 2),
        ('speak', f"Hello, this is {request_data.get('contact_name')} from {company}. "
                  "I need to submit an 811 dig safe request."),
        ('pause', 2),
        ('speak', f"The work location is {request_data.get('address')}."),
        ('pause', 1),
        ('speak', f"We will be performing {request_data.get('work_type')} work. "
                  f"{request_data.get('work_description')}"),
        ('pause', 1),
        ('speak', f"The work is scheduled to start on {request_data.get('start_date')}."),
        ('pause', 1),
        ('speak', contact_line),
        ('pause', 3),
        ('speak', "Could you please provide me with the ticket number for this request?"),
        ('pause', 5),
    ]

    segments = []
    for index, (kind, value) in enumerate(lines, start=1):
        if kind == 'pause':
            segments.append({'id': index, 'type': 'pause', 'duration': value})
        else:
            segments.append({'id': index, 'type': 'speak', 'text': value})
    return segments


def enhance_script_for_district(segments: List[Dict[str, Any]], district: District) -> List[Dict[str, Any]]:
    """Add district-required statements before the ticket-number request"""
    notes = (district.notes or '').lower()
    if 'pre-marking required' not in notes:
        return segments

    statement = {
        'id': len(segments) + 1,
        'type': 'speak',
        'text': "The work area has been pre-marked in white paint as required.",
    }
    # Insert ahead of the trailing question and pause
    position = max(len(segments) - 2, 0)
    return segments[:position] + [statement] + segments[position:]


def validate_script(segments: Any) -> List[Dict[str, Any]]:
    """Keep only well-formed segments; raise if nothing usable remains"""
    if not isinstance(segments, list):
        raise ValueError("Script is not a list of segments")

    valid = []
    for segment in segments:
        if not isinstance(segment, dict) or segment.get('type') not in SEGMENT_TYPES:
            logger.warning(f"Dropping malformed script segment: {segment}")
            continue
        if segment['type'] == 'speak' and not segment.get('text'):
            continue
        if segment['type'] == 'gather' and not segment.get('prompt'):
            continue
        valid.append(segment)

    if not any(s['type'] in ('speak', 'gather') for s in valid):
        raise ValueError("Script has nothing to say")
    return valid


def script_to_twiml(segments: List[Dict[str, Any]], gather_action: Optional[str] = None) -> str:
    """
    Convert script segments to TwiML

    Args:
        segments: Ordered speak/gather/pause segments
        gather_action: Optional callback URL for gathered speech/DTMF input

    Returns:
        TwiML document
    """
    response = VoiceResponse()
    response.pause(length=2)

    for segment in segments:
        kind = segment.get('type')
        if kind == 'speak':
            response.say(segment['text'], voice=VOICE, language=LANGUAGE)
        elif kind == 'gather':
            gather_params = {
                'input': 'speech dtmf',
                'timeout': segment.get('timeout') or 5,
                'speech_timeout': 'auto',
            }
            if gather_action:
                gather_params['action'] = f"{gather_action}/{segment.get('id')}"
            gather = response.gather(**gather_params)
            gather.say(segment['prompt'], voice=VOICE, language=LANGUAGE)
        elif kind == 'pause':
            response.pause(length=segment.get('duration') or 1)

    response.say(CLOSING_LINE, voice=VOICE, language=LANGUAGE)
    return str(response)


# =============================================================================
# CALL CORRELATION
# =============================================================================

class CallContext(BaseModel):
    """In-flight call bookkeeping, keyed by call SID"""
    call_sid: str
    request_id: str
    district_id: str
    tag: str
    expires_at: float
    status: str = 'queued'
    events: List[Dict[str, Any]] = Field(default_factory=list)


class CallCorrelationStore:
    """Maps call SIDs to the request that placed them; entries expire with the call timeout"""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._entries: Dict[str, CallContext] = {}

    def register(self, call_sid: str, request_id: str, district_id: str, tag: str, ttl: float) -> CallContext:
        self.purge_expired()
        context = CallContext(
            call_sid=call_sid,
            request_id=request_id,
            district_id=district_id,
            tag=tag,
            expires_at=self._clock() + ttl,
        )
        self._entries[call_sid] = context
        return context

    def get(self, call_sid: str) -> Optional[CallContext]:
        self.purge_expired()
        return self._entries.get(call_sid)

    def record_event(self, call_sid: str, status: str, details: Optional[Dict[str, Any]] = None) -> bool:
        """
        Attach a call status event (from polling or a status callback)

        Returns:
            False when the call is unknown or its entry has expired
        """
        context = self.get(call_sid)
        if context is None:
            logger.debug(f"Ignoring event for unknown/expired call {call_sid}")
            return False
        context.status = status
        context.events.append({'status': status, 'at': datetime.now().isoformat(), **(details or {})})
        return True

    def discard(self, call_sid: str):
        self._entries.pop(call_sid, None)

    def purge_expired(self):
        now = self._clock()
        for call_sid in [sid for sid, ctx in self._entries.items() if ctx.expires_at <= now]:
            logger.debug(f"Call context expired: {call_sid}")
            del self._entries[call_sid]

    def __len__(self) -> int:
        return len(self._entries)


# =============================================================================
# ADAPTER
# =============================================================================

class PhoneSubmitter(BaseSubmitter):
    """Submit requests by calling the district"""

    channel = Channel.PHONE

    def __init__(
        self,
        gateway,
        transcriber,
        generator=None,
        call_timeout: float = CALL_TIMEOUT_SECONDS,
        poll_interval: float = CALL_POLL_INTERVAL_SECONDS,
        gather_action: Optional[str] = None
    ):
        """
        Initialize phone submitter

        Args:
            gateway: Telephony gateway (place_call, get_call_status, list_recordings,
                download_recording, end_call)
            transcriber: Speech-to-text with async transcribe(audio) -> str
            generator: Optional TextGenerator for scripts and transcript details
            call_timeout: Seconds before an unfinished call fails the attempt
            poll_interval: Seconds between call status checks
            gather_action: Optional callback URL for gathered input
        """
        self.gateway = gateway
        self.transcriber = transcriber
        self.generator = generator
        self.call_timeout = call_timeout
        self.poll_interval = poll_interval
        self.gather_action = gather_action
        self.correlations = CallCorrelationStore()
        super().__init__()

    @staticmethod
    def dial_number(district: District) -> Optional[str]:
        """811 is not reachable from outbound trunks; use the toll-free line then"""
        if district.phone and district.phone.strip() != '811':
            return district.phone
        return district.alt_phone or None

    async def _build_script(self, request_data: Dict[str, Any], district: District) -> List[Dict[str, Any]]:
        request_id = request_data.get('request_id', 'N/A')
        script = None
        if self.generator is not None:
            try:
                script = validate_script(await self.generator.generate_call_script(request_data, district))
            except Exception as e:
                logger.warning(f"[{request_id}] Call script generation failed, using fallback: {e}")
        if script is None:
            script = build_fallback_script(request_data)
        return enhance_script_for_district(script, district)

    async def _wait_for_call(self, call_sid: str, request_id: str) -> str:
        """Poll until the call is terminal; raise SubmissionTimeoutError past the deadline"""
        deadline = time.monotonic() + self.call_timeout
        while True:
            status = await asyncio.to_thread(self.gateway.get_call_status, call_sid)
            self.correlations.record_event(call_sid, status)
            if status == 'completed' or status in FAILED_CALL_STATUSES:
                logger.info(f"[{request_id}] Call {call_sid} finished: {status}")
                return status

            if time.monotonic() >= deadline:
                try:
                    await asyncio.to_thread(self.gateway.end_call, call_sid)
                except Exception as e:
                    logger.warning(f"[{request_id}] Could not end timed-out call {call_sid}: {e}")
                raise SubmissionTimeoutError(
                    f"Call {call_sid} did not complete within {int(self.call_timeout)} seconds"
                )

            await asyncio.sleep(self.poll_interval)

    async def _transcribe_call(self, call_sid: str, request_id: str) -> Dict[str, Any]:
        """Transcript of the most recent recording; empty with a reason when unavailable"""
        recordings = await asyncio.to_thread(self.gateway.list_recordings, call_sid, 1)
        if not recordings:
            logger.warning(f"[{request_id}] Call {call_sid} completed without a recording")
            return {'transcript': '', 'recording_available': False}

        recording = recordings[0]
        try:
            audio = await asyncio.to_thread(self.gateway.download_recording, recording['url'])
            transcript = await self.transcriber.transcribe(audio)
        except Exception as e:
            logger.warning(f"[{request_id}] Transcription failed for {recording['sid']}: {e}")
            return {
                'transcript': '',
                'recording_available': True,
                'recording_url': recording['url'],
                'transcription_error': str(e),
            }

        return {'transcript': transcript, 'recording_available': True, 'recording_url': recording['url']}

    async def submit(self, request_data: Dict[str, Any], district: District) -> SubmissionResult:
        request_id = request_data.get('request_id', 'N/A')

        number = self.dial_number(district)
        if not number:
            raise ChannelUnavailableError(f"No dialable phone number for district {district.id}")

        script = await self._build_script(request_data, district)
        twiml = script_to_twiml(script, self.gather_action)
        tag = f"{request_id}:{uuid4().hex[:8]}"

        logger.info(f"[{request_id}] Calling {district.id} at {mask_phone(number)} ({len(script)} segments)")
        try:
            call_sid = await asyncio.to_thread(
                self.gateway.place_call, number, twiml, tag, int(self.call_timeout)
            )
        except Exception as e:
            raise SubmissionTransportError(f"Call could not be placed: {e}") from e

        self.correlations.register(call_sid, request_id, district.id, tag, ttl=self.call_timeout)
        try:
            status = await self._wait_for_call(call_sid, request_id)
            if status != 'completed':
                raise SubmissionTransportError(f"Call {call_sid} ended with status {status}")
            call_data = await self._transcribe_call(call_sid, request_id)
        finally:
            self.correlations.discard(call_sid)

        transcript = call_data.get('transcript', '')
        extracted = extract_confirmation_number(transcript, strip_whitespace=True)
        ticket_number = extracted or synthetic_id('PHONE')

        if transcript and self.generator is not None:
            try:
                call_data['details'] = await self.generator.extract_call_details(transcript)
            except Exception as e:
                logger.debug(f"[{request_id}] Transcript detail extraction skipped: {e}")

        if extracted:
            logger.success(f"[{request_id}] Phone submission confirmed: {ticket_number}")
        else:
            logger.warning(f"[{request_id}] No ticket number heard on call {call_sid}; using {ticket_number}")

        return SubmissionResult(
            success=True,
            ticket_number=ticket_number,
            confirmation_number=extracted or call_sid,
            data={
                'call_sid': call_sid,
                'tag': tag,
                'submitted_at': datetime.now().isoformat(),
                **call_data,
            },
        )
