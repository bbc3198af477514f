"""Speech-to-text for call recordings via the Whisper transcription endpoint"""

import os
from typing import Optional
from loguru import logger
import httpx

TRANSCRIPTION_URL = "https://api.openai.com/v1/audio/transcriptions"


class WhisperTranscriber:
    """Transcribe call audio with Whisper over HTTP"""

    def __init__(self, api_key: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key or os.getenv('OPENAI_API_KEY')
        if not self.api_key:
            logger.warning("OPENAI_API_KEY not set; call transcription unavailable")
        self.transport = transport

    async def transcribe(self, audio: bytes, filename: str = 'call.mp3') -> str:
        """
        Transcribe recorded audio

        Args:
            audio: Raw audio bytes
            filename: Name sent with the upload (extension selects decoder)

        Returns:
            Transcript text
        """
        if not self.api_key:
            raise ValueError("Transcription not configured")

        async with httpx.AsyncClient(timeout=120.0, transport=self.transport) as client:
            response = await client.post(
                TRANSCRIPTION_URL,
                headers={'Authorization': f"Bearer {self.api_key}"},
                data={'model': 'whisper-1', 'language': 'en'},
                files={'file': (filename, audio, 'audio/mpeg')},
            )
            response.raise_for_status()

        text = response.json().get('text', '')
        logger.info(f"Call transcribed ({len(text)} chars)")
        return text
