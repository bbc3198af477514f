"""Text generation for call scripts, form-fill instructions and transcript extraction.

Every method raises ValueError when the model output cannot be parsed; callers
keep a fixed fallback for that case.
"""

import os
import re
import json
import asyncio
from typing import Dict, Any, List, Optional
from loguru import logger

from anthropic import Anthropic

from src.districts.models import District

DEFAULT_MODEL = "claude-opus-4-5"

# Markup sent to the model is truncated to keep prompts bounded
MAX_FORM_HTML_CHARS = 5000


CALL_SCRIPT_PROMPT = """Generate a professional phone call script for submitting an 811 dig safe request to {district_name}.

Request details:
- Contact: {contact_name} from {company}
- Phone: {phone}
- Email: {email}
- Work location: {address}
- Work type: {work_type}
- Work description: {work_description}
- Start date: {start_date}
- Emergency: {emergency}

The script must cover, in order: greeting and introduction, purpose of the call,
the location, the work details, the start date, callback details, and a request
for the ticket or confirmation number.

Respond with JSON only:
{{"segments": [{{"id": 1, "type": "speak|gather|pause", "text": "...", "prompt": "...", "timeout": 5, "duration": 1}}]}}

Speak slowly and clearly, spell out numbers, and expect automated phone menus."""


FORM_INSTRUCTIONS_PROMPT = """Analyze this HTML form and produce instructions to fill it with the data below.

Form HTML:
{form_html}

Data to fill:
{form_data}

Respond with a JSON array only:
[{{"action": "fill|select|click|check|wait", "selector": "CSS selector", "value": "...", "description": "..."}}]

Cover contact fields, address fields, work type and description, start date and
required checkboxes. Do not include the final submit button. Prefer selectors
that survive id changes (name attributes, labels)."""


TRANSCRIPT_PROMPT = """Extract the following from this phone call transcript of an 811 locate request:
ticket_number, status, important_dates, instructions, contact_info.

Transcript:
{transcript}

Respond with a JSON object only; use null for anything not mentioned."""


def parse_json_response(text: str) -> Any:
    """
    Pull the first JSON object or array out of a model response

    Args:
        text: Raw model text (may wrap JSON in prose or ```json fences)

    Returns:
        Parsed JSON value

    Raises:
        ValueError: If no parseable JSON is present
    """
    fenced = re.search(r'```(?:json)?\s*([\s\S]*?)```', text)
    candidates = [fenced.group(1)] if fenced else []
    candidates.extend(m.group(0) for m in re.finditer(r'(\{[\s\S]*\}|\[[\s\S]*\])', text))

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue

    raise ValueError(f"No JSON found in model response: {text[:200]}")


class TextGenerator:
    """Claude-backed text generation capability"""

    def __init__(self, client: Optional[Anthropic] = None, model: Optional[str] = None):
        """
        Initialize text generator

        Args:
            client: Anthropic client (created from ANTHROPIC_API_KEY if omitted)
            model: Model name (ANTHROPIC_MODEL env var or default)
        """
        api_key = os.getenv("ANTHROPIC_API_KEY")
        if client is None and api_key:
            client = Anthropic(api_key=api_key)
        self.client = client
        self.model = model or os.getenv("ANTHROPIC_MODEL", DEFAULT_MODEL)

        if self.client:
            logger.info(f"Claude text generation configured ({self.model})")
        else:
            logger.warning("ANTHROPIC_API_KEY not set; AI-generated scripts and instructions disabled")

    async def _complete(self, prompt: str, system: str, max_tokens: int = 2000) -> str:
        if not self.client:
            raise ValueError("Text generation not configured")

        response = await asyncio.to_thread(
            self.client.messages.create,
            model=self.model,
            max_tokens=max_tokens,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(block.text for block in response.content if block.type == "text")

    async def generate_call_script(self, request_data: Dict[str, Any], district: District) -> List[Dict[str, Any]]:
        """
        Draft a voice script for a district call

        Returns:
            Ordered segments: {id, type: speak|gather|pause, text|prompt, timeout?, duration?}
        """
        prompt = CALL_SCRIPT_PROMPT.format(
            district_name=district.name,
            contact_name=request_data.get('contact_name'),
            company=request_data.get('company_name') or 'private individual',
            phone=request_data.get('phone'),
            email=request_data.get('email'),
            address=request_data.get('address'),
            work_type=request_data.get('work_type'),
            work_description=request_data.get('work_description'),
            start_date=request_data.get('start_date'),
            emergency='YES' if request_data.get('emergency_work') else 'NO',
        )
        text = await self._complete(prompt, "You write clear, professional phone scripts for business calls.")
        parsed = parse_json_response(text)

        segments = parsed.get('segments') if isinstance(parsed, dict) else parsed
        if not isinstance(segments, list) or not segments:
            raise ValueError("Call script response has no segments")

        logger.info(f"Generated call script with {len(segments)} segments for {district.id}")
        return segments

    async def generate_form_instructions(self, form_html: str, request_data: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Draft form-fill instructions from rendered form markup

        Returns:
            Ordered instructions: {action: fill|select|click|check|wait, selector, value?, duration?}
        """
        prompt = FORM_INSTRUCTIONS_PROMPT.format(
            form_html=form_html[:MAX_FORM_HTML_CHARS],
            form_data=json.dumps(request_data, indent=2, default=str),
        )
        text = await self._complete(prompt, "You are an expert at web form automation and HTML analysis.")
        instructions = parse_json_response(text)

        if not isinstance(instructions, list):
            raise ValueError("Form instruction response is not a list")

        logger.info(f"Generated {len(instructions)} form filling instructions")
        return instructions

    async def extract_call_details(self, transcript: str) -> Dict[str, Any]:
        """Structured details (ticket number, status, dates) from a call transcript"""
        text = await self._complete(
            TRANSCRIPT_PROMPT.format(transcript=transcript),
            "You extract structured data from call transcripts.",
            max_tokens=500,
        )
        details = parse_json_response(text)
        if not isinstance(details, dict):
            raise ValueError("Transcript extraction is not an object")
        return details
