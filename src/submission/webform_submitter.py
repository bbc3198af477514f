"""Web portal channel

Known district layouts use a hard-coded instruction sequence; every other
portal gets instructions drafted from its rendered form markup. Both run
through the closed InstructionInterpreter.
"""

import re
from typing import Dict, Any, List, Callable, Optional, Pattern
from datetime import datetime
from loguru import logger

from src.browser.instructions import InstructionInterpreter
from src.browser.session import BrowserSession, check_success_indicators, check_failure_indicators, to_iso_date
from src.districts.models import District
from .base import BaseSubmitter
from .channels import Channel
from .errors import ChannelUnavailableError, SubmissionTransportError
from .extractor import GENERIC_CODE_PATTERN, PHRASE_PATTERNS, extract_confirmation_number, synthetic_id
from .models import SubmissionResult

SUBMIT_SELECTORS = ['button[type="submit"]', 'input[type="submit"]']

# Labeled numbers as portals print them ("Ticket #: 2401234567"), ahead of the shared phrases
WEB_CONFIRMATION_PATTERNS: List[Pattern] = [
    re.compile(
        r'(?:ticket|confirmation|request|reference)(?:\s+(?:number|no\.?))?\s*(?:#\s*:?|:)\s*((?=[A-Z0-9-]*\d)[A-Z0-9][A-Z0-9-]{3,})',
        re.IGNORECASE,
    ),
] + PHRASE_PATTERNS

# Bare codes also match echoed form data ("CA 95814"), so they only count on confirmed pages
CONFIRMED_PAGE_PATTERNS: List[Pattern] = WEB_CONFIRMATION_PATTERNS + [GENERIC_CODE_PATTERN]


# =============================================================================
# KNOWN DISTRICT LAYOUTS
# =============================================================================

def california_layout(request_data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """USA North / DigAlert new-ticket form"""
    start_date = request_data.get('start_date')
    return [
        {'action': 'click', 'selector': 'a[href*="ticket"], button:has-text("Start")'},
        {'action': 'wait', 'duration': 2000},
        # Contact
        {'action': 'fill', 'selector': 'input[name*="contact"], input[name*="name"]',
         'value': request_data.get('contact_name')},
        {'action': 'fill', 'selector': 'input[name*="company"]', 'value': request_data.get('company_name')},
        {'action': 'fill', 'selector': 'input[name*="phone"]', 'value': request_data.get('phone')},
        {'action': 'fill', 'selector': 'input[name*="email"]', 'value': request_data.get('email')},
        # Location
        {'action': 'fill', 'selector': 'input[name*="address"], input[name*="street"]',
         'value': request_data.get('street')},
        {'action': 'fill', 'selector': 'input[name*="city"]', 'value': request_data.get('city')},
        {'action': 'select', 'selector': 'select[name*="state"]', 'value': request_data.get('state')},
        {'action': 'fill', 'selector': 'input[name*="zip"]', 'value': request_data.get('zip_code')},
        # Work details
        {'action': 'select', 'selector': 'select[name*="work_type"], select[name*="type"]',
         'value': request_data.get('work_type')},
        {'action': 'fill', 'selector': 'textarea[name*="description"], textarea[name*="work"]',
         'value': request_data.get('work_description')},
        {'action': 'fill', 'selector': 'input[name*="start_date"], input[type="date"]',
         'value': to_iso_date(start_date) if start_date else None},
    ]


KNOWN_LAYOUTS: Dict[str, Callable[[Dict[str, Any]], List[Dict[str, Any]]]] = {
    'CA-USANORTH': california_layout,
    'CA-DIGALERT': california_layout,
}


def build_fallback_instructions(request_data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Generic name-attribute guesses used when no drafted instructions are available"""
    fields = [
        ('input[name*="name"], input[name*="contact"]', 'contact_name'),
        ('input[name*="company"]', 'company_name'),
        ('input[name*="phone"], input[type="tel"]', 'phone'),
        ('input[name*="email"], input[type="email"]', 'email'),
        ('input[name*="address"], input[name*="street"]', 'street'),
        ('input[name*="city"]', 'city'),
        ('input[name*="zip"], input[name*="postal"]', 'zip_code'),
        ('textarea[name*="description"], textarea', 'work_description'),
    ]
    return [
        {'action': 'fill', 'selector': selector, 'value': request_data.get(key)}
        for selector, key in fields
    ]


class WebFormSubmitter(BaseSubmitter):
    """Submit requests by filling the district's web portal form"""

    channel = Channel.WEBFORM

    def __init__(self, generator=None, metrics=None, session_factory: Optional[Callable[..., Any]] = None):
        """
        Initialize web form submitter

        Args:
            generator: Optional TextGenerator for drafting instructions
            metrics: Optional SubmissionMetrics for per-instruction failures
            session_factory: Callable(correlation_id) -> async context manager
                yielding a BrowserSession
        """
        self.generator = generator
        self.metrics = metrics
        self.session_factory = session_factory or (lambda correlation_id: BrowserSession(correlation_id))
        super().__init__()

    async def _plan_instructions(self, session, request_data: Dict[str, Any], district: District):
        """Pick the fill sequence: known layout, drafted, or generic fallback"""
        request_id = request_data.get('request_id', 'N/A')

        layout = KNOWN_LAYOUTS.get(district.id)
        if layout:
            return layout(request_data), 'known-layout'

        if self.generator is not None:
            try:
                markup = await session.form_markup()
                if markup:
                    return await self.generator.generate_form_instructions(markup, request_data), 'ai-assisted'
                logger.warning(f"[{request_id}] No form found on {district.web_portal}")
            except Exception as e:
                logger.warning(f"[{request_id}] Form instruction drafting failed, using fallback: {e}")

        return build_fallback_instructions(request_data), 'fallback'

    async def submit(self, request_data: Dict[str, Any], district: District) -> SubmissionResult:
        request_id = request_data.get('request_id', 'N/A')

        if not district.web_portal:
            raise ChannelUnavailableError(f"No web portal for district {district.id}")

        logger.info(f"[{request_id}] Starting webform submission for {district.id}")

        async with self.session_factory(request_id) as session:
            try:
                await session.goto(district.web_portal)
            except Exception as e:
                raise SubmissionTransportError(f"Navigation to {district.web_portal} failed: {e}") from e

            await session.dismiss_cookie_banner()
            await session.save_screenshot(f"{district.id}_{request_id}_1_landing")

            instructions, mode = await self._plan_instructions(session, request_data, district)
            interpreter = InstructionInterpreter(session, correlation_id=request_id, metrics=self.metrics)
            summary = await interpreter.run(instructions)

            submit_selector = await session.click_first(SUBMIT_SELECTORS)
            if submit_selector:
                await session.wait_for_settle()
            else:
                logger.warning(f"[{request_id}] No submit control found on {district.web_portal}")

            await session.save_screenshot(f"{district.id}_{request_id}_2_result")
            page_text = await session.page_text()

        success_indicator = check_success_indicators(page_text)
        failure_indicator = check_failure_indicators(page_text)
        if failure_indicator and not success_indicator:
            raise SubmissionTransportError(f"Portal rejected the submission (page says '{failure_indicator}')")

        patterns = CONFIRMED_PAGE_PATTERNS if success_indicator else WEB_CONFIRMATION_PATTERNS
        confirmation = extract_confirmation_number(page_text, patterns=patterns)
        data = {
            'portal': district.web_portal,
            'method': mode,
            'instructions': summary,
            'submit_control': submit_selector,
            'success_indicator': success_indicator,
            'submitted_at': datetime.now().isoformat(),
        }

        if confirmation:
            logger.success(f"[{request_id}] Portal confirmed submission: {confirmation}")
            return SubmissionResult(success=True, ticket_number=confirmation,
                                    confirmation_number=confirmation, data=data)

        if success_indicator:
            ticket_number = synthetic_id('TEMP')
            logger.warning(
                f"[{request_id}] Portal reported '{success_indicator}' without a readable number; using {ticket_number}"
            )
            return SubmissionResult(success=True, ticket_number=ticket_number,
                                    confirmation_number=ticket_number, data=data)

        raise SubmissionTransportError("Portal did not confirm the submission")
