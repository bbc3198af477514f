"""Ticket status lookup on district web portals.

California portals expose a /status form, Florida a /ticket-search form.
Everything else goes through a generic path that follows the first
status/search/track link and looks for the ticket on the resulting page.
"""

from typing import Dict, Any, Callable, Optional
from datetime import datetime
from urllib.parse import urljoin
from loguru import logger
from bs4 import BeautifulSoup

from src.browser.session import BrowserSession
from src.districts.models import District

SUBMIT_SELECTORS = ['button[type="submit"]', 'input[type="submit"]']
TICKET_INPUT_SELECTOR = 'input[name*="ticket"], input[name*="number"]'
GENERIC_TICKET_INPUT_SELECTOR = 'input[name*="ticket"], input[name*="number"], input[name*="reference"]'
STATUS_SELECTOR = '.status, [class*="status"]'
DETAILS_SELECTOR = '.details, [class*="details"]'
STATUS_LINK_SELECTOR = 'a[href*="status"], a[href*="search"], a[href*="track"]'

UNKNOWN_STATUS = 'unknown'


def parse_status(status_text: Optional[str]) -> str:
    """
    Map portal status wording to a request status

    Returns:
        completed, in_progress, submitted, cancelled or 'unknown'
    """
    if not status_text:
        return UNKNOWN_STATUS

    text = status_text.lower()
    if 'complete' in text or 'closed' in text:
        return 'completed'
    if 'progress' in text or 'active' in text:
        return 'in_progress'
    if 'pending' in text or 'submitted' in text:
        return 'submitted'
    if 'cancel' in text:
        return 'cancelled'
    return UNKNOWN_STATUS


def _select_text(soup: BeautifulSoup, selector: str) -> Optional[str]:
    element = soup.select_one(selector)
    if element is None:
        return None
    return element.get_text(' ', strip=True) or None


def read_status_panel(html: str) -> Dict[str, Optional[str]]:
    """Pull the status and details text out of a result page"""
    soup = BeautifulSoup(html, 'html.parser')
    return {
        'status_text': _select_text(soup, STATUS_SELECTOR),
        'details': _select_text(soup, DETAILS_SELECTOR),
    }


class WebStatusChecker:
    """Look up a ticket's current status through the district portal"""

    def __init__(self, session_factory: Optional[Callable[..., Any]] = None):
        self.session_factory = session_factory or (lambda correlation_id: BrowserSession(correlation_id))

    async def check_status(
        self,
        district: District,
        ticket_number: str,
        correlation_id: str = "N/A"
    ) -> Optional[Dict[str, Any]]:
        """
        Check a ticket's status on the district's portal

        Args:
            district: District whose portal holds the ticket
            ticket_number: Ticket to look up
            correlation_id: Request id for log lines

        Returns:
            {'status', 'details', 'last_checked'} or None when the lookup produced nothing
        """
        if not district.web_portal:
            logger.warning(f"[{correlation_id}] District {district.id} has no web portal for status checks")
            return None

        logger.info(f"[{correlation_id}] Checking status for ticket {ticket_number} on {district.id}")

        try:
            async with self.session_factory(correlation_id) as session:
                if district.id in ('CA-USANORTH', 'CA-DIGALERT'):
                    return await self._check_form(session, f"{district.web_portal.rstrip('/')}/status", ticket_number)
                if district.id == 'FL-SUNSHINE':
                    return await self._check_form(session, f"{district.web_portal.rstrip('/')}/ticket-search", ticket_number)
                return await self._check_generic(session, district.web_portal, ticket_number)
        except Exception as e:
            logger.error(f"[{correlation_id}] Status check on {district.id} failed: {e}")
            return None

    async def _check_form(self, session, status_url: str, ticket_number: str) -> Dict[str, Any]:
        """Fill the portal's ticket lookup form and read the status panel"""
        await session.goto(status_url)
        await session.fill_text_field(TICKET_INPUT_SELECTOR, ticket_number)
        if await session.click_first(SUBMIT_SELECTORS):
            await session.wait_for_settle()

        panel = read_status_panel(await session.page_html())
        return {
            'status': parse_status(panel['status_text']),
            'details': panel['details'],
            'last_checked': datetime.now().isoformat(),
        }

    async def _check_generic(self, session, portal: str, ticket_number: str) -> Optional[Dict[str, Any]]:
        """Follow a status/search/track link, search for the ticket and confirm it is listed"""
        await session.goto(portal)

        soup = BeautifulSoup(await session.page_html(), 'html.parser')
        link = soup.select_one(STATUS_LINK_SELECTOR)
        if link is not None and link.get('href'):
            await session.goto(urljoin(portal, link['href']))
            soup = BeautifulSoup(await session.page_html(), 'html.parser')

        if soup.select_one(GENERIC_TICKET_INPUT_SELECTOR) is not None:
            await session.fill_text_field(GENERIC_TICKET_INPUT_SELECTOR, ticket_number)
            if await session.click_first(SUBMIT_SELECTORS):
                await session.wait_for_settle()

        page_text = await session.page_text()
        if ticket_number.lower() not in page_text.lower():
            return None

        panel = read_status_panel(await session.page_html())
        return {
            'status': parse_status(panel['status_text']),
            'details': panel['details'] or 'Ticket found in system',
            'last_checked': datetime.now().isoformat(),
        }
