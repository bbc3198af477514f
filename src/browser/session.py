"""Headless browser session for district web portals.

This module provides the CORE (district-agnostic) browser capabilities:
- Playwright lifecycle with scoped start/close
- Field helpers (text, dropdown, date, checkbox, click)
- Portal success/failure detection with extensible patterns
- Cookie-banner dismissal

District-specific fill sequences live in src/submission/webform_submitter.py.
"""

import os
import asyncio
from datetime import datetime, date
from typing import Dict, Any, List, Optional
from loguru import logger
from bs4 import BeautifulSoup

from playwright.async_api import async_playwright, Page, Browser, BrowserContext
from playwright.async_api import TimeoutError as PlaywrightTimeoutError


# =============================================================================
# PORTAL SUCCESS/FAILURE DETECTION PATTERNS
# =============================================================================

SUCCESS_INDICATORS = [
    "ticket has been submitted",
    "request has been submitted",
    "successfully submitted",
    "submission successful",
    "submission received",
    "thank you for your submission",
    "your ticket number",
    "ticket created",
    "request received",
    "we have received your",
]

FAILURE_INDICATORS = [
    "error submitting",
    "submission failed",
    "something went wrong",
    "please correct",
    "is required",
    "invalid",
]

COOKIE_BANNER_SELECTORS = [
    '#onetrust-banner-sdk',
    '#CybotCookiebotDialog',
    '#cookie-banner',
    '#cookie-consent',
    '.cookie-banner',
    '.cookie-consent',
    '[role="dialog"][aria-label*="cookie" i]',
]

COOKIE_ACCEPT_SELECTORS = [
    '#onetrust-accept-btn-handler',
    '#CybotCookiebotDialogBodyLevelButtonLevelOptinAllowAll',
    '#accept-cookies',
    'button:has-text("Accept All")',
    'button:has-text("Accept")',
    'button:has-text("I Agree")',
]

FIELD_TIMEOUT_MS = 5000


def _find_indicator(page_text: str, indicators: List[str], additional: Optional[List[str]] = None) -> Optional[str]:
    page_text_lower = page_text.lower()
    for indicator in (additional or []) + indicators:
        if indicator.lower() in page_text_lower:
            return indicator
    return None


def check_success_indicators(page_text: str, additional_indicators: Optional[List[str]] = None) -> Optional[str]:
    """
    Check if page content contains success indicators.

    Args:
        page_text: Text content of the current page
        additional_indicators: District-specific success patterns to check first

    Returns:
        The matched success indicator if found, None otherwise
    """
    return _find_indicator(page_text, SUCCESS_INDICATORS, additional_indicators)


def check_failure_indicators(page_text: str, additional_indicators: Optional[List[str]] = None) -> Optional[str]:
    """Return the first failure indicator found in page text, or None"""
    return _find_indicator(page_text, FAILURE_INDICATORS, additional_indicators)


def extract_form_markup(html: str) -> str:
    """Concatenate the outer HTML of every form on a page"""
    soup = BeautifulSoup(html, 'html.parser')
    return '\n'.join(str(form) for form in soup.find_all('form'))


def to_iso_date(value: Any) -> str:
    """Normalize a date or datetime-ish string to YYYY-MM-DD (unrecognized input is returned as-is)"""
    if isinstance(value, (datetime, date)):
        return value.strftime('%Y-%m-%d')
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace('Z', '+00:00')).strftime('%Y-%m-%d')
    except ValueError:
        pass
    try:
        return datetime.strptime(text, '%m/%d/%Y').strftime('%Y-%m-%d')
    except ValueError:
        return text


class BrowserSession:
    """Playwright browser scoped to one portal interaction"""

    def __init__(
        self,
        correlation_id: str = "N/A",
        viewport: Optional[Dict[str, int]] = None,
        navigation_timeout_ms: int = 30000,
        screenshot_dir: str = 'screenshots'
    ):
        """
        Initialize browser session

        Args:
            correlation_id: Request id used to tag logs and screenshots
            viewport: Page viewport (default 1366x768)
            navigation_timeout_ms: Timeout for page navigation
            screenshot_dir: Where debug screenshots are written
        """
        self.correlation_id = correlation_id
        self.viewport = viewport or {"width": 1366, "height": 768}
        self.navigation_timeout_ms = navigation_timeout_ms
        self.screenshot_dir = screenshot_dir

        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self._playwright = None

    async def __aenter__(self) -> "BrowserSession":
        try:
            await self.start_browser()
        except Exception:
            # __aexit__ does not run when entry fails; stop the driver here
            await self.close_browser()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close_browser()

    async def start_browser(self, headless: bool = None):
        """
        Start Playwright browser.

        Args:
            headless: Override headless mode. If None, reads from HEADLESS env var (default: True)
        """
        if headless is None:
            headless = os.getenv('HEADLESS', 'true').lower() in ('true', '1', 'yes')

        self._playwright = await async_playwright().start()
        self.browser = await self._playwright.chromium.launch(
            headless=headless,
            args=["--no-sandbox", "--disable-setuid-sandbox"]
        )
        self.context = await self.browser.new_context(viewport=self.viewport)
        self.page = await self.context.new_page()
        self.page.set_default_navigation_timeout(self.navigation_timeout_ms)

        mode = "headless" if headless else "headed"
        logger.info(f"[{self.correlation_id}] Browser started in {mode} mode")

    async def close_browser(self):
        """Close browser"""
        try:
            if self.context:
                await self.context.close()

            if self.browser:
                await self.browser.close()

            logger.info(f"[{self.correlation_id}] Browser closed")
        except Exception as e:
            logger.debug(f"[{self.correlation_id}] Error closing browser: {e}")
        finally:
            if self._playwright:
                try:
                    await self._playwright.stop()
                except Exception as e:
                    logger.debug(f"[{self.correlation_id}] Error stopping Playwright: {e}")
            self.page = None
            self.context = None
            self.browser = None
            self._playwright = None

    def _require_page(self) -> Page:
        if not self.page:
            raise ValueError("Browser not started")
        return self.page

    # =========================================================================
    # Navigation and page content
    # =========================================================================

    async def goto(self, url: str):
        """Navigate and wait for the network to go quiet"""
        page = self._require_page()
        logger.info(f"[{self.correlation_id}] Navigating to {url}")
        await page.goto(url, wait_until="networkidle", timeout=self.navigation_timeout_ms)

    async def wait_for_settle(self, timeout_ms: int = 15000):
        """Wait for a post-submit page to finish loading; a slow page is not an error"""
        page = self._require_page()
        try:
            await page.wait_for_load_state("networkidle", timeout=timeout_ms)
        except PlaywrightTimeoutError:
            logger.debug(f"[{self.correlation_id}] Page still busy after {timeout_ms}ms, continuing")

    async def page_text(self) -> str:
        return await self._require_page().inner_text("body")

    async def page_html(self) -> str:
        return await self._require_page().content()

    async def form_markup(self) -> str:
        """Outer HTML of all forms on the current page"""
        return extract_form_markup(await self.page_html())

    async def save_screenshot(self, name: str) -> Optional[str]:
        """Save a screenshot when DEBUG is enabled"""
        if os.getenv('DEBUG', 'false').lower() not in ('true', '1', 'yes'):
            return None
        page = self._require_page()
        os.makedirs(self.screenshot_dir, exist_ok=True)
        path = os.path.join(self.screenshot_dir, f"{name}.png")
        await page.screenshot(path=path, full_page=False)
        logger.debug(f"[{self.correlation_id}] Screenshot saved: {path}")
        return path

    # =========================================================================
    # Field helpers
    # =========================================================================

    async def fill_text_field(self, selector: str, value: Any):
        """Clear and type into the first element matching selector"""
        page = self._require_page()
        field = page.locator(selector).first
        await field.wait_for(state="visible", timeout=FIELD_TIMEOUT_MS)
        await field.fill(str(value))

    async def select_dropdown(self, selector: str, value: Any):
        """Select an option by value, falling back to its visible label"""
        page = self._require_page()
        field = page.locator(selector).first
        await field.wait_for(state="attached", timeout=FIELD_TIMEOUT_MS)
        try:
            await field.select_option(value=str(value), timeout=FIELD_TIMEOUT_MS)
        except PlaywrightTimeoutError:
            await field.select_option(label=str(value), timeout=FIELD_TIMEOUT_MS)

    async def check(self, selector: str):
        page = self._require_page()
        await page.locator(selector).first.check(timeout=FIELD_TIMEOUT_MS)

    async def click(self, selector: str):
        page = self._require_page()
        await page.locator(selector).first.click(timeout=FIELD_TIMEOUT_MS)

    async def click_first(self, selectors: List[str]) -> Optional[str]:
        """
        Click the first visible element among selectors

        Returns:
            The selector that was clicked, or None
        """
        page = self._require_page()
        for selector in selectors:
            element = page.locator(selector).first
            try:
                if await element.count() and await element.is_visible():
                    await element.click(timeout=FIELD_TIMEOUT_MS)
                    logger.debug(f"[{self.correlation_id}] Clicked {selector}")
                    return selector
            except PlaywrightTimeoutError as e:
                logger.debug(f"[{self.correlation_id}] Click on {selector} timed out: {e}")
        return None

    async def dismiss_cookie_banner(self) -> bool:
        """Accept a cookie consent banner if one is covering the page"""
        page = self._require_page()
        for banner_selector in COOKIE_BANNER_SELECTORS:
            try:
                if not await page.locator(banner_selector).first.is_visible():
                    continue
            except PlaywrightTimeoutError:
                continue

            clicked = await self.click_first(COOKIE_ACCEPT_SELECTORS)
            if clicked:
                await asyncio.sleep(0.5)
                logger.info(f"[{self.correlation_id}] Cookie consent banner dismissed")
                return True
            logger.debug(f"[{self.correlation_id}] Cookie banner {banner_selector} has no accept button")
        return False

    async def wait(self, duration_ms: int):
        await asyncio.sleep(duration_ms / 1000)
