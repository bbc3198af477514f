"""Unit tests for the web portal channel and its instruction interpreter"""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.analytics.metrics import SubmissionMetrics
from src.browser.instructions import InstructionInterpreter, MAX_WAIT_MS
from src.browser.session import BrowserSession, check_success_indicators, extract_form_markup, to_iso_date
from src.submission.errors import ChannelUnavailableError, SubmissionTransportError
from src.submission.webform_submitter import WebFormSubmitter, california_layout

REQUEST_DATA = {
    'request_id': 'REQ-9',
    'contact_name': 'Dana Ruiz',
    'company_name': 'Ruiz Fencing',
    'phone': '916-555-0142',
    'email': 'dana@ruizfencing.com',
    'street': '1200 J Street',
    'city': 'Sacramento',
    'state': 'CA',
    'zip_code': '95814',
    'work_type': 'Fencing',
    'work_description': 'Chain link fence',
    'start_date': '2026-11-02T08:00:00',
}


def make_session(page_text='', form_markup='<form><input name="contact_name"></form>'):
    session = AsyncMock()
    session.page_text.return_value = page_text
    session.form_markup.return_value = form_markup
    session.click_first.return_value = 'button[type="submit"]'
    session.dismiss_cookie_banner.return_value = False
    session.save_screenshot.return_value = None
    return session


def factory_for(session):
    """Session factory yielding the given session and recording open/close"""
    events = []

    @asynccontextmanager
    async def factory(correlation_id):
        events.append(('open', correlation_id))
        try:
            yield session
        finally:
            events.append(('close', correlation_id))

    factory.events = events
    return factory


class TestInstructionInterpreter:
    """Test the closed instruction set"""

    def test_validation(self):
        """Test that unknown actions and selector-less steps are rejected"""
        interpreter = InstructionInterpreter(AsyncMock(), correlation_id='REQ-9')

        assert interpreter.validate({'action': 'evaluate', 'selector': 'body'}) is None
        assert interpreter.validate({'action': 'fill', 'value': 'x'}) is None
        assert interpreter.validate('click #submit') is None
        assert interpreter.validate({'action': 'WAIT', 'duration': 500}).action == 'wait'

    @pytest.mark.asyncio
    async def test_failing_instruction_is_skipped(self):
        """Test that one failing step is recorded and the rest still run"""
        session = AsyncMock()
        session.fill_text_field.side_effect = [RuntimeError("element not visible"), None]
        metrics = SubmissionMetrics()
        interpreter = InstructionInterpreter(session, correlation_id='REQ-9', metrics=metrics)

        summary = await interpreter.run([
            {'action': 'fill', 'selector': '#name', 'value': 'Dana'},
            {'action': 'fill', 'selector': '#phone', 'value': '916'},
            {'action': 'submit_everything', 'selector': 'form'},
        ])

        assert summary == {'executed': 1, 'rejected': 1, 'skipped': 1}
        failures = metrics.get_summary()['failures']
        assert failures[0]['component'] == 'webform_interpreter'
        assert 'element not visible' in failures[0]['reason']

    @pytest.mark.asyncio
    async def test_empty_value_not_filled(self):
        session = AsyncMock()
        interpreter = InstructionInterpreter(session)

        summary = await interpreter.run([{'action': 'fill', 'selector': '#company', 'value': None}])

        assert summary['skipped'] == 1
        session.fill_text_field.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_wait_is_capped(self):
        session = AsyncMock()
        await InstructionInterpreter(session).run([{'action': 'wait', 'duration': 600000}])
        session.wait.assert_awaited_once_with(MAX_WAIT_MS)

    @pytest.mark.asyncio
    async def test_dispatch(self):
        """Test that each action calls the matching session helper"""
        session = AsyncMock()
        await InstructionInterpreter(session).run([
            {'action': 'select', 'selector': 'select[name=state]', 'value': 'CA'},
            {'action': 'check', 'selector': '#agree'},
            {'action': 'click', 'selector': '#next'},
        ])

        session.select_dropdown.assert_awaited_once_with('select[name=state]', 'CA')
        session.check.assert_awaited_once_with('#agree')
        session.click.assert_awaited_once_with('#next')


class TestPageHelpers:
    """Test page text helpers"""

    def test_success_indicator(self):
        assert check_success_indicators("Thank you for your submission!") == "thank you for your submission"
        assert check_success_indicators("Start a new ticket") is None

    def test_form_markup(self):
        html = '<html><body><nav>menu</nav><form id="t"><input name="city"></form></body></html>'
        assert extract_form_markup(html) == '<form id="t"><input name="city"/></form>'

    def test_iso_date(self):
        assert to_iso_date('2026-11-02T08:00:00') == '2026-11-02'
        assert to_iso_date('11/02/2026') == '2026-11-02'
        assert to_iso_date('next Monday') == 'next Monday'

    def test_california_layout_dates(self):
        steps = california_layout(REQUEST_DATA)
        date_step = [s for s in steps if 'start_date' in s.get('selector', '')][0]
        assert date_step['value'] == '2026-11-02'


class TestBrowserSession:
    """Test Playwright lifecycle with a stubbed driver"""

    @pytest.mark.asyncio
    async def test_failed_launch_stops_driver(self, monkeypatch):
        """Test that the driver is stopped when the browser fails to launch"""
        monkeypatch.setenv('HEADLESS', 'true')
        driver = MagicMock()
        driver.chromium.launch = AsyncMock(side_effect=RuntimeError("Executable doesn't exist"))
        driver.stop = AsyncMock()
        starter = MagicMock()
        starter.start = AsyncMock(return_value=driver)

        with patch('src.browser.session.async_playwright', return_value=starter):
            with pytest.raises(RuntimeError, match="Executable"):
                async with BrowserSession('REQ-9'):
                    pass

        driver.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_stops_driver_when_context_close_fails(self):
        session = BrowserSession('REQ-9')
        session.context = MagicMock()
        session.context.close = AsyncMock(side_effect=RuntimeError("Target closed"))
        session.browser = MagicMock()
        session.browser.close = AsyncMock()
        driver = MagicMock()
        driver.stop = AsyncMock()
        session._playwright = driver

        await session.close_browser()

        driver.stop.assert_awaited_once()
        assert session.browser is None


class TestWebFormSubmitter:
    """Test portal submission with a stubbed browser session"""

    @pytest.mark.asyncio
    async def test_known_layout_with_printed_ticket(self, make_district):
        """Test that a known district uses its layout and reads the printed ticket"""
        session = make_session(page_text="Request received. Ticket #: 2026110200555\nPrint this page.")
        factory = factory_for(session)
        generator = MagicMock()
        generator.generate_form_instructions = AsyncMock()
        district = make_district(id='CA-USANORTH', web_portal='https://newtina.usanorth811.org')

        result = await WebFormSubmitter(generator=generator, session_factory=factory).submit(REQUEST_DATA, district)

        assert result.success is True
        assert result.ticket_number == '2026110200555'
        assert result.data['method'] == 'known-layout'
        generator.generate_form_instructions.assert_not_awaited()
        session.goto.assert_awaited_once_with('https://newtina.usanorth811.org')
        assert factory.events == [('open', 'REQ-9'), ('close', 'REQ-9')]

    @pytest.mark.asyncio
    async def test_drafted_instructions_and_placeholder_ticket(self, make_district):
        """Test drafted instructions and TEMP id when only a success phrase is shown"""
        session = make_session(page_text="Thank you for your submission. We will be in touch.")
        generator = MagicMock()
        generator.generate_form_instructions = AsyncMock(return_value=[
            {'action': 'fill', 'selector': 'input[name="contact_name"]', 'value': 'Dana Ruiz'},
            {'action': 'evaluate', 'selector': 'body', 'value': 'alert(1)'},
        ])

        result = await WebFormSubmitter(generator=generator, session_factory=factory_for(session)).submit(
            REQUEST_DATA, make_district(id='CO811'))

        assert result.ticket_number.startswith('TEMP-')
        assert result.data['method'] == 'ai-assisted'
        assert result.data['instructions'] == {'executed': 1, 'rejected': 1, 'skipped': 0}
        markup = generator.generate_form_instructions.await_args.args[0]
        assert 'contact_name' in markup

    @pytest.mark.asyncio
    async def test_generator_failure_uses_fallback(self, make_district):
        session = make_session(page_text="Submission received")
        generator = MagicMock()
        generator.generate_form_instructions = AsyncMock(side_effect=ValueError("bad JSON"))

        result = await WebFormSubmitter(generator=generator, session_factory=factory_for(session)).submit(
            REQUEST_DATA, make_district(id='CO811'))

        assert result.data['method'] == 'fallback'

    @pytest.mark.asyncio
    async def test_unconfirmed_page_fails(self, make_district):
        """Test that a page without number or success phrase fails the channel"""
        session = make_session(page_text="Please correct the highlighted fields")
        factory = factory_for(session)

        with pytest.raises(SubmissionTransportError, match='please correct'):
            await WebFormSubmitter(session_factory=factory).submit(REQUEST_DATA, make_district(id='CO811'))

        assert factory.events[-1] == ('close', 'REQ-9')

    @pytest.mark.asyncio
    async def test_validation_errors_with_echoed_data_fail(self, make_district):
        """Test that a failure page is not read as a ticket even when it echoes zip codes"""
        session = make_session(page_text="Please correct the highlighted fields. Work site: 1200 J Street, Sacramento, CA 95814")
        web = WebFormSubmitter(session_factory=factory_for(session))

        with pytest.raises(SubmissionTransportError, match='rejected'):
            await web.submit(REQUEST_DATA, make_district(id='CO811'))

    @pytest.mark.asyncio
    async def test_bare_code_needs_confirmed_page(self, make_district):
        """Test that echoed form data alone does not count as a ticket"""
        session = make_session(page_text="Review your request: Sacramento, CA 95814, start June 2026")

        with pytest.raises(SubmissionTransportError, match='did not confirm'):
            await WebFormSubmitter(session_factory=factory_for(session)).submit(REQUEST_DATA, make_district(id='CO811'))

    @pytest.mark.asyncio
    async def test_bare_code_on_confirmed_page(self, make_district):
        session = make_session(page_text="Submission received. Reference USAN 2026110245")

        result = await WebFormSubmitter(session_factory=factory_for(session)).submit(REQUEST_DATA, make_district(id='CO811'))

        assert result.ticket_number == 'USAN 2026110245'

    @pytest.mark.asyncio
    async def test_navigation_failure_closes_session(self, make_district):
        """Test that a failed navigation is a transport failure and the browser is released"""
        session = make_session()
        session.goto.side_effect = RuntimeError("net::ERR_NAME_NOT_RESOLVED")
        factory = factory_for(session)

        with pytest.raises(SubmissionTransportError, match='ERR_NAME_NOT_RESOLVED'):
            await WebFormSubmitter(session_factory=factory).submit(REQUEST_DATA, make_district(id='CO811'))

        assert factory.events == [('open', 'REQ-9'), ('close', 'REQ-9')]

    @pytest.mark.asyncio
    async def test_no_portal_unavailable(self, make_district):
        factory = factory_for(make_session())

        with pytest.raises(ChannelUnavailableError):
            await WebFormSubmitter(session_factory=factory).submit(REQUEST_DATA, make_district(web_portal=None))

        assert factory.events == []
