"""Unit tests for the request-creation path"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.submission.errors import AllChannelsFailedError, SubmissionInProgressError, SubmissionTransportError
from src.submission.orchestrator import SubmissionOrchestrator
from src.submission.service import SubmissionService


@pytest.fixture
def registry(make_district):
    district = make_district()
    registry = MagicMock()
    registry.get_by_id.side_effect = lambda district_id: district if district_id == 'TEST-811' else None
    return registry


@pytest.fixture
def district_request_data(request_data):
    return {**request_data, 'district_id': 'TEST-811'}


class TestCreateAndSubmit:
    """Test background submission and per-request serialization"""

    @pytest.mark.asyncio
    async def test_create_submits_in_background(self, store, registry, district_request_data, make_result):
        orchestrator = MagicMock()
        orchestrator.submit = AsyncMock(return_value=make_result('XY7788'))
        service = SubmissionService(store, registry, orchestrator)

        request = await service.create_request(district_request_data)
        assert request.status == 'pending'

        await service.wait_for_pending()

        orchestrator.submit.assert_awaited_once()
        submitted_request, district = orchestrator.submit.await_args.args
        assert submitted_request.request_id == request.request_id
        assert district.id == 'TEST-811'

    @pytest.mark.asyncio
    async def test_create_without_submit(self, store, registry, district_request_data):
        orchestrator = MagicMock()
        orchestrator.submit = AsyncMock()
        service = SubmissionService(store, registry, orchestrator)

        await service.create_request(district_request_data, submit=False)
        await service.wait_for_pending()

        orchestrator.submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_district_rejected(self, store, registry, request_data):
        service = SubmissionService(store, registry, MagicMock())

        with pytest.raises(ValueError):
            await service.create_request({**request_data, 'district_id': 'XX-NOPE'})

        assert store.list_requests() == []

    @pytest.mark.asyncio
    async def test_second_trigger_rejected_while_running(self, store, registry, district_request_data, make_result):
        """Test that only one episode per request runs at a time"""
        release = asyncio.Event()

        async def slow_submit(request, district):
            await release.wait()
            return make_result('XY7788')

        orchestrator = MagicMock()
        orchestrator.submit = AsyncMock(side_effect=slow_submit)
        service = SubmissionService(store, registry, orchestrator)
        request = await service.create_request(district_request_data, submit=False)

        first = asyncio.create_task(service.submit_request(request.request_id))
        await asyncio.sleep(0)

        with pytest.raises(SubmissionInProgressError):
            await service.submit_request(request.request_id)

        release.set()
        result = await first
        assert result.ticket_number == 'XY7788'
        assert orchestrator.submit.await_count == 1

    @pytest.mark.asyncio
    async def test_background_failure_is_contained(self, store, registry, district_request_data):
        """Test that an exhausted episode does not break wait_for_pending"""
        orchestrator = MagicMock()
        orchestrator.submit = AsyncMock(side_effect=AllChannelsFailedError('REQ-x', [('web', 'down')]))
        service = SubmissionService(store, registry, orchestrator)

        await service.create_request(district_request_data)
        await service.wait_for_pending()

        orchestrator.submit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_submitted_request_not_resubmitted(self, store, registry, district_request_data):
        service = SubmissionService(store, registry, MagicMock())
        request = await service.create_request(district_request_data, submit=False)
        store.update_status(request.request_id, 'submitted', {'ticket_number': 'TK1'})

        with pytest.raises(ValueError):
            await service.submit_request(request.request_id)


class TestRetryAndReconcile:
    """Test operator retry and ticket reconciliation"""

    @pytest.mark.asyncio
    async def test_retry_failed_request(self, store, registry, district_request_data, make_result):
        orchestrator = MagicMock()
        orchestrator.submit = AsyncMock(return_value=make_result('XY7788'))
        service = SubmissionService(store, registry, orchestrator)
        request = await service.create_request(district_request_data, submit=False)
        store.update_status(request.request_id, 'failed', {'error': 'All submission channels failed'})

        updated = await service.retry_request(request.request_id)
        await service.wait_for_pending()

        assert updated.status == 'pending'
        assert updated.retry_count == 1
        assert updated.error is None
        updates = store.list_status_updates(request.request_id)
        assert updates[-1].kind == 'retry_requested'
        assert updates[-1].details['retry_count'] == 1
        orchestrator.submit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_retry_restarts_from_first_channel(self, store, registry, district_request_data, make_result):
        """Test that a retry after a fully failed episode walks the district list from the start again"""
        web = MagicMock()
        web.submit = AsyncMock(side_effect=[SubmissionTransportError("Portal timeout"), make_result('WEB4242')])
        phone = MagicMock()
        phone.submit = AsyncMock(side_effect=SubmissionTransportError("Call failed with status busy"))
        orchestrator = SubmissionOrchestrator(store, webform_submitter=web, phone_submitter=phone)
        service = SubmissionService(store, registry, orchestrator)
        request = await service.create_request(district_request_data, submit=False)

        with pytest.raises(AllChannelsFailedError):
            await service.submit_request(request.request_id)
        assert store.get(request.request_id).submission_method == 'phone'

        await service.retry_request(request.request_id, submit=False)
        assert store.get(request.request_id).submission_method is None
        result = await service.submit_request(request.request_id)

        assert result.ticket_number == 'WEB4242'
        assert web.submit.await_count == 2
        assert phone.submit.await_count == 1
        stored = store.get(request.request_id)
        assert stored.status == 'submitted'
        assert stored.submission_method == 'web'

    @pytest.mark.asyncio
    async def test_retry_restores_requested_channel(self, store, registry, district_request_data):
        """Test that a caller-chosen channel survives the attempts of a failed episode"""
        service = SubmissionService(store, registry, MagicMock())
        request = await service.create_request({**district_request_data, 'submission_method': 'phone'}, submit=False)
        store.update_status(request.request_id, 'failed', {'submission_method': 'web', 'error': 'down'})

        updated = await service.retry_request(request.request_id, submit=False)

        assert updated.submission_method == 'phone'
        assert updated.requested_method == 'phone'

    @pytest.mark.asyncio
    async def test_retry_requires_failed_status(self, store, registry, district_request_data):
        service = SubmissionService(store, registry, MagicMock())
        request = await service.create_request(district_request_data, submit=False)

        with pytest.raises(ValueError):
            await service.retry_request(request.request_id)

    @pytest.mark.asyncio
    async def test_reconcile_replaces_placeholder(self, store, registry, district_request_data):
        """Test that a real ticket number replaces a synthetic id and is logged"""
        service = SubmissionService(store, registry, MagicMock())
        request = await service.create_request(district_request_data, submit=False)
        store.update_status(request.request_id, 'submitted', {'ticket_number': 'EMAIL-1760000000000'})

        updated = service.reconcile_ticket(request.request_id, ' 2026110200777 ')

        assert updated.ticket_number == '2026110200777'
        assert updated.confirmation_number == '2026110200777'
        assert updated.status == 'submitted'
        entry = store.list_status_updates(request.request_id)[-1]
        assert entry.kind == 'ticket_reconciled'
        assert entry.details == {'previous_ticket_number': 'EMAIL-1760000000000', 'ticket_number': '2026110200777'}

    def test_reconcile_errors(self, store, registry):
        service = SubmissionService(store, registry, MagicMock())

        with pytest.raises(ValueError):
            service.reconcile_ticket('REQ-1', '  ')
        with pytest.raises(KeyError):
            service.reconcile_ticket('REQ-missing', 'TK1')
