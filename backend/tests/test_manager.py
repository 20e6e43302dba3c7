"""
Integration Manager tests — loading, polling, sync cursor, inbox reprocess,
webhooks and routing. The scheduler is never started; jobs stay pending.
"""

import asyncio
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import FOODY_ORDERS_PATH, make_foody_order
from db.models import InboxItem, Integration, IntegrationSyncLog, Order
from integrations.adapters.foody import format_foody_datetime
from integrations.errors import CapabilityError, IntegrationNotFoundError, ValidationError
from integrations.manager import config_from_row, job_id_for
from integrations.pipeline import process_item
from integrations.types import InboxStatus, IntegrationStatus, IntegrationType

AGILIZONE_CREDENTIALS = {"merchantId": "m", "clientId": "c", "clientSecret": "s"}


async def _row(session_factory, integration_id) -> Integration:
    async with session_factory() as session:
        return await session.get(Integration, integration_id)


async def _sync_logs(session_factory, integration_id) -> list[IntegrationSyncLog]:
    async with session_factory() as session:
        result = await session.execute(
            select(IntegrationSyncLog)
            .where(IntegrationSyncLog.integration_id == integration_id)
            .order_by(IntegrationSyncLog.started_at)
        )
        return list(result.scalars().all())


@pytest.mark.asyncio
class TestLoading:
    async def test_one_failing_integration_does_not_block_the_rest(self, manager, add_integration, session_factory):
        foody = await add_integration()
        agilizone = await add_integration(platform="agilizone", credentials=AGILIZONE_CREDENTIALS)
        # No token route is stubbed, so the iFood exchange gets a 404
        ifood = await add_integration(platform="ifood", credentials={"clientId": "c", "clientSecret": "s"})
        await add_integration(name="paused", status="STOPPED")

        loaded = await manager.init(start_scheduler=False)

        assert loaded == 2
        assert manager.get_integration(foody.integration_id) is not None
        assert manager.get_integration(ifood.integration_id) is None
        assert [m.integration_id for m in manager.get_integrations_by_type(IntegrationType.LOGISTICS)] == [
            agilizone.integration_id
        ]

        degraded = await _row(session_factory, ifood.integration_id)
        assert degraded.status == IntegrationStatus.DEGRADED.value
        assert "iFood authentication failed" in degraded.last_error

    async def test_only_sales_integrations_are_scheduled(self, manager, add_integration):
        foody = await add_integration(sync_frequency_minutes=7)
        agilizone = await add_integration(platform="agilizone", credentials=AGILIZONE_CREDENTIALS)

        await manager.load_integrations()

        job = manager.scheduler.get_job(job_id_for(foody.integration_id))
        assert job is not None
        assert job.trigger.interval == timedelta(minutes=7)
        assert manager.scheduler.get_job(job_id_for(agilizone.integration_id)) is None

    async def test_add_integration_reports_failure_without_raising(self, manager, add_integration):
        row = await add_integration(platform="foody", credentials={})

        assert await manager.add_integration(config_from_row(row, manager.settings)) is False
        assert manager.get_integration(row.integration_id) is None

    async def test_remove_integration_drops_job(self, manager, add_integration):
        foody = await add_integration()
        await manager.load_integrations()

        assert await manager.remove_integration(foody.integration_id) is True
        assert manager.scheduler.get_job(job_id_for(foody.integration_id)) is None
        assert await manager.remove_integration(foody.integration_id) is False


@pytest.mark.asyncio
class TestSync:
    async def test_poll_skips_while_a_sync_is_running(self, manager, add_integration, platform_stub):
        foody = await add_integration()
        await manager.load_integrations()
        managed = manager.get_integration(foody.integration_id)

        async with managed.lock:
            assert await manager._poll_tick(foody.integration_id) is False

        assert platform_stub.calls("GET", FOODY_ORDERS_PATH) == []

    async def test_sync_processes_orders_and_advances_cursor(self, manager, add_integration, platform_stub, session_factory):
        platform_stub.add("GET", FOODY_ORDERS_PATH, response=[make_foody_order()])
        foody = await add_integration()
        await manager.load_integrations()
        managed = manager.get_integration(foody.integration_id)

        assert await manager._poll_tick(foody.integration_id) is True
        first_cursor = managed.last_sync_at
        assert first_cursor is not None

        await manager.sync_orders(foody.integration_id)

        requests = platform_stub.calls("GET", FOODY_ORDERS_PATH)
        assert requests[1].url.params["startDate"] == format_foody_datetime(first_cursor)
        assert managed.last_sync_at > first_cursor

        row = await _row(session_factory, foody.integration_id)
        assert row.last_sync_at is not None
        async with session_factory() as session:
            orders = (await session.execute(select(Order))).scalars().all()
            items = (await session.execute(select(InboxItem))).scalars().all()
        assert len(orders) == 1
        assert orders[0].integration_id == foody.integration_id
        assert {i.status for i in items} == {InboxStatus.PROCESSED.value}
        assert [log.status for log in await _sync_logs(session_factory, foody.integration_id)] == ["SUCCESS", "SUCCESS"]

    async def test_manual_sync_leaves_cursor_alone(self, manager, add_integration, platform_stub, session_factory):
        platform_stub.add("GET", FOODY_ORDERS_PATH, response=[make_foody_order()])
        foody = await add_integration()
        await manager.load_integrations()

        assert await manager.manual_sync(foody.integration_id) == 1

        assert manager.get_integration(foody.integration_id).last_sync_at is None
        assert (await _row(session_factory, foody.integration_id)).last_sync_at is None
        logs = await _sync_logs(session_factory, foody.integration_id)
        assert [(log.sync_type, log.items_processed) for log in logs] == [("MANUAL", 1)]

    async def test_failed_poll_degrades_integration(self, manager, add_integration, platform_stub, session_factory):
        platform_stub.add("GET", FOODY_ORDERS_PATH, response={"error": "boom"}, status_code=500)
        foody = await add_integration()
        await manager.load_integrations()

        assert await manager._poll_tick(foody.integration_id) is False

        assert manager.get_integration(foody.integration_id).status is IntegrationStatus.DEGRADED
        assert manager.get_integration(foody.integration_id).last_sync_at is None
        row = await _row(session_factory, foody.integration_id)
        assert row.status == IntegrationStatus.DEGRADED.value
        logs = await _sync_logs(session_factory, foody.integration_id)
        assert [log.status for log in logs] == ["FAILED"]

    async def test_sync_rejects_logistics_integrations(self, manager, add_integration):
        agilizone = await add_integration(platform="agilizone", credentials=AGILIZONE_CREDENTIALS)
        await manager.load_integrations()

        with pytest.raises(CapabilityError):
            await manager.sync_orders(agilizone.integration_id)
        with pytest.raises(IntegrationNotFoundError):
            await manager.sync_orders(uuid.uuid4())


@pytest.mark.asyncio
class TestInboxPaths:
    async def test_reprocess_failed_item_counts_another_retry(self, manager, add_integration):
        foody = await add_integration()
        item = await manager.inbox.log_ingestion(
            integration_id=foody.integration_id,
            source="foody",
            raw_payload={"id": "NO-DATE"},
            external_id="NO-DATE",
        )
        await manager.inbox.mark_failed(item.id, "first attempt")

        assert await manager.reprocess_inbox_item(item.id) is False

        reprocessed = await manager.inbox.get_item(item.id)
        assert reprocessed.status == InboxStatus.FAILED.value
        assert reprocessed.retries_count == 2
        assert "no arrival date" in reprocessed.error_message

    async def test_reprocess_processed_item_keeps_retry_count(self, manager, add_integration):
        foody = await add_integration()
        item = await manager.inbox.log_ingestion(
            integration_id=foody.integration_id,
            source="foody",
            raw_payload=make_foody_order(),
            external_id="X1",
        )
        await manager.inbox.mark_processed(item.id)

        assert await manager.reprocess_inbox_item(item.id) is True

        reprocessed = await manager.inbox.get_item(item.id)
        assert reprocessed.status == InboxStatus.PROCESSED.value
        assert reprocessed.retries_count == 0
        assert reprocessed.parsed_payload["external_id"] == "X1"

    async def test_webhook_for_inbox_platform_is_processed(self, manager, add_integration):
        foody = await add_integration()

        item = await manager.receive_webhook(
            foody.integration_id, make_foody_order("W1"), event="order.updated", correlation_id="hook-1"
        )

        assert item.status == InboxStatus.PROCESSED.value
        assert item.external_id == "W1"
        assert item.event == "order.updated"
        assert item.correlation_id == "hook-1"

    async def test_webhook_heartbeat_is_ignored(self, manager, add_integration):
        foody = await add_integration()

        item = await manager.receive_webhook(foody.integration_id, {"event": "ping"})

        assert item.status == InboxStatus.IGNORED.value

    async def test_webhook_for_platform_without_inbox_is_ignored(self, manager, add_integration):
        agilizone = await add_integration(platform="agilizone", credentials=AGILIZONE_CREDENTIALS)

        item = await manager.receive_webhook(agilizone.integration_id, {"id": "d-1", "status": "entregue"})

        assert item.status == InboxStatus.IGNORED.value
        assert item.source == "agilizone"

    async def test_drain_requires_inbox_capability(self, manager, add_integration):
        agilizone = await add_integration(platform="agilizone", credentials=AGILIZONE_CREDENTIALS)
        await manager.load_integrations()

        with pytest.raises(CapabilityError):
            await manager.drain_pending(agilizone.integration_id)

    async def test_item_finished_by_another_worker_is_not_an_error(self, manager, add_integration):
        foody = await add_integration()
        await manager.load_integrations()
        item = await manager.inbox.log_ingestion(
            integration_id=foody.integration_id, source="foody", raw_payload=make_foody_order("R1"), external_id="R1"
        )
        # The other worker already finished it; this copy still says PENDING
        await manager.inbox.mark_processed(item.id)
        adapter = manager.get_integration(foody.integration_id).adapter

        outcome = await process_item(adapter, manager.inbox, manager.store, item)

        assert outcome is InboxStatus.PROCESSED
        stored = await manager.inbox.get_item(item.id)
        assert stored.status == InboxStatus.PROCESSED.value
        assert stored.retries_count == 0

    async def test_concurrent_drains_converge(self, manager, add_integration, session_factory):
        foody = await add_integration()
        await manager.load_integrations()
        for n in range(4):
            await manager.inbox.log_ingestion(
                integration_id=foody.integration_id,
                source="foody",
                raw_payload=make_foody_order(f"C{n}"),
                external_id=f"C{n}",
            )

        results = await asyncio.gather(
            manager.drain_pending(foody.integration_id),
            manager.drain_pending(foody.integration_id),
        )

        assert all(result.failed == 0 for result in results)
        assert sum(result.processed for result in results) >= 4
        async with session_factory() as session:
            items = (await session.execute(select(InboxItem))).scalars().all()
            orders = (await session.execute(select(Order.external_id))).scalars().all()
        assert {(i.external_id, i.status, i.retries_count) for i in items} == {
            (f"C{n}", InboxStatus.PROCESSED.value, 0) for n in range(4)
        }
        assert sorted(orders) == ["C0", "C1", "C2", "C3"]


@pytest.mark.asyncio
class TestAdmin:
    async def test_update_sync_interval_reschedules(self, manager, add_integration, session_factory):
        foody = await add_integration()
        await manager.load_integrations()

        await manager.update_sync_interval(foody.integration_id, 5)

        job = manager.scheduler.get_job(job_id_for(foody.integration_id))
        assert job.trigger.interval == timedelta(minutes=5)
        assert len(manager.scheduler.get_jobs()) == 1
        assert (await _row(session_factory, foody.integration_id)).sync_frequency_minutes == 5

    async def test_update_sync_interval_validates(self, manager, add_integration):
        foody = await add_integration()

        with pytest.raises(ValidationError):
            await manager.update_sync_interval(foody.integration_id, 0)
        with pytest.raises(IntegrationNotFoundError):
            await manager.update_sync_interval(uuid.uuid4(), 10)

    async def test_status_reports_inbox_counts(self, manager, add_integration):
        foody = await add_integration()
        await manager.load_integrations()
        await manager.receive_webhook(foody.integration_id, make_foody_order())

        status = await manager.status(foody.integration_id)

        assert status["platform"] == "foody"
        assert status["type"] == "sales"
        assert status["status"] == "CONNECTED"
        assert status["busy"] is False
        assert status["sync_interval_minutes"] == 15
        assert status["inbox"]["PROCESSED"] == 1

    async def test_test_connection_uses_stored_row_when_not_loaded(self, manager, add_integration, platform_stub):
        platform_stub.add("GET", FOODY_ORDERS_PATH, response=[])
        foody = await add_integration()

        assert await manager.test_connection(foody.integration_id) is True
        assert platform_stub.calls("GET", FOODY_ORDERS_PATH)[0].headers["Authorization"] == "foody-token"

    async def test_routing_checks_capabilities(self, manager, add_integration, platform_stub):
        platform_stub.add("POST", "/rest/1.2/orders/X1/confirm", status_code=204)
        foody = await add_integration()
        agilizone = await add_integration(platform="agilizone", credentials=AGILIZONE_CREDENTIALS)
        await manager.load_integrations()

        await manager.confirm_order(foody.integration_id, "X1")

        assert len(platform_stub.calls("POST", "/rest/1.2/orders/X1/confirm")) == 1
        with pytest.raises(CapabilityError):
            await manager.confirm_order(agilizone.integration_id, "X1")
        with pytest.raises(CapabilityError):
            await manager.confirm_pickup(foody.integration_id, "d-1")
        with pytest.raises(CapabilityError):
            await manager.sync_catalog(foody.integration_id, [])
