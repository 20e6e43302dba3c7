"""
Ingestion worker tests — daily backfill and inbox drain.
"""

import asyncio
import uuid
from datetime import date, datetime, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from conftest import FOODY_ORDERS_PATH, make_foody_order
from core.config import Settings
from db.models import InboxItem, Integration, IntegrationSyncLog, Order
from db.session import Base
from integrations.errors import CapabilityError, IntegrationNotFoundError
from workers.ingest import drain_pending_inbox, previous_business_day, run_daily_backfill


async def _backfill_logs(session_factory) -> list[IntegrationSyncLog]:
    async with session_factory() as session:
        return list((await session.execute(select(IntegrationSyncLog))).scalars().all())


def test_previous_business_day_uses_local_date(settings):
    # 02:00Z on the 2nd is still the 1st locally
    now = datetime(2025, 12, 2, 2, 0, tzinfo=timezone.utc)

    assert previous_business_day(settings, now) == date(2025, 11, 30)


@pytest.mark.asyncio
class TestDailyBackfill:
    async def test_backfill_stages_and_drains_the_whole_day(
        self, session_factory, registry, settings, platform_stub, add_integration
    ):
        platform_stub.add(
            "GET",
            FOODY_ORDERS_PATH,
            response=[make_foody_order("B1"), make_foody_order("B2", date="2025-12-01T15:00:00Z", history=[])],
        )
        foody = await add_integration()

        summary = await run_daily_backfill(
            session_factory, registry, foody.integration_id, date(2025, 12, 1), settings=settings
        )

        assert summary == {
            "status": "success",
            "integration_id": str(foody.integration_id),
            "day": "2025-12-01",
            "staged": 2,
            "processed": 2,
            "ignored": 0,
            "failed": 0,
        }
        request = platform_stub.calls("GET", FOODY_ORDERS_PATH)[0]
        assert request.url.params["startDate"] == "2025-12-01T00:00:00-03:00"
        assert request.url.params["endDate"] == "2025-12-01T23:59:59-03:00"

        async with session_factory() as session:
            items = (await session.execute(select(InboxItem))).scalars().all()
            orders = (await session.execute(select(Order))).scalars().all()
        assert {i.event for i in items} == {"order.backfill"}
        assert len(orders) == 2

        (log,) = await _backfill_logs(session_factory)
        assert (log.sync_type, log.status, log.items_processed) == ("BACKFILL", "SUCCESS", 2)
        assert log.window_start == datetime(2025, 12, 1, 3, 0)

    async def test_item_failures_make_the_run_partial(
        self, session_factory, registry, settings, platform_stub, add_integration
    ):
        platform_stub.add("GET", FOODY_ORDERS_PATH, response=[make_foody_order("OK"), {"id": "BROKEN"}])
        foody = await add_integration()

        summary = await run_daily_backfill(
            session_factory, registry, foody.integration_id, date(2025, 12, 1), settings=settings
        )

        assert summary["status"] == "partial"
        assert (summary["processed"], summary["failed"]) == (1, 1)
        (log,) = await _backfill_logs(session_factory)
        assert (log.status, log.items_failed) == ("PARTIAL", 1)

    async def test_pull_failure_is_recorded_and_staged_items_still_drain(
        self, session_factory, registry, settings, platform_stub, add_integration, inbox_seed
    ):
        platform_stub.add("GET", FOODY_ORDERS_PATH, response={"error": "down"}, status_code=503)
        foody = await add_integration()
        await inbox_seed(foody.integration_id, make_foody_order("LEFTOVER"))

        summary = await run_daily_backfill(
            session_factory, registry, foody.integration_id, date(2025, 12, 1), settings=settings
        )

        assert summary["status"] == "failed"
        assert summary["staged"] == 0
        assert summary["processed"] == 1
        (log,) = await _backfill_logs(session_factory)
        assert log.status == "FAILED"
        assert "503" in log.error_message

    async def test_backfill_requires_inbox_capable_integration(self, session_factory, registry, settings, add_integration):
        agilizone = await add_integration(
            platform="agilizone", credentials={"merchantId": "m", "clientId": "c", "clientSecret": "s"}
        )

        with pytest.raises(CapabilityError):
            await run_daily_backfill(session_factory, registry, agilizone.integration_id, date(2025, 12, 1), settings)
        with pytest.raises(IntegrationNotFoundError):
            await run_daily_backfill(session_factory, registry, uuid.uuid4(), date(2025, 12, 1), settings)


@pytest.fixture
def inbox_seed(session_factory, settings):
    from integrations.inbox import IntegrationInbox

    inbox = IntegrationInbox(session_factory, settings)

    async def _seed(integration_id, payload):
        return await inbox.log_ingestion(
            integration_id=integration_id,
            source="foody",
            raw_payload=payload,
            event="order.pull",
            external_id=payload.get("id"),
        )

    return _seed


def test_drain_pending_inbox_task_processes_leftovers(tmp_path, monkeypatch):
    from integrations.inbox import IntegrationInbox

    db_url = f"sqlite+aiosqlite:///{tmp_path / 'drain.db'}"
    settings = Settings(app_env="test", database_url=db_url, integrations_sandbox_mode=True)
    integration_id = uuid.UUID("00000000-0000-0000-0000-000000000301")

    async def _seed() -> None:
        engine = create_async_engine(db_url, echo=False)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with session_factory() as db:
            db.add(
                Integration(
                    integration_id=integration_id,
                    cost_center_id=uuid.UUID("00000000-0000-0000-0000-000000000001"),
                    platform="foody",
                    name="Foody",
                    credentials={"api_token": "t"},
                    status="CONNECTED",
                )
            )
            await db.commit()
        inbox = IntegrationInbox(session_factory, settings)
        for payload in (make_foody_order("D1"), make_foody_order("D2"), {"event": "ping"}):
            await inbox.log_ingestion(integration_id=integration_id, source="foody", raw_payload=payload)
        await engine.dispose()

    asyncio.run(_seed())
    monkeypatch.setattr("core.config.get_settings", lambda: settings)

    result = drain_pending_inbox.run(integration_id=str(integration_id))

    assert result == {
        "status": "success",
        "integration_id": str(integration_id),
        "processed": 2,
        "ignored": 1,
        "failed": 0,
    }
