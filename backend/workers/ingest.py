"""
Ingestion Workers — out-of-process inbox work.

Workers:
  1. backfill_daily_orders: Pull a whole business day page by page → inbox → drain
  2. drain_pending_inbox: Process PENDING items left behind by a crashed process

Both run against their own engine so they never share the API's pool.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import date, datetime, timedelta, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()


async def _load_inbox_adapter(session_factory, registry, integration_id: uuid.UUID, settings):
    from db.models import Integration
    from integrations.errors import CapabilityError, IntegrationNotFoundError
    from integrations.manager import config_from_row
    from integrations.pipeline import InboxIngestion

    async with session_factory() as db:
        row = await db.get(Integration, integration_id)
    if row is None:
        raise IntegrationNotFoundError(integration_id)

    adapter = registry.create(config_from_row(row, settings))
    if not isinstance(adapter, InboxIngestion):
        raise CapabilityError(f"{adapter.platform_name} does not stage orders in the inbox")
    await adapter.authenticate()
    return adapter


def previous_business_day(settings, now: datetime | None = None) -> date:
    now = now or datetime.now(timezone.utc)
    local = now.astimezone(timezone(timedelta(hours=settings.business_utc_offset_hours)))
    return local.date() - timedelta(days=1)


async def run_daily_backfill(
    session_factory,
    registry,
    integration_id: uuid.UUID,
    day: date,
    settings=None,
) -> dict:
    """
    Worker-path backfill:
      day window -> paged pull -> inbox (order.backfill) -> drain -> BACKFILL sync log.

    A failed item is counted and left FAILED in the inbox; only a failure of the
    pull itself marks the run FAILED.
    """
    from core.config import get_settings
    from db.models import IntegrationSyncLog
    from db.order_store import OrderStore
    from integrations.inbox import IntegrationInbox
    from integrations.pipeline import drain_pending
    from integrations.reconciliation import business_day_bounds, to_naive_utc

    settings = settings or get_settings()
    inbox = IntegrationInbox(session_factory, settings)
    store = OrderStore(session_factory, settings)
    window_start, window_end = business_day_bounds(day, settings.business_utc_offset_hours)
    started_at = datetime.utcnow()

    adapter = await _load_inbox_adapter(session_factory, registry, integration_id, settings)

    staged = 0
    sync_status = "SUCCESS"
    error_message = None
    try:
        staged = await adapter.ingest_orders(
            inbox,
            since=window_start,
            until=window_end,
            event="order.backfill",
        )
    except Exception as exc:
        sync_status = "FAILED"
        error_message = str(exc)[: settings.inbox_error_max_length]
        logger.error(
            "ingest.backfill.pull_failed",
            integration_id=str(integration_id),
            day=day.isoformat(),
            error=str(exc),
            exc_info=True,
        )

    # Whatever was staged before a pull failure still gets processed
    drained = await drain_pending(adapter, inbox, store, integration_id, settings.inbox_drain_batch_size)
    failed = drained.failed
    if sync_status == "SUCCESS" and failed > 0:
        sync_status = "PARTIAL"

    async with session_factory() as db:
        db.add(
            IntegrationSyncLog(
                integration_id=integration_id,
                sync_type="BACKFILL",
                status=sync_status,
                items_processed=staged,
                items_failed=failed,
                window_start=to_naive_utc(window_start),
                window_end=to_naive_utc(window_end),
                started_at=started_at,
                completed_at=datetime.utcnow(),
                error_message=error_message,
            )
        )
        await db.commit()

    summary = {
        "status": sync_status.lower(),
        "integration_id": str(integration_id),
        "day": day.isoformat(),
        "staged": staged,
        "processed": drained.processed,
        "ignored": drained.ignored,
        "failed": failed,
    }
    logger.info("ingest.backfill.completed", **summary)
    return summary


async def run_drain(session_factory, registry, integration_id: uuid.UUID, settings=None) -> dict:
    from core.config import get_settings
    from db.order_store import OrderStore
    from integrations.inbox import IntegrationInbox
    from integrations.pipeline import drain_pending

    settings = settings or get_settings()
    inbox = IntegrationInbox(session_factory, settings)
    adapter = await _load_inbox_adapter(session_factory, registry, integration_id, settings)
    drained = await drain_pending(
        adapter, inbox, OrderStore(session_factory, settings), integration_id, settings.inbox_drain_batch_size
    )
    return {
        "status": "success" if drained.failed == 0 else "partial",
        "integration_id": str(integration_id),
        "processed": drained.processed,
        "ignored": drained.ignored,
        "failed": drained.failed,
    }


@celery_app.task(
    name="workers.ingest.backfill_daily_orders",
    bind=True,
    max_retries=3,
    default_retry_delay=300,
    acks_late=True,
)
def backfill_daily_orders(self, integration_id: str, day: str | None = None):
    """Backfill one business day (default: yesterday) for one integration."""
    from core.config import get_settings
    from integrations.adapters import build_default_registry

    run_id = self.request.id or "manual"

    async def _run():
        settings = get_settings()
        target_day = date.fromisoformat(day) if day else previous_business_day(settings)
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            summary = await run_daily_backfill(
                async_session,
                build_default_registry(),
                uuid.UUID(integration_id),
                target_day,
                settings=settings,
            )
            summary["run_id"] = run_id
            return summary
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_run())
    except Exception as exc:  # noqa: BLE001
        logger.error("ingest.backfill.failed", integration_id=integration_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)


@celery_app.task(
    name="workers.ingest.drain_pending_inbox",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def drain_pending_inbox(self, integration_id: str):
    """Process PENDING inbox items for one integration."""
    from core.config import get_settings
    from integrations.adapters import build_default_registry

    async def _run():
        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            return await run_drain(async_session, build_default_registry(), uuid.UUID(integration_id), settings=settings)
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_run())
    except Exception as exc:  # noqa: BLE001
        logger.error("ingest.drain.failed", integration_id=integration_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
