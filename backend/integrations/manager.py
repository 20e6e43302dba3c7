"""
Integration Manager

Owns one adapter per active integration and everything that drives it:

  - startup loading of CONNECTED integrations (one failure never blocks the rest)
  - one APScheduler interval job per Sales integration, skip-if-busy
  - manual sync, inbox drain, inbox item reprocess, webhook receipt
  - routing of order / delivery / catalog calls to the right adapter

Per-integration lifecycle:
    unloaded → loading (authenticate) → active (polling) → stopped | degraded
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import structlog
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select, update

from core.config import Settings, get_settings
from db.models import InboxItem, Integration, IntegrationSyncLog
from db.order_store import OrderStore
from integrations.base import CatalogSync, LogisticsAdapter, PickupConfirmation, PlatformAdapter, SalesAdapter
from integrations.errors import (
    CapabilityError,
    IntegrationError,
    IntegrationNotFoundError,
    ValidationError,
)
from integrations.inbox import IntegrationInbox
from integrations.pipeline import DrainResult, InboxIngestion, drain_pending, process_item
from integrations.reconciliation import parse_timestamp, to_naive_utc
from integrations.registry import AdapterRegistry
from integrations.types import (
    CatalogItem,
    DeliveryQuote,
    DeliveryRequest,
    DeliveryTracking,
    InboxStatus,
    IntegrationConfig,
    IntegrationStatus,
    IntegrationType,
    NormalizedOrder,
)

logger = structlog.get_logger()


@dataclass
class ManagedIntegration:
    integration_id: uuid.UUID
    adapter: PlatformAdapter
    type: IntegrationType
    config: IntegrationConfig
    sync_interval_minutes: int
    last_sync_at: datetime | None = None
    status: IntegrationStatus = IntegrationStatus.CONNECTED
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def busy(self) -> bool:
        return self.lock.locked()


def config_from_row(row: Integration, settings: Settings | None = None) -> IntegrationConfig:
    settings = settings or get_settings()
    return IntegrationConfig(
        platform=row.platform,
        credentials=dict(row.credentials or {}),
        integration_id=row.integration_id,
        cost_center_id=row.cost_center_id,
        organization_id=row.organization_id,
        sandbox_mode=settings.sandbox_mode,
        sync_interval_minutes=row.sync_frequency_minutes or settings.default_sync_interval_minutes,
        name=row.name,
    )


def job_id_for(integration_id: uuid.UUID) -> str:
    return f"integration-sync:{integration_id}"


class IntegrationManager:
    def __init__(
        self,
        session_factory,
        registry: AdapterRegistry,
        settings: Settings | None = None,
        scheduler: AsyncIOScheduler | None = None,
    ):
        self._session_factory = session_factory
        self.registry = registry
        self.settings = settings or get_settings()
        self.inbox = IntegrationInbox(session_factory, self.settings)
        self.store = OrderStore(session_factory, self.settings)
        self.scheduler = scheduler or AsyncIOScheduler()
        self._integrations: dict[uuid.UUID, ManagedIntegration] = {}

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def init(self, start_scheduler: bool = True) -> int:
        if start_scheduler and not self.scheduler.running:
            self.scheduler.start()
        return await self.load_integrations()

    async def load_integrations(self) -> int:
        """Activate every CONNECTED integration. Never raises; returns how many loaded."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Integration).where(Integration.status == IntegrationStatus.CONNECTED.value)
            )
            rows = list(result.scalars().all())

        loaded = 0
        for row in rows:
            config = config_from_row(row, self.settings)
            try:
                await self._activate(config, last_sync_at=parse_timestamp(row.last_sync_at))
                loaded += 1
            except Exception as exc:
                logger.exception(
                    "integrations.load.failed",
                    integration_id=str(row.integration_id),
                    platform=row.platform,
                )
                await self._persist_status(row.integration_id, IntegrationStatus.DEGRADED, error=str(exc))

        logger.info("integrations.load.completed", loaded=loaded, total=len(rows))
        return loaded

    async def add_integration(self, config: IntegrationConfig) -> bool:
        try:
            await self._activate(config)
        except (IntegrationError, httpx.HTTPError) as exc:
            logger.warning(
                "integrations.add.failed",
                integration_id=str(config.integration_id),
                platform=config.platform,
                error=str(exc),
            )
            return False
        return True

    async def _activate(self, config: IntegrationConfig, last_sync_at: datetime | None = None) -> ManagedIntegration:
        adapter = self.registry.create(config)
        await adapter.authenticate()

        if config.integration_id in self._integrations:
            await self.remove_integration(config.integration_id)

        managed = ManagedIntegration(
            integration_id=config.integration_id,
            adapter=adapter,
            type=adapter.integration_type,
            config=config,
            sync_interval_minutes=config.sync_interval_minutes,
            last_sync_at=last_sync_at,
        )
        self._integrations[config.integration_id] = managed
        if managed.type is IntegrationType.SALES:
            self._schedule(managed)

        logger.info(
            "integrations.activated",
            integration_id=str(config.integration_id),
            platform=config.platform,
            type=managed.type.value,
        )
        return managed

    def _schedule(self, managed: ManagedIntegration) -> None:
        # A stopped scheduler keeps pending jobs in a list, so replace_existing alone can duplicate them
        self._unschedule(managed.integration_id)
        self.scheduler.add_job(
            self._poll_tick,
            trigger=IntervalTrigger(minutes=managed.sync_interval_minutes),
            id=job_id_for(managed.integration_id),
            name=f"Order sync {managed.config.platform}",
            args=[managed.integration_id],
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def _unschedule(self, integration_id: uuid.UUID) -> None:
        try:
            self.scheduler.remove_job(job_id_for(integration_id))
        except JobLookupError:
            pass

    async def remove_integration(self, integration_id: uuid.UUID) -> bool:
        self._unschedule(integration_id)
        removed = self._integrations.pop(integration_id, None)
        if removed is not None:
            logger.info("integrations.removed", integration_id=str(integration_id))
        return removed is not None

    async def shutdown(self) -> None:
        for integration_id in list(self._integrations):
            self._unschedule(integration_id)
        self._integrations.clear()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("integrations.shutdown")

    # ── Lookup ────────────────────────────────────────────────────────

    def get_integration(self, integration_id: uuid.UUID) -> ManagedIntegration | None:
        return self._integrations.get(integration_id)

    def get_integrations_by_type(self, integration_type: IntegrationType) -> list[ManagedIntegration]:
        return [m for m in self._integrations.values() if m.type is integration_type]

    def _require(self, integration_id: uuid.UUID) -> ManagedIntegration:
        managed = self._integrations.get(integration_id)
        if managed is None:
            raise IntegrationNotFoundError(integration_id)
        return managed

    def _capable(self, integration_id: uuid.UUID, capability: type):
        adapter = self._require(integration_id).adapter
        if not isinstance(adapter, capability):
            raise CapabilityError(f"{adapter.platform_name} does not support {capability.__name__}")
        return adapter

    # ── Polling & sync ────────────────────────────────────────────────

    async def _poll_tick(self, integration_id: uuid.UUID) -> bool:
        """Scheduled entry point. Returns False when skipped or failed."""
        managed = self._integrations.get(integration_id)
        if managed is None:
            return False
        if managed.busy:
            logger.info("integrations.poll.skipped_busy", integration_id=str(integration_id))
            return False
        try:
            await self.sync_orders(integration_id)
        except Exception as exc:
            logger.exception("integrations.poll.failed", integration_id=str(integration_id))
            managed.status = IntegrationStatus.DEGRADED
            await self._persist_status(integration_id, IntegrationStatus.DEGRADED, error=str(exc))
            return False

        if managed.status is IntegrationStatus.DEGRADED:
            await self._persist_status(integration_id, IntegrationStatus.CONNECTED)
        managed.status = IntegrationStatus.CONNECTED
        return True

    async def sync_orders(self, integration_id: uuid.UUID) -> int:
        """Incremental sync since max(cursor, now - lookback). Advances the cursor on success."""
        managed = self._require(integration_id)
        if managed.type is not IntegrationType.SALES:
            raise CapabilityError(f"{managed.config.platform} is not a sales integration")

        async with managed.lock:
            started = datetime.now(timezone.utc)
            floor = started - timedelta(hours=self.settings.sync_lookback_hours)
            since = max(managed.last_sync_at, floor) if managed.last_sync_at else floor

            count = await self._run_sync(managed, "POLL", since=since, until=started, started=started)

            managed.last_sync_at = started
            async with self._session_factory() as session:
                await session.execute(
                    update(Integration)
                    .where(Integration.integration_id == integration_id)
                    .values(last_sync_at=to_naive_utc(started))
                )
                await session.commit()
            return count

    async def manual_sync(self, integration_id: uuid.UUID) -> int:
        """Operator-triggered pull of the current business day."""
        managed = self._require(integration_id)
        if managed.type is not IntegrationType.SALES:
            raise CapabilityError(f"{managed.config.platform} is not a sales integration")
        async with managed.lock:
            return await self._run_sync(managed, "MANUAL", since=None, until=None, started=datetime.now(timezone.utc))

    async def _run_sync(
        self,
        managed: ManagedIntegration,
        sync_type: str,
        since: datetime | None,
        until: datetime | None,
        started: datetime,
    ) -> int:
        adapter = managed.adapter
        previous_status = managed.status
        managed.status = IntegrationStatus.INGESTING
        try:
            if isinstance(adapter, InboxIngestion):
                count = await adapter.ingest_orders(self.inbox, since=since, until=until)
                drained = await drain_pending(
                    adapter, self.inbox, self.store, managed.integration_id, self.settings.inbox_drain_batch_size
                )
                failed = drained.failed
            else:
                orders = await adapter.fetch_orders(since)
                count = len(orders)
                failed = await self._mirror_orders(managed, orders)
        except Exception as exc:
            managed.status = previous_status
            await self._write_sync_log(managed, sync_type, "FAILED", 0, 0, since, until, started, error=str(exc))
            logger.warning(
                "integrations.sync.failed",
                integration_id=str(managed.integration_id),
                sync_type=sync_type,
                error=str(exc),
            )
            raise

        managed.status = previous_status
        status = "SUCCESS" if failed == 0 else "PARTIAL"
        await self._write_sync_log(managed, sync_type, status, count, failed, since, until, started)
        logger.info(
            "integrations.sync.completed",
            integration_id=str(managed.integration_id),
            platform=managed.config.platform,
            sync_type=sync_type,
            items=count,
            failed=failed,
        )
        return count

    async def _mirror_orders(self, managed: ManagedIntegration, orders: list[NormalizedOrder]) -> int:
        """POS mirror for adapters without inbox processing. Returns failures."""
        if managed.config.cost_center_id is None:
            return 0
        failed = 0
        for order in orders:
            try:
                await self.store.upsert_pdv_order(
                    order,
                    cost_center_id=managed.config.cost_center_id,
                    organization_id=managed.config.organization_id,
                )
            except IntegrationError as exc:
                failed += 1
                logger.warning("integrations.sync.order_failed", external_id=order.external_id, error=str(exc))
        return failed

    async def _write_sync_log(self, managed, sync_type, status, processed, failed, since, until, started, error=None):
        async with self._session_factory() as session:
            session.add(
                IntegrationSyncLog(
                    integration_id=managed.integration_id,
                    sync_type=sync_type,
                    status=status,
                    items_processed=processed,
                    items_failed=failed,
                    window_start=to_naive_utc(since),
                    window_end=to_naive_utc(until),
                    started_at=to_naive_utc(started),
                    completed_at=datetime.utcnow(),
                    error_message=error[: self.settings.inbox_error_max_length] if error else None,
                )
            )
            await session.commit()

    async def drain_pending(self, integration_id: uuid.UUID) -> DrainResult:
        adapter = self._capable(integration_id, InboxIngestion)
        return await drain_pending(
            adapter, self.inbox, self.store, integration_id, self.settings.inbox_drain_batch_size
        )

    # ── Inbox reprocess & webhooks ────────────────────────────────────

    async def reprocess_inbox_item(self, item_id: uuid.UUID) -> bool:
        """Re-run processing for one item; True when it ends PROCESSED or IGNORED."""
        item = await self.inbox.get_item(item_id)
        adapter = await self._adapter_for(item.integration_id, tolerate_auth_failure=True)
        if not isinstance(adapter, InboxIngestion):
            raise CapabilityError(f"{adapter.platform_name} does not process inbox items")

        if item.status != InboxStatus.PENDING.value:
            item = await self.inbox.reopen(item_id)
        outcome = await process_item(adapter, self.inbox, self.store, item)
        logger.info("inbox.item.reprocessed", item_id=str(item_id), outcome=outcome.value)
        return outcome is not InboxStatus.FAILED

    async def receive_webhook(
        self,
        integration_id: uuid.UUID,
        payload: dict[str, Any],
        event: str | None = None,
        external_id: str | None = None,
        correlation_id: str | None = None,
    ) -> InboxItem:
        """Stage a pushed event, then process it when the adapter can."""
        adapter = await self._adapter_for(integration_id)
        if external_id is None and isinstance(adapter, InboxIngestion):
            external_id = adapter._external_id(payload)

        item = await self.inbox.log_ingestion(
            integration_id=integration_id,
            source=adapter.platform_name,
            raw_payload=payload,
            event=event or "webhook",
            external_id=external_id,
            correlation_id=correlation_id,
        )
        if isinstance(adapter, InboxIngestion):
            await process_item(adapter, self.inbox, self.store, item)
        else:
            await self.inbox.mark_ignored(item.id, f"{adapter.platform_name} does not process pushed events")
        return await self.inbox.get_item(item.id)

    async def _adapter_for(self, integration_id: uuid.UUID, tolerate_auth_failure: bool = False) -> PlatformAdapter:
        """Loaded adapter, or a transient one built from the stored row."""
        managed = self._integrations.get(integration_id)
        if managed is not None:
            return managed.adapter

        async with self._session_factory() as session:
            row = await session.get(Integration, integration_id)
        if row is None:
            raise IntegrationNotFoundError(integration_id)

        adapter = self.registry.create(config_from_row(row, self.settings))
        try:
            await adapter.authenticate()
        except (IntegrationError, httpx.HTTPError) as exc:
            if not tolerate_auth_failure:
                raise
            # Offline processing only needs the stored payload
            logger.warning("integrations.transient_auth.failed", integration_id=str(integration_id), error=str(exc))
        return adapter

    # ── Admin helpers ─────────────────────────────────────────────────

    async def test_connection(self, integration_id: uuid.UUID) -> bool:
        managed = self._integrations.get(integration_id)
        if managed is not None:
            return await managed.adapter.test_connection()
        async with self._session_factory() as session:
            row = await session.get(Integration, integration_id)
        if row is None:
            raise IntegrationNotFoundError(integration_id)
        return await self.registry.create(config_from_row(row, self.settings)).test_connection()

    async def update_sync_interval(self, integration_id: uuid.UUID, minutes: int) -> None:
        if minutes < 1:
            raise ValidationError("Sync interval must be at least 1 minute")

        async with self._session_factory() as session:
            result = await session.execute(
                update(Integration)
                .where(Integration.integration_id == integration_id)
                .values(sync_frequency_minutes=minutes)
            )
            await session.commit()
        if result.rowcount == 0:
            raise IntegrationNotFoundError(integration_id)

        managed = self._integrations.get(integration_id)
        if managed is not None:
            managed.sync_interval_minutes = minutes
            managed.config.sync_interval_minutes = minutes
            if managed.type is IntegrationType.SALES:
                self._schedule(managed)
        logger.info("integrations.sync_interval.updated", integration_id=str(integration_id), minutes=minutes)

    async def status(self, integration_id: uuid.UUID) -> dict[str, Any]:
        managed = self._require(integration_id)
        job = self.scheduler.get_job(job_id_for(integration_id))
        return {
            "integration_id": str(integration_id),
            "platform": managed.config.platform,
            "type": managed.type.value,
            "status": managed.status.value,
            "busy": managed.busy,
            "sync_interval_minutes": managed.sync_interval_minutes,
            "last_sync_at": managed.last_sync_at.isoformat() if managed.last_sync_at else None,
            "next_run_at": _next_run(job),
            "inbox": await self.inbox.count_by_status(integration_id),
        }

    async def _persist_status(self, integration_id: uuid.UUID, status: IntegrationStatus, error: str | None = None):
        async with self._session_factory() as session:
            await session.execute(
                update(Integration)
                .where(Integration.integration_id == integration_id)
                .values(status=status.value, last_error=error[: self.settings.inbox_error_max_length] if error else None)
            )
            await session.commit()

    # ── Routing: sales ────────────────────────────────────────────────

    async def fetch_orders(self, integration_id: uuid.UUID, since: datetime | None = None) -> list[NormalizedOrder]:
        return await self._capable(integration_id, SalesAdapter).fetch_orders(since)

    async def confirm_order(self, integration_id: uuid.UUID, order_id: str) -> None:
        await self._capable(integration_id, SalesAdapter).confirm_order(order_id)

    async def reject_order(self, integration_id: uuid.UUID, order_id: str, reason: str | None = None) -> None:
        await self._capable(integration_id, SalesAdapter).reject_order(order_id, reason)

    async def mark_order_ready(self, integration_id: uuid.UUID, order_id: str) -> None:
        # Both profiles expose mark_order_ready (order id vs delivery id)
        await self._require(integration_id).adapter.mark_order_ready(order_id)

    async def dispatch_order(self, integration_id: uuid.UUID, order_id: str) -> None:
        await self._capable(integration_id, SalesAdapter).dispatch_order(order_id)

    async def cancel_order(self, integration_id: uuid.UUID, order_id: str, reason: str) -> None:
        await self._capable(integration_id, SalesAdapter).cancel_order(order_id, reason)

    async def sync_catalog(self, integration_id: uuid.UUID, items: list[CatalogItem]) -> int:
        return await self._capable(integration_id, CatalogSync).sync_catalog(items)

    # ── Routing: logistics ────────────────────────────────────────────

    async def get_delivery_quote(self, integration_id: uuid.UUID, request: DeliveryRequest) -> DeliveryQuote:
        return await self._capable(integration_id, LogisticsAdapter).get_delivery_quote(request)

    async def request_delivery(self, integration_id: uuid.UUID, request: DeliveryRequest) -> str:
        return await self._capable(integration_id, LogisticsAdapter).request_delivery(request)

    async def cancel_delivery(self, integration_id: uuid.UUID, delivery_id: str, reason: str | None = None) -> None:
        await self._capable(integration_id, LogisticsAdapter).cancel_delivery(delivery_id, reason)

    async def get_delivery_tracking(self, integration_id: uuid.UUID, delivery_id: str) -> DeliveryTracking:
        return await self._capable(integration_id, LogisticsAdapter).get_delivery_tracking(delivery_id)

    async def confirm_pickup(self, integration_id: uuid.UUID, delivery_id: str) -> None:
        await self._capable(integration_id, PickupConfirmation).confirm_pickup(delivery_id)

    async def confirm_delivery(self, integration_id: uuid.UUID, delivery_id: str) -> None:
        await self._capable(integration_id, PickupConfirmation).confirm_delivery(delivery_id)


def _next_run(job) -> str | None:
    # Jobs added before the scheduler starts have no next_run_time yet
    next_run = getattr(job, "next_run_time", None) if job is not None else None
    return next_run.isoformat() if next_run else None
