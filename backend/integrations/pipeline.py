"""
Inbox processing pipeline.

    platform ──ingest_orders()──► inbox (PENDING)
    inbox ──process_payload()──► normalize → reconcile → OrderStore upserts
                                 └──► PROCESSED | IGNORED | FAILED

InboxIngestion is the optional adapter capability; drain_pending() and
process_item() are shared by the manager, the webhook route and the Celery
drain task so every path marks items the same way.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, ClassVar

import structlog

from db.models import InboxItem
from db.order_store import OrderStore
from integrations.errors import ConfigurationError, InboxTransitionError, IntegrationError
from integrations.inbox import IntegrationInbox
from integrations.reconciliation import TimingInput, aliases_for, reconcile
from integrations.types import InboxStatus, NormalizedOrder, RawPayload

logger = structlog.get_logger()


class InboxIngestion(ABC):
    """Capability mixin for adapters whose orders go through the inbox."""

    # Provider tag written to the order tables (logistics_provider / provider)
    inbox_provider: ClassVar[str]
    sales_channel: ClassVar[str | None] = None

    @abstractmethod
    async def ingest_orders(
        self,
        inbox: IntegrationInbox,
        since: datetime | None = None,
        until: datetime | None = None,
        event: str = "order.pull",
    ) -> int:
        """Fetch native orders and stage each one as a PENDING inbox item."""

    @abstractmethod
    def _timing_input(self, raw: RawPayload) -> TimingInput: ...

    @abstractmethod
    def _external_id(self, raw: RawPayload) -> str | None: ...

    def is_relevant(self, raw: RawPayload) -> bool:
        """False for heartbeats and events that carry no order."""
        return bool(self._external_id(raw))

    async def stage(self, inbox: IntegrationInbox, raw: RawPayload, event: str | None = None) -> InboxItem:
        return await inbox.log_ingestion(
            integration_id=self.config.integration_id,
            source=self.platform_name,
            raw_payload=raw,
            event=event,
            external_id=self._external_id(raw),
        )

    async def process_payload(self, item: InboxItem, store: OrderStore) -> NormalizedOrder | None:
        """Normalize, reconcile and upsert one staged payload.

        Safe to call any number of times for the same item. Returns None when
        the payload is irrelevant and should be ignored.
        """
        raw = item.raw_payload
        if not isinstance(raw, dict) or not self.is_relevant(raw):
            return None
        if self.config.cost_center_id is None:
            raise ConfigurationError(f"{self.platform_name} integration has no cost center")

        order = self._normalize_order(raw)
        timing = self._timing_input(raw)
        times = reconcile(timing.arrived_at, timing.history, timing.explicit, aliases_for(self.platform_name))

        await store.upsert_ingested_order(
            order,
            times,
            provider=self.inbox_provider,
            cost_center_id=self.config.cost_center_id,
            organization_id=self.config.organization_id,
            integration_id=self.config.integration_id,
            raw_payload=raw,
            sales_channel=self.sales_channel,
        )
        return order


@dataclass
class DrainResult:
    processed: int = 0
    ignored: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.processed + self.ignored + self.failed


async def process_item(adapter: InboxIngestion, inbox: IntegrationInbox, store: OrderStore, item: InboxItem) -> InboxStatus:
    """Run process_payload for one PENDING item and record the outcome on it.

    Another worker may finalize the same item first (a poll tick and the
    Celery drain overlap). The upsert converges either way, so a lost race on
    the final mark reports the status the other worker recorded.
    """
    try:
        order = await adapter.process_payload(item, store)
    except IntegrationError as exc:
        return await _finalize(inbox.mark_failed(item.id, str(exc)), item, InboxStatus.FAILED)
    except Exception as exc:
        logger.exception("inbox.item.unexpected_error", item_id=str(item.id))
        return await _finalize(inbox.mark_failed(item.id, f"{type(exc).__name__}: {exc}"), item, InboxStatus.FAILED)

    if order is None:
        return await _finalize(inbox.mark_ignored(item.id, "No order in payload"), item, InboxStatus.IGNORED)
    return await _finalize(inbox.mark_processed(item.id, order), item, InboxStatus.PROCESSED)


async def _finalize(mark: Awaitable[InboxItem], item: InboxItem, outcome: InboxStatus) -> InboxStatus:
    try:
        await mark
    except InboxTransitionError as exc:
        logger.info(
            "inbox.item.already_handled",
            item_id=str(item.id),
            current=exc.current,
            wanted=exc.target,
        )
        return InboxStatus(exc.current)
    return outcome


async def drain_pending(
    adapter: InboxIngestion,
    inbox: IntegrationInbox,
    store: OrderStore,
    integration_id: uuid.UUID,
    batch_size: int = 10,
) -> DrainResult:
    """Process PENDING items oldest first, batch by batch, until none remain."""
    result = DrainResult()
    while True:
        batch = await inbox.get_pending_items(integration_id, limit=batch_size)
        if not batch:
            break
        for item in batch:
            outcome = await process_item(adapter, inbox, store, item)
            if outcome is InboxStatus.PROCESSED:
                result.processed += 1
            elif outcome is InboxStatus.IGNORED:
                result.ignored += 1
            else:
                result.failed += 1
                result.errors.append(str(item.id))

    logger.info(
        "inbox.drain.completed",
        integration_id=str(integration_id),
        processed=result.processed,
        ignored=result.ignored,
        failed=result.failed,
    )
    return result
