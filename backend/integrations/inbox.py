"""
Integration Inbox — durable staging of raw inbound payloads.

Every payload pulled from or pushed by a platform is written here as PENDING
before any processing, so a crash between receipt and persistence loses
nothing and any item can be replayed.

State machine:
    PENDING ──► PROCESSED   (terminal)
            ──► FAILED      (retries_count + 1, message truncated)
            ──► IGNORED     (terminal; heartbeats, irrelevant events)
    PROCESSED | FAILED | IGNORED ──► PENDING   only through reopen()

Writes are append-only; duplicates of the same external order are expected
and absorbed downstream by the order store's upsert keys.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from core.config import Settings, get_settings
from db.models import InboxItem
from integrations.errors import InboxItemNotFoundError, InboxTransitionError, PersistenceError
from integrations.types import InboxStatus, NormalizedOrder

logger = structlog.get_logger()

TERMINAL_STATUSES = {InboxStatus.PROCESSED.value, InboxStatus.FAILED.value, InboxStatus.IGNORED.value}


@dataclass
class InboxPage:
    items: list[InboxItem]
    total: int
    page: int
    page_size: int
    total_pages: int


class IntegrationInbox:
    def __init__(self, session_factory, settings: Settings | None = None):
        self._session_factory = session_factory
        self._settings = settings or get_settings()

    # ── Receipt ───────────────────────────────────────────────────────

    async def log_ingestion(
        self,
        integration_id: uuid.UUID,
        source: str,
        raw_payload: dict[str, Any],
        event: str | None = None,
        external_id: str | None = None,
        correlation_id: str | None = None,
    ) -> InboxItem:
        item = InboxItem(
            id=uuid.uuid4(),
            integration_id=integration_id,
            source=source,
            event=event,
            external_id=str(external_id) if external_id is not None else None,
            raw_payload=raw_payload,
            correlation_id=correlation_id or str(uuid.uuid4()),
            status=InboxStatus.PENDING.value,
            retries_count=0,
            received_at=datetime.utcnow(),
        )
        try:
            async with self._session_factory() as session:
                session.add(item)
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not stage inbox item: {exc}") from exc

        logger.info(
            "inbox.item.received",
            item_id=str(item.id),
            integration_id=str(integration_id),
            source=source,
            inbox_event=event,
            external_id=item.external_id,
            correlation_id=item.correlation_id,
        )
        return item

    # ── Transitions ───────────────────────────────────────────────────

    async def mark_processed(self, item_id: uuid.UUID, parsed_payload: NormalizedOrder | dict | None = None) -> InboxItem:
        if isinstance(parsed_payload, NormalizedOrder):
            parsed_payload = parsed_payload.to_dict()

        def apply(item: InboxItem) -> None:
            item.status = InboxStatus.PROCESSED.value
            item.processed_at = datetime.utcnow()
            item.error_message = None
            if parsed_payload is not None:
                item.parsed_payload = parsed_payload

        item = await self._transition(item_id, InboxStatus.PROCESSED, apply)
        logger.info("inbox.item.processed", item_id=str(item_id), integration_id=str(item.integration_id))
        return item

    async def mark_failed(self, item_id: uuid.UUID, message: str) -> InboxItem:
        limit = self._settings.inbox_error_max_length
        truncated = (message or "")[:limit]

        def apply(item: InboxItem) -> None:
            item.status = InboxStatus.FAILED.value
            item.error_message = truncated
            item.retries_count = (item.retries_count or 0) + 1
            item.processed_at = datetime.utcnow()

        item = await self._transition(item_id, InboxStatus.FAILED, apply)
        logger.warning(
            "inbox.item.failed",
            item_id=str(item_id),
            integration_id=str(item.integration_id),
            retries_count=item.retries_count,
            error=truncated,
        )
        return item

    async def mark_ignored(self, item_id: uuid.UUID, reason: str | None = None) -> InboxItem:
        limit = self._settings.inbox_error_max_length

        def apply(item: InboxItem) -> None:
            item.status = InboxStatus.IGNORED.value
            item.processed_at = datetime.utcnow()
            item.error_message = reason[:limit] if reason else None

        item = await self._transition(item_id, InboxStatus.IGNORED, apply)
        logger.info("inbox.item.ignored", item_id=str(item_id), reason=reason)
        return item

    async def reopen(self, item_id: uuid.UUID) -> InboxItem:
        """Explicit reprocess path: a terminal item goes back to PENDING.

        The retry count is left untouched; only a new failure increments it.
        """

        def apply(item: InboxItem) -> None:
            item.status = InboxStatus.PENDING.value
            item.processed_at = None

        item = await self._transition(item_id, InboxStatus.PENDING, apply, allowed_from=TERMINAL_STATUSES)
        logger.info("inbox.item.reopened", item_id=str(item_id), retries_count=item.retries_count)
        return item

    async def _transition(self, item_id, target: InboxStatus, apply, allowed_from=None) -> InboxItem:
        allowed_from = allowed_from or {InboxStatus.PENDING.value}
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(InboxItem).where(InboxItem.id == item_id).with_for_update())
                item = result.scalar_one_or_none()
                if item is None:
                    raise InboxItemNotFoundError(item_id)
                if item.status not in allowed_from:
                    raise InboxTransitionError(item_id, item.status, target.value)
                apply(item)
                await session.commit()
                return item
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not update inbox item {item_id}: {exc}") from exc

    # ── Queries ───────────────────────────────────────────────────────

    async def get_item(self, item_id: uuid.UUID) -> InboxItem:
        async with self._session_factory() as session:
            item = await session.get(InboxItem, item_id)
        if item is None:
            raise InboxItemNotFoundError(item_id)
        return item

    async def get_pending_items(self, integration_id: uuid.UUID, limit: int = 10) -> list[InboxItem]:
        """Oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(InboxItem)
                .where(
                    InboxItem.integration_id == integration_id,
                    InboxItem.status == InboxStatus.PENDING.value,
                )
                .order_by(InboxItem.received_at.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def list_items(
        self,
        integration_id: uuid.UUID | None = None,
        status: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        page: int = 1,
        page_size: int | None = None,
    ) -> InboxPage:
        page = max(page, 1)
        page_size = page_size or self._settings.inbox_page_size_default

        filters = []
        if integration_id is not None:
            filters.append(InboxItem.integration_id == integration_id)
        if status:
            filters.append(InboxItem.status == status.upper())
        if start_date is not None:
            filters.append(InboxItem.received_at >= start_date)
        if end_date is not None:
            filters.append(InboxItem.received_at <= end_date)

        async with self._session_factory() as session:
            total = await session.scalar(select(func.count()).select_from(InboxItem).where(*filters))
            result = await session.execute(
                select(InboxItem)
                .where(*filters)
                .order_by(InboxItem.received_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            items = list(result.scalars().all())

        total = total or 0
        return InboxPage(
            items=items,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size) if total else 0,
        )

    async def count_by_status(self, integration_id: uuid.UUID) -> dict[str, int]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(InboxItem.status, func.count())
                .where(InboxItem.integration_id == integration_id)
                .group_by(InboxItem.status)
            )
            counts = {status: count for status, count in result.all()}
        return {status.value: counts.get(status.value, 0) for status in InboxStatus}
