"""
Order Store — idempotent persistence of ingested orders.

One processed payload touches up to three tables inside one transaction:

  orders             legacy logistics view, keyed (cost_center, external_id, provider)
  pdv_orders         POS mirror, keyed (cost_center, code); history row on status change
  work_time_orders   operational timing, keyed (restaurant, provider, provider_order_id)

Every write is select-by-key then update-or-insert, so replaying the same
payload any number of times converges to the same rows. Timestamps are
monotonically refined: an incoming None never clears a stored value unless
the reconciliation invalidated the timing signal.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.config import Settings, get_settings
from db.models import Order, PdvOrder, PdvOrderStatusHistory, WorkTimeOrder
from integrations.errors import PersistenceError
from integrations.reconciliation import (
    Milestone,
    ReconciledTimes,
    classify_workday,
    parse_timestamp,
    reconcile,
    to_naive_utc,
)
from integrations.types import NormalizedOrder, OrderStatus

logger = structlog.get_logger()

KEYED_WRITE_ATTEMPTS = 2

PDV_STATUS_BY_ORDER_STATUS = {
    OrderStatus.PENDING: "NEW",
    OrderStatus.CONFIRMED: "PREPARING",
    OrderStatus.PREPARING: "PREPARING",
    OrderStatus.READY: "READY",
    OrderStatus.DISPATCHED: "OUT_FOR_DELIVERY",
    OrderStatus.DELIVERED: "COMPLETED",
    OrderStatus.CANCELLED: "CANCELLED",
}


def pdv_status_for(status: OrderStatus) -> str:
    return PDV_STATUS_BY_ORDER_STATUS.get(status, "NEW")


@dataclass
class UpsertOutcome:
    order_created: bool
    pdv_status_changed: bool
    times: ReconciledTimes


class OrderStore:
    def __init__(self, session_factory, settings: Settings | None = None):
        self._session_factory = session_factory
        self._settings = settings or get_settings()

    async def upsert_ingested_order(
        self,
        order: NormalizedOrder,
        times: ReconciledTimes,
        *,
        provider: str,
        cost_center_id: uuid.UUID,
        organization_id: uuid.UUID | None = None,
        integration_id: uuid.UUID | None = None,
        raw_payload: dict[str, Any] | None = None,
        sales_channel: str | None = None,
    ) -> UpsertOutcome:
        """Write the legacy order, the POS mirror and the work-time record."""
        provider = provider.upper()

        async def write(session):
            created, merged = await self._upsert_legacy_order(
                session, order, times, provider, cost_center_id, organization_id, integration_id, raw_payload
            )
            changed = await self._upsert_pdv(
                session, order, merged, cost_center_id, organization_id, raw_payload, sales_channel or provider
            )
            await self._upsert_work_time(session, order, merged, provider, cost_center_id, raw_payload)
            return created, merged, changed

        created, merged, changed = await self._write_keyed(write, order.external_id)

        logger.info(
            "orders.upserted",
            provider=provider,
            external_id=order.external_id,
            created=created,
            status_changed=changed,
            invalidated=merged.invalidated,
        )
        return UpsertOutcome(order_created=created, pdv_status_changed=changed, times=merged)

    async def upsert_pdv_order(
        self,
        order: NormalizedOrder,
        *,
        cost_center_id: uuid.UUID,
        organization_id: uuid.UUID | None = None,
        sales_channel: str | None = None,
    ) -> bool:
        """POS mirror only, for adapters synced without the inbox. Returns status_changed."""
        times = ReconciledTimes(
            arrived_at=parse_timestamp(order.created_at),
            ready_at=parse_timestamp(order.ready_at),
            delivered_at=parse_timestamp(order.delivered_at),
        )

        async def write(session):
            return await self._upsert_pdv(
                session,
                order,
                times,
                cost_center_id,
                organization_id,
                None,
                sales_channel or order.platform.upper(),
            )

        return await self._write_keyed(write, order.external_id)

    async def _write_keyed(self, write, external_id: str):
        """Run write(session) in one transaction.

        A concurrent writer can insert the same key between our select and our
        insert. The transaction is then rolled back and replayed once, and the
        replay's select finds the other writer's row and updates it.
        """
        for attempt in range(1, KEYED_WRITE_ATTEMPTS + 1):
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        return await write(session)
            except IntegrityError as exc:
                if attempt == KEYED_WRITE_ATTEMPTS:
                    raise PersistenceError(f"Could not persist order {external_id}: {exc}") from exc
                logger.info("orders.upsert.key_race", external_id=external_id, attempt=attempt)
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Could not persist order {external_id}: {exc}") from exc

    # ── Table writers ─────────────────────────────────────────────────

    async def _upsert_legacy_order(
        self, session, order, times, provider, cost_center_id, organization_id, integration_id, raw_payload
    ) -> tuple[bool, ReconciledTimes]:
        result = await session.execute(
            select(Order).where(
                Order.cost_center_id == cost_center_id,
                Order.external_id == order.external_id,
                Order.logistics_provider == provider,
            )
        )
        row = result.scalar_one_or_none()
        created = row is None
        if created:
            row = Order(
                cost_center_id=cost_center_id,
                organization_id=organization_id,
                integration_id=integration_id,
                external_id=order.external_id,
                logistics_provider=provider,
                order_datetime=to_naive_utc(times.arrived_at),
                customer_name=order.customer.name,
                delivery_address=order.delivery_address.one_line() if order.delivery_address else None,
            )
            session.add(row)

        merged = _refine(_times_from_row(row) if not created else None, times)
        row.ready_datetime = to_naive_utc(merged.ready_at)
        row.out_for_delivery_datetime = to_naive_utc(merged.picked_up_at)
        row.delivered_datetime = to_naive_utc(merged.delivered_at)
        row.prep_time = merged.prep_time
        row.pickup_time = merged.pickup_time
        row.delivery_time = merged.delivery_time
        row.total_time = merged.total_time
        row.order_value = order.total
        row.order_metadata = raw_payload
        await session.flush()
        return created, merged

    async def _upsert_pdv(
        self, session, order, times, cost_center_id, organization_id, raw_payload, sales_channel
    ) -> bool:
        status = pdv_status_for(order.status)
        result = await session.execute(
            select(PdvOrder).where(PdvOrder.cost_center_id == cost_center_id, PdvOrder.code == order.external_id)
        )
        row = result.scalar_one_or_none()
        previous = row.status if row is not None else None
        if row is None:
            row = PdvOrder(
                cost_center_id=cost_center_id,
                organization_id=organization_id,
                code=order.external_id,
                order_type=order.order_type,
                sales_channel=sales_channel,
                created_at=to_naive_utc(times.arrived_at),
            )
            session.add(row)

        row.status = status
        row.customer_name = order.customer.name
        row.customer_phone = order.customer.phone
        row.subtotal = order.subtotal
        row.delivery_fee = order.delivery_fee
        row.discount = order.discount
        row.total = order.total
        if times.invalidated:
            row.ready_at = None
            row.delivered_at = None
        else:
            row.ready_at = to_naive_utc(times.ready_at) or row.ready_at
            row.delivered_at = to_naive_utc(times.delivered_at) or row.delivered_at
        if raw_payload is not None:
            row.order_metadata = raw_payload
        await session.flush()

        changed = previous != status
        if changed:
            session.add(PdvOrderStatusHistory(pdv_order_id=row.pdv_order_id, from_status=previous, to_status=status))
        return changed

    async def _upsert_work_time(self, session, order, times, provider, cost_center_id, raw_payload) -> None:
        result = await session.execute(
            select(WorkTimeOrder).where(
                WorkTimeOrder.restaurant_id == cost_center_id,
                WorkTimeOrder.provider == provider,
                WorkTimeOrder.provider_order_id == order.external_id,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            info = classify_workday(
                times.arrived_at,
                self._settings.business_utc_offset_hours,
                self._settings.night_shift_start_hour,
            )
            row = WorkTimeOrder(
                restaurant_id=cost_center_id,
                provider=provider,
                provider_order_id=order.external_id,
                order_date=to_naive_utc(times.arrived_at),
                arrived_at=to_naive_utc(times.arrived_at),
                shift=info.shift.value,
                workday=info.workday,
            )
            session.add(row)

        # times is already merged with the legacy row, which shares the key space
        row.ready_at = to_naive_utc(times.ready_at)
        row.picked_up_at = to_naive_utc(times.picked_up_at)
        row.delivered_at = to_naive_utc(times.delivered_at)
        row.raw_payload = raw_payload
        await session.flush()


def _times_from_row(row: Order) -> ReconciledTimes:
    times = ReconciledTimes(
        arrived_at=parse_timestamp(row.order_datetime),
        ready_at=parse_timestamp(row.ready_datetime),
        picked_up_at=parse_timestamp(row.out_for_delivery_datetime),
        delivered_at=parse_timestamp(row.delivered_datetime),
        prep_time=row.prep_time,
        pickup_time=row.pickup_time,
        delivery_time=row.delivery_time,
        total_time=row.total_time,
    )
    return times


def _refine(stored: ReconciledTimes | None, incoming: ReconciledTimes) -> ReconciledTimes:
    """Merge incoming milestones over stored ones, then recompute durations."""
    if incoming.invalidated or stored is None:
        return incoming
    return reconcile(
        incoming.arrived_at,
        explicit={
            Milestone.READY: incoming.ready_at or stored.ready_at,
            Milestone.PICKED_UP: incoming.picked_up_at or stored.picked_up_at,
            Milestone.DELIVERED: incoming.delivered_at or stored.delivered_at,
        },
    )
