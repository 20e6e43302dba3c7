"""
Foody Delivery adapter.

Foody is the inbox-capable platform: orders are pulled by day window,
staged in the inbox and processed into the legacy order, the POS mirror and
the work-time record. The API authenticates with the raw token in the
Authorization header (no Bearer prefix) and filters orders by
``startDate`` / ``endDate`` in ``yyyy-MM-ddTHH:mm:ss-03:00`` form.

Pages hold at most 500 orders; the next page starts one second after the
last order's date.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import AsyncIterator

from core.config import get_settings
from integrations.adapters.common import as_datetime, as_float, as_str
from integrations.base import SalesAdapter
from integrations.errors import ValidationError
from integrations.inbox import IntegrationInbox
from integrations.pipeline import InboxIngestion
from integrations.reconciliation import (
    Milestone,
    TimingInput,
    business_day_bounds,
    history_from_payload,
    parse_timestamp,
)
from integrations.types import (
    Address,
    Customer,
    NormalizedOrder,
    OrderItem,
    OrderStatus,
    OrderSubItem,
    PaymentStatus,
    StaticTokenCredentials,
)

FOODY_PAGE_SIZE = 500

PAYMENT_METHODS = (
    ("dinheiro", "CASH"),
    ("crédito", "CREDIT_CARD"),
    ("credito", "CREDIT_CARD"),
    ("débito", "DEBIT_CARD"),
    ("debito", "DEBIT_CARD"),
    ("pix", "PIX"),
    ("online", "ONLINE"),
)


def business_tz() -> timezone:
    return timezone(timedelta(hours=get_settings().business_utc_offset_hours))


def format_foody_datetime(value: datetime) -> str:
    """Render in the business offset, seconds precision: 2025-12-01T00:00:00-03:00."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(business_tz()).isoformat(timespec="seconds")


def day_window(day) -> tuple[str, str]:
    """Whole business day as a (start, end) pair of Foody filter strings."""
    start, end = business_day_bounds(day, get_settings().business_utc_offset_hours)
    return start.isoformat(timespec="seconds"), end.isoformat(timespec="seconds")


def map_payment_method(method: str | None) -> str:
    if not method:
        return "UNKNOWN"
    lower = method.lower()
    for needle, mapped in PAYMENT_METHODS:
        if needle in lower:
            return mapped
    return "OTHER"


class FoodyAdapter(SalesAdapter, InboxIngestion):
    platform_name = "foody"
    credentials_cls = StaticTokenCredentials
    sandbox_url = "https://app.foodydelivery.com/rest/1.2"
    production_url = "https://app.foodydelivery.com/rest/1.2"
    inbox_provider = "FOODY"
    sales_channel = "APP_PROPRIO"
    # Fixed by the Foody API; a full page means more may follow
    page_size = FOODY_PAGE_SIZE

    STATUS_FROM_PLATFORM = {
        "pending": OrderStatus.PENDING,
        "visualized": OrderStatus.PENDING,
        "accepted": OrderStatus.CONFIRMED,
        "dispatching": OrderStatus.READY,
        "dispatched": OrderStatus.DISPATCHED,
        "delivered": OrderStatus.DELIVERED,
        "closed": OrderStatus.DELIVERED,
        "cancelled": OrderStatus.CANCELLED,
    }
    STATUS_TO_PLATFORM = {
        OrderStatus.PENDING: "Pending",
        OrderStatus.CONFIRMED: "Accepted",
        OrderStatus.PREPARING: "Accepted",
        OrderStatus.READY: "Dispatching",
        OrderStatus.DISPATCHED: "Dispatched",
        OrderStatus.DELIVERED: "Delivered",
        OrderStatus.CANCELLED: "Cancelled",
    }
    PLATFORM_PENDING_STATUS = "Pending"

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": self.credentials.api_token}

    async def _probe(self) -> None:
        start, end = day_window(datetime.now(business_tz()).date())
        await self.fetch_orders_batch(start, end)

    # ── Pulling ───────────────────────────────────────────────────────

    async def fetch_orders_batch(self, start: str, end: str) -> list[dict]:
        data = await self._request("GET", "/orders", params={"startDate": start, "endDate": end})
        if isinstance(data, dict):
            return list(data.get("orders") or [])
        return list(data or [])

    async def iter_order_pages(self, start: str, end: str) -> AsyncIterator[list[dict]]:
        """Yield raw pages until a short page or a page without a usable last date."""
        while True:
            page = await self.fetch_orders_batch(start, end)
            if not page:
                return
            yield page
            if len(page) < self.page_size:
                return
            last_date = parse_timestamp(page[-1].get("date"))
            if last_date is None:
                self.logger.warning("foody.pagination.missing_date", start=start)
                return
            start = format_foody_datetime(last_date + timedelta(seconds=1))

    async def fetch_orders(self, since: datetime | None = None) -> list[NormalizedOrder]:
        start, end = self._window(since, None)
        orders: list[NormalizedOrder] = []
        async for page in self.iter_order_pages(start, end):
            orders.extend(self._normalize_order(raw) for raw in page)
        return orders

    async def ingest_orders(
        self,
        inbox: IntegrationInbox,
        since: datetime | None = None,
        until: datetime | None = None,
        event: str = "order.pull",
    ) -> int:
        start, end = self._window(since, until)
        staged = 0
        async for page in self.iter_order_pages(start, end):
            for raw in page:
                if not self._external_id(raw):
                    self.logger.warning("foody.order.without_id", payload=str(raw)[:100])
                    continue
                await self.stage(inbox, raw, event=event)
                staged += 1
        self.logger.info("foody.orders.staged", count=staged, start=start, end=end)
        return staged

    def _window(self, since: datetime | None, until: datetime | None) -> tuple[str, str]:
        today = datetime.now(business_tz()).date()
        start = format_foody_datetime(since) if since else day_window(today)[0]
        end = format_foody_datetime(until) if until else day_window(today)[1]
        return start, end

    async def get_order_details(self, order_id: str) -> NormalizedOrder:
        return self._normalize_order(await self._request("GET", f"/orders/{order_id}"))

    # ── Order actions ─────────────────────────────────────────────────

    async def confirm_order(self, order_id: str) -> None:
        await self._request("POST", f"/orders/{order_id}/confirm")

    async def reject_order(self, order_id: str, reason: str | None = None) -> None:
        await self._request("POST", f"/orders/{order_id}/reject", json={"reason": reason})

    async def mark_order_ready(self, order_id: str) -> None:
        await self._request("POST", f"/orders/{order_id}/ready")

    async def dispatch_order(self, order_id: str) -> None:
        await self._request("POST", f"/orders/{order_id}/dispatch")

    async def cancel_order(self, order_id: str, reason: str) -> None:
        await self._request("POST", f"/orders/{order_id}/cancel", json={"reason": reason})

    # ── Normalization ─────────────────────────────────────────────────

    def _external_id(self, raw: dict) -> str | None:
        return as_str(raw.get("id")) or as_str(raw.get("uid"))

    def _timing_input(self, raw: dict) -> TimingInput:
        arrived_at = parse_timestamp(raw.get("date"))
        if arrived_at is None:
            raise ValidationError(f"Foody order {self._external_id(raw)} has no arrival date")
        return TimingInput(
            arrived_at=arrived_at,
            history=history_from_payload(raw.get("statusHistory")),
            explicit={
                Milestone.READY: parse_timestamp(raw.get("readyDate")),
                # collectedDate is the rider pickup; dispatchDate is the older field for it
                Milestone.PICKED_UP: parse_timestamp(raw.get("collectedDate")) or parse_timestamp(raw.get("dispatchDate")),
                Milestone.DELIVERED: parse_timestamp(raw.get("deliveryDate")),
            },
        )

    def _normalize_order(self, native: dict) -> NormalizedOrder:
        external_id = self._external_id(native)
        if not external_id:
            raise ValidationError("Foody order without id or uid")
        created_at = parse_timestamp(native.get("date"))
        if created_at is None:
            raise ValidationError(f"Foody order {external_id} has no arrival date")

        total = as_float(native.get("orderTotal"))
        delivery_fee = as_float(native.get("deliveryFee"))
        discount = as_float(native.get("discount"))
        customer = native.get("customer") or {}

        items = [
            OrderItem(
                name=item.get("name") or "",
                quantity=as_float(item.get("quantity"), 1),
                unit_price=as_float(item.get("price")),
                total_price=as_float(item.get("price")) * as_float(item.get("quantity"), 1),
                observations=item.get("observation"),
                sub_items=[
                    OrderSubItem(
                        name=sub.get("name") or "",
                        quantity=as_float(sub.get("quantity"), 1),
                        price=as_float(sub.get("price")),
                    )
                    for sub in item.get("subItems") or []
                ],
            )
            for item in native.get("items") or []
        ]
        details = native.get("orderDetails")
        if not items and details:
            # Some accounts only send a free-text summary of the order
            items = [
                OrderItem(
                    external_id="summary",
                    name=details[:50].replace("\n", " "),
                    quantity=1,
                    unit_price=total,
                    total_price=total,
                    observations=details,
                )
            ]

        point = native.get("deliveryPoint") or {}
        address = None
        if native.get("isDelivery"):
            address = Address(
                street=point.get("street") or "",
                number=point.get("houseNumber") or "",
                neighborhood=point.get("neighborhood") or "",
                city=point.get("city") or "",
                zip_code=point.get("postalCode") or "",
                complement=point.get("complement"),
            )

        order = NormalizedOrder(
            id=as_str(native.get("visualId")) or external_id,
            external_id=external_id,
            platform=self.platform_name,
            status=self._map_status_from_platform(native.get("status")),
            customer=Customer(
                name=customer.get("customerName") or "Cliente Foody",
                phone=customer.get("customerPhone") or None,
            ),
            delivery_address=address,
            items=items,
            # Foody only reports the grand total; subtotal is derived from it
            subtotal=total - delivery_fee + discount,
            delivery_fee=delivery_fee,
            discount=discount,
            total=total,
            payment_method=map_payment_method(native.get("paymentMethod")),
            payment_status=PaymentStatus.PENDING,
            order_type="DELIVERY" if native.get("isDelivery", True) else "TAKEOUT",
            observations=native.get("notes") or details,
            created_at=created_at,
            ready_at=as_datetime(native.get("readyDate")),
            dispatched_at=as_datetime(native.get("collectedDate") or native.get("dispatchDate")),
            delivered_at=as_datetime(native.get("deliveryDate")),
        )
        return self._checked(order)
