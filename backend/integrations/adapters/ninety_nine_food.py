"""99Food marketplace adapter (static bearer token)."""

from __future__ import annotations

from datetime import datetime

from integrations.adapters.common import address_from, as_datetime, as_float, as_str
from integrations.base import SalesAdapter
from integrations.types import (
    Coordinates,
    Customer,
    NormalizedOrder,
    OrderItem,
    OrderStatus,
    OrderSubItem,
    PaymentStatus,
    StaticTokenCredentials,
)


class NinetyNineFoodAdapter(SalesAdapter):
    platform_name = "99food"
    credentials_cls = StaticTokenCredentials
    sandbox_url = "https://api.99app.com/food/v1"
    production_url = "https://api.99app.com/food/v1"

    STATUS_FROM_PLATFORM = {status.value: status for status in OrderStatus}
    STATUS_TO_PLATFORM = {status: status.value.upper() for status in OrderStatus}

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.credentials.api_token}"}

    async def _probe(self) -> None:
        await self._request("GET", "/merchants/me")

    async def fetch_orders(self, since: datetime | None = None) -> list[NormalizedOrder]:
        params = {"since": since.isoformat()} if since else None
        data = await self._request("GET", "/orders", params=params)
        return [self._normalize_order(order) for order in data.get("orders") or []]

    async def get_order_details(self, order_id: str) -> NormalizedOrder:
        return self._normalize_order(await self._request("GET", f"/orders/{order_id}"))

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

    def _normalize_order(self, native: dict) -> NormalizedOrder:
        customer = native.get("customer") or {}
        pricing = native.get("pricing") or {}
        payment = native.get("payment") or {}
        raw_address = (native.get("delivery") or {}).get("address")
        address = address_from(raw_address)
        if address is not None and raw_address.get("latitude") is not None:
            address.coordinates = Coordinates(
                latitude=as_float(raw_address.get("latitude")),
                longitude=as_float(raw_address.get("longitude")),
            )

        order = NormalizedOrder(
            id=as_str(native.get("id")) or "",
            external_id=as_str(native.get("id")) or "",
            platform=self.platform_name,
            restaurant_id=as_str((native.get("merchant") or {}).get("id")),
            status=self._map_status_from_platform(native.get("status")),
            customer=Customer(
                name=customer.get("name") or "",
                phone=customer.get("phone"),
                document=customer.get("cpf"),
            ),
            delivery_address=address,
            items=[
                OrderItem(
                    external_id=as_str(item.get("id")),
                    name=item.get("name") or "",
                    quantity=as_float(item.get("quantity"), 1),
                    unit_price=as_float(item.get("unitPrice")),
                    total_price=as_float(item.get("totalPrice")),
                    observations=item.get("notes"),
                    sub_items=[
                        OrderSubItem(name=c.get("name") or "", price=as_float(c.get("price")))
                        for c in item.get("complements") or []
                    ],
                )
                for item in native.get("items") or []
            ],
            subtotal=as_float(pricing.get("subtotal")),
            delivery_fee=as_float(pricing.get("deliveryFee")),
            discount=as_float(pricing.get("discount")),
            total=as_float(pricing.get("total")),
            payment_method=payment.get("method") or "unknown",
            payment_status=PaymentStatus.PAID if payment.get("status") == "PAID" else PaymentStatus.PENDING,
            observations=native.get("notes"),
            created_at=as_datetime(native.get("createdAt")),
        )
        return self._checked(order)
