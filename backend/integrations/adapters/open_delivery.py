"""
Open Delivery standard adapters.

Neemo, Cardápio Web, AnotaAi and Consumer all speak the Open Delivery order
format; subclasses only pin the platform id and host.
"""

from __future__ import annotations

from datetime import datetime

from integrations.adapters.common import address_from, as_datetime, as_float, as_str
from integrations.base import SalesAdapter
from integrations.types import (
    Customer,
    NormalizedOrder,
    OrderItem,
    OrderStatus,
    OrderSubItem,
    PaymentStatus,
    StaticTokenCredentials,
)

ORDER_TYPES = {"DELIVERY": "DELIVERY", "TAKEOUT": "TAKEOUT", "INDOOR": "DINE_IN"}


class OpenDeliveryAdapter(SalesAdapter):
    credentials_cls = StaticTokenCredentials

    STATUS_FROM_PLATFORM = {
        "created": OrderStatus.PENDING,
        "pending": OrderStatus.PENDING,
        "confirmed": OrderStatus.CONFIRMED,
        "in_preparation": OrderStatus.PREPARING,
        "ready_to_pickup": OrderStatus.READY,
        "ready_for_pickup": OrderStatus.READY,
        "dispatched": OrderStatus.DISPATCHED,
        "concluded": OrderStatus.DELIVERED,
        "delivered": OrderStatus.DELIVERED,
        "cancelled": OrderStatus.CANCELLED,
    }
    STATUS_TO_PLATFORM = {
        OrderStatus.PENDING: "PENDING",
        OrderStatus.CONFIRMED: "CONFIRMED",
        OrderStatus.PREPARING: "IN_PREPARATION",
        OrderStatus.READY: "READY_TO_PICKUP",
        OrderStatus.DISPATCHED: "DISPATCHED",
        OrderStatus.DELIVERED: "CONCLUDED",
        OrderStatus.CANCELLED: "CANCELLED",
    }

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.credentials.api_token}"}

    async def _probe(self) -> None:
        await self._request("GET", "/merchants/me")

    async def fetch_orders(self, since: datetime | None = None) -> list[NormalizedOrder]:
        params = {"createdAfter": since.isoformat()} if since else None
        orders = await self._request("GET", "/orders", params=params)
        return [self._normalize_order(order) for order in orders or []]

    async def get_order_details(self, order_id: str) -> NormalizedOrder:
        return self._normalize_order(await self._request("GET", f"/orders/{order_id}"))

    async def confirm_order(self, order_id: str) -> None:
        await self._request("POST", f"/orders/{order_id}/confirm")

    async def reject_order(self, order_id: str, reason: str | None = None) -> None:
        await self._request("POST", f"/orders/{order_id}/reject", json={"reason": reason})

    async def mark_order_ready(self, order_id: str) -> None:
        await self._request("POST", f"/orders/{order_id}/readyToPickup")

    async def dispatch_order(self, order_id: str) -> None:
        await self._request("POST", f"/orders/{order_id}/dispatch")

    async def cancel_order(self, order_id: str, reason: str) -> None:
        await self._request("POST", f"/orders/{order_id}/cancel", json={"reason": reason})

    def _normalize_order(self, native: dict) -> NormalizedOrder:
        customer = native.get("customer") or {}
        total = native.get("total") or {}
        payments = native.get("payments") or {}
        methods = payments.get("methods") or [{}]
        delivery = native.get("delivery") or {}

        order = NormalizedOrder(
            id=as_str(native.get("id")) or "",
            external_id=as_str(native.get("id")) or "",
            platform=self.platform_name,
            status=self._map_status_from_platform(native.get("status")),
            customer=Customer(
                name=customer.get("name") or "",
                phone=customer.get("phone"),
                document=customer.get("documentNumber"),
            ),
            delivery_address=address_from(
                delivery.get("deliveryAddress"),
                street="streetName",
                number="streetNumber",
                zip_code="postalCode",
            ),
            items=[
                OrderItem(
                    external_id=as_str(item.get("id")),
                    name=item.get("name") or "",
                    quantity=as_float(item.get("quantity"), 1),
                    unit_price=as_float(item.get("unitPrice")),
                    total_price=as_float(item.get("totalPrice")),
                    observations=item.get("observations"),
                    sub_items=[
                        OrderSubItem(
                            name=sub.get("name") or "",
                            quantity=as_float(sub.get("quantity"), 1),
                            price=as_float(sub.get("unitPrice")),
                        )
                        for sub in item.get("subItems") or []
                    ],
                )
                for item in native.get("items") or []
            ],
            subtotal=as_float(total.get("itemsPrice")),
            delivery_fee=as_float(total.get("deliveryFee")),
            discount=as_float(total.get("discount")),
            total=as_float(total.get("orderAmount")),
            payment_method=methods[0].get("type") or "unknown",
            payment_status=PaymentStatus.PENDING if as_float(payments.get("pending")) > 0 else PaymentStatus.PAID,
            order_type=ORDER_TYPES.get(str(native.get("orderType") or "").upper(), "DELIVERY"),
            observations=native.get("additionalInfo"),
            created_at=as_datetime(native.get("createdAt")),
        )
        return self._checked(order)


class NeemoAdapter(OpenDeliveryAdapter):
    platform_name = "neemo"
    sandbox_url = production_url = "https://deliveryapp.neemo.com.br/api/connect"


class CardapioWebAdapter(OpenDeliveryAdapter):
    platform_name = "cardapio_web"
    sandbox_url = production_url = "https://api.cardapioweb.com/v1"


class AnotaAiAdapter(OpenDeliveryAdapter):
    platform_name = "anotaai"
    sandbox_url = production_url = "https://api.anota.ai/v1"


class ConsumerAdapter(OpenDeliveryAdapter):
    platform_name = "consumer"
    sandbox_url = production_url = "https://api.programaconsumer.com.br/v1"
