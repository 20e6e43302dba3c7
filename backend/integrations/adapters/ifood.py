"""
iFood marketplace adapter.

OAuth client-credentials; tokens are refreshed five minutes before they
expire. Orders are pulled from the order API and normalized; catalog pushes
go through the catalog v2 API.
"""

from __future__ import annotations

from datetime import datetime

from integrations.adapters.common import address_from, as_datetime, as_float, as_str
from integrations.base import CatalogSync, SalesAdapter
from integrations.errors import AuthError, PlatformAPIError
from integrations.types import (
    CatalogItem,
    ClientCredentials,
    Customer,
    NormalizedOrder,
    OrderItem,
    OrderStatus,
    OrderSubItem,
    PaymentStatus,
)


class IFoodAdapter(SalesAdapter, CatalogSync):
    platform_name = "ifood"
    credentials_cls = ClientCredentials
    # iFood has no separate sandbox host; test merchants use the same API
    sandbox_url = "https://merchant-api.ifood.com.br"
    production_url = "https://merchant-api.ifood.com.br"

    STATUS_FROM_PLATFORM = {
        "placed": OrderStatus.PENDING,
        "plc": OrderStatus.PENDING,
        "confirmed": OrderStatus.CONFIRMED,
        "cfm": OrderStatus.CONFIRMED,
        "preparation_started": OrderStatus.PREPARING,
        "ready_to_pickup": OrderStatus.READY,
        "rdy": OrderStatus.READY,
        "dispatched": OrderStatus.DISPATCHED,
        "dsp": OrderStatus.DISPATCHED,
        "concluded": OrderStatus.DELIVERED,
        "con": OrderStatus.DELIVERED,
        "cancelled": OrderStatus.CANCELLED,
        "can": OrderStatus.CANCELLED,
    }
    STATUS_TO_PLATFORM = {
        OrderStatus.PENDING: "PLACED",
        OrderStatus.CONFIRMED: "CONFIRMED",
        OrderStatus.PREPARING: "PREPARATION_STARTED",
        OrderStatus.READY: "READY_TO_PICKUP",
        OrderStatus.DISPATCHED: "DISPATCHED",
        OrderStatus.DELIVERED: "CONCLUDED",
        OrderStatus.CANCELLED: "CANCELLED",
    }
    PLATFORM_PENDING_STATUS = "PLACED"

    async def authenticate(self) -> None:
        creds = self.credentials
        try:
            data = await self._request(
                "POST",
                "/authentication/v1.0/oauth/token",
                data={
                    "grantType": "client_credentials",
                    "clientId": creds.client_id,
                    "clientSecret": creds.client_secret,
                },
                authenticated=False,
            )
        except PlatformAPIError as exc:
            raise AuthError(f"iFood authentication failed: {exc}") from exc

        token = data.get("accessToken")
        if not token:
            raise AuthError("iFood authentication returned no access token")
        self._set_token(token, data.get("expiresIn"))
        self.logger.info("adapter.authenticated", expires_at=self.token_expires_at)

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"} if self.access_token else {}

    async def _call(self, method: str, path: str, **kwargs):
        await self._ensure_token()
        return await self._request(method, path, **kwargs)

    async def _probe(self) -> None:
        await self._call("GET", "/merchant/v1.0/merchants")

    # ── Orders ────────────────────────────────────────────────────────

    async def fetch_orders(self, since: datetime | None = None) -> list[NormalizedOrder]:
        params = {"createdAtStart": since.isoformat()} if since else None
        orders = await self._call("GET", "/order/v1.0/orders", params=params)
        return [self._normalize_order(order) for order in orders or []]

    async def get_order_details(self, order_id: str) -> NormalizedOrder:
        return self._normalize_order(await self._call("GET", f"/order/v1.0/orders/{order_id}"))

    async def confirm_order(self, order_id: str) -> None:
        await self._call("POST", f"/order/v1.0/orders/{order_id}/confirm")

    async def reject_order(self, order_id: str, reason: str | None = None) -> None:
        await self._call(
            "POST",
            f"/order/v1.0/orders/{order_id}/reject",
            json={"reason": reason or "Pedido rejeitado pelo restaurante"},
        )

    async def mark_order_ready(self, order_id: str) -> None:
        await self._call("POST", f"/order/v1.0/orders/{order_id}/readyToPickup")

    async def dispatch_order(self, order_id: str) -> None:
        await self._call("POST", f"/order/v1.0/orders/{order_id}/dispatch")

    async def cancel_order(self, order_id: str, reason: str) -> None:
        await self._call("POST", f"/order/v1.0/orders/{order_id}/requestCancellation", json={"reason": reason})

    # ── Catalog ───────────────────────────────────────────────────────

    async def sync_catalog(self, items: list[CatalogItem]) -> int:
        payload = [
            {
                "externalCode": item.external_id,
                "name": item.name,
                "description": item.description,
                "price": {"value": item.price},
                "categoryId": item.category_id,
                "imagePath": item.image_url,
                "status": "AVAILABLE" if item.available else "UNAVAILABLE",
            }
            for item in items
        ]
        await self._call("PUT", "/catalog/v2.0/items", json=payload)
        self.logger.info("adapter.catalog.synced", items=len(items))
        return len(items)

    async def update_item_availability(self, item_id: str, available: bool) -> None:
        await self._call("PATCH", f"/catalog/v2.0/items/{item_id}", json={"available": available})

    async def update_item_price(self, item_id: str, price: float) -> None:
        await self._call("PATCH", f"/catalog/v2.0/items/{item_id}/price", json={"value": price})

    # ── Normalization ─────────────────────────────────────────────────

    def _normalize_order(self, native: dict) -> NormalizedOrder:
        customer = native.get("customer") or {}
        total = native.get("total") or {}
        payments = native.get("payments") or {}
        methods = payments.get("methods") or [{}]
        merchant = native.get("merchant") or {}

        order = NormalizedOrder(
            id=as_str(native.get("id")) or "",
            external_id=as_str(native.get("id")) or "",
            platform=self.platform_name,
            restaurant_id=as_str(merchant.get("id")),
            status=self._map_status_from_platform(native.get("orderStatus") or native.get("status")),
            customer=Customer(
                name=customer.get("name") or "",
                phone=(customer.get("phone") or {}).get("number"),
                document=customer.get("documentNumber"),
            ),
            delivery_address=address_from(
                native.get("deliveryAddress"),
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
                        OrderSubItem(name=opt.get("name") or "", price=as_float(opt.get("unitPrice")))
                        for opt in item.get("options") or []
                    ],
                )
                for item in native.get("items") or []
            ],
            subtotal=as_float(total.get("subTotal")),
            delivery_fee=as_float(total.get("deliveryFee")),
            discount=as_float(total.get("benefits")),
            total=as_float(total.get("orderAmount")),
            payment_method=methods[0].get("method") or "unknown",
            payment_status=PaymentStatus.PENDING if as_float(payments.get("pending")) > 0 else PaymentStatus.PAID,
            observations=native.get("additionalInfo"),
            created_at=as_datetime(native.get("createdAt")),
            confirmed_at=as_datetime(native.get("preparationStartDateTime")),
        )
        return self._checked(order)
