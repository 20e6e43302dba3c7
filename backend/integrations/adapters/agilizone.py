"""
AgiliZone logistics adapter.

Authenticates every request with the merchant/client header triple; there is
no token exchange. Supports driver pickup and delivery confirmation.
"""

from __future__ import annotations

from integrations.adapters.common import address_from, as_datetime, as_float, as_str, coordinates_from
from integrations.base import LogisticsAdapter, PickupConfirmation
from integrations.types import (
    Address,
    Customer,
    DeliveryEvent,
    DeliveryQuote,
    DeliveryRequest,
    DeliveryStatus,
    DeliveryTracking,
    MerchantCredentials,
    NormalizedOrder,
    OrderStatus,
    PaymentStatus,
)

AGILIZONE_ADDRESS_KEYS = {
    "street": "rua",
    "number": "numero",
    "neighborhood": "bairro",
    "city": "cidade",
    "state": "uf",
    "zip_code": "cep",
    "complement": "complemento",
    "reference": "referencia",
}

# Delivery progress seen from the kitchen's order lifecycle
ORDER_STATUS_BY_DELIVERY_STATUS = {
    DeliveryStatus.PENDING: OrderStatus.PENDING,
    DeliveryStatus.ACCEPTED: OrderStatus.CONFIRMED,
    DeliveryStatus.ARRIVING_PICKUP: OrderStatus.PREPARING,
    DeliveryStatus.AT_PICKUP: OrderStatus.READY,
    DeliveryStatus.PICKED_UP: OrderStatus.DISPATCHED,
    DeliveryStatus.IN_TRANSIT: OrderStatus.DISPATCHED,
    DeliveryStatus.ARRIVING_DELIVERY: OrderStatus.DISPATCHED,
    DeliveryStatus.DELIVERED: OrderStatus.DELIVERED,
    DeliveryStatus.CANCELLED: OrderStatus.CANCELLED,
}


def _address_body(address: Address, with_extras: bool = False) -> dict:
    body = {
        "rua": address.street,
        "numero": address.number,
        "bairro": address.neighborhood,
        "cidade": address.city,
        "uf": address.state,
        "cep": address.zip_code,
    }
    if with_extras:
        body["complemento"] = address.complement
        if address.coordinates is not None:
            body["coordenadas"] = {
                "latitude": address.coordinates.latitude,
                "longitude": address.coordinates.longitude,
            }
    return body


class AgiliZoneAdapter(LogisticsAdapter, PickupConfirmation):
    platform_name = "agilizone"
    credentials_cls = MerchantCredentials
    sandbox_url = "https://api.agilizone.com/v1"
    production_url = "https://api.agilizone.com/v1"

    DELIVERY_STATUS_FROM_PLATFORM = {
        "pendente": DeliveryStatus.PENDING,
        "aceito": DeliveryStatus.ACCEPTED,
        "a_caminho_coleta": DeliveryStatus.ARRIVING_PICKUP,
        "no_local_coleta": DeliveryStatus.AT_PICKUP,
        "coletado": DeliveryStatus.PICKED_UP,
        "em_transito": DeliveryStatus.IN_TRANSIT,
        "proximo_entrega": DeliveryStatus.ARRIVING_DELIVERY,
        "entregue": DeliveryStatus.DELIVERED,
        "cancelado": DeliveryStatus.CANCELLED,
    }
    STATUS_TO_PLATFORM = {
        OrderStatus.PENDING: "PENDENTE",
        OrderStatus.CONFIRMED: "ACEITO",
        OrderStatus.READY: "NO_LOCAL_COLETA",
        OrderStatus.DISPATCHED: "COLETADO",
        OrderStatus.DELIVERED: "ENTREGUE",
        OrderStatus.CANCELLED: "CANCELADO",
    }
    PLATFORM_PENDING_STATUS = "PENDENTE"

    def _auth_headers(self) -> dict[str, str]:
        creds = self.credentials
        return {
            "X-Merchant-ID": creds.merchant_id,
            "X-Client-ID": creds.client_id,
            "X-Client-Secret": creds.client_secret,
        }

    async def _probe(self) -> None:
        await self._request("GET", "/merchant/status")

    async def get_delivery_quote(self, request: DeliveryRequest) -> DeliveryQuote:
        data = await self._request(
            "POST",
            "/cotacao",
            json={
                "enderecoColeta": _address_body(request.pickup_address),
                "enderecoEntrega": _address_body(request.delivery_address),
            },
        )
        return DeliveryQuote(
            available=bool(data.get("disponivel")),
            price=data.get("preco"),
            eta_minutes=data.get("tempoEstimado"),
            distance=data.get("distancia"),
        )

    async def request_delivery(self, request: DeliveryRequest) -> str:
        data = await self._request(
            "POST",
            "/entregas",
            json={
                "pedidoId": request.order_id,
                "enderecoColeta": _address_body(request.pickup_address, with_extras=True),
                "enderecoEntrega": _address_body(request.delivery_address, with_extras=True),
                "itens": request.items,
                "observacoes": request.observations,
            },
        )
        return str(data["id"])

    async def cancel_delivery(self, delivery_id: str, reason: str | None = None) -> None:
        await self._request("POST", f"/entregas/{delivery_id}/cancelar", json={"motivo": reason})

    async def get_delivery_tracking(self, delivery_id: str) -> DeliveryTracking:
        data = await self._request("GET", f"/entregas/{delivery_id}/rastreamento")
        driver = data.get("entregador") or {}
        events = []
        for entry in data.get("historico") or []:
            timestamp = as_datetime(entry.get("dataHora"))
            if timestamp is None:
                continue
            events.append(
                DeliveryEvent(
                    status=self._map_delivery_status(entry.get("status")),
                    timestamp=timestamp,
                    description=entry.get("descricao"),
                )
            )
        return DeliveryTracking(
            status=self._map_delivery_status(data.get("status")),
            driver_name=driver.get("nome"),
            driver_phone=driver.get("telefone"),
            coordinates=coordinates_from(data.get("localizacao")),
            eta=as_datetime(data.get("previsaoChegada")),
            events=events,
        )

    async def mark_order_ready(self, delivery_id: str) -> None:
        await self._request("POST", f"/entregas/{delivery_id}/pronto")

    async def confirm_pickup(self, delivery_id: str) -> None:
        await self._request("POST", f"/entregas/{delivery_id}/coletado")

    async def confirm_delivery(self, delivery_id: str) -> None:
        await self._request("POST", f"/entregas/{delivery_id}/entregue")

    def _normalize_order(self, native: dict) -> NormalizedOrder:
        """Order snapshot carried by AgiliZone delivery webhooks."""
        cliente = native.get("cliente") or {}
        total = as_float(native.get("valorTotal"))
        delivery_fee = as_float(native.get("taxaEntrega"))
        delivery_status = self._map_delivery_status(native.get("status"))
        return NormalizedOrder(
            id=as_str(native.get("id")) or "",
            external_id=as_str(native.get("pedidoId")) or as_str(native.get("id")) or "",
            platform=self.platform_name,
            status=ORDER_STATUS_BY_DELIVERY_STATUS[delivery_status],
            customer=Customer(name=cliente.get("nome") or "", phone=cliente.get("telefone")),
            delivery_address=address_from(native.get("enderecoEntrega"), **AGILIZONE_ADDRESS_KEYS),
            items=[],
            subtotal=total - delivery_fee,
            delivery_fee=delivery_fee,
            discount=0.0,
            total=total,
            payment_method=native.get("formaPagamento") or "unknown",
            payment_status=PaymentStatus.PAID,
            created_at=as_datetime(native.get("dataCriacao")),
        )
