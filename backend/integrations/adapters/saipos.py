"""
Saipos adapters.

Saipos exposes a POS/sales API and a separate logistics API. Both take the
same client credentials exchanged at the sales host for a bearer token.
Payload field names are Portuguese (pedidos, itens, valores, ...).
"""

from __future__ import annotations

from datetime import datetime

from integrations.adapters.common import address_from, as_datetime, as_float, as_str, coordinates_from
from integrations.base import LogisticsAdapter, PlatformAdapter, SalesAdapter
from integrations.errors import AuthError, PlatformAPIError
from integrations.types import (
    ClientCredentials,
    Customer,
    DeliveryEvent,
    DeliveryQuote,
    DeliveryRequest,
    DeliveryStatus,
    DeliveryTracking,
    NormalizedOrder,
    OrderItem,
    OrderStatus,
    OrderSubItem,
    PaymentStatus,
)

SAIPOS_TOKEN_URL = "https://api.saipos.com/v1/auth/token"

SAIPOS_STATUS_FROM_PLATFORM = {
    "pendente": OrderStatus.PENDING,
    "confirmado": OrderStatus.CONFIRMED,
    "preparando": OrderStatus.PREPARING,
    "pronto": OrderStatus.READY,
    "em_rota": OrderStatus.DISPATCHED,
    "entregue": OrderStatus.DELIVERED,
    "cancelado": OrderStatus.CANCELLED,
}
SAIPOS_STATUS_TO_PLATFORM = {status: native.upper() for native, status in SAIPOS_STATUS_FROM_PLATFORM.items()}

SAIPOS_ADDRESS_KEYS = {
    "street": "logradouro",
    "number": "numero",
    "neighborhood": "bairro",
    "city": "cidade",
    "state": "uf",
    "zip_code": "cep",
    "complement": "complemento",
    "reference": "referencia",
}


class _SaiposAuth(PlatformAdapter):
    credentials_cls = ClientCredentials

    async def authenticate(self) -> None:
        creds = self.credentials
        try:
            data = await self._request(
                "POST",
                SAIPOS_TOKEN_URL,
                json={"clientId": creds.client_id, "clientSecret": creds.client_secret},
                authenticated=False,
            )
        except PlatformAPIError as exc:
            raise AuthError(f"Saipos authentication failed: {exc}") from exc
        token = data.get("accessToken")
        if not token:
            raise AuthError("Saipos authentication returned no access token")
        self._set_token(token, data.get("expiresIn"))

    def is_token_valid(self) -> bool:
        if self.token_expires_at is None:
            return self.access_token is not None
        return super().is_token_valid()

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"} if self.access_token else {}

    async def _call(self, method: str, path: str, **kwargs):
        await self._ensure_token()
        return await self._request(method, path, **kwargs)

    def _normalize_order(self, native: dict) -> NormalizedOrder:
        cliente = native.get("cliente") or {}
        valores = native.get("valores") or {}
        pagamento = native.get("pagamento") or {}
        raw_address = native.get("enderecoEntrega")
        address = address_from(raw_address, **SAIPOS_ADDRESS_KEYS)
        if address is not None:
            address.coordinates = coordinates_from(raw_address)

        return NormalizedOrder(
            id=as_str(native.get("id")) or "",
            external_id=as_str(native.get("id")) or "",
            platform=self.platform_name,
            status=SAIPOS_STATUS_FROM_PLATFORM.get(str(native.get("status") or "").lower(), OrderStatus.PENDING),
            customer=Customer(
                name=cliente.get("nome") or "",
                phone=cliente.get("telefone"),
                document=cliente.get("cpf"),
            ),
            delivery_address=address,
            items=[
                OrderItem(
                    external_id=as_str(item.get("id")),
                    name=item.get("nome") or "",
                    quantity=as_float(item.get("quantidade"), 1),
                    unit_price=as_float(item.get("precoUnitario")),
                    total_price=as_float(item.get("precoTotal")),
                    observations=item.get("observacao"),
                    sub_items=[
                        OrderSubItem(name=a.get("nome") or "", price=as_float(a.get("preco")))
                        for a in item.get("adicionais") or []
                    ],
                )
                for item in native.get("itens") or []
            ],
            subtotal=as_float(valores.get("subtotal")),
            delivery_fee=as_float(valores.get("taxaEntrega")),
            discount=as_float(valores.get("desconto")),
            total=as_float(valores.get("total")),
            payment_method=pagamento.get("forma") or "unknown",
            payment_status=PaymentStatus.PAID if pagamento.get("status") == "PAGO" else PaymentStatus.PENDING,
            observations=native.get("observacao"),
            created_at=as_datetime(native.get("dataCriacao")),
        )


class SaiposSalesAdapter(_SaiposAuth, SalesAdapter):
    platform_name = "saipos"
    sandbox_url = "https://api.saipos.com/v1"
    production_url = "https://api.saipos.com/v1"

    STATUS_FROM_PLATFORM = SAIPOS_STATUS_FROM_PLATFORM
    STATUS_TO_PLATFORM = SAIPOS_STATUS_TO_PLATFORM
    PLATFORM_PENDING_STATUS = "PENDENTE"

    async def _probe(self) -> None:
        await self._call("GET", "/estabelecimento")

    async def fetch_orders(self, since: datetime | None = None) -> list[NormalizedOrder]:
        params = {"dataInicio": since.isoformat()} if since else None
        data = await self._call("GET", "/pedidos", params=params)
        return [self._normalize_order(order) for order in data.get("pedidos") or []]

    async def get_order_details(self, order_id: str) -> NormalizedOrder:
        return self._normalize_order(await self._call("GET", f"/pedidos/{order_id}"))

    async def confirm_order(self, order_id: str) -> None:
        await self._call("POST", f"/pedidos/{order_id}/confirmar")

    async def reject_order(self, order_id: str, reason: str | None = None) -> None:
        await self._call("POST", f"/pedidos/{order_id}/rejeitar", json={"motivo": reason})

    async def mark_order_ready(self, order_id: str) -> None:
        await self._call("POST", f"/pedidos/{order_id}/pronto")

    async def dispatch_order(self, order_id: str) -> None:
        await self._call("POST", f"/pedidos/{order_id}/despachar")

    async def cancel_order(self, order_id: str, reason: str) -> None:
        await self._call("POST", f"/pedidos/{order_id}/cancelar", json={"motivo": reason})

    def _normalize_order(self, native: dict) -> NormalizedOrder:
        return self._checked(super()._normalize_order(native))


class SaiposLogisticsAdapter(_SaiposAuth, LogisticsAdapter):
    platform_name = "saipos_logistics"
    sandbox_url = "https://logistics.saipos.com/v1"
    production_url = "https://logistics.saipos.com/v1"

    DELIVERY_STATUS_FROM_PLATFORM = {
        "pendente": DeliveryStatus.PENDING,
        "aceita": DeliveryStatus.ACCEPTED,
        "a_caminho_coleta": DeliveryStatus.ARRIVING_PICKUP,
        "no_local_coleta": DeliveryStatus.AT_PICKUP,
        "coletada": DeliveryStatus.PICKED_UP,
        "em_rota": DeliveryStatus.IN_TRANSIT,
        "chegando": DeliveryStatus.ARRIVING_DELIVERY,
        "entregue": DeliveryStatus.DELIVERED,
        "cancelada": DeliveryStatus.CANCELLED,
    }
    STATUS_TO_PLATFORM = SAIPOS_STATUS_TO_PLATFORM
    PLATFORM_PENDING_STATUS = "PENDENTE"

    @staticmethod
    def _address_body(address) -> dict:
        return {
            "logradouro": address.street,
            "numero": address.number,
            "bairro": address.neighborhood,
            "cidade": address.city,
            "uf": address.state,
            "cep": address.zip_code,
            "complemento": address.complement,
        }

    async def get_delivery_quote(self, request: DeliveryRequest) -> DeliveryQuote:
        data = await self._call(
            "POST",
            "/cotacao",
            json={
                "origem": self._address_body(request.pickup_address),
                "destino": self._address_body(request.delivery_address),
            },
        )
        return DeliveryQuote(
            available=bool(data.get("disponivel", True)),
            price=data.get("preco"),
            eta_minutes=data.get("tempoEstimado"),
            distance=data.get("distancia"),
        )

    async def request_delivery(self, request: DeliveryRequest) -> str:
        data = await self._call(
            "POST",
            "/entregas",
            json={
                "pedidoId": request.order_id,
                "origem": self._address_body(request.pickup_address),
                "destino": self._address_body(request.delivery_address),
                "itens": request.items,
                "observacao": request.observations,
            },
        )
        return str(data["id"])

    async def cancel_delivery(self, delivery_id: str, reason: str | None = None) -> None:
        await self._call("POST", f"/entregas/{delivery_id}/cancelar", json={"motivo": reason})

    async def get_delivery_tracking(self, delivery_id: str) -> DeliveryTracking:
        data = await self._call("GET", f"/entregas/{delivery_id}/rastreamento")
        driver = data.get("entregador") or {}
        return DeliveryTracking(
            status=self._map_delivery_status(data.get("status")),
            driver_name=driver.get("nome"),
            driver_phone=driver.get("telefone"),
            coordinates=coordinates_from(data.get("localizacao")),
            eta=as_datetime(data.get("previsao")),
            events=[
                DeliveryEvent(
                    status=self._map_delivery_status(event.get("status")),
                    timestamp=as_datetime(event.get("data")),
                    description=event.get("descricao"),
                )
                for event in data.get("eventos") or []
                if as_datetime(event.get("data")) is not None
            ],
        )

    async def mark_order_ready(self, delivery_id: str) -> None:
        await self._call("POST", f"/entregas/{delivery_id}/pronto")
