"""
Delivery Platform Adapter — Abstract Base Classes

Every platform connector (marketplaces, POS networks, logistics carriers)
implements one of two capability profiles so the manager can route calls
without knowing which platform sits behind an integration:

  - SalesAdapter       order intake: fetch, confirm, reject, ready, dispatch, cancel
  - LogisticsAdapter   carrier: quote, request, cancel, track, ready

Optional capabilities are mixins detected with isinstance():

  - CatalogSync        push menu items / availability / prices
  - PickupConfirmation driver pickup and delivery confirmation
  - InboxIngestion     durable inbox staging (see integrations.pipeline)

Lifecycle:
    1. __init__(config)      — keep config, no I/O
    2. authenticate()        — parse credentials, obtain a token if needed
    3. is_token_valid()      — pure expiry check
    4. test_connection()     — best-effort probe, never raises
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, ClassVar, Mapping

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import get_settings
from integrations.errors import IntegrationError, PlatformAPIError, ValidationError
from integrations.types import (
    CatalogItem,
    DeliveryQuote,
    DeliveryRequest,
    DeliveryStatus,
    DeliveryTracking,
    IntegrationConfig,
    IntegrationType,
    NormalizedOrder,
    OrderStatus,
    PlatformCredentials,
    RawPayload,
)

logger = structlog.get_logger()

# Refresh OAuth tokens this long before the platform says they expire
TOKEN_EXPIRY_SKEW = timedelta(minutes=5)


class PlatformAdapter(ABC):
    """Shared plumbing: config, credentials, token state, HTTP."""

    platform_name: ClassVar[str]
    integration_type: ClassVar[IntegrationType]
    credentials_cls: ClassVar[type[PlatformCredentials]]
    sandbox_url: ClassVar[str]
    production_url: ClassVar[str]

    def __init__(self, config: IntegrationConfig, http_client: httpx.AsyncClient | None = None):
        self.config = config
        self._http_client = http_client
        self._timeout = get_settings().platform_http_timeout_seconds
        self._credentials: PlatformCredentials | None = None
        self.access_token: str | None = None
        self.token_expires_at: datetime | None = None
        self.logger = logger.bind(
            platform=self.platform_name,
            integration_id=str(config.integration_id) if config.integration_id else None,
        )

    @property
    def base_url(self) -> str:
        return self.sandbox_url if self.config.sandbox_mode else self.production_url

    @property
    def credentials(self) -> PlatformCredentials:
        """Typed credentials; raises ConfigurationError when fields are missing."""
        if self._credentials is None:
            self._credentials = self.credentials_cls.from_mapping(self.config.credentials, self.platform_name)
        return self._credentials

    # ── Auth ──────────────────────────────────────────────────────────

    async def authenticate(self) -> None:
        """Validate configuration. Static-token platforms need nothing more."""
        self.credentials  # noqa: B018 - parse or raise

    async def refresh_token(self) -> None:
        self.access_token = None
        self.token_expires_at = None
        await self.authenticate()

    def is_token_valid(self) -> bool:
        if self.token_expires_at is None:
            return self._credentials is not None
        return self.access_token is not None and datetime.now(timezone.utc) < self.token_expires_at

    def _set_token(self, token: str, expires_in_seconds: int | float | None) -> None:
        self.access_token = token
        if expires_in_seconds:
            self.token_expires_at = (
                datetime.now(timezone.utc) + timedelta(seconds=float(expires_in_seconds)) - TOKEN_EXPIRY_SKEW
            )
        else:
            self.token_expires_at = None

    async def _ensure_token(self) -> None:
        if not self.is_token_valid():
            await self.authenticate()

    def _auth_headers(self) -> dict[str, str]:
        return {}

    async def test_connection(self) -> bool:
        """Authenticate and run a cheap request; False on any platform failure."""
        try:
            await self.authenticate()
            await self._probe()
            return True
        except (IntegrationError, httpx.HTTPError) as exc:
            self.logger.warning("adapter.test_connection.failed", error=str(exc))
            return False

    async def _probe(self) -> None:
        """Cheapest authenticated call for the platform."""

    # ── HTTP ──────────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
        data: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        authenticated: bool = True,
    ) -> Any:
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        request_headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if authenticated:
            request_headers.update(self._auth_headers())
        if headers:
            request_headers.update(headers)
        if data is not None:
            request_headers["Content-Type"] = "application/x-www-form-urlencoded"

        response = await self._send(method, url, json=json, params=params, data=data, headers=request_headers)

        if not response.is_success:
            self.logger.warning(
                "adapter.request.failed",
                method=method,
                path=path,
                status_code=response.status_code,
            )
            raise PlatformAPIError(self.platform_name, response.status_code, response.text)
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.request(method, url, **kwargs)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.request(method, url, **kwargs)


# ── Sales profile ─────────────────────────────────────────────────────────


class SalesAdapter(PlatformAdapter):
    """Order-intake platforms (marketplaces, POS networks)."""

    integration_type = IntegrationType.SALES

    # Native status (lower-case) → internal status; unknown → PENDING
    STATUS_FROM_PLATFORM: ClassVar[dict[str, OrderStatus]] = {}
    # Internal status → native status; unknown → PLATFORM_PENDING_STATUS
    STATUS_TO_PLATFORM: ClassVar[dict[OrderStatus, str]] = {}
    PLATFORM_PENDING_STATUS: ClassVar[str] = "PENDING"

    @abstractmethod
    async def fetch_orders(self, since: datetime | None = None) -> list[NormalizedOrder]: ...

    @abstractmethod
    async def get_order_details(self, order_id: str) -> NormalizedOrder: ...

    @abstractmethod
    async def confirm_order(self, order_id: str) -> None: ...

    @abstractmethod
    async def reject_order(self, order_id: str, reason: str | None = None) -> None: ...

    @abstractmethod
    async def mark_order_ready(self, order_id: str) -> None: ...

    @abstractmethod
    async def dispatch_order(self, order_id: str) -> None: ...

    @abstractmethod
    async def cancel_order(self, order_id: str, reason: str) -> None: ...

    @abstractmethod
    def _normalize_order(self, native: RawPayload) -> NormalizedOrder: ...

    def _map_status_from_platform(self, native_status: Any) -> OrderStatus:
        return self.STATUS_FROM_PLATFORM.get(str(native_status or "").strip().lower(), OrderStatus.PENDING)

    def _map_status_to_platform(self, status: OrderStatus) -> str:
        return self.STATUS_TO_PLATFORM.get(status, self.PLATFORM_PENDING_STATUS)

    def _checked(self, order: NormalizedOrder) -> NormalizedOrder:
        """Reject orders without identity; warn when totals do not add up."""
        if not order.external_id:
            raise ValidationError(f"{self.platform_name} order without an id")
        if not order.totals_reconcile:
            self.logger.warning(
                "adapter.order.totals_mismatch",
                external_id=order.external_id,
                subtotal=order.subtotal,
                delivery_fee=order.delivery_fee,
                discount=order.discount,
                total=order.total,
            )
        return order


# ── Logistics profile ─────────────────────────────────────────────────────


class LogisticsAdapter(PlatformAdapter):
    """Delivery carriers."""

    integration_type = IntegrationType.LOGISTICS

    # Native delivery status (lower-case) → internal; unknown → PENDING
    DELIVERY_STATUS_FROM_PLATFORM: ClassVar[dict[str, DeliveryStatus]] = {}
    STATUS_TO_PLATFORM: ClassVar[dict[OrderStatus, str]] = {}
    PLATFORM_PENDING_STATUS: ClassVar[str] = "PENDING"

    @abstractmethod
    async def get_delivery_quote(self, request: DeliveryRequest) -> DeliveryQuote: ...

    @abstractmethod
    async def request_delivery(self, request: DeliveryRequest) -> str: ...

    @abstractmethod
    async def cancel_delivery(self, delivery_id: str, reason: str | None = None) -> None: ...

    @abstractmethod
    async def get_delivery_tracking(self, delivery_id: str) -> DeliveryTracking: ...

    @abstractmethod
    async def mark_order_ready(self, delivery_id: str) -> None: ...

    @abstractmethod
    def _normalize_order(self, native: RawPayload) -> NormalizedOrder: ...

    def _map_delivery_status(self, native_status: Any) -> DeliveryStatus:
        return self.DELIVERY_STATUS_FROM_PLATFORM.get(
            str(native_status or "").strip().lower(), DeliveryStatus.PENDING
        )

    def _map_status_to_platform(self, status: OrderStatus) -> str:
        return self.STATUS_TO_PLATFORM.get(status, self.PLATFORM_PENDING_STATUS)


# ── Optional capabilities ─────────────────────────────────────────────────


class CatalogSync(ABC):
    @abstractmethod
    async def sync_catalog(self, items: list[CatalogItem]) -> int:
        """Push items to the platform menu; returns how many were accepted."""

    @abstractmethod
    async def update_item_availability(self, item_id: str, available: bool) -> None: ...

    @abstractmethod
    async def update_item_price(self, item_id: str, price: float) -> None: ...


class PickupConfirmation(ABC):
    @abstractmethod
    async def confirm_pickup(self, delivery_id: str) -> None: ...

    @abstractmethod
    async def confirm_delivery(self, delivery_id: str) -> None: ...
