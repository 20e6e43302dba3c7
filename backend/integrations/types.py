"""
Platform-agnostic types shared by every adapter.

NormalizedOrder is the transport format between an adapter's normalization
step and the persistence calls; it is never stored as-is (the inbox keeps a
JSON snapshot of it for audit via ``to_dict``).
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Any, ClassVar, Mapping

from integrations.errors import ConfigurationError

# Raw platform payloads are schema-less across platforms and versions
RawPayload = dict[str, Any]


class IntegrationType(str, Enum):
    SALES = "sales"
    LOGISTICS = "logistics"


class IntegrationStatus(str, Enum):
    CONFIGURED = "CONFIGURED"
    CONNECTED = "CONNECTED"
    INGESTING = "INGESTING"
    STOPPED = "STOPPED"
    DEGRADED = "DEGRADED"


class InboxStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"
    IGNORED = "IGNORED"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    DISPATCHED = "dispatched"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    ARRIVING_PICKUP = "arriving_pickup"
    AT_PICKUP = "at_pickup"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    ARRIVING_DELIVERY = "arriving_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# ── Orders ────────────────────────────────────────────────────────────────


@dataclass
class Coordinates:
    latitude: float
    longitude: float


@dataclass
class Address:
    street: str
    number: str
    neighborhood: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    complement: str | None = None
    reference: str | None = None
    coordinates: Coordinates | None = None

    def one_line(self) -> str:
        return f"{self.street}, {self.number}" if self.number else self.street


@dataclass
class Customer:
    name: str
    phone: str | None = None
    document: str | None = None


@dataclass
class OrderSubItem:
    name: str
    quantity: float = 1
    price: float = 0.0


@dataclass
class OrderItem:
    name: str
    quantity: float
    unit_price: float
    total_price: float
    external_id: str | None = None
    sub_items: list[OrderSubItem] = field(default_factory=list)
    observations: str | None = None


@dataclass
class NormalizedOrder:
    id: str
    external_id: str
    platform: str
    status: OrderStatus
    customer: Customer
    items: list[OrderItem]
    subtotal: float
    delivery_fee: float
    discount: float
    total: float
    payment_method: str
    payment_status: PaymentStatus
    created_at: datetime
    delivery_address: Address | None = None
    restaurant_id: str | None = None
    order_type: str = "DELIVERY"
    observations: str | None = None
    confirmed_at: datetime | None = None
    ready_at: datetime | None = None
    dispatched_at: datetime | None = None
    delivered_at: datetime | None = None

    TOTALS_TOLERANCE: ClassVar[float] = 0.01

    @property
    def totals_reconcile(self) -> bool:
        """subtotal + delivery_fee - discount must match total within a cent."""
        expected = self.subtotal + self.delivery_fee - self.discount
        return abs(expected - self.total) <= self.TOTALS_TOLERANCE

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self))


# ── Logistics ─────────────────────────────────────────────────────────────


@dataclass
class DeliveryRequest:
    order_id: str
    pickup_address: Address
    delivery_address: Address
    items: str | None = None
    observations: str | None = None


@dataclass
class DeliveryQuote:
    available: bool
    price: float | None = None
    eta_minutes: int | None = None
    distance: float | None = None


@dataclass
class DeliveryEvent:
    status: DeliveryStatus
    timestamp: datetime
    description: str | None = None


@dataclass
class DeliveryTracking:
    status: DeliveryStatus
    driver_name: str | None = None
    driver_phone: str | None = None
    coordinates: Coordinates | None = None
    eta: datetime | None = None
    events: list[DeliveryEvent] = field(default_factory=list)


# ── Catalog ───────────────────────────────────────────────────────────────


@dataclass
class CatalogOptionValue:
    name: str
    price: float = 0.0


@dataclass
class CatalogOption:
    name: str
    required: bool = False
    min_quantity: int = 0
    max_quantity: int = 1
    values: list[CatalogOptionValue] = field(default_factory=list)


@dataclass
class CatalogItem:
    name: str
    price: float
    available: bool = True
    external_id: str | None = None
    description: str | None = None
    category_id: str | None = None
    image_url: str | None = None
    options: list[CatalogOption] = field(default_factory=list)


# ── Credentials (closed set of shapes, one per auth scheme) ──────────────


@dataclass
class PlatformCredentials:
    """Base for credential shapes; subclasses list their required fields."""

    _aliases: ClassVar[dict[str, str]] = {
        "apiToken": "api_token",
        "clientId": "client_id",
        "clientSecret": "client_secret",
        "merchantId": "merchant_id",
    }

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None, platform: str = ""):
        raw = {cls._aliases.get(k, k): v for k, v in (raw or {}).items()}
        names = [f.name for f in fields(cls)]
        missing = [name for name in names if not raw.get(name)]
        if missing:
            label = platform or cls.__name__
            raise ConfigurationError(f"{label} requires {', '.join(missing)}")
        return cls(**{name: str(raw[name]) for name in names})

    @classmethod
    def required_fields(cls) -> list[str]:
        return [f.name for f in fields(cls)]


@dataclass
class StaticTokenCredentials(PlatformCredentials):
    api_token: str


@dataclass
class ClientCredentials(PlatformCredentials):
    client_id: str
    client_secret: str


@dataclass
class MerchantCredentials(PlatformCredentials):
    merchant_id: str
    client_id: str
    client_secret: str


@dataclass
class IntegrationConfig:
    """Per-integration configuration handed to an adapter factory."""

    platform: str
    credentials: dict[str, Any]
    integration_id: uuid.UUID | None = None
    cost_center_id: uuid.UUID | None = None
    organization_id: uuid.UUID | None = None
    sandbox_mode: bool = True
    sync_interval_minutes: int = 15
    name: str | None = None


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
