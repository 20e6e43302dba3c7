"""
Delivery-platform integrations package.

Pluggable adapter pattern for connecting KitchenLink to delivery platforms:
  - Sales       (iFood, 99Food, Saipos, Open Delivery family, Foody)
  - Logistics   (Saipos logistics, AgiliZone)

Usage:
    from integrations.adapters import build_default_registry
    from integrations.manager import IntegrationManager

    manager = IntegrationManager(AsyncSessionLocal, build_default_registry())
    await manager.init()
"""

from integrations.base import (
    CatalogSync,
    LogisticsAdapter,
    PickupConfirmation,
    PlatformAdapter,
    SalesAdapter,
)
from integrations.errors import (
    AdapterNotFoundError,
    AuthError,
    CapabilityError,
    ConfigurationError,
    InboxItemNotFoundError,
    InboxTransitionError,
    IntegrationError,
    IntegrationNotFoundError,
    PersistenceError,
    PlatformAPIError,
    ValidationError,
)
from integrations.registry import AdapterRegistry
from integrations.types import (
    InboxStatus,
    IntegrationConfig,
    IntegrationStatus,
    IntegrationType,
    NormalizedOrder,
    OrderStatus,
)

__all__ = [
    "AdapterNotFoundError",
    "AdapterRegistry",
    "AuthError",
    "CapabilityError",
    "CatalogSync",
    "ConfigurationError",
    "InboxItemNotFoundError",
    "InboxStatus",
    "InboxTransitionError",
    "IntegrationConfig",
    "IntegrationError",
    "IntegrationNotFoundError",
    "IntegrationStatus",
    "IntegrationType",
    "LogisticsAdapter",
    "NormalizedOrder",
    "OrderStatus",
    "PersistenceError",
    "PickupConfirmation",
    "PlatformAPIError",
    "PlatformAdapter",
    "SalesAdapter",
    "ValidationError",
]
