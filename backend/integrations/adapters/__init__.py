"""
Built-in platform adapters.

Usage:
    from integrations.adapters import build_default_registry

    registry = build_default_registry()
    adapter = registry.create(IntegrationConfig(platform="foody", credentials={"api_token": "..."}))
"""

import httpx

from integrations.adapters.agilizone import AgiliZoneAdapter
from integrations.adapters.foody import FoodyAdapter
from integrations.adapters.ifood import IFoodAdapter
from integrations.adapters.ninety_nine_food import NinetyNineFoodAdapter
from integrations.adapters.open_delivery import (
    AnotaAiAdapter,
    CardapioWebAdapter,
    ConsumerAdapter,
    NeemoAdapter,
    OpenDeliveryAdapter,
)
from integrations.adapters.saipos import SaiposLogisticsAdapter, SaiposSalesAdapter
from integrations.registry import AdapterRegistry

BUILTIN_ADAPTERS = (
    IFoodAdapter,
    NinetyNineFoodAdapter,
    SaiposSalesAdapter,
    SaiposLogisticsAdapter,
    NeemoAdapter,
    CardapioWebAdapter,
    AnotaAiAdapter,
    ConsumerAdapter,
    FoodyAdapter,
    AgiliZoneAdapter,
)


def build_default_registry(http_client: httpx.AsyncClient | None = None) -> AdapterRegistry:
    registry = AdapterRegistry(http_client=http_client)
    for adapter_cls in BUILTIN_ADAPTERS:
        registry.register(adapter_cls.platform_name, adapter_cls)
    return registry


__all__ = [
    "AgiliZoneAdapter",
    "AnotaAiAdapter",
    "BUILTIN_ADAPTERS",
    "CardapioWebAdapter",
    "ConsumerAdapter",
    "FoodyAdapter",
    "IFoodAdapter",
    "NeemoAdapter",
    "NinetyNineFoodAdapter",
    "OpenDeliveryAdapter",
    "SaiposLogisticsAdapter",
    "SaiposSalesAdapter",
    "build_default_registry",
]
