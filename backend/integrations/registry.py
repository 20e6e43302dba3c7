"""
Adapter registry.

An explicit value mapping platform ids to adapter factories. The manager is
handed a registry instead of reaching for module-level state, so tests can
register fakes without touching the built-in set.

Usage:
    registry = AdapterRegistry()

    @registry.adapter("foody")
    class FoodyAdapter(SalesAdapter, InboxIngestion):
        ...

    adapter = registry.create(IntegrationConfig(platform="foody", credentials={...}))
"""

from __future__ import annotations

from typing import Callable

import httpx

from integrations.base import LogisticsAdapter, PlatformAdapter, SalesAdapter
from integrations.errors import AdapterNotFoundError, ConfigurationError
from integrations.types import IntegrationConfig, IntegrationType

AdapterFactory = type[PlatformAdapter]


class AdapterRegistry:
    def __init__(self, http_client: httpx.AsyncClient | None = None):
        self._factories: dict[str, AdapterFactory] = {}
        # Shared client injected into every adapter (transport fakes in tests)
        self.http_client = http_client

    def register(self, platform: str, factory: AdapterFactory) -> AdapterFactory:
        if issubclass(factory, SalesAdapter) and issubclass(factory, LogisticsAdapter):
            raise ConfigurationError(f"{factory.__name__} cannot be both a sales and a logistics adapter")
        self._factories[platform.strip().lower()] = factory
        return factory

    def adapter(self, platform: str) -> Callable[[AdapterFactory], AdapterFactory]:
        """Decorator form of register()."""

        def decorator(factory: AdapterFactory) -> AdapterFactory:
            return self.register(platform, factory)

        return decorator

    def resolve(self, platform: str) -> AdapterFactory:
        factory = self._factories.get((platform or "").strip().lower())
        if factory is None:
            raise AdapterNotFoundError(platform)
        return factory

    def create(self, config: IntegrationConfig) -> PlatformAdapter:
        factory = self.resolve(config.platform)
        return factory(config, http_client=self.http_client)

    def integration_type(self, platform: str) -> IntegrationType:
        return self.resolve(platform).integration_type

    def platforms(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, platform: str) -> bool:
        return (platform or "").strip().lower() in self._factories
