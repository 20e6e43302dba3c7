import pytest

from integrations.adapters import BUILTIN_ADAPTERS, FoodyAdapter, build_default_registry
from integrations.adapters.agilizone import AgiliZoneAdapter
from integrations.base import LogisticsAdapter, SalesAdapter
from integrations.errors import AdapterNotFoundError, ConfigurationError
from integrations.registry import AdapterRegistry
from integrations.types import IntegrationConfig, IntegrationType


def test_default_registry_lists_every_builtin_platform():
    registry = build_default_registry()

    assert registry.platforms() == sorted(cls.platform_name for cls in BUILTIN_ADAPTERS)
    assert "foody" in registry
    assert " FOODY " in registry


def test_unknown_platform_raises():
    registry = build_default_registry()

    with pytest.raises(AdapterNotFoundError) as exc_info:
        registry.create(IntegrationConfig(platform="rappi", credentials={}))
    assert exc_info.value.platform == "rappi"


def test_integration_type_follows_adapter_class():
    registry = build_default_registry()

    assert registry.integration_type("foody") is IntegrationType.SALES
    assert registry.integration_type("agilizone") is IntegrationType.LOGISTICS
    assert registry.integration_type("saipos_logistics") is IntegrationType.LOGISTICS


def test_create_injects_shared_http_client(platform_stub):
    client = platform_stub.client()
    registry = build_default_registry(http_client=client)

    adapter = registry.create(IntegrationConfig(platform="foody", credentials={"api_token": "t"}))

    assert isinstance(adapter, FoodyAdapter)
    assert adapter._http_client is client


def test_decorator_registration_is_isolated_per_registry():
    registry = AdapterRegistry()

    @registry.adapter("custom-carrier")
    class CustomCarrier(AgiliZoneAdapter):
        platform_name = "custom-carrier"

    assert registry.resolve("custom-carrier") is CustomCarrier
    assert "custom-carrier" not in build_default_registry()


def test_adapter_cannot_be_both_sales_and_logistics():
    class Hybrid(FoodyAdapter, LogisticsAdapter):
        platform_name = "hybrid"

    assert issubclass(Hybrid, SalesAdapter)
    with pytest.raises(ConfigurationError):
        AdapterRegistry().register("hybrid", Hybrid)
