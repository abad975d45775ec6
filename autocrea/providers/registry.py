"""Provider registry: the single dispatch point from provider to adapter."""

from autocrea.config import Settings
from autocrea.core.exceptions import ValidationError
from autocrea.models.deployment import Provider
from autocrea.providers.base import BaseProviderAdapter
from autocrea.providers.netlify import NetlifyAdapter
from autocrea.providers.railway import RailwayAdapter
from autocrea.providers.vercel import VercelAdapter
from autocrea.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ADAPTERS: tuple[type[BaseProviderAdapter], ...] = (
    VercelAdapter,
    NetlifyAdapter,
    RailwayAdapter,
)


class ProviderRegistry:
    """Registry of adapter instances keyed by provider."""

    def __init__(self):
        self._adapters: dict[Provider, BaseProviderAdapter] = {}

    def register(self, adapter: BaseProviderAdapter) -> None:
        """Register an adapter for its provider."""
        if adapter.provider in self._adapters:
            logger.warning("provider_registry.overwriting", provider=adapter.provider.value)

        self._adapters[adapter.provider] = adapter
        logger.debug("provider_registry.registered", provider=adapter.provider.value)

    def get(self, provider: Provider | str) -> BaseProviderAdapter:
        """Get the adapter for a provider or raise ValidationError."""
        try:
            adapter = self._adapters.get(Provider(provider))
        except ValueError:
            adapter = None

        if adapter is None:
            supported = ", ".join(p.value for p in self._adapters)
            raise ValidationError(
                f"Provider must be one of: {supported}",
                {"provider": str(getattr(provider, "value", provider))},
            )
        return adapter

    def list_providers(self) -> list[Provider]:
        """List all registered providers."""
        return list(self._adapters.keys())

    async def aclose(self) -> None:
        """Close every adapter's HTTP client."""
        for adapter in self._adapters.values():
            await adapter.aclose()


def build_registry(settings: Settings | None = None) -> ProviderRegistry:
    """Create a registry with the built-in adapters."""
    registry = ProviderRegistry()
    for adapter_class in DEFAULT_ADAPTERS:
        registry.register(adapter_class(settings=settings))
    return registry

