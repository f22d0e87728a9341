"""Model provider implementations and the per-request provider registry."""
import threading
from typing import Callable, Dict, Optional, Tuple

from ..base import ModelProvider
from ...errors import ConfigurationError
from ...logging import logger
from .mock import MockProvider
from .anthropic import AnthropicProvider
from .openai import OpenAIProvider
from .openrouter import OpenRouterProvider

ProviderFactory = Callable[[Optional[str]], ModelProvider]

_DEFAULT_FACTORIES: Dict[str, ProviderFactory] = {
    "anthropic": lambda model: AnthropicProvider(model=model),
    "openai": lambda model: OpenAIProvider(model=model),
    "openrouter": lambda model: OpenRouterProvider(model=model),
    "mock": lambda model: MockProvider(model=model or "mock-llm-v1"),
}


class ProviderRegistry:
    """Builds provider adapters on first use and reuses them.

    Adapters are keyed by (provider, model) so one process can serve requests
    that select different models. Construction is lazy: a missing API key for
    a provider nobody selects never fails startup.

    Example:
        >>> registry = ProviderRegistry()
        >>> provider = registry.get("anthropic", "claude-sonnet-4-5-20250929")
    """

    def __init__(self, factories: Optional[Dict[str, ProviderFactory]] = None):
        self._factories = dict(factories if factories is not None else _DEFAULT_FACTORIES)
        self._instances: Dict[Tuple[str, Optional[str]], ModelProvider] = {}
        self._lock = threading.Lock()

    def register(self, name: str, factory: ProviderFactory) -> None:
        with self._lock:
            self._factories[name] = factory
            for key in [k for k in self._instances if k[0] == name]:
                del self._instances[key]

    def get(self, provider: str, model: Optional[str] = None) -> ModelProvider:
        """Return the adapter for (provider, model), building it if needed.

        Raises:
            ConfigurationError: Unknown provider, or the adapter could not be
                configured (missing SDK or API key)
        """
        key = (provider, model)
        with self._lock:
            instance = self._instances.get(key)
            if instance is not None:
                return instance
            factory = self._factories.get(provider)
            if factory is None:
                raise ConfigurationError(
                    f"Unknown model provider: {provider}",
                    details={"provider": provider, "known": sorted(self._factories)}
                )
            instance = factory(model)
            self._instances[key] = instance
            logger.info("provider_ready provider=%s model=%s", provider, instance.model_name)
            return instance

    @property
    def known_providers(self) -> Tuple[str, ...]:
        return tuple(sorted(self._factories))


__all__ = [
    "MockProvider",
    "AnthropicProvider",
    "OpenAIProvider",
    "OpenRouterProvider",
    "ProviderRegistry",
]
