"""Provider registry keyed by backend id."""

from llm_tui.config import Config, ProviderId
from llm_tui.exceptions import ProviderNotFoundError
from llm_tui.llm import LLMProvider
from llm_tui.llm.bedrock import BedrockProvider
from llm_tui.llm.claude import ClaudeProvider
from llm_tui.llm.gemini import GeminiProvider
from llm_tui.llm.ollama import OllamaProvider
from llm_tui.llm.openai import OpenAIProvider
from llm_tui.logging import get_logger

log = get_logger(__name__)


class ProviderRegistry:
    """Holds one adapter per backend."""

    def __init__(self):
        self._providers: dict[ProviderId, LLMProvider] = {}

    def register(self, provider: LLMProvider, provider_id: ProviderId | None = None) -> None:
        """Register an adapter under its own id (or an explicit one)."""
        key = ProviderId(provider_id or provider.provider_id)
        log.debug("Registering provider", provider=key.value)
        self._providers[key] = provider

    def get(self, provider_id: ProviderId | str) -> LLMProvider:
        """Get an adapter.

        Raises:
            ProviderNotFoundError if the backend is not registered
        """
        try:
            key = ProviderId(provider_id)
        except ValueError:
            raise ProviderNotFoundError(str(provider_id))
        if key not in self._providers:
            raise ProviderNotFoundError(key.value)
        return self._providers[key]

    def is_registered(self, provider_id: ProviderId | str) -> bool:
        try:
            return ProviderId(provider_id) in self._providers
        except ValueError:
            return False

    def registered_providers(self) -> list[ProviderId]:
        return list(self._providers)

    def available_providers(self) -> list[ProviderId]:
        """Registered backends whose adapter reports itself available."""
        return [key for key, provider in self._providers.items() if provider.is_available()]

    @classmethod
    def from_config(cls, config: Config) -> "ProviderRegistry":
        """Build the registry once at startup.

        The local server and Bedrock are always registered; cloud backends
        that need an API key are registered only when one is configured.
        """
        registry = cls()
        registry.register(
            OllamaProvider(
                config.ollama.url,
                timeout=config.request_timeout,
                auto_start=config.ollama.auto_start,
            )
        )
        if config.claude.api_key:
            registry.register(
                ClaudeProvider(
                    config.claude.api_key,
                    api_url=config.claude.api_url,
                    timeout=config.request_timeout,
                )
            )
        registry.register(BedrockProvider(region=config.bedrock.region))
        if config.openai.api_key:
            registry.register(
                OpenAIProvider(
                    config.openai.api_key,
                    base_url=config.openai.base_url,
                    timeout=config.request_timeout,
                )
            )
        if config.gemini.api_key:
            registry.register(
                GeminiProvider(
                    config.gemini.api_key,
                    base_url=config.gemini.base_url,
                    timeout=config.request_timeout,
                )
            )
        return registry
