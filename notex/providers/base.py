"""
Base provider protocol and registry.

A chat provider sends one system+user prompt to an LLM and returns text.
Providers are responsible for translating their library's failures into
the OracleError taxonomy so the executor can decide whether to retry.
Using Protocol for structural subtyping - no explicit inheritance required.
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class ChatProvider(Protocol):
    """
    Generates text from a system and user prompt.

    Example implementation:
        class EchoChat:
            def generate(self, system, user, *, max_tokens=4096):
                return user

            def ping(self):
                pass
    """

    def generate(
        self,
        system: str,
        user: str,
        *,
        max_tokens: int = 4096,
    ) -> str:
        """
        Send one prompt and return the completion text.

        Raises:
            TransientOracleError: network, timeout, rate limit, 5xx
            MalformedResponseError: the completion was empty
            FatalOracleError: authentication or endpoint errors
        """
        ...

    def ping(self) -> None:
        """
        Cheap check that the endpoint is configured correctly.

        Raises FatalOracleError for configuration problems. Transient
        problems may be raised as TransientOracleError.
        """
        ...


class ProviderRegistry:
    """
    Registry for discovering and instantiating chat providers.

    Providers are registered by name so the TOML config can select one
    without code changes.

    Example:
        registry = ProviderRegistry()
        registry.register("ollama", OllamaChat)

        # Later, from config:
        provider = registry.create("ollama", {"model": "llama3.2"})
    """

    def __init__(self):
        self._providers: dict[str, type] = {}
        self._lazy_loaded = False

    def _ensure_providers_loaded(self) -> None:
        """Lazily import the concrete provider module."""
        if self._lazy_loaded:
            return
        self._lazy_loaded = True
        from . import llm  # noqa: F401  (registers on import)

    def register(self, name: str, provider_class: type) -> None:
        """Register a chat provider class."""
        self._providers[name] = provider_class

    def create(self, name: str, params: dict | None = None) -> ChatProvider:
        """Create a chat provider instance."""
        self._ensure_providers_loaded()
        if name not in self._providers:
            available = ", ".join(sorted(self._providers)) or "none"
            raise ValueError(
                f"Unknown chat provider: '{name}'. "
                f"Available providers: {available}."
            )
        try:
            return self._providers[name](**(params or {}))
        except ImportError as e:
            raise RuntimeError(
                f"Failed to create chat provider '{name}': {e}\n"
                f"Install required dependencies."
            ) from e
        except TypeError as e:
            raise ValueError(f"Bad parameters for chat provider '{name}': {e}") from e

    def list_providers(self) -> list[str]:
        """List registered provider names."""
        self._ensure_providers_loaded()
        return sorted(self._providers)


# Global registry instance
# Concrete providers register themselves on import
_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    return _registry
