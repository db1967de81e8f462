"""
Chat providers for the oracle.

Concrete providers register themselves with the global registry when
``notex.providers.llm`` is imported.
"""

from .base import ChatProvider, ProviderRegistry, get_registry

__all__ = [
    "ChatProvider",
    "ProviderRegistry",
    "get_registry",
]
