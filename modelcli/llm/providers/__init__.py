"""Provider adapters and the name -> adapter table used by configuration."""

from __future__ import annotations

from modelcli.config import ModelSettings
from modelcli.errors import ConfigError
from modelcli.llm.providers.base import Provider
from modelcli.llm.providers.ollama import OllamaProvider
from modelcli.llm.providers.openai_compat import OpenAICompatProvider

_REGISTRY: dict[str, type[Provider]] = {
    OpenAICompatProvider.name: OpenAICompatProvider,
    OllamaProvider.name: OllamaProvider,
}


def register_provider(name: str, provider_cls: type[Provider]) -> None:
    """Register *provider_cls* under *name*.  Overwrites any existing entry."""
    _REGISTRY[name] = provider_cls


def create_provider(name: str, settings: ModelSettings, **kwargs) -> Provider:
    """
    Instantiate the adapter registered under *name*.

    Raises ``ConfigError`` if no adapter has that name.
    """
    provider_cls = _REGISTRY.get(name)
    if provider_cls is None:
        available = ", ".join(sorted(_REGISTRY)) or "<none>"
        raise ConfigError(f"Unknown provider {name}. Available: {available}")
    return provider_cls(settings, **kwargs)


def list_providers() -> list[str]:
    return list(_REGISTRY)


__all__ = [
    "OllamaProvider",
    "OpenAICompatProvider",
    "Provider",
    "create_provider",
    "list_providers",
    "register_provider",
]
