"""
Provider Registry - Maps node type tags to the providers that run them.

This module manages:
- Registration of action providers
- Provider configuration loading/saving
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from workflow_studio.providers.base import GenerationProvider, ProviderConfig
from workflow_studio.providers.http import HttpGenerationProvider
from workflow_studio.providers.local import BlurProvider, PromptConcatenatorProvider


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "workflow_studio" / "providers.json"


class ProviderRegistry:
    """
    Registry of action providers keyed by node type tag.

    A later registration for the same type tag replaces the earlier one.
    """

    def __init__(self):
        self._providers: dict[str, GenerationProvider] = {}
        self._configs: dict[str, ProviderConfig] = {}
        self._config_path: Path | None = None

    # -------------------------------------------------------------------------
    # Provider Registration
    # -------------------------------------------------------------------------

    def register(self, provider: GenerationProvider) -> None:
        """Register a provider for every type tag it handles."""
        for type_tag in provider.type_tags:
            self._providers[type_tag] = provider

    def unregister(self, type_tag: str) -> None:
        self._providers.pop(type_tag, None)

    def get_for(self, type_tag: str) -> GenerationProvider | None:
        """Provider that runs actions for `type_tag`, if any."""
        provider = self._providers.get(type_tag)
        if provider is not None and not provider.is_configured:
            return None
        return provider

    def get_provider(self, provider_id: str) -> GenerationProvider | None:
        """Registered provider instance by provider id."""
        for provider in self._providers.values():
            if provider.id == provider_id:
                return provider
        return None

    def list_type_tags(self) -> list[str]:
        return sorted(self._providers)

    def __contains__(self, type_tag: str) -> bool:
        return type_tag in self._providers

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def set_config(self, provider_id: str, config: ProviderConfig) -> None:
        """Set configuration for a provider and apply it to registered instances."""
        self._configs[provider_id] = config
        for provider in self._providers.values():
            if provider.id == provider_id:
                provider.config = config

    def get_config(self, provider_id: str) -> ProviderConfig:
        return self._configs.get(provider_id, ProviderConfig())

    def load_config(self, path: Path | None = None) -> None:
        """Load provider configurations from file."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        self._config_path = path

        if not path.exists():
            return

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load provider config: {e}")
            return

        for provider_id, cfg_data in data.get("providers", {}).items():
            self.set_config(provider_id, ProviderConfig(
                api_key=cfg_data.get("api_key", ""),
                enabled=cfg_data.get("enabled", True),
                base_url=cfg_data.get("base_url"),
                extra=cfg_data.get("extra", {}),
            ))

    def save_config(self, path: Path | None = None) -> None:
        """Save provider configurations to file."""
        if path is None:
            path = self._config_path or DEFAULT_CONFIG_PATH

        # Ensure directory exists
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "providers": {
                pid: {
                    "api_key": cfg.api_key,
                    "enabled": cfg.enabled,
                    "base_url": cfg.base_url,
                    "extra": cfg.extra,
                }
                for pid, cfg in self._configs.items()
            },
        }

        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)


def create_default_registry(base_url: str | None = None) -> ProviderRegistry:
    """Registry with the built-in providers."""
    registry = ProviderRegistry()
    registry.register(HttpGenerationProvider(ProviderConfig(base_url=base_url)))
    registry.register(PromptConcatenatorProvider())
    registry.register(BlurProvider())
    return registry


# Singleton instance
_registry: ProviderRegistry | None = None


def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    global _registry
    if _registry is None:
        _registry = create_default_registry()
    return _registry
