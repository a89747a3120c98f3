"""ModelCatalog: per-provider model lists, refreshed on demand."""

from __future__ import annotations

import logging

from chat_engine.engine.errors import ProviderError
from chat_engine.engine.models import ModelDescriptor, ProviderKind
from chat_engine.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)


class ModelCatalog:
    def __init__(self, registry: ProviderRegistry) -> None:
        self._registry = registry
        self._models: dict[ProviderKind, list[ModelDescriptor]] = {}

    async def refresh(self, provider: ProviderKind) -> list[ModelDescriptor]:
        """Replace the cached list with the provider's current one.

        A failed listing leaves an empty list for that provider; the error is
        logged, not raised.
        """
        client = self._registry.get(provider)
        try:
            models = await client.list_models()
        except ProviderError as exc:
            logger.warning("Could not list %s models: %s", client.name, exc.user_message)
            models = []
        self._models[provider] = models
        logger.info("%s: %d model(s) available", client.name, len(models))
        return list(models)

    def models(self, provider: ProviderKind) -> list[ModelDescriptor]:
        return list(self._models.get(provider, []))

    def is_installed(self, provider: ProviderKind, name: str) -> bool:
        return any(m.name == name for m in self._models.get(provider, []))

    def default_model(self, provider: ProviderKind) -> ModelDescriptor | None:
        models = self._models.get(provider, [])
        for model in models:
            if model.is_default:
                return model
        return models[0] if models else None

    def forget(self, provider: ProviderKind, name: str) -> None:
        """Drop one entry locally, e.g. after a successful delete."""
        self._models[provider] = [m for m in self._models.get(provider, []) if m.name != name]
