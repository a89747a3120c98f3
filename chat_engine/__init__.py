"""chat_engine — multi-provider streaming chat core.

Usage::

    from chat_engine import create_runtime

    runtime = await create_runtime()
    chat = await runtime.chats.new_chat()
    async for event in runtime.orchestrator.send_turn(
        chat.id, "Hello", provider="ollama", model_name="llama3:latest"
    ):
        print(event)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()  # reads .env into os.environ (no-op if file missing)

from chat_engine.config.settings import (
    is_configured,
    load_provider_config,
    load_response_language,
    seed_from_env,
    timeout_from_env,
)
from chat_engine.engine.catalog import ModelCatalog
from chat_engine.engine.chats import ChatDirectory
from chat_engine.engine.models import ChatEvent, ChatEventType, ProviderKind
from chat_engine.engine.options import SamplingSettings
from chat_engine.engine.orchestrator import ChatOrchestrator
from chat_engine.providers.base import DemoProviderClient, ProviderClient
from chat_engine.providers.downloads import ModelDownloader
from chat_engine.providers.ollama import OllamaClient, OllamaCloudClient
from chat_engine.providers.openai_compat import DeepSeekClient, GroqClient, OpenRouterClient
from chat_engine.providers.registry import ProviderRegistry
from chat_engine.store.in_memory import InMemoryChatStore, InMemoryPreferenceStore
from chat_engine.store.interface import ChatStore, PreferenceStore
from chat_engine.tracing.interface import NullTraceCollector, TraceCollector
from chat_engine.tracing.jsonl_tracer import JSONLTraceCollector

logger = logging.getLogger(__name__)

__all__ = [
    "ChatEvent",
    "ChatEventType",
    "ChatOrchestrator",
    "ChatRuntime",
    "ProviderKind",
    "create_runtime",
]

CLIENT_TYPES: dict[ProviderKind, type[ProviderClient]] = {
    ProviderKind.OLLAMA: OllamaClient,
    ProviderKind.OLLAMA_CLOUD: OllamaCloudClient,
    ProviderKind.GROQ: GroqClient,
    ProviderKind.DEEPSEEK: DeepSeekClient,
    ProviderKind.OPENROUTER: OpenRouterClient,
}


@dataclass
class ChatRuntime:
    """Everything an adapter needs, wired together."""

    orchestrator: ChatOrchestrator
    chats: ChatDirectory
    catalog: ModelCatalog
    preferences: PreferenceStore
    downloader: ModelDownloader | None = None

    @property
    def registry(self) -> ProviderRegistry:
        return self.orchestrator.registry

    async def aclose(self) -> None:
        await self.registry.aclose_all()


async def create_runtime(
    *,
    chat_store: ChatStore | None = None,
    preferences: PreferenceStore | None = None,
    trace_dir: str | None = None,
    demo: bool | None = None,
) -> ChatRuntime:
    """Wire all components and return a ready-to-use runtime.

    Environment variables (all optional):
      OLLAMA_HOST / OLLAMA_PORT        — local server, default ``localhost:11434``
      OLLAMA_CLOUD_API_KEY, GROQ_API_KEY, DEEPSEEK_API_KEY, OPENROUTER_API_KEY
      HTTP_PROXY_HOST / _PORT / _LOGIN / _PASSWORD / _ENABLED / _AUTH_ENABLED
      CHAT_ENGINE_RESPONSE_LANG        — default ``English``; ``Auto`` adds no directive
      CHAT_ENGINE_TIMEOUT              — request timeout in seconds, default 120
      CHAT_ENGINE_TRACE_DIR            — write JSONL traces there when set
      CHAT_ENGINE_DEMO                 — set to ``1`` to use echoing demo providers
    """
    demo = demo if demo is not None else os.environ.get("CHAT_ENGINE_DEMO") == "1"
    trace_dir = trace_dir or os.environ.get("CHAT_ENGINE_TRACE_DIR")

    # -- components --
    store = chat_store or InMemoryChatStore()
    prefs = preferences or InMemoryPreferenceStore()
    await seed_from_env(prefs)
    trace_collector: TraceCollector = JSONLTraceCollector(trace_dir) if trace_dir else NullTraceCollector()

    registry = ProviderRegistry()
    timeout = timeout_from_env()
    for kind, client_type in CLIENT_TYPES.items():
        if demo:
            registry.register(DemoProviderClient(kind))
        elif await is_configured(kind, prefs):
            config = await load_provider_config(kind, prefs, timeout=timeout)
            registry.register(client_type(config))
        else:
            logger.info("%s has no API key; not registered", kind.display_name)

    orchestrator = ChatOrchestrator(
        registry=registry,
        chat_store=store,
        sampling=SamplingSettings(),
        trace_collector=trace_collector,
        response_language=await load_response_language(prefs),
    )
    catalog = ModelCatalog(registry)
    downloader = None
    ollama = registry.get(ProviderKind.OLLAMA)
    if isinstance(ollama, OllamaClient):
        downloader = ModelDownloader(ollama, catalog)

    return ChatRuntime(
        orchestrator=orchestrator,
        chats=ChatDirectory(store, orchestrator),
        catalog=catalog,
        preferences=prefs,
        downloader=downloader,
    )
