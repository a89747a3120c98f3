"""Shared fixtures for chat_engine tests."""

from __future__ import annotations

from datetime import datetime, timedelta

import httpx
import pytest

from chat_engine.engine.models import Role, Turn
from chat_engine.engine.orchestrator import ChatOrchestrator
from chat_engine.providers.registry import ProviderRegistry
from chat_engine.providers.transport import ProviderConfig
from chat_engine.store.in_memory import InMemoryChatStore, InMemoryPreferenceStore
from chat_engine.tracing.jsonl_tracer import JSONLTraceCollector


@pytest.fixture
def chat_store():
    return InMemoryChatStore()


@pytest.fixture
def preferences():
    return InMemoryPreferenceStore()


@pytest.fixture
def trace_collector(tmp_path):
    return JSONLTraceCollector(trace_dir=str(tmp_path / "traces"))


@pytest.fixture
def make_orchestrator(chat_store, trace_collector):
    """``make_orchestrator(client, ..., response_language="English")``"""

    def _make(*clients, **kwargs):
        registry = ProviderRegistry()
        for client in clients:
            registry.register(client)
        return ChatOrchestrator(registry, chat_store, trace_collector=trace_collector, **kwargs)

    return _make


@pytest.fixture
def make_turns():
    """``make_turns(chat_id, n)`` → alternating user/assistant turns ``t0..t{n-1}``."""

    def _make(chat_id: str, n: int) -> list[Turn]:
        start = datetime(2024, 5, 17, 12, 0, 0)
        return [
            Turn(
                chat_id=chat_id,
                model_name="llama3:latest",
                role=Role.USER if i % 2 == 0 else Role.ASSISTANT,
                content=f"t{i}",
                created_at=start + timedelta(seconds=i),
            )
            for i in range(n)
        ]

    return _make


@pytest.fixture
def make_http_client():
    """``make_http_client(ClientClass, handler, **config)`` → client on a MockTransport."""
    def _make(client_cls, handler, **config):
        client = client_cls(
            ProviderConfig.default(client_cls.kind, **config),
            transport=httpx.MockTransport(handler),
        )
        return client

    return _make
