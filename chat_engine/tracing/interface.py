"""TraceCollector ABC plus a no-op collector."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class TraceCollector(ABC):
    """Collects structured per-chat trace entries (send, provider call, outcome)."""

    @abstractmethod
    async def emit(self, chat_id: str, event_type: str, data: dict[str, Any]) -> None: ...

    @abstractmethod
    async def flush(self, chat_id: str) -> None: ...


class NullTraceCollector(TraceCollector):
    async def emit(self, chat_id: str, event_type: str, data: dict[str, Any]) -> None:
        return None

    async def flush(self, chat_id: str) -> None:
        return None
