"""Provider client — ABC, and mocks for tests and demo runs."""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Sequence, Union

from chat_engine.engine.assembler import DEFAULT_SYSTEM_LANGUAGE_PROMPT
from chat_engine.engine.decoder import Framing, StreamDecoder, ollama_chat_reader
from chat_engine.engine.errors import ProviderError
from chat_engine.engine.models import (
    AssistantReply,
    ChatRequest,
    LanguageStyle,
    ModelDescriptor,
    ProviderKind,
    Role,
)

logger = logging.getLogger(__name__)

ByteStream = AsyncIterator[bytes]


class ProviderClient(ABC):
    """One backend family.

    Implementations translate every transport/SDK failure into the
    ``ProviderError`` taxonomy and never retry on their own.
    """

    kind: ProviderKind
    language_style: LanguageStyle = LanguageStyle.SYSTEM
    system_language_prompt: str = DEFAULT_SYSTEM_LANGUAGE_PROMPT

    @property
    def name(self) -> str:
        return self.kind.display_name

    @abstractmethod
    async def list_models(self) -> list[ModelDescriptor]: ...

    @abstractmethod
    async def chat_once(self, request: ChatRequest) -> AssistantReply: ...

    @abstractmethod
    def open_chat_stream(self, request: ChatRequest) -> AsyncContextManager[ByteStream]:
        """``async with client.open_chat_stream(req) as chunks: async for b in chunks``"""

    @abstractmethod
    def decoder(self) -> StreamDecoder:
        """A fresh decoder for this provider's streaming wire format."""

    async def probe(self) -> bool:
        """True when the backend answers a model listing (host/key check)."""
        try:
            await self.list_models()
        except ProviderError as exc:
            logger.info("%s probe failed: %s", self.name, exc.user_message)
            return False
        return True

    async def aclose(self) -> None:
        return None


# ---------------------------------------------------------------------------
# Test mock: deterministic, pre-loaded replies and stream scripts
# ---------------------------------------------------------------------------

StreamScript = Union[Sequence[Union[bytes, Exception]], Exception]


def ndjson_chunks(*deltas: str, done: bool = True, **final_fields: int) -> list[bytes]:
    """Ollama-style stream body, one chunk per delta plus a terminal record."""
    chunks = [
        json.dumps({"message": {"role": "assistant", "content": d}, "done": 0}).encode() + b"\n"
        for d in deltas
    ]
    if done:
        final = {"message": {"role": "assistant", "content": ""}, "done": 1, **final_fields}
        chunks.append(json.dumps(final).encode() + b"\n")
    return chunks


class MockProviderClient(ProviderClient):
    """Returns pre-configured replies/streams in order. Used in unit tests."""

    def __init__(
        self,
        kind: ProviderKind = ProviderKind.OLLAMA,
        *,
        replies: Sequence[AssistantReply | Exception] = (),
        streams: Sequence[StreamScript] = (),
        models: Sequence[ModelDescriptor] | Exception = (),
        language_style: LanguageStyle = LanguageStyle.INLINE,
    ) -> None:
        self.kind = kind
        self.language_style = language_style
        self._replies = list(replies)
        self._streams = list(streams)
        self._models = models
        self.requests: list[ChatRequest] = []

    @property
    def call_count(self) -> int:
        return len(self.requests)

    async def list_models(self) -> list[ModelDescriptor]:
        if isinstance(self._models, Exception):
            raise self._models
        return list(self._models)

    async def chat_once(self, request: ChatRequest) -> AssistantReply:
        self.requests.append(request)
        if not self._replies:
            return AssistantReply(content="[mock replies exhausted]", model_name=request.model_name)
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    @asynccontextmanager
    async def open_chat_stream(self, request: ChatRequest) -> AsyncIterator[ByteStream]:
        self.requests.append(request)
        script = self._streams.pop(0) if self._streams else ndjson_chunks()
        if isinstance(script, Exception):
            raise script
        yield self._replay(script)

    def decoder(self) -> StreamDecoder:
        return StreamDecoder(ollama_chat_reader, Framing.NDJSON)

    @staticmethod
    async def _replay(script: Sequence[bytes | Exception]) -> ByteStream:
        for chunk in script:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


# ---------------------------------------------------------------------------
# Demo mock for running the adapters without any backend
# ---------------------------------------------------------------------------

class DemoProviderClient(ProviderClient):
    """Echoes the last user message back, streamed word by word."""

    def __init__(self, kind: ProviderKind = ProviderKind.OLLAMA, delay: float = 0.02) -> None:
        self.kind = kind
        self.language_style = LanguageStyle.INLINE if kind is ProviderKind.OLLAMA else LanguageStyle.SYSTEM
        self._delay = delay

    async def list_models(self) -> list[ModelDescriptor]:
        return [ModelDescriptor(name="demo:latest", display_name="Demo", provider=self.kind, is_default=True)]

    async def chat_once(self, request: ChatRequest) -> AssistantReply:
        return AssistantReply(content=self._answer(request), model_name=request.model_name)

    @asynccontextmanager
    async def open_chat_stream(self, request: ChatRequest) -> AsyncIterator[ByteStream]:
        yield self._words(self._answer(request))

    def decoder(self) -> StreamDecoder:
        return StreamDecoder(ollama_chat_reader, Framing.NDJSON)

    async def _words(self, text: str) -> ByteStream:
        words = text.split(" ")
        pieces = [w if i == len(words) - 1 else w + " " for i, w in enumerate(words)]
        for chunk in ndjson_chunks(*pieces):
            await asyncio.sleep(self._delay)
            yield chunk

    @staticmethod
    def _answer(request: ChatRequest) -> str:
        last = next((m.content for m in reversed(request.messages) if m.role is Role.USER), "")
        return f"This is a demo response to: {last.splitlines()[0] if last else '(empty)'}"
