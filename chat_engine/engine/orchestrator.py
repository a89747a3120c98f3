"""ChatOrchestrator — turns in, provider calls out, events back."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

from chat_engine.engine.assembler import HISTORY_WINDOW, ConversationAssembler
from chat_engine.engine.decoder import StreamDecoder
from chat_engine.engine.errors import ChatEngineError
from chat_engine.engine.models import (
    AUTO_LANGUAGE,
    Attachments,
    ChatEvent,
    ChatEventType,
    ChatRequest,
    ChatState,
    CompletionMetrics,
    ProviderKind,
    Role,
    Turn,
    WireMessage,
)
from chat_engine.engine.options import SamplingSettings
from chat_engine.providers.base import ProviderClient
from chat_engine.providers.registry import ProviderRegistry
from chat_engine.store.interface import ChatStore
from chat_engine.tracing.interface import NullTraceCollector, TraceCollector

logger = logging.getLogger(__name__)

EMPTY_REPLY = "No Response from {model_name}"
QUICK_COMPLETION_ID = "quick-completion"
QUICK_COMPLETION_DIRECTIVE = "\n attention: please generate response for above content use {language} language"


@dataclass
class StreamingSession:
    """Ephemeral per-chat state. Replaced, never shared across chats."""

    chat_id: str
    model_name: str = ""
    accumulated_text: str = ""
    is_done: bool = False
    is_waiting: bool = False
    generation: int = 0
    cancelled: bool = False
    state: ChatState = ChatState.IDLE
    turns: list[Turn] = field(default_factory=list)
    loaded: bool = False


class ChatOrchestrator:
    """Public API: ``async for event in orchestrator.send_turn(...): ...``

    At most one turn is in flight per chat. Every send captures the chat's
    generation number; ``cancel``, ``clear_chat`` and ``load_chat`` bump it,
    after which the old send persists and yields nothing further.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        chat_store: ChatStore,
        sampling: SamplingSettings | None = None,
        trace_collector: TraceCollector | None = None,
        response_language: str = AUTO_LANGUAGE,
        history_window: int = HISTORY_WINDOW,
    ) -> None:
        self._registry = registry
        self._store = chat_store
        self._sampling = sampling or SamplingSettings()
        self._trace = trace_collector or NullTraceCollector()
        self._history_window = history_window
        self.response_language = response_language
        self._sessions: dict[str, StreamingSession] = {}

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def sampling(self) -> SamplingSettings:
        return self._sampling

    # ------------------------------------------------------------------
    # Session queries
    # ------------------------------------------------------------------

    def state(self, chat_id: str) -> ChatState:
        session = self._sessions.get(chat_id)
        return session.state if session else ChatState.IDLE

    def turns(self, chat_id: str) -> list[Turn]:
        session = self._sessions.get(chat_id)
        return list(session.turns) if session else []

    def current_response(self, chat_id: str) -> str:
        session = self._sessions.get(chat_id)
        return session.accumulated_text if session else ""

    # ------------------------------------------------------------------
    # Session control
    # ------------------------------------------------------------------

    async def load_chat(self, chat_id: str) -> list[Turn]:
        session = self._invalidate(chat_id)
        session.turns = await self._store.get_turns(chat_id)
        session.loaded = True
        return list(session.turns)

    async def clear_chat(self, chat_id: str) -> bool:
        session = self._invalidate(chat_id)
        session.turns = []
        session.loaded = True
        return await self._store_call("delete turns", self._store.delete_turns(chat_id))

    def cancel(self, chat_id: str) -> bool:
        """Abandon the in-flight turn, if any. Returns whether one was running."""
        session = self._sessions.get(chat_id)
        if session is None or session.state is ChatState.IDLE:
            return False
        self._invalidate(chat_id)
        logger.info("Cancelled in-flight turn for chat %s", chat_id)
        return True

    def forget(self, chat_id: str) -> None:
        """Drop all in-memory state for a deleted chat."""
        if chat_id in self._sessions:
            self._invalidate(chat_id)
            del self._sessions[chat_id]

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def send_turn(
        self,
        chat_id: str,
        content: str,
        *,
        provider: ProviderKind | str,
        model_name: str,
        stream: bool = True,
        attachments: Attachments | None = None,
        response_language: str | None = None,
    ) -> AsyncIterator[ChatEvent]:
        session = self._session(chat_id)
        attachments = attachments or Attachments()

        # Rejections yield nothing.
        if session.state is not ChatState.IDLE:
            logger.warning("Chat %s already has a turn in flight (%s); send ignored",
                           chat_id, session.state.value)
            return
        if not content.strip() and attachments.is_empty:
            logger.warning("Empty message for chat %s; send ignored", chat_id)
            return

        try:
            client = self._registry.get(provider)
        except ChatEngineError as exc:
            yield self._event(chat_id, ChatEventType.ERROR, error=exc.user_message)
            return

        # Claim the chat before the first await.
        session.generation += 1
        generation = session.generation
        session.state = ChatState.SENDING
        session.model_name = model_name
        session.accumulated_text = ""
        session.is_done = False
        session.is_waiting = True
        session.cancelled = False

        def is_current() -> bool:
            return self._sessions.get(chat_id) is session and session.generation == generation

        language = response_language or self.response_language
        t_start = time.time()
        status = "error"
        try:
            if not session.loaded:
                session.turns = await self._store.get_turns(chat_id)
                session.loaded = True
                if not is_current():
                    status = "stale"
                    return
            history = list(session.turns)

            user_turn = Turn(
                chat_id=chat_id,
                model_name=model_name,
                role=Role.USER,
                content=content,
                attachments=attachments,
            )
            persisted = await self._store_call("save user turn", self._store.save_turn(user_turn))
            if not is_current():
                status = "stale"
                return
            session.turns.append(user_turn)
            yield self._event(chat_id, ChatEventType.USER_TURN,
                              turn=user_turn.model_dump(mode="json"), persisted=persisted)
            if not is_current():
                status = "stale"
                return

            assembler = ConversationAssembler(self._history_window, client.system_language_prompt)
            conversation = assembler.assemble(
                content,
                history=history,
                response_language=language,
                style=client.language_style,
                attachments=attachments,
                options=self._sampling.snapshot(),
            )
            request = ChatRequest(
                model_name=model_name,
                messages=conversation.messages,
                options=conversation.options,
                response_language=language,
                stream=stream,
            )
            await self._trace.emit(chat_id, "send_turn", {
                "provider": client.kind.value,
                "model": model_name,
                "stream": stream,
                "history_turns": len(history),
                "messages": len(request.messages),
                "content_chars": len(content),
                "images": len(attachments.images),
            })

            session.state = ChatState.STREAMING if stream else ChatState.AWAITING_BUFFERED
            yield self._event(chat_id, ChatEventType.STATE, state=session.state.value)
            if not is_current():
                status = "stale"
                return

            t_call = time.time()
            if stream:
                decoder = client.decoder()
                async for delta in self._read_stream(client, request, decoder, is_current):
                    session.accumulated_text += delta
                    yield self._event(chat_id, ChatEventType.TOKEN, delta=delta, text=session.accumulated_text)
                if not is_current():
                    status = "stale"
                    return
                if not decoder.done:
                    status = "incomplete"
                    await self._trace_call(chat_id, t_call, status, decoder)
                    session.accumulated_text = ""
                    yield self._event(chat_id, ChatEventType.ERROR,
                                      error=self._incomplete_message(client, decoder),
                                      provider=client.name)
                    return
                await self._trace_call(chat_id, t_call, "ok", decoder)
                reply_text, metrics = decoder.accumulated_text, decoder.metrics
            else:
                reply = await client.chat_once(request)
                if not is_current():
                    status = "stale"
                    return
                await self._trace.emit(chat_id, "provider_call", {
                    "latency_ms": round((time.time() - t_call) * 1000, 2),
                    "outcome": "ok",
                })
                reply_text, metrics = reply.content, reply.metrics

            session.is_done = True
            final = await self._complete(session, model_name, reply_text, metrics, is_current)
            if final is None:
                status = "stale"
                return
            yield final
            status = "ok"

        except ChatEngineError as exc:
            if is_current():
                logger.warning("Turn for chat %s failed: %s", chat_id, exc.user_message)
                session.accumulated_text = ""
                yield self._event(chat_id, ChatEventType.ERROR, error=exc.user_message,
                                  provider=getattr(exc, "provider", client.name))
            else:
                status = "stale"
        finally:
            if is_current():
                session.state = ChatState.IDLE
                session.is_waiting = False
            await self._trace.emit(chat_id, "turn_done", {
                "status": status,
                "total_latency_ms": round((time.time() - t_start) * 1000, 2),
            })
            await self._trace.flush(chat_id)

    async def quick_completion(
        self,
        content: str,
        *,
        provider: ProviderKind | str = ProviderKind.OLLAMA,
        model_name: str,
        response_language: str | None = None,
    ) -> AsyncIterator[ChatEvent]:
        """One-shot streamed completion: no history, nothing persisted."""
        if not content.strip():
            logger.warning("Empty quick completion ignored")
            return
        chat_id = QUICK_COMPLETION_ID
        try:
            client = self._registry.get(provider)
            language = response_language or self.response_language
            text = content
            if language != AUTO_LANGUAGE:
                text += QUICK_COMPLETION_DIRECTIVE.format(language=language)
            request = ChatRequest(
                model_name=model_name,
                messages=[WireMessage(role=Role.USER, content=text)],
                options=self._sampling.snapshot(),
                response_language=language,
                stream=True,
            )
            decoder = client.decoder()
            running = ""
            async for delta in self._read_stream(client, request, decoder, lambda: True):
                running += delta
                yield self._event(chat_id, ChatEventType.TOKEN, delta=delta, text=running)
            if not decoder.done:
                yield self._event(chat_id, ChatEventType.ERROR,
                                  error=self._incomplete_message(client, decoder), provider=client.name)
                return
            yield self._event(chat_id, ChatEventType.FINAL, text=decoder.accumulated_text)
        except ChatEngineError as exc:
            yield self._event(chat_id, ChatEventType.ERROR, error=exc.user_message)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _session(self, chat_id: str) -> StreamingSession:
        session = self._sessions.get(chat_id)
        if session is None:
            session = self._sessions[chat_id] = StreamingSession(chat_id=chat_id)
        return session

    def _invalidate(self, chat_id: str) -> StreamingSession:
        session = self._session(chat_id)
        session.generation += 1
        session.cancelled = session.state is not ChatState.IDLE
        session.state = ChatState.IDLE
        session.is_waiting = False
        session.accumulated_text = ""
        return session

    @staticmethod
    async def _read_stream(
        client: ProviderClient,
        request: ChatRequest,
        decoder: StreamDecoder,
        is_current: Callable[[], bool],
    ) -> AsyncIterator[str]:
        """Yield deltas in arrival order until completion, EOF, or staleness."""
        async with client.open_chat_stream(request) as chunks:
            async for chunk in chunks:
                if not is_current():
                    return
                step = decoder.feed(chunk)
                for delta in step.deltas:
                    yield delta
                if step.completed:
                    return
        if is_current() and not decoder.done:
            for delta in decoder.finish().deltas:
                yield delta

    async def _complete(
        self,
        session: StreamingSession,
        model_name: str,
        text: str,
        metrics: CompletionMetrics,
        is_current: Callable[[], bool],
    ) -> ChatEvent | None:
        """Persist the reply; None when the send was superseded meanwhile."""
        if not is_current():
            return None
        if not text.strip():
            text = EMPTY_REPLY.format(model_name=model_name)
        turn = Turn(
            chat_id=session.chat_id,
            model_name=model_name,
            role=Role.ASSISTANT,
            content=text,
            metrics=metrics,
        )
        persisted = await self._store_call("save assistant turn", self._store.save_turn(turn))
        if not is_current():
            # The store write already happened; only memory and events can be skipped.
            logger.warning("Chat %s changed while its reply was being saved; reply dropped", session.chat_id)
            return None
        session.turns.append(turn)
        session.accumulated_text = text
        return self._event(session.chat_id, ChatEventType.FINAL, text=text,
                           turn=turn.model_dump(mode="json"), persisted=persisted)

    async def _store_call(self, action: str, call) -> bool:
        try:
            ok = bool(await call)
        except Exception:
            logger.exception("Store failed to %s", action)
            return False
        if not ok:
            logger.warning("Store failed to %s", action)
        return ok

    async def _trace_call(self, chat_id: str, t_call: float, outcome: str, decoder: StreamDecoder) -> None:
        await self._trace.emit(chat_id, "provider_call", {
            "latency_ms": round((time.time() - t_call) * 1000, 2),
            "outcome": outcome,
            "chars": len(decoder.accumulated_text),
            "anomalies": decoder.anomalies,
            "skipped_lines": decoder.skipped_lines,
        })

    @staticmethod
    def _incomplete_message(client: ProviderClient, decoder: StreamDecoder) -> str:
        if decoder.error:
            return f"{client.name} Error: {decoder.error}"
        return f"{client.name} stream ended before the response was complete."

    @staticmethod
    def _event(chat_id: str, type_: ChatEventType, **data) -> ChatEvent:
        return ChatEvent(type=type_, chat_id=chat_id, data=data)
