"""Tests for ChatOrchestrator: send flow, failures, single-flight, cancellation."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from chat_engine.engine.errors import CannotConnect, ServiceError
from chat_engine.engine.models import (
    AssistantReply,
    Attachments,
    ChatEventType,
    ChatState,
    CompletionMetrics,
    LanguageStyle,
    ProviderKind,
    Role,
)
from chat_engine.engine.orchestrator import ChatOrchestrator
from chat_engine.providers.base import MockProviderClient, ndjson_chunks
from chat_engine.providers.ollama import OllamaClient
from chat_engine.providers.registry import ProviderRegistry
from chat_engine.store.in_memory import InMemoryChatStore
from chat_engine.tracing.interface import NullTraceCollector

MODEL = "llama3:latest"


def types_of(events):
    return [e.type for e in events]


async def collect(gen):
    return [e async for e in gen]


class TestBufferedTurn:
    async def test_reply_is_persisted(self, make_orchestrator, chat_store):
        client = MockProviderClient(replies=[AssistantReply(content="Hi!", model_name=MODEL)])
        orch = make_orchestrator(client)

        events = await collect(orch.send_turn("c1", "Hello", provider=ProviderKind.OLLAMA,
                                              model_name=MODEL, stream=False))

        assert types_of(events) == [ChatEventType.USER_TURN, ChatEventType.STATE, ChatEventType.FINAL]
        assert events[1].data["state"] == ChatState.AWAITING_BUFFERED.value
        assert events[-1].data["text"] == "Hi!"
        stored = await chat_store.get_turns("c1")
        assert [(t.role, t.content) for t in stored] == [(Role.USER, "Hello"), (Role.ASSISTANT, "Hi!")]
        assert orch.state("c1") is ChatState.IDLE
        assert client.call_count == 1

    async def test_blank_reply_substituted(self, make_orchestrator, chat_store):
        client = MockProviderClient(replies=[AssistantReply(content="  \n", model_name=MODEL)])
        orch = make_orchestrator(client)

        events = await collect(orch.send_turn("c1", "Hello", provider="ollama", model_name=MODEL, stream=False))

        assert events[-1].data["text"] == f"No Response from {MODEL}"
        assert (await chat_store.get_turns("c1"))[-1].content == f"No Response from {MODEL}"

    async def test_empty_ollama_body_substituted(self, make_orchestrator, chat_store):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"message": {"content": ""}})

        client = OllamaClient(transport=httpx.MockTransport(handler))
        orch = make_orchestrator(client)

        await collect(orch.send_turn("c1", "Hello", provider="ollama", model_name="phi3", stream=False))

        assistant = (await chat_store.get_turns("c1"))[-1]
        assert assistant.role is Role.ASSISTANT
        assert assistant.content == "No Response from phi3"
        await client.aclose()

    async def test_metrics_kept_on_assistant_turn(self, make_orchestrator, chat_store):
        reply = AssistantReply(content="ok", model_name=MODEL, metrics=CompletionMetrics(eval_count=12))
        orch = make_orchestrator(MockProviderClient(replies=[reply]))

        await collect(orch.send_turn("c1", "Hello", provider="ollama", model_name=MODEL, stream=False))

        assert (await chat_store.get_turns("c1"))[-1].metrics.eval_count == 12

    async def test_history_sent_on_next_turn(self, make_orchestrator):
        client = MockProviderClient(replies=[
            AssistantReply(content="first answer"),
            AssistantReply(content="second answer"),
        ])
        orch = make_orchestrator(client)

        await collect(orch.send_turn("c1", "one", provider="ollama", model_name=MODEL, stream=False))
        await collect(orch.send_turn("c1", "two", provider="ollama", model_name=MODEL, stream=False))

        second = client.requests[1]
        assert [m.content for m in second.messages] == ["one", "first answer", "two"]
        assert [t.content for t in orch.turns("c1")] == ["one", "first answer", "two", "second answer"]


class TestStreamingTurn:
    async def test_tokens_then_final(self, make_orchestrator, chat_store):
        client = MockProviderClient(streams=[ndjson_chunks("Hel", "lo", eval_count=3)])
        orch = make_orchestrator(client)

        events = await collect(orch.send_turn("c1", "Hello", provider="ollama", model_name=MODEL))

        assert types_of(events) == [
            ChatEventType.USER_TURN,
            ChatEventType.STATE,
            ChatEventType.TOKEN,
            ChatEventType.TOKEN,
            ChatEventType.FINAL,
        ]
        assert [e.data["text"] for e in events if e.type is ChatEventType.TOKEN] == ["Hel", "Hello"]
        assert events[-1].data["text"] == "Hello"
        assistant = (await chat_store.get_turns("c1"))[-1]
        assert assistant.content == "Hello"
        assert assistant.metrics.eval_count == 3
        assert orch.current_response("c1") == "Hello"
        assert client.requests[0].stream is True

    async def test_stream_without_done_discards_partial(self, make_orchestrator, chat_store):
        client = MockProviderClient(streams=[ndjson_chunks("part", "ial", done=False)])
        orch = make_orchestrator(client)

        events = await collect(orch.send_turn("c1", "Hello", provider="ollama", model_name=MODEL))

        assert events[-1].type is ChatEventType.ERROR
        assert [t.role for t in await chat_store.get_turns("c1")] == [Role.USER]
        assert [t.role for t in orch.turns("c1")] == [Role.USER]
        assert orch.current_response("c1") == ""
        assert orch.state("c1") is ChatState.IDLE

    async def test_transport_failure_mid_stream(self, make_orchestrator, chat_store):
        script = [ndjson_chunks("Hel")[0], CannotConnect("Ollama")]
        orch = make_orchestrator(MockProviderClient(streams=[script]))

        events = await collect(orch.send_turn("c1", "Hello", provider="ollama", model_name=MODEL))

        assert types_of(events)[-2:] == [ChatEventType.TOKEN, ChatEventType.ERROR]
        assert events[-1].data["error"] == "Could not connect to the Ollama server."
        assert len(await chat_store.get_turns("c1")) == 1

    async def test_error_status_on_open(self, make_orchestrator, chat_store):
        error = ServiceError("Ollama", "Ollama Error: model 'x' not found", status_code=404)
        orch = make_orchestrator(MockProviderClient(streams=[error]))

        events = await collect(orch.send_turn("c1", "Hello", provider="ollama", model_name="x"))

        assert events[-1].type is ChatEventType.ERROR
        assert events[-1].data["error"] == "Ollama Error: model 'x' not found"
        assert orch.state("c1") is ChatState.IDLE


class TestFailures:
    async def test_provider_error_keeps_user_turn(self, make_orchestrator, chat_store):
        client = MockProviderClient(replies=[CannotConnect("Ollama")])
        orch = make_orchestrator(client)

        events = await collect(orch.send_turn("c1", "Hello", provider="ollama", model_name=MODEL, stream=False))

        assert types_of(events) == [ChatEventType.USER_TURN, ChatEventType.STATE, ChatEventType.ERROR]
        assert events[-1].data["error"] == "Could not connect to the Ollama server."
        assert [t.role for t in await chat_store.get_turns("c1")] == [Role.USER]
        assert orch.state("c1") is ChatState.IDLE

    async def test_unregistered_provider(self, make_orchestrator, chat_store):
        orch = make_orchestrator(MockProviderClient())

        events = await collect(orch.send_turn("c1", "Hello", provider=ProviderKind.GROQ, model_name=MODEL))

        assert types_of(events) == [ChatEventType.ERROR]
        assert events[0].data["error"] == "Groq is not configured"
        assert await chat_store.get_turns("c1") == []

    async def test_failed_persist_is_optimistic(self):
        class RefusingStore(InMemoryChatStore):
            async def save_turn(self, turn):
                return False

        registry = ProviderRegistry()
        registry.register(MockProviderClient(replies=[AssistantReply(content="Hi")]))
        orch = ChatOrchestrator(registry, RefusingStore())

        events = await collect(orch.send_turn("c1", "Hello", provider="ollama", model_name=MODEL, stream=False))

        assert events[0].data["persisted"] is False
        assert events[-1].data["persisted"] is False
        assert [t.content for t in orch.turns("c1")] == ["Hello", "Hi"]


class TestRejections:
    async def test_blank_content_rejected(self, make_orchestrator, chat_store):
        client = MockProviderClient()
        orch = make_orchestrator(client)

        assert await collect(orch.send_turn("c1", "   ", provider="ollama", model_name=MODEL)) == []
        assert await chat_store.get_turns("c1") == []
        assert client.call_count == 0

    async def test_blank_content_with_image_accepted(self, make_orchestrator):
        client = MockProviderClient(replies=[AssistantReply(content="a cat")])
        orch = make_orchestrator(client)

        events = await collect(orch.send_turn("c1", "", provider="ollama", model_name="llava", stream=False,
                                              attachments=Attachments(images=["aGk="])))

        assert events[-1].data["text"] == "a cat"
        assert client.requests[0].messages[-1].images == ["aGk="]

    async def test_second_send_while_in_flight_is_noop(self, make_orchestrator, chat_store):
        client = MockProviderClient(replies=[AssistantReply(content="done")])
        orch = make_orchestrator(client)

        first = orch.send_turn("c1", "one", provider="ollama", model_name=MODEL, stream=False)
        event = await first.__anext__()
        assert event.type is ChatEventType.USER_TURN
        assert orch.state("c1") is ChatState.SENDING

        duplicate = await collect(orch.send_turn("c1", "two", provider="ollama", model_name=MODEL, stream=False))
        assert duplicate == []

        rest = await collect(first)
        assert rest[-1].type is ChatEventType.FINAL
        assert client.call_count == 1
        assert [t.content for t in await chat_store.get_turns("c1")] == ["one", "done"]

    async def test_other_chats_are_independent(self, make_orchestrator):
        client = MockProviderClient(replies=[AssistantReply(content="a"), AssistantReply(content="b")])
        orch = make_orchestrator(client)

        first = orch.send_turn("c1", "one", provider="ollama", model_name=MODEL, stream=False)
        await first.__anext__()
        other = await collect(orch.send_turn("c2", "two", provider="ollama", model_name=MODEL, stream=False))

        assert other[-1].type is ChatEventType.FINAL
        await collect(first)
        assert client.call_count == 2


class TestCancellation:
    async def test_cancel_mid_stream_persists_nothing(self, make_orchestrator, chat_store):
        client = MockProviderClient(streams=[ndjson_chunks("a", "b", "c")])
        orch = make_orchestrator(client)

        gen = orch.send_turn("c1", "Hello", provider="ollama", model_name=MODEL)
        async for event in gen:
            if event.type is ChatEventType.TOKEN:
                break_after = event
                break
        assert break_after.data["text"] == "a"

        assert orch.cancel("c1") is True
        assert orch.state("c1") is ChatState.IDLE
        assert await collect(gen) == []
        assert [t.role for t in await chat_store.get_turns("c1")] == [Role.USER]

    async def test_cancel_when_idle(self, make_orchestrator):
        orch = make_orchestrator(MockProviderClient())
        assert orch.cancel("c1") is False

    async def test_clear_chat_invalidates_in_flight_send(self, make_orchestrator, chat_store):
        client = MockProviderClient(replies=[AssistantReply(content="late")])
        orch = make_orchestrator(client)

        gen = orch.send_turn("c1", "Hello", provider="ollama", model_name=MODEL, stream=False)
        await gen.__anext__()
        assert await orch.clear_chat("c1") is True

        assert await collect(gen) == []
        assert await chat_store.get_turns("c1") == []
        assert orch.turns("c1") == []

    async def test_new_send_after_cancel(self, make_orchestrator):
        client = MockProviderClient(streams=[ndjson_chunks("fresh")])
        orch = make_orchestrator(client)

        gen = orch.send_turn("c1", "one", provider="ollama", model_name=MODEL)
        await gen.__anext__()
        orch.cancel("c1")
        await gen.aclose()

        events = await collect(orch.send_turn("c1", "two", provider="ollama", model_name=MODEL))
        assert events[-1].data["text"] == "fresh"

    async def test_clear_during_reply_save_drops_final(self):
        class SlowAckStore(InMemoryChatStore):
            def __init__(self):
                super().__init__()
                self.saving = asyncio.Event()
                self.release = asyncio.Event()

            async def save_turn(self, turn):
                ok = await super().save_turn(turn)
                if turn.role is Role.ASSISTANT:
                    self.saving.set()
                    await self.release.wait()
                return ok

        store = SlowAckStore()
        registry = ProviderRegistry()
        registry.register(MockProviderClient(streams=[ndjson_chunks("late")]))
        orch = ChatOrchestrator(registry, store)

        sending = asyncio.create_task(collect(orch.send_turn("c1", "hi", provider="ollama", model_name=MODEL)))
        await store.saving.wait()
        assert await orch.clear_chat("c1") is True
        store.release.set()
        events = await sending

        assert ChatEventType.FINAL not in types_of(events)
        assert orch.turns("c1") == []
        assert await store.get_turns("c1") == []
        assert orch.state("c1") is ChatState.IDLE

    async def test_reply_not_saved_when_cleared_before_persist(self):
        class PausingTracer(NullTraceCollector):
            def __init__(self):
                self.reached = asyncio.Event()
                self.release = asyncio.Event()

            async def emit(self, chat_id, event_type, data):
                if event_type == "provider_call":
                    self.reached.set()
                    await self.release.wait()

        store = InMemoryChatStore()
        tracer = PausingTracer()
        registry = ProviderRegistry()
        registry.register(MockProviderClient(streams=[ndjson_chunks("late")]))
        orch = ChatOrchestrator(registry, store, trace_collector=tracer)

        sending = asyncio.create_task(collect(orch.send_turn("c1", "hi", provider="ollama", model_name=MODEL)))
        await tracer.reached.wait()
        await orch.clear_chat("c1")
        tracer.release.set()
        events = await sending

        assert types_of(events)[-1] is ChatEventType.TOKEN
        assert await store.get_turns("c1") == []
        assert orch.turns("c1") == []


class TestRequestShaping:
    async def test_inline_language_for_local(self, make_orchestrator):
        client = MockProviderClient(replies=[AssistantReply(content="ok")])
        orch = make_orchestrator(client, response_language="English")

        await collect(orch.send_turn("c1", "hi", provider="ollama", model_name=MODEL, stream=False))

        assert client.requests[0].messages[-1].content == "hi\nplease answer in English"
        assert client.requests[0].response_language == "English"

    async def test_system_language_for_cloud(self, make_orchestrator):
        client = MockProviderClient(ProviderKind.GROQ, replies=[AssistantReply(content="ok")],
                                    language_style=LanguageStyle.SYSTEM)
        orch = make_orchestrator(client, response_language="English")

        await collect(orch.send_turn("c1", "hi", provider="groq", model_name="llama3-70b-8192", stream=False))

        messages = client.requests[0].messages
        assert messages[0].role is Role.SYSTEM
        assert messages[-1].content == "hi"

    async def test_per_send_language_override(self, make_orchestrator):
        client = MockProviderClient(replies=[AssistantReply(content="ok")])
        orch = make_orchestrator(client, response_language="English")

        await collect(orch.send_turn("c1", "hi", provider="ollama", model_name=MODEL, stream=False,
                                     response_language="Auto"))

        assert client.requests[0].messages[-1].content == "hi"

    async def test_current_sampling_snapshot_used(self, make_orchestrator):
        client = MockProviderClient(replies=[AssistantReply(content="ok")])
        orch = make_orchestrator(client)
        orch.sampling.update(temperature=0.3, top_k=12)

        await collect(orch.send_turn("c1", "hi", provider="ollama", model_name=MODEL, stream=False))

        assert client.requests[0].options.temperature == 0.3
        assert client.requests[0].options.top_k == 12


class TestChatLoading:
    async def test_load_chat_reads_store(self, make_orchestrator, chat_store, make_turns):
        for turn in make_turns("c1", 3):
            await chat_store.save_turn(turn)
        orch = make_orchestrator(MockProviderClient())

        turns = await orch.load_chat("c1")

        assert [t.content for t in turns] == ["t0", "t1", "t2"]
        assert orch.turns("c1") == turns

    async def test_history_loaded_lazily_on_first_send(self, make_orchestrator, chat_store, make_turns):
        for turn in make_turns("c1", 2):
            await chat_store.save_turn(turn)
        client = MockProviderClient(replies=[AssistantReply(content="ok")])
        orch = make_orchestrator(client)

        await collect(orch.send_turn("c1", "next", provider="ollama", model_name=MODEL, stream=False))

        assert [m.content for m in client.requests[0].messages] == ["t0", "t1", "next"]


class TestQuickCompletion:
    async def test_streams_without_persisting(self, make_orchestrator, chat_store):
        client = MockProviderClient(streams=[ndjson_chunks("Sure", ".")])
        orch = make_orchestrator(client, response_language="Japanese")

        events = await collect(orch.quick_completion("Draft an email", model_name=MODEL))

        assert types_of(events) == [ChatEventType.TOKEN, ChatEventType.TOKEN, ChatEventType.FINAL]
        assert events[-1].data["text"] == "Sure."
        request = client.requests[0]
        assert len(request.messages) == 1
        assert request.messages[0].content == (
            "Draft an email\n attention: please generate response for above content use Japanese language"
        )
        assert await chat_store.get_all_chats() == []
        assert await chat_store.latest_turn_dates() == {}

    async def test_failure_becomes_error_event(self, make_orchestrator):
        orch = make_orchestrator(MockProviderClient(streams=[CannotConnect("Ollama")]))

        events = await collect(orch.quick_completion("hi", model_name=MODEL))

        assert types_of(events) == [ChatEventType.ERROR]


class TestTracing:
    async def test_trace_file_written_per_chat(self, make_orchestrator, trace_collector):
        orch = make_orchestrator(MockProviderClient(streams=[ndjson_chunks("ok")]))

        await collect(orch.send_turn("c1", "Hello", provider="ollama", model_name=MODEL))

        path = trace_collector.directory / "c1.jsonl"
        entries = [json.loads(line) for line in path.read_text().splitlines()]
        assert [e["event"] for e in entries] == ["send_turn", "provider_call", "turn_done"]
        assert entries[-1]["status"] == "ok"
        assert all("Hello" not in json.dumps(e) for e in entries)


@pytest.mark.parametrize("stream", [True, False])
async def test_user_turn_precedes_network_call(make_orchestrator, stream):
    client = MockProviderClient(replies=[AssistantReply(content="x")], streams=[ndjson_chunks("x")])
    orch = make_orchestrator(client)

    gen = orch.send_turn("c1", "Hello", provider="ollama", model_name=MODEL, stream=stream)
    first = await gen.__anext__()

    assert first.type is ChatEventType.USER_TURN
    assert client.call_count == 0
    await gen.aclose()
