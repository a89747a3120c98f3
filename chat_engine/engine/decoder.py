"""Incremental decoder for newline-delimited JSON and SSE response bodies.

Transport-agnostic: callers push raw byte chunks in arrival order and get
back the text deltas those chunks completed. Only the unconsumed trailing
partial line is carried over between chunks.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Union

from chat_engine.engine.models import CompletionMetrics

logger = logging.getLogger(__name__)


class Framing(str, Enum):
    NDJSON = "ndjson"
    SSE = "sse"


class EndMarker:
    """The SSE ``data: [DONE]`` terminator."""

    def __repr__(self) -> str:
        return "END_OF_STREAM"


END_OF_STREAM = EndMarker()

Record = Union[dict[str, Any], EndMarker]


class JSONLineSplitter:
    """Append-only byte buffer that yields one parsed object per complete line."""

    def __init__(self, framing: Framing = Framing.NDJSON) -> None:
        self._framing = framing
        self._buffer = bytearray()
        self.skipped = 0

    @property
    def pending(self) -> bytes:
        return bytes(self._buffer)

    def feed(self, chunk: bytes) -> list[Record]:
        self._buffer.extend(chunk)
        end = self._buffer.rfind(b"\n")
        if end < 0:
            return []
        complete = bytes(self._buffer[:end])
        del self._buffer[:end + 1]
        return self._parse_lines(complete.split(b"\n"))

    def flush(self) -> list[Record]:
        """Parse whatever is left once the stream has ended."""
        rest = bytes(self._buffer)
        self._buffer.clear()
        return self._parse_lines([rest]) if rest.strip() else []

    def _parse_lines(self, lines: list[bytes]) -> list[Record]:
        records: list[Record] = []
        for raw in lines:
            try:
                line = raw.decode("utf-8").strip()
            except UnicodeDecodeError:
                self._skip(raw, "invalid utf-8")
                continue
            if not line:
                continue
            if self._framing is Framing.SSE:
                if not line.startswith("data:"):
                    # event:, id:, retry: and ": keep-alive" comment lines
                    continue
                line = line[len("data:"):].strip()
                if line == "[DONE]":
                    records.append(END_OF_STREAM)
                    continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                self._skip(raw, "not json")
                continue
            if not isinstance(obj, dict):
                self._skip(raw, "not an object")
                continue
            records.append(obj)
        return records

    def _skip(self, raw: bytes, reason: str) -> None:
        self.skipped += 1
        logger.debug("Skipping stream line (%s): %r", reason, raw[:200])


# ---------------------------------------------------------------------------
# Record readers, one per wire format
# ---------------------------------------------------------------------------

@dataclass
class StreamUpdate:
    delta: str | None = None  # None: the record carried no content field
    done: bool = False
    metrics: CompletionMetrics | None = None
    error: str | None = None


RecordReader = Callable[[dict[str, Any]], StreamUpdate]


def ollama_chat_reader(obj: dict[str, Any]) -> StreamUpdate:
    """``{"message": {"role", "content"}, "done": 0|1, ...metrics}``"""
    if isinstance(obj.get("error"), str):
        return StreamUpdate(error=obj["error"])
    message = obj.get("message")
    delta = message.get("content") if isinstance(message, dict) else None
    if not isinstance(delta, str):
        delta = None
    done = bool(obj.get("done"))
    metrics = None
    if done:
        metrics = CompletionMetrics(
            total_duration=obj.get("total_duration") or 0,
            load_duration=obj.get("load_duration") or 0,
            prompt_eval_count=obj.get("prompt_eval_count") or 0,
            eval_count=obj.get("eval_count") or 0,
            eval_duration=obj.get("eval_duration") or 0,
        )
    return StreamUpdate(delta=delta, done=done, metrics=metrics)


def openai_chunk_reader(obj: dict[str, Any]) -> StreamUpdate:
    """``{"choices": [{"delta": {"content"}, "finish_reason"}]}``"""
    error = obj.get("error")
    if isinstance(error, dict):
        return StreamUpdate(error=str(error.get("message") or error))
    choices = obj.get("choices")
    if not isinstance(choices, list) or not choices:
        return StreamUpdate()
    choice = choices[0] if isinstance(choices[0], dict) else {}
    delta = (choice.get("delta") or {}).get("content")
    return StreamUpdate(
        delta=delta if isinstance(delta, str) else None,
        done=choice.get("finish_reason") is not None,
    )


# ---------------------------------------------------------------------------
# Decoder
# ---------------------------------------------------------------------------

@dataclass
class DecodeStep:
    deltas: list[str] = field(default_factory=list)
    completed: bool = False  # true on exactly one step per decoder

    @property
    def text(self) -> str:
        return "".join(self.deltas)


class StreamDecoder:
    """Accumulates assistant text from a chunked response body."""

    def __init__(self, reader: RecordReader, framing: Framing = Framing.NDJSON) -> None:
        self._reader = reader
        self._splitter = JSONLineSplitter(framing)
        self.accumulated_text = ""
        self.done = False
        self.anomalies = 0
        self.error: str | None = None
        self.metrics = CompletionMetrics()

    @property
    def skipped_lines(self) -> int:
        return self._splitter.skipped

    def feed(self, chunk: bytes) -> DecodeStep:
        return self._consume(self._splitter.feed(chunk))

    def finish(self) -> DecodeStep:
        """Call at end of body; a final line without a newline is still read."""
        return self._consume(self._splitter.flush())

    def _consume(self, records: list[Record]) -> DecodeStep:
        step = DecodeStep()
        for record in records:
            if self.done:
                break
            if record is END_OF_STREAM:
                self._complete(step)
                continue
            update = self._reader(record)
            if update.error is not None:
                self.error = update.error
                logger.warning("Stream reported an error: %s", update.error)
                continue
            if update.delta is None:
                self.anomalies += 1
            elif update.delta:
                self.accumulated_text += update.delta
                step.deltas.append(update.delta)
            if update.metrics is not None:
                self.metrics = update.metrics
            if update.done:
                self._complete(step)
        return step

    def _complete(self, step: DecodeStep) -> None:
        self.done = True
        step.completed = True
