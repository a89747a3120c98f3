"""JSONL file-based trace collector, one file per chat."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

from chat_engine.tracing.interface import TraceCollector

logger = logging.getLogger(__name__)


class JSONLTraceCollector(TraceCollector):
    """Appends entries to ``{trace_dir}/{chat_id}.jsonl``.

    Entries are buffered per chat and written when the orchestrator finishes
    a send (successful or not). Message text is never traced, only sizes.
    """

    def __init__(self, trace_dir: str = "./traces") -> None:
        self._dir = Path(trace_dir)
        self._buffers: dict[str, list[dict[str, Any]]] = {}

    @property
    def directory(self) -> Path:
        return self._dir

    async def emit(self, chat_id: str, event_type: str, data: dict[str, Any]) -> None:
        self._buffers.setdefault(chat_id, []).append({
            "ts": time.time(),
            "chat_id": chat_id,
            "event": event_type,
            **data,
        })

    async def flush(self, chat_id: str) -> None:
        entries = self._buffers.pop(chat_id, [])
        if not entries:
            return
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            with open(self._dir / f"{chat_id}.jsonl", "a", encoding="utf-8") as f:
                for entry in entries:
                    f.write(json.dumps(entry, default=str) + "\n")
        except OSError:
            logger.exception("Could not write %d trace entries for chat %s", len(entries), chat_id)
