"""Sampling options shared by whichever provider is invoked next."""

from __future__ import annotations

import threading
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SamplingOptions(BaseModel):
    """Immutable snapshot of the five sampling knobs.

    All five are always sent together; there is no per-field omission.
    """

    model_config = ConfigDict(frozen=True)

    temperature: float = Field(default=0.8, ge=0.1, le=1.0)
    seed: int = Field(default=0, ge=0)
    context_window: int = Field(default=2048, ge=1024, le=10240)
    top_k: int = Field(default=40, ge=1, le=300)
    top_p: float = Field(default=0.9, ge=0.1, le=1.0)

    def ollama_payload(self) -> dict[str, Any]:
        return {
            "temperature": self.temperature,
            "seed": self.seed,
            "num_ctx": self.context_window,
            "top_k": self.top_k,
            "top_p": self.top_p,
        }


class SamplingSettings:
    """Process-wide holder: many readers, a single writer at a time."""

    def __init__(self, initial: SamplingOptions | None = None) -> None:
        self._lock = threading.Lock()
        self._current = initial or SamplingOptions()

    def snapshot(self) -> SamplingOptions:
        with self._lock:
            return self._current

    def update(self, **fields: Any) -> SamplingOptions:
        """Apply *fields* atomically; an invalid value leaves nothing changed."""
        with self._lock:
            merged = {**self._current.model_dump(), **fields}
            self._current = SamplingOptions(**merged)
            return self._current

    def reset(self) -> SamplingOptions:
        with self._lock:
            self._current = SamplingOptions()
            return self._current
