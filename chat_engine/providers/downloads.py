"""ModelDownloader: validated, single-flight ``/api/pull`` with progress."""

from __future__ import annotations

import logging
import re
from contextlib import aclosing
from typing import Any, AsyncIterator

from pydantic import BaseModel

from chat_engine.engine.catalog import ModelCatalog
from chat_engine.engine.decoder import END_OF_STREAM, Framing, JSONLineSplitter
from chat_engine.engine.errors import InvalidInput, ProviderError
from chat_engine.engine.models import ProviderKind
from chat_engine.providers.ollama import OllamaClient

logger = logging.getLogger(__name__)

MODEL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9._:/-]+$")

_FAILURE_MARKERS = ("error", "failed", "not found")


class DownloadProgress(BaseModel):
    status: str
    digest: str = ""
    total: int = 0
    completed: int = 0
    message: str = ""
    finished: bool = False
    failed: bool = False

    @property
    def fraction(self) -> float:
        if self.total <= 0:
            return 0.0
        return min(self.completed / self.total, 1.0)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "DownloadProgress":
        """``{status, digest?, total?, completed?}`` or ``{error}``."""
        if isinstance(record.get("error"), str):
            return cls(status="error", message=record["error"], finished=True, failed=True)
        status = str(record.get("status") or "")
        lowered = status.lower()
        progress = cls(
            status=status,
            digest=str(record.get("digest") or ""),
            total=int(record.get("total") or 0),
            completed=int(record.get("completed") or 0),
        )
        if lowered == "success":
            return progress.model_copy(update={"finished": True, "message": "Download complete"})
        if any(marker in lowered for marker in _FAILURE_MARKERS):
            return progress.model_copy(update={"finished": True, "failed": True, "message": status})
        if lowered == "pulling manifest":
            return progress.model_copy(update={"message": "Pulling manifest..."})
        return progress


class ModelDownloader:
    """Pulls local models one at a time.

    Usage::

        async for progress in downloader.pull("llama3:8b"):
            print(progress.status, progress.fraction)
    """

    def __init__(self, client: OllamaClient, catalog: ModelCatalog) -> None:
        self._client = client
        self._catalog = catalog
        self._active: str | None = None

    @property
    def active(self) -> str | None:
        return self._active

    def validate(self, name: str) -> str:
        name = name.strip()
        if not name:
            raise InvalidInput("Model name cannot be empty")
        if not MODEL_NAME_PATTERN.match(name):
            raise InvalidInput(
                "Model name can only contain letters, digits, '.', '_', ':', '/' and '-'"
            )
        if self._catalog.is_installed(ProviderKind.OLLAMA, name):
            raise InvalidInput(f"Model {name} is already installed")
        if self._active is not None:
            raise InvalidInput(f"Another download is in progress: {self._active}")
        return name

    async def pull(self, name: str) -> AsyncIterator[DownloadProgress]:
        """Raises ``InvalidInput`` before the first item; provider failures
        become a final failed ``DownloadProgress``."""
        name = self.validate(name)
        self._active = name
        logger.info("Pulling %s", name)
        try:
            async with aclosing(self._stream(name)) as updates:
                async for progress in updates:
                    yield progress
                    if progress.finished:
                        if not progress.failed:
                            await self._catalog.refresh(ProviderKind.OLLAMA)
                        return
            logger.warning("Pull of %s ended without a final status", name)
            yield DownloadProgress(
                status="error",
                message=f"Download of {name} ended unexpectedly. Model may not exist.",
                finished=True,
                failed=True,
            )
        except ProviderError as exc:
            yield DownloadProgress(status="error", message=exc.user_message, finished=True, failed=True)
        finally:
            self._active = None

    async def _stream(self, name: str) -> AsyncIterator[DownloadProgress]:
        splitter = JSONLineSplitter(Framing.NDJSON)
        async with self._client.pull_stream(name) as chunks:
            async for chunk in chunks:
                for record in splitter.feed(chunk):
                    if record is not END_OF_STREAM:
                        yield DownloadProgress.from_record(record)
        for record in splitter.flush():
            if record is not END_OF_STREAM:
                yield DownloadProgress.from_record(record)
