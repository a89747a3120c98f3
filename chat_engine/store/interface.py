"""Persistence collaborators — ABCs only; depends on engine.models."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from chat_engine.engine.models import Chat, Turn


class ChatStore(ABC):
    """Async CRUD for chats and their turns.

    A single logical write (one turn, or one chat's turns) must be atomic.
    Write methods report failure as ``False`` instead of raising.
    Swap to SQLite/Postgres by implementing this ABC.
    """

    # -- chats --------------------------------------------------------------

    @abstractmethod
    async def save_chat(self, chat: Chat) -> bool: ...

    @abstractmethod
    async def get_chat(self, chat_id: str) -> Chat | None: ...

    @abstractmethod
    async def get_all_chats(self) -> list[Chat]: ...

    @abstractmethod
    async def rename_chat(self, chat_id: str, name: str) -> bool: ...

    @abstractmethod
    async def delete_chat(self, chat_id: str) -> bool: ...

    @abstractmethod
    async def delete_all_chats(self) -> bool: ...

    # -- turns --------------------------------------------------------------

    @abstractmethod
    async def save_turn(self, turn: Turn) -> bool: ...

    @abstractmethod
    async def get_turns(self, chat_id: str) -> list[Turn]:
        """Ordered by ``created_at``; insertion order breaks ties."""

    @abstractmethod
    async def delete_turns(self, chat_id: str) -> bool: ...

    @abstractmethod
    async def latest_turn_dates(self) -> dict[str, datetime]:
        """chat id → ``created_at`` of its newest turn (chats with turns only)."""


class PreferenceStore(ABC):
    """String key → string value map."""

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    async def load(self, key: str, default: str) -> str:
        """Value for *key*; if absent, store *default* first and return it."""
        value = await self.get(key)
        if value is None:
            await self.set(key, default)
            return default
        return value
