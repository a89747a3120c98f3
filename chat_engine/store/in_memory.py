"""Dict-backed stores — suitable for single-process dev/test."""

from __future__ import annotations

from datetime import datetime

from chat_engine.engine.models import Chat, Turn
from chat_engine.store.interface import ChatStore, PreferenceStore


class InMemoryChatStore(ChatStore):
    def __init__(self) -> None:
        self._chats: dict[str, Chat] = {}
        self._turns: dict[str, list[Turn]] = {}

    async def save_chat(self, chat: Chat) -> bool:
        self._chats[chat.id] = chat
        return True

    async def get_chat(self, chat_id: str) -> Chat | None:
        return self._chats.get(chat_id)

    async def get_all_chats(self) -> list[Chat]:
        return list(self._chats.values())

    async def rename_chat(self, chat_id: str, name: str) -> bool:
        chat = self._chats.get(chat_id)
        if chat is None:
            return False
        self._chats[chat_id] = chat.model_copy(update={"name": name})
        return True

    async def delete_chat(self, chat_id: str) -> bool:
        return self._chats.pop(chat_id, None) is not None

    async def delete_all_chats(self) -> bool:
        self._chats.clear()
        self._turns.clear()
        return True

    async def save_turn(self, turn: Turn) -> bool:
        self._turns.setdefault(turn.chat_id, []).append(turn)
        return True

    async def get_turns(self, chat_id: str) -> list[Turn]:
        # sorted() is stable, so equal timestamps keep insertion order
        return sorted(self._turns.get(chat_id, []), key=lambda t: t.created_at)

    async def delete_turns(self, chat_id: str) -> bool:
        self._turns.pop(chat_id, None)
        return True

    async def latest_turn_dates(self) -> dict[str, datetime]:
        return {
            chat_id: max(t.created_at for t in turns)
            for chat_id, turns in self._turns.items()
            if turns
        }


class InMemoryPreferenceStore(PreferenceStore):
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        self._values[key] = value

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)
