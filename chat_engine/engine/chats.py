"""ChatDirectory — the chat list: create, rename, delete, order, title."""

from __future__ import annotations

import logging
import random

from chat_engine.engine.filters import filter_for_title
from chat_engine.engine.models import CHAT_AVATARS, DEFAULT_CHAT_NAME, Chat
from chat_engine.engine.orchestrator import ChatOrchestrator
from chat_engine.store.interface import ChatStore

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 40


class ChatDirectory:
    def __init__(self, store: ChatStore, orchestrator: ChatOrchestrator | None = None) -> None:
        self._store = store
        self._orchestrator = orchestrator

    async def new_chat(self, name: str = DEFAULT_CHAT_NAME) -> Chat:
        chat = Chat(name=name.strip() or DEFAULT_CHAT_NAME, avatar=random.choice(CHAT_AVATARS))
        if not await self._store.save_chat(chat):
            logger.warning("Chat %s was created but could not be saved", chat.id)
        return chat

    async def rename(self, chat_id: str, name: str) -> bool:
        return await self._store.rename_chat(chat_id, name.strip() or DEFAULT_CHAT_NAME)

    async def delete(self, chat_id: str) -> bool:
        """Delete the chat's turns first, then the chat itself."""
        if self._orchestrator is not None:
            self._orchestrator.forget(chat_id)
        if not await self._store.delete_turns(chat_id):
            logger.warning("Could not delete turns of chat %s", chat_id)
            return False
        return await self._store.delete_chat(chat_id)

    async def delete_all(self) -> bool:
        chats = await self._store.get_all_chats()
        if self._orchestrator is not None:
            for chat in chats:
                self._orchestrator.forget(chat.id)
        for chat in chats:
            await self._store.delete_turns(chat.id)
        return await self._store.delete_all_chats()

    async def list_chats(self) -> list[Chat]:
        """Most recently active first; chats without turns use their creation date."""
        chats = await self._store.get_all_chats()
        latest = await self._store.latest_turn_dates()
        return sorted(chats, key=lambda c: latest.get(c.id, c.created_at), reverse=True)

    @staticmethod
    def title_from_reply(text: str) -> str:
        title = filter_for_title(text)
        if not title:
            return DEFAULT_CHAT_NAME
        title = " ".join(title.split())
        if len(title) > MAX_TITLE_LENGTH:
            title = title[:MAX_TITLE_LENGTH].rstrip()
        return title

    async def auto_title(self, chat_id: str, reply_text: str) -> str:
        """Rename a chat from its first reply; returns the new name."""
        title = self.title_from_reply(reply_text)
        await self.rename(chat_id, title)
        return title
