"""Provider registry: one client per backend, looked up by kind."""

from __future__ import annotations

import logging

from chat_engine.engine.errors import InvalidInput
from chat_engine.engine.models import ProviderKind
from chat_engine.providers.base import ProviderClient

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Central client store. The orchestrator never constructs clients itself."""

    def __init__(self) -> None:
        self._clients: dict[ProviderKind, ProviderClient] = {}

    # -- registration -------------------------------------------------------

    def register(self, client: ProviderClient) -> None:
        previous = self._clients.get(client.kind)
        self._clients[client.kind] = client
        if previous is not None and previous is not client:
            logger.info("Replaced %s client", client.name)
        else:
            logger.info("Registered %s client (%s)", client.name, type(client).__name__)

    def get(self, kind: ProviderKind | str) -> ProviderClient:
        try:
            kind = ProviderKind(kind)
        except ValueError as exc:
            raise InvalidInput(f"Unknown provider '{kind}'") from exc
        client = self._clients.get(kind)
        if client is None:
            raise InvalidInput(f"{kind.display_name} is not configured")
        return client

    def __contains__(self, kind: object) -> bool:
        return kind in self._clients

    def kinds(self) -> list[ProviderKind]:
        return list(self._clients)

    # -- lifecycle ----------------------------------------------------------

    async def replace(self, client: ProviderClient) -> None:
        """Swap in a client built from new config, closing the old one."""
        previous = self._clients.get(client.kind)
        self.register(client)
        if previous is not None and previous is not client:
            await previous.aclose()

    async def aclose_all(self) -> None:
        for client in self._clients.values():
            await client.aclose()
