"""CLI JSON-lines adapter — reads text from argv/stdin, prints ChatEvents as JSON."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

from chat_engine import create_runtime
from chat_engine.config.settings import load_selected_model, load_selected_provider
from chat_engine.engine.errors import ChatEngineError, InvalidInput
from chat_engine.engine.models import ChatEventType, ProviderKind


def _print_error(message: str) -> None:
    print(json.dumps({"type": "error", "data": {"error": message}}), flush=True)


async def _resolve_target(runtime, request: dict[str, Any]) -> tuple[ProviderKind, str]:
    """Provider and model from the request, then stored selections, then the catalog."""
    raw = request.get("provider")
    try:
        provider = ProviderKind(raw) if raw else await load_selected_provider(runtime.preferences)
    except ValueError as exc:
        raise InvalidInput(f"Unknown provider '{raw}'") from exc
    runtime.registry.get(provider)
    model = request.get("model") or await load_selected_model(runtime.preferences, provider)
    if not model:
        await runtime.catalog.refresh(provider)
        default = runtime.catalog.default_model(provider)
        if default is None:
            raise InvalidInput(f"No {provider.display_name} model found")
        model = default.name
    return provider, model


async def run_cli(request: dict[str, Any]) -> int:
    runtime = await create_runtime()
    try:
        try:
            provider, model = await _resolve_target(runtime, request)
        except ChatEngineError as exc:
            _print_error(exc.user_message)
            return 1

        chat = await runtime.chats.new_chat()
        failed = False
        async for event in runtime.orchestrator.send_turn(
            chat.id,
            request["text"],
            provider=provider,
            model_name=model,
            stream=request.get("stream", True),
        ):
            failed = failed or event.type is ChatEventType.ERROR
            print(json.dumps(event.model_dump(mode="json"), default=str), flush=True)
        return 1 if failed else 0
    finally:
        await runtime.aclose()


def parse_input(argv: list[str], stdin_text: str) -> dict[str, Any] | None:
    if argv:
        return {"text": " ".join(argv)}
    raw = stdin_text.strip()
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return {"text": raw}
    if not isinstance(data, dict):
        return {"text": raw}
    data.setdefault("text", "")
    return data


def main() -> None:
    logging.basicConfig(level=logging.WARNING, stream=sys.stderr)
    request = parse_input(sys.argv[1:], "" if len(sys.argv) > 1 else sys.stdin.read())
    if request is None:
        print('Usage: chat-cli <text>  OR  echo \'{"text":"...","provider":"groq","model":"..."}\' | chat-cli',
              file=sys.stderr)
        sys.exit(1)
    sys.exit(asyncio.run(run_cli(request)))


if __name__ == "__main__":
    main()
