"""FastAPI SSE adapter — thin translation layer, no business logic."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, ValidationError

from chat_engine import ChatRuntime, create_runtime
from chat_engine.engine.errors import ChatEngineError, InvalidInput
from chat_engine.engine.models import Attachments, FileAttachment, ProviderKind
from chat_engine.providers.ollama import OllamaClient

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}


class TurnBody(BaseModel):
    text: str = ""
    provider: ProviderKind = ProviderKind.OLLAMA
    model: str
    stream: bool = True
    images: list[str] = Field(default_factory=list)
    file: FileAttachment | None = None
    response_language: str | None = None


class RenameBody(BaseModel):
    name: str


class PullBody(BaseModel):
    name: str


def _sse(event_type: str, payload: dict[str, Any]) -> str:
    return f"event: {event_type}\ndata: {json.dumps(payload, default=str)}\n\n"


def create_app(runtime: ChatRuntime | None = None) -> FastAPI:
    """Build the app; without *runtime* one is created from the environment on startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = runtime is None
        app.state.runtime = runtime if runtime is not None else await create_runtime()
        try:
            yield
        finally:
            if owned:
                await app.state.runtime.aclose()

    app = FastAPI(title="Chat Engine API", version="0.1.0", lifespan=lifespan)

    def rt(request: Request) -> ChatRuntime:
        return request.app.state.runtime

    # -- chats --------------------------------------------------------------

    @app.post("/chats")
    async def new_chat(request: Request) -> JSONResponse:
        chat = await rt(request).chats.new_chat()
        return JSONResponse(chat.model_dump(mode="json"), status_code=201)

    @app.get("/chats")
    async def list_chats(request: Request) -> JSONResponse:
        chats = await rt(request).chats.list_chats()
        return JSONResponse([c.model_dump(mode="json") for c in chats])

    @app.patch("/chats/{chat_id}")
    async def rename_chat(chat_id: str, body: RenameBody, request: Request) -> JSONResponse:
        if not await rt(request).chats.rename(chat_id, body.name):
            raise HTTPException(status_code=404, detail="Chat not found")
        return JSONResponse({"status": "ok"})

    @app.delete("/chats/{chat_id}")
    async def delete_chat(chat_id: str, request: Request) -> JSONResponse:
        return JSONResponse({"deleted": await rt(request).chats.delete(chat_id)})

    @app.get("/chats/{chat_id}/turns")
    async def get_turns(chat_id: str, request: Request) -> JSONResponse:
        turns = await rt(request).orchestrator.load_chat(chat_id)
        return JSONResponse([t.model_dump(mode="json") for t in turns])

    @app.delete("/chats/{chat_id}/turns")
    async def clear_turns(chat_id: str, request: Request) -> JSONResponse:
        return JSONResponse({"cleared": await rt(request).orchestrator.clear_chat(chat_id)})

    @app.post("/chats/{chat_id}/turns")
    async def send_turn(chat_id: str, body: TurnBody, request: Request) -> StreamingResponse:
        orchestrator = rt(request).orchestrator
        attachments = Attachments(images=body.images, file=body.file)

        async def sse_stream():
            async for event in orchestrator.send_turn(
                chat_id,
                body.text,
                provider=body.provider,
                model_name=body.model,
                stream=body.stream,
                attachments=attachments,
                response_language=body.response_language,
            ):
                yield _sse(event.type.value, event.model_dump(mode="json"))

        return StreamingResponse(sse_stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.post("/chats/{chat_id}/cancel")
    async def cancel(chat_id: str, request: Request) -> JSONResponse:
        return JSONResponse({"cancelled": rt(request).orchestrator.cancel(chat_id)})

    # -- models -------------------------------------------------------------

    @app.get("/models/{provider}")
    async def list_models(provider: ProviderKind, request: Request) -> JSONResponse:
        try:
            models = await rt(request).catalog.refresh(provider)
        except InvalidInput as exc:
            raise HTTPException(status_code=404, detail=exc.user_message) from exc
        return JSONResponse([m.model_dump(mode="json") | {"size": m.size_label} for m in models])

    @app.post("/models/pull")
    async def pull_model(body: PullBody, request: Request) -> StreamingResponse:
        downloader = rt(request).downloader
        if downloader is None:
            raise HTTPException(status_code=404, detail="Model downloads need a local Ollama server")
        try:
            name = downloader.validate(body.name)
        except InvalidInput as exc:
            raise HTTPException(status_code=400, detail=exc.user_message) from exc

        async def sse_stream():
            async for progress in downloader.pull(name):
                yield _sse("progress", progress.model_dump() | {"fraction": progress.fraction})

        return StreamingResponse(sse_stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.delete("/models/ollama/{name:path}")
    async def delete_model(name: str, request: Request) -> JSONResponse:
        runtime = rt(request)
        client = runtime.registry.get(ProviderKind.OLLAMA)
        if not isinstance(client, OllamaClient):
            raise HTTPException(status_code=404, detail="Local Ollama is not configured")
        try:
            deleted = await client.delete_model(name)
        except ChatEngineError as exc:
            raise HTTPException(status_code=502, detail=exc.user_message) from exc
        if deleted:
            runtime.catalog.forget(ProviderKind.OLLAMA, name)
        return JSONResponse({"deleted": deleted})

    # -- sampling options ---------------------------------------------------

    @app.get("/options")
    async def get_options(request: Request) -> JSONResponse:
        return JSONResponse(rt(request).orchestrator.sampling.snapshot().model_dump())

    @app.patch("/options")
    async def update_options(request: Request) -> JSONResponse:
        fields = await request.json()
        try:
            options = rt(request).orchestrator.sampling.update(**fields)
        except (TypeError, ValidationError) as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return JSONResponse(options.model_dump())

    @app.post("/options/reset")
    async def reset_options(request: Request) -> JSONResponse:
        return JSONResponse(rt(request).orchestrator.sampling.reset().model_dump())

    @app.get("/health")
    async def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    return app


# Module-level instance for ``uvicorn chat_engine.adapters.web_fastapi.app:app``
app = create_app()


def serve() -> None:
    """Entry-point for ``chat-web`` console script."""
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(
        "chat_engine.adapters.web_fastapi.app:app",
        host="0.0.0.0",
        port=8000,
        log_level="info",
    )
