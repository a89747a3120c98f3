"""Ollama-schema clients: the local inference server and Ollama Cloud."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx
from pydantic import BaseModel, Field, ValidationError

from chat_engine.engine.decoder import Framing, StreamDecoder, ollama_chat_reader
from chat_engine.engine.errors import MalformedResponse, ServiceError
from chat_engine.engine.models import (
    AssistantReply,
    ChatRequest,
    CompletionMetrics,
    LanguageStyle,
    ModelDescriptor,
    ProviderKind,
)
from chat_engine.providers.base import ByteStream, ProviderClient
from chat_engine.providers.transport import (
    CONNECT_TIMEOUT,
    ProviderConfig,
    build_http_client,
    classify_transport_error,
    decode_json_object,
    error_from_response,
    guarded_bytes,
)

logger = logging.getLogger(__name__)

PULL_TIMEOUT = 300.0


# ---------------------------------------------------------------------------
# Wire schema
# ---------------------------------------------------------------------------

class OllamaMessage(BaseModel):
    role: str = "assistant"
    content: str = ""
    images: list[str] | None = None


class OllamaChatBody(BaseModel):
    model: str
    stream: bool
    options: dict[str, Any]
    messages: list[OllamaMessage]


class OllamaChatResponse(BaseModel):
    model: str = ""
    message: OllamaMessage | None = None
    done: bool = True
    total_duration: int = 0
    load_duration: int = 0
    prompt_eval_count: int = 0
    eval_count: int = 0
    eval_duration: int = 0


class OllamaTagDetails(BaseModel):
    parameter_size: str = ""


class OllamaTag(BaseModel):
    name: str
    size: int = 0
    details: OllamaTagDetails = Field(default_factory=OllamaTagDetails)


class OllamaTagsResponse(BaseModel):
    models: list[OllamaTag]


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------

class OllamaClient(ProviderClient):
    """Local inference server: ``{baseUrl}:{port}/api/...``, no auth.

    The response-language directive is appended to the user content rather
    than sent as a system message.
    """

    kind = ProviderKind.OLLAMA
    language_style = LanguageStyle.INLINE

    def __init__(
        self,
        config: ProviderConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or ProviderConfig.default(self.kind)
        self._http = build_http_client(self._config, transport)

    @property
    def base_url(self) -> str:
        return self._config.base_url

    # -- models -------------------------------------------------------------

    async def list_models(self) -> list[ModelDescriptor]:
        payload = await self._request_json("GET", "/api/tags")
        try:
            tags = OllamaTagsResponse.model_validate(payload)
        except ValidationError as exc:
            raise MalformedResponse(self.name) from exc
        return [
            ModelDescriptor(
                name=tag.name,
                display_name=tag.name,
                provider=self.kind,
                size_bytes=tag.size,
                parameter_size=tag.details.parameter_size,
            )
            for tag in tags.models
        ]

    async def delete_model(self, name: str) -> bool:
        response = await self._send("DELETE", "/api/delete", json={"name": name})
        if response.is_error:
            logger.warning("Deleting %s failed: HTTP %d", name, response.status_code)
            return False
        logger.info("Deleted local model %s", name)
        return True

    @asynccontextmanager
    async def pull_stream(self, name: str) -> AsyncIterator[ByteStream]:
        """Raw ``/api/pull`` progress body (newline-delimited JSON)."""
        timeout = httpx.Timeout(PULL_TIMEOUT, connect=CONNECT_TIMEOUT)
        async with self._stream("POST", "/api/pull", {"name": name}, timeout=timeout) as chunks:
            yield chunks

    # -- chat ---------------------------------------------------------------

    async def chat_once(self, request: ChatRequest) -> AssistantReply:
        payload = await self._request_json("POST", "/api/chat", json=self._chat_body(request, stream=False))
        if isinstance(payload.get("error"), str):
            raise error_from_response(self.name, 200, json.dumps(payload))
        try:
            parsed = OllamaChatResponse.model_validate(payload)
        except ValidationError as exc:
            raise MalformedResponse(self.name) from exc
        if parsed.message is None:
            raise MalformedResponse(self.name)
        return AssistantReply(
            content=parsed.message.content,
            model_name=parsed.model or request.model_name,
            done=parsed.done,
            metrics=CompletionMetrics(
                total_duration=parsed.total_duration,
                load_duration=parsed.load_duration,
                prompt_eval_count=parsed.prompt_eval_count,
                eval_count=parsed.eval_count,
                eval_duration=parsed.eval_duration,
            ),
        )

    @asynccontextmanager
    async def open_chat_stream(self, request: ChatRequest) -> AsyncIterator[ByteStream]:
        async with self._stream("POST", "/api/chat", self._chat_body(request, stream=True)) as chunks:
            yield chunks

    def decoder(self) -> StreamDecoder:
        return StreamDecoder(ollama_chat_reader, Framing.NDJSON)

    async def aclose(self) -> None:
        await self._http.aclose()

    # -- internals ----------------------------------------------------------

    def _chat_body(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        body = OllamaChatBody(
            model=request.model_name,
            stream=stream,
            options=request.options.ollama_payload(),
            messages=[
                OllamaMessage(role=m.role.value, content=m.content, images=m.images)
                for m in request.messages
            ],
        )
        return body.model_dump(exclude_none=True)

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise classify_transport_error(exc, self.name) from exc

    async def _request_json(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._send(method, path, **kwargs)
        if response.is_error:
            raise self._status_error(response)
        return decode_json_object(self.name, response.content)

    @asynccontextmanager
    async def _stream(
        self,
        method: str,
        path: str,
        body: dict[str, Any],
        timeout: httpx.Timeout | None = None,
    ) -> AsyncIterator[ByteStream]:
        extra = {"timeout": timeout} if timeout is not None else {}
        try:
            async with self._http.stream(method, path, json=body, **extra) as response:
                if response.is_error:
                    await response.aread()
                    raise self._status_error(response)
                yield guarded_bytes(response, self.name)
        except httpx.HTTPError as exc:
            raise classify_transport_error(exc, self.name) from exc

    def _status_error(self, response: httpx.Response) -> ServiceError:
        return error_from_response(self.name, response.status_code, response.content)


class OllamaCloudClient(OllamaClient):
    """Same schema as the local server, hosted at ollama.com with a bearer key."""

    kind = ProviderKind.OLLAMA_CLOUD
    language_style = LanguageStyle.SYSTEM

    _STATUS_MESSAGES = {
        401: "Invalid API key. Please check your Ollama Cloud API key.",
        403: "Access forbidden. Please verify your API key permissions.",
    }

    def _status_error(self, response: httpx.Response) -> ServiceError:
        message = self._STATUS_MESSAGES.get(response.status_code)
        if message is not None:
            logger.warning("%s rejected the API key (HTTP %d)", self.name, response.status_code)
            return ServiceError(self.name, message, status_code=response.status_code)
        return super()._status_error(response)
