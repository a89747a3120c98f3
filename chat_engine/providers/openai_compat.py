"""OpenAI-compatible cloud providers: Groq, DeepSeek, OpenRouter."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx
import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from chat_engine.engine.decoder import Framing, StreamDecoder, openai_chunk_reader
from chat_engine.engine.errors import (
    CannotConnect,
    MalformedResponse,
    ProviderError,
    RequestBuildFailure,
    RequestFailed,
    ServiceUnavailable,
)
from chat_engine.engine.models import (
    AssistantReply,
    ChatRequest,
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


# ---------------------------------------------------------------------------
# Wire schema (response side; requests go through the SDK)
# ---------------------------------------------------------------------------

class CompletionMessage(BaseModel):
    role: str = "assistant"
    content: str | None = None


class CompletionChoice(BaseModel):
    message: CompletionMessage


class CompletionResponse(BaseModel):
    model: str = ""
    choices: list[CompletionChoice]


# ---------------------------------------------------------------------------
# Base client
# ---------------------------------------------------------------------------

class OpenAICompatibleClient(ProviderClient):
    """``POST {base}/chat/completions`` through ``AsyncOpenAI``.

    The SDK shares this client's ``httpx.AsyncClient`` so the proxy settings
    apply, and runs with ``max_retries=0``: one attempt per call.
    """

    language_style = LanguageStyle.SYSTEM

    def __init__(
        self,
        config: ProviderConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or ProviderConfig.default(self.kind)
        self._http = build_http_client(self._config, transport)
        self._sdk = AsyncOpenAI(
            api_key=self._config.bearer_token or "unset",
            base_url=self._config.base_url,
            http_client=self._http,
            max_retries=0,
            timeout=httpx.Timeout(self._config.timeout, connect=CONNECT_TIMEOUT),
        )

    # -- per-provider hooks -------------------------------------------------

    def _sampling_fields(self, request: ChatRequest) -> dict[str, Any]:
        options = request.options
        return {"seed": options.seed, "temperature": options.temperature, "top_p": options.top_p}

    def _is_default_model(self, model_id: str) -> bool:
        return False

    # -- ProviderClient -----------------------------------------------------

    async def list_models(self) -> list[ModelDescriptor]:
        try:
            page = await self._sdk.models.list()
        except openai.APIError as exc:
            raise self._translate(exc) from exc
        return [
            ModelDescriptor(
                name=model.id,
                display_name=model.id,
                provider=self.kind,
                is_default=self._is_default_model(model.id),
            )
            for model in page.data
        ]

    async def chat_once(self, request: ChatRequest) -> AssistantReply:
        try:
            raw = await self._sdk.chat.completions.with_raw_response.create(
                **self._completion_kwargs(request, stream=False)
            )
        except openai.APIError as exc:
            raise self._translate(exc) from exc
        payload = decode_json_object(self.name, raw.http_response.content)
        if "error" in payload:
            raise error_from_response(self.name, raw.http_response.status_code, raw.http_response.content)
        try:
            parsed = CompletionResponse.model_validate(payload)
        except ValidationError as exc:
            raise MalformedResponse(self.name) from exc
        if not parsed.choices:
            raise MalformedResponse(self.name)
        return AssistantReply(
            content=parsed.choices[0].message.content or "",
            model_name=parsed.model or request.model_name,
        )

    @asynccontextmanager
    async def open_chat_stream(self, request: ChatRequest) -> AsyncIterator[ByteStream]:
        try:
            async with self._sdk.chat.completions.with_streaming_response.create(
                **self._completion_kwargs(request, stream=True)
            ) as response:
                yield guarded_bytes(response.http_response, self.name)
        except openai.APIError as exc:
            raise self._translate(exc) from exc

    def decoder(self) -> StreamDecoder:
        return StreamDecoder(openai_chunk_reader, Framing.SSE)

    async def aclose(self) -> None:
        await self._sdk.close()

    # -- internals ----------------------------------------------------------

    def _completion_kwargs(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        try:
            messages = [{"role": m.role.value, "content": m.content} for m in request.messages]
        except (AttributeError, TypeError) as exc:
            raise RequestBuildFailure(self.name, str(exc)) from exc
        if any(m.images for m in request.messages):
            logger.info("%s does not accept images; sending text only", self.name)
        return {
            "model": request.model_name,
            "messages": messages,
            "stream": stream,
            **self._sampling_fields(request),
        }

    async def _get_json(self, path: str) -> dict[str, Any]:
        try:
            response = await self._http.get(path)
        except httpx.HTTPError as exc:
            raise classify_transport_error(exc, self.name) from exc
        if response.is_error:
            raise error_from_response(self.name, response.status_code, response.content)
        return decode_json_object(self.name, response.content)

    def _translate(self, exc: openai.APIError) -> ProviderError:
        if isinstance(exc, openai.APIStatusError):
            return error_from_response(self.name, exc.status_code, exc.response.content)
        if isinstance(exc, openai.APIResponseValidationError):
            return MalformedResponse(self.name)
        if isinstance(exc, openai.APITimeoutError):
            logger.warning("%s request timed out", self.name)
            return ServiceUnavailable(self.name)
        if isinstance(exc, openai.APIConnectionError):
            cause = exc.__cause__
            if cause is not None:
                return classify_transport_error(cause, self.name)
            return CannotConnect(self.name)
        logger.warning("%s request failed: %s", self.name, exc)
        return RequestFailed(self.name)


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

class GroqClient(OpenAICompatibleClient):
    kind = ProviderKind.GROQ

    def _is_default_model(self, model_id: str) -> bool:
        return "llama3-70b" in model_id or "mixtral-8x7b" in model_id


class DeepSeekClient(OpenAICompatibleClient):
    kind = ProviderKind.DEEPSEEK
    system_language_prompt = "Respond in {language}."
    MAX_TOKENS = 2048

    def _sampling_fields(self, request: ChatRequest) -> dict[str, Any]:
        options = request.options
        return {
            "temperature": options.temperature,
            "top_p": options.top_p,
            "max_tokens": self.MAX_TOKENS,
            "frequency_penalty": 0,
            "presence_penalty": 0,
            "response_format": {"type": "text"},
            "logprobs": False,
        }

    async def balance(self) -> dict[str, Any]:
        return await self._get_json("/user/balance")


class OpenRouterClient(OpenAICompatibleClient):
    kind = ProviderKind.OPENROUTER

    async def credits(self) -> dict[str, Any]:
        """``{"total_credits": float, "total_usage": float}``"""
        payload = await self._get_json("/credits")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise MalformedResponse(self.name)
        return data
