"""Shared HTTP transport: provider config, proxy plumbing, error translation."""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, AsyncIterator
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict

from chat_engine.engine.errors import (
    CannotConnect,
    MalformedResponse,
    RequestFailed,
    ServiceError,
    ServiceUnavailable,
    TransportUnavailable,
)
from chat_engine.engine.models import ProviderKind

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10.0
DEFAULT_TIMEOUT = 120.0
USER_AGENT = "chat-engine/0.1"

DEFAULT_BASE_URLS: dict[ProviderKind, str] = {
    ProviderKind.OLLAMA: "http://localhost:11434",
    ProviderKind.OLLAMA_CLOUD: "https://ollama.com",
    ProviderKind.GROQ: "https://api.groq.com/openai/v1",
    ProviderKind.DEEPSEEK: "https://api.deepseek.com",
    ProviderKind.OPENROUTER: "https://openrouter.ai/api/v1",
}


def strip_scheme(host: str) -> str:
    host = host.strip()
    for prefix in ("http://", "https://"):
        if host.lower().startswith(prefix):
            return host[len(prefix):]
    return host


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ProxyConfiguration(BaseModel):
    """HTTP/HTTPS proxy shared by every provider client."""

    model_config = ConfigDict(frozen=True)

    host: str = ""
    port: int | None = None
    enabled: bool = False
    auth_enabled: bool = False
    login: str = ""
    password: str = ""

    @property
    def active(self) -> bool:
        # A missing host is a direct connection, not an error.
        return self.enabled and bool(strip_scheme(self.host))

    @property
    def uses_auth(self) -> bool:
        return self.active and self.auth_enabled and bool(self.login)

    def url(self) -> str | None:
        if not self.active:
            return None
        credentials = ""
        if self.uses_auth:
            credentials = f"{quote(self.login, safe='')}:{quote(self.password, safe='')}@"
        port = f":{self.port}" if self.port else ""
        return f"http://{credentials}{strip_scheme(self.host)}{port}"

    def headers(self) -> dict[str, str]:
        if not self.uses_auth:
            return {}
        token = base64.b64encode(f"{self.login}:{self.password}".encode("utf-8")).decode("ascii")
        return {"Proxy-Authorization": f"Basic {token}"}


class ProviderConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ProviderKind
    base_url: str
    bearer_token: str = ""
    proxy: ProxyConfiguration = ProxyConfiguration()
    timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def default(cls, kind: ProviderKind, **overrides: Any) -> "ProviderConfig":
        return cls(**{"kind": kind, "base_url": DEFAULT_BASE_URLS[kind], **overrides})


def build_http_client(
    config: ProviderConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """One ``httpx.AsyncClient`` per provider, proxy applied uniformly.

    An explicit *transport* replaces proxy routing (the proxy headers are
    still attached).
    """
    headers = {
        "Content-Type": "application/json",
        "Accept": "application/json",
        "User-Agent": USER_AGENT,
        **config.proxy.headers(),
    }
    if config.bearer_token:
        headers["Authorization"] = f"Bearer {config.bearer_token}"
    proxy = None if transport is not None else config.proxy.url()
    if proxy:
        logger.debug("%s requests routed through proxy %s", config.kind.display_name,
                     strip_scheme(config.proxy.host))
    return httpx.AsyncClient(
        base_url=config.base_url.rstrip("/"),
        headers=headers,
        timeout=httpx.Timeout(config.timeout, connect=CONNECT_TIMEOUT),
        proxy=proxy,
        transport=transport,
    )


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------

_CONNECTION_ERRORS = (
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
)


def classify_transport_error(exc: BaseException, provider: str) -> TransportUnavailable:
    if isinstance(exc, _CONNECTION_ERRORS):
        error: TransportUnavailable = CannotConnect(provider)
    elif isinstance(exc, httpx.TransportError):
        error = ServiceUnavailable(provider)
    else:
        error = RequestFailed(provider)
    logger.warning("%s transport failure (%s): %s", provider, type(exc).__name__, exc)
    return error


def error_from_response(provider: str, status_code: int, body: bytes | str) -> ServiceError:
    """Decode ``{error: {message}}`` / ``{error: str}`` / ``{msg}`` envelopes."""
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    message = None
    try:
        payload = json.loads(text)
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            message = f"{provider} Error: {error['message']}"
        elif isinstance(error, str):
            message = f"{provider} Error: {error}"
        elif isinstance(payload.get("msg"), str):
            message = payload["msg"]
    if message is None:
        message = f"{provider} Error {status_code}: {text or 'No response body'}"
    logger.warning("%s returned HTTP %d", provider, status_code)
    return ServiceError(provider, message, status_code=status_code)


def decode_json_object(provider: str, content: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(content)
    except ValueError as exc:
        raise MalformedResponse(provider) from exc
    if not isinstance(payload, dict):
        raise MalformedResponse(provider)
    return payload


async def guarded_bytes(response: httpx.Response, provider: str) -> AsyncIterator[bytes]:
    """Iterate a streaming body, translating mid-stream transport failures."""
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    except httpx.HTTPError as exc:
        raise classify_transport_error(exc, provider) from exc
