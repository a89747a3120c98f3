"""Preference keys, env seeding, and provider configs built from preferences."""

from __future__ import annotations

import logging
import os
from typing import Mapping

from chat_engine.engine.models import AUTO_LANGUAGE, ProviderKind
from chat_engine.providers.transport import (
    DEFAULT_BASE_URLS,
    DEFAULT_TIMEOUT,
    ProviderConfig,
    ProxyConfiguration,
    strip_scheme,
)
from chat_engine.store.interface import PreferenceStore

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_HOST = "localhost"
DEFAULT_OLLAMA_PORT = "11434"
DEFAULT_RESPONSE_LANGUAGE = "English"

RESPONSE_LANGUAGES = (
    AUTO_LANGUAGE,
    "English",
    "Korean",
    "Japanese",
    "Vietnamese",
    "Spanish",
    "Arabic",
    "Indonesian",
    "Simplified Chinese",
    "Traditional Chinese",
)


class PreferenceKey:
    OLLAMA_HOST = "ollamaHostName"
    OLLAMA_PORT = "ollamaHostPort"
    OLLAMA_CLOUD_API_KEY = "ollamaCloudApiKey"
    GROQ_API_KEY = "groqApiKey"
    DEEPSEEK_API_KEY = "deepSeekApiKey"
    OPENROUTER_API_KEY = "openRouterApiKey"
    PROXY_HOST = "httpProxyHostName"
    PROXY_PORT = "httpProxyHostPort"
    PROXY_LOGIN = "httpProxyLogin"
    PROXY_PASSWORD = "httpProxyPassword"
    PROXY_ENABLED = "isHttpProxyEnabled"
    PROXY_AUTH_ENABLED = "isHttpProxyAuthEnabled"
    RESPONSE_LANGUAGE = "responseLang"
    SELECTED_PROVIDER = "selectedApiHost"

    @staticmethod
    def selected_model(kind: ProviderKind) -> str:
        return f"selectedModel.{kind.value}"


API_KEY_PREFERENCES: dict[ProviderKind, str] = {
    ProviderKind.OLLAMA_CLOUD: PreferenceKey.OLLAMA_CLOUD_API_KEY,
    ProviderKind.GROQ: PreferenceKey.GROQ_API_KEY,
    ProviderKind.DEEPSEEK: PreferenceKey.DEEPSEEK_API_KEY,
    ProviderKind.OPENROUTER: PreferenceKey.OPENROUTER_API_KEY,
}

ENV_PREFERENCES: dict[str, str] = {
    "OLLAMA_HOST": PreferenceKey.OLLAMA_HOST,
    "OLLAMA_PORT": PreferenceKey.OLLAMA_PORT,
    "OLLAMA_CLOUD_API_KEY": PreferenceKey.OLLAMA_CLOUD_API_KEY,
    "GROQ_API_KEY": PreferenceKey.GROQ_API_KEY,
    "DEEPSEEK_API_KEY": PreferenceKey.DEEPSEEK_API_KEY,
    "OPENROUTER_API_KEY": PreferenceKey.OPENROUTER_API_KEY,
    "HTTP_PROXY_HOST": PreferenceKey.PROXY_HOST,
    "HTTP_PROXY_PORT": PreferenceKey.PROXY_PORT,
    "HTTP_PROXY_LOGIN": PreferenceKey.PROXY_LOGIN,
    "HTTP_PROXY_PASSWORD": PreferenceKey.PROXY_PASSWORD,
    "HTTP_PROXY_ENABLED": PreferenceKey.PROXY_ENABLED,
    "HTTP_PROXY_AUTH_ENABLED": PreferenceKey.PROXY_AUTH_ENABLED,
    "CHAT_ENGINE_RESPONSE_LANG": PreferenceKey.RESPONSE_LANGUAGE,
}


# ---------------------------------------------------------------------------
# Seeding
# ---------------------------------------------------------------------------

async def seed_from_env(prefs: PreferenceStore, environ: Mapping[str, str] | None = None) -> int:
    """Copy set env vars into *prefs*; returns how many keys were written."""
    environ = os.environ if environ is None else environ
    written = 0
    for var, key in ENV_PREFERENCES.items():
        value = environ.get(var)
        if not value:
            continue
        if key in (PreferenceKey.PROXY_ENABLED, PreferenceKey.PROXY_AUTH_ENABLED):
            value = format_flag(parse_flag(value))
        elif key == PreferenceKey.OLLAMA_HOST:
            value = strip_scheme(value)
        await prefs.set(key, value)
        written += 1
    if written:
        logger.info("Seeded %d preference(s) from the environment", written)
    return written


def timeout_from_env(environ: Mapping[str, str] | None = None) -> float:
    environ = os.environ if environ is None else environ
    raw = environ.get("CHAT_ENGINE_TIMEOUT")
    if not raw:
        return DEFAULT_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring CHAT_ENGINE_TIMEOUT=%r (not a number)", raw)
        return DEFAULT_TIMEOUT
    if value <= 0:
        logger.warning("Ignoring CHAT_ENGINE_TIMEOUT=%r (must be positive)", raw)
        return DEFAULT_TIMEOUT
    return value


def parse_flag(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def format_flag(value: bool) -> str:
    return "true" if value else "false"


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

async def load_proxy(prefs: PreferenceStore) -> ProxyConfiguration:
    port_text = (await prefs.get(PreferenceKey.PROXY_PORT) or "").strip()
    port: int | None = None
    if port_text:
        try:
            port = int(port_text)
        except ValueError:
            logger.warning("Ignoring proxy port %r (not a number)", port_text)
    return ProxyConfiguration(
        host=await prefs.get(PreferenceKey.PROXY_HOST) or "",
        port=port,
        enabled=parse_flag(await prefs.get(PreferenceKey.PROXY_ENABLED)),
        auth_enabled=parse_flag(await prefs.get(PreferenceKey.PROXY_AUTH_ENABLED)),
        login=await prefs.get(PreferenceKey.PROXY_LOGIN) or "",
        password=await prefs.get(PreferenceKey.PROXY_PASSWORD) or "",
    )


async def ollama_base_url(prefs: PreferenceStore) -> str:
    host = strip_scheme(await prefs.load(PreferenceKey.OLLAMA_HOST, DEFAULT_OLLAMA_HOST))
    port = (await prefs.load(PreferenceKey.OLLAMA_PORT, DEFAULT_OLLAMA_PORT)).strip()
    host = host.rstrip("/") or DEFAULT_OLLAMA_HOST
    # "127.0.0.1:11434" (Ollama's own OLLAMA_HOST form): the embedded port wins.
    name, _, embedded_port = host.rpartition(":")
    if name and not name.endswith(":") and embedded_port.isdigit():
        host, port = name, embedded_port
    return f"http://{host}:{port}" if port else f"http://{host}"


async def load_provider_config(
    kind: ProviderKind,
    prefs: PreferenceStore,
    timeout: float | None = None,
) -> ProviderConfig:
    proxy = await load_proxy(prefs)
    if kind is ProviderKind.OLLAMA:
        base_url = await ollama_base_url(prefs)
        token = ""
    else:
        base_url = DEFAULT_BASE_URLS[kind]
        token = await prefs.get(API_KEY_PREFERENCES[kind]) or ""
    return ProviderConfig(
        kind=kind,
        base_url=base_url,
        bearer_token=token,
        proxy=proxy,
        timeout=timeout if timeout is not None else timeout_from_env(),
    )


async def is_configured(kind: ProviderKind, prefs: PreferenceStore) -> bool:
    """Local Ollama needs no key; cloud providers need a non-blank one."""
    if kind is ProviderKind.OLLAMA:
        return True
    return bool((await prefs.get(API_KEY_PREFERENCES[kind]) or "").strip())


async def load_response_language(prefs: PreferenceStore) -> str:
    value = await prefs.load(PreferenceKey.RESPONSE_LANGUAGE, DEFAULT_RESPONSE_LANGUAGE)
    if value not in RESPONSE_LANGUAGES:
        logger.warning("Unknown response language %r, using %s", value, DEFAULT_RESPONSE_LANGUAGE)
        return DEFAULT_RESPONSE_LANGUAGE
    return value


async def load_selected_provider(prefs: PreferenceStore) -> ProviderKind:
    value = await prefs.load(PreferenceKey.SELECTED_PROVIDER, ProviderKind.OLLAMA.value)
    try:
        return ProviderKind(value)
    except ValueError:
        logger.warning("Unknown provider %r in preferences, using Ollama", value)
        return ProviderKind.OLLAMA


async def load_selected_model(prefs: PreferenceStore, kind: ProviderKind) -> str | None:
    return await prefs.get(PreferenceKey.selected_model(kind))


async def save_selected_model(prefs: PreferenceStore, kind: ProviderKind, model_name: str) -> None:
    await prefs.set(PreferenceKey.selected_model(kind), model_name)
