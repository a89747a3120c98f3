"""Tests for preference seeding and provider config loading."""

from __future__ import annotations

import pytest

from chat_engine.config.settings import (
    PreferenceKey,
    is_configured,
    load_provider_config,
    load_proxy,
    load_response_language,
    load_selected_model,
    load_selected_provider,
    ollama_base_url,
    save_selected_model,
    seed_from_env,
    timeout_from_env,
)
from chat_engine.engine.models import ProviderKind
from chat_engine.providers.transport import DEFAULT_TIMEOUT


class TestSeedFromEnv:
    async def test_copies_set_variables(self, preferences):
        written = await seed_from_env(preferences, {
            "OLLAMA_HOST": "http://gpu-box",
            "GROQ_API_KEY": "gsk-1",
            "HTTP_PROXY_ENABLED": "YES",
            "HTTP_PROXY_AUTH_ENABLED": "0",
            "DEEPSEEK_API_KEY": "",
            "UNRELATED": "x",
        })

        assert written == 4
        assert await preferences.get(PreferenceKey.OLLAMA_HOST) == "gpu-box"
        assert await preferences.get(PreferenceKey.GROQ_API_KEY) == "gsk-1"
        assert await preferences.get(PreferenceKey.PROXY_ENABLED) == "true"
        assert await preferences.get(PreferenceKey.PROXY_AUTH_ENABLED) == "false"
        assert await preferences.get(PreferenceKey.DEEPSEEK_API_KEY) is None

    async def test_empty_environment(self, preferences):
        assert await seed_from_env(preferences, {}) == 0


class TestTimeout:
    @pytest.mark.parametrize("raw,expected", [
        (None, DEFAULT_TIMEOUT),
        ("45", 45.0),
        ("abc", DEFAULT_TIMEOUT),
        ("0", DEFAULT_TIMEOUT),
        ("-3", DEFAULT_TIMEOUT),
    ])
    def test_timeout_from_env(self, raw, expected):
        environ = {} if raw is None else {"CHAT_ENGINE_TIMEOUT": raw}
        assert timeout_from_env(environ) == expected


class TestProviderConfig:
    async def test_ollama_defaults_are_written_back(self, preferences):
        assert await ollama_base_url(preferences) == "http://localhost:11434"
        assert await preferences.get(PreferenceKey.OLLAMA_HOST) == "localhost"
        assert await preferences.get(PreferenceKey.OLLAMA_PORT) == "11434"

    async def test_ollama_host_scheme_stripped(self, preferences):
        await preferences.set(PreferenceKey.OLLAMA_HOST, "https://gpu-box/")
        await preferences.set(PreferenceKey.OLLAMA_PORT, "8080")
        assert await ollama_base_url(preferences) == "http://gpu-box:8080"

    @pytest.mark.parametrize("host,port,expected", [
        ("127.0.0.1:11434", "11434", "http://127.0.0.1:11434"),
        ("http://gpu-box:9000", "11434", "http://gpu-box:9000"),
        ("[::1]:11434", "8080", "http://[::1]:11434"),
        ("gpu-box", "8080", "http://gpu-box:8080"),
    ])
    async def test_port_embedded_in_host(self, preferences, host, port, expected):
        await preferences.set(PreferenceKey.OLLAMA_HOST, host)
        await preferences.set(PreferenceKey.OLLAMA_PORT, port)
        assert await ollama_base_url(preferences) == expected

    async def test_cloud_provider_uses_token(self, preferences):
        await preferences.set(PreferenceKey.OPENROUTER_API_KEY, "sk-or")

        config = await load_provider_config(ProviderKind.OPENROUTER, preferences, timeout=5)

        assert config.base_url == "https://openrouter.ai/api/v1"
        assert config.bearer_token == "sk-or"
        assert config.timeout == 5
        assert not config.proxy.active

    async def test_proxy_loaded(self, preferences):
        await preferences.set(PreferenceKey.PROXY_HOST, "proxy.lan")
        await preferences.set(PreferenceKey.PROXY_PORT, "3128")
        await preferences.set(PreferenceKey.PROXY_ENABLED, "true")

        proxy = await load_proxy(preferences)

        assert proxy.active
        assert proxy.url() == "http://proxy.lan:3128"

    async def test_bad_proxy_port_ignored(self, preferences):
        await preferences.set(PreferenceKey.PROXY_HOST, "proxy.lan")
        await preferences.set(PreferenceKey.PROXY_PORT, "eighty")
        await preferences.set(PreferenceKey.PROXY_ENABLED, "true")

        assert (await load_proxy(preferences)).url() == "http://proxy.lan"

    async def test_is_configured(self, preferences):
        assert await is_configured(ProviderKind.OLLAMA, preferences)
        assert not await is_configured(ProviderKind.GROQ, preferences)
        await preferences.set(PreferenceKey.GROQ_API_KEY, "   ")
        assert not await is_configured(ProviderKind.GROQ, preferences)
        await preferences.set(PreferenceKey.GROQ_API_KEY, "gsk")
        assert await is_configured(ProviderKind.GROQ, preferences)


class TestSelections:
    async def test_response_language(self, preferences):
        assert await load_response_language(preferences) == "English"
        await preferences.set(PreferenceKey.RESPONSE_LANGUAGE, "Klingon")
        assert await load_response_language(preferences) == "English"
        await preferences.set(PreferenceKey.RESPONSE_LANGUAGE, "Auto")
        assert await load_response_language(preferences) == "Auto"

    async def test_selected_provider(self, preferences):
        assert await load_selected_provider(preferences) is ProviderKind.OLLAMA
        await preferences.set(PreferenceKey.SELECTED_PROVIDER, "groq")
        assert await load_selected_provider(preferences) is ProviderKind.GROQ
        await preferences.set(PreferenceKey.SELECTED_PROVIDER, "bard")
        assert await load_selected_provider(preferences) is ProviderKind.OLLAMA

    async def test_selected_model_per_provider(self, preferences):
        await save_selected_model(preferences, ProviderKind.GROQ, "llama3-70b-8192")

        assert await load_selected_model(preferences, ProviderKind.GROQ) == "llama3-70b-8192"
        assert await load_selected_model(preferences, ProviderKind.OLLAMA) is None
        assert await preferences.get("selectedModel.groq") == "llama3-70b-8192"
