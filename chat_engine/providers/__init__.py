from chat_engine.providers.base import DemoProviderClient, MockProviderClient, ProviderClient
from chat_engine.providers.transport import ProviderConfig, ProxyConfiguration, build_http_client
from chat_engine.providers.ollama import OllamaClient, OllamaCloudClient
from chat_engine.providers.openai_compat import (
    DeepSeekClient,
    GroqClient,
    OpenAICompatibleClient,
    OpenRouterClient,
)
from chat_engine.providers.registry import ProviderRegistry

__all__ = [
    "DeepSeekClient",
    "DemoProviderClient",
    "GroqClient",
    "MockProviderClient",
    "OllamaClient",
    "OllamaCloudClient",
    "OpenAICompatibleClient",
    "OpenRouterClient",
    "ProviderClient",
    "ProviderConfig",
    "ProviderRegistry",
    "ProxyConfiguration",
    "build_http_client",
]
