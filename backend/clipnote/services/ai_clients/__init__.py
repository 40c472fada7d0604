"""
AI provider package.

This package provides a unified interface for hosted and local inference:
- GeminiProvider: Google Gemini (multimodal)
- GroqProvider, OpenRouterProvider: OpenAI-compatible chat completions
- HuggingFaceProvider: Hugging Face serverless inference
- OllamaProvider: local or hosted Ollama
- ClaudeProvider: Anthropic Claude API

Usage:
    from clipnote.services.ai_clients import AIProvider, create_providers

    async def summarize(provider: AIProvider, text: str) -> str:
        return await provider.process(f"Summarize: {text}")

    providers = create_providers(settings, http_client)
"""

from clipnote.services.ai_clients.base import (
    AIClientConfig,
    AIClientConnectionError,
    AIClientError,
    AIClientQuotaError,
    AIClientResponseError,
    AIClientTimeoutError,
    AIProvider,
    BaseProvider,
    ChatUsage,
    is_quota_error,
)
from clipnote.services.ai_clients.claude_client import ClaudeProvider
from clipnote.services.ai_clients.factory import create_providers
from clipnote.services.ai_clients.gemini_client import GeminiProvider
from clipnote.services.ai_clients.huggingface_client import HuggingFaceProvider
from clipnote.services.ai_clients.ollama_client import OllamaProvider
from clipnote.services.ai_clients.openai_compatible import GroqProvider, OpenRouterProvider

__all__ = [
    # Protocol and base classes
    "AIProvider",
    "BaseProvider",
    "AIClientConfig",
    "ChatUsage",
    # Errors
    "AIClientError",
    "AIClientTimeoutError",
    "AIClientConnectionError",
    "AIClientResponseError",
    "AIClientQuotaError",
    "is_quota_error",
    # Implementations
    "GeminiProvider",
    "GroqProvider",
    "OpenRouterProvider",
    "HuggingFaceProvider",
    "OllamaProvider",
    "ClaudeProvider",
    "create_providers",
]
