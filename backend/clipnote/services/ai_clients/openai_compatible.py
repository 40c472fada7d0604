"""
Providers speaking the OpenAI chat-completions dialect.

Groq and OpenRouter expose the same request/response shape, so both are
thin subclasses of OpenAICompatibleProvider that only differ in endpoint,
headers and defaults.
"""

import logging

import httpx

from clipnote.config import Settings
from clipnote.services.ai_clients.base import (
    AIClientConfig,
    AIClientResponseError,
    BaseProvider,
    ChatUsage,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert video content analyst. Produce well-structured "
    "markdown that follows the requested output format exactly."
)


class OpenAICompatibleProvider(BaseProvider):
    """
    Base for `/chat/completions` style providers.

    Sends a system message plus the user prompt and reads
    `choices[0].message.content` back.
    """

    chat_path = "/chat/completions"

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

    def _messages(self, prompt: str, images: list[str] | None = None) -> list[dict]:
        if images:
            content: list[dict] | str = [{"type": "text", "text": prompt}]
            for image in images:
                url = image if image.startswith("data:") else f"data:image/jpeg;base64,{image}"
                content.append({"type": "image_url", "image_url": {"url": url}})
        else:
            content = prompt
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": content},
        ]

    async def _complete(self, prompt: str, images: list[str] | None = None) -> str:
        if not self.config.api_key:
            raise AIClientResponseError(
                f"{self.name} API key is not configured",
                provider=self.name,
                model=self.model,
                status_code=401,
            )

        payload = {
            "model": self.model,
            "messages": self._messages(prompt, images),
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        data = await self._post_json(
            f"{self.config.base_url}{self.chat_path}",
            payload,
            headers=self._headers(),
        )

        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise AIClientResponseError(
                f"Invalid response format from {self.name}",
                provider=self.name,
                model=self.model,
                original_error=e,
            ) from e

        usage = data.get("usage") or {}
        self.last_usage = ChatUsage(
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
        )

        content = content.strip()
        if not content:
            raise self._empty_response()

        logger.debug(f"{self.name} generated {len(content)} chars with {self.model}")
        return content

    async def process(self, prompt: str) -> str:
        return await self._complete(prompt)


class GroqProvider(OpenAICompatibleProvider):
    """
    Groq LPU inference.

    Example:
        async with GroqProvider.from_settings(settings) as groq:
            text = await groq.process("Summarize ...")
    """

    name = "Groq"
    BASE_URL = "https://api.groq.com/openai/v1"

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> "GroqProvider":
        """
        Create GroqProvider from application settings.

        Args:
            settings: Application settings
            http_client: Shared HTTP client

        Returns:
            Configured GroqProvider instance
        """
        config = AIClientConfig(
            base_url=cls.BASE_URL,
            api_key=settings.groq_api_key,
            timeout=settings.groq_timeout / 1000,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
        )
        return cls(config, model=settings.groq_model, http_client=http_client)


class OpenRouterProvider(OpenAICompatibleProvider):
    """
    OpenRouter gateway to many hosted models.

    Vision-capable models accept image parts, so image input is enabled;
    text-only models reject it with a 4xx which the fallback chain handles.
    """

    name = "OpenRouter"
    supports_images = True
    BASE_URL = "https://openrouter.ai/api/v1"

    def _headers(self) -> dict:
        headers = super()._headers()
        headers["HTTP-Referer"] = "https://github.com/clipnote/clipnote"
        headers["X-Title"] = "clipnote"
        return headers

    async def process_with_image(self, prompt: str, images: list[str]) -> str:
        return await self._complete(prompt, images)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> "OpenRouterProvider":
        """Create OpenRouterProvider from application settings."""
        config = AIClientConfig(
            base_url=cls.BASE_URL,
            api_key=settings.openrouter_api_key,
            timeout=settings.gemini_timeout / 1000,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
        )
        return cls(config, model=settings.openrouter_model, http_client=http_client)
