"""
Ollama provider.

Talks to a local Ollama server through /api/generate, or to the hosted
Ollama API when a key is configured. Vision models accept base64 images.

Note: Ollama doesn't report token usage through /api/generate reliably,
so only `eval_count` is recorded when present.
"""

import logging

import httpx

from clipnote.config import Settings
from clipnote.services.ai_clients.base import (
    AIClientConfig,
    BaseProvider,
    ChatUsage,
    split_image,
)

logger = logging.getLogger(__name__)

OLLAMA_CLOUD_URL = "https://ollama.com"


class OllamaProvider(BaseProvider):
    """
    Async HTTP client for the Ollama generate API.

    Example:
        async with OllamaProvider.from_settings(settings) as ollama:
            response = await ollama.process("Hello!")
            caption = await ollama.process_with_image("Describe", [b64_png])
    """

    name = "Ollama"
    supports_images = True

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> "OllamaProvider":
        """
        Create OllamaProvider from application settings.

        A configured `ollama_api_key` switches to the hosted endpoint.

        Args:
            settings: Application settings
            http_client: Shared HTTP client

        Returns:
            Configured OllamaProvider instance
        """
        api_key = settings.ollama_api_key.strip() or None
        config = AIClientConfig(
            base_url=OLLAMA_CLOUD_URL if api_key else settings.ollama_url.rstrip("/"),
            api_key=api_key,
            timeout=settings.gemini_timeout / 1000,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
        )
        return cls(config, model=settings.ollama_model, http_client=http_client)

    async def process(self, prompt: str) -> str:
        return await self._generate(prompt)

    async def process_with_image(self, prompt: str, images: list[str]) -> str:
        # Ollama wants raw base64 without the data-URL prefix
        raw_images = [split_image(image)[1] for image in images]
        return await self._generate(prompt, raw_images)

    async def _generate(self, prompt: str, images: list[str] | None = None) -> str:
        logger.debug(f"Generating with {self.model}, prompt length: {len(prompt)}")

        request_body: dict = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "num_predict": self.max_tokens,
                "temperature": self.temperature,
            },
        }
        if images:
            request_body["images"] = images

        headers = {}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        result = await self._post_json(
            f"{self.config.base_url}/api/generate",
            request_body,
            headers=headers,
        )

        response_text = (result.get("response") or "").strip()
        self.last_usage = ChatUsage(
            input_tokens=result.get("prompt_eval_count", 0),
            output_tokens=result.get("eval_count", 0),
        )

        # Diagnostics for empty responses
        if not response_text:
            logger.error(
                f"Empty response from LLM! Model: {self.model}, "
                f"prompt_length: {len(prompt)} chars"
            )
            raise self._empty_response()

        logger.debug(f"Generated {len(response_text)} chars")
        return response_text
