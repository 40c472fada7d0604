"""
Hugging Face Inference provider.

Uses the hf-inference text-generation route. Models are addressed as
`owner/model-name`.
"""

import logging

import httpx

from clipnote.config import Settings
from clipnote.services.ai_clients.base import (
    AIClientConfig,
    AIClientResponseError,
    BaseProvider,
)

logger = logging.getLogger(__name__)


class HuggingFaceProvider(BaseProvider):
    """Hugging Face serverless inference (text generation)."""

    name = "Hugging Face"
    BASE_URL = "https://router.huggingface.co/hf-inference/models"

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> "HuggingFaceProvider":
        """Create HuggingFaceProvider from application settings."""
        config = AIClientConfig(
            base_url=cls.BASE_URL,
            api_key=settings.huggingface_api_key,
            timeout=settings.gemini_timeout / 1000,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
        )
        return cls(config, model=settings.huggingface_model, http_client=http_client)

    async def process(self, prompt: str) -> str:
        if "/" not in self.model:
            raise AIClientResponseError(
                f"Invalid model format: {self.model}. Use format: owner/model-name",
                provider=self.name,
                model=self.model,
                status_code=400,
            )

        payload = {
            "inputs": prompt,
            "parameters": {
                "max_new_tokens": self.max_tokens,
                "temperature": self.temperature,
                "return_full_text": False,
                "do_sample": True,
            },
            "options": {"wait_for_model": True, "use_cache": True},
        }
        data = await self._post_json(
            f"{self.config.base_url}/{self.model}",
            payload,
            headers={"Authorization": f"Bearer {self.config.api_key}"},
        )

        # The route answers either [{"generated_text": ...}] or {"generated_text": ...}
        if isinstance(data, list) and data:
            data = data[0]
        text = (data.get("generated_text") if isinstance(data, dict) else None) or ""

        text = text.strip()
        if not text:
            raise self._empty_response()
        return text
