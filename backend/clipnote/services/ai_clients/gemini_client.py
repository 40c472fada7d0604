"""
Google Gemini provider.

Calls the `generateContent` REST endpoint. Prompts that reference a YouTube
video get a system instruction asking for combined audio/visual analysis;
Gemini fetches the video itself, no extra request flags are needed.
"""

import logging
import re

import httpx

from clipnote.config import Settings
from clipnote.services.ai_clients.base import (
    AIClientConfig,
    AIClientResponseError,
    BaseProvider,
    ChatUsage,
    split_image,
)

logger = logging.getLogger(__name__)

VIDEO_SYSTEM_INSTRUCTION = (
    "You are an expert video content analyzer. Provide comprehensive, "
    "multimodal analysis using the audio stream (spoken content, speakers, "
    "tone) and the video stream (slides, diagrams, on-screen text, "
    "demonstrations), and synthesize both into one coherent result."
)

GCS_VIDEO_PATTERN = re.compile(r"(gs://[\w\-./]+\.(?:mp4|mov|mkv|webm))", re.IGNORECASE)


def is_video_prompt(prompt: str) -> bool:
    """True if the prompt points at a YouTube video."""
    lowered = prompt.lower()
    return (
        "youtube video" in lowered
        or "youtu.be/" in lowered
        or "youtube.com/" in lowered
    )


class GeminiProvider(BaseProvider):
    """
    Google Gemini via the Generative Language API.

    Example:
        async with GeminiProvider.from_settings(settings) as gemini:
            text = await gemini.process("Analyze this YouTube video: ...")
    """

    name = "Google Gemini"
    supports_images = True
    BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> "GeminiProvider":
        """
        Create GeminiProvider from application settings.

        Args:
            settings: Application settings
            http_client: Shared HTTP client

        Returns:
            Configured GeminiProvider instance
        """
        config = AIClientConfig(
            base_url=cls.BASE_URL,
            api_key=settings.gemini_api_key,
            timeout=settings.gemini_timeout / 1000,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
        )
        return cls(config, model=settings.gemini_model, http_client=http_client)

    async def process(self, prompt: str) -> str:
        return await self._generate(self._build_body(prompt))

    async def process_with_image(self, prompt: str, images: list[str]) -> str:
        body = self._build_body(prompt)
        parts = body["contents"][0]["parts"]
        for image in images:
            media_type, data = split_image(image)
            parts.append({"inline_data": {"mime_type": media_type, "data": data}})
        return await self._generate(body)

    def _build_body(self, prompt: str) -> dict:
        body: dict = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_tokens,
                "candidateCount": 1,
            },
        }

        if is_video_prompt(prompt):
            body["systemInstruction"] = {"parts": [{"text": VIDEO_SYSTEM_INSTRUCTION}]}

            gcs_match = GCS_VIDEO_PATTERN.search(prompt)
            if gcs_match:
                body["contents"].append({
                    "parts": [{
                        "fileData": {"fileUri": gcs_match.group(1), "mimeType": "video/mp4"}
                    }]
                })

        return body

    async def _generate(self, body: dict) -> str:
        if not self.config.api_key:
            raise AIClientResponseError(
                "Gemini API key is not configured",
                provider=self.name,
                model=self.model,
                status_code=401,
            )

        data = await self._post_json(
            f"{self.config.base_url}/models/{self.model}:generateContent",
            body,
            headers={"Content-Type": "application/json"},
            params={"key": self.config.api_key},
        )

        candidates = data.get("candidates") or []
        if not candidates:
            raise AIClientResponseError(
                "No response candidates returned from Gemini API",
                provider=self.name,
                model=self.model,
            )

        candidate = candidates[0]
        if candidate.get("finishReason") == "SAFETY":
            raise AIClientResponseError(
                "Response blocked by Gemini safety filters. Try rephrasing.",
                provider=self.name,
                model=self.model,
            )

        try:
            text = candidate["content"]["parts"][0]["text"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise AIClientResponseError(
                "Invalid response format from Gemini API",
                provider=self.name,
                model=self.model,
                original_error=e,
            ) from e

        usage = data.get("usageMetadata") or {}
        self.last_usage = ChatUsage(
            input_tokens=usage.get("promptTokenCount", 0),
            output_tokens=usage.get("candidatesTokenCount", 0),
        )

        text = text.strip()
        if not text:
            raise self._empty_response()
        return text
