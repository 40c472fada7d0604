"""
Claude provider.

Uses Anthropic's async SDK. SDK-level retries are disabled because retries
are applied by the fallback strategy's retry executor.
"""

import logging

from anthropic import APIConnectionError, APIStatusError, APITimeoutError, AsyncAnthropic

from clipnote.config import Settings
from clipnote.services.ai_clients.base import (
    AIClientConfig,
    AIClientConnectionError,
    AIClientQuotaError,
    AIClientResponseError,
    AIClientTimeoutError,
    BaseProvider,
    ChatUsage,
    split_image,
)

logger = logging.getLogger(__name__)

# Default Claude model (using alias for auto-updates)
DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-5"


class ClaudeProvider(BaseProvider):
    """
    Async client for Anthropic's Claude API.

    Designed for large context processing (long transcripts) and image input.

    Example:
        async with ClaudeProvider.from_settings(settings) as claude:
            response = await claude.process("Analyze this document...")
    """

    name = "Claude"
    supports_images = True

    def __init__(self, config: AIClientConfig, model: str = DEFAULT_CLAUDE_MODEL, **kwargs):
        """
        Initialize Claude provider.

        Args:
            config: Provider configuration with API key
            model: Default Claude model to use

        Raises:
            ValueError: If API key is not provided
        """
        super().__init__(config, model, **kwargs)

        if not config.api_key:
            raise ValueError(
                "ClaudeProvider requires API key. "
                "Set ANTHROPIC_API_KEY environment variable."
            )

        self.client = AsyncAnthropic(
            api_key=config.api_key,
            timeout=config.timeout,
            max_retries=0,
        )

        logger.info(f"ClaudeProvider initialized, model: {model}")

    @classmethod
    def from_settings(cls, settings: Settings, http_client=None) -> "ClaudeProvider":
        """
        Create ClaudeProvider from application settings.

        Args:
            settings: Application settings
            http_client: Shared HTTP client (unused by the SDK transport)

        Returns:
            Configured ClaudeProvider instance

        Raises:
            ValueError: If ANTHROPIC_API_KEY not set
        """
        config = AIClientConfig(
            base_url="https://api.anthropic.com",
            api_key=settings.anthropic_api_key,
            timeout=settings.gemini_timeout / 1000,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
        )
        return cls(config=config, model=settings.claude_model, http_client=http_client)

    async def close(self) -> None:
        """Close the SDK client and release resources."""
        await self.client.close()
        await super().close()
        logger.debug("ClaudeProvider closed")

    async def process(self, prompt: str) -> str:
        return await self._create([{"type": "text", "text": prompt}])

    async def process_with_image(self, prompt: str, images: list[str]) -> str:
        content: list[dict] = []
        for image in images:
            media_type, data = split_image(image)
            content.append({
                "type": "image",
                "source": {"type": "base64", "media_type": media_type, "data": data},
            })
        content.append({"type": "text", "text": prompt})
        return await self._create(content)

    async def _create(self, content: list[dict]) -> str:
        logger.debug(
            f"Claude request: model={self.model}, blocks={len(content)}, "
            f"max_tokens={self.max_tokens}"
        )

        try:
            response = await self.client.with_options(timeout=self.timeout).messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                messages=[{"role": "user", "content": content}],
            )

        except APITimeoutError as e:
            logger.error(f"Claude timeout: {e}")
            raise AIClientTimeoutError(
                "Claude request timeout",
                provider=self.name,
                model=self.model,
                original_error=e,
            ) from e

        except APIConnectionError as e:
            logger.error(f"Claude connection error: {e}")
            raise AIClientConnectionError(
                f"Cannot connect to Claude API: {e}",
                provider=self.name,
                original_error=e,
            ) from e

        except APIStatusError as e:
            logger.error(f"Claude API error: {e.status_code} - {e.message}")
            error_cls = AIClientQuotaError if e.status_code == 429 else AIClientResponseError
            raise error_cls(
                f"Claude API error (HTTP {e.status_code}): {e.message}",
                provider=self.name,
                model=self.model,
                status_code=e.status_code,
                response_body=str(e.body) if e.body else None,
                original_error=e,
            ) from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        ).strip()

        self.last_usage = ChatUsage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        logger.info(
            f"Claude response: {len(text)} chars, "
            f"tokens: {self.last_usage.input_tokens} in / {self.last_usage.output_tokens} out"
        )

        if not text:
            raise self._empty_response()
        return text
