"""
Base AI provider protocol and shared implementation.

Defines the interface that all providers must implement, allowing the
fallback strategy and orchestrator to treat Gemini, Groq, OpenRouter,
Hugging Face, Ollama and Claude interchangeably.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0  # seconds
DEFAULT_MAX_TOKENS = 2048
DEFAULT_TEMPERATURE = 0.7

QUOTA_PATTERNS = (
    "quota",
    "rate limit",
    "limit reached",
    "limit exceeded",
    "429",
    "too many requests",
    "exhausted",
)


@dataclass
class AIClientConfig:
    """
    Configuration for provider instances.

    Attributes:
        base_url: API endpoint URL
        timeout: Request timeout in seconds
        api_key: Optional API key for authenticated services
        max_tokens: Maximum tokens to generate
        temperature: Sampling temperature
    """

    base_url: str
    timeout: float = DEFAULT_TIMEOUT
    api_key: str | None = None
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = DEFAULT_TEMPERATURE


@dataclass
class ChatUsage:
    """
    Token usage statistics from the last provider response.

    For providers without usage tracking, stays at zeros.

    Attributes:
        input_tokens: Tokens in the input prompt
        output_tokens: Tokens generated in response
    """

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        """Total tokens used."""
        return self.input_tokens + self.output_tokens


# ═══════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════


class AIClientError(Exception):
    """
    Base exception for provider errors.

    Attributes:
        message: Error description
        provider: Provider name (Groq, Ollama, etc.)
        model: Model that caused the error
        original_error: Underlying exception if available
    """

    retryable = False

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        model: str | None = None,
        original_error: Exception | None = None,
    ):
        self.message = message
        self.provider = provider
        self.model = model
        self.original_error = original_error
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.provider:
            parts.append(f"provider={self.provider}")
        if self.model:
            parts.append(f"model={self.model}")
        return " | ".join(parts)


class AIClientTimeoutError(AIClientError):
    """Raised when a request times out."""

    retryable = True


class AIClientConnectionError(AIClientError):
    """Raised when connection to the provider fails."""

    retryable = True


class AIClientResponseError(AIClientError):
    """
    Raised when the provider returns an error or unusable response.

    Attributes:
        status_code: HTTP status code if available
        response_body: Response body if available
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.response_body = response_body

    @property
    def retryable(self) -> bool:
        """Server-side failures are worth another try, client errors are not."""
        return self.status_code is not None and self.status_code >= 500


class AIClientQuotaError(AIClientResponseError):
    """Raised on HTTP 429 or an explicit quota message."""

    @property
    def retryable(self) -> bool:
        return False


def is_quota_error(error: BaseException) -> bool:
    """
    Best-effort detection of quota / rate-limit failures.

    Matches on the error type first, then on case-insensitive phrases in the
    message. Provider wording changes over time, so a miss here only means
    the error takes the model-fallback path instead of skipping it.

    Args:
        error: Exception raised by a provider call

    Returns:
        True if the error looks like a quota or rate limit
    """
    if isinstance(error, AIClientQuotaError):
        return True
    text = str(error).lower()
    return any(pattern in text for pattern in QUOTA_PATTERNS)


# ═══════════════════════════════════════════════════════════════════════════
# Protocol
# ═══════════════════════════════════════════════════════════════════════════


@runtime_checkable
class AIProvider(Protocol):
    """
    Protocol defining the interface for AI providers.

    Providers differ only in which remote endpoint they call. Everything
    the orchestrator needs is here: a unique name, a mutable model and
    timeout, and a send-prompt operation with an optional image variant.

    Example:
        async def summarize(provider: AIProvider, text: str) -> str:
            return await provider.process(f"Summarize: {text}")

        async with GroqProvider.from_settings(settings) as groq:
            print(await summarize(groq, "..."))
    """

    name: str
    supports_images: bool

    @property
    def model(self) -> str: ...

    @model.setter
    def model(self, value: str) -> None: ...

    @property
    def timeout(self) -> float: ...

    @timeout.setter
    def timeout(self, value: float) -> None: ...

    async def process(self, prompt: str) -> str:
        """
        Send a prompt and return generated text.

        Raises:
            AIClientError: If generation fails
        """
        ...

    async def process_with_image(self, prompt: str, images: list[str]) -> str:
        """Send a prompt with base64 / data-URL images."""
        ...

    async def close(self) -> None:
        """Close the provider and release resources."""
        ...


# ═══════════════════════════════════════════════════════════════════════════
# Shared implementation
# ═══════════════════════════════════════════════════════════════════════════


class BaseProvider(ABC):
    """
    Abstract base class for provider implementations.

    Provides the model/timeout/generation-parameter setters, timeout racing,
    HTTP error mapping and the async context manager protocol.

    Subclasses must implement:
        - process()

    and may override process_with_image() when `supports_images` is True.
    """

    name: str = ""
    supports_images: bool = False

    def __init__(
        self,
        config: AIClientConfig,
        model: str,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize provider with configuration.

        Args:
            config: Endpoint, credentials and generation defaults
            model: Initial model name
            http_client: Shared HTTP client (a private one is created if None)
        """
        self.config = config
        self._model = model
        self._timeout = config.timeout
        self._max_tokens = config.max_tokens
        self._temperature = config.temperature
        self.last_usage = ChatUsage()

        # No global timeout - each request sets its own timeout explicitly
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=None)

    # ───────────────────────────────────────────────────────────────────────
    # Mutable parameters
    # ───────────────────────────────────────────────────────────────────────

    @property
    def model(self) -> str:
        return self._model

    @model.setter
    def model(self, value: str) -> None:
        if not value or not value.strip():
            raise ValueError(f"{self.name}: model name must not be empty")
        self._model = value.strip()

    @property
    def timeout(self) -> float:
        """Request timeout in seconds."""
        return self._timeout

    @timeout.setter
    def timeout(self, value: float) -> None:
        if value <= 0:
            raise ValueError(f"{self.name}: timeout must be positive, got {value}")
        self._timeout = value

    @property
    def max_tokens(self) -> int:
        return self._max_tokens

    @max_tokens.setter
    def max_tokens(self, value: int) -> None:
        if value <= 0:
            raise ValueError(f"{self.name}: max_tokens must be positive, got {value}")
        self._max_tokens = value

    @property
    def temperature(self) -> float:
        return self._temperature

    @temperature.setter
    def temperature(self, value: float) -> None:
        if not 0.0 <= value <= 2.0:
            raise ValueError(f"{self.name}: temperature must be in [0, 2], got {value}")
        self._temperature = value

    # ───────────────────────────────────────────────────────────────────────
    # Operations
    # ───────────────────────────────────────────────────────────────────────

    @abstractmethod
    async def process(self, prompt: str) -> str:
        """Send a prompt and return generated text."""
        pass

    async def process_with_image(self, prompt: str, images: list[str]) -> str:
        """
        Send a prompt with images.

        Args:
            prompt: Text prompt
            images: Base64 strings or data URLs

        Raises:
            AIClientError: If the provider has no image support
        """
        raise AIClientError(
            "Image input is not supported",
            provider=self.name,
            model=self.model,
        )

    async def process_with_timeout(self, prompt: str, timeout: float | None = None) -> str:
        """
        Race process() against a timer; the loser is cancelled.

        Args:
            prompt: Text prompt
            timeout: Seconds (provider timeout if None)

        Returns:
            Generated text

        Raises:
            AIClientTimeoutError: If the timer wins
        """
        limit = timeout if timeout is not None else self._timeout
        try:
            return await asyncio.wait_for(self.process(prompt), timeout=limit)
        except asyncio.TimeoutError as e:
            raise AIClientTimeoutError(
                f"Request timed out after {limit:.0f}s",
                provider=self.name,
                model=self.model,
                original_error=e,
            ) from e

    async def close(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._owns_client:
            await self.http_client.aclose()

    async def __aenter__(self) -> "BaseProvider":
        """Context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        await self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, model={self.model!r})"

    # ───────────────────────────────────────────────────────────────────────
    # HTTP helpers
    # ───────────────────────────────────────────────────────────────────────

    async def _post_json(
        self,
        url: str,
        payload: dict,
        headers: dict | None = None,
        params: dict | None = None,
    ) -> dict | list:
        """
        POST JSON and return the decoded body, mapping transport errors.

        Raises:
            AIClientTimeoutError: On request timeout
            AIClientConnectionError: If the endpoint is unreachable
            AIClientResponseError: On non-2xx status or invalid JSON
        """
        logger.debug(f"{self.name} POST {url} (model={self.model})")
        try:
            response = await self.http_client.post(
                url,
                json=payload,
                headers=headers,
                params=params,
                timeout=self._timeout,
            )
            response.raise_for_status()
            return response.json()

        except httpx.TimeoutException as e:
            logger.error(f"{self.name} timeout with {self.model}: {e}")
            raise AIClientTimeoutError(
                "Request timeout",
                provider=self.name,
                model=self.model,
                original_error=e,
            ) from e

        except httpx.HTTPStatusError as e:
            logger.error(f"{self.name} HTTP error: {e.response.status_code}")
            raise self._status_error(e.response, e) from e

        except httpx.RequestError as e:
            logger.error(f"Cannot connect to {self.name}: {e}")
            raise AIClientConnectionError(
                f"Cannot connect to {self.name} at {url}",
                provider=self.name,
                original_error=e,
            ) from e

        except ValueError as e:
            raise AIClientResponseError(
                "Invalid JSON in response",
                provider=self.name,
                model=self.model,
                original_error=e,
            ) from e

    def _status_error(
        self,
        response: httpx.Response,
        cause: Exception | None = None,
    ) -> AIClientResponseError:
        """
        Build a readable error for an HTTP failure status.

        Args:
            response: Failed response
            cause: Original exception

        Returns:
            AIClientQuotaError for quota failures, AIClientResponseError otherwise
        """
        status = response.status_code
        detail = _extract_error_detail(response)
        kwargs = {
            "provider": self.name,
            "model": self.model,
            "status_code": status,
            "response_body": response.text[:500],
            "original_error": cause,
        }

        if status == 429 or _looks_like_quota(detail):
            return AIClientQuotaError(
                _format_quota_message(self.name, status, detail), **kwargs
            )
        if status in (401, 403):
            return AIClientResponseError(
                f"{self.name} rejected the API key (HTTP {status}). {detail}".strip(),
                **kwargs,
            )
        if status == 402:
            return AIClientResponseError(
                f"{self.name} requires payment or credits (HTTP 402). {detail}".strip(),
                **kwargs,
            )
        if status == 404:
            return AIClientResponseError(
                f"Model not found: {self.model} (HTTP 404)",
                **kwargs,
            )
        return AIClientResponseError(
            f"{self.name} request failed: HTTP {status}. {detail}".strip(),
            **kwargs,
        )

    def _empty_response(self) -> AIClientResponseError:
        return AIClientResponseError(
            "Empty response from provider",
            provider=self.name,
            model=self.model,
        )


def _extract_error_detail(response: httpx.Response) -> str:
    """Pull `error.message` / `error` / `message` out of an error body."""
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            return str(error.get("message", ""))
        if isinstance(error, str):
            return error
        return str(data.get("message", ""))
    return ""


def _looks_like_quota(detail: str) -> bool:
    lowered = detail.lower()
    return "quota" in lowered or "rate limit" in lowered


def _format_quota_message(provider: str, status: int, detail: str) -> str:
    """Short quota message, keeping the provider's retry hint if present."""
    retry_match = re.search(r"retry in ([\d.]+)s", detail, re.IGNORECASE)
    retry_info = f" Retry in {int(float(retry_match.group(1)) + 0.999)}s." if retry_match else ""

    if "limit: 0" in detail or "free_tier" in detail:
        return f"{provider} free tier quota exhausted (HTTP {status}).{retry_info}"
    return f"{provider} rate limit exceeded (HTTP {status}).{retry_info}"


def split_image(image: str) -> tuple[str, str]:
    """
    Split a data URL into (media_type, base64 payload).

    Raw base64 strings are assumed to be JPEG.

    Example:
        >>> split_image("data:image/png;base64,AAAA")
        ('image/png', 'AAAA')
    """
    match = re.match(r"^data:([\w/+.-]+);base64,(.*)$", image, re.DOTALL)
    if match:
        return match.group(1), match.group(2)
    return "image/jpeg", image


if __name__ == "__main__":
    """Run tests when executed directly."""

    def test_protocol_compliance():
        """Verify that classes properly implement the protocol."""
        print("Testing AIProvider protocol...")

        assert hasattr(BaseProvider, "process")
        assert hasattr(BaseProvider, "process_with_image")
        assert hasattr(BaseProvider, "close")
        print("  Methods defined: OK")

        error = AIClientError("Test error", provider="test", model="test-model")
        assert str(error) == "Test error | provider=test | model=test-model"
        print("  AIClientError: OK")

        assert is_quota_error(Exception("429 rate limit"))
        assert not is_quota_error(Exception("connection reset"))
        print("  is_quota_error: OK")

        config = AIClientConfig(base_url="http://localhost:11434")
        assert config.timeout == 30.0
        assert config.max_tokens == 2048
        print("  AIClientConfig defaults: OK")

        print("\nAll protocol tests passed!")

    test_protocol_compliance()
