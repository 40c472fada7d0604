"""
Application configuration and settings.
"""

from functools import lru_cache
from pathlib import Path

import yaml
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Provider credentials (empty = provider not configured)
    gemini_api_key: str = ""
    groq_api_key: str = ""
    openrouter_api_key: str = ""
    huggingface_api_key: str = ""
    anthropic_api_key: str = ""
    ollama_api_key: str = ""  # Set to use the hosted Ollama endpoint
    ollama_url: str = "http://localhost:11434"
    enable_ollama: bool = False  # Local Ollama needs no key, so it is opt-in

    # Default model per provider
    gemini_model: str = "gemini-2.5-pro"
    groq_model: str = "llama-3.1-8b-instant"
    openrouter_model: str = "meta-llama/llama-3.1-8b-instruct:free"
    huggingface_model: str = "Qwen/Qwen3-8B"
    ollama_model: str = "llama3.2"
    claude_model: str = "claude-sonnet-4-5"

    # Registration order; providers without credentials are skipped
    provider_order: list[str] = [
        "Google Gemini",
        "Groq",
        "OpenRouter",
        "Hugging Face",
        "Ollama",
        "Claude",
    ]

    # Performance / orchestration
    performance_mode: str = "balanced"  # "fast", "balanced" or "quality"
    use_custom_timeouts: bool = False
    gemini_timeout: int = 30000  # ms
    groq_timeout: int = 20000  # ms
    metadata_timeout: int = 10000  # ms
    enable_parallel_processing: bool = False
    enable_auto_fallback: bool = True
    max_fallback_attempts: int = 3
    max_tokens: int = 2048
    temperature: float = 0.7

    # Output
    vault_root: Path = Path("./vault")
    output_path: str = "YouTube/Processed Videos"
    default_format: str = "detailed-guide"

    # Response cache
    cache_max_items: int = 200
    cache_max_bytes: int = 10 * 1024 * 1024
    cache_default_ttl: float = 300.0  # seconds
    cache_sweep_interval: float = 60.0  # seconds
    cache_persist_path: Path | None = None

    # Circuit breakers
    breaker_failure_threshold: int = 3
    breaker_recovery_timeout: float = 30.0  # seconds
    breaker_half_open_trials: int = 2

    # Paths
    config_dir: Path = Path(__file__).resolve().parent / "defaults"  # Built-in models.yaml and prompts
    prompts_dir: Path | None = None  # External prompts directory (overrides built-in)

    # Logging
    log_level: str = "INFO"
    log_format: str = "structured"  # "simple" or "structured"

    # Per-module log levels (optional overrides)
    log_level_pipeline: str | None = None
    log_level_stages: str | None = None
    log_level_ai: str | None = None
    log_level_providers: str | None = None
    log_level_resilience: str | None = None
    log_level_cache: str | None = None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def has_any_api_key(self) -> bool:
        """True if at least one hosted provider has credentials."""
        return any(
            key.strip()
            for key in (
                self.gemini_api_key,
                self.groq_api_key,
                self.openrouter_api_key,
                self.huggingface_api_key,
                self.anthropic_api_key,
                self.ollama_api_key,
            )
        )

    def configured_providers(self) -> list[str]:
        """
        Names of providers that can be constructed from these settings.

        Returns:
            Provider names in `provider_order`
        """
        available = {
            "Google Gemini": bool(self.gemini_api_key.strip()),
            "Groq": bool(self.groq_api_key.strip()),
            "OpenRouter": bool(self.openrouter_api_key.strip()),
            "Hugging Face": bool(self.huggingface_api_key.strip()),
            "Ollama": self.enable_ollama or bool(self.ollama_api_key.strip()),
            "Claude": bool(self.anthropic_api_key.strip()),
        }
        return [name for name in self.provider_order if available.get(name)]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def load_models_config(settings: Settings | None = None) -> dict:
    """
    Load model catalog overrides from config_dir/models.yaml.

    The file is optional. Expected layout:

        providers:
          Groq:
            - name: llama-3.1-8b-instant
          Ollama:
            - name: llava
              supports_audio_video: true

    Args:
        settings: Optional settings instance

    Returns:
        Parsed configuration, or an empty dict if the file is missing
    """
    if settings is None:
        settings = get_settings()

    models_path = settings.config_dir / "models.yaml"
    if not models_path.exists():
        return {}

    with open(models_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_prompt(group: str, name: str, settings: Settings | None = None) -> str:
    """
    Load a prompt template, external folder first.

    Lookup order (first found wins):
    1. prompts_dir/{group}/{name}.md (external)
    2. config_dir/prompts/{group}/{name}.md (built-in)

    Args:
        group: Prompt group ("analysis")
        name: Template name ("base_fast", "brief", ...)
        settings: Optional settings instance

    Returns:
        Template content

    Raises:
        FileNotFoundError: If no matching prompt file is found
    """
    if settings is None:
        settings = get_settings()

    paths_to_check: list[Path] = []
    if settings.prompts_dir and settings.prompts_dir.exists():
        paths_to_check.append(settings.prompts_dir / group / f"{name}.md")
    paths_to_check.append(settings.config_dir / "prompts" / group / f"{name}.md")

    for path in paths_to_check:
        if path.exists():
            return path.read_text(encoding="utf-8")

    raise FileNotFoundError(
        f"Prompt not found: group={group}, name={name}. "
        f"Checked paths: {[str(p) for p in paths_to_check]}"
    )
