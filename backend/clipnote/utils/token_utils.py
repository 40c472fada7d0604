"""
Token estimation utilities.

Used when a provider response carries no usage information.

Token estimation:
- English text: ~4 chars per token
- Mixed / non-Latin text: ~3.5 chars per token

Example:
    from clipnote.utils.token_utils import estimate_tokens

    tokens = estimate_tokens(generated_note)
"""

from typing import Literal

CHARS_PER_TOKEN_ENGLISH = 4
CHARS_PER_TOKEN_MIXED = 3.5


def estimate_tokens(text: str, lang: Literal["en", "mixed"] = "en") -> int:
    """
    Estimate token count for text.

    Uses simple character-based estimation. Actual token count
    depends on the specific model's tokenizer.

    Args:
        text: Input text to estimate
        lang: Language hint ("en" ~4 chars/token, "mixed" ~3.5)

    Returns:
        Estimated token count

    Example:
        >>> estimate_tokens("Hello world")
        3
    """
    if not text:
        return 0

    chars_per_token = CHARS_PER_TOKEN_ENGLISH if lang == "en" else CHARS_PER_TOKEN_MIXED
    return max(1, round(len(text) / chars_per_token))
