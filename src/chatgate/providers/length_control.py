"""Character-count heuristics for Gemini output budgets.

Japanese prompts often ask for "within N characters" (``N字以内で``) or
"at least N characters" (``N文字以上で``). Gemini counts tokens, so the
requested character count is converted at 1.7 tokens per character.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
import re

from chatgate.errors import InvalidRequestError

TOKENS_PER_CHAR = 1.7
#: Headroom added on top of the estimate for "at most N characters".
LESS_THAN_HEADROOM = 500
#: Smallest output budget sent to Gemini; lower budgets yield empty replies.
MINIMUM_GEMINI_TOKENS = 2000

_MORE_THAN_RE = re.compile(r"([0-9０-９]+)\s*(?:文字|字)\s*(?:以上|超え|より多く)(?:で|の)")
_LESS_THAN_RE = re.compile(r"([0-9０-９]+)\s*(?:文字|字)\s*(?:以内|以下|で)")
_FULL_WIDTH_DIGITS = str.maketrans({chr(c): chr(c - 0xFEE0) for c in range(0xFF10, 0xFF1A)})


@dataclass(frozen=True)
class LengthAdjustment:
    max_tokens: int | None
    system_prompt: str | None


def to_half_width(text: str) -> str:
    """Convert full-width digits (``０``-``９``) to ASCII."""
    return text.translate(_FULL_WIDTH_DIGITS)


def estimate_tokens(chars: int) -> int:
    return math.ceil(chars * TOKENS_PER_CHAR)


def length_instruction(chars: int, tokens: int) -> str:
    """System instruction capping the reply at *chars* characters."""
    return (
        f"重要: 出力は必ず約{chars}文字（およそ{tokens}トークン）以内に"
        "厳密に収めてください。この指示は最優先です。"
    )


def adjust_for_length(
    last_user_text: str,
    max_tokens: int | None,
    system_prompt: str | None,
) -> LengthAdjustment:
    """Apply the character-count heuristic to a Gemini call.

    Raises:
        InvalidRequestError: When the requested minimum length cannot fit in
            an explicitly configured *max_tokens*.
    """
    more = _MORE_THAN_RE.search(last_user_text)
    if more is not None and max_tokens:
        estimated = estimate_tokens(int(to_half_width(more.group(1))))
        if estimated > max_tokens:
            raise InvalidRequestError(
                f"The requested length (about {estimated} tokens) exceeds the "
                f"configured maximum output tokens ({max_tokens}). "
                "Adjust the settings and try again.",
                hint="Raise maxTokens or ask for a shorter reply.",
            )

    less = _LESS_THAN_RE.search(last_user_text)
    if less is None:
        return LengthAdjustment(max_tokens=max_tokens, system_prompt=system_prompt)

    chars = int(to_half_width(less.group(1)))
    estimated = estimate_tokens(chars)
    instruction = length_instruction(chars, estimated)
    return LengthAdjustment(
        max_tokens=estimated + LESS_THAN_HEADROOM,
        system_prompt=f"{instruction}\n\n{system_prompt or ''}",
    )


def apply_token_floor(max_tokens: int | None) -> int | None:
    """Raise a set budget to ``MINIMUM_GEMINI_TOKENS``; None stays None."""
    if max_tokens and max_tokens < MINIMUM_GEMINI_TOKENS:
        return MINIMUM_GEMINI_TOKENS
    return max_tokens
