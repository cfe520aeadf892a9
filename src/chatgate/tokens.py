"""Local token counting for backends whose stream carries no usage."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from functools import lru_cache
from typing import Any

import tiktoken

ENCODING_NAME = "cl100k_base"

TokenCounter = Callable[[str], int]


@lru_cache(maxsize=4)
def _encoding(name: str) -> Any:
    return tiktoken.get_encoding(name)


def count_tokens(text: str, *, encoding: str = ENCODING_NAME) -> int:
    """Number of tokens in *text* under *encoding*."""
    if not text:
        return 0
    return len(_encoding(encoding).encode(text, disallowed_special=()))


def transcript_text(message_texts: Iterable[str]) -> str:
    """Join per-message texts into the transcript that is tokenized as input."""
    return "\n".join(message_texts)
