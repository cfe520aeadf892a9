"""Model identifier → adapter family dispatch table."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal

from chatgate.errors import UnsupportedModelError


class AdapterFamily(str, Enum):
    """Closed set of backend families the gateway can drive."""

    OPENAI_CHAT = "openai-chat"
    OPENAI_RESPONSES = "openai-responses"
    ANTHROPIC = "anthropic"
    ANTHROPIC_SONNET45 = "anthropic-sonnet45"
    GEMINI = "gemini"
    GEMINI3 = "gemini3"


@dataclass(frozen=True)
class Rule:
    """Match a model identifier by equality or prefix."""

    kind: Literal["exact", "prefix"]
    pattern: str
    family: AdapterFamily

    def matches(self, model_id: str) -> bool:
        if self.kind == "exact":
            return model_id == self.pattern
        return model_id.startswith(self.pattern)


RULES: tuple[Rule, ...] = (
    Rule("exact", "claude-sonnet-4-5", AdapterFamily.ANTHROPIC_SONNET45),
    Rule("prefix", "claude", AdapterFamily.ANTHROPIC),
    Rule("prefix", "gpt-5", AdapterFamily.OPENAI_RESPONSES),
    Rule("prefix", "gpt", AdapterFamily.OPENAI_CHAT),
    Rule("prefix", "o", AdapterFamily.OPENAI_CHAT),
    Rule("prefix", "gemini-3", AdapterFamily.GEMINI3),
    Rule("prefix", "gemini", AdapterFamily.GEMINI),
)


def _specificity(rule: Rule) -> tuple[int, int]:
    # Exact beats any prefix; among prefixes the longest wins.
    return (1 if rule.kind == "exact" else 0, len(rule.pattern))


def resolve_family(
    model_id: str, *, rules: tuple[Rule, ...] = RULES
) -> AdapterFamily:
    """Return the adapter family for *model_id*.

    The most specific matching rule wins, so the result does not depend on
    rule order.

    Raises:
        UnsupportedModelError: When no rule matches.
    """
    candidates = [r for r in rules if r.matches(model_id)]
    if not candidates:
        raise UnsupportedModelError(
            model_id,
            hint="Supported families: gpt*, o*, gpt-5*, claude*, gemini*, gemini-3*.",
        )
    return max(candidates, key=_specificity).family
