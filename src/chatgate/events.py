"""Normalized stream events shared by every adapter."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class TextDelta:
    """A chunk of generated text."""

    text: str


@dataclass(frozen=True, slots=True)
class UsageReport:
    """Billable token counts for the whole request."""

    input_tokens: int
    output_tokens: int


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    """Terminal failure with a client-facing message."""

    message: str


@dataclass(frozen=True, slots=True)
class FinishEvent:
    """Terminal success (or a synthesized finish after an error)."""

    reason: str = "stop"


NormalizedEvent = TextDelta | UsageReport | ErrorEvent | FinishEvent


def is_terminal(event: NormalizedEvent) -> bool:
    """Return True for events that end a stream."""
    return isinstance(event, (ErrorEvent, FinishEvent))
