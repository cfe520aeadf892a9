"""Domain models for the provider adapter layer."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Literal


@dataclass(frozen=True)
class TextPart:
    """Plain text content."""

    text: str


@dataclass(frozen=True)
class InlineData:
    """Resolved binary content, base64-encoded, with its MIME type."""

    kind: Literal["image", "pdf"]
    data: str
    mime_type: str

    @property
    def data_url(self) -> str:
        """Return the payload as a ``data:`` URL."""
        return f"data:{self.mime_type};base64,{self.data}"


Part = TextPart | InlineData


@dataclass(frozen=True)
class NormalizedMessage:
    """A provider-neutral message produced by the content preprocessor."""

    role: Literal["user", "assistant"]
    parts: tuple[Part, ...]

    def text(self) -> str:
        """Join the text parts with newlines."""
        return "\n".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def has_images(self) -> bool:
        """Whether any part is an inline image."""
        return any(
            isinstance(p, InlineData) and p.kind == "image" for p in self.parts
        )


@dataclass(frozen=True)
class GenerationConfig:
    """Generic generation knobs; each adapter maps what it understands."""

    temperature: float | None = None
    max_tokens: int | None = None
    #: Responses-style reasoning effort; ``"none"`` omits reasoning entirely.
    reasoning_effort: str | None = None
    verbosity: str | None = None
    #: OpenAI web search tool.
    web_grounding: bool = False
    #: Google Search tool for Gemini models.
    google_grounding: bool = False
    thinking_level: str | None = None

    def with_max_tokens(self, max_tokens: int | None) -> GenerationConfig:
        """Return a copy with a different output budget."""
        return replace(self, max_tokens=max_tokens)


@dataclass(frozen=True)
class PreparedCall:
    """Adapter inputs after pre-flight adjustment, ready to stream."""

    messages: tuple[NormalizedMessage, ...]
    system_prompt: str | None
    config: GenerationConfig

    @property
    def has_images(self) -> bool:
        """Whether any message carries an inline image."""
        return any(m.has_images for m in self.messages)
