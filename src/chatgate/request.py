"""Inbound chat request schema."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from chatgate.providers.models import GenerationConfig

Role = Literal["user", "assistant"]
TemperaturePreset = Literal["precise", "balanced", "creative"]
ReasoningEffort = Literal["none", "minimal", "low", "medium", "high"]
Verbosity = Literal["low", "medium", "high"]
ThinkingLevel = Literal["low", "high"]

TEMPERATURE_PRESETS: dict[str, float] = {
    "precise": 0.2,
    "balanced": 0.6,
    "creative": 1.0,
}


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class ContentPart(_Frozen):
    """One element of a multi-part message.

    ``image`` and ``pdf`` hold either an attachment URI or a ``data:`` URL.
    """

    type: Literal["text", "image", "pdf"]
    text: str | None = None
    image: str | None = None
    pdf: str | None = None


class Message(_Frozen):
    """A chat turn as sent by the client."""

    role: Role
    content: str | tuple[ContentPart, ...]

    def text(self) -> str:
        """Return the textual content, joining text parts with newlines."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(p.text for p in self.content if p.type == "text" and p.text)


class FileContent(_Frozen):
    """Text already extracted from a non-image attachment."""

    name: str
    content: str


class ChatRequest(_Frozen):
    """A single chat request, camelCase on the wire."""

    messages: tuple[Message, ...] = ()
    model_id: str | None = Field(default=None, alias="modelId")
    system_prompt: str | None = Field(default=None, alias="systemPrompt")
    temperature_preset: TemperaturePreset | None = Field(
        default=None, alias="temperaturePreset"
    )
    max_tokens: int | None = Field(default=None, alias="maxTokens", gt=0)
    image_uris: tuple[str, ...] = Field(default=(), alias="imageUris")
    pdf_uris: tuple[str, ...] = Field(default=(), alias="pdfUris")
    file_contents: tuple[FileContent, ...] = Field(default=(), alias="fileContents")
    gpt5_reasoning_effort: ReasoningEffort | None = Field(
        default=None, alias="gpt5ReasoningEffort"
    )
    gpt5_verbosity: Verbosity | None = Field(default=None, alias="gpt5Verbosity")
    gpt5_grounding_enabled: bool = Field(default=False, alias="gpt5GroundingEnabled")
    gemini_grounding_enabled: bool = Field(
        default=False, alias="geminiGroundingEnabled"
    )
    gemini3_thinking_level: ThinkingLevel | None = Field(
        default=None, alias="gemini3ThinkingLevel"
    )

    @field_validator("model_id", mode="before")
    @classmethod
    def normalize_model_id(cls, v: object) -> object:
        """Trim whitespace and treat blank identifiers as missing."""
        if isinstance(v, str):
            return v.strip() or None
        return v

    def generation_config(self) -> GenerationConfig:
        """Translate the generic knobs into the provider-neutral config."""
        temperature = (
            TEMPERATURE_PRESETS[self.temperature_preset]
            if self.temperature_preset is not None
            else None
        )
        return GenerationConfig(
            temperature=temperature,
            max_tokens=self.max_tokens,
            reasoning_effort=self.gpt5_reasoning_effort,
            verbosity=self.gpt5_verbosity,
            web_grounding=self.gpt5_grounding_enabled,
            google_grounding=self.gemini_grounding_enabled,
            thinking_level=self.gemini3_thinking_level,
        )

    def last_user_text(self) -> str:
        """Text of the most recent user message, or an empty string."""
        for message in reversed(self.messages):
            if message.role == "user":
                return message.text()
        return ""


class RecordUsageRequest(_Frozen):
    """Usage reported by a client that called a model directly."""

    model_id: str = Field(alias="modelId", min_length=1)
    prompt_tokens: int = Field(alias="promptTokens", ge=0)
    completion_tokens: int = Field(alias="completionTokens", ge=0)
