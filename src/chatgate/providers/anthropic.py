"""Anthropic Messages API adapters."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from chatgate.errors import APIError
from chatgate.events import FinishEvent, TextDelta, UsageReport
from chatgate.mime import sniff_mime
from chatgate.providers.base import BaseAdapter
from chatgate.providers.models import InlineData, TextPart

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from chatgate.events import NormalizedEvent
    from chatgate.providers.models import NormalizedMessage, PreparedCall

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."
DEFAULT_TEMPERATURE = 0.6
_ANTHROPIC_MAX_TOKENS = 8192
_SONNET45_MAX_TOKENS = 64000
SONNET45_UPSTREAM_MODEL = "claude-sonnet-4-5-20250929"

#: Catalog identifiers → upstream model names.
MODEL_ALIASES: dict[str, str] = {
    "claude-sonnet4": "claude-sonnet-4-20250514",
}

_SUPPORTED_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})


def image_media_type(part: InlineData) -> str:
    """Media type Anthropic accepts for *part*; signature wins over metadata."""
    sniffed = sniff_mime(part.data)
    if sniffed in _SUPPORTED_IMAGE_TYPES:
        return sniffed
    if part.mime_type in _SUPPORTED_IMAGE_TYPES:
        return part.mime_type
    return "image/png"


def to_anthropic_messages(
    messages: Sequence[NormalizedMessage],
) -> list[dict[str, Any]]:
    """Build the Messages API ``messages`` payload.

    Messages left with no content (empty text, or attachments that failed to
    resolve) are skipped; the API rejects empty content.
    """
    payload: list[dict[str, Any]] = []
    for message in messages:
        if all(isinstance(p, TextPart) for p in message.parts):
            text = message.text()
            if text.strip():
                payload.append({"role": message.role, "content": text})
            continue
        content: list[dict[str, Any]] = []
        for part in message.parts:
            if isinstance(part, TextPart):
                if part.text.strip():
                    content.append({"type": "text", "text": part.text})
            elif part.kind == "image":
                content.append(
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": image_media_type(part),
                            "data": part.data,
                        },
                    }
                )
            else:
                content.append(
                    {
                        "type": "document",
                        "source": {
                            "type": "base64",
                            "media_type": "application/pdf",
                            "data": part.data,
                        },
                    }
                )
        payload.append({"role": message.role, "content": content})
    return payload


class AnthropicAdapter(BaseAdapter):
    """Generic Claude adapter for ``claude*`` identifiers."""

    provider = "anthropic"
    default_max_tokens = _ANTHROPIC_MAX_TOKENS

    def __init__(self, api_key: str | None, *, client: Any = None) -> None:
        """Initialize with an API key (or a prebuilt client)."""
        super().__init__()
        self.api_key = api_key
        self._client = client

    def _get_client(self) -> Any:
        """Lazily initialize and return the async Anthropic client."""
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError as e:
                raise APIError(
                    "anthropic package not installed",
                    hint="pip install anthropic",
                ) from e
            self._client = AsyncAnthropic(api_key=self.api_key)
        return self._client

    def upstream_model(self, model_id: str) -> str:
        """Upstream model name for a catalog identifier."""
        return MODEL_ALIASES.get(model_id, model_id)

    async def _stream(
        self,
        model_id: str,
        call: PreparedCall,
        *,
        fallback: bool = False,  # noqa: ARG002
    ) -> AsyncIterator[NormalizedEvent]:
        client = self._get_client()
        config = call.config
        response = await client.messages.create(
            model=self.upstream_model(model_id),
            max_tokens=config.max_tokens or self.default_max_tokens,
            temperature=(
                config.temperature
                if config.temperature is not None
                else DEFAULT_TEMPERATURE
            ),
            system=call.system_prompt or DEFAULT_SYSTEM_PROMPT,
            messages=to_anthropic_messages(call.messages),
            stream=True,
        )

        input_tokens: int | None = None
        output_tokens: int | None = None
        async for event in response:
            kind = getattr(event, "type", None)
            if kind == "content_block_delta":
                delta = getattr(event, "delta", None)
                if getattr(delta, "type", None) == "text_delta" and delta.text:
                    yield TextDelta(delta.text)
            elif kind == "message_start":
                usage = getattr(getattr(event, "message", None), "usage", None)
                value = getattr(usage, "input_tokens", None)
                if isinstance(value, int):
                    input_tokens = value
            elif kind == "message_delta":
                value = getattr(getattr(event, "usage", None), "output_tokens", None)
                if isinstance(value, int):
                    output_tokens = value

        if input_tokens is not None or output_tokens is not None:
            yield UsageReport(input_tokens or 0, output_tokens or 0)
        yield FinishEvent("stop")


class Sonnet45Adapter(AnthropicAdapter):
    """Dedicated adapter for the literal ``claude-sonnet-4-5`` identifier."""

    default_max_tokens = _SONNET45_MAX_TOKENS

    def upstream_model(self, model_id: str) -> str:  # noqa: ARG002
        return SONNET45_UPSTREAM_MODEL
