"""OpenAI Chat Completions adapter (``gpt*`` and ``o*`` models)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from chatgate.errors import APIError
from chatgate.events import FinishEvent, TextDelta, UsageReport
from chatgate.providers.base import BaseAdapter
from chatgate.providers.models import InlineData, TextPart
from chatgate.tokens import count_tokens, transcript_text

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from chatgate.events import NormalizedEvent
    from chatgate.providers.models import NormalizedMessage, PreparedCall
    from chatgate.tokens import TokenCounter

logger = logging.getLogger(__name__)

VISION_FALLBACK_MODEL = "gpt-4o"
PDF_FILENAME = "document.pdf"


def _user_content(message: NormalizedMessage) -> str | list[dict[str, Any]]:
    if all(isinstance(p, TextPart) for p in message.parts):
        return message.text()
    content: list[dict[str, Any]] = []
    for part in message.parts:
        if isinstance(part, TextPart):
            content.append({"type": "text", "text": part.text})
        elif isinstance(part, InlineData) and part.kind == "image":
            content.append({"type": "image_url", "image_url": {"url": part.data_url}})
        elif isinstance(part, InlineData):
            content.append(
                {
                    "type": "file",
                    "file": {"filename": PDF_FILENAME, "file_data": part.data_url},
                }
            )
    return content


def to_chat_messages(
    messages: Sequence[NormalizedMessage], system_prompt: str | None
) -> list[dict[str, Any]]:
    """Build the Chat Completions ``messages`` payload."""
    payload: list[dict[str, Any]] = []
    if system_prompt:
        payload.append({"role": "system", "content": system_prompt})
    for message in messages:
        if message.role == "user":
            payload.append({"role": "user", "content": _user_content(message)})
        else:
            payload.append({"role": "assistant", "content": message.text()})
    return payload


class OpenAIChatAdapter(BaseAdapter):
    """Chat Completions streaming with locally computed usage.

    The stream carries no usage here; input tokens are counted over the
    newline-joined transcript text and output tokens over the final text.
    """

    provider = "openai"
    vision_fallback_model = VISION_FALLBACK_MODEL

    def __init__(
        self,
        api_key: str | None,
        *,
        client: Any = None,
        token_counter: TokenCounter = count_tokens,
    ) -> None:
        """Initialize with an API key (or a prebuilt client)."""
        super().__init__()
        self.api_key = api_key
        self._client = client
        self.token_counter = token_counter

    def _get_client(self) -> Any:
        """Lazily initialize and return the OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise APIError(
                    "openai package not installed",
                    hint="pip install openai",
                ) from e
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def _stream(
        self,
        model_id: str,
        call: PreparedCall,
        *,
        fallback: bool = False,  # noqa: ARG002
    ) -> AsyncIterator[NormalizedEvent]:
        client = self._get_client()
        kwargs: dict[str, Any] = {
            "model": model_id,
            "messages": to_chat_messages(call.messages, call.system_prompt),
            "stream": True,
        }
        if call.config.temperature is not None:
            kwargs["temperature"] = call.config.temperature
        if call.config.max_tokens is not None:
            kwargs["max_completion_tokens"] = call.config.max_tokens

        response = await client.chat.completions.create(**kwargs)
        chunks: list[str] = []
        async for chunk in response:
            choices = getattr(chunk, "choices", None) or []
            if not choices:
                continue
            delta = getattr(choices[0], "delta", None)
            text = getattr(delta, "content", None)
            if text:
                chunks.append(text)
                yield TextDelta(text)

        input_tokens = self.token_counter(
            transcript_text(m.text() for m in call.messages)
        )
        output_tokens = self.token_counter("".join(chunks))
        logger.debug(
            "Local token count for %s: input=%d output=%d",
            model_id,
            input_tokens,
            output_tokens,
        )
        yield UsageReport(input_tokens, output_tokens)
        yield FinishEvent("stop")
