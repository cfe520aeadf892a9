"""OpenAI Responses API adapter (``gpt-5*`` models)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from chatgate.errors import APIError, format_api_error
from chatgate.events import ErrorEvent, FinishEvent, TextDelta, UsageReport
from chatgate.providers.models import InlineData, TextPart
from chatgate.providers.openai import PDF_FILENAME, OpenAIChatAdapter

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from chatgate.events import NormalizedEvent
    from chatgate.providers.models import GenerationConfig, NormalizedMessage, PreparedCall

logger = logging.getLogger(__name__)

DEFAULT_REASONING_EFFORT = "low"
DEFAULT_VERBOSITY = "low"


def to_responses_input(messages: Sequence[NormalizedMessage]) -> list[dict[str, Any]]:
    """Build the Responses ``input`` list from normalized messages."""
    items: list[dict[str, Any]] = []
    for message in messages:
        if message.role == "assistant":
            items.append(
                {
                    "role": "assistant",
                    "content": [{"type": "output_text", "text": message.text()}],
                }
            )
            continue
        content: list[dict[str, Any]] = []
        for part in message.parts:
            if isinstance(part, TextPart):
                content.append({"type": "input_text", "text": part.text})
            elif isinstance(part, InlineData) and part.kind == "image":
                content.append(
                    {"type": "input_image", "image_url": part.data_url, "detail": "auto"}
                )
            elif isinstance(part, InlineData):
                content.append(
                    {
                        "type": "input_file",
                        "filename": PDF_FILENAME,
                        "file_data": part.data_url,
                    }
                )
        if not content:
            content.append({"type": "input_text", "text": ""})
        items.append({"role": "user", "content": content})
    return items


def responses_options(config: GenerationConfig) -> dict[str, Any]:
    """Reasoning, verbosity and grounding options for a Responses call."""
    options: dict[str, Any] = {}
    effort = config.reasoning_effort or DEFAULT_REASONING_EFFORT
    if effort != "none":
        options["reasoning"] = {"effort": effort}
    options["text"] = {"verbosity": config.verbosity or DEFAULT_VERBOSITY}
    if config.web_grounding:
        options["tools"] = [{"type": "web_search"}]
    return options


def _usage_tokens(usage: Any) -> tuple[int, int]:
    def pick(*names: str) -> int:
        for name in names:
            value = getattr(usage, name, None)
            if value is None and isinstance(usage, dict):
                value = usage.get(name)
            if isinstance(value, int):
                return value
        return 0

    return (
        pick("input_tokens", "input_text_tokens"),
        pick("output_tokens", "output_text_tokens"),
    )


class OpenAIResponsesAdapter(OpenAIChatAdapter):
    """Responses API streaming with reasoning effort and verbosity knobs.

    The vision fallback call is sent with the model and input only.
    """

    async def _stream(
        self,
        model_id: str,
        call: PreparedCall,
        *,
        fallback: bool = False,
    ) -> AsyncIterator[NormalizedEvent]:
        client = self._get_client()
        kwargs: dict[str, Any] = {
            "model": model_id,
            "input": to_responses_input(call.messages),
            "stream": True,
        }
        if not fallback:
            if call.system_prompt:
                kwargs["instructions"] = call.system_prompt
            if call.config.max_tokens is not None:
                kwargs["max_output_tokens"] = call.config.max_tokens
            kwargs.update(responses_options(call.config))

        response = await client.responses.create(**kwargs)
        async for event in response:
            kind = getattr(event, "type", None)
            if kind == "response.output_text.delta":
                delta = getattr(event, "delta", None)
                if delta:
                    yield TextDelta(delta)
            elif kind == "response.completed":
                usage = getattr(getattr(event, "response", None), "usage", None)
                if usage is not None:
                    yield UsageReport(*_usage_tokens(usage))
            elif kind in {"response.error", "error", "response.failed"}:
                error = getattr(event, "error", None) or getattr(
                    getattr(event, "response", None), "error", None
                )
                message = getattr(error, "message", None) or getattr(
                    event, "message", None
                )
                logger.error("Responses error event for %s: %s", model_id, message)
                yield ErrorEvent(format_api_error(APIError(message or kind)))
                return
        yield FinishEvent("stop")
