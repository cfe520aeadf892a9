"""Vertex AI Gemini adapters (google-genai SDK)."""

from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING, Any

from chatgate.errors import APIError
from chatgate.events import FinishEvent, TextDelta, UsageReport
from chatgate.providers.base import BaseAdapter
from chatgate.providers.length_control import adjust_for_length, apply_token_floor
from chatgate.providers.models import PreparedCall, TextPart

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from chatgate.events import NormalizedEvent
    from chatgate.providers.models import GenerationConfig, NormalizedMessage

logger = logging.getLogger(__name__)

_GEMINI_MAX_OUTPUT_TOKENS = 65536
_GEMINI_TEMPERATURE = 0.6


class GeminiAdapter(BaseAdapter):
    """Standard Gemini models (``gemini*`` other than ``gemini-3*``).

    ``preflight`` applies the character-count heuristic to the user's own
    prompt (without attached file text), then the minimum output budget.
    """

    provider = "gemini"
    default_temperature = _GEMINI_TEMPERATURE
    default_max_tokens = _GEMINI_MAX_OUTPUT_TOKENS

    def __init__(
        self,
        project: str | None,
        location: str | None,
        *,
        client: Any = None,
    ) -> None:
        """Initialize for a Vertex AI project and location."""
        super().__init__()
        self.project = project
        self.location = location
        self._client = client

    def _get_client(self) -> Any:
        """Lazy-initialize the google-genai client in Vertex AI mode."""
        if self._client is None:
            try:
                from google import genai
            except ImportError as e:
                raise APIError(
                    "google-genai package not installed",
                    hint="pip install google-genai",
                ) from e
            self._client = genai.Client(
                vertexai=True, project=self.project, location=self.location
            )
        return self._client

    def preflight(
        self,
        model_id: str,  # noqa: ARG002
        messages: Sequence[NormalizedMessage],
        system_prompt: str | None,
        config: GenerationConfig,
        *,
        user_prompt: str | None = None,
    ) -> PreparedCall:
        if user_prompt is None:
            last_user = next((m for m in reversed(messages) if m.role == "user"), None)
            user_prompt = last_user.text() if last_user is not None else ""
        adjusted = adjust_for_length(user_prompt, config.max_tokens, system_prompt)
        max_tokens = apply_token_floor(adjusted.max_tokens)
        if max_tokens != config.max_tokens:
            logger.info(
                "Adjusted Gemini max tokens from %s to %s", config.max_tokens, max_tokens
            )
        return PreparedCall(
            messages=tuple(messages),
            system_prompt=adjusted.system_prompt,
            config=config.with_max_tokens(max_tokens),
        )

    def _convert_messages(self, messages: Sequence[NormalizedMessage]) -> list[Any]:
        """Convert normalized messages to google-genai ``Content`` objects."""
        from google.genai import types

        contents: list[Any] = []
        for message in messages:
            parts: list[Any] = []
            for part in message.parts:
                if isinstance(part, TextPart):
                    if part.text:
                        parts.append(types.Part(text=part.text))
                else:
                    parts.append(
                        types.Part.from_bytes(
                            data=base64.b64decode(part.data), mime_type=part.mime_type
                        )
                    )
            if not parts:
                continue
            role = "user" if message.role == "user" else "model"
            contents.append(types.Content(role=role, parts=parts))
        return contents

    def _tools(self, config: GenerationConfig) -> list[Any] | None:
        from google.genai import types

        if not config.google_grounding:
            return None
        return [types.Tool(google_search_retrieval=types.GoogleSearchRetrieval())]

    def _generate_config(self, call: PreparedCall) -> Any:
        from google.genai import types

        config = call.config
        return types.GenerateContentConfig(
            temperature=(
                config.temperature
                if config.temperature is not None
                else self.default_temperature
            ),
            max_output_tokens=config.max_tokens or self.default_max_tokens,
            system_instruction=call.system_prompt or None,
            tools=self._tools(config),
        )

    def _usage(self, metadata: Any) -> tuple[int, int]:
        return (
            getattr(metadata, "prompt_token_count", None) or 0,
            getattr(metadata, "candidates_token_count", None) or 0,
        )

    async def _stream(
        self,
        model_id: str,
        call: PreparedCall,
        *,
        fallback: bool = False,  # noqa: ARG002
    ) -> AsyncIterator[NormalizedEvent]:
        client = self._get_client()
        response = await client.aio.models.generate_content_stream(
            model=model_id,
            contents=self._convert_messages(call.messages),
            config=self._generate_config(call),
        )

        usage: tuple[int, int] | None = None
        async for chunk in response:
            metadata = getattr(chunk, "usage_metadata", None)
            if metadata is not None:
                usage = self._usage(metadata)
            candidates = getattr(chunk, "candidates", None) or []
            if not candidates:
                continue
            content = getattr(candidates[0], "content", None)
            for part in getattr(content, "parts", None) or []:
                if getattr(part, "thought", None):
                    continue
                text = getattr(part, "text", None)
                if text:
                    yield TextDelta(text)

        if usage is not None and any(usage):
            yield UsageReport(*usage)
        yield FinishEvent("stop")
