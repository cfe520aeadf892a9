"""Gemini 3 adapter: global location, thinking level, Google Search tool."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from chatgate.providers.base import BaseAdapter
from chatgate.providers.gemini import GeminiAdapter

if TYPE_CHECKING:
    from chatgate.providers.models import GenerationConfig, PreparedCall

GEMINI3_LOCATION = "global"
DEFAULT_THINKING_LEVEL = "high"


class Gemini3Adapter(GeminiAdapter):
    """``gemini-3*`` models; thought parts are never forwarded."""

    default_temperature = 1.0

    def __init__(self, project: str | None, *, client: Any = None) -> None:
        super().__init__(project, GEMINI3_LOCATION, client=client)

    # No character-count heuristic for Gemini 3.
    preflight = BaseAdapter.preflight

    def _tools(self, config: GenerationConfig) -> list[Any] | None:
        from google.genai import types

        if not config.google_grounding:
            return None
        return [types.Tool(google_search=types.GoogleSearch())]

    def _generate_config(self, call: PreparedCall) -> Any:
        from google.genai import types

        generate_config = super()._generate_config(call)
        level = (call.config.thinking_level or DEFAULT_THINKING_LEVEL).upper()
        return generate_config.model_copy(
            update={"thinking_config": types.ThinkingConfig(thinking_level=level)}
        )

    def _usage(self, metadata: Any) -> tuple[int, int]:
        input_tokens, output_tokens = super()._usage(metadata)
        thoughts = getattr(metadata, "thoughts_token_count", None) or 0
        return input_tokens, output_tokens + thoughts
