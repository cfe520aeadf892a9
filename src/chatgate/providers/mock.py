"""Mock adapter for development and tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

from chatgate.events import FinishEvent, TextDelta, UsageReport
from chatgate.providers.base import BaseAdapter

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from chatgate.events import NormalizedEvent
    from chatgate.providers.models import PreparedCall


class MockAdapter(BaseAdapter):
    """Echo adapter that never calls an upstream API.

    Streams ``echo: <last user text>`` word by word and reports one input
    token per transcript word and one output token per streamed chunk.
    """

    provider = "mock"

    async def _stream(
        self,
        model_id: str,  # noqa: ARG002
        call: PreparedCall,
        *,
        fallback: bool = False,  # noqa: ARG002
    ) -> AsyncIterator[NormalizedEvent]:
        last_user = next((m for m in reversed(call.messages) if m.role == "user"), None)
        prompt = last_user.text() if last_user is not None else ""
        words = f"echo: {prompt[:100]}".split(" ")
        chunks = [w if i == 0 else f" {w}" for i, w in enumerate(words)]
        for chunk in chunks:
            yield TextDelta(chunk)
        input_tokens = sum(len(m.text().split()) for m in call.messages)
        yield UsageReport(input_tokens, len(chunks))
        yield FinishEvent("stop")
