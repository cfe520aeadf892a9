"""Outbound data-stream framing.

One line per frame, ``<tag>:<json>\\n``:

- ``0`` text chunk (JSON string)
- ``3`` error message (JSON string)
- ``e`` step finish (``{"finishReason": ...}``)
- ``d`` message finish (``{"finishReason": ...}``)
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from chatgate.errors import InternalError
from chatgate.events import ErrorEvent, FinishEvent, TextDelta, UsageReport, is_terminal

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator

    from chatgate.events import NormalizedEvent

TEXT_TAG = "0"
ERROR_TAG = "3"
STEP_FINISH_TAG = "e"
MESSAGE_FINISH_TAG = "d"


def _frame(tag: str, payload: Any) -> str:
    return f"{tag}:{json.dumps(payload, ensure_ascii=False, separators=(',', ':'))}\n"


def encode(event: NormalizedEvent) -> bytes:
    """Encode one normalized event; usage reports produce no frame."""
    if isinstance(event, TextDelta):
        return _frame(TEXT_TAG, event.text).encode("utf-8")
    if isinstance(event, ErrorEvent):
        return _frame(ERROR_TAG, event.message).encode("utf-8")
    if isinstance(event, FinishEvent):
        body = {"finishReason": event.reason}
        return (
            _frame(STEP_FINISH_TAG, body) + _frame(MESSAGE_FINISH_TAG, body)
        ).encode("utf-8")
    if isinstance(event, UsageReport):
        return b""
    raise InternalError(f"Unknown event type: {type(event).__name__}")


async def encode_events(events: AsyncIterable[NormalizedEvent]) -> AsyncIterator[bytes]:
    """Encode an event sequence in order, closing it with finish frames.

    An ``ErrorEvent`` is followed by finish frames carrying ``"error"``. A
    sequence that ends without a terminal event is closed with ``"stop"``.
    Events after a terminal event are an adapter bug. Closing the encoded
    stream closes *events* as well.
    """
    finished = False
    try:
        async for event in events:
            if finished:
                raise InternalError(
                    f"{type(event).__name__} emitted after the terminal event"
                )
            frame = encode(event)
            if frame:
                yield frame
            if is_terminal(event):
                finished = True
                if isinstance(event, ErrorEvent):
                    yield encode(FinishEvent("error"))
        if not finished:
            yield encode(FinishEvent("stop"))
    finally:
        close = getattr(events, "aclose", None)
        if close is not None:
            await close()
