"""Adapter protocol and the shared streaming driver."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from chatgate.errors import format_api_error
from chatgate.events import ErrorEvent
from chatgate.providers._errors import is_vision_unsupported, wrap_provider_error
from chatgate.providers.models import PreparedCall

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from chatgate.events import NormalizedEvent
    from chatgate.providers.models import GenerationConfig, NormalizedMessage

logger = logging.getLogger(__name__)


@runtime_checkable
class ChatAdapter(Protocol):
    """Minimal adapter protocol: preflight, stream, aclose."""

    def preflight(
        self,
        model_id: str,
        messages: Sequence[NormalizedMessage],
        system_prompt: str | None,
        config: GenerationConfig,
        *,
        user_prompt: str | None = None,
    ) -> PreparedCall:
        """Adjust inputs before any upstream call; may raise InvalidRequestError.

        *user_prompt* is the last user message as the client wrote it, before
        attached file text was merged in.
        """
        ...

    def stream(
        self,
        model_id: str,
        messages: Sequence[NormalizedMessage],
        system_prompt: str | None,
        config: GenerationConfig,
    ) -> AsyncIterator[NormalizedEvent]:
        """One-shot event sequence ending in exactly one terminal event."""
        ...

    async def aclose(self) -> None:
        """Release SDK clients."""
        ...


class BaseAdapter:
    """Drive one upstream stream and turn failures into an ``ErrorEvent``.

    Subclasses implement ``_stream``, yielding ``TextDelta``/``UsageReport``
    events and a final ``FinishEvent``. When ``vision_fallback_model`` is set,
    a vision-unsupported failure that happens before any event was produced,
    on a request that carries images, is retried once against that model.
    """

    provider: str = "base"
    vision_fallback_model: str | None = None

    def __init__(self) -> None:
        self._client: Any = None

    def preflight(
        self,
        model_id: str,  # noqa: ARG002
        messages: Sequence[NormalizedMessage],
        system_prompt: str | None,
        config: GenerationConfig,
        *,
        user_prompt: str | None = None,  # noqa: ARG002
    ) -> PreparedCall:
        return PreparedCall(
            messages=tuple(messages), system_prompt=system_prompt, config=config
        )

    def _stream(
        self,
        model_id: str,
        call: PreparedCall,
        *,
        fallback: bool = False,
    ) -> AsyncIterator[NormalizedEvent]:
        raise NotImplementedError

    def _should_fall_back(
        self, model_id: str, call: PreparedCall, exc: BaseException
    ) -> bool:
        fallback = self.vision_fallback_model
        return (
            fallback is not None
            and model_id != fallback
            and call.has_images
            and is_vision_unsupported(exc)
        )

    def _error_event(self, exc: BaseException, model_id: str) -> ErrorEvent:
        wrapped = wrap_provider_error(exc, provider=self.provider, phase="stream")
        logger.error("%s stream error for %s: %s", self.provider, model_id, wrapped)
        return ErrorEvent(format_api_error(wrapped))

    async def stream(
        self,
        model_id: str,
        messages: Sequence[NormalizedMessage],
        system_prompt: str | None,
        config: GenerationConfig,
    ) -> AsyncIterator[NormalizedEvent]:
        call = PreparedCall(
            messages=tuple(messages), system_prompt=system_prompt, config=config
        )
        emitted = False
        retry_model: str | None = None
        try:
            async for event in self._stream(model_id, call):
                emitted = True
                yield event
        except Exception as exc:
            if emitted or not self._should_fall_back(model_id, call, exc):
                yield self._error_event(exc, model_id)
                return
            retry_model = self.vision_fallback_model
            logger.warning(
                "%s rejected images for %s (%s); retrying once with %s",
                self.provider,
                model_id,
                exc,
                retry_model,
            )

        if retry_model is None:
            return
        try:
            async for event in self._stream(retry_model, call, fallback=True):
                yield event
        except Exception as exc:
            yield self._error_event(exc, retry_model)

    async def aclose(self) -> None:
        """Close the SDK client if it was created."""
        client = self._client
        self._client = None
        if client is None:
            return
        close = getattr(client, "close", None)
        if close is None:
            return
        result = close()
        if hasattr(result, "__await__"):
            await result
