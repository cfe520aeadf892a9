"""Top-level request dispatch: guard, normalize, stream, meter."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING

from chatgate.blobs import HttpBlobStore, LocalBlobStore, RoutingBlobStore
from chatgate.config import ConfigService
from chatgate.encoder import encode_events
from chatgate.errors import InternalError, InvalidRequestError, UsageLimitExceededError
from chatgate.events import UsageReport
from chatgate.guard import LimitGuard
from chatgate.ledger import UsageLedger
from chatgate.preprocess import Attachments, normalize
from chatgate.providers import (
    AnthropicAdapter,
    Gemini3Adapter,
    GeminiAdapter,
    MockAdapter,
    OpenAIChatAdapter,
    OpenAIResponsesAdapter,
    Sonnet45Adapter,
)
from chatgate.routing import AdapterFamily
from chatgate.store import MemoryUsageStore, SQLiteUsageStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    from chatgate.blobs import BlobStore
    from chatgate.config import Config
    from chatgate.events import NormalizedEvent
    from chatgate.providers import ChatAdapter
    from chatgate.request import ChatRequest
    from chatgate.store import UsageStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamedResponse:
    """A started chat response: framed bytes plus any budget warning."""

    model_id: str
    body: AsyncIterator[bytes]
    warning_percent: int | None = None


def build_adapters(config: Config) -> dict[AdapterFamily, ChatAdapter]:
    """One adapter per family, or the mock adapter everywhere."""
    if config.use_mock:
        mock = MockAdapter()
        return {family: mock for family in AdapterFamily}
    return {
        AdapterFamily.OPENAI_CHAT: OpenAIChatAdapter(config.openai_api_key),
        AdapterFamily.OPENAI_RESPONSES: OpenAIResponsesAdapter(config.openai_api_key),
        AdapterFamily.ANTHROPIC: AnthropicAdapter(config.anthropic_api_key),
        AdapterFamily.ANTHROPIC_SONNET45: Sonnet45Adapter(config.anthropic_api_key),
        AdapterFamily.GEMINI: GeminiAdapter(config.gcp_project, config.gcp_location),
        AdapterFamily.GEMINI3: Gemini3Adapter(config.gcp_project),
    }


class Router:
    """Serve one chat request end to end.

    Ledger updates run as background tasks after the stream ends, so they
    never delay or fail a response. ``drain`` waits for pending updates.

    Example:
        router = Router.from_config(Config())
        response = await router.handle(request)
        async for frame in response.body:
            ...
    """

    def __init__(
        self,
        config: ConfigService,
        ledger: UsageLedger,
        adapters: Mapping[AdapterFamily, ChatAdapter],
        *,
        blobs: BlobStore | None = None,
    ) -> None:
        missing = [f.value for f in AdapterFamily if f not in adapters]
        if missing:
            raise InternalError(f"No adapter registered for: {', '.join(missing)}")
        self.config = config
        self.ledger = ledger
        self.guard = LimitGuard(ledger, config)
        self.adapters = dict(adapters)
        self.blobs = blobs
        self._tasks: set[asyncio.Task[None]] = set()

    @classmethod
    def from_config(cls, config: Config) -> Router:
        """Wire the catalog, usage store, adapters and blob stores."""
        service = (
            ConfigService.from_path(config.models_path)
            if config.models_path is not None
            else ConfigService.from_catalog({})
        )
        store: UsageStore = (
            SQLiteUsageStore(config.ledger_path)
            if config.ledger_path is not None
            else MemoryUsageStore()
        )
        blobs = RoutingBlobStore(
            HttpBlobStore(bearer_token=config.blob_bearer_token), LocalBlobStore()
        )
        return cls(service, UsageLedger(store), build_adapters(config), blobs=blobs)

    def adapter_for(self, model_id: str) -> ChatAdapter:
        """Adapter serving *model_id*; raises UnsupportedModelError."""
        return self.adapters[self.config.family_for(model_id)]

    async def handle(self, request: ChatRequest) -> StreamedResponse:
        """Validate, check the budget and start streaming.

        Raises:
            InvalidRequestError: Missing messages or model, unsupported model,
                or a rejected length request.
            UsageLimitExceededError: The monthly budget is used up.
        """
        if not request.messages or not request.model_id:
            raise InvalidRequestError(
                "messages and modelId are required",
                hint="Send a non-empty messages list and a modelId.",
            )
        model_id = request.model_id
        adapter = self.adapter_for(model_id)

        status = await self.guard.check(model_id)
        if status.blocked:
            raise UsageLimitExceededError(model_id, status.limit_usd or 0.0)

        messages = await normalize(
            request.messages, Attachments.from_request(request), self.blobs
        )
        generation = request.generation_config()
        if generation.max_tokens is None:
            settings = self.config.catalog.models.get(model_id)
            if settings is not None and settings.max_tokens is not None:
                generation = generation.with_max_tokens(settings.max_tokens)

        call = adapter.preflight(
            model_id,
            messages,
            request.system_prompt,
            generation,
            user_prompt=request.last_user_text(),
        )
        events = adapter.stream(model_id, call.messages, call.system_prompt, call.config)
        logger.info(
            "Dispatching %s to %s (%d messages)",
            model_id,
            type(adapter).__name__,
            len(call.messages),
        )
        return StreamedResponse(
            model_id=model_id,
            body=encode_events(self._metered(model_id, events)),
            warning_percent=status.warning_percent,
        )

    async def _metered(
        self, model_id: str, events: AsyncIterator[NormalizedEvent]
    ) -> AsyncIterator[NormalizedEvent]:
        usage: UsageReport | None = None
        try:
            async for event in events:
                if isinstance(event, UsageReport):
                    usage = event
                yield event
        finally:
            # Also reached on client disconnect: bill only what was reported.
            if usage is not None:
                self._schedule_usage(model_id, usage)
            close = getattr(events, "aclose", None)
            if close is not None:
                await close()

    def _schedule_usage(self, model_id: str, usage: UsageReport) -> None:
        task = asyncio.get_running_loop().create_task(self._record_usage(model_id, usage))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _record_usage(self, model_id: str, usage: UsageReport) -> None:
        try:
            await self.ledger.update(
                model_id,
                usage.input_tokens,
                usage.output_tokens,
                self.config.pricing_for(model_id),
            )
        except Exception:
            logger.exception("Usage update failed for %s", model_id)

    async def drain(self) -> None:
        """Wait for pending ledger updates."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def aclose(self) -> None:
        """Finish ledger updates and close SDK and HTTP clients."""
        await self.drain()
        for adapter in {id(a): a for a in self.adapters.values()}.values():
            await adapter.aclose()
        close = getattr(self.blobs, "aclose", None)
        if close is not None:
            await close()
