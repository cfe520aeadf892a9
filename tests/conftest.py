"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, a fixed ledger clock
and adapter test doubles. Environment fixtures are autouse unless noted.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import os
from typing import Any

import pytest

from chatgate.config import ConfigService
from chatgate.events import FinishEvent, TextDelta, UsageReport
from chatgate.ledger import UsageLedger
from chatgate.providers.base import BaseAdapter
from chatgate.providers.models import GenerationConfig, NormalizedMessage, PreparedCall
from chatgate.router import Router
from chatgate.routing import AdapterFamily
from chatgate.store import MemoryUsageStore

# =============================================================================
# Test Doubles
# =============================================================================


@dataclass
class FakeAdapter:
    """Adapter test double that replays a scripted event sequence.

    Records every ``stream`` call. When ``error`` is set it is raised after
    the scripted events, mimicking an upstream failure mid-stream.
    """

    events: Sequence[Any] = field(
        default_factory=lambda: (
            TextDelta("Hel"),
            TextDelta("lo"),
            UsageReport(3, 2),
            FinishEvent("stop"),
        )
    )
    error: BaseException | None = None
    calls: list[dict[str, Any]] = field(default_factory=list)
    closed: bool = False

    def preflight(
        self,
        model_id: str,
        messages: Sequence[NormalizedMessage],
        system_prompt: str | None,
        config: GenerationConfig,
        *,
        user_prompt: str | None = None,
    ) -> PreparedCall:
        del model_id, user_prompt
        return PreparedCall(
            messages=tuple(messages), system_prompt=system_prompt, config=config
        )

    async def stream(
        self,
        model_id: str,
        messages: Sequence[NormalizedMessage],
        system_prompt: str | None,
        config: GenerationConfig,
    ) -> AsyncIterator[Any]:
        self.calls.append(
            {
                "model_id": model_id,
                "messages": tuple(messages),
                "system_prompt": system_prompt,
                "config": config,
            }
        )
        for event in self.events:
            yield event
        if self.error is not None:
            raise self.error

    async def aclose(self) -> None:
        self.closed = True


class FakeStream:
    """Async iterator over SDK stream items; exceptions in the list are raised."""

    def __init__(self, items: Iterable[Any]) -> None:
        self._items = list(items)

    def __aiter__(self) -> FakeStream:
        return self

    async def __anext__(self) -> Any:
        if not self._items:
            raise StopAsyncIteration
        item = self._items.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class ScriptedAdapter(BaseAdapter):
    """BaseAdapter whose upstream stream is a per-model script.

    Each value is a list of events and/or exceptions consumed by one call.
    """

    provider = "openai"

    def __init__(
        self, scripts: dict[str, list[Any]], *, fallback_model: str | None = None
    ) -> None:
        super().__init__()
        self.scripts = scripts
        self.vision_fallback_model = fallback_model
        self.models_called: list[str] = []
        self.fallback_flags: list[bool] = []

    async def _stream(
        self, model_id: str, call: PreparedCall, *, fallback: bool = False
    ) -> AsyncIterator[Any]:
        del call
        self.models_called.append(model_id)
        self.fallback_flags.append(fallback)
        for item in self.scripts.get(model_id, []):
            if isinstance(item, BaseException):
                raise item
            yield item


async def collect(aiter: AsyncIterator[Any]) -> list[Any]:
    """Drain an async iterator into a list."""
    return [item async for item in aiter]


# =============================================================================
# Shared Data
# =============================================================================

FIXED_NOW = datetime(2025, 6, 15, 9, 30, tzinfo=timezone.utc)

CATALOG: dict[str, Any] = {
    "modelGroups": [
        {"label": "OpenAI", "models": {"gpt-4.1": "GPT-4.1", "gpt-5": "GPT-5", "o3": "o3"}},
        {
            "label": "Anthropic",
            "models": {
                "claude-sonnet4": "Claude Sonnet 4",
                "claude-sonnet-4-5": "Claude Sonnet 4.5",
            },
        },
        {
            "label": "Google",
            "models": {
                "gemini-2.5-pro": "Gemini 2.5 Pro",
                "gemini-3-pro-preview": "Gemini 3 Pro",
            },
        },
    ],
    "modelConfig": {
        "gpt-4.1": {"type": "normal", "maxTokens": 32768},
        "o3": {"type": "reasoning"},
        "gemini-2.5-pro": {"type": "normal"},
    },
    "monthlyLimitsUSD": {"claude-sonnet4": 120, "o3": 300},
    "pricingPerMillionTokensUSD": {
        "gpt-4.1": {"input": 2, "output": 8},
        "o3": {"input": 2, "output": 8},
        "gemini-2.5-pro": {"input": 1.25, "output": 10},
        "claude-sonnet4": {"input": 3, "output": 15},
    },
}


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock():
    """Ledger clock pinned to ``FIXED_NOW`` (mutable via ``clock.now``)."""

    class _Clock:
        now = FIXED_NOW

        def __call__(self) -> datetime:
            return self.now

    return _Clock()


@pytest.fixture
def config_service() -> ConfigService:
    return ConfigService.from_catalog(CATALOG)


@pytest.fixture
def store() -> MemoryUsageStore:
    return MemoryUsageStore()


@pytest.fixture
def ledger(store, clock) -> UsageLedger:
    return UsageLedger(store, clock=clock)


@pytest.fixture
def fake_adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def router(config_service, ledger, fake_adapter) -> Router:
    """Router with the same fake adapter behind every family (not autouse)."""
    return Router(
        config_service,
        ledger,
        {family: fake_adapter for family in AdapterFamily},
    )


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_provider_env(request, monkeypatch):
    """Ensure a clean provider environment for each test.

    Opt-out: @pytest.mark.allow_env_pollution
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return
    for key in list(os.environ.keys()):
        if key.startswith(("OPENAI_", "ANTHROPIC_", "GOOGLE_CLOUD_", "CHATGATE_")):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
