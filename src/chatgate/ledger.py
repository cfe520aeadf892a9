"""Per-model, per-month usage ledger."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from chatgate.config import Pricing
    from chatgate.store import UsageStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default ledger clock."""
    return datetime.now(timezone.utc)


def year_month(now: datetime) -> str:
    """``YYYY-MM`` for *now*."""
    return now.strftime("%Y-%m")


def compute_cost(input_tokens: int, output_tokens: int, pricing: Pricing) -> float:
    """USD cost of a call at per-million-token *pricing*."""
    return (input_tokens / 1_000_000) * pricing.input + (
        output_tokens / 1_000_000
    ) * pricing.output


@dataclass(frozen=True)
class UsageRecord:
    """A model's usage for one calendar month."""

    year_month: str
    total_cost: float = 0.0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    daily_costs: dict[str, float] = field(default_factory=dict)
    daily_input_tokens: dict[str, int] = field(default_factory=dict)
    daily_output_tokens: dict[str, int] = field(default_factory=dict)
    last_updated: str | None = None

    @classmethod
    def empty(cls, month: str) -> UsageRecord:
        """A zeroed record for *month*."""
        return cls(year_month=month)

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> UsageRecord:
        """Build a record from a stored document, tolerating missing fields."""
        return cls(
            year_month=str(doc.get("year_month", "")),
            total_cost=float(doc.get("total_cost", 0) or 0),
            total_input_tokens=int(doc.get("total_input_tokens", 0) or 0),
            total_output_tokens=int(doc.get("total_output_tokens", 0) or 0),
            daily_costs=dict(doc.get("daily_costs") or {}),
            daily_input_tokens=dict(doc.get("daily_input_tokens") or {}),
            daily_output_tokens=dict(doc.get("daily_output_tokens") or {}),
            last_updated=doc.get("last_updated"),
        )

    def to_document(self) -> dict[str, Any]:
        """Serialize to the stored document shape."""
        return {
            "year_month": self.year_month,
            "total_cost": self.total_cost,
            "total_input_tokens": self.total_input_tokens,
            "total_output_tokens": self.total_output_tokens,
            "daily_costs": dict(self.daily_costs),
            "daily_input_tokens": dict(self.daily_input_tokens),
            "daily_output_tokens": dict(self.daily_output_tokens),
            "last_updated": self.last_updated,
        }


class UsageLedger:
    """Durable usage counters with month rollover.

    Rollover is check-then-act: ``update`` reads the stored record and, if it
    belongs to another month (or is missing), replaces it with an empty record
    before incrementing. Two concurrent first-writes in a new month may both
    reset the record and one increment can be lost.
    """

    def __init__(self, store: UsageStore, *, clock: Clock = utc_now) -> None:
        self.store = store
        self.clock = clock

    async def update(
        self,
        model_id: str,
        input_tokens: int,
        output_tokens: int,
        pricing: Pricing | None,
    ) -> float | None:
        """Record one call's usage; return its cost, or None when skipped."""
        if pricing is None:
            logger.warning("No pricing for model %s; usage not recorded", model_id)
            return None

        now = self.clock()
        month = year_month(now)
        stored = await self.store.get(model_id)
        if stored is None or stored.get("year_month") != month:
            logger.info("Starting usage record for %s in %s", model_id, month)
            await self.store.set(model_id, UsageRecord.empty(month).to_document())

        cost = compute_cost(input_tokens, output_tokens, pricing)
        day = now.strftime("%Y-%m-%d")
        await self.store.increment(
            model_id,
            {
                "total_cost": cost,
                "total_input_tokens": input_tokens,
                "total_output_tokens": output_tokens,
                f"daily_costs.{day}": cost,
                f"daily_input_tokens.{day}": input_tokens,
                f"daily_output_tokens.{day}": output_tokens,
            },
            assign={"last_updated": now.strftime("%Y/%m/%d/%H:%M")},
        )
        logger.debug(
            "Recorded %s: in=%d out=%d cost=%.6f", model_id, input_tokens, output_tokens, cost
        )
        return cost

    async def read_current(self, model_id: str) -> UsageRecord:
        """Current-month usage; a stale or missing record reads as empty."""
        month = year_month(self.clock())
        stored = await self.store.get(model_id)
        if stored is None or stored.get("year_month") != month:
            return UsageRecord.empty(month)
        return UsageRecord.from_document(stored)
