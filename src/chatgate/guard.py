"""Monthly budget checks run before dispatch."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chatgate.config import ConfigService
    from chatgate.ledger import UsageLedger

logger = logging.getLogger(__name__)

WARNING_THRESHOLD = 80.0
BLOCK_THRESHOLD = 100.0


@dataclass(frozen=True)
class LimitStatus:
    """Outcome of a budget check."""

    blocked: bool
    warning_percent: int | None = None
    total_cost: float = 0.0
    limit_usd: float | None = None


class LimitGuard:
    """Compare current-month spend against the configured monthly limit."""

    def __init__(self, ledger: UsageLedger, config: ConfigService) -> None:
        self.ledger = ledger
        self.config = config

    async def check(self, model_id: str) -> LimitStatus:
        """Return whether *model_id* is blocked and any warning percentage.

        Models without a monthly limit are never blocked.
        """
        limit = self.config.monthly_limit_for(model_id)
        if limit is None:
            return LimitStatus(blocked=False)

        record = await self.ledger.read_current(model_id)
        percentage = record.total_cost / limit * 100
        if percentage >= BLOCK_THRESHOLD:
            logger.warning(
                "Monthly limit reached for %s: %.4f / %g USD",
                model_id,
                record.total_cost,
                limit,
            )
            return LimitStatus(
                blocked=True,
                warning_percent=math.floor(percentage),
                total_cost=record.total_cost,
                limit_usd=limit,
            )
        if percentage >= WARNING_THRESHOLD:
            logger.info("Usage for %s at %.1f%% of monthly limit", model_id, percentage)
            return LimitStatus(
                blocked=False,
                warning_percent=math.floor(percentage),
                total_cost=record.total_cost,
                limit_usd=limit,
            )
        return LimitStatus(blocked=False, total_cost=record.total_cost, limit_usd=limit)
