"""MarketState: descriptor of one proposal's conditional markets.

Owned by the proposal lifecycle (outside this engine); the engine reads it
to validate outcome indices, gate trading and redemption, and reach the
per-outcome pools. Early-resolve metrics are fed once per swap session.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from src.qm_common.enums import MarketStatus
from src.qm_common.errors import (
    InputError,
    MarketNotActiveError,
    MarketNotResolvedError,
    OutcomeOutOfBoundsError,
)
from src.qm_common.id_generator import generate_id

if TYPE_CHECKING:
    from src.qm_amm.domain.pool import LiquidityPool

logger = logging.getLogger(__name__)


@dataclass
class EarlyResolveMetrics:
    """Leader-flip tracking consumed by an early-resolution oracle."""

    leader: int | None = None
    flip_count: int = 0
    last_flip_ms: int | None = None

    def observe(self, leader: int, now_ms: int) -> bool:
        """Record the current leading outcome. Returns True on a flip."""
        if self.leader is None:
            self.leader = leader
            self.last_flip_ms = now_ms
            return False
        if leader == self.leader:
            return False
        self.leader = leader
        self.flip_count += 1
        self.last_flip_ms = now_ms
        return True


class MarketState:
    def __init__(
        self,
        outcome_count: int,
        *,
        asset_tag: str = "ASSET",
        stable_tag: str = "STABLE",
        market_id: str | None = None,
    ) -> None:
        if outcome_count < 1:
            raise InputError(1002, f"outcome_count must be >= 1, got {outcome_count}", 422)
        if asset_tag == stable_tag:
            raise InputError(1009, "asset and stable tags must differ", 422)
        self.id = market_id or generate_id("mkt")
        self.outcome_count = outcome_count
        self.asset_tag = asset_tag
        self.stable_tag = stable_tag
        self.status = MarketStatus.PREMARKET
        self.trading_start_ms: int | None = None
        self.pools: list["LiquidityPool | None"] = [None] * outcome_count
        self.winning_outcome: int | None = None
        self.resolved_at_ms: int | None = None
        self.metrics = EarlyResolveMetrics()

    @property
    def is_trading(self) -> bool:
        return self.status == MarketStatus.TRADING

    @property
    def is_resolved(self) -> bool:
        return self.status == MarketStatus.RESOLVED

    def validate_outcome(self, outcome_idx: int) -> None:
        if not (0 <= outcome_idx < self.outcome_count):
            raise OutcomeOutOfBoundsError(outcome_idx, self.outcome_count)

    def ensure_trading(self) -> None:
        if not self.is_trading:
            raise MarketNotActiveError(self.id)

    def ensure_not_resolved(self) -> None:
        if self.is_resolved:
            raise MarketNotActiveError(self.id)

    def ensure_resolved(self) -> int:
        if not self.is_resolved or self.winning_outcome is None:
            raise MarketNotResolvedError(self.id)
        return self.winning_outcome

    def pool(self, outcome_idx: int) -> "LiquidityPool":
        self.validate_outcome(outcome_idx)
        pool = self.pools[outcome_idx]
        if pool is None:
            raise MarketNotActiveError(self.id)
        return pool

    def live_pools(self) -> list["LiquidityPool"]:
        return [p for p in self.pools if p is not None and not p.closed]

    def conditional_prices(self) -> list[int]:
        return [self.pool(i).get_spot_price() for i in range(self.outcome_count)]

    def leading_outcome(self) -> int:
        """Outcome with the highest conditional price; lowest index wins ties."""
        prices = self.conditional_prices()
        return max(range(len(prices)), key=lambda i: (prices[i], -i))

    def start_trading(self, now_ms: int) -> None:
        if self.status != MarketStatus.PREMARKET:
            raise MarketNotActiveError(self.id)
        if any(p is None for p in self.pools):
            raise MarketNotActiveError(self.id)
        self.status = MarketStatus.TRADING
        self.trading_start_ms = now_ms
        logger.info("Market %s trading with %d outcomes", self.id, self.outcome_count)

    def mark_resolved(self, winner: int, now_ms: int) -> None:
        self.validate_outcome(winner)
        self.ensure_trading()
        self.status = MarketStatus.RESOLVED
        self.winning_outcome = winner
        self.resolved_at_ms = now_ms

    def snapshot(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "trading_start_ms": self.trading_start_ms,
            "pools": list(self.pools),
            "winning_outcome": self.winning_outcome,
            "resolved_at_ms": self.resolved_at_ms,
            "metrics": (self.metrics.leader, self.metrics.flip_count, self.metrics.last_flip_ms),
        }

    def restore(self, snapshot: dict[str, Any]) -> None:
        self.status = snapshot["status"]
        self.trading_start_ms = snapshot["trading_start_ms"]
        self.pools = list(snapshot["pools"])
        self.winning_outcome = snapshot["winning_outcome"]
        self.resolved_at_ms = snapshot["resolved_at_ms"]
        leader, flips, last = snapshot["metrics"]
        self.metrics = EarlyResolveMetrics(leader=leader, flip_count=flips, last_flip_ms=last)
