"""Per-pool TWAP accumulator.

cumulative_price is the integral of the observed price over time, counted
only from window_start_ms (market start + start delay). Prices are clamped
to the configured cap, and optionally each new observation may move at
most max_step_bps away from the previous one.
"""

from dataclasses import dataclass

from src.qm_common.errors import TimestampRegressionError, TwapNotReadyError
from src.qm_common.fixed_point import bps_of, clamp_price


@dataclass(frozen=True)
class TwapConfig:
    start_delay_ms: int = 0
    max_step_bps: int | None = None
    initial_observation: int | None = None  # defaults to the bootstrap reserve price


class PriceOracle:
    def __init__(
        self,
        market_start_ms: int,
        initial_price: int,
        price_cap: int,
        config: TwapConfig | None = None,
    ) -> None:
        config = config or TwapConfig()
        self.price_cap = price_cap
        self.max_step_bps = config.max_step_bps
        self.window_start_ms = market_start_ms + config.start_delay_ms
        seed = config.initial_observation if config.initial_observation is not None else initial_price
        self.last_price = clamp_price(seed, price_cap)
        self.last_timestamp_ms = market_start_ms
        self.cumulative_price = 0

    def _accumulated(self, now_ms: int) -> int:
        lo = max(self.last_timestamp_ms, self.window_start_ms)
        if now_ms <= lo:
            return self.cumulative_price
        return self.cumulative_price + self.last_price * (now_ms - lo)

    def _step_capped(self, price: int) -> int:
        if self.max_step_bps is None:
            return price
        max_step = bps_of(self.last_price, self.max_step_bps)
        return max(self.last_price - max_step, min(price, self.last_price + max_step))

    def record(self, now_ms: int, price: int) -> None:
        """Close out the previous price up to now_ms, then observe `price`."""
        if now_ms < self.last_timestamp_ms:
            raise TimestampRegressionError(now_ms, self.last_timestamp_ms)
        self.cumulative_price = self._accumulated(now_ms)
        self.last_timestamp_ms = now_ms
        self.last_price = self._step_capped(clamp_price(price, self.price_cap))

    def get_twap(self, now_ms: int) -> int:
        if now_ms < self.last_timestamp_ms:
            raise TimestampRegressionError(now_ms, self.last_timestamp_ms)
        elapsed = now_ms - self.window_start_ms
        if elapsed <= 0:
            raise TwapNotReadyError(self.window_start_ms)
        return self._accumulated(now_ms) // elapsed

    def snapshot(self) -> tuple[int, int, int]:
        return (self.last_price, self.last_timestamp_ms, self.cumulative_price)

    def restore(self, snapshot: tuple[int, int, int]) -> None:
        self.last_price, self.last_timestamp_ms, self.cumulative_price = snapshot
