"""Engine policy constants.

These are product choices rather than structural requirements, so every
domain object takes an EnginePolicy instead of reading module globals.
The service edge builds one from config.settings; tests build their own.
"""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class EnginePolicy:
    minimum_liquidity: int = 1000
    imbalance_tolerance_bps: int = 100  # 1%
    twap_price_cap: int = 10**30
    protocol_fee_share_bps: int = 2000  # share of the swap fee routed to protocol
    rebalance_max_iterations: int = 8
    rebalance_band_tolerance_bps: int = 10
    feeless_k_tolerance_ppm: int = 1

    @classmethod
    def from_settings(cls, settings: Any) -> "EnginePolicy":
        return cls(
            minimum_liquidity=settings.MINIMUM_LIQUIDITY,
            imbalance_tolerance_bps=settings.IMBALANCE_TOLERANCE_BPS,
            twap_price_cap=settings.TWAP_PRICE_CAP,
            protocol_fee_share_bps=settings.PROTOCOL_FEE_SHARE_BPS,
            rebalance_max_iterations=settings.REBALANCE_MAX_ITERATIONS,
            rebalance_band_tolerance_bps=settings.REBALANCE_BAND_TOLERANCE_BPS,
            feeless_k_tolerance_ppm=settings.FEELESS_K_TOLERANCE_PPM,
        )


DEFAULT_POLICY = EnginePolicy()
