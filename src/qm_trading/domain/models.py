"""Trading domain data classes."""

from dataclasses import dataclass, field

from src.qm_amm.domain.pool import LiquidityPool
from src.qm_common.enums import SwapDirection
from src.qm_escrow.domain.balance import ConditionalMarketBalance
from src.qm_escrow.domain.escrow import TokenEscrow
from src.qm_market.domain.market_state import MarketState


@dataclass(frozen=True)
class SwapLeg:
    """One swap inside a batched swap session."""

    outcome_index: int
    direction: SwapDirection
    amount_in: int
    min_out: int = 0


@dataclass
class MarketContext:
    """Everything the engine holds in memory for one proposal."""

    market: MarketState
    escrow: TokenEscrow
    spot_pool: LiquidityPool
    title: str = ""
    balances: dict[str, ConditionalMarketBalance] = field(default_factory=dict)

    @property
    def market_id(self) -> str:
        return self.market.id
