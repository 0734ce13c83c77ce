"""Spot-market swaps with automatic rebalancing.

A trade on the spot pool can push its price out of the band implied by
the outcome pools; while the market is trading the router runs the
rebalancer inside the same atomic block, so either the trade and the
arbitrage both land or neither does.
"""

import logging
from dataclasses import dataclass

from src.qm_amm.domain.models import SwapResult
from src.qm_amm.domain.pool import LiquidityPool
from src.qm_common.atomic import atomic
from src.qm_common.enums import AssetKind
from src.qm_common.errors import AssetTagMismatchError, InputError, MarketMismatchError
from src.qm_escrow.domain.balance import ConditionalMarketBalance
from src.qm_escrow.domain.coins import Coin
from src.qm_escrow.domain.escrow import TokenEscrow
from src.qm_trading.domain.rebalancer import ArbitrageRebalancer, RebalanceResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpotSwapResult:
    output: Coin
    swap: SwapResult
    rebalance: RebalanceResult | None


class SwapRouter:
    def __init__(self, rebalancer: ArbitrageRebalancer) -> None:
        self.rebalancer = rebalancer

    def swap_spot_asset_to_stable(
        self,
        spot_pool: LiquidityPool,
        escrow: TokenEscrow,
        coin: Coin,
        min_out: int,
        now_ms: int,
        balance: ConditionalMarketBalance | None = None,
    ) -> SpotSwapResult:
        return self._swap_spot(spot_pool, escrow, coin, AssetKind.ASSET, min_out, now_ms, balance)

    def swap_spot_stable_to_asset(
        self,
        spot_pool: LiquidityPool,
        escrow: TokenEscrow,
        coin: Coin,
        min_out: int,
        now_ms: int,
        balance: ConditionalMarketBalance | None = None,
    ) -> SpotSwapResult:
        return self._swap_spot(spot_pool, escrow, coin, AssetKind.STABLE, min_out, now_ms, balance)

    def _swap_spot(
        self,
        spot_pool: LiquidityPool,
        escrow: TokenEscrow,
        coin: Coin,
        kind_in: AssetKind,
        min_out: int,
        now_ms: int,
        balance: ConditionalMarketBalance | None,
    ) -> SpotSwapResult:
        market = escrow.market
        if not spot_pool.is_spot:
            raise InputError(1017, f"Pool {spot_pool.id} is an outcome pool, not a spot pool", 422)
        if spot_pool.market_id != market.id:
            raise MarketMismatchError(market.id, spot_pool.market_id)
        expected_tag = escrow.spot_tag(kind_in)
        if coin.tag != expected_tag:
            raise AssetTagMismatchError(expected_tag, coin.tag)

        participants = [market.pools[i] for i in range(market.outcome_count)]
        with atomic(spot_pool, escrow, market, balance, coin, *participants):
            amount_in = coin.take_all()
            if kind_in == AssetKind.ASSET:
                swap = spot_pool.swap_asset_to_stable(amount_in, min_out, now_ms)
                output = Coin(tag=market.stable_tag, value=swap.amount_out)
            else:
                swap = spot_pool.swap_stable_to_asset(amount_in, min_out, now_ms)
                output = Coin(tag=market.asset_tag, value=swap.amount_out)

            rebalance = None
            if market.is_trading:
                rebalance = self.rebalancer.rebalance(spot_pool, escrow, now_ms, balance)

        logger.debug(
            "Spot swap market=%s in=%d out=%d rebalance_cycles=%d",
            market.id, swap.amount_in, swap.amount_out,
            rebalance.cycles if rebalance else 0,
        )
        return SpotSwapResult(output=output, swap=swap, rebalance=rebalance)
