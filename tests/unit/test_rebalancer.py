"""Unit tests for ArbitrageRebalancer and SwapRouter."""

import pytest

from src.qm_amm.domain.pool import LiquidityPool
from src.qm_common.enums import RebalanceDirection
from src.qm_common.errors import (
    AssetTagMismatchError,
    ExcessiveSlippageError,
    InputError,
    MarketMismatchError,
    RebalanceBandViolation,
)
from src.qm_common.policy import EnginePolicy
from src.qm_escrow.domain.balance import ConditionalMarketBalance
from src.qm_escrow.domain.coins import Coin
from src.qm_escrow.domain.escrow import TokenEscrow
from src.qm_market.domain.lifecycle import initialize_market, resolve_market
from src.qm_market.domain.market_state import MarketState
from src.qm_trading.domain.rebalancer import ArbitrageRebalancer
from src.qm_trading.domain.router import SwapRouter

RESERVE = 10**6


@pytest.fixture
def escrow() -> TokenEscrow:
    market = MarketState(2, market_id="mkt_arb")
    escrow = TokenEscrow(market)
    initialize_market(market, escrow, Coin("ASSET", RESERVE), Coin("STABLE", RESERVE), 30, 0)
    return escrow


@pytest.fixture
def spot_pool(escrow: TokenEscrow) -> LiquidityPool:
    return LiquidityPool(30, RESERVE, RESERVE, 0, market_id=escrow.market_id)


def _in_band(rebalancer: ArbitrageRebalancer, spot_pool: LiquidityPool, escrow: TokenEscrow) -> bool:
    low, high = rebalancer.band(escrow.market.conditional_prices())
    return low <= spot_pool.get_spot_price() <= high


class TestBand:
    def test_band_widens_by_tolerance(self) -> None:
        rebalancer = ArbitrageRebalancer(EnginePolicy(rebalance_band_tolerance_bps=100))
        assert rebalancer.band([10_000, 20_000, 15_000]) == (9_900, 20_200)


class TestRebalance:
    def test_no_op_inside_band(self, spot_pool: LiquidityPool, escrow: TokenEscrow) -> None:
        result = ArbitrageRebalancer().rebalance(spot_pool, escrow, now_ms=1)
        assert result.direction == RebalanceDirection.NONE
        assert result.cycles == 0
        assert spot_pool.asset_reserve == RESERVE

    def test_spot_above_band(self, spot_pool: LiquidityPool, escrow: TokenEscrow) -> None:
        rebalancer = ArbitrageRebalancer()
        spot_pool.swap_stable_to_asset(50_000, 0, now_ms=1)
        assert (spot_pool.asset_reserve, spot_pool.stable_reserve) == (952_518, 1_049_970)
        assert not _in_band(rebalancer, spot_pool, escrow)

        result = rebalancer.rebalance(spot_pool, escrow, now_ms=2)

        assert result.direction == RebalanceDirection.SPOT_ABOVE_BAND
        assert result.cycles == 1
        assert 20_000 < result.flash_volume < 25_000
        assert result.band_low <= result.spot_price <= result.band_high
        assert _in_band(rebalancer, spot_pool, escrow)
        for pool in escrow.market.pools:
            assert pool.stable_reserve > RESERVE
            assert pool.asset_reserve < RESERVE
        escrow.assert_quantum_invariant()
        assert escrow.wrapped_asset == [0, 0]
        assert escrow.wrapped_stable == [0, 0]

    def test_spot_below_band(self, spot_pool: LiquidityPool, escrow: TokenEscrow) -> None:
        rebalancer = ArbitrageRebalancer()
        spot_pool.swap_asset_to_stable(50_000, 0, now_ms=1)

        result = rebalancer.rebalance(spot_pool, escrow, now_ms=2)

        assert result.direction == RebalanceDirection.SPOT_BELOW_BAND
        assert result.cycles == 1
        assert _in_band(rebalancer, spot_pool, escrow)
        for pool in escrow.market.pools:
            assert pool.asset_reserve > RESERVE
        escrow.assert_quantum_invariant()

    def test_profit_lands_in_caller_balance(
        self, spot_pool: LiquidityPool, escrow: TokenEscrow
    ) -> None:
        balance = ConditionalMarketBalance(escrow.market_id, 2, owner="keeper")
        spot_pool.swap_stable_to_asset(50_000, 0, now_ms=1)
        ArbitrageRebalancer().rebalance(spot_pool, escrow, now_ms=2, balance=balance)
        assert not balance.is_empty
        assert not balance.destroyed
        assert escrow.wrapped_stable == [b for _, b in balance.positions()]

    def test_band_violation_rolls_back(
        self, spot_pool: LiquidityPool, escrow: TokenEscrow
    ) -> None:
        rebalancer = ArbitrageRebalancer(EnginePolicy(rebalance_max_iterations=0))
        spot_pool.swap_stable_to_asset(50_000, 0, now_ms=1)
        spot_snapshot = spot_pool.snapshot()
        escrow_snapshot = escrow.snapshot()

        with pytest.raises(RebalanceBandViolation) as exc_info:
            rebalancer.rebalance(spot_pool, escrow, now_ms=2)
        assert exc_info.value.code == 5003
        assert spot_pool.snapshot() == spot_snapshot
        assert escrow.snapshot() == escrow_snapshot

    def test_foreign_balance(self, spot_pool: LiquidityPool, escrow: TokenEscrow) -> None:
        with pytest.raises(MarketMismatchError):
            ArbitrageRebalancer().rebalance(
                spot_pool, escrow, now_ms=1, balance=ConditionalMarketBalance("mkt_other", 2)
            )


class TestRouter:
    def test_spot_trade_is_rebalanced(
        self, spot_pool: LiquidityPool, escrow: TokenEscrow
    ) -> None:
        router = SwapRouter(ArbitrageRebalancer())
        coin = Coin("STABLE", 50_000)
        result = router.swap_spot_stable_to_asset(spot_pool, escrow, coin, 0, now_ms=1)

        assert result.output == Coin("ASSET", 47_482)
        assert coin.value == 0
        assert result.rebalance is not None
        assert result.rebalance.cycles == 1
        assert _in_band(router.rebalancer, spot_pool, escrow)

    def test_slippage_restores_coin(self, spot_pool: LiquidityPool, escrow: TokenEscrow) -> None:
        router = SwapRouter(ArbitrageRebalancer())
        coin = Coin("STABLE", 50_000)
        with pytest.raises(ExcessiveSlippageError):
            router.swap_spot_stable_to_asset(spot_pool, escrow, coin, 47_483, now_ms=1)
        assert coin.value == 50_000
        assert spot_pool.asset_reserve == RESERVE

    def test_wrong_input_tag(self, spot_pool: LiquidityPool, escrow: TokenEscrow) -> None:
        router = SwapRouter(ArbitrageRebalancer())
        with pytest.raises(AssetTagMismatchError):
            router.swap_spot_asset_to_stable(spot_pool, escrow, Coin("STABLE", 10), 0, now_ms=1)

    def test_outcome_pool_is_not_spot(self, escrow: TokenEscrow) -> None:
        router = SwapRouter(ArbitrageRebalancer())
        with pytest.raises(InputError) as exc_info:
            router.swap_spot_asset_to_stable(
                escrow.market.pool(0), escrow, Coin("ASSET", 10), 0, now_ms=1
            )
        assert exc_info.value.code == 1017

    def test_spot_pool_of_other_market(self, escrow: TokenEscrow) -> None:
        router = SwapRouter(ArbitrageRebalancer())
        foreign = LiquidityPool(30, RESERVE, RESERVE, 0, market_id="mkt_other")
        with pytest.raises(MarketMismatchError):
            router.swap_spot_asset_to_stable(foreign, escrow, Coin("ASSET", 10), 0, now_ms=1)

    def test_no_rebalance_after_resolution(
        self, spot_pool: LiquidityPool, escrow: TokenEscrow
    ) -> None:
        resolve_market(escrow.market, escrow, winner=0, now_ms=1)
        router = SwapRouter(ArbitrageRebalancer())
        result = router.swap_spot_asset_to_stable(
            spot_pool, escrow, Coin("ASSET", 50_000), 0, now_ms=2
        )
        assert result.rebalance is None
        assert result.output.tag == "STABLE"
