"""ArbitrageRebalancer: pull the spot price back into the conditional band.

The no-arb band is [min conditional price, max conditional price], widened
by policy.rebalance_band_tolerance_bps on each side. One cycle, spot above
the band:

  1. flash-sell A asset into the spot pool (fee-less) for S stable
  2. split the S stable into every outcome of a balance
  3. in every outcome pool, fee-less buy exactly A conditional asset
     (each costs <= S conditional stable)
  4. recombine A asset complete sets and use the spot asset to settle the
     flash leg

Spot below the band is the mirror: flash-buy with S stable, split the
asset, sell conditional asset for exactly S stable everywhere, recombine
stable. Whatever conditional units are left in the balance are the cycle's
profit; no caller capital is spent. A is the smallest amount that brings
the spot price to the band edge (bisection), halved until the cycle pays
in every outcome.
"""

import logging
from dataclasses import dataclass

from src.qm_amm.domain.pool import LiquidityPool, get_amount_out
from src.qm_common.atomic import atomic
from src.qm_common.enums import AssetKind, RebalanceDirection
from src.qm_common.errors import FlashSettlementError, MarketMismatchError, RebalanceBandViolation
from src.qm_common.fixed_point import bps_of, mul_div_up, price_of
from src.qm_common.policy import DEFAULT_POLICY, EnginePolicy
from src.qm_escrow.domain.balance import ConditionalMarketBalance
from src.qm_escrow.domain.coins import Coin
from src.qm_escrow.domain.escrow import TokenEscrow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RebalanceResult:
    direction: RebalanceDirection
    cycles: int
    flash_volume: int  # total A (above) or S (below) flashed through the spot pool
    spot_price: int
    band_low: int
    band_high: int


@dataclass(frozen=True)
class _CyclePlan:
    amount: int
    proceeds: int  # spot-pool output of the flash leg
    pool_inputs: tuple[int, ...]
    spot_price_after: int
    band_after: tuple[int, int]

    @property
    def profitable(self) -> bool:
        return self.proceeds > 0 and all(x <= self.proceeds for x in self.pool_inputs)


class ArbitrageRebalancer:
    def __init__(self, policy: EnginePolicy = DEFAULT_POLICY) -> None:
        self.policy = policy

    def band(self, prices: list[int]) -> tuple[int, int]:
        tol = self.policy.rebalance_band_tolerance_bps
        low, high = min(prices), max(prices)
        return low - bps_of(low, tol), high + bps_of(high, tol)

    def rebalance(
        self,
        spot_pool: LiquidityPool,
        escrow: TokenEscrow,
        now_ms: int,
        balance: ConditionalMarketBalance | None = None,
    ) -> RebalanceResult:
        market = escrow.market
        market.ensure_trading()
        pools = [market.pool(idx) for idx in range(market.outcome_count)]
        if balance is not None and balance.market_id != market.id:
            raise MarketMismatchError(market.id, balance.market_id)

        with atomic(spot_pool, escrow, market, balance, *pools):
            target = balance or ConditionalMarketBalance(
                market.id, market.outcome_count, owner="rebalancer"
            )
            direction = RebalanceDirection.NONE
            cycles = 0
            volume = 0

            while cycles < self.policy.rebalance_max_iterations:
                spot = spot_pool.get_spot_price()
                low, high = self.band(market.conditional_prices())
                if low <= spot <= high:
                    break
                direction = (
                    RebalanceDirection.SPOT_ABOVE_BAND if spot > high
                    else RebalanceDirection.SPOT_BELOW_BAND
                )
                plan = self._plan(spot_pool, pools, direction)
                if plan is None:
                    break
                if direction == RebalanceDirection.SPOT_ABOVE_BAND:
                    self._run_above(spot_pool, pools, escrow, target, plan, now_ms)
                else:
                    self._run_below(spot_pool, pools, escrow, target, plan, now_ms)
                cycles += 1
                volume += plan.amount
                logger.info(
                    "Rebalance cycle %d on market %s: %s amount=%d spot=%d band=[%d, %d]",
                    cycles, market.id, direction.value, plan.amount,
                    spot_pool.get_spot_price(), *self.band(market.conditional_prices()),
                )

            if balance is None:
                escrow.burn_balance_residual(target)

            spot = spot_pool.get_spot_price()
            low, high = self.band(market.conditional_prices())
            if not (low <= spot <= high):
                logger.error(
                    "Rebalance left market %s outside band: spot=%d band=[%d, %d]",
                    market.id, spot, low, high,
                )
                raise RebalanceBandViolation(spot, low, high)
            escrow.assert_quantum_invariant()

        return RebalanceResult(
            direction=direction,
            cycles=cycles,
            flash_volume=volume,
            spot_price=spot,
            band_low=low,
            band_high=high,
        )

    # ------------------------------------------------------------------
    # Planning (pure arithmetic on current reserves)
    # ------------------------------------------------------------------

    def _plan(
        self,
        spot_pool: LiquidityPool,
        pools: list[LiquidityPool],
        direction: RebalanceDirection,
    ) -> _CyclePlan | None:
        if direction == RebalanceDirection.SPOT_ABOVE_BAND:
            upper = min(p.asset_reserve for p in pools) - 1

            def simulate(amount: int) -> _CyclePlan:
                return self._simulate_above(spot_pool, pools, amount)

            def reached(plan: _CyclePlan) -> bool:
                return plan.spot_price_after <= plan.band_after[1]
        else:
            upper = min(p.stable_reserve for p in pools) - 1

            def simulate(amount: int) -> _CyclePlan:
                return self._simulate_below(spot_pool, pools, amount)

            def reached(plan: _CyclePlan) -> bool:
                return plan.spot_price_after >= plan.band_after[0]

        if upper < 1:
            return None

        # Smallest amount whose cycle reaches the band edge.
        amount = upper
        if reached(simulate(1)):
            amount = 1
        elif reached(simulate(upper)):
            lo, hi = 1, upper
            while hi - lo > 1:
                mid = (lo + hi) // 2
                if reached(simulate(mid)):
                    hi = mid
                else:
                    lo = mid
            amount = hi

        while amount >= 1:
            plan = simulate(amount)
            if plan.profitable:
                return plan
            amount //= 2
        return None

    def _simulate_above(
        self, spot_pool: LiquidityPool, pools: list[LiquidityPool], amount: int
    ) -> _CyclePlan:
        cap = self.policy.twap_price_cap
        proceeds = get_amount_out(amount, spot_pool.asset_reserve, spot_pool.stable_reserve, 0)
        inputs: list[int] = []
        prices: list[int] = []
        for pool in pools:
            stable_in = mul_div_up(amount, pool.stable_reserve, pool.asset_reserve - amount)
            asset_out = get_amount_out(stable_in, pool.stable_reserve, pool.asset_reserve, 0)
            inputs.append(stable_in)
            prices.append(price_of(pool.asset_reserve - asset_out, pool.stable_reserve + stable_in, cap))
        return _CyclePlan(
            amount=amount,
            proceeds=proceeds,
            pool_inputs=tuple(inputs),
            spot_price_after=price_of(
                spot_pool.asset_reserve + amount, spot_pool.stable_reserve - proceeds, cap
            ),
            band_after=self.band(prices),
        )

    def _simulate_below(
        self, spot_pool: LiquidityPool, pools: list[LiquidityPool], amount: int
    ) -> _CyclePlan:
        cap = self.policy.twap_price_cap
        proceeds = get_amount_out(amount, spot_pool.stable_reserve, spot_pool.asset_reserve, 0)
        inputs: list[int] = []
        prices: list[int] = []
        for pool in pools:
            asset_in = mul_div_up(amount, pool.asset_reserve, pool.stable_reserve - amount)
            stable_out = get_amount_out(asset_in, pool.asset_reserve, pool.stable_reserve, 0)
            inputs.append(asset_in)
            prices.append(price_of(pool.asset_reserve + asset_in, pool.stable_reserve - stable_out, cap))
        return _CyclePlan(
            amount=amount,
            proceeds=proceeds,
            pool_inputs=tuple(inputs),
            spot_price_after=price_of(
                spot_pool.asset_reserve - proceeds, spot_pool.stable_reserve + amount, cap
            ),
            band_after=self.band(prices),
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _run_above(
        self,
        spot_pool: LiquidityPool,
        pools: list[LiquidityPool],
        escrow: TokenEscrow,
        balance: ConditionalMarketBalance,
        plan: _CyclePlan,
        now_ms: int,
    ) -> None:
        owed = plan.amount
        flash = spot_pool.feeless_swap_asset_to_stable(owed, now_ms)
        escrow.split_to_balance(balance, Coin(tag=escrow.market.stable_tag, value=flash.amount_out))
        for idx, pool in enumerate(pools):
            stable_in = pool.stable_in_for_asset_out(owed)
            escrow.debit_balance(balance, idx, AssetKind.STABLE, stable_in)
            result = pool.feeless_swap_stable_to_asset(stable_in, now_ms)
            escrow.credit_balance(balance, idx, AssetKind.ASSET, result.amount_out)
        repayment = escrow.recombine_from_balance(balance, AssetKind.ASSET, owed)
        _settle_flash(owed, repayment, escrow.market.asset_tag)

    def _run_below(
        self,
        spot_pool: LiquidityPool,
        pools: list[LiquidityPool],
        escrow: TokenEscrow,
        balance: ConditionalMarketBalance,
        plan: _CyclePlan,
        now_ms: int,
    ) -> None:
        owed = plan.amount
        flash = spot_pool.feeless_swap_stable_to_asset(owed, now_ms)
        escrow.split_to_balance(balance, Coin(tag=escrow.market.asset_tag, value=flash.amount_out))
        for idx, pool in enumerate(pools):
            asset_in = pool.asset_in_for_stable_out(owed)
            escrow.debit_balance(balance, idx, AssetKind.ASSET, asset_in)
            result = pool.feeless_swap_asset_to_stable(asset_in, now_ms)
            escrow.credit_balance(balance, idx, AssetKind.STABLE, result.amount_out)
        repayment = escrow.recombine_from_balance(balance, AssetKind.STABLE, owed)
        _settle_flash(owed, repayment, escrow.market.stable_tag)


def _settle_flash(owed: int, repayment: Coin, tag: str) -> None:
    """The spot pool was credited up front; the recombined coin must cover it exactly."""
    repaid = repayment.value if repayment.tag == tag else 0
    if repaid != owed:
        logger.error("Flash leg unsettled: owed=%d repaid=%d", owed, repaid)
        raise FlashSettlementError(owed, repaid)
    repayment.take_all()
