"""LiquidityPool: constant-product market for one outcome (or the spot market).

Invariants after every mutation:
  - asset_reserve * stable_reserve >= policy.minimum_liquidity
  - fee-bearing swaps never decrease k (the LP share of the fee stays in reserves)
  - fee-less swaps keep k within policy.feeless_k_tolerance_ppm

Reserves are emptied once, at resolution; a closed pool rejects everything else.
"""

import logging
from typing import Any

from src.qm_amm.domain.fee_schedule import FeeSchedule
from src.qm_amm.domain.models import LiquidityResult, SwapResult
from src.qm_amm.domain.oracle import PriceOracle, TwapConfig
from src.qm_common.enums import SwapDirection
from src.qm_common.errors import (
    ConstantProductViolation,
    ExcessiveSlippageError,
    FeeOutOfRangeError,
    InitialLiquidityTooLowError,
    InsufficientLpSupplyError,
    InsufficientOutputError,
    InvalidReserveError,
    LiquidityImbalanceError,
    LpSlippageError,
    MinimumLiquidityError,
    PoolClosedError,
    TimestampRegressionError,
    ZeroAmountError,
    ZeroLpMintedError,
)
from src.qm_common.fixed_point import (
    BPS_DENOMINATOR,
    PPM_DENOMINATOR,
    bps_of,
    mul_div,
    mul_div_up,
    price_of,
    sqrt,
)
from src.qm_common.id_generator import generate_id
from src.qm_common.policy import DEFAULT_POLICY, EnginePolicy

logger = logging.getLogger(__name__)


class LiquidityPool:
    def __init__(
        self,
        fee_bps: int,
        asset_reserve: int,
        stable_reserve: int,
        now_ms: int,
        *,
        market_id: str,
        outcome_index: int | None = None,
        fee_schedule: FeeSchedule | None = None,
        twap_config: TwapConfig | None = None,
        policy: EnginePolicy = DEFAULT_POLICY,
    ) -> None:
        if asset_reserve <= 0 or stable_reserve <= 0:
            raise InvalidReserveError(
                f"asset_reserve={asset_reserve}, stable_reserve={stable_reserve}"
            )
        if not (0 <= fee_bps <= BPS_DENOMINATOR):
            raise FeeOutOfRangeError(f"fee_bps={fee_bps} not in [0, {BPS_DENOMINATOR}]")
        root_k = sqrt(asset_reserve * stable_reserve)
        if root_k < policy.minimum_liquidity:
            raise InitialLiquidityTooLowError(root_k, policy.minimum_liquidity)

        self.id = generate_id("pool")
        self.market_id = market_id
        self.outcome_index = outcome_index
        self.fee_bps = fee_bps
        self.fee_schedule = fee_schedule
        self.created_at_ms = now_ms
        self.policy = policy
        self.asset_reserve = asset_reserve
        self.stable_reserve = stable_reserve
        self.lp_supply = 0
        # Bootstrap reserves plus the minimum-liquidity floor; never redeemable.
        self.locked_lp = 0
        self.protocol_fees_asset = 0
        self.protocol_fees_stable = 0
        self.closed = False
        self.oracle = PriceOracle(
            market_start_ms=now_ms,
            initial_price=price_of(asset_reserve, stable_reserve, policy.twap_price_cap),
            price_cap=policy.twap_price_cap,
            config=twap_config,
        )

    # ------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------

    @property
    def k(self) -> int:
        return self.asset_reserve * self.stable_reserve

    @property
    def is_spot(self) -> bool:
        return self.outcome_index is None

    def get_spot_price(self) -> int:
        return price_of(self.asset_reserve, self.stable_reserve, self.policy.twap_price_cap)

    def current_fee_bps(self, now_ms: int) -> int:
        if self.fee_schedule is None:
            return self.fee_bps
        return self.fee_schedule.get_current_fee(self.fee_bps, self.created_at_ms, now_ms)

    def get_twap(self, now_ms: int) -> int:
        return self.oracle.get_twap(now_ms)

    def quote_asset_to_stable(self, amount_in: int, now_ms: int) -> int:
        return get_amount_out(
            amount_in, self.asset_reserve, self.stable_reserve, self.current_fee_bps(now_ms)
        )

    def quote_stable_to_asset(self, amount_in: int, now_ms: int) -> int:
        return get_amount_out(
            amount_in, self.stable_reserve, self.asset_reserve, self.current_fee_bps(now_ms)
        )

    def stable_in_for_asset_out(self, asset_out: int) -> int:
        """Smallest fee-less stable input that yields at least asset_out."""
        if asset_out >= self.asset_reserve:
            raise InvalidReserveError(f"asset_out={asset_out} drains reserve {self.asset_reserve}")
        return mul_div_up(asset_out, self.stable_reserve, self.asset_reserve - asset_out)

    def asset_in_for_stable_out(self, stable_out: int) -> int:
        """Smallest fee-less asset input that yields at least stable_out."""
        if stable_out >= self.stable_reserve:
            raise InvalidReserveError(
                f"stable_out={stable_out} drains reserve {self.stable_reserve}"
            )
        return mul_div_up(stable_out, self.asset_reserve, self.stable_reserve - stable_out)

    # ------------------------------------------------------------------
    # Swaps
    # ------------------------------------------------------------------

    def swap_asset_to_stable(self, amount_in: int, min_out: int, now_ms: int) -> SwapResult:
        return self._swap(
            SwapDirection.ASSET_TO_STABLE, amount_in, min_out, now_ms, self.current_fee_bps(now_ms)
        )

    def swap_stable_to_asset(self, amount_in: int, min_out: int, now_ms: int) -> SwapResult:
        return self._swap(
            SwapDirection.STABLE_TO_ASSET, amount_in, min_out, now_ms, self.current_fee_bps(now_ms)
        )

    def feeless_swap_asset_to_stable(self, amount_in: int, now_ms: int) -> SwapResult:
        """Rebalancer-only: same curve with no fee and no protocol accrual."""
        return self._swap(SwapDirection.ASSET_TO_STABLE, amount_in, 0, now_ms, 0)

    def feeless_swap_stable_to_asset(self, amount_in: int, now_ms: int) -> SwapResult:
        """Rebalancer-only: same curve with no fee and no protocol accrual."""
        return self._swap(SwapDirection.STABLE_TO_ASSET, amount_in, 0, now_ms, 0)

    def _swap(
        self,
        direction: SwapDirection,
        amount_in: int,
        min_out: int,
        now_ms: int,
        fee_bps: int,
    ) -> SwapResult:
        self._ensure_open(now_ms)
        if amount_in <= 0:
            raise ZeroAmountError("amount_in")

        asset_to_stable = direction == SwapDirection.ASSET_TO_STABLE
        reserve_in = self.asset_reserve if asset_to_stable else self.stable_reserve
        reserve_out = self.stable_reserve if asset_to_stable else self.asset_reserve

        amount_out = get_amount_out(amount_in, reserve_in, reserve_out, fee_bps)
        if amount_out < min_out:
            raise ExcessiveSlippageError(min_out, amount_out)
        if amount_out == 0:
            raise InsufficientOutputError()

        fee_amount = bps_of(amount_in, fee_bps)
        protocol_fee = bps_of(fee_amount, self.policy.protocol_fee_share_bps)

        if asset_to_stable:
            new_asset = self.asset_reserve + amount_in - protocol_fee
            new_stable = self.stable_reserve - amount_out
        else:
            new_stable = self.stable_reserve + amount_in - protocol_fee
            new_asset = self.asset_reserve - amount_out

        k_before = self.k
        k_after = new_asset * new_stable
        if fee_bps > 0:
            if k_after < k_before:
                raise ConstantProductViolation(k_before, k_after)
        else:
            tolerance = self.policy.feeless_k_tolerance_ppm
            if k_after * PPM_DENOMINATOR < k_before * (PPM_DENOMINATOR - tolerance):
                raise ConstantProductViolation(k_before, k_after)
        if k_after < self.policy.minimum_liquidity:
            raise MinimumLiquidityError(k_after, self.policy.minimum_liquidity)

        self.asset_reserve = new_asset
        self.stable_reserve = new_stable
        if asset_to_stable:
            self.protocol_fees_asset += protocol_fee
        else:
            self.protocol_fees_stable += protocol_fee
        self.oracle.record(now_ms, self.get_spot_price())

        logger.debug(
            "Swap %s pool=%s in=%d out=%d fee_bps=%d", direction.value, self.id,
            amount_in, amount_out, fee_bps,
        )
        return SwapResult(
            direction=direction,
            amount_in=amount_in,
            amount_out=amount_out,
            fee_bps=fee_bps,
            fee_amount=fee_amount,
            protocol_fee=protocol_fee,
            asset_reserve=self.asset_reserve,
            stable_reserve=self.stable_reserve,
        )

    # ------------------------------------------------------------------
    # Liquidity
    # ------------------------------------------------------------------

    def add_liquidity_proportional(
        self, asset_in: int, stable_in: int, min_lp_out: int, now_ms: int
    ) -> LiquidityResult:
        """Deposit both sides at the current ratio.

        The first provider mints sqrt(asset_in * stable_in) - MINIMUM_LIQUIDITY.
        lp_supply is then seeded with sqrt of the post-deposit k, so the
        bootstrap reserves and the floor back LP units that nobody holds.
        """
        self._ensure_open(now_ms)
        if asset_in <= 0 or stable_in <= 0:
            raise ZeroAmountError("liquidity deposit")
        self._check_ratio(asset_in, stable_in)

        if self.lp_supply == 0:
            root = sqrt(asset_in * stable_in)
            if root <= self.policy.minimum_liquidity:
                raise InitialLiquidityTooLowError(root, self.policy.minimum_liquidity)
            minted = root - self.policy.minimum_liquidity
            new_supply = sqrt((self.asset_reserve + asset_in) * (self.stable_reserve + stable_in))
            locked = new_supply - minted
        else:
            minted = min(
                mul_div(asset_in, self.lp_supply, self.asset_reserve),
                mul_div(stable_in, self.lp_supply, self.stable_reserve),
            )
            if minted == 0:
                raise ZeroLpMintedError()
            new_supply = self.lp_supply + minted
            locked = self.locked_lp

        if minted < min_lp_out:
            raise LpSlippageError(min_lp_out, minted)

        self.asset_reserve += asset_in
        self.stable_reserve += stable_in
        self.lp_supply = new_supply
        self.locked_lp = locked
        self.oracle.record(now_ms, self.get_spot_price())

        logger.debug("Add liquidity pool=%s lp=%d", self.id, minted)
        return LiquidityResult(
            lp_amount=minted,
            asset_amount=asset_in,
            stable_amount=stable_in,
            asset_reserve=self.asset_reserve,
            stable_reserve=self.stable_reserve,
            lp_supply=self.lp_supply,
        )

    def remove_liquidity_proportional(
        self,
        lp_in: int,
        now_ms: int,
        min_asset_out: int = 0,
        min_stable_out: int = 0,
    ) -> LiquidityResult:
        self._ensure_open(now_ms)
        if lp_in <= 0:
            raise ZeroAmountError("lp_in")
        redeemable = self.lp_supply - self.locked_lp
        if lp_in > redeemable:
            raise InsufficientLpSupplyError(lp_in, redeemable)

        asset_out = mul_div(self.asset_reserve, lp_in, self.lp_supply)
        stable_out = mul_div(self.stable_reserve, lp_in, self.lp_supply)

        remaining_k = (self.asset_reserve - asset_out) * (self.stable_reserve - stable_out)
        if remaining_k < self.policy.minimum_liquidity:
            raise MinimumLiquidityError(remaining_k, self.policy.minimum_liquidity)
        if asset_out < min_asset_out:
            raise ExcessiveSlippageError(min_asset_out, asset_out)
        if stable_out < min_stable_out:
            raise ExcessiveSlippageError(min_stable_out, stable_out)

        self.asset_reserve -= asset_out
        self.stable_reserve -= stable_out
        self.lp_supply -= lp_in
        self.oracle.record(now_ms, self.get_spot_price())

        logger.debug("Remove liquidity pool=%s lp=%d", self.id, lp_in)
        return LiquidityResult(
            lp_amount=lp_in,
            asset_amount=asset_out,
            stable_amount=stable_out,
            asset_reserve=self.asset_reserve,
            stable_reserve=self.stable_reserve,
            lp_supply=self.lp_supply,
        )

    def _check_ratio(self, asset_in: int, stable_in: int) -> None:
        # Compare asset_in/stable_in with asset_reserve/stable_reserve by cross-multiplying.
        lhs = asset_in * self.stable_reserve
        rhs = stable_in * self.asset_reserve
        allowed = bps_of(max(lhs, rhs), self.policy.imbalance_tolerance_bps)
        if abs(lhs - rhs) > allowed:
            raise LiquidityImbalanceError(self.policy.imbalance_tolerance_bps)

    # ------------------------------------------------------------------
    # Protocol fees and resolution
    # ------------------------------------------------------------------

    def collect_protocol_fees(self) -> tuple[int, int]:
        """Hand accrued protocol fees to the fee-routing collaborator."""
        fees = (self.protocol_fees_asset, self.protocol_fees_stable)
        self.protocol_fees_asset = 0
        self.protocol_fees_stable = 0
        return fees

    def empty_all_reserves(self, now_ms: int) -> tuple[int, int]:
        """Resolution only: drain both reserves and close the pool."""
        self._ensure_open(now_ms)
        self.oracle.record(now_ms, self.get_spot_price())
        drained = (self.asset_reserve, self.stable_reserve)
        self.asset_reserve = 0
        self.stable_reserve = 0
        self.lp_supply = 0
        self.locked_lp = 0
        self.closed = True
        logger.info("Pool %s emptied: asset=%d stable=%d", self.id, *drained)
        return drained

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_open(self, now_ms: int) -> None:
        if self.closed:
            raise PoolClosedError(self.id)
        if now_ms < self.oracle.last_timestamp_ms:
            raise TimestampRegressionError(now_ms, self.oracle.last_timestamp_ms)

    def snapshot(self) -> dict[str, Any]:
        return {
            "asset_reserve": self.asset_reserve,
            "stable_reserve": self.stable_reserve,
            "lp_supply": self.lp_supply,
            "locked_lp": self.locked_lp,
            "protocol_fees_asset": self.protocol_fees_asset,
            "protocol_fees_stable": self.protocol_fees_stable,
            "closed": self.closed,
            "oracle": self.oracle.snapshot(),
        }

    def restore(self, snapshot: dict[str, Any]) -> None:
        self.asset_reserve = snapshot["asset_reserve"]
        self.stable_reserve = snapshot["stable_reserve"]
        self.lp_supply = snapshot["lp_supply"]
        self.locked_lp = snapshot["locked_lp"]
        self.protocol_fees_asset = snapshot["protocol_fees_asset"]
        self.protocol_fees_stable = snapshot["protocol_fees_stable"]
        self.closed = snapshot["closed"]
        self.oracle.restore(snapshot["oracle"])


def get_amount_out(amount_in: int, reserve_in: int, reserve_out: int, fee_bps: int) -> int:
    """out = in*(10000-fee)*R_out / (R_in*10000 + in*(10000-fee)), floored."""
    if amount_in <= 0:
        return 0
    in_after_fee = amount_in * (BPS_DENOMINATOR - fee_bps)
    return mul_div(in_after_fee, reserve_out, reserve_in * BPS_DENOMINATOR + in_after_fee)
