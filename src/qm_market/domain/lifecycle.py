"""Market bootstrap and resolution.

Bootstrap deposits the spot liquidity once and mints the same amounts into
every outcome (quantum split), so N outcome pools start with identical
reserves backed by a single deposit. Resolution empties every pool: losing
reserves are burned, the winner's reserves are recombined into spot coins
for the caller to return to the spot market.
"""

import logging
from dataclasses import dataclass

from src.qm_amm.domain.fee_schedule import FeeSchedule
from src.qm_amm.domain.oracle import TwapConfig
from src.qm_amm.domain.pool import LiquidityPool
from src.qm_common.atomic import atomic
from src.qm_common.enums import AssetKind
from src.qm_common.errors import MarketMismatchError
from src.qm_common.policy import DEFAULT_POLICY, EnginePolicy
from src.qm_escrow.domain.coins import Coin
from src.qm_escrow.domain.escrow import TokenEscrow
from src.qm_market.domain.market_state import MarketState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolutionResult:
    winning_outcome: int
    asset: Coin
    stable: Coin
    protocol_fee_asset: Coin
    protocol_fee_stable: Coin
    burned_asset: tuple[int, ...]
    burned_stable: tuple[int, ...]


def initialize_market(
    market: MarketState,
    escrow: TokenEscrow,
    asset_coin: Coin,
    stable_coin: Coin,
    fee_bps: int,
    now_ms: int,
    fee_schedule: FeeSchedule | None = None,
    twap_config: TwapConfig | None = None,
    policy: EnginePolicy = DEFAULT_POLICY,
) -> list[LiquidityPool]:
    """Seed one pool per outcome from a single spot deposit and open trading."""
    if escrow.market is not market:
        raise MarketMismatchError(market.id, escrow.market_id)

    with atomic(market, escrow, asset_coin, stable_coin):
        if not escrow.caps_registered:
            escrow.register_default_caps()
        asset_amount, stable_amount = escrow.seed_outcome_reserves(asset_coin, stable_coin)
        for idx in range(market.outcome_count):
            market.pools[idx] = LiquidityPool(
                fee_bps,
                asset_amount,
                stable_amount,
                now_ms,
                market_id=market.id,
                outcome_index=idx,
                fee_schedule=fee_schedule,
                twap_config=twap_config,
                policy=policy,
            )
        market.start_trading(now_ms)
        escrow.assert_quantum_invariant()

    logger.info(
        "Market %s bootstrapped: outcomes=%d asset=%d stable=%d fee_bps=%d",
        market.id, market.outcome_count, asset_amount, stable_amount, fee_bps,
    )
    return [market.pool(idx) for idx in range(market.outcome_count)]


def resolve_market(
    market: MarketState, escrow: TokenEscrow, winner: int, now_ms: int
) -> ResolutionResult:
    """Close trading with `winner` and unwind every outcome pool."""
    market.validate_outcome(winner)
    market.ensure_trading()
    pools = [market.pool(idx) for idx in range(market.outcome_count)]

    with atomic(market, escrow, *pools):
        burned_asset: list[int] = []
        burned_stable: list[int] = []
        asset_out = Coin.zero(market.asset_tag)
        stable_out = Coin.zero(market.stable_tag)
        fee_asset = Coin.zero(market.asset_tag)
        fee_stable = Coin.zero(market.stable_tag)

        for idx, pool in enumerate(pools):
            is_winner = idx == winner
            fees = pool.collect_protocol_fees()
            reserves = pool.empty_all_reserves(now_ms)
            fa, fs = escrow.retire_pool_reserves(idx, fees[0], fees[1], winner=is_winner)
            ra, rs = escrow.retire_pool_reserves(idx, reserves[0], reserves[1], winner=is_winner)
            if is_winner:
                fee_asset.join(fa)
                fee_stable.join(fs)
                asset_out.join(ra)
                stable_out.join(rs)
                burned_asset.append(0)
                burned_stable.append(0)
            else:
                burned_asset.append(fees[0] + reserves[0])
                burned_stable.append(fees[1] + reserves[1])

        market.mark_resolved(winner, now_ms)
        escrow.assert_quantum_invariant()

    logger.info(
        "Market %s resolved: winner=%d returned asset=%d stable=%d",
        market.id, winner, asset_out.value, stable_out.value,
    )
    return ResolutionResult(
        winning_outcome=winner,
        asset=asset_out,
        stable=stable_out,
        protocol_fee_asset=fee_asset,
        protocol_fee_stable=fee_stable,
        burned_asset=tuple(burned_asset),
        burned_stable=tuple(burned_stable),
    )


def collect_outcome_fees(
    market: MarketState, escrow: TokenEscrow, outcome_idx: int
) -> tuple[Coin, Coin]:
    """Hand an outcome pool's accrued protocol fees out as conditional coins."""
    pool = market.pool(outcome_idx)
    with atomic(pool, escrow):
        asset_fee, stable_fee = pool.collect_protocol_fees()
        coins = (
            escrow.issue_from_pool(outcome_idx, AssetKind.ASSET, asset_fee),
            escrow.issue_from_pool(outcome_idx, AssetKind.STABLE, stable_fee),
        )
        escrow.assert_quantum_invariant()
    return coins
