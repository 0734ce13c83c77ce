"""ConditionalTradingEngine: stateful orchestrator for per-proposal markets.

Holds every market's in-memory context and serializes access with two
asyncio.Locks per proposal. The escrow lock guards the escrow, the market
state, its balances and the outcome pools, which are only ever mutated
together with the escrow. The spot lock guards the spot pool alone, so spot
liquidity changes do not wait behind conditional trading. When both are
needed the escrow lock is taken first.

Each public coroutine runs its domain operation inside `atomic` and, when a
DB session is supplied, journals an engine event in the same unit: a failed
insert restores the in-memory state as well.
"""
import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.qm_amm.domain.fee_schedule import FeeSchedule
from src.qm_amm.domain.models import LiquidityResult, SwapResult
from src.qm_amm.domain.oracle import TwapConfig
from src.qm_amm.domain.pool import LiquidityPool
from src.qm_common.atomic import atomic
from src.qm_common.clock import Clock, SystemClock
from src.qm_common.enums import AssetKind, EngineEventType, SwapDirection
from src.qm_common.errors import InputError, MarketAlreadyExistsError, MarketNotFoundError
from src.qm_common.policy import DEFAULT_POLICY, EnginePolicy
from src.qm_escrow.domain.balance import ConditionalMarketBalance
from src.qm_escrow.domain.coins import Coin
from src.qm_escrow.domain.escrow import TokenEscrow
from src.qm_escrow.domain.models import CompleteSetDelta
from src.qm_journal.infrastructure.journal import write_engine_event
from src.qm_market.domain.lifecycle import ResolutionResult, initialize_market, resolve_market
from src.qm_market.domain.market_state import MarketState
from src.qm_trading.domain.models import MarketContext, SwapLeg
from src.qm_trading.domain.rebalancer import ArbitrageRebalancer
from src.qm_trading.domain.router import SpotSwapResult, SwapRouter
from src.qm_trading.domain.swap_session import (
    abandon_swap_session,
    begin_swap_session,
    finalize_swap_session,
    swap_balance_asset_to_stable,
    swap_balance_stable_to_asset,
)

logger = logging.getLogger(__name__)


class ConditionalTradingEngine:
    def __init__(self, clock: Clock | None = None, policy: EnginePolicy = DEFAULT_POLICY) -> None:
        self.clock = clock or SystemClock()
        self.policy = policy
        self.rebalancer = ArbitrageRebalancer(policy)
        self.router = SwapRouter(self.rebalancer)
        self._markets: dict[str, MarketContext] = {}
        self._escrow_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._spot_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def get_context(self, market_id: str) -> MarketContext:
        ctx = self._markets.get(market_id)
        if ctx is None:
            raise MarketNotFoundError(market_id)
        return ctx

    def list_contexts(self) -> list[MarketContext]:
        return list(self._markets.values())

    def get_balance(self, market_id: str, balance_id: str) -> ConditionalMarketBalance:
        ctx = self.get_context(market_id)
        balance = ctx.balances.get(balance_id)
        if balance is None or balance.destroyed:
            raise InputError(1020, f"Balance not found: {balance_id}", 404)
        return balance

    @asynccontextmanager
    async def _locked(
        self, market_id: str, *, escrow: bool = True, spot: bool = False
    ) -> AsyncIterator[None]:
        async with AsyncExitStack() as stack:
            if escrow:
                await stack.enter_async_context(self._escrow_locks[market_id])
            if spot:
                await stack.enter_async_context(self._spot_locks[market_id])
            yield

    async def _journal(
        self,
        db: AsyncSession | None,
        event_type: EngineEventType,
        market_id: str,
        payload: dict[str, Any],
        outcome_index: int | None = None,
    ) -> None:
        if db is None:
            return
        async with db.begin_nested():
            await write_engine_event(event_type, market_id, payload, db, outcome_index)

    # ------------------------------------------------------------------
    # Market lifecycle
    # ------------------------------------------------------------------

    async def create_market(
        self,
        outcome_count: int,
        spot_asset: Coin,
        spot_stable: Coin,
        conditional_asset: Coin,
        conditional_stable: Coin,
        fee_bps: int,
        *,
        market_id: str | None = None,
        title: str = "",
        fee_schedule: FeeSchedule | None = None,
        twap_config: TwapConfig | None = None,
        db: AsyncSession | None = None,
    ) -> MarketContext:
        """Create the spot pool, bootstrap one pool per outcome and open trading.

        With a DB session the journal row is committed here, and the market
        becomes visible only once that commit has succeeded.
        """
        market = MarketState(
            outcome_count,
            asset_tag=spot_asset.tag,
            stable_tag=spot_stable.tag,
            market_id=market_id,
        )
        now = self.clock.now_ms()

        async with self._locked(market.id, spot=True):
            if market.id in self._markets:
                raise MarketAlreadyExistsError(market.id)
            with atomic(spot_asset, spot_stable, conditional_asset, conditional_stable):
                escrow = TokenEscrow(market)
                spot_pool = LiquidityPool(
                    fee_bps,
                    spot_asset.take_all(),
                    spot_stable.take_all(),
                    now,
                    market_id=market.id,
                    fee_schedule=fee_schedule,
                    twap_config=twap_config,
                    policy=self.policy,
                )
                initialize_market(
                    market, escrow, conditional_asset, conditional_stable, fee_bps, now,
                    fee_schedule=fee_schedule, twap_config=twap_config, policy=self.policy,
                )
                ctx = MarketContext(market=market, escrow=escrow, spot_pool=spot_pool, title=title)
                await self._journal(
                    db,
                    EngineEventType.MARKET_CREATED,
                    market.id,
                    {
                        "outcome_count": outcome_count,
                        "fee_bps": fee_bps,
                        "spot_reserves": [spot_pool.asset_reserve, spot_pool.stable_reserve],
                        "outcome_reserves": [
                            escrow.spot_asset_balance, escrow.spot_stable_balance
                        ],
                    },
                )
                if db is not None:
                    await db.commit()
            self._markets[market.id] = ctx

        logger.info("Market %s created with %d outcomes", market.id, outcome_count)
        return ctx

    async def resolve(
        self, market_id: str, winner: int, db: AsyncSession | None = None
    ) -> ResolutionResult:
        ctx = self.get_context(market_id)
        now = self.clock.now_ms()
        async with self._locked(market_id):
            with atomic(ctx.market, ctx.escrow, *ctx.market.live_pools()):
                result = resolve_market(ctx.market, ctx.escrow, winner, now)
                await self._journal(
                    db,
                    EngineEventType.MARKET_RESOLVED,
                    market_id,
                    {
                        "winner": winner,
                        "returned": [result.asset.value, result.stable.value],
                        "burned_asset": list(result.burned_asset),
                        "burned_stable": list(result.burned_stable),
                    },
                    outcome_index=winner,
                )
        return result

    # ------------------------------------------------------------------
    # Balances and complete sets
    # ------------------------------------------------------------------

    async def open_balance(self, market_id: str, owner: str) -> ConditionalMarketBalance:
        ctx = self.get_context(market_id)
        async with self._locked(market_id):
            balance = ConditionalMarketBalance(market_id, ctx.market.outcome_count, owner=owner)
            ctx.balances[balance.id] = balance
        return balance

    async def split(
        self, market_id: str, balance_id: str, spot_coin: Coin, db: AsyncSession | None = None
    ) -> CompleteSetDelta:
        ctx = self.get_context(market_id)
        balance = self.get_balance(market_id, balance_id)
        async with self._locked(market_id):
            with atomic(ctx.escrow, balance, spot_coin):
                delta = ctx.escrow.split_to_balance(balance, spot_coin)
                await self._journal(
                    db, EngineEventType.SPLIT, market_id,
                    {"balance_id": balance_id, "kind": delta.kind.value, "amount": delta.amount},
                )
        return delta

    async def recombine(
        self,
        market_id: str,
        balance_id: str,
        kind: AssetKind,
        amount: int,
        db: AsyncSession | None = None,
    ) -> Coin:
        ctx = self.get_context(market_id)
        balance = self.get_balance(market_id, balance_id)
        async with self._locked(market_id):
            with atomic(ctx.escrow, balance):
                spot = ctx.escrow.recombine_from_balance(balance, kind, amount)
                await self._journal(
                    db, EngineEventType.RECOMBINE, market_id,
                    {"balance_id": balance_id, "kind": kind.value, "amount": amount},
                )
        return spot

    async def redeem(
        self, market_id: str, balance_id: str, db: AsyncSession | None = None
    ) -> tuple[Coin, Coin]:
        """Pay out a balance's winning positions and retire whatever is left."""
        ctx = self.get_context(market_id)
        balance = self.get_balance(market_id, balance_id)
        async with self._locked(market_id):
            with atomic(ctx.escrow, balance):
                asset, stable = ctx.escrow.redeem_winning_from_balance(balance)
                ctx.escrow.burn_balance_residual(balance)
                await self._journal(
                    db, EngineEventType.REDEEMED, market_id,
                    {"balance_id": balance_id, "asset": asset.value, "stable": stable.value},
                    outcome_index=ctx.market.winning_outcome,
                )
            ctx.balances.pop(balance_id, None)
        return asset, stable

    # ------------------------------------------------------------------
    # Swaps
    # ------------------------------------------------------------------

    async def swap_conditional(
        self,
        market_id: str,
        balance_id: str,
        legs: list[SwapLeg],
        db: AsyncSession | None = None,
    ) -> list[SwapResult]:
        """Run one swap session over a balance: every leg lands, or none does."""
        if not legs:
            raise InputError(1001, "at least one swap leg is required", 422)
        ctx = self.get_context(market_id)
        balance = self.get_balance(market_id, balance_id)
        outcomes = [leg.outcome_index for leg in legs]
        for idx in outcomes:
            ctx.market.validate_outcome(idx)
        now = self.clock.now_ms()

        async with self._locked(market_id):
            pools = [ctx.market.pool(idx) for idx in sorted(set(outcomes))]
            with atomic(ctx.escrow, ctx.market, balance, *pools):
                session = begin_swap_session(ctx.escrow)
                results: list[SwapResult] = []
                try:
                    for leg in legs:
                        if leg.direction == SwapDirection.ASSET_TO_STABLE:
                            swap = swap_balance_asset_to_stable
                        else:
                            swap = swap_balance_stable_to_asset
                        results.append(
                            swap(session, ctx.escrow, balance, leg.outcome_index,
                                 leg.amount_in, leg.min_out, now)
                        )
                        await self._journal(
                            db, EngineEventType.CONDITIONAL_SWAP, market_id,
                            {
                                "balance_id": balance_id,
                                "direction": leg.direction.value,
                                "amount_in": results[-1].amount_in,
                                "amount_out": results[-1].amount_out,
                                "fee_bps": results[-1].fee_bps,
                            },
                            outcome_index=leg.outcome_index,
                        )
                except BaseException:
                    abandon_swap_session(session)
                    raise
                finalize_swap_session(session, ctx.escrow, now)
        return results

    async def swap_spot(
        self,
        market_id: str,
        coin: Coin,
        min_out: int,
        balance_id: str | None = None,
        db: AsyncSession | None = None,
    ) -> SpotSwapResult:
        ctx = self.get_context(market_id)
        balance = self.get_balance(market_id, balance_id) if balance_id else None
        now = self.clock.now_ms()
        async with self._locked(market_id, spot=True):
            with atomic(ctx.spot_pool, ctx.escrow, ctx.market, balance, coin,
                        *ctx.market.live_pools()):
                if coin.tag == ctx.market.asset_tag:
                    result = self.router.swap_spot_asset_to_stable(
                        ctx.spot_pool, ctx.escrow, coin, min_out, now, balance
                    )
                else:
                    result = self.router.swap_spot_stable_to_asset(
                        ctx.spot_pool, ctx.escrow, coin, min_out, now, balance
                    )
                await self._journal(
                    db, EngineEventType.SPOT_SWAP, market_id,
                    {
                        "direction": result.swap.direction.value,
                        "amount_in": result.swap.amount_in,
                        "amount_out": result.swap.amount_out,
                        "rebalance_cycles": result.rebalance.cycles if result.rebalance else 0,
                    },
                )
        return result

    # ------------------------------------------------------------------
    # Spot liquidity
    # ------------------------------------------------------------------

    async def add_spot_liquidity(
        self,
        market_id: str,
        asset_coin: Coin,
        stable_coin: Coin,
        min_lp_out: int,
        db: AsyncSession | None = None,
    ) -> LiquidityResult:
        ctx = self.get_context(market_id)
        now = self.clock.now_ms()
        async with self._locked(market_id, escrow=False, spot=True):
            with atomic(ctx.spot_pool, asset_coin, stable_coin):
                if asset_coin.tag != ctx.market.asset_tag or stable_coin.tag != ctx.market.stable_tag:
                    raise InputError(1009, "liquidity coins do not match the market's spot tags", 422)
                result = ctx.spot_pool.add_liquidity_proportional(
                    asset_coin.take_all(), stable_coin.take_all(), min_lp_out, now
                )
                await self._journal(
                    db, EngineEventType.LIQUIDITY_ADDED, market_id,
                    {"lp": result.lp_amount, "asset": result.asset_amount,
                     "stable": result.stable_amount},
                )
        return result

    async def remove_spot_liquidity(
        self,
        market_id: str,
        lp_in: int,
        min_asset_out: int = 0,
        min_stable_out: int = 0,
        db: AsyncSession | None = None,
    ) -> tuple[LiquidityResult, Coin, Coin]:
        ctx = self.get_context(market_id)
        now = self.clock.now_ms()
        async with self._locked(market_id, escrow=False, spot=True):
            with atomic(ctx.spot_pool):
                result = ctx.spot_pool.remove_liquidity_proportional(
                    lp_in, now, min_asset_out, min_stable_out
                )
                await self._journal(
                    db, EngineEventType.LIQUIDITY_REMOVED, market_id,
                    {"lp": lp_in, "asset": result.asset_amount, "stable": result.stable_amount},
                )
        return (
            result,
            Coin(tag=ctx.market.asset_tag, value=result.asset_amount),
            Coin(tag=ctx.market.stable_tag, value=result.stable_amount),
        )
