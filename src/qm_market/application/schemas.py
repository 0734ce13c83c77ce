"""Pydantic schemas for qm_market API requests and responses.

Reserves, supplies, k and prices are serialized as decimal strings: they
routinely exceed 2**53 and would lose precision in JSON number parsers.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from src.qm_amm.domain.pool import LiquidityPool
from src.qm_common.errors import TwapNotReadyError
from src.qm_escrow.domain.models import EscrowView
from src.qm_trading.domain.models import MarketContext

# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


class CreateMarketRequest(BaseModel):
    outcome_count: int = Field(..., ge=1, le=64)
    title: str = Field("", max_length=200)
    market_id: str | None = Field(None, min_length=1, max_length=64)
    asset_tag: str = Field("ASSET", min_length=1, max_length=64)
    stable_tag: str = Field("STABLE", min_length=1, max_length=64)
    spot_asset_reserve: int = Field(..., gt=0)
    spot_stable_reserve: int = Field(..., gt=0)
    conditional_asset_amount: int = Field(..., gt=0)
    conditional_stable_amount: int = Field(..., gt=0)
    fee_bps: int = Field(30, ge=0, le=10_000)
    initial_fee_bps: int | None = Field(None, ge=0, le=9_900)
    fee_decay_ms: int = Field(0, ge=0, le=86_400_000)
    twap_start_delay_ms: int = Field(0, ge=0)
    twap_max_step_bps: int | None = Field(None, ge=1, le=10_000)

    @model_validator(mode="after")
    def _tags_differ(self) -> "CreateMarketRequest":
        if self.asset_tag == self.stable_tag:
            raise ValueError("asset_tag and stable_tag must differ")
        return self


# ---------------------------------------------------------------------------
# Pool / escrow
# ---------------------------------------------------------------------------


class PoolOut(BaseModel):
    pool_id: str
    outcome_index: int | None
    asset_reserve: str
    stable_reserve: str
    k: str
    lp_supply: str
    fee_bps: int
    current_fee_bps: int
    spot_price: str
    twap: str | None
    protocol_fees_asset: str
    protocol_fees_stable: str
    closed: bool

    @classmethod
    def from_domain(cls, pool: LiquidityPool, now_ms: int) -> "PoolOut":
        try:
            twap: str | None = str(pool.get_twap(max(now_ms, pool.oracle.last_timestamp_ms)))
        except TwapNotReadyError:
            twap = None
        return cls(
            pool_id=pool.id,
            outcome_index=pool.outcome_index,
            asset_reserve=str(pool.asset_reserve),
            stable_reserve=str(pool.stable_reserve),
            k=str(pool.k),
            lp_supply=str(pool.lp_supply),
            fee_bps=pool.fee_bps,
            current_fee_bps=pool.current_fee_bps(now_ms),
            spot_price=str(pool.get_spot_price()),
            twap=twap,
            protocol_fees_asset=str(pool.protocol_fees_asset),
            protocol_fees_stable=str(pool.protocol_fees_stable),
            closed=pool.closed,
        )


class EscrowOut(BaseModel):
    spot_asset_balance: str
    spot_stable_balance: str
    asset_supply: list[str]
    stable_supply: list[str]
    wrapped_asset: list[str]
    wrapped_stable: list[str]
    registered_outcomes: int

    @classmethod
    def from_view(cls, view: EscrowView) -> "EscrowOut":
        return cls(
            spot_asset_balance=str(view.spot_asset_balance),
            spot_stable_balance=str(view.spot_stable_balance),
            asset_supply=[str(v) for v in view.asset_supply],
            stable_supply=[str(v) for v in view.stable_supply],
            wrapped_asset=[str(v) for v in view.wrapped_asset],
            wrapped_stable=[str(v) for v in view.wrapped_stable],
            registered_outcomes=view.registered_outcomes,
        )


# ---------------------------------------------------------------------------
# Market
# ---------------------------------------------------------------------------


class MarketListItem(BaseModel):
    id: str
    title: str
    status: str
    outcome_count: int
    spot_price: str
    winning_outcome: int | None

    @classmethod
    def from_context(cls, ctx: MarketContext) -> "MarketListItem":
        return cls(
            id=ctx.market.id,
            title=ctx.title,
            status=ctx.market.status.value,
            outcome_count=ctx.market.outcome_count,
            spot_price=str(ctx.spot_pool.get_spot_price()),
            winning_outcome=ctx.market.winning_outcome,
        )


class MarketListResponse(BaseModel):
    items: list[MarketListItem]
    total: int


class MarketDetail(BaseModel):
    id: str
    title: str
    status: str
    outcome_count: int
    asset_tag: str
    stable_tag: str
    trading_start_ms: int | None
    winning_outcome: int | None
    resolved_at_ms: int | None
    leading_outcome: int | None
    leader_flip_count: int
    escrow: EscrowOut
    spot_pool: PoolOut
    pools: list[PoolOut]

    @classmethod
    def from_context(cls, ctx: MarketContext, now_ms: int) -> "MarketDetail":
        market = ctx.market
        pools = [p for p in market.pools if p is not None]
        return cls(
            id=market.id,
            title=ctx.title,
            status=market.status.value,
            outcome_count=market.outcome_count,
            asset_tag=market.asset_tag,
            stable_tag=market.stable_tag,
            trading_start_ms=market.trading_start_ms,
            winning_outcome=market.winning_outcome,
            resolved_at_ms=market.resolved_at_ms,
            leading_outcome=market.leading_outcome() if market.is_trading else None,
            leader_flip_count=market.metrics.flip_count,
            escrow=EscrowOut.from_view(ctx.escrow.view()),
            spot_pool=PoolOut.from_domain(ctx.spot_pool, now_ms),
            pools=[PoolOut.from_domain(p, now_ms) for p in pools],
        )


class EngineEventOut(BaseModel):
    id: int
    market_id: str
    outcome_index: int | None
    event_type: str
    payload: dict[str, Any]
    created_at: datetime


class EngineEventListResponse(BaseModel):
    items: list[EngineEventOut]
    next_before_id: int | None
