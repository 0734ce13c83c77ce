"""MarketApplicationService: thin composition layer over the trading engine.

Reads come straight from the engine's in-memory contexts. create_market
journals through the caller's session and commits it; the engine has
already restored its own state if anything inside failed.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from src.qm_amm.domain.fee_schedule import FeeSchedule
from src.qm_amm.domain.oracle import TwapConfig
from src.qm_common.enums import EngineEventType, MarketStatus
from src.qm_common.errors import InputError
from src.qm_escrow.domain.coins import Coin
from src.qm_journal.infrastructure.journal import list_engine_events
from src.qm_market.application.schemas import (
    CreateMarketRequest,
    EngineEventListResponse,
    EngineEventOut,
    MarketDetail,
    MarketListItem,
    MarketListResponse,
    PoolOut,
)
from src.qm_trading.application.service import get_trading_engine
from src.qm_trading.engine.engine import ConditionalTradingEngine


class MarketApplicationService:
    def __init__(self, engine: ConditionalTradingEngine | None = None) -> None:
        self._engine = engine

    @property
    def engine(self) -> ConditionalTradingEngine:
        return self._engine or get_trading_engine()

    async def list_markets(self, status: str | None) -> MarketListResponse:
        # status=None or 'ALL' -> no filter
        contexts = self.engine.list_contexts()
        if status and status != "ALL":
            try:
                wanted = MarketStatus(status)
            except ValueError:
                raise InputError(1016, f"Unknown market status: {status}", 422) from None
            contexts = [c for c in contexts if c.market.status == wanted]
        items = [MarketListItem.from_context(c) for c in contexts]
        return MarketListResponse(items=items, total=len(items))

    async def get_market(self, market_id: str) -> MarketDetail:
        ctx = self.engine.get_context(market_id)
        return MarketDetail.from_context(ctx, self.engine.clock.now_ms())

    async def get_pool(self, market_id: str, outcome_index: int) -> PoolOut:
        ctx = self.engine.get_context(market_id)
        pool = ctx.market.pool(outcome_index)
        return PoolOut.from_domain(pool, self.engine.clock.now_ms())

    async def create_market(self, db: AsyncSession, req: CreateMarketRequest) -> MarketDetail:
        fee_schedule = None
        if req.initial_fee_bps is not None:
            fee_schedule = FeeSchedule(initial_fee_bps=req.initial_fee_bps, duration_ms=req.fee_decay_ms)
        twap_config = TwapConfig(
            start_delay_ms=req.twap_start_delay_ms, max_step_bps=req.twap_max_step_bps
        )
        try:
            ctx = await self.engine.create_market(
                req.outcome_count,
                Coin(tag=req.asset_tag, value=req.spot_asset_reserve),
                Coin(tag=req.stable_tag, value=req.spot_stable_reserve),
                Coin(tag=req.asset_tag, value=req.conditional_asset_amount),
                Coin(tag=req.stable_tag, value=req.conditional_stable_amount),
                req.fee_bps,
                market_id=req.market_id,
                title=req.title,
                fee_schedule=fee_schedule,
                twap_config=twap_config,
                db=db,
            )
        except Exception:
            await db.rollback()
            raise
        return MarketDetail.from_context(ctx, self.engine.clock.now_ms())

    async def list_events(
        self,
        db: AsyncSession,
        market_id: str,
        event_type: str | None,
        before_id: int | None,
        limit: int,
    ) -> EngineEventListResponse:
        self.engine.get_context(market_id)
        try:
            kind = EngineEventType(event_type) if event_type else None
        except ValueError:
            raise InputError(1016, f"Unknown event type: {event_type}", 422) from None
        rows = await list_engine_events(market_id, db, kind, before_id, limit + 1)
        has_more = len(rows) > limit
        page = rows[:limit]
        items = [EngineEventOut(**row) for row in page]
        return EngineEventListResponse(
            items=items, next_before_id=page[-1]["id"] if has_more and page else None
        )
