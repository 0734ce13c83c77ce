"""Swap sessions over outcome pools.

A SwapSession is a linear value: begin_swap_session issues it, any number
of per-outcome swaps run against it, and finalize_swap_session retires it.
Finalizing feeds the early-resolve metrics once per batch, so a trader
hopping across outcomes counts as one leader observation rather than one
per swap.
"""

import logging

from src.qm_amm.domain.models import SwapResult
from src.qm_common.atomic import atomic
from src.qm_common.enums import AssetKind, SwapDirection
from src.qm_common.errors import MarketMismatchError, ProgressStateError
from src.qm_common.linear import LinearValue
from src.qm_escrow.domain.balance import ConditionalMarketBalance
from src.qm_escrow.domain.coins import Coin
from src.qm_escrow.domain.escrow import TokenEscrow

logger = logging.getLogger(__name__)


class SwapSession(LinearValue):
    escrow_id: str
    market_id: str
    swap_count: int

    def _bind(self, escrow: TokenEscrow) -> None:
        self._ensure_live()
        if escrow.id != self.escrow_id:
            raise ProgressStateError(f"session belongs to escrow {self.escrow_id}")

    def _count(self) -> None:
        object.__setattr__(self, "swap_count", self.swap_count + 1)

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError("SwapSession is advanced only by swaps")


def begin_swap_session(escrow: TokenEscrow) -> SwapSession:
    escrow.market.ensure_trading()
    return SwapSession._issue(escrow_id=escrow.id, market_id=escrow.market_id, swap_count=0)


def finalize_swap_session(session: SwapSession, escrow: TokenEscrow, now_ms: int) -> bool:
    """Retire the session and record the leading outcome. Returns True on a leader flip."""
    session._bind(escrow)
    market = escrow.market
    escrow.assert_quantum_invariant()
    flipped = False
    if session.swap_count and market.is_trading:
        flipped = market.metrics.observe(market.leading_outcome(), now_ms)
    session._consume()
    if flipped:
        logger.info(
            "Market %s leader flipped to outcome %d (flips=%d)",
            market.id, market.metrics.leader, market.metrics.flip_count,
        )
    return flipped


def abandon_swap_session(session: SwapSession) -> None:
    """Retire a session whose enclosing operation is being rolled back.

    No metrics are recorded; the caller's atomic block restores the swaps.
    """
    session._consume()
    logger.debug("Swap session abandoned after %d swaps", session.swap_count)


def _balance_swap(
    session: SwapSession,
    escrow: TokenEscrow,
    balance: ConditionalMarketBalance,
    outcome_idx: int,
    direction: SwapDirection,
    amount_in: int,
    min_out: int,
    now_ms: int,
) -> SwapResult:
    session._bind(escrow)
    escrow.market.ensure_trading()
    if balance.market_id != escrow.market_id:
        raise MarketMismatchError(escrow.market_id, balance.market_id)
    pool = escrow.market.pool(outcome_idx)
    kind_in, kind_out = _sides(direction)

    with atomic(escrow, balance, pool):
        escrow.debit_balance(balance, outcome_idx, kind_in, amount_in)
        if direction == SwapDirection.ASSET_TO_STABLE:
            result = pool.swap_asset_to_stable(amount_in, min_out, now_ms)
        else:
            result = pool.swap_stable_to_asset(amount_in, min_out, now_ms)
        escrow.credit_balance(balance, outcome_idx, kind_out, result.amount_out)
        escrow.assert_quantum_invariant()
    session._count()
    return result


def swap_balance_asset_to_stable(
    session: SwapSession,
    escrow: TokenEscrow,
    balance: ConditionalMarketBalance,
    outcome_idx: int,
    amount_in: int,
    min_out: int,
    now_ms: int,
) -> SwapResult:
    return _balance_swap(
        session, escrow, balance, outcome_idx,
        SwapDirection.ASSET_TO_STABLE, amount_in, min_out, now_ms,
    )


def swap_balance_stable_to_asset(
    session: SwapSession,
    escrow: TokenEscrow,
    balance: ConditionalMarketBalance,
    outcome_idx: int,
    amount_in: int,
    min_out: int,
    now_ms: int,
) -> SwapResult:
    return _balance_swap(
        session, escrow, balance, outcome_idx,
        SwapDirection.STABLE_TO_ASSET, amount_in, min_out, now_ms,
    )


def _coin_swap(
    session: SwapSession,
    escrow: TokenEscrow,
    outcome_idx: int,
    coin: Coin,
    direction: SwapDirection,
    min_out: int,
    now_ms: int,
) -> Coin:
    session._bind(escrow)
    escrow.market.ensure_trading()
    pool = escrow.market.pool(outcome_idx)
    kind_in, kind_out = _sides(direction)

    with atomic(escrow, pool, coin):
        amount_in = escrow.absorb_into_pool(outcome_idx, kind_in, coin)
        if direction == SwapDirection.ASSET_TO_STABLE:
            result = pool.swap_asset_to_stable(amount_in, min_out, now_ms)
        else:
            result = pool.swap_stable_to_asset(amount_in, min_out, now_ms)
        out = escrow.issue_from_pool(outcome_idx, kind_out, result.amount_out)
        escrow.assert_quantum_invariant()
    session._count()
    return out


def swap_asset_to_stable(
    session: SwapSession,
    escrow: TokenEscrow,
    outcome_idx: int,
    coin: Coin,
    min_out: int,
    now_ms: int,
) -> Coin:
    """Typed variant: pay a conditional asset coin, receive a conditional stable coin."""
    return _coin_swap(
        session, escrow, outcome_idx, coin, SwapDirection.ASSET_TO_STABLE, min_out, now_ms
    )


def swap_stable_to_asset(
    session: SwapSession,
    escrow: TokenEscrow,
    outcome_idx: int,
    coin: Coin,
    min_out: int,
    now_ms: int,
) -> Coin:
    return _coin_swap(
        session, escrow, outcome_idx, coin, SwapDirection.STABLE_TO_ASSET, min_out, now_ms
    )


def _sides(direction: SwapDirection) -> tuple[AssetKind, AssetKind]:
    if direction == SwapDirection.ASSET_TO_STABLE:
        return AssetKind.ASSET, AssetKind.STABLE
    return AssetKind.STABLE, AssetKind.ASSET
