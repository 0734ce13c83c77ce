"""Structured results returned by pool operations: pure dataclasses."""

from dataclasses import dataclass

from src.qm_common.enums import SwapDirection


@dataclass(frozen=True)
class SwapResult:
    direction: SwapDirection
    amount_in: int
    amount_out: int
    fee_bps: int
    fee_amount: int      # input-side fee, part of which stays in reserves
    protocol_fee: int    # moved out of reserves into protocol_fees_*
    asset_reserve: int   # post-swap
    stable_reserve: int  # post-swap


@dataclass(frozen=True)
class LiquidityResult:
    lp_amount: int       # minted on add, burned on remove
    asset_amount: int    # deposited on add, paid out on remove
    stable_amount: int
    asset_reserve: int   # post-op
    stable_reserve: int
    lp_supply: int
