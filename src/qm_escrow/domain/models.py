"""Structured results of escrow operations: pure dataclasses."""

from dataclasses import dataclass

from src.qm_common.enums import AssetKind


@dataclass(frozen=True)
class CompleteSetDelta:
    """Balance/supply change of one split or recombine."""

    kind: AssetKind
    amount: int               # per outcome
    spot_balance: int         # escrow spot balance of `kind` afterwards
    supply: tuple[int, ...]   # per-outcome supply of `kind` afterwards


@dataclass(frozen=True)
class EscrowView:
    market_id: str
    spot_asset_balance: int
    spot_stable_balance: int
    asset_supply: tuple[int, ...]
    stable_supply: tuple[int, ...]
    wrapped_asset: tuple[int, ...]
    wrapped_stable: tuple[int, ...]
    registered_outcomes: int
