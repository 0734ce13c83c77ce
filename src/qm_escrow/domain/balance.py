"""ConditionalMarketBalance: a caller-owned bag of per-outcome positions.

Holds asset and stable amounts for every outcome of one market without
materializing per-outcome coins, so a trader can batch swaps across
outcomes and settle once. Amounts enter and leave only through the
escrow (split/wrap/swap credit in, recombine/unwrap/swap debit out), which
keeps the escrow's wrapped counters in step.

The object carries value: it cannot be copied, and it is retired only by
destroy_empty() once every position is zero, or handed over with transfer().
"""

from typing import Any

from src.qm_common.enums import AssetKind
from src.qm_common.errors import (
    BalanceNotEmptyError,
    InputError,
    InsufficientBalanceError,
    OutcomeOutOfBoundsError,
    ProgressStateError,
)
from src.qm_common.id_generator import generate_id


class ConditionalMarketBalance:
    def __init__(self, market_id: str, outcome_count: int, owner: str | None = None) -> None:
        if outcome_count < 1:
            raise InputError(1002, f"outcome_count must be >= 1, got {outcome_count}", 422)
        self.id = generate_id("bal")
        self.market_id = market_id
        self.outcome_count = outcome_count
        self.owner = owner
        self.destroyed = False
        self._asset = [0] * outcome_count
        self._stable = [0] * outcome_count

    def _side(self, kind: AssetKind) -> list[int]:
        return self._asset if kind == AssetKind.ASSET else self._stable

    def _check(self, outcome_idx: int) -> None:
        if self.destroyed:
            raise ProgressStateError(f"balance {self.id} was destroyed")
        if not (0 <= outcome_idx < self.outcome_count):
            raise OutcomeOutOfBoundsError(outcome_idx, self.outcome_count)

    def get(self, outcome_idx: int, kind: AssetKind) -> int:
        self._check(outcome_idx)
        return self._side(kind)[outcome_idx]

    def add(self, outcome_idx: int, kind: AssetKind, amount: int) -> None:
        self._check(outcome_idx)
        if amount < 0:
            raise InputError(1016, f"Negative balance credit: {amount}", 422)
        self._side(kind)[outcome_idx] += amount

    def sub(self, outcome_idx: int, kind: AssetKind, amount: int) -> None:
        self._check(outcome_idx)
        side = self._side(kind)
        if amount > side[outcome_idx]:
            raise InsufficientBalanceError(outcome_idx, amount, side[outcome_idx])
        side[outcome_idx] -= amount

    def complete_set_size(self, kind: AssetKind) -> int:
        """Largest amount recombinable right now: the minimum across outcomes."""
        return min(self._side(kind))

    def positions(self) -> list[tuple[int, int]]:
        """(asset, stable) per outcome."""
        return list(zip(self._asset, self._stable))

    @property
    def is_empty(self) -> bool:
        return not any(self._asset) and not any(self._stable)

    def destroy_empty(self) -> None:
        if not self.is_empty:
            raise BalanceNotEmptyError(self.id)
        self.destroyed = True

    def transfer(self, new_owner: str) -> None:
        if self.destroyed:
            raise ProgressStateError(f"balance {self.id} was destroyed")
        self.owner = new_owner

    def __copy__(self) -> "ConditionalMarketBalance":
        raise TypeError("ConditionalMarketBalance cannot be copied")

    def __deepcopy__(self, memo: dict[int, Any]) -> "ConditionalMarketBalance":
        raise TypeError("ConditionalMarketBalance cannot be copied")

    def snapshot(self) -> tuple[list[int], list[int], str | None, bool]:
        return (list(self._asset), list(self._stable), self.owner, self.destroyed)

    def restore(self, snapshot: tuple[list[int], list[int], str | None, bool]) -> None:
        asset, stable, self.owner, self.destroyed = snapshot
        self._asset = list(asset)
        self._stable = list(stable)
