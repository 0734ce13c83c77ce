"""Typed complete-set progress objects.

A typed split or recombine touches N distinct conditional tokens, so it is
run as begin -> one step per outcome (ascending) -> finish. The progress
object is the linear value threaded through those calls: only the escrow
issues it, each step advances `next_index` by one, and finish refuses to
retire it until every outcome was visited.

Steps only record coins. Supplies, spot collateral and coin values change
in finish alone, so a progress dropped halfway leaves everything as it was.
"""

from src.qm_common.enums import AssetKind
from src.qm_common.errors import ProgressStateError
from src.qm_common.linear import LinearValue
from src.qm_escrow.domain.coins import Coin


class _CompleteSetProgress(LinearValue):
    escrow_id: str
    kind: AssetKind
    amount: int
    outcome_count: int
    next_index: int
    coins: tuple[Coin, ...]

    def expect(self, escrow_id: str, outcome_idx: int) -> None:
        """Raise unless outcome_idx is the next step for this escrow."""
        self._ensure_live()
        if escrow_id != self.escrow_id:
            raise ProgressStateError(f"progress belongs to escrow {self.escrow_id}")
        if self.next_index >= self.outcome_count:
            raise ProgressStateError("all outcomes already processed")
        if outcome_idx != self.next_index:
            raise ProgressStateError(f"expected outcome {self.next_index}, got {outcome_idx}")

    def advance(self, escrow_id: str, outcome_idx: int, coin: Coin) -> None:
        self.expect(escrow_id, outcome_idx)
        object.__setattr__(self, "coins", self.coins + (coin,))
        object.__setattr__(self, "next_index", self.next_index + 1)

    def close(self, escrow_id: str) -> None:
        self._ensure_live()
        if escrow_id != self.escrow_id:
            raise ProgressStateError(f"progress belongs to escrow {self.escrow_id}")
        if self.next_index != self.outcome_count:
            raise ProgressStateError(
                f"finished after {self.next_index} of {self.outcome_count} outcomes"
            )
        self._consume()

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError(f"{type(self).__name__} is advanced only through the escrow")


class SplitProgress(_CompleteSetProgress):
    """Holds the caller's spot coin; each step hands out one empty outcome coin."""
    deposit: Coin


class RecombineProgress(_CompleteSetProgress):
    """Each step records one outcome's coin; finish burns them all and pays spot."""
