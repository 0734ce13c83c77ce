"""Coins and conditional token caps.

Each outcome's conditional token is its own asset, identified by an opaque
tag. A ConditionalTokenCap is the mint/burn authority for one
(outcome, side) pair; the escrow dispatches on the tag instead of on
distinct coin types.
"""

from dataclasses import dataclass

from src.qm_common.enums import AssetKind
from src.qm_common.errors import AssetTagMismatchError, InputError, ZeroAmountError


@dataclass
class Coin:
    tag: str
    value: int

    def __post_init__(self) -> None:
        if self.value < 0:
            raise InputError(1016, f"Coin value cannot be negative: {self.value}", 422)

    @classmethod
    def zero(cls, tag: str) -> "Coin":
        return cls(tag=tag, value=0)

    def split(self, amount: int) -> "Coin":
        if amount <= 0:
            raise ZeroAmountError("split amount")
        if amount > self.value:
            raise InputError(1016, f"Cannot split {amount} from coin of {self.value}", 422)
        self.value -= amount
        return Coin(tag=self.tag, value=amount)

    def join(self, other: "Coin") -> None:
        if other.tag != self.tag:
            raise AssetTagMismatchError(self.tag, other.tag)
        self.value += other.value
        other.value = 0

    def take_all(self) -> int:
        """Empty the coin and return what it held."""
        value, self.value = self.value, 0
        return value

    def snapshot(self) -> int:
        return self.value

    def restore(self, snapshot: int) -> None:
        self.value = snapshot


@dataclass(frozen=True)
class ConditionalTokenCap:
    outcome_index: int
    kind: AssetKind
    tag: str

    @classmethod
    def for_outcome(
        cls, market_id: str, outcome_index: int, kind: AssetKind
    ) -> "ConditionalTokenCap":
        return cls(
            outcome_index=outcome_index,
            kind=kind,
            tag=f"{market_id}:cond{outcome_index}:{kind.value.lower()}",
        )
