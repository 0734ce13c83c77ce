"""TokenEscrow: the shared spot-collateral ledger of one proposal.

Quantum liquidity: one unit of spot collateral backs one unit of
conditional supply in every outcome at once, because only one outcome is
ever realized. Deposits are therefore never divided across outcomes, and
the integrity check is per outcome, not a sum:

  INV-Q1: spot_asset_balance  >= asset_supply[i]   for every outcome i
  INV-Q2: spot_stable_balance >= stable_supply[i]  for every outcome i
  INV-Q3: supply[i] >= wrapped[i] + pool reserve[i] (each side)

supply[i] counts every conditional unit of outcome i in existence: typed
coins, units held in ConditionalMarketBalance objects (wrapped[i]) and the
outcome pool's reserves. Once the market is resolved only the winning
outcome is checked.

Every composite operation runs inside `atomic` over the escrow, the
balance and the coins it touches, and re-checks the invariant before
leaving, so a violation rolls the whole operation back.
"""

import logging
from typing import Any

from src.qm_common.atomic import atomic
from src.qm_common.enums import AssetKind
from src.qm_common.errors import (
    AssetTagMismatchError,
    CapMismatchError,
    CapsNotRegisteredError,
    IncompleteSetError,
    InsufficientCollateralError,
    InsufficientSupplyError,
    MarketMismatchError,
    NotWinningOutcomeError,
    OutcomeOutOfBoundsError,
    QuantumInvariantViolation,
    RegistrationOutOfSequenceError,
    ZeroAmountError,
)
from src.qm_common.id_generator import generate_id
from src.qm_escrow.domain.balance import ConditionalMarketBalance
from src.qm_escrow.domain.coins import Coin, ConditionalTokenCap
from src.qm_escrow.domain.models import CompleteSetDelta, EscrowView
from src.qm_escrow.domain.progress import RecombineProgress, SplitProgress
from src.qm_market.domain.market_state import MarketState

logger = logging.getLogger(__name__)


class TokenEscrow:
    def __init__(self, market: MarketState) -> None:
        n = market.outcome_count
        self.id = generate_id("esc")
        self.market = market
        self.spot_asset_balance = 0
        self.spot_stable_balance = 0
        self.asset_supply = [0] * n
        self.stable_supply = [0] * n
        self.wrapped_asset = [0] * n
        self.wrapped_stable = [0] * n
        # Arena of cap slots filled strictly in order 0..n-1.
        self._asset_caps: list[ConditionalTokenCap | None] = [None] * n
        self._stable_caps: list[ConditionalTokenCap | None] = [None] * n
        self.next_registration_index = 0

    @property
    def market_id(self) -> str:
        return self.market.id

    @property
    def outcome_count(self) -> int:
        return self.market.outcome_count

    @property
    def caps_registered(self) -> bool:
        return self.next_registration_index == self.outcome_count

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_conditional_caps(
        self,
        outcome_idx: int,
        asset_cap: ConditionalTokenCap,
        stable_cap: ConditionalTokenCap,
    ) -> None:
        if not (0 <= outcome_idx < self.outcome_count):
            raise OutcomeOutOfBoundsError(outcome_idx, self.outcome_count)
        if outcome_idx != self.next_registration_index:
            raise RegistrationOutOfSequenceError(outcome_idx, self.next_registration_index)
        for cap, kind in ((asset_cap, AssetKind.ASSET), (stable_cap, AssetKind.STABLE)):
            if cap.outcome_index != outcome_idx or cap.kind != kind:
                raise CapMismatchError(
                    f"slot ({outcome_idx}, {kind.value}) got ({cap.outcome_index}, {cap.kind.value})"
                )
        if asset_cap.tag in (self.market.asset_tag, self.market.stable_tag) or (
            stable_cap.tag in (self.market.asset_tag, self.market.stable_tag)
        ):
            raise CapMismatchError("conditional tag collides with a spot tag")

        self._asset_caps[outcome_idx] = asset_cap
        self._stable_caps[outcome_idx] = stable_cap
        self.next_registration_index += 1
        logger.debug("Escrow %s registered caps for outcome %d", self.id, outcome_idx)

    def register_default_caps(self) -> None:
        """Register market-derived caps for every outcome still missing one."""
        for idx in range(self.next_registration_index, self.outcome_count):
            self.register_conditional_caps(
                idx,
                ConditionalTokenCap.for_outcome(self.market_id, idx, AssetKind.ASSET),
                ConditionalTokenCap.for_outcome(self.market_id, idx, AssetKind.STABLE),
            )

    def cap(self, outcome_idx: int, kind: AssetKind) -> ConditionalTokenCap:
        self.market.validate_outcome(outcome_idx)
        caps = self._asset_caps if kind == AssetKind.ASSET else self._stable_caps
        cap = caps[outcome_idx]
        if cap is None:
            raise CapsNotRegisteredError(outcome_idx)
        return cap

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def spot_tag(self, kind: AssetKind) -> str:
        return self.market.asset_tag if kind == AssetKind.ASSET else self.market.stable_tag

    def spot_kind_of(self, coin: Coin) -> AssetKind:
        if coin.tag == self.market.asset_tag:
            return AssetKind.ASSET
        if coin.tag == self.market.stable_tag:
            return AssetKind.STABLE
        raise AssetTagMismatchError(
            f"{self.market.asset_tag}|{self.market.stable_tag}", coin.tag
        )

    def spot_balance(self, kind: AssetKind) -> int:
        return self.spot_asset_balance if kind == AssetKind.ASSET else self.spot_stable_balance

    def supply(self, kind: AssetKind) -> list[int]:
        return self.asset_supply if kind == AssetKind.ASSET else self.stable_supply

    def wrapped(self, kind: AssetKind) -> list[int]:
        return self.wrapped_asset if kind == AssetKind.ASSET else self.wrapped_stable

    def view(self) -> EscrowView:
        return EscrowView(
            market_id=self.market_id,
            spot_asset_balance=self.spot_asset_balance,
            spot_stable_balance=self.spot_stable_balance,
            asset_supply=tuple(self.asset_supply),
            stable_supply=tuple(self.stable_supply),
            wrapped_asset=tuple(self.wrapped_asset),
            wrapped_stable=tuple(self.wrapped_stable),
            registered_outcomes=self.next_registration_index,
        )

    def _add_spot(self, kind: AssetKind, amount: int) -> None:
        if kind == AssetKind.ASSET:
            self.spot_asset_balance += amount
        else:
            self.spot_stable_balance += amount

    def _take_spot(self, kind: AssetKind, amount: int) -> Coin:
        available = self.spot_balance(kind)
        if amount > available:
            raise InsufficientCollateralError(amount, available)
        self._add_spot(kind, -amount)
        return Coin(tag=self.spot_tag(kind), value=amount)

    def _expect_conditional(self, coin: Coin, outcome_idx: int) -> AssetKind:
        """Resolve a conditional coin's side from its tag, checking it belongs to outcome_idx."""
        asset_cap = self.cap(outcome_idx, AssetKind.ASSET)
        stable_cap = self.cap(outcome_idx, AssetKind.STABLE)
        if coin.tag == asset_cap.tag:
            return AssetKind.ASSET
        if coin.tag == stable_cap.tag:
            return AssetKind.STABLE
        raise AssetTagMismatchError(f"{asset_cap.tag}|{stable_cap.tag}", coin.tag)

    def _check_balance(self, balance: ConditionalMarketBalance) -> None:
        if balance.market_id != self.market_id:
            raise MarketMismatchError(self.market_id, balance.market_id)

    # ------------------------------------------------------------------
    # Raw mint / burn (authority: registered caps)
    # ------------------------------------------------------------------

    def _mint(self, outcome_idx: int, kind: AssetKind, amount: int) -> Coin:
        self.market.ensure_not_resolved()
        cap = self.cap(outcome_idx, kind)
        if amount <= 0:
            raise ZeroAmountError("mint amount")
        supply = self.supply(kind)
        if supply[outcome_idx] + amount > self.spot_balance(kind):
            raise QuantumInvariantViolation(
                f"minting {amount} {kind.value} in outcome {outcome_idx} exceeds spot backing "
                f"{self.spot_balance(kind)} (supply {supply[outcome_idx]})"
            )
        supply[outcome_idx] += amount
        return Coin(tag=cap.tag, value=amount)

    def _burn(self, outcome_idx: int, kind: AssetKind, amount: int) -> None:
        if amount <= 0:
            raise ZeroAmountError("burn amount")
        supply = self.supply(kind)
        if amount > supply[outcome_idx]:
            raise InsufficientSupplyError(outcome_idx, amount, supply[outcome_idx])
        supply[outcome_idx] -= amount

    def mint_conditional_asset(self, outcome_idx: int, amount: int) -> Coin:
        return self._mint(outcome_idx, AssetKind.ASSET, amount)

    def mint_conditional_stable(self, outcome_idx: int, amount: int) -> Coin:
        return self._mint(outcome_idx, AssetKind.STABLE, amount)

    def burn_conditional_asset(self, outcome_idx: int, coin: Coin) -> None:
        self._burn_coin(outcome_idx, AssetKind.ASSET, coin)

    def burn_conditional_stable(self, outcome_idx: int, coin: Coin) -> None:
        self._burn_coin(outcome_idx, AssetKind.STABLE, coin)

    def _burn_coin(self, outcome_idx: int, kind: AssetKind, coin: Coin) -> None:
        if self._expect_conditional(coin, outcome_idx) != kind:
            raise AssetTagMismatchError(self.cap(outcome_idx, kind).tag, coin.tag)
        self._burn(outcome_idx, kind, coin.value)
        coin.take_all()

    # ------------------------------------------------------------------
    # Spot deposits / withdrawals
    # ------------------------------------------------------------------

    def deposit_spot_coins(self, asset_coin: Coin, stable_coin: Coin) -> None:
        """Add spot collateral without minting; either coin may be zero."""
        with atomic(self, asset_coin, stable_coin):
            if asset_coin.tag != self.market.asset_tag:
                raise AssetTagMismatchError(self.market.asset_tag, asset_coin.tag)
            if stable_coin.tag != self.market.stable_tag:
                raise AssetTagMismatchError(self.market.stable_tag, stable_coin.tag)
            self._add_spot(AssetKind.ASSET, asset_coin.take_all())
            self._add_spot(AssetKind.STABLE, stable_coin.take_all())
            self.assert_quantum_invariant()

    def withdraw_spot(self, kind: AssetKind, amount: int) -> Coin:
        """Release collateral not needed to back any outcome's supply."""
        if amount <= 0:
            raise ZeroAmountError("withdraw amount")
        required = max(self.supply(kind))
        available = self.spot_balance(kind)
        if available - amount < required:
            raise InsufficientCollateralError(required + amount, available)
        with atomic(self):
            coin = self._take_spot(kind, amount)
            self.assert_quantum_invariant()
        return coin

    def deposit_and_mint_conditional(self, outcome_idx: int, spot_coin: Coin) -> Coin:
        """Deposit spot and mint the same amount for one outcome only.

        Every outcome's supply may independently climb to the shared spot
        balance, so nothing is divided across outcomes here.
        """
        self.market.validate_outcome(outcome_idx)
        with atomic(self, spot_coin):
            kind = self.spot_kind_of(spot_coin)
            amount = spot_coin.value
            if amount <= 0:
                raise ZeroAmountError("deposit amount")
            self._add_spot(kind, spot_coin.take_all())
            minted = self._mint(outcome_idx, kind, amount)
            self.assert_quantum_invariant()
        return minted

    def burn_and_withdraw_conditional(self, outcome_idx: int, coin: Coin) -> Coin:
        """Inverse of deposit_and_mint_conditional.

        Succeeds only while every other outcome stays backed; after
        resolution use redeem_winning.
        """
        self.market.ensure_not_resolved()
        with atomic(self, coin):
            kind = self._expect_conditional(coin, outcome_idx)
            amount = coin.value
            self._burn_coin(outcome_idx, kind, coin)
            required = max(self.supply(kind))
            if self.spot_balance(kind) - amount < required:
                raise InsufficientCollateralError(required + amount, self.spot_balance(kind))
            spot = self._take_spot(kind, amount)
            self.assert_quantum_invariant()
        return spot

    # ------------------------------------------------------------------
    # Balance-based complete sets
    # ------------------------------------------------------------------

    def split_to_balance(
        self, balance: ConditionalMarketBalance, spot_coin: Coin
    ) -> CompleteSetDelta:
        """Complete-set mint straight into a balance: +amount in every outcome."""
        self._check_balance(balance)
        self.market.ensure_not_resolved()
        with atomic(self, balance, spot_coin):
            kind = self.spot_kind_of(spot_coin)
            amount = spot_coin.value
            if amount <= 0:
                raise ZeroAmountError("split amount")
            self._add_spot(kind, spot_coin.take_all())
            for idx in range(self.outcome_count):
                self._mint(idx, kind, amount)
                self.credit_balance(balance, idx, kind, amount)
            self.assert_quantum_invariant()
        logger.debug("Split %d %s into balance %s", amount, kind.value, balance.id)
        return self._delta(kind, amount)

    def recombine_from_balance(
        self, balance: ConditionalMarketBalance, kind: AssetKind, amount: int
    ) -> Coin:
        """Close `amount` complete sets held in a balance; returns spot collateral."""
        self._check_balance(balance)
        self.market.ensure_not_resolved()
        if amount <= 0:
            raise ZeroAmountError("recombine amount")
        available = balance.complete_set_size(kind)
        if amount > available:
            raise IncompleteSetError(amount, available)
        with atomic(self, balance):
            for idx in range(self.outcome_count):
                self.debit_balance(balance, idx, kind, amount)
                self._burn(idx, kind, amount)
            spot = self._take_spot(kind, amount)
            self.assert_quantum_invariant()
        logger.debug("Recombined %d %s from balance %s", amount, kind.value, balance.id)
        return spot

    def wrap_coin(
        self, balance: ConditionalMarketBalance, outcome_idx: int, coin: Coin
    ) -> None:
        """Move a typed conditional coin into a balance. Supply is unchanged."""
        self._check_balance(balance)
        with atomic(self, balance, coin):
            kind = self._expect_conditional(coin, outcome_idx)
            amount = coin.take_all()
            if amount <= 0:
                raise ZeroAmountError("wrap amount")
            self.credit_balance(balance, outcome_idx, kind, amount)
            self.assert_quantum_invariant()

    def unwrap_to_coin(
        self, balance: ConditionalMarketBalance, outcome_idx: int, kind: AssetKind, amount: int
    ) -> Coin:
        """Materialize part of a balance as a typed conditional coin."""
        self._check_balance(balance)
        if amount <= 0:
            raise ZeroAmountError("unwrap amount")
        with atomic(self, balance):
            cap = self.cap(outcome_idx, kind)
            self.debit_balance(balance, outcome_idx, kind, amount)
            self.assert_quantum_invariant()
        return Coin(tag=cap.tag, value=amount)

    def credit_balance(
        self, balance: ConditionalMarketBalance, outcome_idx: int, kind: AssetKind, amount: int
    ) -> None:
        """Units already counted in supply move into a balance (split, swap output)."""
        balance.add(outcome_idx, kind, amount)
        self.wrapped(kind)[outcome_idx] += amount

    def debit_balance(
        self, balance: ConditionalMarketBalance, outcome_idx: int, kind: AssetKind, amount: int
    ) -> None:
        """Units leave a balance but stay in supply (recombine burns them after)."""
        balance.sub(outcome_idx, kind, amount)
        self.wrapped(kind)[outcome_idx] -= amount

    def burn_balance_residual(self, balance: ConditionalMarketBalance) -> dict[AssetKind, list[int]]:
        """Burn everything left in a balance and retire it.

        The collateral that backed the burned units stays in the escrow as
        surplus, recoverable with sweep_surplus() after resolution.
        """
        self._check_balance(balance)
        burned: dict[AssetKind, list[int]] = {AssetKind.ASSET: [], AssetKind.STABLE: []}
        with atomic(self, balance):
            for idx in range(self.outcome_count):
                for kind in (AssetKind.ASSET, AssetKind.STABLE):
                    amount = balance.get(idx, kind)
                    burned[kind].append(amount)
                    if amount:
                        self.debit_balance(balance, idx, kind, amount)
                        self._burn(idx, kind, amount)
            balance.destroy_empty()
            self.assert_quantum_invariant()
        return burned

    # ------------------------------------------------------------------
    # Pool movements (pool reserves are part of supply)
    # ------------------------------------------------------------------

    def issue_from_pool(self, outcome_idx: int, kind: AssetKind, amount: int) -> Coin:
        """A pool paid out `amount`; hand it over as a typed coin."""
        return Coin(tag=self.cap(outcome_idx, kind).tag, value=amount)

    def absorb_into_pool(self, outcome_idx: int, kind: AssetKind, coin: Coin) -> int:
        """A typed coin is paid into a pool; returns the amount taken."""
        if self._expect_conditional(coin, outcome_idx) != kind:
            raise AssetTagMismatchError(self.cap(outcome_idx, kind).tag, coin.tag)
        amount = coin.take_all()
        if amount <= 0:
            raise ZeroAmountError("swap input")
        return amount

    def seed_outcome_reserves(self, asset_coin: Coin, stable_coin: Coin) -> tuple[int, int]:
        """Quantum split of bootstrap liquidity: deposit once, back every outcome pool.

        Returns the per-outcome (asset, stable) reserves the caller must place
        in each outcome pool.
        """
        self.market.ensure_not_resolved()
        with atomic(self, asset_coin, stable_coin):
            if asset_coin.tag != self.market.asset_tag:
                raise AssetTagMismatchError(self.market.asset_tag, asset_coin.tag)
            if stable_coin.tag != self.market.stable_tag:
                raise AssetTagMismatchError(self.market.stable_tag, stable_coin.tag)
            asset_amount = asset_coin.take_all()
            stable_amount = stable_coin.take_all()
            if asset_amount <= 0 or stable_amount <= 0:
                raise ZeroAmountError("bootstrap liquidity")
            self._add_spot(AssetKind.ASSET, asset_amount)
            self._add_spot(AssetKind.STABLE, stable_amount)
            for idx in range(self.outcome_count):
                self._mint(idx, AssetKind.ASSET, asset_amount)
                self._mint(idx, AssetKind.STABLE, stable_amount)
            self.assert_quantum_invariant()
        return asset_amount, stable_amount

    def retire_pool_reserves(
        self, outcome_idx: int, asset_amount: int, stable_amount: int, winner: bool
    ) -> tuple[Coin, Coin]:
        """Resolution: burn an emptied pool's reserves.

        The winning pool's reserves are recombined into spot coins; losing
        reserves are simply burned (their backing was never separate).
        """
        asset_out = Coin.zero(self.market.asset_tag)
        stable_out = Coin.zero(self.market.stable_tag)
        if asset_amount:
            self._burn(outcome_idx, AssetKind.ASSET, asset_amount)
        if stable_amount:
            self._burn(outcome_idx, AssetKind.STABLE, stable_amount)
        if winner:
            if asset_amount:
                asset_out = self._take_spot(AssetKind.ASSET, asset_amount)
            if stable_amount:
                stable_out = self._take_spot(AssetKind.STABLE, stable_amount)
        return asset_out, stable_out

    # ------------------------------------------------------------------
    # Typed start/step/finish complete sets
    # ------------------------------------------------------------------

    def begin_split(self, spot_coin: Coin) -> SplitProgress:
        """Check the deposit; the caller must then step every outcome in order."""
        self.market.ensure_not_resolved()
        if not self.caps_registered:
            raise CapsNotRegisteredError(self.next_registration_index)
        kind = self.spot_kind_of(spot_coin)
        if spot_coin.value <= 0:
            raise ZeroAmountError("split amount")
        return SplitProgress._issue(
            escrow_id=self.id, kind=kind, amount=spot_coin.value,
            outcome_count=self.outcome_count, next_index=0, coins=(), deposit=spot_coin,
        )

    def split_step(self, progress: SplitProgress, outcome_idx: int) -> Coin:
        """Hand out the outcome's coin, empty until finish_split fills it."""
        progress.expect(self.id, outcome_idx)
        coin = Coin.zero(self.cap(outcome_idx, progress.kind).tag)
        progress.advance(self.id, outcome_idx, coin)
        return coin

    def finish_split(self, progress: SplitProgress) -> CompleteSetDelta:
        progress.close(self.id)
        deposit = progress.deposit
        with atomic(self, deposit, *progress.coins):
            if deposit.value != progress.amount:
                raise IncompleteSetError(progress.amount, deposit.value)
            self._add_spot(progress.kind, deposit.take_all())
            for idx, coin in enumerate(progress.coins):
                coin.join(self._mint(idx, progress.kind, progress.amount))
            self.assert_quantum_invariant()
        return self._delta(progress.kind, progress.amount)

    def begin_recombine(self, kind: AssetKind, amount: int) -> RecombineProgress:
        self.market.ensure_not_resolved()
        if amount <= 0:
            raise ZeroAmountError("recombine amount")
        if not self.caps_registered:
            raise CapsNotRegisteredError(self.next_registration_index)
        return RecombineProgress._issue(
            escrow_id=self.id, kind=kind, amount=amount,
            outcome_count=self.outcome_count, next_index=0, coins=(),
        )

    def recombine_step(self, progress: RecombineProgress, outcome_idx: int, coin: Coin) -> None:
        """Check and record the outcome's coin; it is burned in finish_recombine."""
        progress.expect(self.id, outcome_idx)
        if self._expect_conditional(coin, outcome_idx) != progress.kind:
            raise AssetTagMismatchError(self.cap(outcome_idx, progress.kind).tag, coin.tag)
        if coin.value != progress.amount:
            raise IncompleteSetError(progress.amount, coin.value)
        progress.advance(self.id, outcome_idx, coin)

    def finish_recombine(self, progress: RecombineProgress) -> Coin:
        progress.close(self.id)
        with atomic(self, *progress.coins):
            for idx, coin in enumerate(progress.coins):
                if coin.value != progress.amount:
                    raise IncompleteSetError(progress.amount, coin.value)
                self._burn_coin(idx, progress.kind, coin)
            spot = self._take_spot(progress.kind, progress.amount)
            self.assert_quantum_invariant()
        return spot

    # ------------------------------------------------------------------
    # Resolution: redemption and surplus
    # ------------------------------------------------------------------

    def redeem_winning(self, coin: Coin) -> Coin:
        """Burn a winning-outcome conditional coin for the same amount of spot."""
        winner = self.market.ensure_resolved()
        for idx in range(self.outcome_count):
            if coin.tag in (self.cap(idx, AssetKind.ASSET).tag, self.cap(idx, AssetKind.STABLE).tag):
                if idx != winner:
                    raise NotWinningOutcomeError(idx, winner)
                break
        else:
            raise AssetTagMismatchError(f"conditional coin of outcome {winner}", coin.tag)
        with atomic(self, coin):
            kind = self._expect_conditional(coin, winner)
            amount = coin.value
            if amount <= 0:
                raise ZeroAmountError("redeem amount")
            self._burn_coin(winner, kind, coin)
            spot = self._take_spot(kind, amount)
            self.assert_quantum_invariant()
        return spot

    def redeem_winning_from_balance(self, balance: ConditionalMarketBalance) -> tuple[Coin, Coin]:
        """Pay out the winning outcome's positions held in a balance."""
        self._check_balance(balance)
        winner = self.market.ensure_resolved()
        with atomic(self, balance):
            out: list[Coin] = []
            for kind in (AssetKind.ASSET, AssetKind.STABLE):
                amount = balance.get(winner, kind)
                if amount:
                    self.debit_balance(balance, winner, kind, amount)
                    self._burn(winner, kind, amount)
                    out.append(self._take_spot(kind, amount))
                else:
                    out.append(Coin.zero(self.spot_tag(kind)))
            self.assert_quantum_invariant()
        return out[0], out[1]

    def sweep_surplus(self) -> tuple[Coin, Coin]:
        """After resolution, release collateral beyond the winner's outstanding supply."""
        winner = self.market.ensure_resolved()
        with atomic(self):
            coins = []
            for kind in (AssetKind.ASSET, AssetKind.STABLE):
                surplus = self.spot_balance(kind) - self.supply(kind)[winner]
                coins.append(
                    self._take_spot(kind, surplus) if surplus > 0 else Coin.zero(self.spot_tag(kind))
                )
            self.assert_quantum_invariant()
        logger.info("Escrow %s swept surplus asset=%d stable=%d", self.id, coins[0].value, coins[1].value)
        return coins[0], coins[1]

    # ------------------------------------------------------------------
    # Invariant
    # ------------------------------------------------------------------

    def assert_quantum_invariant(self) -> None:
        """Raise QuantumInvariantViolation unless every checked outcome is fully backed."""
        if self.market.is_resolved and self.market.winning_outcome is not None:
            outcomes = [self.market.winning_outcome]
        else:
            outcomes = list(range(self.outcome_count))

        for kind in (AssetKind.ASSET, AssetKind.STABLE):
            spot = self.spot_balance(kind)
            supply = self.supply(kind)
            wrapped = self.wrapped(kind)
            for idx in outcomes:
                if spot < supply[idx]:
                    msg = f"{kind.value} spot {spot} < supply[{idx}] {supply[idx]}"
                    logger.error("Escrow %s: %s", self.id, msg)
                    raise QuantumInvariantViolation(msg)
                pool = self.market.pools[idx]
                in_pool = 0
                if pool is not None and not pool.closed:
                    in_pool = pool.asset_reserve if kind == AssetKind.ASSET else pool.stable_reserve
                if wrapped[idx] < 0 or supply[idx] < wrapped[idx] + in_pool:
                    msg = (
                        f"{kind.value} supply[{idx}] {supply[idx]} < wrapped {wrapped[idx]} "
                        f"+ pool reserve {in_pool}"
                    )
                    logger.error("Escrow %s: %s", self.id, msg)
                    raise QuantumInvariantViolation(msg)

        logger.debug("Quantum invariant OK: escrow=%s outcomes=%s", self.id, outcomes)

    def _delta(self, kind: AssetKind, amount: int) -> CompleteSetDelta:
        return CompleteSetDelta(
            kind=kind,
            amount=amount,
            spot_balance=self.spot_balance(kind),
            supply=tuple(self.supply(kind)),
        )

    def snapshot(self) -> dict[str, Any]:
        return {
            "spot_asset_balance": self.spot_asset_balance,
            "spot_stable_balance": self.spot_stable_balance,
            "asset_supply": list(self.asset_supply),
            "stable_supply": list(self.stable_supply),
            "wrapped_asset": list(self.wrapped_asset),
            "wrapped_stable": list(self.wrapped_stable),
            "asset_caps": list(self._asset_caps),
            "stable_caps": list(self._stable_caps),
            "next_registration_index": self.next_registration_index,
        }

    def restore(self, snapshot: dict[str, Any]) -> None:
        self.spot_asset_balance = snapshot["spot_asset_balance"]
        self.spot_stable_balance = snapshot["spot_stable_balance"]
        self.asset_supply = list(snapshot["asset_supply"])
        self.stable_supply = list(snapshot["stable_supply"])
        self.wrapped_asset = list(snapshot["wrapped_asset"])
        self.wrapped_stable = list(snapshot["wrapped_stable"])
        self._asset_caps = list(snapshot["asset_caps"])
        self._stable_caps = list(snapshot["stable_caps"])
        self.next_registration_index = snapshot["next_registration_index"]
