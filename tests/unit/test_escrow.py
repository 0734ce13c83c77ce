"""Unit tests for TokenEscrow: quantum-liquidity accounting."""

import copy
import pickle

import pytest

from src.qm_common.enums import AssetKind
from src.qm_common.errors import (
    AssetTagMismatchError,
    CapMismatchError,
    CapsNotRegisteredError,
    IncompleteSetError,
    InsufficientCollateralError,
    InsufficientSupplyError,
    MarketMismatchError,
    MarketNotResolvedError,
    OutcomeOutOfBoundsError,
    ProgressStateError,
    QuantumInvariantViolation,
    RegistrationOutOfSequenceError,
    ZeroAmountError,
)
from src.qm_escrow.domain.balance import ConditionalMarketBalance
from src.qm_escrow.domain.coins import Coin, ConditionalTokenCap
from src.qm_escrow.domain.escrow import TokenEscrow
from src.qm_escrow.domain.progress import RecombineProgress, SplitProgress
from src.qm_market.domain.market_state import MarketState


def _escrow(outcomes: int = 2, register: bool = True) -> TokenEscrow:
    escrow = TokenEscrow(MarketState(outcomes, market_id="mkt_esc"))
    if register:
        escrow.register_default_caps()
    return escrow


def _asset(value: int) -> Coin:
    return Coin(tag="ASSET", value=value)


def _stable(value: int) -> Coin:
    return Coin(tag="STABLE", value=value)


class TestRegistration:
    def test_out_of_sequence_rejected(self) -> None:
        escrow = _escrow(3, register=False)
        escrow.register_conditional_caps(
            0,
            ConditionalTokenCap.for_outcome("mkt_esc", 0, AssetKind.ASSET),
            ConditionalTokenCap.for_outcome("mkt_esc", 0, AssetKind.STABLE),
        )
        with pytest.raises(RegistrationOutOfSequenceError) as exc_info:
            escrow.register_conditional_caps(
                2,
                ConditionalTokenCap.for_outcome("mkt_esc", 2, AssetKind.ASSET),
                ConditionalTokenCap.for_outcome("mkt_esc", 2, AssetKind.STABLE),
            )
        assert exc_info.value.code == 1003
        assert escrow.next_registration_index == 1

    def test_out_of_bounds(self) -> None:
        escrow = _escrow(1, register=False)
        with pytest.raises(OutcomeOutOfBoundsError):
            escrow.register_conditional_caps(
                1,
                ConditionalTokenCap.for_outcome("mkt_esc", 1, AssetKind.ASSET),
                ConditionalTokenCap.for_outcome("mkt_esc", 1, AssetKind.STABLE),
            )

    def test_cap_for_wrong_slot(self) -> None:
        escrow = _escrow(2, register=False)
        with pytest.raises(CapMismatchError):
            escrow.register_conditional_caps(
                0,
                ConditionalTokenCap.for_outcome("mkt_esc", 1, AssetKind.ASSET),
                ConditionalTokenCap.for_outcome("mkt_esc", 0, AssetKind.STABLE),
            )
        with pytest.raises(CapMismatchError):
            escrow.register_conditional_caps(
                0,
                ConditionalTokenCap.for_outcome("mkt_esc", 0, AssetKind.STABLE),
                ConditionalTokenCap.for_outcome("mkt_esc", 0, AssetKind.STABLE),
            )

    def test_spot_tag_collision(self) -> None:
        escrow = _escrow(1, register=False)
        with pytest.raises(CapMismatchError):
            escrow.register_conditional_caps(
                0,
                ConditionalTokenCap(0, AssetKind.ASSET, "ASSET"),
                ConditionalTokenCap.for_outcome("mkt_esc", 0, AssetKind.STABLE),
            )

    def test_default_caps_fill_every_slot(self) -> None:
        escrow = _escrow(3)
        assert escrow.caps_registered
        assert escrow.cap(2, AssetKind.STABLE).tag == "mkt_esc:cond2:stable"

    def test_unregistered_cap(self) -> None:
        escrow = _escrow(2, register=False)
        with pytest.raises(CapsNotRegisteredError):
            escrow.cap(0, AssetKind.ASSET)


class TestMintBurn:
    def test_deposit_mint_then_burn(self) -> None:
        escrow = _escrow(1)
        coin = escrow.deposit_and_mint_conditional(0, _asset(1000))
        assert escrow.asset_supply == [1000]
        assert escrow.spot_asset_balance == 1000

        escrow.burn_conditional_asset(0, coin.split(500))
        assert escrow.asset_supply == [500]
        assert escrow.spot_asset_balance == 1000
        escrow.assert_quantum_invariant()

    def test_deposit_mints_one_outcome_only(self) -> None:
        escrow = _escrow(3)
        escrow.deposit_and_mint_conditional(1, _stable(300))
        assert escrow.stable_supply == [0, 300, 0]
        assert escrow.spot_stable_balance == 300

    def test_mint_beyond_backing(self) -> None:
        escrow = _escrow(2)
        escrow.deposit_spot_coins(_asset(100), _stable(0))
        escrow.mint_conditional_asset(0, 100)
        with pytest.raises(QuantumInvariantViolation):
            escrow.mint_conditional_asset(0, 1)
        assert escrow.mint_conditional_asset(1, 100).value == 100

    def test_mint_without_caps_rolls_back_deposit(self) -> None:
        escrow = _escrow(2, register=False)
        coin = _asset(1000)
        with pytest.raises(CapsNotRegisteredError):
            escrow.deposit_and_mint_conditional(0, coin)
        assert coin.value == 1000
        assert escrow.spot_asset_balance == 0

    def test_burn_more_than_supply(self) -> None:
        escrow = _escrow(1)
        escrow.deposit_and_mint_conditional(0, _asset(10))
        forged = Coin(tag=escrow.cap(0, AssetKind.ASSET).tag, value=11)
        with pytest.raises(InsufficientSupplyError):
            escrow.burn_conditional_asset(0, forged)

    def test_burn_wrong_side(self) -> None:
        escrow = _escrow(1)
        coin = escrow.deposit_and_mint_conditional(0, _asset(10))
        with pytest.raises(AssetTagMismatchError):
            escrow.burn_conditional_stable(0, coin)

    def test_deposit_rejects_foreign_coin(self) -> None:
        escrow = _escrow(1)
        with pytest.raises(AssetTagMismatchError):
            escrow.deposit_and_mint_conditional(0, Coin(tag="OTHER", value=10))

    def test_deposit_zero(self) -> None:
        with pytest.raises(ZeroAmountError):
            _escrow(1).deposit_and_mint_conditional(0, _asset(0))


class TestSpotCollateral:
    def test_withdraw_only_unbacked_surplus(self) -> None:
        escrow = _escrow(2)
        escrow.deposit_and_mint_conditional(0, _asset(1000))
        escrow.deposit_spot_coins(_asset(500), _stable(0))

        with pytest.raises(InsufficientCollateralError):
            escrow.withdraw_spot(AssetKind.ASSET, 501)
        assert escrow.withdraw_spot(AssetKind.ASSET, 500).value == 500
        assert escrow.spot_asset_balance == 1000

    def test_burn_and_withdraw_keeps_other_outcomes_backed(self) -> None:
        escrow = _escrow(2)
        balance = ConditionalMarketBalance("mkt_esc", 2)
        escrow.split_to_balance(balance, _asset(1000))
        coin = escrow.unwrap_to_coin(balance, 0, AssetKind.ASSET, 1000)

        with pytest.raises(InsufficientCollateralError):
            escrow.burn_and_withdraw_conditional(0, coin)
        assert coin.value == 1000
        assert escrow.asset_supply == [1000, 1000]

    def test_burn_and_withdraw_single_outcome(self) -> None:
        escrow = _escrow(2)
        c0 = escrow.deposit_and_mint_conditional(0, _asset(1000))
        escrow.deposit_and_mint_conditional(1, _asset(1000))
        spot = escrow.burn_and_withdraw_conditional(0, c0)
        assert spot == _asset(1000)
        assert escrow.asset_supply == [0, 1000]
        assert escrow.spot_asset_balance == 1000


class TestBalanceSets:
    def test_split_does_not_double_collateral(self) -> None:
        escrow = _escrow(2)
        balance = ConditionalMarketBalance("mkt_esc", 2)
        delta = escrow.split_to_balance(balance, _asset(1000))
        assert delta.supply == (1000, 1000)
        assert delta.spot_balance == 1000
        assert escrow.spot_asset_balance == 1000
        assert escrow.wrapped_asset == [1000, 1000]
        assert balance.positions() == [(1000, 0), (1000, 0)]

    def test_split_then_recombine_round_trip(self) -> None:
        escrow = _escrow(3)
        balance = ConditionalMarketBalance("mkt_esc", 3)
        coin = _stable(750)
        escrow.split_to_balance(balance, coin)
        assert coin.value == 0

        out = escrow.recombine_from_balance(balance, AssetKind.STABLE, 750)
        assert out == _stable(750)
        assert escrow.stable_supply == [0, 0, 0]
        assert escrow.spot_stable_balance == 0
        assert balance.is_empty

    def test_partial_recombine(self) -> None:
        escrow = _escrow(2)
        balance = ConditionalMarketBalance("mkt_esc", 2)
        escrow.split_to_balance(balance, _asset(1000))
        escrow.recombine_from_balance(balance, AssetKind.ASSET, 400)
        assert escrow.asset_supply == [600, 600]
        assert escrow.spot_asset_balance == 600

    def test_recombine_incomplete_set(self) -> None:
        escrow = _escrow(2)
        balance = ConditionalMarketBalance("mkt_esc", 2)
        escrow.split_to_balance(balance, _asset(1000))
        escrow.unwrap_to_coin(balance, 0, AssetKind.ASSET, 100)
        with pytest.raises(IncompleteSetError):
            escrow.recombine_from_balance(balance, AssetKind.ASSET, 1000)

    def test_wrap_and_unwrap(self) -> None:
        escrow = _escrow(2)
        balance = ConditionalMarketBalance("mkt_esc", 2)
        escrow.split_to_balance(balance, _asset(1000))

        coin = escrow.unwrap_to_coin(balance, 1, AssetKind.ASSET, 100)
        assert coin.tag == escrow.cap(1, AssetKind.ASSET).tag
        assert escrow.wrapped_asset == [1000, 900]
        assert escrow.asset_supply == [1000, 1000]

        with pytest.raises(AssetTagMismatchError):
            escrow.wrap_coin(balance, 0, coin)
        escrow.wrap_coin(balance, 1, coin)
        assert escrow.wrapped_asset == [1000, 1000]
        assert coin.value == 0

    def test_foreign_balance_rejected(self) -> None:
        escrow = _escrow(2)
        with pytest.raises(MarketMismatchError):
            escrow.split_to_balance(ConditionalMarketBalance("mkt_other", 2), _asset(10))

    def test_split_failure_rolls_back(self) -> None:
        escrow = _escrow(2, register=False)
        balance = ConditionalMarketBalance("mkt_esc", 2)
        coin = _asset(1000)
        with pytest.raises(CapsNotRegisteredError):
            escrow.split_to_balance(balance, coin)
        assert coin.value == 1000
        assert escrow.spot_asset_balance == 0
        assert escrow.asset_supply == [0, 0]
        assert balance.is_empty

    def test_burn_residual_leaves_surplus(self) -> None:
        escrow = _escrow(2)
        balance = ConditionalMarketBalance("mkt_esc", 2)
        escrow.split_to_balance(balance, _asset(1000))
        burned = escrow.burn_balance_residual(balance)
        assert burned[AssetKind.ASSET] == [1000, 1000]
        assert balance.destroyed
        assert escrow.asset_supply == [0, 0]
        assert escrow.spot_asset_balance == 1000

    def test_sweep_requires_resolution(self) -> None:
        with pytest.raises(MarketNotResolvedError):
            _escrow(1).sweep_surplus()


class TestTypedProgress:
    def test_split_steps_every_outcome(self) -> None:
        escrow = _escrow(3)
        progress = escrow.begin_split(_asset(500))
        coins = [escrow.split_step(progress, idx) for idx in range(3)]
        assert all(c.value == 0 for c in coins)
        delta = escrow.finish_split(progress)

        assert [c.tag for c in coins] == [escrow.cap(i, AssetKind.ASSET).tag for i in range(3)]
        assert delta.supply == (500, 500, 500)
        assert delta.spot_balance == 500
        assert [c.value for c in coins] == [500, 500, 500]
        assert progress.consumed

    def test_step_out_of_order(self) -> None:
        escrow = _escrow(2)
        progress = escrow.begin_split(_asset(500))
        with pytest.raises(ProgressStateError):
            escrow.split_step(progress, 1)
        assert escrow.asset_supply == [0, 0]
        escrow.split_step(progress, 0)
        escrow.split_step(progress, 1)
        escrow.finish_split(progress)

    def test_finish_before_all_steps(self) -> None:
        escrow = _escrow(2)
        progress = escrow.begin_split(_asset(500))
        escrow.split_step(progress, 0)
        with pytest.raises(ProgressStateError):
            escrow.finish_split(progress)
        escrow.split_step(progress, 1)
        escrow.finish_split(progress)

    def test_progress_bound_to_issuing_escrow(self) -> None:
        first, second = _escrow(1), _escrow(1)
        progress = first.begin_split(_asset(10))
        with pytest.raises(ProgressStateError):
            second.split_step(progress, 0)
        first.split_step(progress, 0)
        first.finish_split(progress)

    def test_recombine_round_trip(self) -> None:
        escrow = _escrow(2)
        split = escrow.begin_split(_stable(300))
        coins = [escrow.split_step(split, idx) for idx in range(2)]
        escrow.finish_split(split)

        progress = escrow.begin_recombine(AssetKind.STABLE, 300)
        for idx, coin in enumerate(coins):
            escrow.recombine_step(progress, idx, coin)
        spot = escrow.finish_recombine(progress)

        assert spot == _stable(300)
        assert escrow.stable_supply == [0, 0]
        assert all(c.value == 0 for c in coins)

    def test_recombine_wrong_amount(self) -> None:
        escrow = _escrow(1)
        split = escrow.begin_split(_stable(300))
        coin = escrow.split_step(split, 0)
        escrow.finish_split(split)

        progress = escrow.begin_recombine(AssetKind.STABLE, 200)
        with pytest.raises(IncompleteSetError):
            escrow.recombine_step(progress, 0, coin)
        escrow.recombine_step(progress, 0, coin.split(200))
        escrow.finish_recombine(progress)
        assert escrow.stable_supply == [100]

    def test_abandoned_split_changes_nothing(self) -> None:
        escrow = _escrow(2)
        deposit = _asset(100)
        progress = escrow.begin_split(deposit)
        coin = escrow.split_step(progress, 0)
        del progress

        assert deposit.value == 100
        assert coin.value == 0
        assert escrow.asset_supply == [0, 0]
        assert escrow.spot_asset_balance == 0

    def test_abandoned_recombine_keeps_coins(self) -> None:
        escrow = _escrow(2)
        split = escrow.begin_split(_asset(100))
        coins = [escrow.split_step(split, idx) for idx in range(2)]
        escrow.finish_split(split)

        progress = escrow.begin_recombine(AssetKind.ASSET, 100)
        escrow.recombine_step(progress, 0, coins[0])
        del progress

        assert [c.value for c in coins] == [100, 100]
        assert escrow.asset_supply == [100, 100]
        assert escrow.spot_asset_balance == 100

    def test_deposit_spent_before_finish(self) -> None:
        escrow = _escrow(2)
        deposit = _asset(100)
        progress = escrow.begin_split(deposit)
        coins = [escrow.split_step(progress, idx) for idx in range(2)]
        deposit.split(40)

        with pytest.raises(IncompleteSetError):
            escrow.finish_split(progress)
        assert deposit.value == 60
        assert [c.value for c in coins] == [0, 0]
        assert escrow.asset_supply == [0, 0]
        assert escrow.spot_asset_balance == 0

    def test_recorded_coin_spent_before_finish(self) -> None:
        escrow = _escrow(2)
        split = escrow.begin_split(_stable(50))
        coins = [escrow.split_step(split, idx) for idx in range(2)]
        escrow.finish_split(split)

        progress = escrow.begin_recombine(AssetKind.STABLE, 50)
        for idx, coin in enumerate(coins):
            escrow.recombine_step(progress, idx, coin)
        coins[1].split(1)

        with pytest.raises(IncompleteSetError):
            escrow.finish_recombine(progress)
        assert [c.value for c in coins] == [50, 49]
        assert escrow.stable_supply == [50, 50]
        assert escrow.spot_stable_balance == 50

    def test_consumed_progress_cannot_be_reused(self) -> None:
        escrow = _escrow(1)
        progress = escrow.begin_split(_asset(10))
        escrow.split_step(progress, 0)
        escrow.finish_split(progress)
        with pytest.raises(ProgressStateError):
            escrow.finish_split(progress)

    def test_progress_is_linear(self) -> None:
        with pytest.raises(TypeError):
            SplitProgress()
        with pytest.raises(TypeError):
            RecombineProgress(escrow_id="x")

        escrow = _escrow(1)
        progress = escrow.begin_split(_asset(10))
        with pytest.raises(TypeError):
            copy.copy(progress)
        with pytest.raises(TypeError):
            pickle.dumps(progress)
        with pytest.raises(AttributeError):
            progress.next_index = 1
        escrow.split_step(progress, 0)
        escrow.finish_split(progress)

    def test_begin_requires_caps(self) -> None:
        with pytest.raises(CapsNotRegisteredError):
            _escrow(2, register=False).begin_split(_asset(10))


class TestView:
    def test_view_is_a_copy(self) -> None:
        escrow = _escrow(2)
        escrow.split_to_balance(ConditionalMarketBalance("mkt_esc", 2), _stable(40))
        view = escrow.view()
        assert view.stable_supply == (40, 40)
        assert view.wrapped_stable == (40, 40)
        assert view.registered_outcomes == 2

    def test_snapshot_restore(self) -> None:
        escrow = _escrow(2)
        snap = escrow.snapshot()
        escrow.deposit_and_mint_conditional(0, _asset(10))
        escrow.restore(snap)
        assert escrow.asset_supply == [0, 0]
        assert escrow.spot_asset_balance == 0
