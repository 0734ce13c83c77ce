"""Unit tests for ConditionalMarketBalance."""

import copy

import pytest

from src.qm_common.enums import AssetKind
from src.qm_common.errors import (
    BalanceNotEmptyError,
    InputError,
    InsufficientBalanceError,
    OutcomeOutOfBoundsError,
    ProgressStateError,
)
from src.qm_escrow.domain.balance import ConditionalMarketBalance


@pytest.fixture
def balance() -> ConditionalMarketBalance:
    return ConditionalMarketBalance("mkt_1", 3, owner="alice")


class TestPositions:
    def test_starts_empty(self, balance: ConditionalMarketBalance) -> None:
        assert balance.is_empty
        assert balance.positions() == [(0, 0), (0, 0), (0, 0)]
        assert balance.id.startswith("bal_")

    def test_add_and_sub(self, balance: ConditionalMarketBalance) -> None:
        balance.add(1, AssetKind.ASSET, 500)
        balance.add(1, AssetKind.STABLE, 70)
        balance.sub(1, AssetKind.ASSET, 200)
        assert balance.get(1, AssetKind.ASSET) == 300
        assert balance.get(1, AssetKind.STABLE) == 70
        assert balance.get(0, AssetKind.ASSET) == 0

    def test_overdraw_rejected(self, balance: ConditionalMarketBalance) -> None:
        balance.add(0, AssetKind.STABLE, 10)
        with pytest.raises(InsufficientBalanceError) as exc_info:
            balance.sub(0, AssetKind.STABLE, 11)
        assert exc_info.value.code == 1007
        assert balance.get(0, AssetKind.STABLE) == 10

    def test_negative_credit_rejected(self, balance: ConditionalMarketBalance) -> None:
        with pytest.raises(InputError):
            balance.add(0, AssetKind.ASSET, -1)

    @pytest.mark.parametrize("idx", [-1, 3])
    def test_outcome_bounds(self, balance: ConditionalMarketBalance, idx: int) -> None:
        with pytest.raises(OutcomeOutOfBoundsError):
            balance.get(idx, AssetKind.ASSET)

    def test_complete_set_size_is_minimum(self, balance: ConditionalMarketBalance) -> None:
        for idx, amount in enumerate([400, 250, 900]):
            balance.add(idx, AssetKind.ASSET, amount)
        assert balance.complete_set_size(AssetKind.ASSET) == 250
        assert balance.complete_set_size(AssetKind.STABLE) == 0

    def test_zero_outcomes_rejected(self) -> None:
        with pytest.raises(InputError):
            ConditionalMarketBalance("mkt_1", 0)


class TestLifetime:
    def test_destroy_requires_empty(self, balance: ConditionalMarketBalance) -> None:
        balance.add(2, AssetKind.ASSET, 1)
        with pytest.raises(BalanceNotEmptyError):
            balance.destroy_empty()
        balance.sub(2, AssetKind.ASSET, 1)
        balance.destroy_empty()
        assert balance.destroyed

    def test_destroyed_balance_is_unusable(self, balance: ConditionalMarketBalance) -> None:
        balance.destroy_empty()
        with pytest.raises(ProgressStateError):
            balance.add(0, AssetKind.ASSET, 1)
        with pytest.raises(ProgressStateError):
            balance.transfer("bob")

    def test_transfer_changes_owner(self, balance: ConditionalMarketBalance) -> None:
        balance.transfer("bob")
        assert balance.owner == "bob"

    def test_cannot_be_copied(self, balance: ConditionalMarketBalance) -> None:
        with pytest.raises(TypeError):
            copy.copy(balance)
        with pytest.raises(TypeError):
            copy.deepcopy(balance)

    def test_snapshot_restore(self, balance: ConditionalMarketBalance) -> None:
        balance.add(0, AssetKind.ASSET, 5)
        snap = balance.snapshot()
        balance.sub(0, AssetKind.ASSET, 5)
        balance.destroy_empty()
        balance.restore(snap)
        assert not balance.destroyed
        assert balance.get(0, AssetKind.ASSET) == 5
