"""Unified error codes and custom exceptions.

Every abort raised by the engine maps to exactly one leaf class below, so
callers can surface an actionable message. Leaf classes hang off four
category bases:

  InputError         - rejected before any mutation (1xxx, 3xxx)
  SlippageError      - computed result violates a caller bound (2xxx)
  LiquidityFloorError - operation would push k below the floor (4xxx)
  InvariantViolation - quantum / k / band invariant broken (5xxx)

Error code ranges:
  1xxx: Input validation
  2xxx: Slippage
  3xxx: Market state
  4xxx: Liquidity floor
  5xxx: Invariant violation
  6xxx: Auth
  9xxx: System
"""


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


class InputError(AppError):
    """Bad input or failed precondition; nothing was mutated."""


class SlippageError(AppError):
    """Result computed but outside the caller's bound; nothing was committed."""


class LiquidityFloorError(AppError):
    """Operation would leave a pool below MINIMUM_LIQUIDITY."""


class InvariantViolation(AppError):
    """A global integrity constraint failed; the whole operation is aborted."""


# --- 1xxx: Input ---

class ZeroAmountError(InputError):
    def __init__(self, what: str = "amount") -> None:
        super().__init__(1001, f"{what} must be greater than zero", 422)


class OutcomeOutOfBoundsError(InputError):
    def __init__(self, outcome_idx: int, outcome_count: int) -> None:
        super().__init__(
            1002, f"Outcome index {outcome_idx} out of bounds (outcome_count={outcome_count})", 422
        )


class RegistrationOutOfSequenceError(InputError):
    def __init__(self, outcome_idx: int, expected_idx: int) -> None:
        super().__init__(
            1003,
            f"Caps for outcome {outcome_idx} registered out of sequence, expected {expected_idx}",
            422,
        )


class CapsNotRegisteredError(InputError):
    def __init__(self, outcome_idx: int) -> None:
        super().__init__(1004, f"Conditional caps not registered for outcome {outcome_idx}", 422)


class LiquidityImbalanceError(InputError):
    def __init__(self, tolerance_bps: int) -> None:
        super().__init__(
            1005, f"Liquidity ratio deviates from pool ratio by more than {tolerance_bps} bps", 422
        )


class FeeOutOfRangeError(InputError):
    def __init__(self, detail: str) -> None:
        super().__init__(1006, f"Fee configuration out of range: {detail}", 422)


class InsufficientBalanceError(InputError):
    def __init__(self, outcome_idx: int, required: int, available: int) -> None:
        super().__init__(
            1007,
            f"Insufficient balance in outcome {outcome_idx}: "
            f"required {required}, available {available}",
            422,
        )


class IncompleteSetError(InputError):
    def __init__(self, amount: int, available: int) -> None:
        super().__init__(
            1008, f"Cannot recombine {amount}: complete sets available {available}", 422
        )


class AssetTagMismatchError(InputError):
    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(1009, f"Coin tag mismatch: expected {expected}, got {actual}", 422)


class ProgressStateError(InputError):
    def __init__(self, detail: str) -> None:
        super().__init__(1010, f"Invalid progress state: {detail}", 422)


class InsufficientLpSupplyError(InputError):
    def __init__(self, lp_in: int, lp_supply: int) -> None:
        super().__init__(1011, f"LP amount {lp_in} exceeds supply {lp_supply}", 422)


class InsufficientSupplyError(InputError):
    def __init__(self, outcome_idx: int, amount: int, supply: int) -> None:
        super().__init__(
            1012, f"Cannot burn {amount} from outcome {outcome_idx}: supply is {supply}", 422
        )


class MarketMismatchError(InputError):
    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(1013, f"Object belongs to market {actual}, expected {expected}", 422)


class TimestampRegressionError(InputError):
    def __init__(self, now_ms: int, last_ms: int) -> None:
        super().__init__(1014, f"Timestamp {now_ms} is earlier than last observation {last_ms}", 422)


class TwapNotReadyError(InputError):
    def __init__(self, window_start_ms: int) -> None:
        super().__init__(1015, f"TWAP window has not started (starts at {window_start_ms})", 422)


class AmountOverflowError(InputError):
    def __init__(self) -> None:
        super().__init__(1016, "Arithmetic result exceeds the supported range", 422)


class InvalidReserveError(InputError):
    def __init__(self, detail: str) -> None:
        super().__init__(1017, f"Invalid reserves: {detail}", 422)


class CapMismatchError(InputError):
    def __init__(self, detail: str) -> None:
        super().__init__(1018, f"Cap does not match slot: {detail}", 422)


class InsufficientOutputError(InputError):
    def __init__(self) -> None:
        super().__init__(1019, "Swap output rounds down to zero", 422)


class BalanceNotEmptyError(InputError):
    def __init__(self, balance_id: str) -> None:
        super().__init__(1020, f"Balance {balance_id} still holds conditional tokens", 422)


class ZeroLpMintedError(InputError):
    def __init__(self) -> None:
        super().__init__(1021, "Deposit too small to mint any LP tokens", 422)


class InsufficientCollateralError(InputError):
    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            1022,
            f"Withdrawal leaves collateral short: required {required}, available {available}",
            422,
        )


# --- 2xxx: Slippage ---

class ExcessiveSlippageError(SlippageError):
    def __init__(self, minimum: int, actual: int) -> None:
        super().__init__(2001, f"Output {actual} below minimum {minimum}", 422)


class LpSlippageError(SlippageError):
    def __init__(self, minimum: int, actual: int) -> None:
        super().__init__(2002, f"LP minted {actual} below minimum {minimum}", 422)


# --- 3xxx: Market state ---

class MarketNotFoundError(InputError):
    def __init__(self, market_id: str) -> None:
        super().__init__(3001, f"Market not found: {market_id}", 404)


class MarketNotActiveError(InputError):
    def __init__(self, market_id: str) -> None:
        super().__init__(3002, f"Market is not trading: {market_id}", 422)


class MarketNotResolvedError(InputError):
    def __init__(self, market_id: str) -> None:
        super().__init__(3003, f"Market is not resolved: {market_id}", 422)


class NotWinningOutcomeError(InputError):
    def __init__(self, outcome_idx: int, winner: int) -> None:
        super().__init__(
            3004, f"Outcome {outcome_idx} did not win (winning outcome is {winner})", 422
        )


class MarketAlreadyExistsError(InputError):
    def __init__(self, market_id: str) -> None:
        super().__init__(3005, f"Market already exists: {market_id}", 409)


class PoolClosedError(InputError):
    def __init__(self, pool_id: str) -> None:
        super().__init__(3006, f"Pool is closed: {pool_id}", 422)


# --- 4xxx: Liquidity floor ---

class MinimumLiquidityError(LiquidityFloorError):
    def __init__(self, k: int, minimum: int) -> None:
        super().__init__(4001, f"Pool k={k} would fall below minimum liquidity {minimum}", 422)


class InitialLiquidityTooLowError(LiquidityFloorError):
    def __init__(self, root_k: int, minimum: int) -> None:
        super().__init__(
            4002, f"Initial liquidity sqrt(k)={root_k} below minimum {minimum}", 422
        )


# --- 5xxx: Invariant violation ---

class QuantumInvariantViolation(InvariantViolation):
    def __init__(self, detail: str) -> None:
        super().__init__(5001, f"Quantum invariant violated: {detail}", 500)


class ConstantProductViolation(InvariantViolation):
    def __init__(self, k_before: int, k_after: int) -> None:
        super().__init__(5002, f"k decreased: before={k_before} after={k_after}", 500)


class RebalanceBandViolation(InvariantViolation):
    def __init__(self, spot_price: int, low: int, high: int) -> None:
        super().__init__(
            5003, f"Spot price {spot_price} outside no-arb band [{low}, {high}]", 500
        )


class FlashSettlementError(InvariantViolation):
    def __init__(self, owed: int, repaid: int) -> None:
        super().__init__(5004, f"Arbitrage flash leg unsettled: owed {owed}, repaid {repaid}", 500)


# --- 6xxx: Auth ---

class InvalidCredentialsError(AppError):
    def __init__(self) -> None:
        super().__init__(6001, "Invalid or expired token", 401)


class OperatorRequiredError(AppError):
    def __init__(self) -> None:
        super().__init__(6099, "Operator role required", 403)


# --- 9xxx: System ---

class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)
