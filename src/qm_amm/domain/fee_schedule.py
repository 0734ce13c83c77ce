"""Launch fee decay.

A freshly created pool charges `initial_fee_bps` and decays linearly to the
pool's own fee over `duration_ms`. There is no scheduler: every swap and
fee read evaluates get_current_fee against the caller's timestamp.
"""

from dataclasses import dataclass

from src.qm_common.errors import FeeOutOfRangeError
from src.qm_common.fixed_point import BPS_DENOMINATOR, mul_div

MAX_INITIAL_FEE_BPS = 9900
MAX_DURATION_MS = 86_400_000  # 24h


@dataclass(frozen=True)
class FeeSchedule:
    initial_fee_bps: int
    duration_ms: int

    def __post_init__(self) -> None:
        if not (0 <= self.initial_fee_bps <= MAX_INITIAL_FEE_BPS):
            raise FeeOutOfRangeError(
                f"initial_fee_bps={self.initial_fee_bps} not in [0, {MAX_INITIAL_FEE_BPS}]"
            )
        if not (0 <= self.duration_ms <= MAX_DURATION_MS):
            raise FeeOutOfRangeError(
                f"duration_ms={self.duration_ms} not in [0, {MAX_DURATION_MS}]"
            )

    def get_current_fee(self, final_fee_bps: int, start_time_ms: int, now_ms: int) -> int:
        """Fee in bps at now_ms.

        now <= start            -> initial fee
        now >= start + duration -> final fee
        otherwise               -> linear interpolation (never increases with time)

        A schedule whose initial fee does not exceed the final fee has
        nothing to decay and always reports the final fee.
        """
        if not (0 <= final_fee_bps <= BPS_DENOMINATOR):
            raise FeeOutOfRangeError(f"final_fee_bps={final_fee_bps}")
        if self.initial_fee_bps <= final_fee_bps:
            return final_fee_bps
        if now_ms <= start_time_ms:
            return self.initial_fee_bps
        elapsed = now_ms - start_time_ms
        if elapsed >= self.duration_ms:
            return final_fee_bps
        decay = mul_div(self.initial_fee_bps - final_fee_bps, elapsed, self.duration_ms)
        return self.initial_fee_bps - decay
