"""Snowflake-style ID generator for engine object IDs (markets, balances, pools).

Generates monotonically increasing, unique string IDs with a short type
prefix, e.g. "bal_7164201987338240". Single-process: the machine id only
has to be unique per engine process.
"""

import threading
import time


class SnowflakeIdGenerator:
    """Layout (64 bits):
      - 41 bits: millisecond timestamp (since custom epoch)
      - 10 bits: machine_id (0-1023)
      - 12 bits: sequence (0-4095 per millisecond)
    """

    _EPOCH_MS = 1_735_689_600_000  # 2025-01-01
    _MACHINE_BITS = 10
    _SEQUENCE_BITS = 12
    _MAX_SEQUENCE = (1 << _SEQUENCE_BITS) - 1

    def __init__(self, machine_id: int = 0) -> None:
        if not (0 <= machine_id < (1 << self._MACHINE_BITS)):
            raise ValueError(f"machine_id must be 0-{(1 << self._MACHINE_BITS) - 1}")
        self._machine_id = machine_id
        self._sequence = 0
        self._last_timestamp_ms = -1
        self._lock = threading.Lock()

    def next_int(self) -> int:
        with self._lock:
            ts = max(int(time.time() * 1000), self._last_timestamp_ms)
            if ts == self._last_timestamp_ms:
                self._sequence = (self._sequence + 1) & self._MAX_SEQUENCE
                if self._sequence == 0:
                    ts += 1  # borrow the next millisecond instead of spinning
            else:
                self._sequence = 0

            self._last_timestamp_ms = ts
            return (
                ((ts - self._EPOCH_MS) << (self._MACHINE_BITS + self._SEQUENCE_BITS))
                | (self._machine_id << self._SEQUENCE_BITS)
                | self._sequence
            )


_default_generator = SnowflakeIdGenerator()


def generate_id(prefix: str) -> str:
    """Return a unique "<prefix>_<snowflake>" string from the module-level generator."""
    return f"{prefix}_{_default_generator.next_int()}"
