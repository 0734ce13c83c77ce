"""Global enums: string values are persisted in engine_events payloads and
must match the CHECK constraint in alembic/versions/001_create_engine_events.py.
"""

from enum import Enum


class AssetKind(str, Enum):
    """Which side of a market a coin or reserve belongs to."""
    ASSET = "ASSET"
    STABLE = "STABLE"


class SwapDirection(str, Enum):
    ASSET_TO_STABLE = "ASSET_TO_STABLE"
    STABLE_TO_ASSET = "STABLE_TO_ASSET"


class MarketStatus(str, Enum):
    PREMARKET = "PREMARKET"
    TRADING = "TRADING"
    RESOLVED = "RESOLVED"


class RebalanceDirection(str, Enum):
    """Which edge of the no-arb band the spot price crossed."""
    NONE = "NONE"
    SPOT_ABOVE_BAND = "SPOT_ABOVE_BAND"
    SPOT_BELOW_BAND = "SPOT_BELOW_BAND"


class EngineEventType(str, Enum):
    MARKET_CREATED = "MARKET_CREATED"
    CONDITIONAL_SWAP = "CONDITIONAL_SWAP"
    SPOT_SWAP = "SPOT_SWAP"
    SPLIT = "SPLIT"
    RECOMBINE = "RECOMBINE"
    LIQUIDITY_ADDED = "LIQUIDITY_ADDED"
    LIQUIDITY_REMOVED = "LIQUIDITY_REMOVED"
    MARKET_RESOLVED = "MARKET_RESOLVED"
    REDEEMED = "REDEEMED"
