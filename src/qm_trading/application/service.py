# src/qm_trading/application/service.py
from config.settings import settings
from src.qm_common.policy import EnginePolicy
from src.qm_trading.engine.engine import ConditionalTradingEngine

_engine: ConditionalTradingEngine | None = None


def get_trading_engine() -> ConditionalTradingEngine:
    global _engine  # noqa: PLW0603
    if _engine is None:
        _engine = ConditionalTradingEngine(policy=EnginePolicy.from_settings(settings))
    return _engine
