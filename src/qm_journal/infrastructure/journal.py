"""DB helpers for engine_events.

Called from ConditionalTradingEngine inside the same unit as the in-memory
operation, so a failed insert rolls the operation back too.
"""
import json
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.qm_common.enums import EngineEventType

_INSERT_EVENT_SQL = text("""
    INSERT INTO engine_events (market_id, outcome_index, event_type, payload)
    VALUES (:market_id, :outcome_index, :event_type, :payload)
""")

_LIST_EVENTS_SQL = text("""
    SELECT id, market_id, outcome_index, event_type, payload, created_at
    FROM engine_events
    WHERE market_id = :market_id
      AND (CAST(:event_type AS TEXT) IS NULL OR event_type = CAST(:event_type AS TEXT))
      AND (CAST(:before_id AS BIGINT) IS NULL OR id < CAST(:before_id AS BIGINT))
    ORDER BY id DESC
    LIMIT :limit
""")


async def write_engine_event(
    event_type: EngineEventType,
    market_id: str,
    payload: dict[str, Any],
    db: AsyncSession,
    outcome_index: int | None = None,
) -> None:
    """Insert one row into engine_events within the caller's transaction.

    Amounts go into the JSONB payload as strings: they can exceed the
    BIGINT range.
    """
    await db.execute(
        _INSERT_EVENT_SQL,
        {
            "market_id": market_id,
            "outcome_index": outcome_index,
            "event_type": event_type.value,
            "payload": json.dumps(_stringify_ints(payload)),
        },
    )


async def list_engine_events(
    market_id: str,
    db: AsyncSession,
    event_type: EngineEventType | None = None,
    before_id: int | None = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    rows = (
        await db.execute(
            _LIST_EVENTS_SQL,
            {
                "market_id": market_id,
                "event_type": event_type.value if event_type else None,
                "before_id": before_id,
                "limit": limit,
            },
        )
    ).fetchall()
    events = []
    for row in rows:
        row_any: Any = row
        payload = row_any.payload
        if isinstance(payload, str):
            payload = json.loads(payload)
        events.append(
            {
                "id": row_any.id,
                "market_id": row_any.market_id,
                "outcome_index": row_any.outcome_index,
                "event_type": row_any.event_type,
                "payload": payload,
                "created_at": row_any.created_at,
            }
        )
    return events


def _stringify_ints(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, dict):
        return {k: _stringify_ints(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_stringify_ints(v) for v in value]
    return value
