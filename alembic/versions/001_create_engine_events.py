"""001: create engine_events table

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE engine_events (
            id              BIGSERIAL       PRIMARY KEY,
            market_id       VARCHAR(64)     NOT NULL,
            outcome_index   SMALLINT,
            event_type      VARCHAR(30)     NOT NULL,
            payload         JSONB           NOT NULL,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_engine_event_type CHECK (
                event_type IN (
                    'MARKET_CREATED',
                    'CONDITIONAL_SWAP',
                    'SPOT_SWAP',
                    'SPLIT',
                    'RECOMBINE',
                    'LIQUIDITY_ADDED',
                    'LIQUIDITY_REMOVED',
                    'MARKET_RESOLVED',
                    'REDEEMED'
                )
            ),
            CONSTRAINT ck_engine_event_outcome CHECK (outcome_index IS NULL OR outcome_index >= 0)
        );
    """)
    op.execute("CREATE INDEX idx_engine_events_market ON engine_events (market_id, id DESC);")
    op.execute(
        "CREATE INDEX idx_engine_events_type ON engine_events (market_id, event_type, id DESC);"
    )
    op.execute(
        "COMMENT ON TABLE engine_events IS "
        "'Append-only journal of engine operations; amounts stored as strings in payload';"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS engine_events CASCADE;")
