"""Pipeline tables: usage events, period stats, cursors, challenges, rewards.

app_usage_events is owned by the ingestion service and normally exists
already; it is created here only for fresh environments.

Revision ID: 001_pipeline_tables
Revises: None
Create Date: 2026-10-17
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_pipeline_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Raw usage events ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS app_usage_events (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(255) NOT NULL,
            package_name VARCHAR(255) NOT NULL,
            app_name VARCHAR(255),
            is_system_app BOOLEAN NOT NULL DEFAULT false,
            event_type VARCHAR(32) NOT NULL DEFAULT 'MOVE_TO_BACKGROUND',
            event_timestamp TIMESTAMPTZ NOT NULL,
            duration BIGINT,
            start_time BIGINT,
            end_time BIGINT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_usage_events_user_ts
        ON app_usage_events(user_id, event_timestamp)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_usage_events_ts
        ON app_usage_events(event_timestamp)
    """)

    # --- Leaderboard stats ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard_stats (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(255) NOT NULL,
            period VARCHAR(16) NOT NULL,
            period_key VARCHAR(16) NOT NULL,
            total_screen_time_ms BIGINT NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT leaderboard_stats_user_period_key UNIQUE (user_id, period, period_key)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_leaderboard_stats_period
        ON leaderboard_stats(period, period_key)
    """)

    # --- Sync cursors ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS sync_cursors (
            pipeline VARCHAR(32) NOT NULL,
            owner_key VARCHAR(255) NOT NULL,
            last_event_id BIGINT NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            PRIMARY KEY (pipeline, owner_key)
        )
    """)

    # --- Challenges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS challenges (
            id BIGSERIAL PRIMARY KEY,
            title VARCHAR(256) NOT NULL,
            description TEXT,
            challenge_type VARCHAR(32) NOT NULL,
            package_names TEXT,
            start_time TIMESTAMPTZ NOT NULL,
            end_time TIMESTAMPTZ NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT true,
            settled_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_challenges_unsettled
        ON challenges(end_time) WHERE settled_at IS NULL
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS challenge_participants (
            id BIGSERIAL PRIMARY KEY,
            challenge_id BIGINT NOT NULL REFERENCES challenges(id) ON DELETE CASCADE,
            user_id VARCHAR(255) NOT NULL,
            joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT challenge_participants_challenge_user_key UNIQUE (challenge_id, user_id)
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS challenge_participant_stats (
            id BIGSERIAL PRIMARY KEY,
            challenge_id BIGINT NOT NULL REFERENCES challenges(id) ON DELETE CASCADE,
            user_id VARCHAR(255) NOT NULL,
            app_name VARCHAR(255),
            package_name VARCHAR(255) NOT NULL,
            start_sync_time TIMESTAMPTZ NOT NULL,
            end_sync_time TIMESTAMPTZ NOT NULL,
            duration BIGINT NOT NULL DEFAULT 0,
            event_id BIGINT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT challenge_stats_challenge_event_key UNIQUE (challenge_id, event_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_challenge_stats_challenge_user
        ON challenge_participant_stats(challenge_id, user_id)
    """)

    # --- Reward ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS rewards (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(255) NOT NULL,
            type VARCHAR(32) NOT NULL,
            source VARCHAR(32) NOT NULL,
            title VARCHAR(256) NOT NULL,
            description TEXT,
            amount BIGINT NOT NULL DEFAULT 0,
            challenge_id BIGINT REFERENCES challenges(id) ON DELETE SET NULL,
            challenge_title VARCHAR(256),
            rank BIGINT,
            is_claimed BOOLEAN NOT NULL DEFAULT false,
            claimed_at TIMESTAMPTZ,
            earned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT rewards_challenge_rank_key UNIQUE (challenge_id, rank)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_rewards_user
        ON rewards(user_id)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS coins (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(255) NOT NULL,
            amount BIGINT NOT NULL,
            source VARCHAR(32) NOT NULL,
            description VARCHAR(512),
            challenge_id BIGINT,
            challenge_title VARCHAR(256),
            rank BIGINT,
            idempotency_key VARCHAR(256) UNIQUE,
            expires_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_coins_user
        ON coins(user_id)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS coins")
    op.execute("DROP TABLE IF EXISTS rewards")
    op.execute("DROP TABLE IF EXISTS challenge_participant_stats")
    op.execute("DROP TABLE IF EXISTS challenge_participants")
    op.execute("DROP TABLE IF EXISTS challenges")
    op.execute("DROP TABLE IF EXISTS sync_cursors")
    op.execute("DROP TABLE IF EXISTS leaderboard_stats")
    # app_usage_events belongs to ingestion and is left in place
