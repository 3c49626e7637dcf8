"""ORM models for usage events, period stats, challenges and the reward ledger.

Raw usage events are owned by the ingestion service; the pipeline only reads
them. Stats, cursors and rewards are written by the pipeline.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from apptime.db.base import Base, BigIntPK


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Period(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ChallengeType(str, Enum):
    LESS_SCREENTIME = "LESS_SCREENTIME"
    MORE_SCREENTIME = "MORE_SCREENTIME"


class RewardType(str, Enum):
    COINS = "COINS"


class RewardSource(str, Enum):
    CHALLENGE_WIN = "CHALLENGE_WIN"


class CoinSource(str, Enum):
    CHALLENGE_WIN = "CHALLENGE_WIN"


# ---------------------------------------------------------------------------
# Raw usage events (ingestion-owned)
# ---------------------------------------------------------------------------


class UsageEvent(Base):
    """Maps to the 'app_usage_events' table. Immutable once recorded."""

    __tablename__ = "app_usage_events"
    __table_args__ = (
        Index("idx_usage_events_user_ts", "user_id", "event_timestamp"),
        Index("idx_usage_events_ts", "event_timestamp"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    package_name: Mapped[str] = mapped_column(String(255), nullable=False)
    app_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_system_app: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    event_type: Mapped[str] = mapped_column(String(32), nullable=False, default="MOVE_TO_BACKGROUND")
    event_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_ms: Mapped[int | None] = mapped_column("duration", BigInteger, nullable=True)
    start_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    end_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


# ---------------------------------------------------------------------------
# Leaderboard stats
# ---------------------------------------------------------------------------


class LeaderboardStat(Base):
    """Total screen time for one user over one day, ISO week or month.

    Daily rows are the source of truth; weekly and monthly rows are rebuilt
    from them on every sync.
    """

    __tablename__ = "leaderboard_stats"
    __table_args__ = (
        UniqueConstraint("user_id", "period", "period_key", name="leaderboard_stats_user_period_key"),
        Index("idx_leaderboard_stats_period", "period", "period_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    period: Mapped[str] = mapped_column(String(16), nullable=False)
    period_key: Mapped[str] = mapped_column(String(16), nullable=False)
    total_screen_time_ms: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class SyncCursor(Base):
    """High-water mark: last usage event id folded in by a pipeline for an owner.

    pipeline='leaderboard' is keyed by user id, pipeline='challenge' by challenge id.
    """

    __tablename__ = "sync_cursors"

    pipeline: Mapped[str] = mapped_column(String(32), primary_key=True)
    owner_key: Mapped[str] = mapped_column(String(255), primary_key=True)
    last_event_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


class Challenge(Base):
    """Time-boxed screen-time competition. Edited by admin tooling."""

    __tablename__ = "challenges"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    challenge_type: Mapped[str] = mapped_column(String(32), nullable=False)
    package_names: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    participants: Mapped[list[ChallengeParticipant]] = relationship(
        "ChallengeParticipant", back_populates="challenge",
    )

    @property
    def package_filter(self) -> set[str]:
        """Packages that count toward this challenge; empty means all."""
        if not self.package_names:
            return set()
        return {p.strip() for p in self.package_names.split(",") if p.strip()}


class ChallengeParticipant(Base):
    """A user's permanent membership in a challenge."""

    __tablename__ = "challenge_participants"
    __table_args__ = (
        UniqueConstraint("challenge_id", "user_id", name="challenge_participants_challenge_user_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False,
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    challenge: Mapped[Challenge] = relationship("Challenge", back_populates="participants")


class ChallengeParticipantStat(Base):
    """Append-only usage fact for a participant inside a challenge window."""

    __tablename__ = "challenge_participant_stats"
    __table_args__ = (
        UniqueConstraint("challenge_id", "event_id", name="challenge_stats_challenge_event_key"),
        Index("idx_challenge_stats_challenge_user", "challenge_id", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False,
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    app_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    package_name: Mapped[str] = mapped_column(String(255), nullable=False)
    start_sync_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_sync_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_ms: Mapped[int] = mapped_column("duration", BigInteger, nullable=False, default=0)
    event_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


# ---------------------------------------------------------------------------
# Reward ledger
# ---------------------------------------------------------------------------


class Reward(Base):
    """Reward earned for a challenge placement. At most one per (challenge, rank)."""

    __tablename__ = "rewards"
    __table_args__ = (
        UniqueConstraint("challenge_id", "rank", name="rewards_challenge_rank_key"),
        Index("idx_rewards_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    challenge_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("challenges.id", ondelete="SET NULL"), nullable=True,
    )
    challenge_title: Mapped[str | None] = mapped_column(String(256), nullable=True)
    rank: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    is_claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class CoinGrant(Base):
    """Immutable coin transaction with idempotency key."""

    __tablename__ = "coins"
    __table_args__ = (Index("idx_coins_user", "user_id"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str | None] = mapped_column(String(512), nullable=True)
    challenge_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    challenge_title: Mapped[str | None] = mapped_column(String(256), nullable=True)
    rank: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(256), unique=True, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
