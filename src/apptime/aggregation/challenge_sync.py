"""Challenge aggregation: raw usage events -> challenge participant stats.

Append-only: each qualifying event becomes one ChallengeParticipantStat row.
Rankings sum these rows live. The (challenge_id, event_id) unique key makes
re-inserting an event a no-op, so date-scoped re-runs are safe.

An event qualifies for a challenge when
- its user joined the challenge, and the event happened after joining
- its timestamp lies inside [start_time, end_time]
- its package is listed, when the challenge restricts packages
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import and_, select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from apptime.aggregation.cursors import CHALLENGE_PIPELINE, advance_cursor, get_cursor
from apptime.aggregation.schemas import ChallengeStatEntry, ChallengeSyncResult
from apptime.config import get_settings
from apptime.db.models import Challenge, ChallengeParticipant, ChallengeParticipantStat, UsageEvent
from apptime.db.upsert import insert_for
from apptime.errors import TransientStoreError, ValidationError
from apptime.periods import as_utc, coerce_day, day_bounds

logger = logging.getLogger(__name__)


async def get_syncable_challenges(db: AsyncSession) -> list[Challenge]:
    """Active challenges that have not been settled yet.

    Ended-but-unsettled challenges are included so late events still land
    before settlement.
    """
    result = await db.execute(
        select(Challenge)
        .where(Challenge.is_active.is_(True), Challenge.settled_at.is_(None))
        .order_by(Challenge.id)
    )
    return list(result.scalars().all())


async def sync_challenge_stats(
    db: AsyncSession,
    window_date: str | date | None = None,
    batch_size: int | None = None,
) -> ChallengeSyncResult:
    """Append stat rows for every qualifying event of every syncable challenge."""
    day = coerce_day(window_date)
    if batch_size is None:
        batch_size = get_settings().sync_batch_size

    events_processed = 0
    stats_created = 0
    users: set[tuple[int, str]] = set()

    try:
        challenges = await get_syncable_challenges(db)
        for challenge in challenges:
            processed, created, challenge_users = await _sync_challenge(db, challenge, day, batch_size)
            events_processed += processed
            stats_created += created
            users.update((challenge.id, uid) for uid in challenge_users)
    except DBAPIError as exc:
        await db.rollback()
        raise TransientStoreError(f"Challenge stats sync failed: {exc}") from exc

    if not challenges:
        message = "No active challenges to sync"
    elif events_processed == 0:
        message = "No new usage events for active challenges"
    else:
        message = f"Synced {events_processed} events into {stats_created} challenge stats"

    logger.info("Challenge stats sync: %s (date=%s)", message, day)
    return ChallengeSyncResult(
        events_processed=events_processed,
        challenges_processed=len(challenges),
        stats_created=stats_created,
        users_updated=len(users),
        message=message,
    )


async def _sync_challenge(
    db: AsyncSession,
    challenge: Challenge,
    day: date | None,
    batch_size: int,
) -> tuple[int, int, set[str]]:
    owner_key = str(challenge.id)
    last_id = 0 if day is not None else await get_cursor(db, CHALLENGE_PIPELINE, owner_key)

    processed = 0
    created = 0
    users: set[str] = set()

    while True:
        stmt = (
            select(UsageEvent)
            .join(
                ChallengeParticipant,
                and_(
                    ChallengeParticipant.challenge_id == challenge.id,
                    ChallengeParticipant.user_id == UsageEvent.user_id,
                ),
            )
            .where(
                UsageEvent.id > last_id,
                UsageEvent.event_timestamp >= challenge.start_time,
                UsageEvent.event_timestamp <= challenge.end_time,
                UsageEvent.event_timestamp >= ChallengeParticipant.joined_at,
            )
            .order_by(UsageEvent.id)
            .limit(batch_size)
        )
        packages = challenge.package_filter
        if packages:
            stmt = stmt.where(UsageEvent.package_name.in_(sorted(packages)))
        if day is not None:
            start, end = day_bounds(day)
            stmt = stmt.where(UsageEvent.event_timestamp >= start, UsageEvent.event_timestamp < end)

        events = list((await db.execute(stmt)).scalars().all())
        if not events:
            break

        inserted = await _insert_event_stats(db, challenge.id, events)
        created += len(inserted)
        users.update(inserted)
        processed += len(events)
        last_id = events[-1].id

        if day is None:
            await advance_cursor(db, CHALLENGE_PIPELINE, owner_key, last_id)
        await db.commit()

        if len(events) < batch_size:
            break

    if processed:
        logger.info(
            "Challenge %d: %d events, %d new stats, %d users",
            challenge.id, processed, created, len(users),
        )
    return processed, created, users


async def _insert_event_stats(db: AsyncSession, challenge_id: int, events: list[UsageEvent]) -> list[str]:
    """Insert one stat row per event, skipping events already folded in.

    Returns the user ids of the rows actually inserted.
    """
    rows = []
    for event in events:
        start, end = _event_window(event)
        rows.append({
            "challenge_id": challenge_id,
            "user_id": event.user_id,
            "app_name": event.app_name,
            "package_name": event.package_name,
            "start_sync_time": start,
            "end_sync_time": end,
            "duration_ms": event.duration_ms or 0,
            "event_id": event.id,
            "created_at": datetime.now(timezone.utc),
        })

    stmt = (
        insert_for(db, ChallengeParticipantStat)
        .values(rows)
        .on_conflict_do_nothing(index_elements=["challenge_id", "event_id"])
        .returning(ChallengeParticipantStat.user_id)
    )
    result = await db.execute(stmt)
    return [row[0] for row in result.all()]


def _event_window(event: UsageEvent) -> tuple[datetime, datetime]:
    """Start/end of the usage an event describes, in UTC."""
    if event.start_time is not None:
        start = datetime.fromtimestamp(event.start_time / 1000, tz=timezone.utc)
    else:
        start = as_utc(event.event_timestamp)
    if event.end_time is not None:
        end = datetime.fromtimestamp(event.end_time / 1000, tz=timezone.utc)
    else:
        end = start + timedelta(milliseconds=event.duration_ms or 0)
    return start, end


async def insert_submitted_stats(
    db: AsyncSession,
    challenge_id: int,
    user_id: str,
    entries: list[ChallengeStatEntry],
) -> int:
    """Append client-submitted stat rows. Validates before writing anything."""
    if not entries:
        raise ValidationError("Stats batch cannot be empty")
    for entry in entries:
        if not entry.package_name:
            raise ValidationError("Package name is required")
        if entry.duration_ms <= 0:
            raise ValidationError(f"Duration must be positive for package '{entry.package_name}'")
        if entry.end_sync_time < entry.start_sync_time:
            raise ValidationError(f"End sync time precedes start sync time for package '{entry.package_name}'")

    for entry in entries:
        db.add(ChallengeParticipantStat(
            challenge_id=challenge_id,
            user_id=user_id,
            app_name=entry.app_name,
            package_name=entry.package_name,
            start_sync_time=entry.start_sync_time,
            end_sync_time=entry.end_sync_time,
            duration_ms=entry.duration_ms,
        ))
    try:
        await db.commit()
    except DBAPIError as exc:
        await db.rollback()
        raise TransientStoreError(f"Challenge stats submission failed: {exc}") from exc
    return len(entries)
