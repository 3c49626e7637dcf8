"""Notification messages queued by settlement.

Each message is an immutable record carrying a ``kind`` tag. Consumers
dispatch on ``kind``; see ``apptime.notifications.render``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union

from apptime.periods import utcnow


class NotificationKind(str, Enum):
    CHALLENGE_REWARD = "challenge_reward"
    CHALLENGE_WINNER = "challenge_winner"
    COINS_ADDED = "coins_added"


def _message_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class ChallengeRewardNotification:
    """Tells a winner which rank they reached and how many coins it paid."""

    user_id: str
    challenge_id: int
    challenge_title: str
    rank: int
    coins: int
    kind: NotificationKind = field(default=NotificationKind.CHALLENGE_REWARD, init=False)
    message_id: str = field(default_factory=_message_id)
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ChallengeWinnerNotification:
    """Tells the other participants who won a challenge."""

    winner_user_id: str
    challenge_id: int
    challenge_title: str
    coins: int
    other_user_ids: tuple[str, ...]
    winner_username: str = ""
    kind: NotificationKind = field(default=NotificationKind.CHALLENGE_WINNER, init=False)
    message_id: str = field(default_factory=_message_id)
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class CoinsAddedNotification:
    user_id: str
    amount: int
    source: str
    description: str | None = None
    kind: NotificationKind = field(default=NotificationKind.COINS_ADDED, init=False)
    message_id: str = field(default_factory=_message_id)
    timestamp: datetime = field(default_factory=utcnow)


NotificationMessage = Union[
    ChallengeRewardNotification,
    ChallengeWinnerNotification,
    CoinsAddedNotification,
]
