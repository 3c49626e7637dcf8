"""Turn queued notification messages into deliverable payloads.

One renderer per ``NotificationKind``. Adding a kind without a renderer
fails at import time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from apptime.notifications.messages import (
    ChallengeRewardNotification,
    ChallengeWinnerNotification,
    CoinsAddedNotification,
    NotificationKind,
    NotificationMessage,
)

CHALLENGE_DEEPLINK = "apptime://screen/challenge_detail/{challenge_id}"
COIN_HISTORY_DEEPLINK = "coin_history"

# Human-readable phrase per coin source
COIN_SOURCE_TEXT = {
    "CHALLENGE_WIN": "winning a challenge",
    "CHALLENGE_PARTICIPATION": "participating in a challenge",
    "DAILY_LOGIN": "daily login",
    "STREAK_MILESTONE": "reaching a streak milestone",
    "REFERRAL": "referring a friend",
    "ACHIEVEMENT": "completing an achievement",
    "ADMIN_GRANT": "admin grant",
    "PURCHASE": "purchase",
}


@dataclass(frozen=True)
class NotificationPayload:
    """What the sender delivers: the same content to every listed user."""

    user_ids: tuple[str, ...]
    template_id: str
    title: str
    body: str
    deeplink: str
    data: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "template_id": self.template_id,
            "title": self.title,
            "body": self.body,
            "deeplink": self.deeplink,
            "data": self.data,
        }


def _render_challenge_reward(msg: ChallengeRewardNotification) -> NotificationPayload:
    return NotificationPayload(
        user_ids=(msg.user_id,),
        template_id=NotificationKind.CHALLENGE_REWARD.value,
        title="Challenge Reward!",
        body=f"You won rank #{msg.rank} in '{msg.challenge_title}'! You earned {msg.coins} coins.",
        deeplink=CHALLENGE_DEEPLINK.format(challenge_id=msg.challenge_id),
        data={"challenge_id": msg.challenge_id, "rank": msg.rank, "coins": msg.coins},
    )


def _render_challenge_winner(msg: ChallengeWinnerNotification) -> NotificationPayload:
    display_name = msg.winner_username.strip() or msg.winner_user_id
    return NotificationPayload(
        user_ids=tuple(uid for uid in msg.other_user_ids if uid != msg.winner_user_id),
        template_id=NotificationKind.CHALLENGE_WINNER.value,
        title="Challenge Winner!",
        body=f"{display_name} won the challenge '{msg.challenge_title}' and got {msg.coins} coins!",
        deeplink=CHALLENGE_DEEPLINK.format(challenge_id=msg.challenge_id),
        data={"challenge_id": msg.challenge_id, "winner_user_id": msg.winner_user_id, "coins": msg.coins},
    )


def _render_coins_added(msg: CoinsAddedNotification) -> NotificationPayload:
    source_text = COIN_SOURCE_TEXT.get(msg.source.upper(), "activity")
    if msg.description:
        body = f"You earned {msg.amount} coins for {source_text}: {msg.description}"
    else:
        body = f"You earned {msg.amount} coins for {source_text}!"
    return NotificationPayload(
        user_ids=(msg.user_id,),
        template_id=NotificationKind.COINS_ADDED.value,
        title="Coins Earned!",
        body=body,
        deeplink=COIN_HISTORY_DEEPLINK,
        data={"amount": msg.amount, "source": msg.source},
    )


RENDERERS: dict[NotificationKind, Callable[[Any], NotificationPayload]] = {
    NotificationKind.CHALLENGE_REWARD: _render_challenge_reward,
    NotificationKind.CHALLENGE_WINNER: _render_challenge_winner,
    NotificationKind.COINS_ADDED: _render_coins_added,
}

_missing = set(NotificationKind) - set(RENDERERS)
assert not _missing, f"No renderer for notification kinds: {sorted(k.value for k in _missing)}"


def render(message: NotificationMessage) -> NotificationPayload:
    """Render a queued message into a payload."""
    return RENDERERS[message.kind](message)
