"""
Per-user notification feed.

Append-only from the feed's point of view; the read flag only moves from
False to True. Storage is capped per user by a retention limit.
"""

from typing import Optional

from wegetchat.entities import Notification, Snapshot


def append(snapshot: Snapshot, user_id: str, text: str, retention: Optional[int] = None) -> Notification:
    notification = Notification(user_id=user_id, text=text)
    snapshot.notifications.append(notification)
    if retention is not None:
        _apply_retention(snapshot, user_id, retention)
    return notification


def _apply_retention(snapshot: Snapshot, user_id: str, retention: int) -> None:
    """Drop the oldest notifications of `user_id` beyond `retention`."""
    owned = list_for_user(snapshot, user_id)
    if len(owned) <= retention:
        return
    keep = {n.id for n in owned[:retention]}
    snapshot.notifications = [
        n for n in snapshot.notifications if n.user_id != user_id or n.id in keep
    ]


def list_for_user(snapshot: Snapshot, user_id: str, limit: Optional[int] = None) -> list[Notification]:
    """Notifications of `user_id`, newest first."""
    # Reverse before the stable sort so later insertions win timestamp ties
    owned = [n for n in reversed(snapshot.notifications) if n.user_id == user_id]
    owned.sort(key=lambda n: n.created_at, reverse=True)
    return owned if limit is None else owned[:limit]


def mark_all_read(snapshot: Snapshot, user_id: str) -> int:
    """Mark every notification of `user_id` read; returns how many changed."""
    changed = 0
    for notification in snapshot.notifications:
        if notification.user_id == user_id and not notification.read:
            notification.read = True
            changed += 1
    return changed
