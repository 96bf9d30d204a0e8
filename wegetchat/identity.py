"""
Users and the symmetric friend graph.
"""

import logging
from typing import Callable, Optional

from wegetchat import conversations, notifications
from wegetchat.entities import STATUS_TEXT_MAX_LENGTH, Friendship, Snapshot, User
from wegetchat.errors import ConflictError, InvalidCredentialError, NotFoundError, ValidationError
from wegetchat.schemas import UserSummary

logger = logging.getLogger(__name__)

USERNAME_MIN_LENGTH = 3
PASSWORD_MIN_LENGTH = 4
SEARCH_LIMIT = 20


def normalize_username(username: str) -> str:
    return username.strip().lower()


def find_by_username(snapshot: Snapshot, username: str) -> Optional[User]:
    normalized = normalize_username(username)
    return next((u for u in snapshot.users if u.username_lower == normalized), None)


def get_user(snapshot: Snapshot, user_id: str) -> User:
    user = snapshot.find_user(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def register(
    snapshot: Snapshot,
    username: Optional[str],
    password: Optional[str],
    hash_password: Callable[[str], str],
) -> User:
    """
    Create a user.

    Checks run in order: both fields present, username length, password
    length, then case-insensitive uniqueness.
    """
    if not username or not password:
        raise ValidationError("Username and password are required")
    normalized = normalize_username(username)
    if len(normalized) < USERNAME_MIN_LENGTH:
        raise ValidationError("Username must have at least 3 characters")
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError("Password must have at least 4 characters")
    if any(u.username_lower == normalized for u in snapshot.users):
        raise ConflictError("Username already taken")

    user = User(
        username=username.strip(),
        username_lower=normalized,
        password_hash=hash_password(password),
    )
    snapshot.users.append(user)
    logger.info(f"User registered: {user.id}")
    return user


def verify_credential(
    snapshot: Snapshot,
    username: Optional[str],
    password: Optional[str],
    verify_password: Callable[[str, str], bool],
    dummy_hash: str,
) -> User:
    """
    Look up a user by name and check the password.

    Unknown user and wrong password raise the same error and cost one
    password check each; `dummy_hash` is checked when the user is unknown.
    """
    user = find_by_username(snapshot, username or "")
    if user is None:
        verify_password(password or "", dummy_hash)
        logger.info("Login failed: unknown username")
        raise InvalidCredentialError("Invalid username or password")
    if not verify_password(password or "", user.password_hash):
        logger.info(f"Login failed: wrong password for user {user.id}")
        raise InvalidCredentialError("Invalid username or password")
    return user


def update_profile(
    snapshot: Snapshot,
    user_id: str,
    status_text: Optional[str] = None,
    notifications_enabled: Optional[bool] = None,
    pfp_url: Optional[str] = None,
) -> User:
    """Apply the given profile fields; None leaves a field unchanged."""
    user = get_user(snapshot, user_id)
    if status_text is not None:
        user.status_text = status_text[:STATUS_TEXT_MAX_LENGTH]
    if notifications_enabled is not None:
        user.notifications_enabled = notifications_enabled
    if pfp_url is not None:
        user.pfp_url = pfp_url
    return user


def friend_ids(snapshot: Snapshot, user_id: str) -> set[str]:
    return {f.friend_id for f in snapshot.friendships if f.user_id == user_id}


def search_users(snapshot: Snapshot, caller_id: str, query: Optional[str]) -> list[UserSummary]:
    """Up to 20 users whose normalized name contains the query, in insertion order."""
    needle = normalize_username(query or "")
    friends = friend_ids(snapshot, caller_id)
    matches = [
        u for u in snapshot.users
        if u.id != caller_id and needle in u.username_lower
    ][:SEARCH_LIMIT]
    return [
        UserSummary(id=u.id, username=u.username, pfp_url=u.pfp_url, is_friend=u.id in friends)
        for u in matches
    ]


def add_friend(
    snapshot: Snapshot,
    caller_id: str,
    target_id: str,
    retention: Optional[int] = None,
) -> bool:
    """
    Befriend `target_id`.

    The first call creates both edges, the pair's conversation and a
    notification for the target. Later calls change nothing.

    Returns:
        True if the friendship was created, False if it already existed
    """
    if target_id == caller_id:
        raise ConflictError("Cannot add yourself")
    caller = get_user(snapshot, caller_id)
    target = get_user(snapshot, target_id)

    if target.id in friend_ids(snapshot, caller.id):
        return False

    snapshot.friendships.append(Friendship(user_id=caller.id, friend_id=target.id))
    snapshot.friendships.append(Friendship(user_id=target.id, friend_id=caller.id))
    conversations.get_or_create(snapshot, caller.id, target.id)
    notifications.append(
        snapshot, target.id, f"{caller.username} added you as a friend.", retention=retention
    )
    logger.info(f"Friendship created: {caller.id} <-> {target.id}")
    return True
