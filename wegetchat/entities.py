"""
In-memory entity model.

The Snapshot aggregate owns every entity. Components receive a Snapshot and
operate on the records inside it; only the mutation coordinator decides which
Snapshot is the published one.
"""

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field


DEFAULT_STATUS_TEXT = "Hey there! I am using WeGetChat."
STATUS_TEXT_MAX_LENGTH = 140


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class User(BaseModel):
    id: str = Field(default_factory=new_id)
    username: str
    username_lower: str
    password_hash: str
    pfp_url: str = ""
    status_text: str = DEFAULT_STATUS_TEXT
    notifications_enabled: bool = True
    created_at: datetime = Field(default_factory=utc_now)


class Friendship(BaseModel):
    """Directed edge; always stored together with its reverse."""
    user_id: str
    friend_id: str
    created_at: datetime = Field(default_factory=utc_now)


class Conversation(BaseModel):
    id: str = Field(default_factory=new_id)
    participants: list[str]
    created_at: datetime = Field(default_factory=utc_now)

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participants

    def other_participant(self, user_id: str) -> str:
        return next(p for p in self.participants if p != user_id)


class Attachment(BaseModel):
    """Reference to an already-stored upload."""
    url: str
    name: str = ""


class Message(BaseModel):
    id: str = Field(default_factory=new_id)
    conversation_id: str
    sender_id: str
    body: str = ""
    attachment_url: str = ""
    attachment_name: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    # Grows only; seeded with the sender
    read_by: list[str] = Field(default_factory=list)


class Notification(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    text: str
    created_at: datetime = Field(default_factory=utc_now)
    read: bool = False


class Snapshot(BaseModel):
    """
    Complete state of all entities at a point in time.

    Collections missing from a persisted document load as empty.
    """
    users: list[User] = Field(default_factory=list)
    conversations: list[Conversation] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)
    friendships: list[Friendship] = Field(default_factory=list)
    notifications: list[Notification] = Field(default_factory=list)

    def find_user(self, user_id: str) -> User | None:
        return next((u for u in self.users if u.id == user_id), None)

    def find_conversation(self, conversation_id: str) -> Conversation | None:
        return next((c for c in self.conversations if c.id == conversation_id), None)
