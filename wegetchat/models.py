"""
SQLAlchemy ORM models for the snapshot tables.

Each table holds one collection of the snapshot. The `position` column keeps
insertion order across a save/load cycle. For the in-memory entities, see
entities.py.
"""

from sqlalchemy import JSON, Boolean, Column, Integer, String, Text

from wegetchat.storage import Base


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    position = Column(Integer, nullable=False, index=True)
    username = Column(String, nullable=False)
    username_lower = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    pfp_url = Column(String, nullable=False, default="")
    status_text = Column(String(140), nullable=False, default="")
    notifications_enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(String, nullable=False)  # ISO-8601 UTC


class ConversationRow(Base):
    __tablename__ = "conversations"

    id = Column(String, primary_key=True)
    position = Column(Integer, nullable=False, index=True)
    participants = Column(JSON, nullable=False)
    created_at = Column(String, nullable=False)


class MessageRow(Base):
    __tablename__ = "messages"

    id = Column(String, primary_key=True)
    position = Column(Integer, nullable=False, index=True)
    conversation_id = Column(String, nullable=False, index=True)
    sender_id = Column(String, nullable=False)
    body = Column(Text, nullable=False, default="")
    attachment_url = Column(String, nullable=False, default="")
    attachment_name = Column(String, nullable=False, default="")
    created_at = Column(String, nullable=False)
    read_by = Column(JSON, nullable=False)


class FriendshipRow(Base):
    __tablename__ = "friendships"

    user_id = Column(String, primary_key=True)
    friend_id = Column(String, primary_key=True)
    position = Column(Integer, nullable=False, index=True)
    created_at = Column(String, nullable=False)


class NotificationRow(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True)
    position = Column(Integer, nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    text = Column(Text, nullable=False)
    created_at = Column(String, nullable=False)
    read = Column(Boolean, nullable=False, default=False)


# Snapshot collection name -> table model
COLLECTION_MODELS = {
    "users": UserRow,
    "conversations": ConversationRow,
    "messages": MessageRow,
    "friendships": FriendshipRow,
    "notifications": NotificationRow,
}
