"""
Pydantic schemas for query results and the HTTP surface.

This module contains:
- Views returned by core queries (profiles, summaries, messages with read state)
- Request models for incoming data validation
- Response envelopes for API responses
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from wegetchat.entities import Message, Notification, User


ReadState = Literal["sent", "read", "received"]


# =============================================================================
# Query Views
# =============================================================================

class CamelModel(BaseModel):
    """Serialized with camelCase keys; built from snake_case names in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PublicUser(CamelModel):
    """What any user may see about another user."""
    id: str
    username: str
    pfp_url: str = ""

    @classmethod
    def from_user(cls, user: User) -> "PublicUser":
        return cls(id=user.id, username=user.username, pfp_url=user.pfp_url)


class UserProfile(PublicUser):
    """The caller's own profile, including settings."""
    status_text: str
    notifications_enabled: bool

    @classmethod
    def from_user(cls, user: User) -> "UserProfile":
        return cls(
            id=user.id,
            username=user.username,
            pfp_url=user.pfp_url,
            status_text=user.status_text,
            notifications_enabled=user.notifications_enabled,
        )


class UserSummary(PublicUser):
    """Search result entry."""
    is_friend: bool = False


class MessageView(CamelModel):
    """
    A message as seen by one participant.

    read_state is derived from read_by at query time and never stored.
    """
    id: str
    conversation_id: str
    sender_id: str
    body: str = ""
    attachment_url: str = ""
    attachment_name: str = ""
    created_at: datetime
    read_by: list[str]
    read_state: ReadState

    @classmethod
    def from_message(cls, message: Message, read_state: ReadState) -> "MessageView":
        return cls(**message.model_dump(), read_state=read_state)


class NotificationView(CamelModel):
    id: str
    user_id: str
    text: str
    created_at: datetime
    read: bool

    @classmethod
    def from_notification(cls, notification: Notification) -> "NotificationView":
        return cls(**notification.model_dump())


class ConversationSummary(CamelModel):
    id: str
    other_user: Optional[PublicUser] = None
    latest_message: Optional[MessageView] = None
    unread_count: int = Field(..., ge=0)


# =============================================================================
# Request Models
# =============================================================================

class CredentialsRequest(BaseModel):
    """Body of /api/register and /api/login; presence is checked by the core."""
    username: Optional[str] = None
    password: Optional[str] = None


# =============================================================================
# Response Models
# =============================================================================

class UserResponse(BaseModel):
    user: UserProfile


class UsersResponse(BaseModel):
    users: list[UserSummary] = Field(default_factory=list)


class ConversationsResponse(BaseModel):
    conversations: list[ConversationSummary] = Field(default_factory=list)


class MessagesResponse(BaseModel):
    messages: list[MessageView] = Field(default_factory=list)


class MessageResponse(BaseModel):
    message: MessageView


class NotificationsResponse(BaseModel):
    notifications: list[NotificationView] = Field(default_factory=list)


class OkResponse(BaseModel):
    ok: bool = True


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    error: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
