"""
Message ledger: ordered, append-only messages with read receipts.

read_by is the only stored read fact. "sent"/"read"/"received" and unread
counts are computed from it whenever a caller asks.
"""

import logging
from typing import Optional

from wegetchat import notifications
from wegetchat.entities import Attachment, Conversation, Message, Snapshot
from wegetchat.errors import NotFoundError, ValidationError
from wegetchat.schemas import ReadState

logger = logging.getLogger(__name__)

CONVERSATION_NOT_FOUND = "Conversation not found"


def require_participant(snapshot: Snapshot, conversation_id: str, user_id: str) -> Conversation:
    """
    Resolve a conversation the user takes part in.

    Missing conversations and conversations of other users raise the same
    NotFoundError so existence is not leaked.
    """
    conversation = snapshot.find_conversation(conversation_id)
    if conversation is None or not conversation.has_participant(user_id):
        raise NotFoundError(CONVERSATION_NOT_FOUND)
    return conversation


def messages_in(snapshot: Snapshot, conversation_id: str) -> list[Message]:
    """Messages of a conversation, oldest first; ties keep insertion order."""
    found = [m for m in snapshot.messages if m.conversation_id == conversation_id]
    found.sort(key=lambda m: m.created_at)
    return found


def append(
    snapshot: Snapshot,
    conversation_id: str,
    sender_id: str,
    body: Optional[str] = None,
    attachment: Optional[Attachment] = None,
    retention: Optional[int] = None,
) -> Message:
    """
    Append a message and notify the other participant.

    Raises:
        NotFoundError: conversation missing or sender not a participant
        ValidationError: neither body nor attachment given
    """
    conversation = require_participant(snapshot, conversation_id, sender_id)
    body = (body or "").strip()
    if not body and attachment is None:
        raise ValidationError("Message body or attachment required")

    message = Message(
        conversation_id=conversation.id,
        sender_id=sender_id,
        body=body,
        attachment_url=attachment.url if attachment else "",
        attachment_name=attachment.name if attachment else "",
        read_by=[sender_id],
    )
    snapshot.messages.append(message)

    sender = snapshot.find_user(sender_id)
    recipient_id = conversation.other_participant(sender_id)
    notifications.append(
        snapshot, recipient_id, f"New message from {sender.username}", retention=retention
    )
    logger.debug(f"Message {message.id} appended to conversation {conversation.id}")
    return message


def mark_read(snapshot: Snapshot, conversation_id: str, reader_id: str) -> int:
    """
    Add `reader_id` to read_by of every message it did not send.

    Idempotent. Returns the number of messages newly marked.
    """
    conversation = require_participant(snapshot, conversation_id, reader_id)
    marked = 0
    for message in snapshot.messages:
        if message.conversation_id != conversation.id or message.sender_id == reader_id:
            continue
        if reader_id not in message.read_by:
            message.read_by.append(reader_id)
            marked += 1
    return marked


def read_state(message: Message, viewer_id: str) -> ReadState:
    if message.sender_id == viewer_id:
        return "read" if len(message.read_by) > 1 else "sent"
    return "received"
