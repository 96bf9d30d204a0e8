"""
Conversation directory.

Holds exactly one conversation per unordered pair of users and builds the
per-user conversation list.
"""

from datetime import datetime, timezone

from wegetchat import ledger
from wegetchat.entities import Conversation, Snapshot
from wegetchat.schemas import ConversationSummary, MessageView, PublicUser

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def find_for_pair(snapshot: Snapshot, user_a: str, user_b: str) -> Conversation | None:
    pair = {user_a, user_b}
    return next(
        (c for c in snapshot.conversations if len(c.participants) == 2 and set(c.participants) == pair),
        None,
    )


def get_or_create(snapshot: Snapshot, user_a: str, user_b: str) -> Conversation:
    conversation = find_for_pair(snapshot, user_a, user_b)
    if conversation is None:
        conversation = Conversation(participants=[user_a, user_b])
        snapshot.conversations.append(conversation)
    return conversation


def list_for_user(snapshot: Snapshot, user_id: str) -> list[ConversationSummary]:
    """
    Summaries of every conversation of `user_id`.

    Sorted by latest message, newest first; conversations without messages
    come last.
    """
    summaries = []
    for conversation in snapshot.conversations:
        if not conversation.has_participant(user_id):
            continue
        other_id = conversation.other_participant(user_id)
        other = snapshot.find_user(other_id)
        messages = ledger.messages_in(snapshot, conversation.id)
        # Ascending and stable, so the last entry is the latest insertion on ties
        latest = messages[-1] if messages else None
        summaries.append(
            ConversationSummary(
                id=conversation.id,
                other_user=PublicUser.from_user(other) if other else None,
                latest_message=(
                    MessageView.from_message(latest, ledger.read_state(latest, user_id))
                    if latest else None
                ),
                unread_count=sum(
                    1 for m in messages if m.sender_id == other_id and user_id not in m.read_by
                ),
            )
        )

    summaries.sort(
        key=lambda s: s.latest_message.created_at if s.latest_message else EPOCH,
        reverse=True,
    )
    return summaries


def get_messages(snapshot: Snapshot, conversation_id: str, caller_id: str) -> list[MessageView]:
    """
    Messages of a conversation, oldest first, with the caller's read state.

    Raises:
        NotFoundError: conversation missing or caller not a participant
    """
    conversation = ledger.require_participant(snapshot, conversation_id, caller_id)
    return [
        MessageView.from_message(m, ledger.read_state(m, caller_id))
        for m in ledger.messages_in(snapshot, conversation.id)
    ]
