"""
ChatService: the operation surface of the messaging core.

Mutations go through the MutationCoordinator; queries read the published
snapshot. Every result is a view model, never a live entity.
"""

import logging
from typing import Callable, Optional

from wegetchat import conversations, identity, ledger, notifications
from wegetchat.coordinator import MutationCoordinator
from wegetchat.entities import Attachment, Notification
from wegetchat.schemas import ConversationSummary, MessageView, UserProfile, UserSummary
from wegetchat.security import hash_password, verify_password
from wegetchat.storage import SnapshotStore

logger = logging.getLogger(__name__)


class ChatService:
    def __init__(
        self,
        store: SnapshotStore,
        notification_retention: Optional[int] = None,
        hasher: Callable[[str], str] = hash_password,
        verifier: Callable[[str, str], bool] = verify_password,
    ):
        self.store = store
        self.coordinator = MutationCoordinator(store, store.load())
        self.notification_retention = notification_retention
        self._hash_password = hasher
        self._verify_password = verifier
        # Same work factor as real hashes, so unknown usernames cost a full check
        self._dummy_hash = hasher("unknown-user-placeholder")

    # -------------------------------------------------------------------------
    # Identity & friend graph
    # -------------------------------------------------------------------------

    def register(self, username: Optional[str], password: Optional[str]) -> UserProfile:
        # Hash before taking the lock; PBKDF2 is slow on purpose
        password_hash = ""
        if username and password and len(password) >= identity.PASSWORD_MIN_LENGTH:
            password_hash = self._hash_password(password)

        return self.coordinator.mutate(
            "register",
            lambda s: UserProfile.from_user(
                identity.register(s, username, password, lambda _: password_hash)
            ),
        )

    def verify_credential(self, username: Optional[str], password: Optional[str]) -> UserProfile:
        user = identity.verify_credential(
            self.coordinator.snapshot, username, password, self._verify_password, self._dummy_hash
        )
        return UserProfile.from_user(user)

    def get_profile(self, user_id: str) -> UserProfile:
        return UserProfile.from_user(identity.get_user(self.coordinator.snapshot, user_id))

    def update_profile(
        self,
        caller_id: str,
        status_text: Optional[str] = None,
        notifications_enabled: Optional[bool] = None,
        pfp_url: Optional[str] = None,
    ) -> UserProfile:
        return self.coordinator.mutate(
            "update_profile",
            lambda s: UserProfile.from_user(
                identity.update_profile(s, caller_id, status_text, notifications_enabled, pfp_url)
            ),
        )

    def search_users(self, caller_id: str, query: Optional[str]) -> list[UserSummary]:
        return identity.search_users(self.coordinator.snapshot, caller_id, query)

    def add_friend(self, caller_id: str, target_id: str) -> bool:
        return self.coordinator.mutate(
            "add_friend",
            lambda s: identity.add_friend(s, caller_id, target_id, self.notification_retention),
        )

    # -------------------------------------------------------------------------
    # Conversations & messages
    # -------------------------------------------------------------------------

    def list_conversations(self, caller_id: str) -> list[ConversationSummary]:
        return conversations.list_for_user(self.coordinator.snapshot, caller_id)

    def get_messages(self, caller_id: str, conversation_id: str) -> list[MessageView]:
        return conversations.get_messages(self.coordinator.snapshot, conversation_id, caller_id)

    def send_message(
        self,
        caller_id: str,
        conversation_id: str,
        body: Optional[str] = None,
        attachment: Optional[Attachment] = None,
    ) -> MessageView:
        def apply(snapshot):
            message = ledger.append(
                snapshot, conversation_id, caller_id, body, attachment, self.notification_retention
            )
            return MessageView.from_message(message, ledger.read_state(message, caller_id))

        return self.coordinator.mutate("send_message", apply)

    def mark_conversation_read(self, caller_id: str, conversation_id: str) -> int:
        return self.coordinator.mutate(
            "mark_conversation_read",
            lambda s: ledger.mark_read(s, conversation_id, caller_id),
        )

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    def list_notifications(self, caller_id: str, limit: Optional[int] = None) -> list[Notification]:
        return [
            n.model_copy()
            for n in notifications.list_for_user(self.coordinator.snapshot, caller_id, limit)
        ]

    def mark_all_notifications_read(self, caller_id: str) -> int:
        return self.coordinator.mutate(
            "mark_all_notifications_read",
            lambda s: notifications.mark_all_read(s, caller_id),
        )

    def check_health(self) -> bool:
        return self.store.check_health()

    def close(self) -> None:
        self.store.close()
