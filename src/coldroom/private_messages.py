"""
Private Message Store

Per-user-pair message threads. Every message is stored under both the
sender's and the recipient's namespace so either side can look the thread
up directly.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List

from .errors import NotFound
from .utils import MAX_MESSAGE_LENGTH, coerce_text, utc_now_iso

logger = logging.getLogger(__name__)

PRIVATE_HISTORY_LIMIT = 200  # messages returned by get-private-messages


@dataclass
class PrivateMessage:
    """
    A direct message between two users.

    Attributes:
        message_id: Unique identifier
        sender_id: Sending user
        recipient_id: Receiving user
        sender_name: Sender display name at send time
        text: Message body
        created_at: ISO 8601 timestamp
        edited: True once the sender has edited it
    """

    message_id: str
    sender_id: str
    recipient_id: str
    sender_name: str
    text: str
    created_at: str = ""
    edited: bool = False

    def __post_init__(self):
        if not self.created_at:
            self.created_at = utc_now_iso()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.message_id,
            "from": self.sender_id,
            "to": self.recipient_id,
            "fromName": self.sender_name,
            "text": self.text,
            "date": self.created_at,
            "edited": self.edited,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PrivateMessage":
        return cls(
            message_id=data["id"],
            sender_id=data["from"],
            recipient_id=data["to"],
            sender_name=data.get("fromName", ""),
            text=data.get("text", ""),
            created_at=data.get("date", ""),
            edited=bool(data.get("edited", False)),
        )


class PrivateMessageStore:
    """
    Threads keyed as owner_id -> peer_id -> [PrivateMessage].
    """

    def __init__(self):
        self._threads: Dict[str, Dict[str, List[PrivateMessage]]] = {}

    def _thread(self, owner_id: str, peer_id: str) -> List[PrivateMessage]:
        return self._threads.setdefault(owner_id, {}).setdefault(peer_id, [])

    def send(
        self, sender_id: str, sender_name: str, recipient_id: str, text: Any
    ) -> PrivateMessage:
        """
        Store a new private message in both participants' threads.

        Block checks are done by the caller.

        Returns:
            The stored message
        """
        message = PrivateMessage(
            message_id=f"pm_{uuid.uuid4()}",
            sender_id=sender_id,
            recipient_id=recipient_id,
            sender_name=sender_name,
            text=coerce_text(text, MAX_MESSAGE_LENGTH),
        )
        self._thread(sender_id, recipient_id).append(message)
        if recipient_id != sender_id:
            # Separate copy so the two namespaces stay independent on reload
            self._thread(recipient_id, sender_id).append(
                PrivateMessage.from_dict(message.to_dict())
            )
        logger.debug(f"Private message {message.message_id} {sender_id} -> {recipient_id}")
        return message

    def get_thread(
        self, user_id: str, peer_id: str, limit: int = PRIVATE_HISTORY_LIMIT
    ) -> List[PrivateMessage]:
        """Last `limit` messages between user_id and peer_id."""
        thread = self._threads.get(user_id, {}).get(peer_id, [])
        return thread[-limit:]

    def edit(
        self, editor_id: str, peer_id: str, message_id: str, new_text: Any
    ) -> PrivateMessage:
        """
        Edit a private message in both copies of the thread.

        Raises:
            NotFound: Unknown message or the editor is not its sender
        """
        text = coerce_text(new_text, MAX_MESSAGE_LENGTH)
        edited = None
        for owner_id, other_id in ((editor_id, peer_id), (peer_id, editor_id)):
            for message in self._threads.get(owner_id, {}).get(other_id, []):
                if message.message_id == message_id and message.sender_id == editor_id:
                    message.text = text
                    message.edited = True
                    edited = edited or message
        if edited is None:
            raise NotFound("Message not found or permission denied")
        return edited

    def forget_user(self, user_id: str):
        """Delete a user's namespace and their thread in everyone else's."""
        self._threads.pop(user_id, None)
        for peers in self._threads.values():
            peers.pop(user_id, None)

    # Snapshot

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            owner_id: {
                peer_id: [message.to_dict() for message in thread]
                for peer_id, thread in peers.items()
            }
            for owner_id, peers in self._threads.items()
        }

    def load_snapshot(self, data: Dict[str, Any]):
        self._threads = {
            owner_id: {
                peer_id: [PrivateMessage.from_dict(m) for m in thread]
                for peer_id, thread in (peers or {}).items()
            }
            for owner_id, peers in (data or {}).items()
        }
