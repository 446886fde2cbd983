"""
Support Inbox

Messages addressed to the owner: free-form support messages (which may
come from unauthenticated visitors) and pending display-name change
requests awaiting approval.
"""

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import NotFound
from .utils import MAX_MESSAGE_LENGTH, coerce_text, utc_now_iso

logger = logging.getLogger(__name__)


class SupportKind(Enum):
    SUPPORT = "support"
    NAME_CHANGE = "name_change_request"


@dataclass
class SupportEntry:
    """
    An entry in the owner's inbox.

    Attributes:
        entry_id: Unique identifier
        kind: SupportKind
        sender: Sender display name, or "Anonymous"
        message: Body text
        sent_at: ISO 8601 timestamp
        user_id: Requesting user (name-change requests)
        current_name: Requester's name when filed (name-change requests)
        requested_name: Desired name (name-change requests)
    """

    entry_id: str
    kind: SupportKind
    sender: str
    message: str
    sent_at: str = ""
    user_id: Optional[str] = None
    current_name: Optional[str] = None
    requested_name: Optional[str] = None

    def __post_init__(self):
        if not self.sent_at:
            self.sent_at = utc_now_iso()

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.entry_id,
            "type": self.kind.value,
            "from": self.sender,
            "message": self.message,
            "sentAt": self.sent_at,
        }
        if self.kind == SupportKind.NAME_CHANGE:
            data.update(
                {
                    "userId": self.user_id,
                    "currentName": self.current_name,
                    "requestedName": self.requested_name,
                }
            )
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SupportEntry":
        return cls(
            entry_id=data["id"],
            kind=SupportKind(data.get("type", SupportKind.SUPPORT.value)),
            sender=data.get("from", "Anonymous"),
            message=data.get("message", ""),
            sent_at=data.get("sentAt", ""),
            user_id=data.get("userId"),
            current_name=data.get("currentName"),
            requested_name=data.get("requestedName"),
        )


class SupportInbox:
    """Stores support messages and name-change requests."""

    def __init__(self):
        self._entries: Dict[str, SupportEntry] = {}

    def add_support_message(self, sender: str, message: Any) -> SupportEntry:
        entry = SupportEntry(
            entry_id=f"support_{uuid.uuid4()}",
            kind=SupportKind.SUPPORT,
            sender=sender or "Anonymous",
            message=coerce_text(message, MAX_MESSAGE_LENGTH),
        )
        self._entries[entry.entry_id] = entry
        logger.info(f"Support message {entry.entry_id} from '{entry.sender}'")
        return entry

    def file_name_change(
        self, user_id: str, current_name: str, requested_name: str
    ) -> SupportEntry:
        """File a pending display-name change request."""
        entry = SupportEntry(
            entry_id=f"namechange_{uuid.uuid4()}",
            kind=SupportKind.NAME_CHANGE,
            sender=current_name,
            message=f'Name change request: "{current_name}" → "{requested_name}"',
            user_id=user_id,
            current_name=current_name,
            requested_name=requested_name,
        )
        self._entries[entry.entry_id] = entry
        logger.info(f"Name change request {entry.entry_id} filed by {user_id}")
        return entry

    def get_name_change(self, request_id: str) -> SupportEntry:
        """
        Look up a pending name-change request.

        Raises:
            NotFound: No such request
        """
        entry = self._entries.get(request_id)
        if entry is None or entry.kind != SupportKind.NAME_CHANGE:
            raise NotFound("Request not found")
        return entry

    def pending_name_changes(self) -> List[SupportEntry]:
        return [e for e in self._entries.values() if e.kind == SupportKind.NAME_CHANGE]

    def remove(self, entry_id: str) -> bool:
        return self._entries.pop(entry_id, None) is not None

    def list_entries(self) -> List[SupportEntry]:
        return sorted(self._entries.values(), key=lambda e: e.sent_at)

    def forget_user(self, user_id: str):
        for entry_id in [
            eid for eid, e in self._entries.items() if e.user_id == user_id
        ]:
            del self._entries[entry_id]

    # Snapshot

    def to_snapshot(self) -> Dict[str, Any]:
        return {eid: entry.to_dict() for eid, entry in self._entries.items()}

    def load_snapshot(self, data: Dict[str, Any]):
        self._entries = {
            eid: SupportEntry.from_dict({**entry, "id": eid})
            for eid, entry in (data or {}).items()
        }
