"""
Moderation State

Mute list, ban list and per-user block lists. These are independent of
room membership; a mute only remembers which room it was issued from.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set

from .errors import PermissionDenied
from .user_registry import User
from .utils import coerce_int, epoch_seconds, utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_MUTE_REASON = "Rule violation"
DEFAULT_BAN_REASON = "Violation"


@dataclass
class MuteRecord:
    """
    An active mute.

    Attributes:
        user_id: Muted user
        display_name: Muted user's name when the mute was issued
        reason: Reason shown to moderators
        muted_by: Issuer display name
        muted_by_id: Issuer user ID
        by_owner: True when the owner issued it
        expires_at: Epoch seconds after which the mute lapses, or None
        room_id: Room the mute was issued from
        muted_at: ISO 8601 timestamp of issue
    """

    user_id: str
    display_name: str
    reason: str
    muted_by: str
    muted_by_id: str
    by_owner: bool
    expires_at: Optional[float] = None
    room_id: Optional[str] = None
    muted_at: str = ""

    def __post_init__(self):
        if not self.muted_at:
            self.muted_at = utc_now_iso()

    @property
    def temporary(self) -> bool:
        return self.expires_at is not None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "username": self.display_name,
            "reason": self.reason,
            "mutedBy": self.muted_by,
            "mutedById": self.muted_by_id,
            "byOwner": self.by_owner,
            "expires": self.expires_at,
            "temporary": self.temporary,
            "roomId": self.room_id,
            "mutedAt": self.muted_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MuteRecord":
        return cls(
            user_id=data["userId"],
            display_name=data.get("username", ""),
            reason=data.get("reason", DEFAULT_MUTE_REASON),
            muted_by=data.get("mutedBy", ""),
            muted_by_id=data.get("mutedById", ""),
            by_owner=bool(data.get("byOwner", False)),
            expires_at=data.get("expires"),
            room_id=data.get("roomId"),
            muted_at=data.get("mutedAt", ""),
        )


@dataclass
class BanRecord:
    """
    An account ban.

    Attributes:
        user_id: Banned user
        display_name: Banned user's name at ban time
        reason: Reason sent to the banned user
        banned_by: Display name of the owner who issued it
        banned_at: ISO 8601 timestamp
    """

    user_id: str
    display_name: str
    reason: str
    banned_by: str
    banned_at: str = ""

    def __post_init__(self):
        if not self.banned_at:
            self.banned_at = utc_now_iso()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "username": self.display_name,
            "reason": self.reason,
            "bannedBy": self.banned_by,
            "bannedAt": self.banned_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BanRecord":
        return cls(
            user_id=data["userId"],
            display_name=data.get("username", ""),
            reason=data.get("reason", DEFAULT_BAN_REASON),
            banned_by=data.get("bannedBy", ""),
            banned_at=data.get("bannedAt", ""),
        )


class ModerationState:
    """
    Holds mutes, bans and blocks.

    Permission rules that depend on the issuer and the target live here.
    Whether the issuer may mute at all (owner or room moderator) is
    decided by the caller.
    """

    def __init__(self):
        self._mutes: Dict[str, MuteRecord] = {}
        self._bans: Dict[str, BanRecord] = {}
        self._blocks: Dict[str, Set[str]] = {}

    # Mutes

    def mute(
        self,
        target: User,
        duration_minutes: Any,
        reason: Optional[str],
        issuer: User,
        room_id: Optional[str] = None,
        now: Optional[float] = None,
    ) -> MuteRecord:
        """
        Mute a user.

        Args:
            target: User to mute
            duration_minutes: Minutes until expiry; 0 (or anything that does
                not parse to a positive integer) means permanent
            reason: Optional reason
            issuer: User issuing the mute
            room_id: Room the mute was issued from
            now: Current epoch seconds, for tests

        Returns:
            The stored MuteRecord

        Raises:
            PermissionDenied: If the target is the owner
        """
        if target.is_owner:
            raise PermissionDenied("Cannot mute owner")

        minutes = coerce_int(duration_minutes, 0)
        expires_at = None
        if minutes > 0:
            current = epoch_seconds() if now is None else now
            expires_at = current + minutes * 60

        record = MuteRecord(
            user_id=target.user_id,
            display_name=target.display_name,
            reason=reason or DEFAULT_MUTE_REASON,
            muted_by=issuer.display_name,
            muted_by_id=issuer.user_id,
            by_owner=issuer.is_owner,
            expires_at=expires_at,
            room_id=room_id,
        )
        self._mutes[target.user_id] = record
        logger.info(
            f"User {target.user_id} muted by {issuer.user_id} "
            f"({'permanent' if expires_at is None else f'{minutes} min'})"
        )
        return record

    def get_mute(
        self, user_id: str, now: Optional[float] = None
    ) -> Optional[MuteRecord]:
        """Return the active mute for a user, purging it if it has lapsed."""
        record = self._mutes.get(user_id)
        if record is None:
            return None
        current = epoch_seconds() if now is None else now
        if record.is_expired(current):
            del self._mutes[user_id]
            logger.info(f"Mute for user {user_id} expired")
            return None
        return record

    def is_muted(self, user_id: str, now: Optional[float] = None) -> bool:
        return self.get_mute(user_id, now) is not None

    def can_unmute(
        self,
        record: MuteRecord,
        requester_id: str,
        requester_is_owner: bool,
        requester_is_moderator: bool,
    ) -> bool:
        if requester_is_owner:
            return True
        if not requester_is_moderator:
            return False
        return record.muted_by_id == requester_id or not record.by_owner

    def unmute(
        self,
        target_id: str,
        requester_id: str,
        requester_is_owner: bool,
        requester_is_moderator: bool = False,
    ) -> bool:
        """
        Lift a mute.

        The owner may lift any mute. A moderator may lift mutes they issued
        and mutes that were not issued by the owner.

        Returns:
            True if a mute was removed, False if the user was not muted

        Raises:
            PermissionDenied: If the requester may not lift this mute
        """
        record = self.get_mute(target_id)
        if record is None:
            return False
        if not self.can_unmute(
            record, requester_id, requester_is_owner, requester_is_moderator
        ):
            raise PermissionDenied("You can only unmute users you muted")
        del self._mutes[target_id]
        logger.info(f"User {target_id} unmuted by {requester_id}")
        return True

    def unmute_many(
        self,
        target_ids: Iterable[str],
        requester_id: str,
        requester_is_owner: bool,
        requester_is_moderator: bool = False,
    ) -> List[str]:
        """
        Bulk unmute. Ids the requester may not unmute are skipped.

        Returns:
            The ids that were actually unmuted
        """
        removed = []
        for target_id in target_ids:
            try:
                if self.unmute(
                    target_id, requester_id, requester_is_owner,
                    requester_is_moderator,
                ):
                    removed.append(target_id)
            except PermissionDenied:
                logger.warning(
                    f"Skipping unmute of {target_id} requested by {requester_id}"
                )
        return removed

    def list_mutes(
        self, requester_id: str, requester_is_owner: bool,
        now: Optional[float] = None,
    ) -> List[MuteRecord]:
        """
        Active mutes visible to the requester.

        The owner sees everything; moderators see only the mutes they could
        lift.
        """
        current = epoch_seconds() if now is None else now
        for user_id in [
            uid for uid, rec in self._mutes.items() if rec.is_expired(current)
        ]:
            del self._mutes[user_id]

        records = list(self._mutes.values())
        if requester_is_owner:
            return records
        return [
            rec for rec in records
            if rec.muted_by_id == requester_id or not rec.by_owner
        ]

    # Bans

    def ban(self, target: User, reason: Optional[str], issuer: User) -> BanRecord:
        """
        Ban a user.

        Raises:
            PermissionDenied: If the issuer is not the owner or the target is
        """
        if not issuer.is_owner:
            raise PermissionDenied("Only owner can ban")
        if target.is_owner:
            raise PermissionDenied("Cannot ban owner")
        record = BanRecord(
            user_id=target.user_id,
            display_name=target.display_name,
            reason=reason or DEFAULT_BAN_REASON,
            banned_by=issuer.display_name,
        )
        self._bans[target.user_id] = record
        logger.info(f"User {target.user_id} banned: {record.reason}")
        return record

    def unban(self, target_id: str) -> bool:
        if self._bans.pop(target_id, None) is not None:
            logger.info(f"User {target_id} unbanned")
            return True
        return False

    def unban_many(self, target_ids: Iterable[str]) -> List[str]:
        return [target_id for target_id in target_ids if self.unban(target_id)]

    def is_banned(self, user_id: str) -> bool:
        return user_id in self._bans

    def get_ban(self, user_id: str) -> Optional[BanRecord]:
        return self._bans.get(user_id)

    def list_bans(self) -> List[BanRecord]:
        return list(self._bans.values())

    # Blocks

    def block(self, user_id: str, target_id: str):
        self._blocks.setdefault(user_id, set()).add(target_id)

    def unblock(self, user_id: str, target_id: str):
        blocked = self._blocks.get(user_id)
        if blocked:
            blocked.discard(target_id)

    def is_blocked(self, blocker_id: str, blocked_id: str) -> bool:
        """True if blocker_id has blocked blocked_id."""
        return blocked_id in self._blocks.get(blocker_id, ())

    def blocked_by(self, user_id: str) -> List[str]:
        """Users that user_id has blocked."""
        return sorted(self._blocks.get(user_id, ()))

    # Cascade

    def forget_user(self, user_id: str):
        """Drop every mute, ban and block that references a user."""
        self._mutes.pop(user_id, None)
        self._bans.pop(user_id, None)
        self._blocks.pop(user_id, None)
        for blocked in self._blocks.values():
            blocked.discard(user_id)

    # Snapshot

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "muted_users": {
                uid: rec.to_dict() for uid, rec in self._mutes.items()
            },
            "banned_users": {
                uid: rec.to_dict() for uid, rec in self._bans.items()
            },
            "blocked_users": {
                uid: sorted(blocked) for uid, blocked in self._blocks.items()
            },
        }

    def load_snapshot(self, data: Dict[str, Any]):
        self._mutes = {
            uid: MuteRecord.from_dict({**rec, "userId": uid})
            for uid, rec in (data.get("muted_users") or {}).items()
        }
        self._bans = {
            uid: BanRecord.from_dict({**rec, "userId": uid})
            for uid, rec in (data.get("banned_users") or {}).items()
        }
        self._blocks = {
            uid: set(blocked)
            for uid, blocked in (data.get("blocked_users") or {}).items()
        }
