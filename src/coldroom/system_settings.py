"""
System Settings

Singleton site configuration editable by the owner: branding, login and
chat music, per-room party mode and the shared video-watch session.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .utils import (
    MAX_URL_LENGTH,
    coerce_float,
    coerce_text,
    detect_video_type,
    epoch_seconds,
)

DEFAULT_VOLUME = 0.5
DEFAULT_VIDEO_SIZE = "medium"
VIDEO_SIZES = ("small", "medium", "large", "full")


@dataclass
class VideoSession:
    """
    The shared "watch together" video shown in the official room.

    Attributes:
        url: Video URL
        type: Player type ("youtube", "mp4" or "url")
        size: Player size
        started_by: Display name of the owner who started it
        started_at: Epoch milliseconds when it started
    """

    url: str
    type: str
    size: str
    started_by: str
    started_at: int = 0

    def __post_init__(self):
        if not self.started_at:
            self.started_at = int(epoch_seconds() * 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "type": self.type,
            "size": self.size,
            "startedBy": self.started_by,
            "startedAt": self.started_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VideoSession":
        return cls(
            url=data["url"],
            type=data.get("type") or detect_video_type(data["url"]),
            size=data.get("size") or DEFAULT_VIDEO_SIZE,
            started_by=data.get("startedBy", ""),
            started_at=int(data.get("startedAt") or 0),
        )


def normalize_video_size(size: Any, fallback: str = DEFAULT_VIDEO_SIZE) -> str:
    size = coerce_text(size).strip().lower()
    return size if size in VIDEO_SIZES else fallback


@dataclass
class SystemSettings:
    """Site-wide settings; one instance per deployment."""

    site_logo: str = "https://j.top4top.io/p_3585vud691.jpg"
    site_title: str = "Cold Room"
    background_color: str = "blue"
    login_music: str = ""
    chat_music: str = ""
    login_music_volume: float = DEFAULT_VOLUME
    chat_music_volume: float = DEFAULT_VOLUME
    party_mode: Dict[str, bool] = field(default_factory=dict)
    video: Optional[VideoSession] = None

    def update(self, changes: Dict[str, Any]):
        """
        Apply the recognised keys of an update-settings payload.

        Unknown keys are ignored; volumes that do not parse fall back to
        the default.
        """
        if "siteLogo" in changes:
            self.site_logo = coerce_text(changes["siteLogo"], MAX_URL_LENGTH)
        if "siteTitle" in changes:
            self.site_title = coerce_text(changes["siteTitle"], 100)
        if "backgroundColor" in changes:
            self.background_color = coerce_text(changes["backgroundColor"], 50)
        if "loginMusic" in changes:
            self.login_music = coerce_text(changes["loginMusic"], MAX_URL_LENGTH)
        if "chatMusic" in changes:
            self.chat_music = coerce_text(changes["chatMusic"], MAX_URL_LENGTH)
        if "loginMusicVolume" in changes:
            self.login_music_volume = normalize_volume(changes["loginMusicVolume"])
        if "chatMusicVolume" in changes:
            self.chat_music_volume = normalize_volume(changes["chatMusicVolume"])

    def set_party_mode(self, room_id: str, enabled: bool):
        self.party_mode[room_id] = bool(enabled)

    def is_party_mode(self, room_id: str) -> bool:
        return bool(self.party_mode.get(room_id, False))

    def start_video(
        self, url: str, video_type: Any, size: Any, started_by: str
    ) -> VideoSession:
        self.video = VideoSession(
            url=url,
            type=coerce_text(video_type).strip() or detect_video_type(url),
            size=normalize_video_size(size),
            started_by=started_by,
        )
        return self.video

    def stop_video(self):
        self.video = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "siteLogo": self.site_logo,
            "siteTitle": self.site_title,
            "backgroundColor": self.background_color,
            "loginMusic": self.login_music,
            "chatMusic": self.chat_music,
            "loginMusicVolume": self.login_music_volume,
            "chatMusicVolume": self.chat_music_volume,
            "partyMode": dict(self.party_mode),
            "video": self.video.to_dict() if self.video else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SystemSettings":
        settings = cls()
        settings.update(data or {})
        settings.party_mode = {
            room_id: bool(enabled)
            for room_id, enabled in ((data or {}).get("partyMode") or {}).items()
        }
        video = (data or {}).get("video")
        settings.video = VideoSession.from_dict(video) if video else None
        return settings


def normalize_volume(value: Any) -> float:
    """Clamp a playback volume into [0, 1]; garbage gives the default."""
    return min(max(coerce_float(value, DEFAULT_VOLUME), 0.0), 1.0)
