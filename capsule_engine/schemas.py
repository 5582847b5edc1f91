from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import time


TEXT = "text"
AUDIO = "audio"
VIDEO = "video"

AUDIO_CAPTION = "Audio Tribute"
VIDEO_CAPTION = "Video Content"
UNAVAILABLE_CAPTION = "Content unavailable"


@dataclass
class Job:
    message_id: int
    payload: Dict[str, Any] = field(default_factory=dict)
    read_count: int = 1
    enqueued_at: Optional[str] = None

    @property
    def capsule_id(self) -> Optional[str]:
        value = self.payload.get("capsule_id")
        return str(value) if value else None

    def queue_age(self, now: Optional[float] = None) -> Optional[float]:
        """Seconds since pgmq enqueued the job, or None when unknown."""
        if not self.enqueued_at:
            return None
        try:
            enqueued = datetime.fromisoformat(self.enqueued_at.replace("Z", "+00:00"))
        except ValueError:
            return None
        if enqueued.tzinfo is None:
            enqueued = enqueued.replace(tzinfo=timezone.utc)
        return (now if now is not None else time.time()) - enqueued.timestamp()

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Job":
        # pgmq rows expose msg_id; the public RPC wrapper may rename it
        msg_id = row.get("msg_id", row.get("message_id"))
        payload = row.get("message") or {}
        if not isinstance(payload, dict):
            payload = {}
        return cls(
            message_id=int(msg_id),
            payload=payload,
            read_count=int(row.get("read_ct") or 1),
            enqueued_at=row.get("enqueued_at"),
        )


@dataclass
class AdminInfo:
    name: Optional[str] = None
    logo_image: Optional[str] = None


@dataclass
class CapsuleInfo:
    id: str
    name: str = ""
    image: Optional[str] = None
    admin_id: Optional[str] = None
    admin: Optional[AdminInfo] = None


@dataclass
class Message:
    id: str
    capsule_id: str
    contributor_name: str = ""
    submitted_at: str = ""
    text: Optional[str] = None
    audio_url: Optional[str] = None
    video_url: Optional[str] = None
    hidden: bool = False

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Message":
        return cls(
            id=str(row.get("id")),
            capsule_id=str(row.get("capsule_id") or ""),
            contributor_name=row.get("contributor_name") or "",
            submitted_at=row.get("submitted_at") or "",
            text=row.get("content_text") or None,
            audio_url=row.get("content_audio_url") or None,
            video_url=row.get("content_video_url") or None,
            hidden=bool(row.get("hidden", False)),
        )


@dataclass
class Dimensions:
    width: int = 1920
    height: int = 1080
    is_vertical: bool = False


@dataclass
class MediaPart:
    kind: str
    message: Message
    caption: str = ""
    media_path: Optional[str] = None
    dimensions: Optional[Dimensions] = None
    error: Optional[str] = None

    @property
    def is_vertical(self) -> bool:
        return bool(self.dimensions and self.dimensions.is_vertical)


@dataclass
class RenderedSegment:
    index: int
    path: str
    kind: str


@dataclass
class FinalArtifact:
    capsule_id: str
    path: str
    segments: List[RenderedSegment] = field(default_factory=list)
    storage_key: Optional[str] = None
    public_url: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())
