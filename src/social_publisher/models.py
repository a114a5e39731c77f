"""Data models for the social publisher."""

import mimetypes
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping
from urllib.parse import urlsplit

from social_publisher.errors import ErrorCode


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(when: datetime) -> datetime:
    """Treat a naive datetime as UTC; aware values are returned unchanged."""
    if when.tzinfo is None:
        return when.replace(tzinfo=timezone.utc)
    return when


def is_remote_location(location: str) -> bool:
    return location.startswith(("http://", "https://"))


def guess_mime_type(location: str) -> str | None:
    """Guess a MIME type from a file path or URL; query strings are ignored."""
    if is_remote_location(location):
        location = urlsplit(location).path
    return mimetypes.guess_type(location)[0]


class PlatformId(str, Enum):
    """Platforms the publisher can target."""

    YOUTUBE = "youtube"
    TIKTOK = "tiktok"
    INSTAGRAM = "instagram"


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


@dataclass(frozen=True)
class MediaRef:
    """A media item attached to a post: a local file or a remote URL."""

    location: str
    kind: MediaKind
    mime_type: str | None = None

    def __post_init__(self) -> None:
        """Validate media data and fill in the MIME type."""
        if not self.location:
            raise ValueError("Media location cannot be empty")
        if self.mime_type is None:
            object.__setattr__(self, "mime_type", guess_mime_type(self.location))

    @property
    def is_remote(self) -> bool:
        return is_remote_location(self.location)

    @property
    def path(self) -> Path:
        return Path(self.location)


@dataclass(frozen=True)
class Post:
    """Content unit to publish on one or more platforms."""

    caption: str
    media: tuple[MediaRef, ...] = ()
    platforms: tuple[PlatformId, ...] = ()
    title: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=utcnow)
    scheduled_at: datetime | None = None
    external_ids: Mapping[PlatformId, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Normalize sequences to tuples so the post stays immutable."""
        object.__setattr__(self, "media", tuple(self.media))
        object.__setattr__(self, "platforms", tuple(self.platforms))
        object.__setattr__(self, "external_ids", dict(self.external_ids))

    @property
    def primary_media(self) -> MediaRef | None:
        return self.media[0] if self.media else None

    def with_results(self, results: Iterable["PublishResult"]) -> "Post":
        """Return a copy carrying the external IDs of successful results."""
        external_ids = dict(self.external_ids)
        for result in results:
            if result.success and result.external_id:
                external_ids[result.platform] = result.external_id
        return replace(self, external_ids=external_ids)


@dataclass(frozen=True)
class Credential:
    """OAuth token set for one (user, platform) pair."""

    user_id: str
    platform: PlatformId
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    metadata: Mapping[str, str] = field(default_factory=dict)

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    def needs_refresh(self, window: timedelta, now: datetime | None = None) -> bool:
        """True when the token expires within ``window`` (or already has)."""
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow()) + window

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "platform": self.platform.value,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Credential":
        expires_raw = data.get("expires_at")
        expires_at = as_utc(datetime.fromisoformat(expires_raw)) if expires_raw else None
        return cls(
            user_id=str(data["user_id"]),
            platform=PlatformId(data["platform"]),
            access_token=str(data.get("access_token") or ""),
            refresh_token=data.get("refresh_token"),
            expires_at=expires_at,
            metadata={str(k): str(v) for k, v in (data.get("metadata") or {}).items()},
        )


class UploadStatus(str, Enum):
    INITIALIZED = "initialized"
    UPLOADING = "uploading"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class UploadSession:
    """Transient state of one chunked upload attempt."""

    total_size: int
    chunk_size: int
    upload_id: str | None = None
    chunks_sent: int = 0
    status: UploadStatus = UploadStatus.INITIALIZED
    failure: ErrorCode | None = None
    failed_chunk: int | None = None

    @property
    def total_chunks(self) -> int:
        return -(-self.total_size // self.chunk_size)

    @property
    def finished(self) -> bool:
        return self.status in (UploadStatus.COMPLETED, UploadStatus.FAILED)

    def fail(self, code: ErrorCode, chunk_index: int | None = None) -> None:
        if self.finished:
            raise RuntimeError(f"Upload session already {self.status.value}")
        self.status = UploadStatus.FAILED
        self.failure = code
        self.failed_chunk = chunk_index


@dataclass(frozen=True)
class PublishResult:
    """Result of publishing one post to one platform."""

    platform: PlatformId
    success: bool
    external_id: str | None = None
    error_code: ErrorCode | None = None
    error_message: str | None = None
    timestamp: datetime = field(default_factory=utcnow)
    scheduled_for: datetime | None = None
    deferred: bool = False

    def __post_init__(self) -> None:
        """Validate publish result."""
        if self.success and not self.external_id and not self.deferred:
            raise ValueError("Successful publish must have an external_id")
        if not self.success and self.error_code is None:
            raise ValueError("Failed publish must have an error_code")

    @classmethod
    def failed(
        cls, platform: PlatformId, code: ErrorCode, message: str | None
    ) -> "PublishResult":
        return cls(
            platform=platform,
            success=False,
            error_code=code,
            error_message=message or code.value,
        )


@dataclass(frozen=True)
class ProfileInfo:
    """Account details normalized across platforms."""

    platform: PlatformId
    account_id: str
    display_name: str
    username: str | None = None
    avatar_url: str | None = None
    followers: int = 0
    following: int = 0
    post_count: int = 0
    total_likes: int = 0
    total_views: int = 0


@dataclass(frozen=True)
class Metrics:
    """Engagement counters for a published post."""

    platform: PlatformId
    external_id: str
    views: int = 0
    likes: int = 0
    comments: int = 0
    shares: int = 0
    reach: int = 0
    saves: int = 0
    fetched_at: datetime = field(default_factory=utcnow)
