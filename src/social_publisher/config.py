"""Platform registry and runtime settings.

Platform limits and endpoints live here as immutable data and are passed
explicitly to the adapters, the orchestrator and the credential resolver.
"""

import os
from dataclasses import dataclass, field, replace
from datetime import timedelta
from types import MappingProxyType
from typing import Any, Iterator, Mapping

from social_publisher.models import PlatformId

DEFAULT_CHUNK_SIZE = 5 * 1024 * 1024
ENV_PREFIX = "SOCIAL_PUBLISHER"


@dataclass(frozen=True)
class PlatformConfig:
    """Limits, capabilities and endpoints of a single platform."""

    platform: PlatformId
    name: str
    max_caption_length: int
    max_media_size: int
    supported_media_types: frozenset[str]
    api_base_url: str
    oauth_authorize_url: str
    token_url: str
    supports_scheduling: bool = False
    requires_media: bool = False
    chunk_size: int = DEFAULT_CHUNK_SIZE
    timeout: float = 60.0

    def __post_init__(self) -> None:
        """Validate platform configuration."""
        if self.max_caption_length <= 0:
            raise ValueError("max_caption_length must be positive")
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        object.__setattr__(
            self, "supported_media_types", frozenset(self.supported_media_types)
        )


class PlatformRegistry(Mapping[PlatformId, PlatformConfig]):
    """Read-only mapping of platform id to its configuration."""

    def __init__(self, configs: Mapping[PlatformId, PlatformConfig]) -> None:
        self._configs = MappingProxyType(dict(configs))

    def __getitem__(self, platform: PlatformId) -> PlatformConfig:
        return self._configs[platform]

    def __iter__(self) -> Iterator[PlatformId]:
        return iter(self._configs)

    def __len__(self) -> int:
        return len(self._configs)

    def with_overrides(self, platform: PlatformId, **changes: Any) -> "PlatformRegistry":
        """Return a new registry with some fields of one platform replaced."""
        configs = dict(self._configs)
        configs[platform] = replace(configs[platform], **changes)
        return PlatformRegistry(configs)


def default_registry() -> PlatformRegistry:
    """Build the registry with the built-in platform table."""
    return PlatformRegistry(
        {
            PlatformId.YOUTUBE: PlatformConfig(
                platform=PlatformId.YOUTUBE,
                name="YouTube",
                max_caption_length=5000,
                max_media_size=5_000_000_000,
                supported_media_types=frozenset({"video/mp4", "video/quicktime"}),
                api_base_url="https://www.googleapis.com/youtube/v3",
                oauth_authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
                token_url="https://oauth2.googleapis.com/token",
                supports_scheduling=True,
                requires_media=True,
                timeout=120.0,
            ),
            PlatformId.TIKTOK: PlatformConfig(
                platform=PlatformId.TIKTOK,
                name="TikTok",
                max_caption_length=2200,
                max_media_size=287_000_000,
                supported_media_types=frozenset({"video/mp4"}),
                api_base_url="https://open.tiktok.com/v1",
                oauth_authorize_url="https://www.tiktok.com/v1/oauth/authorize",
                token_url="https://open.tiktokapis.com/v1/oauth/token",
                supports_scheduling=True,
                requires_media=True,
                chunk_size=DEFAULT_CHUNK_SIZE,
                timeout=120.0,
            ),
            PlatformId.INSTAGRAM: PlatformConfig(
                platform=PlatformId.INSTAGRAM,
                name="Instagram",
                max_caption_length=2200,
                max_media_size=8_000_000,
                supported_media_types=frozenset({"image/jpeg", "image/png", "video/mp4"}),
                api_base_url="https://graph.facebook.com/v18.0",
                oauth_authorize_url="https://api.instagram.com/oauth/authorize",
                token_url="https://graph.instagram.com/refresh_access_token",
                supports_scheduling=False,
                requires_media=True,
                timeout=60.0,
            ),
        }
    )


@dataclass(frozen=True)
class OAuthClientConfig:
    """OAuth application credentials for one platform."""

    client_id: str = ""
    client_secret: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @classmethod
    def from_env(cls, platform: PlatformId) -> "OAuthClientConfig":
        """Read ``SOCIAL_PUBLISHER_<PLATFORM>_CLIENT_ID`` / ``_CLIENT_SECRET``."""
        prefix = f"{ENV_PREFIX}_{platform.name}"
        return cls(
            client_id=os.getenv(f"{prefix}_CLIENT_ID", ""),
            client_secret=os.getenv(f"{prefix}_CLIENT_SECRET", ""),
        )


def oauth_clients_from_env() -> dict[PlatformId, OAuthClientConfig]:
    return {platform: OAuthClientConfig.from_env(platform) for platform in PlatformId}


@dataclass(frozen=True)
class PublisherSettings:
    """Runtime knobs for refresh and retry behaviour."""

    refresh_window: timedelta = field(default_factory=lambda: timedelta(days=3))
    network_retry_attempts: int = 2
    retry_backoff_min: float = 1.0
    retry_backoff_max: float = 10.0
    default_timeout: float = 30.0

    def __post_init__(self) -> None:
        """Validate settings."""
        if self.network_retry_attempts < 1:
            raise ValueError("network_retry_attempts must be at least 1")
