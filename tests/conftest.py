"""Pytest configuration and shared fixtures."""

from datetime import timedelta
from pathlib import Path
from typing import Callable

import pytest

from social_publisher.config import (
    OAuthClientConfig,
    PlatformRegistry,
    PublisherSettings,
    default_registry,
)
from social_publisher.credentials import InMemoryCredentialStore
from social_publisher.models import (
    Credential,
    MediaKind,
    MediaRef,
    PlatformId,
    Post,
    utcnow,
)

CHUNK_SIZE = 1024
USER_ID = "user_1"


@pytest.fixture
def registry() -> PlatformRegistry:
    """Default registry with a small TikTok chunk size."""
    return default_registry().with_overrides(PlatformId.TIKTOK, chunk_size=CHUNK_SIZE)


@pytest.fixture
def settings() -> PublisherSettings:
    """Settings with no retry backoff."""
    return PublisherSettings(retry_backoff_min=0, retry_backoff_max=0)


@pytest.fixture
def clients() -> dict[PlatformId, OAuthClientConfig]:
    """OAuth application credentials for every platform."""
    return {
        platform: OAuthClientConfig(client_id="client_id", client_secret="client_secret")
        for platform in PlatformId
    }


@pytest.fixture
def access_token() -> str:
    """Return a fake access token for testing."""
    return "test_access_token_123"


@pytest.fixture
def make_credential(access_token: str) -> Callable[..., Credential]:
    """Factory for credentials that stay valid well past the refresh window."""

    def factory(platform: PlatformId, **overrides) -> Credential:
        values = {
            "user_id": USER_ID,
            "platform": platform,
            "access_token": access_token,
            "refresh_token": "refresh_123",
            "expires_at": utcnow() + timedelta(days=30),
            "metadata": {"user_id": "ig_1"} if platform == PlatformId.INSTAGRAM else {},
        }
        values.update(overrides)
        return Credential(**values)

    return factory


@pytest.fixture
def store(make_credential: Callable[..., Credential]) -> InMemoryCredentialStore:
    """Store holding a valid credential for every platform."""
    return InMemoryCredentialStore([make_credential(platform) for platform in PlatformId])


@pytest.fixture
def video_file(tmp_path: Path) -> Path:
    """Create a video file exactly two chunks long."""
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"a" * CHUNK_SIZE + b"b" * CHUNK_SIZE)
    return path


@pytest.fixture
def video_post(video_file: Path) -> Post:
    """Post with a local video, targeting TikTok and YouTube."""
    return Post(
        caption="Launch day #python #async",
        media=(MediaRef(location=str(video_file), kind=MediaKind.VIDEO),),
        platforms=(PlatformId.TIKTOK, PlatformId.YOUTUBE),
        title="Launch day",
    )


@pytest.fixture
def image_post() -> Post:
    """Post with a hosted image, targeting Instagram."""
    return Post(
        caption="Sunset",
        media=(MediaRef(location="https://cdn.example.com/sunset.jpg", kind=MediaKind.IMAGE),),
        platforms=(PlatformId.INSTAGRAM,),
    )
