"""Platform adapters and the table that binds them to platform ids."""

from social_publisher.adapters.base import PlatformAdapter, parse_count
from social_publisher.adapters.instagram import InstagramAdapter
from social_publisher.adapters.tiktok import TikTokAdapter
from social_publisher.adapters.youtube import YouTubeAdapter
from social_publisher.api_client import PlatformAPIClient
from social_publisher.config import PlatformRegistry
from social_publisher.models import PlatformId

ADAPTER_TYPES: dict[PlatformId, type[PlatformAdapter]] = {
    PlatformId.YOUTUBE: YouTubeAdapter,
    PlatformId.TIKTOK: TikTokAdapter,
    PlatformId.INSTAGRAM: InstagramAdapter,
}


def build_adapters(
    api: PlatformAPIClient, registry: PlatformRegistry
) -> dict[PlatformId, PlatformAdapter]:
    """Instantiate one adapter for every platform present in the registry."""
    return {
        platform: ADAPTER_TYPES[platform](api, config)
        for platform, config in registry.items()
        if platform in ADAPTER_TYPES
    }


__all__ = [
    "ADAPTER_TYPES",
    "InstagramAdapter",
    "PlatformAdapter",
    "TikTokAdapter",
    "YouTubeAdapter",
    "build_adapters",
    "parse_count",
]
