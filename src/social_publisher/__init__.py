"""Social Publisher - publish one post to several social platforms."""

__version__ = "0.1.0"

from social_publisher.api_client import PlatformAPIClient
from social_publisher.cancellation import CancelToken
from social_publisher.config import PlatformRegistry, PublisherSettings, default_registry
from social_publisher.credentials import CredentialResolver, InMemoryCredentialStore
from social_publisher.errors import ErrorCode, Result
from social_publisher.models import (
    Credential,
    MediaKind,
    MediaRef,
    Metrics,
    PlatformId,
    Post,
    ProfileInfo,
    PublishResult,
)
from social_publisher.orchestrator import PublishOrchestrator

__all__ = [
    "CancelToken",
    "Credential",
    "CredentialResolver",
    "ErrorCode",
    "InMemoryCredentialStore",
    "MediaKind",
    "MediaRef",
    "Metrics",
    "PlatformAPIClient",
    "PlatformId",
    "PlatformRegistry",
    "Post",
    "ProfileInfo",
    "PublishOrchestrator",
    "PublishResult",
    "PublisherSettings",
    "Result",
    "default_registry",
]
