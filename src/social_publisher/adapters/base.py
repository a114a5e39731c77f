"""Uniform adapter contract shared by every platform."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Awaitable, TypeVar

from social_publisher.api_client import (
    InvalidTokenError,
    MalformedResponseError,
    PlatformAPIClient,
    PlatformAPIError,
    PlatformNetworkError,
)
from social_publisher.cancellation import CancelToken
from social_publisher.config import PlatformConfig
from social_publisher.errors import ErrorCode, Result
from social_publisher.models import (
    Credential,
    MediaRef,
    Metrics,
    PlatformId,
    Post,
    ProfileInfo,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def parse_count(value: Any) -> int:
    """Parse a counter that may arrive as an int or a numeric string.

    Anything unparseable counts as 0.
    """
    if isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def section(value: Any, key: str) -> dict[str, Any]:
    """Optional nested object of a response item; anything but an object is empty."""
    nested = value.get(key)
    return nested if isinstance(nested, dict) else {}


class PlatformAdapter(ABC):
    """Translates publish/query calls into one platform's HTTP API.

    Adapters return a :class:`Result` for every expected failure and never
    refresh tokens themselves.
    """

    platform: PlatformId

    def __init__(self, api: PlatformAPIClient, config: PlatformConfig) -> None:
        """Initialize the adapter.

        Args:
            api: Shared HTTP client (must be entered as a context manager)
            config: This platform's registry entry
        """
        if config.platform != self.platform:
            raise ValueError(
                f"{type(self).__name__} cannot use {config.platform.value} config"
            )
        self.api = api
        self.config = config

    @property
    def base_url(self) -> str:
        return self.config.api_base_url.rstrip("/")

    @property
    def supports_native_scheduling(self) -> bool:
        return self.config.supports_scheduling

    @abstractmethod
    async def publish(
        self, credential: Credential, post: Post, cancel: CancelToken | None = None
    ) -> Result[str]:
        """Publish the post and return the platform-assigned id."""

    @abstractmethod
    async def fetch_profile(self, credential: Credential) -> Result[ProfileInfo]:
        """Fetch the connected account's profile and counters."""

    @abstractmethod
    async def fetch_post_metrics(
        self, credential: Credential, external_id: str
    ) -> Result[Metrics]:
        """Fetch engagement counters for a published post."""

    async def schedule(
        self,
        credential: Credential,
        post: Post,
        when: datetime,
        cancel: CancelToken | None = None,
    ) -> Result[str]:
        """Schedule the post natively on the platform.

        Platforms without native scheduling keep this default, which reports
        ``NOT_SUPPORTED`` once the common checks pass.
        """
        error = self._check_token(credential) or self._check_schedule_time(when)
        if error:
            return error
        return Result.fail(
            ErrorCode.NOT_SUPPORTED,
            f"{self.config.name} does not support native scheduling",
        )

    def _check_token(self, credential: Credential) -> Result[Any] | None:
        if not credential.access_token or not credential.access_token.strip():
            logger.warning(f"{self.config.name}: access token is empty")
            return Result.fail(ErrorCode.INVALID_TOKEN, "Invalid access token")
        return None

    def _check_schedule_time(self, when: datetime) -> Result[Any] | None:
        if as_utc(when) <= utcnow():
            logger.warning(f"{self.config.name}: schedule time must be in the future")
            return Result.fail(
                ErrorCode.INVALID_SCHEDULE_TIME, "Schedule time must be in the future"
            )
        return None

    def _check_media_file(self, media: MediaRef | None) -> Result[Any] | None:
        """Require a local, existing, non-empty media file."""
        if media is None:
            return Result.fail(ErrorCode.FILE_NOT_FOUND, "Post has no media file")
        if media.is_remote:
            return Result.fail(
                ErrorCode.INVALID_INPUT,
                f"{self.config.name} uploads require a local file: {media.location}",
            )
        path = media.path
        if not path.is_file() or path.stat().st_size == 0:
            logger.warning(f"{self.config.name}: media file not found: {path}")
            return Result.fail(ErrorCode.FILE_NOT_FOUND, f"Media file not found: {path}")
        return None

    async def _guard(
        self, call: Awaitable[Result[T]], failure_code: ErrorCode, context: str
    ) -> Result[T]:
        """Await an API call, mapping client exceptions to result codes."""
        try:
            return await call
        except InvalidTokenError as e:
            return Result.fail(ErrorCode.INVALID_TOKEN, str(e))
        except PlatformNetworkError as e:
            logger.error(f"{self.config.name}: network error while {context}: {e}")
            return Result.fail(ErrorCode.NETWORK_ERROR, str(e))
        except MalformedResponseError as e:
            logger.error(f"{self.config.name}: malformed response while {context}: {e}")
            return Result.fail(ErrorCode.MALFORMED_RESPONSE, str(e))
        except PlatformAPIError as e:
            logger.error(f"{self.config.name}: failed while {context}: {e}")
            return Result.fail(failure_code, str(e))
