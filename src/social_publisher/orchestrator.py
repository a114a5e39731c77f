"""Fans a post out to platform adapters and aggregates per-platform results."""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Mapping, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from social_publisher.adapters import PlatformAdapter, build_adapters
from social_publisher.api_client import PlatformAPIClient
from social_publisher.cancellation import CancelToken
from social_publisher.config import (
    OAuthClientConfig,
    PlatformConfig,
    PlatformRegistry,
    PublisherSettings,
    default_registry,
)
from social_publisher.credentials import CredentialResolver, CredentialStore, TokenRefresher
from social_publisher.errors import ErrorCode, Result
from social_publisher.models import (
    Credential,
    Metrics,
    PlatformId,
    Post,
    ProfileInfo,
    PublishResult,
    as_utc,
    utcnow,
)
from social_publisher.scheduler import DeferredPublisher

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_network_error(result: Result) -> bool:
    return result.error == ErrorCode.NETWORK_ERROR


def _log_retry(retry_state: RetryCallState) -> None:
    result = retry_state.outcome.result()
    logger.warning(
        f"Network error, retrying (attempt {retry_state.attempt_number}): {result.message}"
    )


class PublishOrchestrator:
    """Publishes one post to many platforms with gather-all semantics.

    Every requested platform gets exactly one :class:`PublishResult`, in
    request order, whatever happens to the others.
    """

    def __init__(
        self,
        adapters: Mapping[PlatformId, PlatformAdapter],
        resolver: CredentialResolver,
        registry: PlatformRegistry,
        settings: PublisherSettings | None = None,
        deferred: DeferredPublisher | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            adapters: Adapter per platform
            resolver: Credential resolver shared by all platforms
            registry: Platform limits used for validation
            settings: Retry settings
            deferred: Client-side scheduler for platforms without native scheduling
        """
        self.adapters = dict(adapters)
        self.resolver = resolver
        self.registry = registry
        self.settings = settings or PublisherSettings()
        self.deferred = deferred or DeferredPublisher()

    @classmethod
    def create(
        cls,
        api: PlatformAPIClient,
        store: CredentialStore,
        registry: PlatformRegistry | None = None,
        clients: Mapping[PlatformId, OAuthClientConfig] | None = None,
        settings: PublisherSettings | None = None,
    ) -> "PublishOrchestrator":
        """Wire adapters, refresher and resolver around one HTTP client."""
        registry = registry or default_registry()
        settings = settings or PublisherSettings()
        refresher = TokenRefresher(api, registry, clients)
        resolver = CredentialResolver(store, refresher, settings)
        return cls(build_adapters(api, registry), resolver, registry, settings)

    async def publish(
        self,
        post: Post,
        platforms: Iterable[PlatformId] | None = None,
        user_id: str = "",
        cancel: CancelToken | None = None,
    ) -> list[PublishResult]:
        """Publish ``post`` to every platform concurrently.

        Args:
            post: Post to publish (never modified)
            platforms: Target platforms; defaults to ``post.platforms``
            user_id: Owner of the credentials to use
            cancel: Optional token to abort in-flight work

        Returns:
            One result per requested platform, in request order
        """
        targets = list(platforms if platforms is not None else post.platforms)
        logger.info(
            f"Publishing post {post.id} to {len(targets)} platform(s): "
            f"{', '.join(p.value for p in targets)}"
        )
        results = await self._fan_out(
            targets, lambda platform: self._publish_one(post, platform, user_id, cancel), cancel
        )
        self._log_summary(post, results)
        return results

    async def schedule(
        self,
        post: Post,
        platforms: Iterable[PlatformId] | None,
        when: datetime,
        user_id: str = "",
        cancel: CancelToken | None = None,
    ) -> list[PublishResult]:
        """Schedule ``post`` for ``when`` on every platform.

        Platforms with native scheduling are scheduled through their API; the
        rest are held by the client-side :class:`DeferredPublisher`.
        """
        targets = list(platforms if platforms is not None else post.platforms)
        when = as_utc(when)
        if when <= utcnow():
            logger.warning(f"Schedule time {when.isoformat()} is not in the future")
            return [
                PublishResult.failed(
                    platform,
                    ErrorCode.INVALID_SCHEDULE_TIME,
                    "Schedule time must be in the future",
                )
                for platform in targets
            ]
        logger.info(f"Scheduling post {post.id} for {when.isoformat()}")
        results = await self._fan_out(
            targets,
            lambda platform: self._schedule_one(post, platform, when, user_id, cancel),
            cancel,
        )
        self._log_summary(post, results)
        return results

    async def fetch_analytics(
        self, user_id: str, platform: PlatformId, external_id: str
    ) -> Result[Metrics]:
        """Fetch engagement counters for a published post."""
        adapter = self.adapters.get(platform)
        if adapter is None:
            return Result.fail(ErrorCode.NOT_SUPPORTED, f"No adapter for {platform.value}")
        return await self._attempt(
            user_id,
            platform,
            lambda credential: adapter.fetch_post_metrics(credential, external_id),
        )

    async def fetch_profile(
        self, user_id: str, platform: PlatformId
    ) -> Result[ProfileInfo]:
        """Fetch the connected account's profile."""
        adapter = self.adapters.get(platform)
        if adapter is None:
            return Result.fail(ErrorCode.NOT_SUPPORTED, f"No adapter for {platform.value}")
        return await self._attempt(user_id, platform, adapter.fetch_profile)

    async def _fan_out(
        self,
        targets: list[PlatformId],
        make: Callable[[PlatformId], Awaitable[PublishResult]],
        cancel: CancelToken | None,
    ) -> list[PublishResult]:
        if cancel is not None and cancel.cancelled:
            return [_cancelled(platform) for platform in targets]

        tasks = [
            asyncio.create_task(self._isolated(platform, make, cancel))
            for platform in targets
        ]
        if not tasks:
            return []
        gathered = asyncio.gather(*tasks, return_exceptions=True)
        if cancel is not None:
            watcher = asyncio.create_task(cancel.wait())
            try:
                await asyncio.wait({gathered, watcher}, return_when=asyncio.FIRST_COMPLETED)
            except asyncio.CancelledError:
                gathered.cancel()
                raise
            finally:
                watcher.cancel()
            if not gathered.done():
                logger.warning("Publish cancelled, stopping in-flight platforms")
                for task in tasks:
                    task.cancel()

        results: list[PublishResult] = []
        for platform, outcome in zip(targets, await gathered):
            if isinstance(outcome, asyncio.CancelledError):
                outcome = _cancelled(platform)
            elif isinstance(outcome, BaseException):
                raise outcome
            results.append(outcome)
        return results

    async def _isolated(
        self,
        platform: PlatformId,
        make: Callable[[PlatformId], Awaitable[PublishResult]],
        cancel: CancelToken | None,
    ) -> PublishResult:
        """Run one platform's attempt so its faults stay with that platform."""
        try:
            return await make(platform)
        except asyncio.CancelledError:
            if cancel is not None and cancel.cancelled:
                return _cancelled(platform)
            raise
        except Exception as e:
            logger.exception(f"Unexpected error while publishing to {platform.value}")
            return PublishResult.failed(
                platform, ErrorCode.UNKNOWN_ERROR, f"Unexpected error: {e}"
            )

    async def _publish_one(
        self,
        post: Post,
        platform: PlatformId,
        user_id: str,
        cancel: CancelToken | None,
    ) -> PublishResult:
        adapter = self.adapters.get(platform)
        config = self.registry.get(platform)
        if adapter is None or config is None:
            return PublishResult.failed(
                platform, ErrorCode.VALIDATION_FAILED, f"Unsupported platform: {platform.value}"
            )

        result = await self._attempt(
            user_id,
            platform,
            lambda credential: adapter.publish(credential, post, cancel),
            validate=lambda: validate_post(post, config),
        )
        return _to_publish_result(platform, result)

    async def _schedule_one(
        self,
        post: Post,
        platform: PlatformId,
        when: datetime,
        user_id: str,
        cancel: CancelToken | None,
    ) -> PublishResult:
        adapter = self.adapters.get(platform)
        config = self.registry.get(platform)
        if adapter is None or config is None:
            return PublishResult.failed(
                platform, ErrorCode.VALIDATION_FAILED, f"Unsupported platform: {platform.value}"
            )

        if adapter.supports_native_scheduling:
            result = await self._attempt(
                user_id,
                platform,
                lambda credential: adapter.schedule(credential, post, when, cancel),
                validate=lambda: validate_post(post, config),
            )
            if result.error != ErrorCode.NOT_SUPPORTED:
                return _to_publish_result(platform, result, scheduled_for=when)

        violation = validate_post(post, config)
        if violation:
            return PublishResult.failed(platform, ErrorCode.VALIDATION_FAILED, violation)
        self.deferred.submit(
            platform,
            post.id,
            when,
            lambda: self._isolated(
                platform, lambda p: self._publish_one(post, p, user_id, None), None
            ),
        )
        return PublishResult(
            platform=platform, success=True, deferred=True, scheduled_for=when
        )

    async def _attempt(
        self,
        user_id: str,
        platform: PlatformId,
        operation: Callable[[Credential], Awaitable[Result[T]]],
        validate: Callable[[], str | None] | None = None,
    ) -> Result[T]:
        """Resolve credentials, validate, call, and apply the retry rules.

        ``NETWORK_ERROR`` is retried once. ``INVALID_TOKEN`` from the platform
        triggers one forced refresh and one more call.
        """
        resolved = await self.resolver.resolve(user_id, platform)
        if not resolved.success:
            logger.warning(f"{platform.value}: no usable credential: {resolved.message}")
            return Result.fail(ErrorCode.INVALID_TOKEN, resolved.message)
        credential = resolved.value

        if validate is not None:
            violation = validate()
            if violation:
                logger.warning(f"{platform.value}: validation failed: {violation}")
                return Result.fail(ErrorCode.VALIDATION_FAILED, violation)

        result = await self._with_network_retry(lambda: operation(credential))
        if result.error != ErrorCode.INVALID_TOKEN or not credential.access_token.strip():
            return result

        logger.warning(f"{platform.value}: token rejected, refreshing once")
        refreshed = await self.resolver.refresh(
            user_id, platform, stale_token=credential.access_token
        )
        if not refreshed.success:
            return Result.fail(ErrorCode.INVALID_TOKEN, refreshed.message)
        return await self._with_network_retry(lambda: operation(refreshed.value))

    async def _with_network_retry(
        self, call: Callable[[], Awaitable[Result[T]]]
    ) -> Result[T]:
        retrying = AsyncRetrying(
            retry=retry_if_result(_is_network_error),
            stop=stop_after_attempt(self.settings.network_retry_attempts),
            wait=wait_exponential(
                multiplier=1,
                min=self.settings.retry_backoff_min,
                max=self.settings.retry_backoff_max,
            ),
            before_sleep=_log_retry,
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        )
        return await retrying(call)

    def _log_summary(self, post: Post, results: list[PublishResult]) -> None:
        successful = sum(1 for r in results if r.success)
        failed = len(results) - successful
        logger.info(f"Post {post.id}: {successful} succeeded, {failed} failed")
        for result in results:
            if not result.success:
                logger.error(
                    f"{result.platform.value}: {result.error_code.value}: "
                    f"{result.error_message}"
                )


def validate_post(post: Post, config: PlatformConfig) -> str | None:
    """Check a post against one platform's limits.

    Returns:
        A description of the first violation, or None if the post fits
    """
    if len(post.caption) > config.max_caption_length:
        return (
            f"Caption is {len(post.caption)} characters; "
            f"{config.name} allows {config.max_caption_length}"
        )
    if config.requires_media and not post.media:
        return f"{config.name} requires at least one media item"
    for media in post.media:
        if media.mime_type not in config.supported_media_types:
            return f"{config.name} does not accept {media.mime_type or 'unknown'} media"
        if not media.is_remote and media.path.is_file():
            size = media.path.stat().st_size
            if size > config.max_media_size:
                return (
                    f"{media.path.name} is {size} bytes; "
                    f"{config.name} allows {config.max_media_size}"
                )
    return None


def _to_publish_result(
    platform: PlatformId, result: Result[str], scheduled_for: datetime | None = None
) -> PublishResult:
    if result.success:
        return PublishResult(
            platform=platform,
            success=True,
            external_id=result.value,
            scheduled_for=scheduled_for,
        )
    return PublishResult.failed(platform, result.error, result.message)


def _cancelled(platform: PlatformId) -> PublishResult:
    return PublishResult.failed(platform, ErrorCode.CANCELLED, "Publish cancelled")
