"""Instagram Graph API adapter."""

import logging

from social_publisher.adapters.base import PlatformAdapter, parse_count
from social_publisher.api_client import InvalidTokenError, extract
from social_publisher.cancellation import CancelToken
from social_publisher.errors import ErrorCode, Result
from social_publisher.models import (
    Credential,
    MediaKind,
    Metrics,
    PlatformId,
    Post,
    ProfileInfo,
)

logger = logging.getLogger(__name__)

ACCOUNT_FIELDS = "id,username,name,profile_picture_url,followers_count,follows_count,media_count"
INSIGHT_METRICS = "impressions,reach,engagement,likes,comments,saves,shares"

# Insight metric name -> Metrics attribute
METRICS_FIELDS = {
    "impressions": "views",
    "likes": "likes",
    "comments": "comments",
    "shares": "shares",
    "reach": "reach",
    "saves": "saves",
}


class InstagramAdapter(PlatformAdapter):
    """Two-step container publish; media must already be hosted at a URL."""

    platform = PlatformId.INSTAGRAM

    async def publish(
        self, credential: Credential, post: Post, cancel: CancelToken | None = None
    ) -> Result[str]:
        error = self._check_token(credential)
        if error:
            return error
        account_id = credential.metadata.get("user_id")
        if not account_id:
            return Result.fail(ErrorCode.INVALID_INPUT, "Instagram account ID is required")
        media = post.primary_media
        if media is None or not media.is_remote:
            return Result.fail(
                ErrorCode.INVALID_INPUT, "At least one hosted media URL is required"
            )

        logger.info(f"Publishing post {post.id} to Instagram account {account_id}")
        container = await self._guard(
            self._create_container(credential, account_id, post),
            ErrorCode.UPLOAD_INIT_FAILED,
            "creating media container",
        )
        if not container.success:
            return container
        if cancel is not None and cancel.cancelled:
            return Result.fail(ErrorCode.CANCELLED, "Publish cancelled")

        result = await self._guard(
            self._publish_container(credential, account_id, container.value),
            ErrorCode.PUBLISH_FAILED,
            "publishing media container",
        )
        if result.success:
            logger.info(
                f"Successfully published post {post.id} to Instagram as {result.value}"
            )
        return result

    async def fetch_profile(self, credential: Credential) -> Result[ProfileInfo]:
        error = self._check_token(credential)
        if error:
            return error
        account_id = credential.metadata.get("user_id") or "me"
        return await self._guard(
            self._fetch_account(credential, account_id),
            ErrorCode.FETCH_FAILED,
            "fetching account info",
        )

    async def fetch_post_metrics(
        self, credential: Credential, external_id: str
    ) -> Result[Metrics]:
        error = self._check_token(credential)
        if error:
            return error
        if not external_id:
            return Result.fail(ErrorCode.INVALID_INPUT, "Media ID is required")
        return await self._guard(
            self._fetch_insights(credential, external_id),
            ErrorCode.FETCH_FAILED,
            f"fetching insights for media {external_id}",
        )

    async def validate_token(self, credential: Credential) -> Result[bool]:
        """Check whether the platform still accepts the access token."""
        error = self._check_token(credential)
        if error:
            return error
        return await self._guard(
            self._probe_token(credential), ErrorCode.FETCH_FAILED, "validating access token"
        )

    async def _probe_token(self, credential: Credential) -> Result[bool]:
        try:
            await self.api.send(
                "GET",
                f"{self.base_url}/me",
                "validating access token",
                timeout=self.config.timeout,
                params={"access_token": credential.access_token},
            )
        except InvalidTokenError:
            return Result.ok(False)
        return Result.ok(True)

    async def _create_container(
        self, credential: Credential, account_id: str, post: Post
    ) -> Result[str]:
        media = post.primary_media
        data = {"caption": post.caption, "access_token": credential.access_token}
        if media.kind == MediaKind.VIDEO:
            data.update({"media_type": "REELS", "video_url": media.location})
        else:
            data["image_url"] = media.location
        context = "creating media container"
        payload = await self.api.request_json(
            "POST",
            f"{self.base_url}/{account_id}/media",
            context,
            timeout=self.config.timeout,
            data=data,
        )
        return Result.ok(str(extract(payload, "id", context=context)))

    async def _publish_container(
        self, credential: Credential, account_id: str, container_id: str
    ) -> Result[str]:
        context = "publishing media container"
        payload = await self.api.request_json(
            "POST",
            f"{self.base_url}/{account_id}/media_publish",
            context,
            timeout=self.config.timeout,
            data={"creation_id": container_id, "access_token": credential.access_token},
        )
        return Result.ok(str(extract(payload, "id", context=context)))

    async def _fetch_account(
        self, credential: Credential, account_id: str
    ) -> Result[ProfileInfo]:
        context = "fetching account info"
        payload = await self.api.request_json(
            "GET",
            f"{self.base_url}/{account_id}",
            context,
            timeout=self.config.timeout,
            params={"fields": ACCOUNT_FIELDS, "access_token": credential.access_token},
        )
        return Result.ok(
            ProfileInfo(
                platform=self.platform,
                account_id=str(extract(payload, "id", context=context)),
                display_name=payload.get("name") or "",
                username=payload.get("username"),
                avatar_url=payload.get("profile_picture_url"),
                followers=parse_count(payload.get("followers_count")),
                following=parse_count(payload.get("follows_count")),
                post_count=parse_count(payload.get("media_count")),
            )
        )

    async def _fetch_insights(
        self, credential: Credential, media_id: str
    ) -> Result[Metrics]:
        context = f"fetching insights for media {media_id}"
        payload = await self.api.request_json(
            "GET",
            f"{self.base_url}/{media_id}/insights",
            context,
            timeout=self.config.timeout,
            params={"metric": INSIGHT_METRICS, "access_token": credential.access_token},
        )
        entries = extract(payload, "data", context=context, expected_type=list)
        values = {}
        for entry in entries:
            name = entry.get("name") if isinstance(entry, dict) else None
            if name in METRICS_FIELDS:
                values[METRICS_FIELDS[name]] = _first_value(entry)
        return Result.ok(Metrics(platform=self.platform, external_id=media_id, **values))


def _first_value(entry: dict) -> int:
    points = entry.get("values") or []
    if not points or not isinstance(points[0], dict):
        return 0
    return parse_count(points[0].get("value"))
