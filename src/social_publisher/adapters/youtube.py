"""YouTube Data API v3 adapter."""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any

from social_publisher.adapters.base import PlatformAdapter, parse_count, section
from social_publisher.api_client import extract
from social_publisher.cancellation import CancelToken
from social_publisher.errors import ErrorCode, Result
from social_publisher.models import (
    Credential,
    Metrics,
    PlatformId,
    Post,
    ProfileInfo,
    as_utc,
)

logger = logging.getLogger(__name__)

CATEGORY_PEOPLE_AND_BLOGS = "22"
MAX_TITLE_LENGTH = 100
HASHTAG_PATTERN = re.compile(r"#(\w+)")

# Native statistics field -> Metrics attribute; values arrive as strings
METRICS_FIELDS = {
    "viewCount": "views",
    "likeCount": "likes",
    "commentCount": "comments",
}


class YouTubeAdapter(PlatformAdapter):
    """Single-request multipart video upload plus channel/video statistics."""

    platform = PlatformId.YOUTUBE

    async def publish(
        self, credential: Credential, post: Post, cancel: CancelToken | None = None
    ) -> Result[str]:
        error = self._validate_upload(credential, post)
        if error:
            return error
        return await self._guard(
            self._upload(credential, post, {"privacyStatus": "unlisted"}),
            ErrorCode.PUBLISH_FAILED,
            f"uploading {post.primary_media.path.name}",
        )

    async def schedule(
        self,
        credential: Credential,
        post: Post,
        when: datetime,
        cancel: CancelToken | None = None,
    ) -> Result[str]:
        error = self._check_token(credential) or self._check_schedule_time(when)
        error = error or self._validate_upload(credential, post)
        if error:
            return error
        publish_at = as_utc(when).astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        return await self._guard(
            self._upload(
                credential, post, {"privacyStatus": "private", "publishAt": publish_at}
            ),
            ErrorCode.PUBLISH_FAILED,
            f"scheduling {post.primary_media.path.name}",
        )

    async def fetch_profile(self, credential: Credential) -> Result[ProfileInfo]:
        error = self._check_token(credential)
        if error:
            return error
        return await self._guard(
            self._fetch_channel(credential), ErrorCode.FETCH_FAILED, "fetching channel info"
        )

    async def fetch_post_metrics(
        self, credential: Credential, external_id: str
    ) -> Result[Metrics]:
        error = self._check_token(credential)
        if error:
            return error
        if not external_id:
            return Result.fail(ErrorCode.INVALID_INPUT, "Video ID is required")
        return await self._guard(
            self._fetch_metrics(credential, external_id),
            ErrorCode.FETCH_FAILED,
            f"fetching analytics for video {external_id}",
        )

    async def create_playlist(
        self, credential: Credential, title: str, description: str = ""
    ) -> Result[str]:
        """Create a private playlist and return its id."""
        error = self._check_token(credential)
        if error:
            return error
        if not title or not title.strip():
            return Result.fail(ErrorCode.INVALID_INPUT, "Playlist title is required")
        return await self._guard(
            self._create_playlist(credential, title, description),
            ErrorCode.PUBLISH_FAILED,
            f"creating playlist '{title}'",
        )

    def _validate_upload(self, credential: Credential, post: Post) -> Result[Any] | None:
        error = self._check_token(credential) or self._check_media_file(post.primary_media)
        if error:
            return error
        if not post.caption or not post.caption.strip():
            return Result.fail(ErrorCode.INVALID_INPUT, "Video title/description is required")
        return None

    def _metadata(self, post: Post, status: dict[str, str]) -> dict[str, Any]:
        title = post.title or post.caption
        return {
            "snippet": {
                "title": title[:MAX_TITLE_LENGTH],
                "description": post.caption,
                "tags": HASHTAG_PATTERN.findall(post.caption),
                "categoryId": CATEGORY_PEOPLE_AND_BLOGS,
            },
            "status": status,
        }

    async def _upload(
        self, credential: Credential, post: Post, status: dict[str, str]
    ) -> Result[str]:
        media = post.primary_media
        context = f"uploading {media.path.name}"
        logger.info(f"Uploading video to YouTube: {media.path}")
        metadata = json.dumps(self._metadata(post, status))
        with media.path.open("rb") as video:
            payload = await self.api.request_json(
                "POST",
                f"{self.base_url}/videos",
                context,
                timeout=self.config.timeout,
                params={"part": "snippet,status", "access_token": credential.access_token},
                files={
                    "video": (media.path.name, video, media.mime_type or "video/mp4"),
                    "metadata": (None, metadata, "application/json"),
                },
            )
        video_id = str(extract(payload, "id", context=context))
        logger.info(f"Video uploaded successfully: {video_id}")
        return Result.ok(video_id)

    async def _fetch_channel(self, credential: Credential) -> Result[ProfileInfo]:
        context = "fetching channel info"
        payload = await self.api.request_json(
            "GET",
            f"{self.base_url}/channels",
            context,
            timeout=self.config.timeout,
            params={
                "part": "snippet,statistics",
                "mine": "true",
                "access_token": credential.access_token,
            },
        )
        items = extract(payload, "items", context=context, expected_type=list)
        if not items:
            return Result.fail(ErrorCode.FETCH_FAILED, "No channel found")
        channel = extract(items, 0, context=context, expected_type=dict)
        snippet = section(channel, "snippet")
        statistics = section(channel, "statistics")
        thumbnail = section(section(snippet, "thumbnails"), "default").get("url")
        return Result.ok(
            ProfileInfo(
                platform=self.platform,
                account_id=str(channel.get("id") or ""),
                display_name=snippet.get("title") or "",
                username=snippet.get("customUrl"),
                avatar_url=thumbnail,
                followers=parse_count(statistics.get("subscriberCount")),
                post_count=parse_count(statistics.get("videoCount")),
                total_views=parse_count(statistics.get("viewCount")),
            )
        )

    async def _fetch_metrics(
        self, credential: Credential, external_id: str
    ) -> Result[Metrics]:
        context = f"fetching analytics for video {external_id}"
        logger.info(f"Fetching analytics for video: {external_id}")
        payload = await self.api.request_json(
            "GET",
            f"{self.base_url}/videos",
            context,
            timeout=self.config.timeout,
            params={
                "part": "statistics",
                "id": external_id,
                "access_token": credential.access_token,
            },
        )
        items = extract(payload, "items", context=context, expected_type=list)
        if not items:
            return Result.fail(ErrorCode.FETCH_FAILED, f"Video not found: {external_id}")
        video = extract(items, 0, context=context, expected_type=dict)
        statistics = section(video, "statistics")
        counters = {
            attr: parse_count(statistics.get(name)) for name, attr in METRICS_FIELDS.items()
        }
        # Share counts are not exposed by the Data API
        return Result.ok(Metrics(platform=self.platform, external_id=external_id, **counters))

    async def _create_playlist(
        self, credential: Credential, title: str, description: str
    ) -> Result[str]:
        context = f"creating playlist '{title}'"
        payload = await self.api.request_json(
            "POST",
            f"{self.base_url}/playlists",
            context,
            timeout=self.config.timeout,
            params={"part": "snippet,status", "access_token": credential.access_token},
            json={
                "snippet": {"title": title, "description": description},
                "status": {"privacyStatus": "private"},
            },
        )
        playlist_id = str(extract(payload, "id", context=context))
        logger.info(f"Playlist created: {playlist_id}")
        return Result.ok(playlist_id)
