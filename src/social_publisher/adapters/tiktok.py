"""TikTok adapter: chunked video upload, creator info and video queries."""

import logging
from datetime import datetime
from typing import Any

from social_publisher.adapters.base import PlatformAdapter, parse_count
from social_publisher.api_client import PlatformAPIClient, extract
from social_publisher.cancellation import CancelToken
from social_publisher.config import PlatformConfig
from social_publisher.errors import ErrorCode, Result
from social_publisher.models import (
    Credential,
    Metrics,
    PlatformId,
    Post,
    ProfileInfo,
    as_utc,
)
from social_publisher.upload import UploadPipeline

logger = logging.getLogger(__name__)

DEFAULT_VIDEO_TITLE = "Posted via SocialMind"
PROFILE_FIELDS = (
    "open_id,union_id,user_id,display_name,avatar_large_url,"
    "follower_count,following_count,video_count,like_count"
)
VIDEO_QUERY_FIELDS = "id,create_time,like_count,comment_count,share_count,play_count,reach"

# Native field name -> Metrics attribute
METRICS_FIELDS = {
    "play_count": "views",
    "like_count": "likes",
    "comment_count": "comments",
    "share_count": "shares",
    "reach": "reach",
}


class TikTokUploadTransport:
    """init/upload/publish calls for one TikTok upload attempt."""

    def __init__(
        self,
        api: PlatformAPIClient,
        config: PlatformConfig,
        access_token: str,
        publish_body: dict[str, Any],
    ) -> None:
        self.api = api
        self.config = config
        self.access_token = access_token
        self.publish_body = publish_body

    @property
    def base_url(self) -> str:
        return self.config.api_base_url.rstrip("/")

    async def init_upload(self, file_name: str, file_size: int, chunk_size: int) -> str:
        context = f"initializing upload of {file_name}"
        logger.info(f"TikTok: Initializing video upload for {file_name}")
        payload = await self.api.request_json(
            "POST",
            f"{self.base_url}/video/upload/init/",
            context,
            timeout=self.config.timeout,
            params={"access_token": self.access_token},
            json={
                "source_info": {
                    "source": "FILE_UPLOAD",
                    "file_name": file_name,
                    "file_size": file_size,
                    "chunk_size": chunk_size,
                }
            },
        )
        return str(extract(payload, "data", "upload_id", context=context))

    async def upload_chunk(
        self, upload_id: str, chunk_num: int, total_chunks: int, data: bytes
    ) -> None:
        await self.api.send(
            "POST",
            f"{self.base_url}/video/upload/",
            f"uploading chunk {chunk_num}/{total_chunks}",
            timeout=self.config.timeout,
            params={
                "access_token": self.access_token,
                "upload_id": upload_id,
                "chunk_num": chunk_num,
                "total_chunk_num": total_chunks,
            },
            files={"video": (f"chunk_{chunk_num}", data, "application/octet-stream")},
        )

    async def finalize(self, upload_id: str) -> str:
        context = f"publishing upload {upload_id}"
        logger.info(f"TikTok: Publishing video with uploadId: {upload_id}")
        payload = await self.api.request_json(
            "POST",
            f"{self.base_url}/video/publish/",
            context,
            timeout=self.config.timeout,
            params={"access_token": self.access_token},
            json={"upload_id": upload_id, **self.publish_body},
        )
        return str(extract(payload, "data", "video_id", context=context))


class TikTokAdapter(PlatformAdapter):
    """TikTok Open API v1."""

    platform = PlatformId.TIKTOK

    async def publish(
        self, credential: Credential, post: Post, cancel: CancelToken | None = None
    ) -> Result[str]:
        error = self._check_token(credential) or self._check_media_file(post.primary_media)
        if error:
            return error
        return await self._upload(credential, post, self._publish_body(post), cancel)

    async def schedule(
        self,
        credential: Credential,
        post: Post,
        when: datetime,
        cancel: CancelToken | None = None,
    ) -> Result[str]:
        when = as_utc(when)
        error = (
            self._check_token(credential)
            or self._check_schedule_time(when)
            or self._check_media_file(post.primary_media)
        )
        if error:
            return error
        body = {
            **self._publish_body(post),
            "publish_type": "SCHEDULED_PUBLISH",
            "publish_time": int(when.timestamp()),
        }
        logger.info(f"TikTok: Scheduling video for {when.isoformat()}")
        return await self._upload(credential, post, body, cancel)

    async def fetch_profile(self, credential: Credential) -> Result[ProfileInfo]:
        error = self._check_token(credential)
        if error:
            return error
        return await self._guard(
            self._fetch_profile(credential), ErrorCode.FETCH_FAILED, "fetching creator info"
        )

    async def fetch_post_metrics(
        self, credential: Credential, external_id: str
    ) -> Result[Metrics]:
        error = self._check_token(credential)
        if error:
            return error
        if not external_id:
            return Result.fail(ErrorCode.INVALID_INPUT, "Invalid video ID")
        return await self._guard(
            self._fetch_metrics(credential, external_id),
            ErrorCode.FETCH_FAILED,
            f"fetching analytics for video {external_id}",
        )

    def _publish_body(self, post: Post) -> dict[str, Any]:
        return {
            "video_title": post.caption or DEFAULT_VIDEO_TITLE,
            "disable_comment": False,
            "disable_duet": False,
            "disable_stitch": False,
        }

    async def _upload(
        self,
        credential: Credential,
        post: Post,
        publish_body: dict[str, Any],
        cancel: CancelToken | None,
    ) -> Result[str]:
        transport = TikTokUploadTransport(
            self.api, self.config, credential.access_token, publish_body
        )
        pipeline = UploadPipeline(transport, self.config.chunk_size, cancel)
        result = await pipeline.run(post.primary_media.path)
        if result.success:
            logger.info(f"TikTok: Video published successfully with ID: {result.value}")
        return result

    async def _fetch_profile(self, credential: Credential) -> Result[ProfileInfo]:
        context = "fetching creator info"
        payload = await self.api.request_json(
            "GET",
            f"{self.base_url}/user/info/",
            context,
            timeout=self.config.timeout,
            params={"access_token": credential.access_token, "fields": PROFILE_FIELDS},
        )
        user = extract(payload, "data", "user", context=context, expected_type=dict)
        display_name = user.get("display_name") or "Unknown"
        profile = ProfileInfo(
            platform=self.platform,
            account_id=str(user.get("open_id") or ""),
            display_name=display_name,
            username=display_name,
            avatar_url=user.get("avatar_large_url"),
            followers=parse_count(user.get("follower_count")),
            following=parse_count(user.get("following_count")),
            post_count=parse_count(user.get("video_count")),
            total_likes=parse_count(user.get("like_count")),
        )
        logger.info(f"TikTok: Retrieved creator info for {profile.username}")
        return Result.ok(profile)

    async def _fetch_metrics(
        self, credential: Credential, external_id: str
    ) -> Result[Metrics]:
        context = f"fetching analytics for video {external_id}"
        payload = await self.api.request_json(
            "POST",
            f"{self.base_url}/video/query/",
            context,
            timeout=self.config.timeout,
            params={"access_token": credential.access_token, "fields": VIDEO_QUERY_FIELDS},
            json={"filters": {"video_ids": [external_id]}},
        )
        videos = extract(payload, "data", "videos", context=context, expected_type=list)
        if not videos:
            return Result.fail(ErrorCode.FETCH_FAILED, f"Video not found: {external_id}")
        video = extract(videos, 0, context=context, expected_type=dict)
        counters = {attr: parse_count(video.get(name)) for name, attr in METRICS_FIELDS.items()}
        metrics = Metrics(
            platform=self.platform,
            external_id=str(video.get("id") or external_id),
            **counters,
        )
        logger.info(
            f"TikTok: Retrieved analytics for video {external_id}: "
            f"{metrics.views} views, {metrics.likes} likes"
        )
        return Result.ok(metrics)
