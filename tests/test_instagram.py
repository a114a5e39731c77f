"""Tests for the Instagram adapter."""

import re
from datetime import timedelta
from typing import Callable
from urllib.parse import parse_qs

import httpx
import pytest
from pytest_httpx import HTTPXMock

from social_publisher.adapters import InstagramAdapter
from social_publisher.api_client import PlatformAPIClient
from social_publisher.cancellation import CancelToken
from social_publisher.config import PlatformRegistry
from social_publisher.errors import ErrorCode
from social_publisher.models import (
    Credential,
    MediaKind,
    MediaRef,
    PlatformId,
    Post,
    utcnow,
)

BASE = "https://graph.facebook.com/v18.0"
CONTAINER_URL = f"{BASE}/ig_1/media"
PUBLISH_URL = f"{BASE}/ig_1/media_publish"


def form(request) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


@pytest.mark.asyncio
class TestInstagramPublish:
    """Test the two-step container publish."""

    async def test_publish_image(
        self,
        httpx_mock: HTTPXMock,
        registry: PlatformRegistry,
        make_credential: Callable[..., Credential],
        image_post: Post,
    ) -> None:
        httpx_mock.add_response(method="POST", url=CONTAINER_URL, json={"id": "c1"})
        httpx_mock.add_response(method="POST", url=PUBLISH_URL, json={"id": "m1"})

        async with PlatformAPIClient() as api:
            adapter = InstagramAdapter(api, registry[PlatformId.INSTAGRAM])
            result = await adapter.publish(make_credential(PlatformId.INSTAGRAM), image_post)

        assert result.value == "m1"
        container_request, publish_request = httpx_mock.get_requests()
        assert form(container_request) == {
            "caption": "Sunset",
            "access_token": "test_access_token_123",
            "image_url": "https://cdn.example.com/sunset.jpg",
        }
        assert form(publish_request)["creation_id"] == "c1"

    async def test_publish_video_as_reel(
        self,
        httpx_mock: HTTPXMock,
        registry: PlatformRegistry,
        make_credential: Callable[..., Credential],
    ) -> None:
        httpx_mock.add_response(method="POST", url=CONTAINER_URL, json={"id": "c2"})
        httpx_mock.add_response(method="POST", url=PUBLISH_URL, json={"id": "m2"})
        post = Post(
            caption="Reel",
            media=(MediaRef(location="https://cdn.example.com/a.mp4", kind=MediaKind.VIDEO),),
        )

        async with PlatformAPIClient() as api:
            adapter = InstagramAdapter(api, registry[PlatformId.INSTAGRAM])
            result = await adapter.publish(make_credential(PlatformId.INSTAGRAM), post)

        assert result.value == "m2"
        data = form(httpx_mock.get_requests()[0])
        assert data["media_type"] == "REELS"
        assert data["video_url"] == "https://cdn.example.com/a.mp4"

    async def test_requires_account_id(
        self,
        httpx_mock: HTTPXMock,
        registry: PlatformRegistry,
        make_credential: Callable[..., Credential],
        image_post: Post,
    ) -> None:
        async with PlatformAPIClient() as api:
            adapter = InstagramAdapter(api, registry[PlatformId.INSTAGRAM])
            result = await adapter.publish(
                make_credential(PlatformId.INSTAGRAM, metadata={}), image_post
            )

        assert result.error == ErrorCode.INVALID_INPUT
        assert httpx_mock.get_requests() == []

    async def test_requires_hosted_media(
        self,
        httpx_mock: HTTPXMock,
        registry: PlatformRegistry,
        make_credential: Callable[..., Credential],
    ) -> None:
        post = Post(
            caption="local",
            media=(MediaRef(location="/photos/a.jpg", kind=MediaKind.IMAGE),),
        )

        async with PlatformAPIClient() as api:
            adapter = InstagramAdapter(api, registry[PlatformId.INSTAGRAM])
            result = await adapter.publish(make_credential(PlatformId.INSTAGRAM), post)

        assert result.error == ErrorCode.INVALID_INPUT
        assert httpx_mock.get_requests() == []

    async def test_container_failure(
        self,
        httpx_mock: HTTPXMock,
        registry: PlatformRegistry,
        make_credential: Callable[..., Credential],
        image_post: Post,
    ) -> None:
        httpx_mock.add_response(
            method="POST",
            url=CONTAINER_URL,
            status_code=400,
            json={"error": {"message": "Invalid image"}},
        )

        async with PlatformAPIClient() as api:
            adapter = InstagramAdapter(api, registry[PlatformId.INSTAGRAM])
            result = await adapter.publish(make_credential(PlatformId.INSTAGRAM), image_post)

        assert result.error == ErrorCode.UPLOAD_INIT_FAILED
        assert "Invalid image" in result.message
        assert len(httpx_mock.get_requests()) == 1

    async def test_publish_step_failure(
        self,
        httpx_mock: HTTPXMock,
        registry: PlatformRegistry,
        make_credential: Callable[..., Credential],
        image_post: Post,
    ) -> None:
        httpx_mock.add_response(method="POST", url=CONTAINER_URL, json={"id": "c1"})
        httpx_mock.add_response(method="POST", url=PUBLISH_URL, status_code=500, json={})

        async with PlatformAPIClient() as api:
            adapter = InstagramAdapter(api, registry[PlatformId.INSTAGRAM])
            result = await adapter.publish(make_credential(PlatformId.INSTAGRAM), image_post)

        assert result.error == ErrorCode.PUBLISH_FAILED

    async def test_cancel_between_steps(
        self,
        httpx_mock: HTTPXMock,
        registry: PlatformRegistry,
        make_credential: Callable[..., Credential],
        image_post: Post,
    ) -> None:
        token = CancelToken()

        def create_container(request):
            token.cancel()
            return httpx.Response(200, json={"id": "c1"})

        httpx_mock.add_callback(create_container, method="POST", url=CONTAINER_URL)

        async with PlatformAPIClient() as api:
            adapter = InstagramAdapter(api, registry[PlatformId.INSTAGRAM])
            result = await adapter.publish(
                make_credential(PlatformId.INSTAGRAM), image_post, token
            )

        assert result.error == ErrorCode.CANCELLED
        assert len(httpx_mock.get_requests()) == 1

    async def test_schedule_not_supported(
        self,
        registry: PlatformRegistry,
        make_credential: Callable[..., Credential],
        image_post: Post,
    ) -> None:
        async with PlatformAPIClient() as api:
            adapter = InstagramAdapter(api, registry[PlatformId.INSTAGRAM])
            result = await adapter.schedule(
                make_credential(PlatformId.INSTAGRAM), image_post, utcnow() + timedelta(hours=1)
            )

        assert not adapter.supports_native_scheduling
        assert result.error == ErrorCode.NOT_SUPPORTED


@pytest.mark.asyncio
class TestInstagramQueries:
    """Test account info, insights and token probing."""

    async def test_fetch_profile(
        self,
        httpx_mock: HTTPXMock,
        registry: PlatformRegistry,
        make_credential: Callable[..., Credential],
    ) -> None:
        httpx_mock.add_response(
            method="GET",
            url=re.compile(re.escape(f"{BASE}/ig_1?")),
            json={
                "id": "ig_1",
                "username": "sunsets",
                "name": "Sunset Photos",
                "followers_count": 900,
                "follows_count": "15",
                "media_count": 31,
            },
        )

        async with PlatformAPIClient() as api:
            adapter = InstagramAdapter(api, registry[PlatformId.INSTAGRAM])
            result = await adapter.fetch_profile(make_credential(PlatformId.INSTAGRAM))

        profile = result.unwrap()
        assert profile.username == "sunsets"
        assert (profile.followers, profile.following, profile.post_count) == (900, 15, 31)

    async def test_fetch_profile_defaults_to_me(
        self,
        httpx_mock: HTTPXMock,
        registry: PlatformRegistry,
        make_credential: Callable[..., Credential],
    ) -> None:
        httpx_mock.add_response(
            method="GET", url=re.compile(re.escape(f"{BASE}/me?")), json={"id": "ig_9"}
        )

        async with PlatformAPIClient() as api:
            adapter = InstagramAdapter(api, registry[PlatformId.INSTAGRAM])
            result = await adapter.fetch_profile(
                make_credential(PlatformId.INSTAGRAM, metadata={})
            )

        assert result.unwrap().account_id == "ig_9"

    async def test_fetch_insights(
        self,
        httpx_mock: HTTPXMock,
        registry: PlatformRegistry,
        make_credential: Callable[..., Credential],
    ) -> None:
        httpx_mock.add_response(
            method="GET",
            url=re.compile(re.escape(f"{BASE}/m1/insights?")),
            json={
                "data": [
                    {"name": "impressions", "values": [{"value": 500}]},
                    {"name": "reach", "values": [{"value": "320"}]},
                    {"name": "likes", "values": [{"value": 41}]},
                    {"name": "saves", "values": []},
                    {"name": "engagement", "values": [{"value": 60}]},
                ]
            },
        )

        async with PlatformAPIClient() as api:
            adapter = InstagramAdapter(api, registry[PlatformId.INSTAGRAM])
            result = await adapter.fetch_post_metrics(make_credential(PlatformId.INSTAGRAM), "m1")

        metrics = result.unwrap()
        assert (metrics.views, metrics.reach, metrics.likes, metrics.saves) == (500, 320, 41, 0)

    async def test_fetch_insights_unexpected_shape(
        self,
        httpx_mock: HTTPXMock,
        registry: PlatformRegistry,
        make_credential: Callable[..., Credential],
    ) -> None:
        httpx_mock.add_response(
            method="GET",
            url=re.compile(re.escape(f"{BASE}/m1/insights?")),
            json={"data": "impressions"},
        )

        async with PlatformAPIClient() as api:
            adapter = InstagramAdapter(api, registry[PlatformId.INSTAGRAM])
            result = await adapter.fetch_post_metrics(make_credential(PlatformId.INSTAGRAM), "m1")

        assert result.error == ErrorCode.MALFORMED_RESPONSE

    async def test_validate_token(
        self,
        httpx_mock: HTTPXMock,
        registry: PlatformRegistry,
        make_credential: Callable[..., Credential],
    ) -> None:
        me_url = re.compile(re.escape(f"{BASE}/me?"))
        httpx_mock.add_response(method="GET", url=me_url, json={"id": "ig_1"})
        httpx_mock.add_response(method="GET", url=me_url, status_code=401, json={})

        async with PlatformAPIClient() as api:
            adapter = InstagramAdapter(api, registry[PlatformId.INSTAGRAM])
            credential = make_credential(PlatformId.INSTAGRAM)
            valid = await adapter.validate_token(credential)
            rejected = await adapter.validate_token(credential)

        assert valid.value is True
        assert rejected.value is False
