"""Tests for the shared platform HTTP client."""

import re

import httpx
import pytest
from pytest_httpx import HTTPXMock

from social_publisher.api_client import (
    InvalidTokenError,
    MalformedResponseError,
    PlatformAPIClient,
    PlatformAPIError,
    PlatformNetworkError,
    extract,
)

URL = "https://api.example.com/v1/items"


@pytest.mark.asyncio
class TestPlatformAPIClient:
    """Test status and transport error mapping."""

    async def test_client_requires_context(self) -> None:
        api = PlatformAPIClient()

        with pytest.raises(RuntimeError, match="async context manager"):
            await api.request_json("GET", URL, "listing items")

    async def test_request_json_success(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            method="GET", url=re.compile(re.escape(URL)), json={"id": "item_1"}
        )

        async with PlatformAPIClient() as api:
            payload = await api.request_json(
                "GET", URL, "listing items", params={"access_token": "tok"}
            )

        assert payload == {"id": "item_1"}
        request = httpx_mock.get_requests()[0]
        assert request.url.params["access_token"] == "tok"

    @pytest.mark.parametrize("status_code", [401, 403])
    async def test_rejected_token(self, httpx_mock: HTTPXMock, status_code: int) -> None:
        httpx_mock.add_response(
            url=URL,
            status_code=status_code,
            json={"error": {"message": "token expired"}},
        )

        async with PlatformAPIClient() as api:
            with pytest.raises(InvalidTokenError, match="token expired") as exc_info:
                await api.request_json("GET", URL, "listing items")

        assert exc_info.value.status_code == status_code

    async def test_server_error(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=URL, status_code=500, json={"error": "backend down"})

        async with PlatformAPIClient() as api:
            with pytest.raises(PlatformAPIError) as exc_info:
                await api.request_json("GET", URL, "listing items")

        assert not isinstance(exc_info.value, InvalidTokenError)
        assert exc_info.value.status_code == 500
        assert "backend down" in str(exc_info.value)

    async def test_non_json_body(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=URL, text="<html>oops</html>")

        async with PlatformAPIClient() as api:
            with pytest.raises(MalformedResponseError, match="Invalid API response"):
                await api.request_json("GET", URL, "listing items")

    async def test_non_object_body(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=URL, json=["a", "b"])

        async with PlatformAPIClient() as api:
            with pytest.raises(MalformedResponseError):
                await api.request_json("GET", URL, "listing items")

    async def test_connection_error(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_exception(httpx.ConnectError("connection refused"), url=URL)

        async with PlatformAPIClient() as api:
            with pytest.raises(PlatformNetworkError, match="connection refused"):
                await api.request_json("GET", URL, "listing items")

    async def test_timeout(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_exception(httpx.ReadTimeout("too slow"), url=URL)

        async with PlatformAPIClient() as api:
            with pytest.raises(PlatformNetworkError, match="Timeout while listing items"):
                await api.request_json("GET", URL, "listing items", timeout=1.0)

    async def test_send_skips_decoding(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(method="POST", url=URL, text="")

        async with PlatformAPIClient() as api:
            response = await api.send("POST", URL, "uploading chunk")

        assert response.status_code == 200


class TestExtract:
    """Test nested response access."""

    def test_nested_keys(self) -> None:
        payload = {"data": {"videos": [{"id": "v1"}]}}

        assert extract(payload, "data", "videos", 0, "id", context="query") == "v1"

    def test_missing_key(self) -> None:
        with pytest.raises(MalformedResponseError, match="Missing 'upload_id'"):
            extract({"data": {}}, "data", "upload_id", context="init")

    def test_null_value(self) -> None:
        with pytest.raises(MalformedResponseError, match="Null value"):
            extract({"data": None}, "data", context="init")

    def test_wrong_shape(self) -> None:
        with pytest.raises(MalformedResponseError):
            extract({"data": "text"}, "data", "upload_id", context="init")

    def test_expected_type(self) -> None:
        payload = {"data": {"videos": "oops"}}

        with pytest.raises(MalformedResponseError, match="Expected list for 'videos', got str"):
            extract(payload, "data", "videos", context="query", expected_type=list)
        assert extract(payload, "data", context="query", expected_type=dict) == {"videos": "oops"}
