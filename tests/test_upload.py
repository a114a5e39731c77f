"""White-box tests for the chunked upload pipeline."""

from pathlib import Path
from typing import Callable

import pytest

from social_publisher.api_client import (
    InvalidTokenError,
    PlatformAPIError,
    PlatformNetworkError,
)
from social_publisher.cancellation import CancelToken
from social_publisher.errors import ErrorCode
from social_publisher.models import UploadStatus
from social_publisher.upload import UploadPipeline

CHUNK_SIZE = 1024


class RecordingTransport:
    """Transport that records every call and fails where told to."""

    def __init__(
        self,
        init_error: Exception | None = None,
        chunk_errors: dict[int, Exception] | None = None,
        finalize_error: Exception | None = None,
        on_chunk: Callable[[int], None] | None = None,
    ) -> None:
        self.init_error = init_error
        self.chunk_errors = chunk_errors or {}
        self.finalize_error = finalize_error
        self.on_chunk = on_chunk
        self.calls: list[tuple] = []

    async def init_upload(self, file_name: str, file_size: int, chunk_size: int) -> str:
        self.calls.append(("init", file_name, file_size, chunk_size))
        if self.init_error:
            raise self.init_error
        return "u1"

    async def upload_chunk(
        self, upload_id: str, chunk_num: int, total_chunks: int, data: bytes
    ) -> None:
        self.calls.append(("chunk", upload_id, chunk_num, total_chunks, data))
        if self.on_chunk:
            self.on_chunk(chunk_num)
        if chunk_num in self.chunk_errors:
            raise self.chunk_errors[chunk_num]

    async def finalize(self, upload_id: str) -> str:
        self.calls.append(("finalize", upload_id))
        if self.finalize_error:
            raise self.finalize_error
        return "v1"

    def steps(self) -> list[str]:
        return [call[0] for call in self.calls]

    def chunk_numbers(self) -> list[int]:
        return [call[2] for call in self.calls if call[0] == "chunk"]


@pytest.fixture
def uneven_file(tmp_path: Path) -> Path:
    """File of two and a half chunks."""
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"x" * (CHUNK_SIZE * 2 + CHUNK_SIZE // 2))
    return path


@pytest.mark.asyncio
class TestUploadPipeline:
    """Test init/chunk/finalize sequencing and failure mapping."""

    async def test_chunks_in_order_then_finalize(self, uneven_file: Path) -> None:
        transport = RecordingTransport()
        pipeline = UploadPipeline(transport, CHUNK_SIZE)

        result = await pipeline.run(uneven_file)

        assert result.success
        assert result.value == "v1"
        assert transport.steps() == ["init", "chunk", "chunk", "chunk", "finalize"]
        assert transport.chunk_numbers() == [1, 2, 3]
        chunks = [call for call in transport.calls if call[0] == "chunk"]
        assert all(call[1] == "u1" and call[3] == 3 for call in chunks)
        assert [len(call[4]) for call in chunks] == [CHUNK_SIZE, CHUNK_SIZE, CHUNK_SIZE // 2]
        assert transport.calls[0] == ("init", "clip.mp4", CHUNK_SIZE * 2 + CHUNK_SIZE // 2, CHUNK_SIZE)
        assert pipeline.session.status == UploadStatus.COMPLETED
        assert pipeline.session.chunks_sent == 3

    async def test_exact_multiple(self, video_file: Path) -> None:
        transport = RecordingTransport()

        result = await UploadPipeline(transport, CHUNK_SIZE).run(video_file)

        assert result.success
        assert transport.chunk_numbers() == [1, 2]

    async def test_init_failure(self, uneven_file: Path) -> None:
        transport = RecordingTransport(init_error=PlatformAPIError("bad request", 400))

        result = await UploadPipeline(transport, CHUNK_SIZE).run(uneven_file)

        assert result.error == ErrorCode.UPLOAD_INIT_FAILED
        assert transport.steps() == ["init"]

    async def test_init_rejected_token(self, uneven_file: Path) -> None:
        transport = RecordingTransport(init_error=InvalidTokenError("expired", 401))

        result = await UploadPipeline(transport, CHUNK_SIZE).run(uneven_file)

        assert result.error == ErrorCode.INVALID_TOKEN

    async def test_chunk_failure_stops_upload(self, uneven_file: Path) -> None:
        transport = RecordingTransport(chunk_errors={2: PlatformAPIError("server error", 500)})
        pipeline = UploadPipeline(transport, CHUNK_SIZE)

        result = await pipeline.run(uneven_file)

        assert result.error == ErrorCode.CHUNK_UPLOAD_FAILED
        assert result.chunk_index == 2
        assert "chunk 2" in result.message
        assert transport.steps() == ["init", "chunk", "chunk"]
        assert pipeline.session.status == UploadStatus.FAILED
        assert pipeline.session.failed_chunk == 2

    async def test_chunk_network_error(self, uneven_file: Path) -> None:
        transport = RecordingTransport(chunk_errors={1: PlatformNetworkError("reset")})

        result = await UploadPipeline(transport, CHUNK_SIZE).run(uneven_file)

        assert result.error == ErrorCode.NETWORK_ERROR
        assert result.chunk_index == 1

    async def test_finalize_failure(self, uneven_file: Path) -> None:
        transport = RecordingTransport(finalize_error=PlatformAPIError("rejected", 400))

        result = await UploadPipeline(transport, CHUNK_SIZE).run(uneven_file)

        assert result.error == ErrorCode.PUBLISH_FAILED
        assert transport.steps()[-1] == "finalize"

    async def test_cancel_mid_upload(self, uneven_file: Path) -> None:
        token = CancelToken()
        transport = RecordingTransport(on_chunk=lambda n: token.cancel())
        pipeline = UploadPipeline(transport, CHUNK_SIZE, token)

        result = await pipeline.run(uneven_file)

        assert result.error == ErrorCode.CANCELLED
        assert transport.steps() == ["init", "chunk"]
        assert pipeline.session.failure == ErrorCode.CANCELLED

    async def test_cancelled_before_start(self, uneven_file: Path) -> None:
        token = CancelToken()
        token.cancel()
        transport = RecordingTransport()

        result = await UploadPipeline(transport, CHUNK_SIZE, token).run(uneven_file)

        assert result.error == ErrorCode.CANCELLED
        assert transport.calls == []

    async def test_invalid_chunk_size(self) -> None:
        with pytest.raises(ValueError, match="chunk_size"):
            UploadPipeline(RecordingTransport(), 0)
