"""Chunked upload state machine for init/upload/finalize platform protocols."""

import asyncio
import logging
from pathlib import Path
from typing import Protocol

from social_publisher.api_client import (
    InvalidTokenError,
    MalformedResponseError,
    PlatformAPIError,
    PlatformNetworkError,
)
from social_publisher.cancellation import CancelToken
from social_publisher.errors import ErrorCode, Result
from social_publisher.models import UploadSession, UploadStatus

logger = logging.getLogger(__name__)


class ChunkedUploadTransport(Protocol):
    """Platform calls needed by the pipeline.

    Implementations raise the ``api_client`` exceptions on failure.
    """

    async def init_upload(self, file_name: str, file_size: int, chunk_size: int) -> str:
        """Open an upload session and return the platform upload id."""
        ...

    async def upload_chunk(
        self, upload_id: str, chunk_num: int, total_chunks: int, data: bytes
    ) -> None:
        """Send one chunk (``chunk_num`` is 1-based)."""
        ...

    async def finalize(self, upload_id: str) -> str:
        """Publish the uploaded file and return the platform post id."""
        ...


class UploadPipeline:
    """Runs one chunked upload attempt from init to finalize.

    Chunks are sent strictly in order and one at a time. A failed chunk fails
    the whole attempt; the caller must start again from init.
    """

    def __init__(
        self,
        transport: ChunkedUploadTransport,
        chunk_size: int,
        cancel: CancelToken | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            transport: Platform-specific init/chunk/finalize calls
            chunk_size: Bytes per chunk
            cancel: Optional token checked at every step
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.transport = transport
        self.chunk_size = chunk_size
        self.cancel = cancel
        self.session: UploadSession | None = None

    async def run(self, file_path: Path) -> Result[str]:
        """Upload ``file_path`` and return the platform post id.

        Args:
            file_path: Local file to upload (must exist and be non-empty)

        Returns:
            Result carrying the post id, or the failure code
        """
        file_size = file_path.stat().st_size
        session = UploadSession(total_size=file_size, chunk_size=self.chunk_size)
        self.session = session
        total_chunks = session.total_chunks

        try:
            if self._cancelled():
                return self._cancelled_result(session)

            try:
                session.upload_id = await self.transport.init_upload(
                    file_path.name, file_size, self.chunk_size
                )
            except PlatformAPIError as e:
                return self._failure(session, e, ErrorCode.UPLOAD_INIT_FAILED)
            logger.info(
                f"Upload {session.upload_id} initialized: {file_size} bytes "
                f"in {total_chunks} chunk(s)"
            )

            with file_path.open("rb") as stream:
                for chunk_num in range(1, total_chunks + 1):
                    if self._cancelled():
                        return self._cancelled_result(session)
                    data = stream.read(self.chunk_size)
                    session.status = UploadStatus.UPLOADING
                    try:
                        await self.transport.upload_chunk(
                            session.upload_id, chunk_num, total_chunks, data
                        )
                    except PlatformAPIError as e:
                        return self._failure(
                            session, e, ErrorCode.CHUNK_UPLOAD_FAILED, chunk_num
                        )
                    session.chunks_sent = chunk_num
                    logger.info(f"Uploaded chunk {chunk_num}/{total_chunks}")

            if self._cancelled():
                return self._cancelled_result(session)

            session.status = UploadStatus.FINALIZING
            try:
                post_id = await self.transport.finalize(session.upload_id)
            except PlatformAPIError as e:
                return self._failure(session, e, ErrorCode.PUBLISH_FAILED)
        except asyncio.CancelledError:
            if not session.finished:
                session.fail(ErrorCode.CANCELLED, session.chunks_sent + 1)
            logger.warning(f"Upload {session.upload_id} abandoned: cancelled")
            raise

        session.status = UploadStatus.COMPLETED
        logger.info(f"Upload {session.upload_id} completed as {post_id}")
        return Result.ok(post_id)

    def _cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.cancelled

    def _cancelled_result(self, session: UploadSession) -> Result[str]:
        session.fail(ErrorCode.CANCELLED)
        logger.warning(f"Upload {session.upload_id} abandoned: cancelled")
        return Result.fail(ErrorCode.CANCELLED, "Upload cancelled")

    def _failure(
        self,
        session: UploadSession,
        error: PlatformAPIError,
        step_code: ErrorCode,
        chunk_num: int | None = None,
    ) -> Result[str]:
        code = _error_code(error, step_code)
        session.fail(code, chunk_num)
        if chunk_num is not None:
            message = f"Failed to upload chunk {chunk_num}: {error}"
        else:
            message = str(error)
        logger.error(f"Upload failed ({code.value}): {message}")
        return Result.fail(code, message, chunk_index=chunk_num)


def _error_code(error: PlatformAPIError, step_code: ErrorCode) -> ErrorCode:
    if isinstance(error, InvalidTokenError):
        return ErrorCode.INVALID_TOKEN
    if isinstance(error, PlatformNetworkError):
        return ErrorCode.NETWORK_ERROR
    if isinstance(error, MalformedResponseError):
        return ErrorCode.MALFORMED_RESPONSE
    return step_code
