"""Error codes and the tagged result type returned by adapters."""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorCode(str, Enum):
    """Failure kinds reported for a single platform operation."""

    INVALID_TOKEN = "INVALID_TOKEN"
    INVALID_INPUT = "INVALID_INPUT"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    INVALID_SCHEDULE_TIME = "INVALID_SCHEDULE_TIME"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    UPLOAD_INIT_FAILED = "UPLOAD_INIT_FAILED"
    CHUNK_UPLOAD_FAILED = "CHUNK_UPLOAD_FAILED"
    PUBLISH_FAILED = "PUBLISH_FAILED"
    FETCH_FAILED = "FETCH_FAILED"
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
    NETWORK_ERROR = "NETWORK_ERROR"
    CANCELLED = "CANCELLED"
    REAUTH_REQUIRED = "REAUTH_REQUIRED"
    NOT_SUPPORTED = "NOT_SUPPORTED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"

    @property
    def kind(self) -> "ErrorCode":
        """Broad category of the code (file and schedule errors are bad input)."""
        if self in (ErrorCode.FILE_NOT_FOUND, ErrorCode.INVALID_SCHEDULE_TIME):
            return ErrorCode.INVALID_INPUT
        return self

    @property
    def retryable(self) -> bool:
        """Whether the orchestrator retries this failure on its own."""
        return self in (ErrorCode.NETWORK_ERROR, ErrorCode.INVALID_TOKEN)


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of an adapter operation: a value or an error code."""

    value: T | None = None
    error: ErrorCode | None = None
    message: str | None = None
    chunk_index: int | None = None

    def __post_init__(self) -> None:
        """Validate result data."""
        if self.error is None and self.value is None:
            raise ValueError("Successful result must have a value")
        if self.error is not None and self.value is not None:
            raise ValueError("Failed result cannot carry a value")

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def ok(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fail(
        cls, error: ErrorCode, message: str, chunk_index: int | None = None
    ) -> "Result[T]":
        return cls(error=error, message=message, chunk_index=chunk_index)

    def unwrap(self) -> T:
        """Return the value, raising ValueError on a failed result."""
        if self.error is not None:
            raise ValueError(f"{self.error.value}: {self.message}")
        return self.value  # type: ignore[return-value]
