"""Shared platform HTTP client using httpx for async HTTP calls."""

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class PlatformAPIError(Exception):
    """Base exception for platform API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvalidTokenError(PlatformAPIError):
    """Exception raised when the platform rejects the access token (401/403)."""

    pass


class PlatformNetworkError(PlatformAPIError):
    """Exception raised for transport failures and timeouts."""

    pass


class MalformedResponseError(PlatformAPIError):
    """Exception raised when a successful response cannot be decoded."""

    pass


class PlatformAPIClient:
    """Thin async HTTP layer shared by every platform adapter."""

    def __init__(self, default_timeout: float = 30.0) -> None:
        """Initialize the platform API client.

        Args:
            default_timeout: Timeout in seconds for calls that do not pass one
        """
        self.default_timeout = default_timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "PlatformAPIClient":
        """Async context manager entry."""
        self._client = httpx.AsyncClient(timeout=self.default_timeout)
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
        self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the httpx AsyncClient instance.

        Returns:
            The httpx.AsyncClient instance

        Raises:
            RuntimeError: If client is used outside of async context manager
        """
        if self._client is None:
            raise RuntimeError("Client must be used within async context manager")
        return self._client

    async def request_json(
        self,
        method: str,
        url: str,
        context: str,
        *,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Send a request and decode its JSON body.

        Args:
            method: HTTP method
            url: Absolute request URL
            context: Description of the operation, used in errors and logs
            timeout: Per-call timeout in seconds
            **kwargs: Passed to ``httpx.AsyncClient.request`` (params, json,
                data, files)

        Returns:
            Parsed JSON object

        Raises:
            InvalidTokenError: On 401/403
            PlatformAPIError: On any other non-2xx status
            PlatformNetworkError: On transport failure or timeout
            MalformedResponseError: If a 2xx body is not a JSON object
        """
        response = await self.send(method, url, context, timeout=timeout, **kwargs)
        return self._parse_json_response(response, context)

    async def send(
        self,
        method: str,
        url: str,
        context: str,
        *,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request and raise for non-2xx statuses, without decoding."""
        try:
            response = await self.client.request(
                method,
                url,
                timeout=timeout if timeout is not None else self.default_timeout,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            logger.warning(f"Timeout while {context}: {e}")
            raise PlatformNetworkError(f"Timeout while {context}: {e}") from e
        except httpx.TransportError as e:
            logger.warning(f"Network error while {context}: {e}")
            raise PlatformNetworkError(f"Network error: {e}") from e

        if response.status_code >= 400:
            self._handle_error_response(response, context)
        return response

    def _parse_json_response(
        self, response: httpx.Response, context: str
    ) -> dict[str, Any]:
        """Parse JSON response, handling non-JSON responses gracefully.

        Args:
            response: The httpx Response object
            context: Description of what operation was attempted

        Returns:
            Parsed JSON as a dictionary

        Raises:
            MalformedResponseError: If the body is not a JSON object
        """
        try:
            result = response.json()
        except ValueError:
            raise MalformedResponseError(
                f"Invalid API response while {context}: {response.text[:200]}",
                status_code=response.status_code,
            )
        if not isinstance(result, dict):
            raise MalformedResponseError(
                f"Unexpected API response shape while {context}",
                status_code=response.status_code,
            )
        return result

    def _handle_error_response(self, response: httpx.Response, context: str) -> None:
        """Handle error responses from a platform API.

        Raises:
            InvalidTokenError: If the token was rejected
            PlatformAPIError: For other API errors
        """
        status_code = response.status_code
        error_message = _error_message(response)

        if status_code in (401, 403):
            logger.warning(f"Access token rejected ({status_code}) while {context}")
            raise InvalidTokenError(
                f"Invalid or expired access token: {error_message}",
                status_code=status_code,
            )

        error_msg = f"API error {status_code} while {context}: {error_message}"
        logger.error(error_msg)
        raise PlatformAPIError(error_msg, status_code=status_code)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error)
        if error:
            return str(error)
    return str(body)[:200]


def extract(
    payload: Any, *keys: str | int, context: str, expected_type: type | None = None
) -> Any:
    """Walk nested keys/indexes in a decoded body.

    Args:
        payload: Decoded JSON body
        *keys: Object keys and list indexes to follow
        context: Description of the operation, used in errors
        expected_type: Type the final value must have (e.g. ``dict`` or ``list``)

    Raises:
        MalformedResponseError: If any step is missing, the value is null or
            it is not an ``expected_type``
    """
    current = payload
    for key in keys:
        try:
            current = current[key]
        except (KeyError, IndexError, TypeError):
            raise MalformedResponseError(
                f"Missing '{key}' in response while {context}"
            ) from None
    if current is None:
        raise MalformedResponseError(f"Null value in response while {context}")
    if expected_type is not None and not isinstance(current, expected_type):
        raise MalformedResponseError(
            f"Expected {expected_type.__name__} for '{keys[-1] if keys else 'body'}', "
            f"got {type(current).__name__} while {context}"
        )
    return current
