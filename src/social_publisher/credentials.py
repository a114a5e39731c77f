"""Credential storage, token refresh and per-user credential resolution."""

import asyncio
import json
import logging
from dataclasses import replace
from datetime import timedelta
from pathlib import Path
from typing import Any, Mapping, Protocol

from social_publisher.api_client import (
    InvalidTokenError,
    MalformedResponseError,
    PlatformAPIClient,
    PlatformAPIError,
    PlatformNetworkError,
    extract,
)
from social_publisher.config import OAuthClientConfig, PlatformRegistry, PublisherSettings
from social_publisher.errors import ErrorCode, Result
from social_publisher.models import Credential, PlatformId, utcnow

logger = logging.getLogger(__name__)

TIKTOK_DEFAULT_EXPIRES_IN = 7200
YOUTUBE_DEFAULT_EXPIRES_IN = 3600
INSTAGRAM_DEFAULT_EXPIRES_IN = 60 * 24 * 3600


class CredentialStore(Protocol):
    """Persistence for credentials keyed by (user, platform)."""

    async def get(self, user_id: str, platform: PlatformId) -> Credential | None: ...

    async def put(self, credential: Credential) -> None: ...

    async def delete(self, user_id: str, platform: PlatformId) -> None: ...


class InMemoryCredentialStore:
    """Dictionary-backed store, mostly for tests and short-lived processes."""

    def __init__(self, credentials: list[Credential] | None = None) -> None:
        self._credentials: dict[tuple[str, PlatformId], Credential] = {}
        for credential in credentials or []:
            self._credentials[(credential.user_id, credential.platform)] = credential

    async def get(self, user_id: str, platform: PlatformId) -> Credential | None:
        return self._credentials.get((user_id, platform))

    async def put(self, credential: Credential) -> None:
        self._credentials[(credential.user_id, credential.platform)] = credential

    async def delete(self, user_id: str, platform: PlatformId) -> None:
        self._credentials.pop((user_id, platform), None)


class JsonFileCredentialStore:
    """Stores every credential in a single JSON file.

    The file holds a list of credential objects as produced by
    :meth:`Credential.to_dict`.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def _load(self) -> dict[tuple[str, PlatformId], Credential]:
        if not self.path.exists():
            return {}
        payload = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(payload, list):
            raise ValueError(f"Credential file must contain a list: {self.path}")
        credentials = [Credential.from_dict(item) for item in payload]
        return {(c.user_id, c.platform): c for c in credentials}

    def _save(self, credentials: dict[tuple[str, PlatformId], Credential]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [c.to_dict() for c in credentials.values()]
        self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    async def get(self, user_id: str, platform: PlatformId) -> Credential | None:
        return self._load().get((user_id, platform))

    async def put(self, credential: Credential) -> None:
        credentials = self._load()
        credentials[(credential.user_id, credential.platform)] = credential
        self._save(credentials)

    async def delete(self, user_id: str, platform: PlatformId) -> None:
        credentials = self._load()
        if credentials.pop((user_id, platform), None) is not None:
            self._save(credentials)


class TokenRefresher:
    """Calls each platform's token endpoint to renew an access token."""

    def __init__(
        self,
        api: PlatformAPIClient,
        registry: PlatformRegistry,
        clients: Mapping[PlatformId, OAuthClientConfig] | None = None,
    ) -> None:
        """Initialize the refresher.

        Args:
            api: Shared HTTP client
            registry: Platform registry (token URLs and timeouts)
            clients: OAuth application credentials per platform
        """
        self.api = api
        self.registry = registry
        self.clients = dict(clients or {})

    async def refresh(self, credential: Credential) -> Result[Credential]:
        """Exchange the stored tokens for a fresh credential.

        Returns:
            The new credential, or a failure whose message says why
        """
        strategies = {
            PlatformId.TIKTOK: self._refresh_tiktok,
            PlatformId.YOUTUBE: self._refresh_youtube,
            PlatformId.INSTAGRAM: self._refresh_instagram,
        }
        strategy = strategies.get(credential.platform)
        if strategy is None or credential.platform not in self.registry:
            return Result.fail(
                ErrorCode.REAUTH_REQUIRED,
                f"Token refresh not supported for {credential.platform.value}",
            )
        context = f"refreshing {credential.platform.value} token"
        try:
            return await strategy(credential)
        except InvalidTokenError as e:
            return Result.fail(ErrorCode.INVALID_TOKEN, str(e))
        except PlatformNetworkError as e:
            return Result.fail(ErrorCode.NETWORK_ERROR, str(e))
        except MalformedResponseError as e:
            logger.error(f"Malformed token response while {context}: {e}")
            return Result.fail(ErrorCode.MALFORMED_RESPONSE, str(e))
        except PlatformAPIError as e:
            code = (
                ErrorCode.INVALID_TOKEN
                if e.status_code == 400
                else ErrorCode.FETCH_FAILED
            )
            return Result.fail(code, str(e))

    def _client_config(self, platform: PlatformId) -> OAuthClientConfig | None:
        client = self.clients.get(platform)
        if client is None or not client.configured:
            return None
        return client

    async def _refresh_tiktok(self, credential: Credential) -> Result[Credential]:
        client = self._client_config(credential.platform)
        if client is None:
            return _not_configured(credential.platform)
        if not credential.refresh_token:
            return _no_refresh_token(credential.platform)
        config = self.registry[credential.platform]
        context = "refreshing tiktok token"
        payload = await self.api.request_json(
            "POST",
            config.token_url,
            context,
            timeout=config.timeout,
            json={
                "client_key": client.client_id,
                "client_secret": client.client_secret,
                "refresh_token": credential.refresh_token,
                "grant_type": "refresh_token",
            },
        )
        data = extract(payload, "data", context=context, expected_type=dict)
        metadata = dict(credential.metadata)
        if data.get("open_id"):
            metadata["open_id"] = str(data["open_id"])
        return Result.ok(
            _renewed(
                credential,
                access_token=str(extract(data, "access_token", context=context)),
                refresh_token=data.get("refresh_token") or credential.refresh_token,
                expires_in=data.get("expires_in"),
                default_expires_in=TIKTOK_DEFAULT_EXPIRES_IN,
                metadata=metadata,
            )
        )

    async def _refresh_youtube(self, credential: Credential) -> Result[Credential]:
        client = self._client_config(credential.platform)
        if client is None:
            return _not_configured(credential.platform)
        if not credential.refresh_token:
            return _no_refresh_token(credential.platform)
        config = self.registry[credential.platform]
        context = "refreshing youtube token"
        payload = await self.api.request_json(
            "POST",
            config.token_url,
            context,
            timeout=config.timeout,
            data={
                "client_id": client.client_id,
                "client_secret": client.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": credential.refresh_token,
            },
        )
        return Result.ok(
            _renewed(
                credential,
                access_token=str(extract(payload, "access_token", context=context)),
                refresh_token=payload.get("refresh_token") or credential.refresh_token,
                expires_in=payload.get("expires_in"),
                default_expires_in=YOUTUBE_DEFAULT_EXPIRES_IN,
            )
        )

    async def _refresh_instagram(self, credential: Credential) -> Result[Credential]:
        # Long-lived Instagram tokens refresh themselves; there is no refresh token
        if not credential.access_token:
            return _no_refresh_token(credential.platform)
        config = self.registry[credential.platform]
        context = "refreshing instagram token"
        payload = await self.api.request_json(
            "GET",
            config.token_url,
            context,
            timeout=config.timeout,
            params={
                "grant_type": "ig_refresh_token",
                "access_token": credential.access_token,
            },
        )
        return Result.ok(
            _renewed(
                credential,
                access_token=str(extract(payload, "access_token", context=context)),
                refresh_token=credential.refresh_token,
                expires_in=payload.get("expires_in"),
                default_expires_in=INSTAGRAM_DEFAULT_EXPIRES_IN,
            )
        )


def _renewed(
    credential: Credential,
    *,
    access_token: str,
    refresh_token: str | None,
    expires_in: Any,
    default_expires_in: int,
    metadata: Mapping[str, str] | None = None,
) -> Credential:
    try:
        seconds = int(expires_in)
    except (TypeError, ValueError):
        seconds = default_expires_in
    return replace(
        credential,
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=utcnow() + timedelta(seconds=seconds),
        metadata=dict(metadata if metadata is not None else credential.metadata),
    )


def _not_configured(platform: PlatformId) -> Result[Credential]:
    return Result.fail(
        ErrorCode.REAUTH_REQUIRED, f"OAuth client for {platform.value} is not configured"
    )


def _no_refresh_token(platform: PlatformId) -> Result[Credential]:
    return Result.fail(
        ErrorCode.REAUTH_REQUIRED, f"No refresh token stored for {platform.value}"
    )


class CredentialResolver:
    """Hands out valid credentials, refreshing them when they are about to expire.

    Refreshes for the same (user, platform) are serialized so concurrent
    callers share one token-endpoint call.
    """

    def __init__(
        self,
        store: CredentialStore,
        refresher: TokenRefresher,
        settings: PublisherSettings | None = None,
    ) -> None:
        self.store = store
        self.refresher = refresher
        self.settings = settings or PublisherSettings()
        self._locks: dict[tuple[str, PlatformId], asyncio.Lock] = {}
        self._refreshing: dict[tuple[str, PlatformId], asyncio.Task] = {}

    @property
    def refresh_window(self) -> timedelta:
        return self.settings.refresh_window

    def _lock_for(self, user_id: str, platform: PlatformId) -> asyncio.Lock:
        return self._locks.setdefault((user_id, platform), asyncio.Lock())

    async def resolve(self, user_id: str, platform: PlatformId) -> Result[Credential]:
        """Return a credential valid beyond the refresh window.

        Returns:
            The stored or refreshed credential, or ``REAUTH_REQUIRED``
        """
        credential = await self.store.get(user_id, platform)
        if credential is None:
            return _missing(user_id, platform)
        if not credential.needs_refresh(self.refresh_window):
            return Result.ok(credential)

        async with self._lock_for(user_id, platform):
            current = await self.store.get(user_id, platform)
            if current is None:
                return _missing(user_id, platform)
            if not current.needs_refresh(self.refresh_window):
                return Result.ok(current)
            if current.access_token != credential.access_token and not current.is_expired():
                # Refreshed by another caller while this one waited for the lock
                return Result.ok(current)
            logger.info(f"Refreshing {platform.value} token for user {user_id}")
            return await self._refresh_locked(current)

    async def refresh(
        self, user_id: str, platform: PlatformId, stale_token: str | None = None
    ) -> Result[Credential]:
        """Force a refresh, e.g. after the platform rejected ``stale_token``.

        If another caller already replaced ``stale_token`` the stored
        credential is returned without a new token-endpoint call.
        """
        async with self._lock_for(user_id, platform):
            current = await self.store.get(user_id, platform)
            if current is None:
                return _missing(user_id, platform)
            if stale_token is not None and current.access_token != stale_token:
                return Result.ok(current)
            logger.info(f"Forcing {platform.value} token refresh for user {user_id}")
            return await self._refresh_locked(current)

    async def disconnect(self, user_id: str, platform: PlatformId) -> None:
        """Forget the stored credential for (user, platform)."""
        await self.store.delete(user_id, platform)
        logger.info(f"Disconnected {platform.value} for user {user_id}")

    async def _refresh_locked(self, credential: Credential) -> Result[Credential]:
        # A cancelled caller must not drop a rotated token pair before it is stored
        key = (credential.user_id, credential.platform)
        task = self._refreshing.get(key)
        if task is None:
            task = asyncio.create_task(self._refresh_and_store(credential))
            self._refreshing[key] = task
            task.add_done_callback(lambda _: self._refreshing.pop(key, None))
        return await asyncio.shield(task)

    async def _refresh_and_store(self, credential: Credential) -> Result[Credential]:
        result = await self.refresher.refresh(credential)
        if result.success:
            await self.store.put(result.value)
            return result

        if result.error == ErrorCode.INVALID_TOKEN:
            # The token endpoint rejected the grant; the stored tokens are dead
            await self.store.delete(credential.user_id, credential.platform)
        logger.error(
            f"Token refresh failed for {credential.platform.value} "
            f"(user {credential.user_id}): {result.message}"
        )
        return Result.fail(
            ErrorCode.REAUTH_REQUIRED,
            f"Reauthorization required: {result.message}",
        )


def _missing(user_id: str, platform: PlatformId) -> Result[Credential]:
    return Result.fail(
        ErrorCode.REAUTH_REQUIRED, f"No {platform.value} credential for user {user_id}"
    )
