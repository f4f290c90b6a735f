"""Helpship credential resolution and access token cache.

Credentials are resolved per organization, falling back to the
process-wide settings for anything the organization leaves unset.
Access tokens are cached per organization until shortly before they
expire.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from ordercore.domain.entities import HelpshipEnvironment, OrganizationSettings
from ordercore.infrastructure.config import settings

logger = structlog.get_logger()


# ============================================================================
# Credentials
# ============================================================================


@dataclass(frozen=True)
class HelpshipCredentials:
    """Resolved OAuth client credentials and endpoints for one organization."""

    organization_id: str
    client_id: str
    client_secret: str
    token_url: str
    api_url: str
    environment: HelpshipEnvironment

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def cache_key(self) -> str:
        """Tokens are only valid for the client they were issued to."""
        return f"{self.organization_id}:{self.client_id}:{self.token_url}"


def resolve_credentials(
    organization_id: str,
    org_settings: OrganizationSettings | None,
) -> HelpshipCredentials:
    """Merge organization settings over the process defaults.

    Args:
        organization_id: Organization the credentials are for.
        org_settings: Stored settings, or None if the organization has none.

    Returns:
        Fully resolved credentials.
    """
    if org_settings is None:
        logger.warning(
            "No Helpship settings for organization, using defaults",
            organization_id=organization_id,
        )
        org_settings = OrganizationSettings(
            organization_id=organization_id,
            helpship_environment=HelpshipEnvironment(settings.helpship_environment),
        )

    environment = org_settings.helpship_environment
    if environment == HelpshipEnvironment.DEVELOPMENT:
        default_token_url = settings.helpship_development_token_url
        default_api_url = settings.helpship_development_api_url
    else:
        default_token_url = settings.helpship_token_url
        default_api_url = settings.helpship_api_url

    credentials = HelpshipCredentials(
        organization_id=organization_id,
        client_id=org_settings.helpship_client_id or settings.helpship_client_id or "",
        client_secret=org_settings.helpship_client_secret
        or settings.helpship_client_secret
        or "",
        token_url=org_settings.helpship_token_url or default_token_url,
        api_url=(org_settings.helpship_api_url or default_api_url).rstrip("/"),
        environment=environment,
    )

    if not credentials.is_configured:
        logger.warning(
            "Helpship credentials not configured, API calls will fail",
            organization_id=organization_id,
        )
    return credentials


# ============================================================================
# Access Token Cache
# ============================================================================


@dataclass(frozen=True)
class AccessToken:
    """Bearer token with its absolute expiry (monotonic seconds)."""

    value: str
    expires_at: float

    def is_valid(self, margin_seconds: float, now: float | None = None) -> bool:
        now = time.monotonic() if now is None else now
        return self.expires_at - margin_seconds > now


TokenFetcher = Callable[[], Awaitable[tuple[str, int]]]


class HelpshipTokenCache:
    """Per-organization access token cache with TTL invalidation.

    A single lock guards the map; a per-key lock serializes refreshes so
    concurrent callers for the same organization trigger one token request.
    """

    def __init__(self, refresh_margin_seconds: float | None = None) -> None:
        """Initialize cache.

        Args:
            refresh_margin_seconds: Refresh tokens this long before expiry.
        """
        if refresh_margin_seconds is None:
            refresh_margin_seconds = settings.helpship_token_refresh_margin_seconds
        self.refresh_margin_seconds = refresh_margin_seconds
        self._tokens: dict[str, AccessToken] = {}
        self._refresh_locks: dict[str, asyncio.Lock] = {}
        self._lock = asyncio.Lock()

    async def _refresh_lock(self, key: str) -> asyncio.Lock:
        async with self._lock:
            lock = self._refresh_locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._refresh_locks[key] = lock
            return lock

    async def get_token(self, key: str, fetch: TokenFetcher) -> str:
        """Return a cached token or fetch a new one.

        Args:
            key: Cache key (see HelpshipCredentials.cache_key).
            fetch: Coroutine returning (access_token, expires_in_seconds).

        Returns:
            A bearer token valid for at least the refresh margin.
        """
        async with self._lock:
            cached = self._tokens.get(key)
        if cached and cached.is_valid(self.refresh_margin_seconds):
            return cached.value

        refresh_lock = await self._refresh_lock(key)
        async with refresh_lock:
            # Another caller may have refreshed while we waited.
            async with self._lock:
                cached = self._tokens.get(key)
            if cached and cached.is_valid(self.refresh_margin_seconds):
                return cached.value

            value, expires_in = await fetch()
            token = AccessToken(value=value, expires_at=time.monotonic() + expires_in)
            async with self._lock:
                self._tokens[key] = token
            logger.info("Helpship access token obtained", cache_key=key, expires_in=expires_in)
            return value

    async def invalidate(self, key: str) -> None:
        """Drop a cached token, e.g. after the API rejected it."""
        async with self._lock:
            self._tokens.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._tokens.clear()
            self._refresh_locks.clear()


# Global cache instance
_token_cache: HelpshipTokenCache | None = None


def get_token_cache() -> HelpshipTokenCache:
    """Get the process-wide token cache."""
    global _token_cache
    if _token_cache is None:
        _token_cache = HelpshipTokenCache()
    return _token_cache


def reset_token_cache() -> None:
    """Reset token cache (for testing)."""
    global _token_cache
    _token_cache = HelpshipTokenCache()
