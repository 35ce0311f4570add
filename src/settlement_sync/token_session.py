"""Cached provider token shared by every concurrent region job."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .connectors.base import ProviderConnectorBase
from .errors import AuthError, RemoteError
from .models import AuthToken

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_VALIDITY = timedelta(hours=24)
DEFAULT_SAFETY_MARGIN = timedelta(hours=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AuthSessionManager:
    """
    Owns the provider token and renews it before it expires.

    Concurrent callers that find the cache empty or stale share a single
    in-flight refresh: the first one requests the token while the rest wait on
    the lock and then reuse the result.

    Example:
        sessions = AuthSessionManager(connector, "user", "secret")
        token = await sessions.get_valid_token()
    """

    def __init__(
        self,
        connector: ProviderConnectorBase,
        username: str,
        password: str,
        validity: timedelta = DEFAULT_TOKEN_VALIDITY,
        safety_margin: timedelta = DEFAULT_SAFETY_MARGIN,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.connector = connector
        self.username = username
        self._password = password
        self.validity = validity
        self.safety_margin = safety_margin
        self._clock = clock or utc_now
        self._token: Optional[AuthToken] = None
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    def _is_usable(self, token: Optional[AuthToken]) -> bool:
        return token is not None and token.is_usable(self._clock(), self.safety_margin)

    async def get_valid_token(self) -> AuthToken:
        """Return the cached token, refreshing it first if it is missing or stale.

        Raises:
            AuthError: If the provider refuses to issue a token.
            TransientNetworkError: If the token request fails in transit.
        """
        token = self._token
        if self._is_usable(token):
            return token

        async with self._lock:
            # Another caller may have refreshed while we waited
            token = self._token
            if self._is_usable(token):
                return token
            return await self._refresh_locked()

    async def refresh(self) -> AuthToken:
        """Request a new token and replace the cached one."""
        async with self._lock:
            return await self._refresh_locked()

    async def _refresh_locked(self) -> AuthToken:
        logger.info("Requesting new provider token")
        try:
            response = await self.connector.request_token(self.username, self._password)
        except RemoteError as e:
            raise AuthError(f"token request rejected: {e}") from e

        if not response.ok:
            logger.error(f"Token request failed: {response.respuesta or 'empty token'}")
            raise AuthError(
                f"provider returned no token: {response.respuesta or 'empty response'}"
            )

        issued_at = self._clock()
        self._token = AuthToken(
            value=response.token,
            issued_at=issued_at,
            expires_at=issued_at + self.validity,
        )
        self.refresh_count += 1
        logger.info(f"Provider token obtained, valid until {self._token.expires_at.isoformat()}")
        return self._token

    def invalidate(self, rejected: Optional[str] = None) -> bool:
        """Drop the cached token so the next caller requests a new one.

        Args:
            rejected: Value of the token the provider refused. When given, the
                cache is only cleared if it still holds that token; a token
                renewed by another caller in the meantime is kept.

        Returns:
            True if the cached token was dropped.
        """
        token = self._token
        if token is None:
            return False
        if rejected is not None and token.value != rejected:
            logger.debug("Rejected token was already replaced; keeping the renewed one")
            return False
        logger.info("Invalidating cached provider token")
        self._token = None
        return True

    def has_valid_token(self) -> bool:
        return self._is_usable(self._token)

    @property
    def token_expires_at(self) -> Optional[datetime]:
        return self._token.expires_at if self._token else None
