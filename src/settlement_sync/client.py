"""Provider client with range validation, token handling and retry policy."""

import asyncio
import logging
from datetime import date
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar

from .connectors.base import (
    ProviderConnectorBase,
    ResponseCode,
    SettlementsResponse,
    ChargebacksResponse,
    describe_code,
)
from .errors import AuthError, RemoteError, SettlementSyncError, TransientNetworkError
from .models import ChargebackRecord, DateRange, SettlementRecord
from .token_session import AuthSessionManager

logger = logging.getLogger(__name__)

T = TypeVar("T", SettlementsResponse, ChargebacksResponse)


class RetryingApiClient:
    """
    Fetches settlements and chargebacks from the provider.

    Each call validates the date range, obtains a token and issues the remote
    request. Transient transport failures are retried with exponential backoff
    (``base_delay * 2 ** (attempt - 1)``) up to ``max_retries`` attempts in
    total and then escalated to RemoteError. An invalid-token response drops
    the cached token and replays the whole call once, outside the backoff
    budget.
    """

    def __init__(
        self,
        connector: ProviderConnectorBase,
        sessions: AuthSessionManager,
        max_retries: int = 3,
        base_delay: float = 2.0,
        max_lookback_days: int = 90,
        today: Optional[Callable[[], date]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the client.

        Args:
            connector: Transport to the provider.
            sessions: Token cache shared with other clients.
            max_retries: Total attempts for transient failures.
            base_delay: First backoff delay in seconds.
            max_lookback_days: Maximum date range span.
            today: Returns the current date in the provider's timezone.
            sleep: Awaitable used between attempts.
        """
        self.connector = connector
        self.sessions = sessions
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_lookback_days = max_lookback_days
        self._today = today or date.today
        self._sleep = sleep

    def validate_range(self, date_range: DateRange) -> None:
        """Raise ValidationError unless the range can be sent to the provider."""
        date_range.check(self._today(), self.max_lookback_days)

    async def fetch_settlements(
        self,
        date_range: DateRange,
        region_code: str = "",
    ) -> List[SettlementRecord]:
        """Fetch the settlements reported for ``date_range``.

        Args:
            date_range: Inclusive query window.
            region_code: Region whose organization id is used in the request.

        Returns:
            Settlement records; empty when the provider has none.

        Raises:
            ValidationError: If the range is invalid (no request is made).
            AuthError: If the provider keeps rejecting the token.
            RemoteError: On any other provider error or exhausted retries.
        """
        self.validate_range(date_range)
        response = await self._execute(
            "settlements",
            lambda token: self.connector.get_settlements(token, region_code, date_range),
            ok_code=ResponseCode.SETTLEMENTS_OK,
            invalid_token_code=ResponseCode.SETTLEMENTS_INVALID_TOKEN,
        )
        records = response.records()
        logger.info(f"Fetched {len(records)} settlements for {region_code or 'default'} ({date_range})")
        return records

    async def fetch_chargebacks(
        self,
        date_range: DateRange,
        region_code: str = "",
    ) -> List[ChargebackRecord]:
        """Fetch the chargebacks reported for ``date_range``.

        Same contract as :meth:`fetch_settlements`.
        """
        self.validate_range(date_range)
        response = await self._execute(
            "chargebacks",
            lambda token: self.connector.get_chargebacks(token, region_code, date_range),
            ok_code=ResponseCode.CHARGEBACKS_OK,
            invalid_token_code=ResponseCode.CHARGEBACKS_INVALID_TOKEN,
        )
        records = response.records()
        logger.info(f"Fetched {len(records)} chargebacks for {region_code or 'default'} ({date_range})")
        return records

    async def _execute(
        self,
        operation: str,
        call: Callable[[str], Awaitable[T]],
        ok_code: ResponseCode,
        invalid_token_code: ResponseCode,
    ) -> T:
        reauthenticated = False
        while True:
            token_value, response = await self._with_backoff(operation, call)
            code = response.id_resp

            if code == ok_code.value:
                return response

            if code == invalid_token_code.value:
                # Concurrent callers rejected with the same token share one renewal
                self.sessions.invalidate(rejected=token_value)
                if reauthenticated:
                    raise AuthError(f"{operation}: token rejected again after renewal")
                logger.warning(f"{operation}: token rejected by provider, renewing and retrying once")
                reauthenticated = True
                continue

            message = response.respuesta or describe_code(code)
            logger.error(f"{operation}: provider returned {code}: {message}")
            raise RemoteError(message, response_code=code)

    async def _with_backoff(
        self,
        operation: str,
        call: Callable[[str], Awaitable[T]],
    ) -> Tuple[str, T]:
        attempt = 0
        while True:
            attempt += 1
            try:
                token = await self.sessions.get_valid_token()
                return token.value, await call(token.value)
            except TransientNetworkError as e:
                if attempt >= self.max_retries:
                    logger.error(f"{operation}: giving up after {attempt} attempts: {e}")
                    raise RemoteError(
                        f"{operation} failed after {attempt} attempts: {e}"
                    ) from e
                delay = self.base_delay * 2 ** (attempt - 1)
                logger.warning(
                    f"{operation}: transient error on attempt {attempt}/{self.max_retries} "
                    f"({e}), retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

    async def check_connectivity(self) -> bool:
        """Return True if a token can be obtained from the provider."""
        try:
            await self.sessions.get_valid_token()
            return True
        except SettlementSyncError as e:
            logger.error(f"Provider connectivity check failed: {e}")
            return False
