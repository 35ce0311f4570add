"""HTTP connector for the settlement provider's JSON API."""

import logging
from typing import Optional, Dict, Any, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError as PayloadValidationError

from ..config import SyncSettings
from ..errors import RemoteError, TransientNetworkError, ValidationError
from ..models import DateRange
from .base import (
    ProviderConnectorBase,
    TokenResponse,
    SettlementsResponse,
    ChargebacksResponse,
    build_token_request,
    build_settlements_request,
    build_chargebacks_request,
)

logger = logging.getLogger(__name__)

TOKEN_PATH = "/obtener_token"
SETTLEMENTS_PATH = "/obtener_rendiciones"
CHARGEBACKS_PATH = "/obtener_contracargos"

# HTTP statuses worth another attempt
RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})

ResponseModel = TypeVar("ResponseModel", bound=BaseModel)


class HttpConnector(ProviderConnectorBase):
    """
    Talks to the provider over HTTPS with a shared ``httpx.AsyncClient``.

    Transport failures are raised as TransientNetworkError so the retrying
    client can back off; everything else becomes a RemoteError.
    """

    def __init__(
        self,
        settings: SyncSettings,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the connector.

        Args:
            settings: Sync settings providing the base URL and organization ids.
            client: Optional preconfigured client. Created from settings if omitted.
            transport: Optional transport for the created client (used in tests).

        Raises:
            ValidationError: If no API URL is configured.
        """
        if not settings.api_url and client is None:
            raise ValidationError("SETTLEMENT_API_URL must be configured")
        self.settings = settings
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=settings.api_url.rstrip("/"),
            timeout=httpx.Timeout(settings.http_timeout_seconds, connect=10.0),
            limits=httpx.Limits(
                max_connections=max(settings.pool_size * 2, 10),
                max_keepalive_connections=settings.pool_size,
            ),
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            transport=transport,
        )

    async def _post(
        self,
        path: str,
        payload: Dict[str, Any],
        response_model: Type[ResponseModel],
    ) -> ResponseModel:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"timeout calling {path}: {type(e).__name__}") from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"transport error calling {path}: {e}") from e

        if response.status_code in RETRYABLE_STATUS:
            raise TransientNetworkError(f"HTTP {response.status_code} from {path}")
        if response.status_code != 200:
            raise RemoteError(f"HTTP {response.status_code} from {path}")

        try:
            return response_model.model_validate(response.json())
        except (ValueError, PayloadValidationError) as e:
            logger.error(f"Malformed response from {path}: {e}")
            raise RemoteError(f"malformed response from {path}") from e

    async def request_token(self, username: str, password: str) -> TokenResponse:
        logger.debug("Requesting provider token")
        return await self._post(
            TOKEN_PATH,
            build_token_request(username, password),
            TokenResponse,
        )

    async def get_settlements(
        self,
        token: str,
        region_code: str,
        date_range: DateRange,
    ) -> SettlementsResponse:
        logger.debug(f"Requesting settlements for {region_code} ({date_range})")
        return await self._post(
            SETTLEMENTS_PATH,
            build_settlements_request(
                token, self.settings.organization_for(region_code), date_range
            ),
            SettlementsResponse,
        )

    async def get_chargebacks(
        self,
        token: str,
        region_code: str,
        date_range: DateRange,
    ) -> ChargebacksResponse:
        logger.debug(f"Requesting chargebacks for {region_code} ({date_range})")
        return await self._post(
            CHARGEBACKS_PATH,
            build_chargebacks_request(
                token, self.settings.organization_for(region_code), date_range
            ),
            ChargebacksResponse,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def health_check(self) -> Dict[str, Any]:
        return {"ok": not self._client.is_closed, "base_url": str(self._client.base_url)}
