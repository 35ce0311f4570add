"""Simulator connector for exercising sync flows without calling the provider."""

import asyncio
import uuid
import random
import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Deque, Dict, Any, List, Optional, Set

from ..errors import RemoteError, TransientNetworkError
from ..models import DateRange
from .base import (
    ProviderConnectorBase,
    ResponseCode,
    TokenResponse,
    SettlementsResponse,
    ChargebacksResponse,
    RESPONSE_DATETIME_FORMAT,
    describe_code,
)

logger = logging.getLogger(__name__)


class SimulatorFailure(str, Enum):
    """Scripted failures the simulator can inject into the next calls."""
    TRANSIENT = "transient"
    INVALID_TOKEN = "invalid_token"
    INTERNAL_ERROR = "internal_error"
    INVALID_PARAMETER = "invalid_parameter"
    HTTP_ERROR = "http_error"
    EMPTY_TOKEN = "empty_token"


class SimulatorOperation(str, Enum):
    TOKEN = "token"
    SETTLEMENTS = "settlements"
    CHARGEBACKS = "chargebacks"


_FAILURE_CODES = {
    SimulatorOperation.SETTLEMENTS: {
        SimulatorFailure.INVALID_TOKEN: ResponseCode.SETTLEMENTS_INVALID_TOKEN,
        SimulatorFailure.INTERNAL_ERROR: ResponseCode.SETTLEMENTS_INTERNAL_ERROR,
        SimulatorFailure.INVALID_PARAMETER: ResponseCode.SETTLEMENTS_INVALID_PARAMETER,
    },
    SimulatorOperation.CHARGEBACKS: {
        SimulatorFailure.INVALID_TOKEN: ResponseCode.CHARGEBACKS_INVALID_TOKEN,
        SimulatorFailure.INTERNAL_ERROR: ResponseCode.CHARGEBACKS_INTERNAL_ERROR,
        SimulatorFailure.INVALID_PARAMETER: ResponseCode.CHARGEBACKS_INVALID_PARAMETER,
    },
}


@dataclass
class SimulatorConfig:
    """Configuration for simulator behavior."""
    delay_ms: int = 0  # Delay applied to every call
    region_delays_ms: Dict[str, int] = field(default_factory=dict)
    generate_random: bool = False  # Invent settlements for regions without fixtures
    max_generated_settlements: int = 3
    seed: Optional[int] = None  # Random seed for reproducibility


def make_settlement(
    number: int,
    transaction_ids: List[Any],
    sequence: int = 1,
    status: Optional[str] = "Depositada",
    date_from: str = "2025-01-01",
    date_to: str = "2025-01-07",
    deposit_date: Optional[str] = "2025-01-09",
    item_amount: str = "100.00",
    agreement: Optional[int] = 1,
) -> Dict[str, Any]:
    """Build a settlement payload in the provider's wire format."""
    details = [
        {
            "Codigo_unico_transaccion": tx_id,
            "Monto": item_amount,
            "Numero_operacion": f"OP-{number}-{index}",
            "Depositable": True,
        }
        for index, tx_id in enumerate(transaction_ids, start=1)
    ]
    gross = Decimal(item_amount) * len(details)
    commission = (gross * Decimal("0.03")).quantize(Decimal("0.01"))
    tax = (commission * Decimal("0.21")).quantize(Decimal("0.01"))
    return {
        "Numero": number,
        "Secuencia": sequence,
        "Convenio": agreement,
        "Estado": status,
        "Fecha_desde": date_from,
        "Fecha_hasta": date_to,
        "Fecha_deposito": deposit_date,
        "Monto": str(gross),
        "Monto_depositado": str(gross - commission - tax),
        "Monto_comision": str(commission),
        "Monto_IVA": str(tax),
        "Cantidad": len(details),
        "Detalles": details,
    }


def make_chargeback(
    number: int,
    transaction_id: Any,
    status: str = "Pendiente",
    amount: str = "100.00",
    due_date: Optional[datetime] = None,
    card: str = "4509953566233704",
    payment_method: str = "Visa",
) -> Dict[str, Any]:
    """Build a chargeback payload in the provider's wire format."""
    due = due_date or (datetime(2025, 1, 10, 12, 0, 0))
    return {
        "Numero": number,
        "Estado": status,
        "Medio": payment_method,
        "Transaccion": transaction_id,
        "Monto": amount,
        "Tarjeta": card,
        "Fecha_vencimiento": due.strftime(RESPONSE_DATETIME_FORMAT),
    }


class SimulatorConnector(ProviderConnectorBase):
    """
    In-memory stand-in for the settlement provider.

    Features:
    - Per-region settlement and chargeback fixtures
    - Token issuance and revocation (revoked tokens get the invalid-token code)
    - Scripted failures per operation
    - Per-region response delays
    - Seeded random settlements for dry runs
    """

    def __init__(self, config: Optional[SimulatorConfig] = None):
        """Initialize the simulator with optional configuration."""
        self.config = config or SimulatorConfig()
        self._rng = random.Random(self.config.seed)
        self._settlements: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self._chargebacks: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self._failures: Dict[SimulatorOperation, Deque[SimulatorFailure]] = defaultdict(deque)
        self._valid_tokens: Set[str] = set()
        self.calls: Dict[SimulatorOperation, int] = defaultdict(int)
        self.requested_ranges: List[DateRange] = []
        logger.info("SimulatorConnector initialized")

    # Fixture management

    def add_settlements(self, region_code: str, payloads: List[Dict[str, Any]]) -> None:
        self._settlements[region_code].extend(payloads)

    def add_chargebacks(self, region_code: str, payloads: List[Dict[str, Any]]) -> None:
        self._chargebacks[region_code].extend(payloads)

    def fail_next(
        self,
        operation: SimulatorOperation,
        failure: SimulatorFailure,
        times: int = 1,
    ) -> None:
        """Queue ``times`` failures for the next calls of ``operation``."""
        for _ in range(times):
            self._failures[operation].append(failure)

    def set_region_delay(self, region_code: str, delay_ms: int) -> None:
        self.config.region_delays_ms[region_code] = delay_ms

    def revoke_tokens(self) -> None:
        """Invalidate every issued token, as a provider-side expiry would."""
        self._valid_tokens.clear()

    # Internals

    async def _delay(self, region_code: Optional[str] = None) -> None:
        delay_ms = self.config.delay_ms
        if region_code is not None:
            delay_ms += self.config.region_delays_ms.get(region_code, 0)
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000)

    def _next_failure(self, operation: SimulatorOperation) -> Optional[SimulatorFailure]:
        self.calls[operation] += 1
        queue = self._failures[operation]
        if queue:
            return queue.popleft()
        return None

    def _raise_transport(self, failure: SimulatorFailure, operation: SimulatorOperation) -> None:
        if failure == SimulatorFailure.TRANSIENT:
            raise TransientNetworkError(f"simulated timeout on {operation.value}")
        if failure == SimulatorFailure.HTTP_ERROR:
            raise RemoteError(f"HTTP 400 from simulated {operation.value}")

    def _generate(self, region_code: str, date_range: DateRange) -> List[Dict[str, Any]]:
        payloads = []
        count = self._rng.randint(0, self.config.max_generated_settlements)
        for _ in range(count):
            number = self._rng.randint(1000, 9999)
            tx_ids = [self._rng.randint(10**8, 10**9) for _ in range(self._rng.randint(1, 5))]
            payloads.append(make_settlement(
                number=number,
                transaction_ids=tx_ids,
                status=self._rng.choice(["Pendiente", "Depositada"]),
                date_from=date_range.date_from.isoformat(),
                date_to=date_range.date_to.isoformat(),
                deposit_date=(date_range.date_to + timedelta(days=2)).isoformat(),
            ))
        logger.debug(f"Generated {len(payloads)} settlements for {region_code}")
        return payloads

    # ProviderConnectorBase

    async def request_token(self, username: str, password: str) -> TokenResponse:
        await self._delay()
        failure = self._next_failure(SimulatorOperation.TOKEN)
        if failure is not None:
            self._raise_transport(failure, SimulatorOperation.TOKEN)
            return TokenResponse(respuesta="Invalid credentials", token="")
        token = f"sim_{uuid.uuid4().hex}"
        self._valid_tokens.add(token)
        return TokenResponse(respuesta="OK", token=token)

    async def get_settlements(
        self,
        token: str,
        region_code: str,
        date_range: DateRange,
    ) -> SettlementsResponse:
        await self._delay(region_code)
        self.requested_ranges.append(date_range)
        failure = self._next_failure(SimulatorOperation.SETTLEMENTS)
        if failure is not None:
            self._raise_transport(failure, SimulatorOperation.SETTLEMENTS)
            code = _FAILURE_CODES[SimulatorOperation.SETTLEMENTS].get(
                failure, ResponseCode.SETTLEMENTS_INTERNAL_ERROR
            )
            return SettlementsResponse(id_resp=code.value, respuesta=describe_code(code.value))
        if token not in self._valid_tokens:
            code = ResponseCode.SETTLEMENTS_INVALID_TOKEN
            return SettlementsResponse(id_resp=code.value, respuesta=describe_code(code.value))

        payloads = self._settlements.get(region_code)
        if payloads is None and self.config.generate_random:
            payloads = self._generate(region_code, date_range)
        return SettlementsResponse.model_validate({
            "id_resp": ResponseCode.SETTLEMENTS_OK.value,
            "respuesta": describe_code(ResponseCode.SETTLEMENTS_OK.value),
            "rendicion": list(payloads or []),
        })

    async def get_chargebacks(
        self,
        token: str,
        region_code: str,
        date_range: DateRange,
    ) -> ChargebacksResponse:
        await self._delay(region_code)
        failure = self._next_failure(SimulatorOperation.CHARGEBACKS)
        if failure is not None:
            self._raise_transport(failure, SimulatorOperation.CHARGEBACKS)
            code = _FAILURE_CODES[SimulatorOperation.CHARGEBACKS].get(
                failure, ResponseCode.CHARGEBACKS_INTERNAL_ERROR
            )
            return ChargebacksResponse(id_resp=code.value, respuesta=describe_code(code.value))
        if token not in self._valid_tokens:
            code = ResponseCode.CHARGEBACKS_INVALID_TOKEN
            return ChargebacksResponse(id_resp=code.value, respuesta=describe_code(code.value))

        return ChargebacksResponse.model_validate({
            "id_resp": ResponseCode.CHARGEBACKS_OK.value,
            "respuesta": describe_code(ResponseCode.CHARGEBACKS_OK.value),
            "contracargos": list(self._chargebacks.get(region_code, [])),
        })

    def health_check(self) -> Dict[str, Any]:
        return {"ok": True, "simulator": True}
