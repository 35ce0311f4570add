"""Provider connector interface and wire models."""

import enum
from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, Field, field_validator

from ..config import PROTOCOL_VERSION
from ..models import (
    ChargebackRecord,
    DateRange,
    SettlementLineItem,
    SettlementRecord,
)

REQUEST_DATE_FORMAT = "%d/%m/%Y"
RESPONSE_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class ResponseCode(str, enum.Enum):
    """Provider response codes (``id_resp``)."""
    SETTLEMENTS_OK = "05001"
    SETTLEMENTS_INVALID_TOKEN = "05002"
    SETTLEMENTS_INTERNAL_ERROR = "05003"
    SETTLEMENTS_RANGE_EXCEEDED = "05004"
    SETTLEMENTS_INVALID_PARAMETER = "05005"
    CHARGEBACKS_OK = "06001"
    CHARGEBACKS_INVALID_TOKEN = "06002"
    CHARGEBACKS_INTERNAL_ERROR = "06003"
    CHARGEBACKS_INVALID_RANGE = "06004"
    CHARGEBACKS_INVALID_PARAMETER = "06005"
    CHARGEBACKS_INVALID_VERSION = "06006"


RESPONSE_MESSAGES = {
    ResponseCode.SETTLEMENTS_OK: "Settlements retrieved",
    ResponseCode.SETTLEMENTS_INVALID_TOKEN: "Invalid token",
    ResponseCode.SETTLEMENTS_INTERNAL_ERROR: "Provider internal error",
    ResponseCode.SETTLEMENTS_RANGE_EXCEEDED: "Date range exceeds 90 days",
    ResponseCode.SETTLEMENTS_INVALID_PARAMETER: "Invalid parameter",
    ResponseCode.CHARGEBACKS_OK: "Chargebacks retrieved",
    ResponseCode.CHARGEBACKS_INVALID_TOKEN: "Invalid token",
    ResponseCode.CHARGEBACKS_INTERNAL_ERROR: "Provider internal error",
    ResponseCode.CHARGEBACKS_INVALID_RANGE: "Invalid date range",
    ResponseCode.CHARGEBACKS_INVALID_PARAMETER: "Invalid parameter",
    ResponseCode.CHARGEBACKS_INVALID_VERSION: "Invalid protocol version",
}


def describe_code(code: Optional[str]) -> str:
    """Human-readable description for a provider response code."""
    try:
        return RESPONSE_MESSAGES[ResponseCode(code)]
    except ValueError:
        return f"Unknown response code {code}"


def mask_card(card: Optional[str]) -> Optional[str]:
    """Keep only the last four digits of a card number."""
    if not card:
        return card
    digits = card.strip()
    if len(digits) <= 4:
        return "****"
    return f"****{digits[-4:]}"


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


# Wire models

class TokenResponse(BaseModel):
    """Response of the token endpoint."""
    id_resp: Optional[str] = None
    respuesta: Optional[str] = None
    token: Optional[str] = Field(None, repr=False)

    @property
    def ok(self) -> bool:
        return bool(self.token and self.token.strip())


class SettlementDetailPayload(BaseModel):
    """Line item as sent by the provider."""
    transaction_id: Optional[int] = Field(None, alias="Codigo_unico_transaccion")
    amount: Optional[Decimal] = Field(None, alias="Monto")
    operation_number: Optional[str] = Field(None, alias="Numero_operacion")
    depositable: Optional[bool] = Field(None, alias="Depositable")

    class Config:
        populate_by_name = True

    @field_validator("transaction_id", "amount", "operation_number", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        return _blank_to_none(value)

    def to_domain(self) -> SettlementLineItem:
        return SettlementLineItem(
            external_transaction_id=str(self.transaction_id) if self.transaction_id is not None else None,
            amount=self.amount,
            external_reference=self.operation_number,
            is_depositable=self.depositable if self.depositable is not None else True,
        )


class SettlementPayload(BaseModel):
    """Settlement as sent by the provider."""
    number: Optional[int] = Field(None, alias="Numero")
    sequence: Optional[int] = Field(None, alias="Secuencia")
    agreement: Optional[int] = Field(None, alias="Convenio")
    status: Optional[str] = Field(None, alias="Estado")
    date_from: Optional[date] = Field(None, alias="Fecha_desde")
    date_to: Optional[date] = Field(None, alias="Fecha_hasta")
    estimated_deposit_date: Optional[date] = Field(None, alias="Fecha_estimada_deposito")
    deposit_date: Optional[date] = Field(None, alias="Fecha_deposito")
    amount: Optional[Decimal] = Field(None, alias="Monto")
    deposited_amount: Optional[Decimal] = Field(None, alias="Monto_depositado")
    commission: Optional[Decimal] = Field(None, alias="Monto_comision")
    tax: Optional[Decimal] = Field(None, alias="Monto_IVA")
    count: Optional[int] = Field(None, alias="Cantidad")
    details: Optional[List[SettlementDetailPayload]] = Field(None, alias="Detalles")

    class Config:
        populate_by_name = True

    @field_validator(
        "number", "sequence", "agreement", "date_from", "date_to",
        "estimated_deposit_date", "deposit_date", "amount", "deposited_amount",
        "commission", "tax", "count",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        return _blank_to_none(value)

    def to_domain(self) -> SettlementRecord:
        return SettlementRecord(
            id=self.number,
            sequence=self.sequence,
            agreement=self.agreement,
            status=self.status,
            period_from=self.date_from,
            period_to=self.date_to,
            estimated_deposit_date=self.estimated_deposit_date,
            deposit_date=self.deposit_date,
            gross_amount=self.amount,
            net_amount=self.deposited_amount,
            commission=self.commission,
            tax=self.tax,
            item_count=self.count,
            line_items=[d.to_domain() for d in self.details or []],
        )


class ChargebackPayload(BaseModel):
    """Chargeback as sent by the provider."""
    number: Optional[int] = Field(None, alias="Numero")
    status: Optional[str] = Field(None, alias="Estado")
    payment_method: Optional[str] = Field(None, alias="Medio")
    transaction_id: Optional[int] = Field(None, alias="Transaccion")
    amount: Optional[Decimal] = Field(None, alias="Monto")
    card: Optional[str] = Field(None, alias="Tarjeta", repr=False)
    due_date: Optional[datetime] = Field(None, alias="Fecha_vencimiento")

    class Config:
        populate_by_name = True

    @field_validator("number", "transaction_id", "amount", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        if isinstance(value, str):
            try:
                return datetime.strptime(value.strip(), RESPONSE_DATETIME_FORMAT)
            except ValueError:
                return value
        return value

    def to_domain(self) -> ChargebackRecord:
        return ChargebackRecord(
            id=self.number,
            status=self.status,
            payment_method=self.payment_method,
            external_transaction_id=str(self.transaction_id) if self.transaction_id is not None else None,
            amount=self.amount,
            card_masked=mask_card(self.card),
            due_date=self.due_date,
        )


class SettlementsResponse(BaseModel):
    """Response of the settlements endpoint."""
    id_resp: Optional[str] = None
    respuesta: Optional[str] = None
    rendicion: Optional[List[SettlementPayload]] = None

    def records(self) -> List[SettlementRecord]:
        return [s.to_domain() for s in self.rendicion or []]


class ChargebacksResponse(BaseModel):
    """Response of the chargebacks endpoint."""
    id_resp: Optional[str] = None
    respuesta: Optional[str] = None
    contracargos: Optional[List[ChargebackPayload]] = None

    def records(self) -> List[ChargebackRecord]:
        return [c.to_domain() for c in self.contracargos or []]


# Request builders

def format_request_date(value: date) -> str:
    return value.strftime(REQUEST_DATE_FORMAT)


def build_token_request(username: str, password: str) -> Dict[str, Any]:
    return {"version": PROTOCOL_VERSION, "usuario": username, "clave": password}


def build_settlements_request(
    token: str,
    organization_id: Optional[int],
    date_range: DateRange,
) -> Dict[str, Any]:
    return {
        "version": PROTOCOL_VERSION,
        "credenciales": {"id_organismo": organization_id, "token": token},
        "rendicion": {
            "fecha_desde": format_request_date(date_range.date_from),
            "fecha_hasta": format_request_date(date_range.date_to),
        },
    }


def build_chargebacks_request(
    token: str,
    organization_id: Optional[int],
    date_range: DateRange,
) -> Dict[str, Any]:
    return {
        "version": PROTOCOL_VERSION,
        "credenciales": {"id_organismo": organization_id, "token": token},
        "datos_contracargos": {
            "fecha_desde": format_request_date(date_range.date_from),
            "fecha_hasta": format_request_date(date_range.date_to),
        },
    }


class ProviderConnectorBase(ABC):
    """
    Transport to the settlement provider. Implementations only move bytes and
    parse them into wire models; response codes are interpreted by the caller.

    Implementations raise TransientNetworkError for timeouts and connection
    failures and RemoteError for non-retryable HTTP or payload errors.
    """

    @abstractmethod
    async def request_token(self, username: str, password: str) -> TokenResponse:
        raise NotImplementedError

    @abstractmethod
    async def get_settlements(
        self,
        token: str,
        region_code: str,
        date_range: DateRange,
    ) -> SettlementsResponse:
        raise NotImplementedError

    @abstractmethod
    async def get_chargebacks(
        self,
        token: str,
        region_code: str,
        date_range: DateRange,
    ) -> ChargebacksResponse:
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release transport resources."""
        return None

    def health_check(self) -> Dict[str, Any]:
        return {"ok": True}
