"""Settlement provider connectors."""

from .base import (
    ProviderConnectorBase,
    ResponseCode,
    TokenResponse,
    SettlementsResponse,
    ChargebacksResponse,
    SettlementPayload,
    SettlementDetailPayload,
    ChargebackPayload,
    describe_code,
    mask_card,
)
from .http_connector import HttpConnector
from .simulator_connector import (
    SimulatorConnector,
    SimulatorConfig,
    SimulatorFailure,
    SimulatorOperation,
    make_settlement,
    make_chargeback,
)

__all__ = [
    # Base classes and wire models
    "ProviderConnectorBase",
    "ResponseCode",
    "TokenResponse",
    "SettlementsResponse",
    "ChargebacksResponse",
    "SettlementPayload",
    "SettlementDetailPayload",
    "ChargebackPayload",
    "describe_code",
    "mask_card",
    # Connectors
    "HttpConnector",
    "SimulatorConnector",
    "SimulatorConfig",
    "SimulatorFailure",
    "SimulatorOperation",
    "make_settlement",
    "make_chargeback",
]
