from .bases import CanonicalModel, RelayState, TransactionStatus
from .https import (
    ErrorResponse,
    TransferResponse,
    PendingTransferResponse,
    EstimateRequest,
    EstimateResponse,
    StatusResponse,
    BalanceResponse,
    ContractsInfo,
    HealthResponse,
)

__all__ = [
    "CanonicalModel",
    "RelayState",
    "TransactionStatus",
    "ErrorResponse",
    "TransferResponse",
    "PendingTransferResponse",
    "EstimateRequest",
    "EstimateResponse",
    "StatusResponse",
    "BalanceResponse",
    "ContractsInfo",
    "HealthResponse",
]
