"""
HTTP Request/Response Schema Models for the gasless relay

This module defines the Pydantic models used on the wire between the client
and the relay server. The transfer request body itself (``TransferRequest``)
lives with the EVM adapter schemas because the relay core consumes it directly.

Endpoints:
1. POST /transfer      -> TransferResponse (200) or PendingTransferResponse (202)
2. POST /estimate      -> EstimateResponse
3. GET  /status/{hash} -> StatusResponse
4. GET  /balance/{addr}-> BalanceResponse
5. GET  /health        -> HealthResponse

Errors on every endpoint use ``ErrorResponse``: ``{error, code, details?, txHash?, explorerUrl?}``.
"""

from typing import Optional, Dict, Any

from pydantic import Field

from .bases import CanonicalModel, TransactionStatus


# ============================================================================
# Errors
# ============================================================================

class ErrorResponse(CanonicalModel):
    """Error body shared by all endpoints.

    ``txHash`` and ``explorerUrl`` are only set when the error happened after
    the transaction was broadcast.
    """
    error: str
    code: str
    details: Optional[Dict[str, Any]] = None
    tx_hash: Optional[str] = Field(None, alias="txHash")
    explorer_url: Optional[str] = Field(None, alias="explorerUrl")


# ============================================================================
# POST /transfer
# ============================================================================

class TransferResponse(CanonicalModel):
    """Confirmed transfer.

    Attributes:
        tx_hash: Transaction hash.
        block_number: Block the transaction was mined in.
        gas_used: Gas consumed, paid by the facilitator.
        explorer_url: Explorer link for the transaction.
        from_address / to_address / amount: Echo of the request.
    """
    tx_hash: str = Field(..., alias="txHash")
    block_number: int = Field(..., alias="blockNumber")
    gas_used: int = Field(..., alias="gasUsed")
    explorer_url: str = Field(..., alias="explorerUrl")
    from_address: str = Field(..., alias="from")
    to_address: str = Field(..., alias="to")
    amount: str


class PendingTransferResponse(CanonicalModel):
    """Submitted but not (yet) confirmed. Returned with status 202."""
    tx_hash: str = Field(..., alias="txHash")
    explorer_url: str = Field(..., alias="explorerUrl")
    status: TransactionStatus = TransactionStatus.PENDING
    message: str = "Transaction submitted. Check the explorer for confirmation."


# ============================================================================
# POST /estimate
# ============================================================================

class EstimateRequest(CanonicalModel):
    """Cost projection request.

    ``has_permit`` only takes effect when explicitly true and the network's
    token supports permit.
    """
    from_address: str = Field(..., alias="from")
    to_address: str = Field(..., alias="to")
    amount: str
    has_permit: Optional[bool] = Field(default=None, alias="hasPermit")


class EstimateResponse(CanonicalModel):
    gas_units: str = Field(..., alias="gasUnits")
    gas_price: str = Field(..., alias="gasPrice", description="Gas price in gwei")
    total_cost_native: str = Field(..., alias="totalCostNative")
    total_cost_usd: str = Field(..., alias="totalCostUSD")
    has_permit: bool = Field(..., alias="hasPermit")
    network: str


# ============================================================================
# GET /status/{txHash}
# ============================================================================

class StatusResponse(CanonicalModel):
    status: TransactionStatus
    message: str
    block_number: Optional[int] = Field(default=None, alias="blockNumber")
    gas_used: Optional[int] = Field(default=None, alias="gasUsed")
    explorer_url: str = Field(..., alias="explorerUrl")


# ============================================================================
# GET /balance/{address}
# ============================================================================

class BalanceResponse(CanonicalModel):
    """Token balance; ``formatted`` is two decimals plus symbol (``"1.50 USD1"``)."""
    address: str
    balance: str
    formatted: str


# ============================================================================
# GET /health
# ============================================================================

class ContractsInfo(CanonicalModel):
    usd1: str
    wrapper: str
    explorer: str
    chain_id: int = Field(..., alias="chainId")
    network: str


class HealthResponse(CanonicalModel):
    """Liveness plus facilitator gas status."""
    status: str = "ok"
    facilitator: str
    facilitator_balance: str = Field(..., alias="facilitatorBalance")
    has_minimum_balance: bool = Field(..., alias="hasMinimumBalance")
    contracts_info: ContractsInfo = Field(..., alias="contractsInfo")
    timestamp: int
