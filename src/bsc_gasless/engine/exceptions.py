"""
Exception and Error Definitions Module

Defines the error taxonomy of the gasless relay. Every exception carries the
HTTP status it maps to and a stable machine-readable ``code`` so the server can
turn any failure into a response without a lookup table.

Exception Hierarchy:
    RelayError (root, 500)
    ├── ValidationError (400)
    │   ├── InvalidAddressError
    │   ├── InvalidAmountError
    │   ├── BelowMinimumError
    │   ├── SelfTransferError
    │   ├── InsufficientAllowanceError
    │   ├── MalformedSignatureError
    │   └── InvalidSignatureFormatError
    ├── AuthError (401)
    │   └── InvalidSignatureError
    ├── ConflictError (400)
    │   └── NonceAlreadyUsedError
    ├── InsufficientFundsError
    │   ├── InsufficientBalanceError (400)
    │   └── FacilitatorInsufficientGasError (503)
    ├── ExpiredError (400)
    │   └── AuthorizationExpiredError
    ├── NetworkError (500)
    ├── TransactionExecutionError (500)
    ├── ConfirmationTimeoutError (202, advisory)
    └── ConfigurationError (500)
"""

from typing import Any, Dict, Optional


class RelayError(Exception):
    """
    Root exception class for all project-specific exceptions.

    Attributes:
        message: Human-readable error message, sent back to the caller verbatim
        details: Optional structured context (balances, addresses, tx hash)
        status_code: HTTP status the error maps to
        code: Stable machine-readable identifier
    """
    status_code: int = 500
    code: str = "RELAY_ERROR"

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        # Fall back to the first docstring line as the default message
        default = (self.__class__.__doc__ or self.code).strip().splitlines()[0]
        super().__init__(message or default)
        self.message = str(self.args[0])
        self.details = details


# ==================== Client-side input errors ====================

class ValidationError(RelayError):
    """
    Raised when a request is malformed or violates a relay precondition.

    Always fixable by the client; never reaches the chain.
    """
    status_code = 400
    code = "VALIDATION_ERROR"


class InvalidAddressError(ValidationError):
    """Invalid address format"""
    code = "INVALID_ADDRESS"


class InvalidAmountError(ValidationError):
    """
    Invalid amount

    This includes scenarios such as:
    - Non-numeric or non-positive amount
    - Amount with more fractional digits than the token supports
    - Value above the uint256 range
    """
    code = "INVALID_AMOUNT"


class BelowMinimumError(ValidationError):
    """Amount is below the minimum transfer amount"""
    code = "BELOW_MINIMUM"


class SelfTransferError(ValidationError):
    """Cannot transfer to yourself"""
    code = "SELF_TRANSFER"


class InsufficientAllowanceError(ValidationError):
    """
    Insufficient allowance. Please approve the wrapper contract first.

    Only raised on the plain (non-permit) path, where the wrapper pulls funds
    through a pre-existing ERC-20 approval.
    """
    code = "INSUFFICIENT_ALLOWANCE"


class MalformedSignatureError(ValidationError):
    """
    Malformed signature

    Raised by the codec when a signature component is not exactly its fixed
    byte width, or when a combined signature has an unexpected length.
    """
    code = "MALFORMED_SIGNATURE"


class InvalidSignatureFormatError(ValidationError):
    """Signature cannot be parsed into (v, r, s)"""
    code = "INVALID_SIGNATURE_FORMAT"


# ==================== Authentication ====================

class AuthError(RelayError):
    """Authentication failed"""
    status_code = 401
    code = "AUTH_ERROR"


class InvalidSignatureError(AuthError):
    """
    Invalid signature

    The address recovered from the typed-data signature does not match the
    claimed sender.
    """
    code = "INVALID_SIGNATURE"


# ==================== Replay ====================

class ConflictError(RelayError):
    """Request conflicts with on-chain state"""
    status_code = 400
    code = "CONFLICT"


class NonceAlreadyUsedError(ConflictError):
    """
    Nonce has already been used

    Not retryable with the same nonce; the client must sign a fresh
    authorization.
    """
    code = "NONCE_ALREADY_USED"


# ==================== Funds ====================

class InsufficientFundsError(RelayError):
    """
    Base exception for balance shortfalls.

    Subclasses distinguish whose funds are missing: the sender's tokens
    (client-fixable) or the facilitator's native gas (operator-fixable).
    """
    status_code = 400
    code = "INSUFFICIENT_FUNDS"


class InsufficientBalanceError(InsufficientFundsError):
    """Insufficient USD1 balance"""
    code = "INSUFFICIENT_BALANCE"


class FacilitatorInsufficientGasError(InsufficientFundsError):
    """
    Facilitator has insufficient BNB for gas

    An operational condition, surfaced as 503 so operators can alert on it
    separately from user errors.
    """
    status_code = 503
    code = "FACILITATOR_INSUFFICIENT_GAS"


# ==================== Time window ====================

class ExpiredError(RelayError):
    """Authorization is outside its validity window"""
    status_code = 400
    code = "EXPIRED"


class AuthorizationExpiredError(ExpiredError):
    """Signature has expired"""
    code = "AUTHORIZATION_EXPIRED"


# ==================== Chain interaction ====================

class NetworkError(RelayError):
    """
    RPC or connectivity failure.

    Potentially retryable by the caller.
    """
    status_code = 500
    code = "NETWORK_ERROR"


class TransactionExecutionError(RelayError):
    """
    Transaction execution failed

    This includes scenarios such as:
    - Transaction reverted on-chain
    - Revert reason not matching any known case (passed through verbatim)
    """
    status_code = 500
    code = "TRANSACTION_FAILED"


class ConfirmationTimeoutError(RelayError):
    """
    Transaction was submitted but not confirmed within the polling budget.

    Advisory only: the transaction may still confirm later. Callers should
    point the user at the explorer link instead of reporting a failure.
    """
    status_code = 202
    code = "CONFIRMATION_TIMEOUT"


class ConfigurationError(RelayError):
    """
    Raised when configuration is missing or invalid.

    This includes scenarios such as:
    - Missing facilitator private key
    - Unknown network name
    """
    status_code = 500
    code = "CONFIGURATION_ERROR"
