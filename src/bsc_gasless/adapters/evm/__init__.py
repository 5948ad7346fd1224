from .adapter import FacilitatorAdapter, classify_submission_error
from .nonces import NonceGuard
from .estimator import BalanceGasEstimator, PriceCache, fetch_native_usd_price
from .poller import ConfirmationPoller, RetryPolicy, PollOutcome, PollResult
from .constants import NetworkConfig, get_network_config, amount_to_value, value_to_amount
from .schemas import (
    EVMECDSASignature,
    TransferAuthorization,
    PermitAuthorization,
    TransferRequest,
    TransferResult,
    TransactionReceiptStatus,
    GasEstimate,
)
from .signatures import (
    combine_signatures,
    split_signatures,
    sign_transfer_authorization,
    sign_permit,
    generate_nonce,
    build_validity_window,
)
from .verifies import (
    verify,
    verify_transfer_authorization,
    parse_signature,
    is_valid_address,
)

__all__ = [
    "FacilitatorAdapter",
    "classify_submission_error",
    "NonceGuard",
    "BalanceGasEstimator",
    "PriceCache",
    "fetch_native_usd_price",
    "ConfirmationPoller",
    "RetryPolicy",
    "PollOutcome",
    "PollResult",
    "NetworkConfig",
    "get_network_config",
    "amount_to_value",
    "value_to_amount",
    "EVMECDSASignature",
    "TransferAuthorization",
    "PermitAuthorization",
    "TransferRequest",
    "TransferResult",
    "TransactionReceiptStatus",
    "GasEstimate",
    "combine_signatures",
    "split_signatures",
    "sign_transfer_authorization",
    "sign_permit",
    "generate_nonce",
    "build_validity_window",
    "verify",
    "verify_transfer_authorization",
    "parse_signature",
    "is_valid_address",
]
