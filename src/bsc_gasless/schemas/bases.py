"""
Base Schema Models for the gasless relay

This module defines the base model and the shared enumerations that every
other schema model builds on. Wire formats are camelCase (``validAfter``,
``txHash``), while Python attributes stay snake_case; the mapping is done
with pydantic aliases.

Core Classes:
    - CanonicalModel: Pydantic base model with deterministic JSON serialization
    - RelayState: States of the facilitator relay state machine
    - TransactionStatus: On-chain receipt status as seen by the poller and ``/status``

Dependencies:
    - pydantic: For data validation and serialization
"""

import json
from typing import Dict, Any
from enum import Enum

from pydantic import BaseModel, ConfigDict


class CanonicalModel(BaseModel):
    """
    Pydantic base model with canonical JSON serialization.

    Every model in the project inherits from this class so that wire payloads
    are built the same way everywhere: aliases are used on output, keys are
    sorted when a stable representation is required (logging, hashing), and
    fields can be populated either by their Python name or by their alias.

    Example:
        class MyModel(CanonicalModel):
            tx_hash: str = Field(..., alias="txHash")

        model = MyModel(tx_hash="0xabc")
        model.to_dict()               # {"txHash": "0xabc"}
        model.to_canonical_json()     # '{"txHash":"0xabc"}'
    """

    model_config = ConfigDict(populate_by_name=True)

    def to_canonical_json(self) -> str:
        """
        Convert model to a compact, key-sorted JSON string.

        Returns:
            str: JSON string with sorted keys and no extra whitespace.
        """
        data = self.model_dump(mode="json", by_alias=True)
        return json.dumps(
            data,
            separators=(",", ":"),
            sort_keys=True,
            ensure_ascii=False
        )

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert model to a JSON-compatible dictionary using wire aliases.

        ``None`` values are dropped so optional response fields
        (``blockNumber``, ``gasUsed``) disappear instead of being sent as null.

        Returns:
            Dict[str, Any]: Dictionary keyed by wire names.
        """
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class RelayState(str, Enum):
    """
    States of the facilitator relay.

    A transfer request walks these states in order; the first failing check
    moves it to ``FAILED``. ``CONFIRMED`` and ``FAILED`` are terminal.

    Attributes:
        VALIDATING: Input shape, self-transfer and minimum amount checks
        SIGNATURE_CHECKING: EIP-712 signer recovery against ``from``
        NONCE_CHECKING: On-chain ``authorizationState`` pre-check
        BALANCE_CHECKING: Sender token balance against the transfer value
        TIME_WINDOW_CHECKING: ``validAfter <= now <= validBefore``
        SUBMITTING: Gas floor, path selection, estimation and broadcast
        AWAITING_RECEIPT: Transaction sent, polling for the receipt
        CONFIRMED: Receipt observed with status 1
        FAILED: Rejected before submission, or reverted on-chain
    """
    VALIDATING = "validating"
    SIGNATURE_CHECKING = "signature_checking"
    NONCE_CHECKING = "nonce_checking"
    BALANCE_CHECKING = "balance_checking"
    TIME_WINDOW_CHECKING = "time_window_checking"
    SUBMITTING = "submitting"
    AWAITING_RECEIPT = "awaiting_receipt"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class TransactionStatus(str, Enum):
    """
    Receipt status of a submitted transaction.

    Attributes:
        PENDING: No receipt yet
        SUCCESS: Receipt present with status flag set
        FAILED: Receipt present with status flag cleared (reverted)
    """
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
