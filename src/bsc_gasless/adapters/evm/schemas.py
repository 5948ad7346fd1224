"""
EVM Adapter Schema Models

Pydantic models for the relay's unit of work and its results. All classes
inherit from ``CanonicalModel``; wire names are camelCase aliases.

Signature classes:
    - EVMECDSASignature: v/r/s signature with packing to the 65-byte
      ``r || s || v`` layout the wrapper contract expects.

Authorization classes:
    - TransferAuthorization: the signed ``TransferWithAuthorization`` fields
      sent by the client (``transfer`` object of a request).
    - PermitAuthorization: optional EIP-2612 permit fields (``permit`` object).
    - TransferRequest: ``{from, to, amount, transfer, permit?}``.

Result classes:
    - TransferResult: immutable ``{txHash, blockNumber, gasUsed, explorerUrl}``.
    - TransactionReceiptStatus: pending/success/failed receipt snapshot.
    - GasEstimate: gas units, price and total cost projection.
"""

import re
from typing import Optional, Union

from pydantic import ConfigDict, Field, field_validator

from ...schemas.bases import CanonicalModel, TransactionStatus
from ...engine.exceptions import MalformedSignatureError

_HEX32_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


def _strip_hex(value: str) -> str:
    return value[2:] if value[:2] in ("0x", "0X") else value


class EVMECDSASignature(CanonicalModel):
    """
    EVM ECDSA signature (v, r, s).

    Attributes:
        v: ECDSA recovery ID (27 or 28).
        r: r component, 32 bytes as a 64-char hex string (0x prefix optional).
        s: s component, 32 bytes as a 64-char hex string (0x prefix optional).

    Example::

        sig = EVMECDSASignature(v=27, r="0x" + "a" * 64, s="0x" + "b" * 64)
        sig.to_bytes()   # 65 bytes, r || s || v
    """

    v: int = Field(..., ge=27, le=28, description="ECDSA recovery ID (27 or 28)")
    r: str = Field(..., description="Signature r component (32 bytes, 64-char hex, 0x prefix optional)")
    s: str = Field(..., description="Signature s component (32 bytes, 64-char hex, 0x prefix optional)")

    def validate_format(self) -> bool:
        """
        Validate v/r/s components.

        Returns:
            True when all components pass.

        Raises:
            MalformedSignatureError: On the first component that is not exactly
                its fixed width or not hexadecimal.
        """
        if self.v not in (27, 28):
            raise MalformedSignatureError(f"Invalid recovery ID: {self.v}. Must be 27 or 28")

        for name, val in (("r", self.r), ("s", self.s)):
            hex_str = _strip_hex(val)
            if len(hex_str) != 64:
                raise MalformedSignatureError(
                    f"Invalid {name}: expected 32 bytes (64 hex chars), got {len(hex_str)} chars"
                )
            try:
                bytes.fromhex(hex_str)
            except ValueError:
                raise MalformedSignatureError(f"Invalid {name}: not valid hexadecimal")

        return True

    def to_bytes(self) -> bytes:
        """Pack into the 65-byte ``r || s || v`` layout."""
        self.validate_format()
        return bytes.fromhex(_strip_hex(self.r)) + bytes.fromhex(_strip_hex(self.s)) + bytes([self.v])

    @classmethod
    def from_bytes(cls, raw: bytes) -> "EVMECDSASignature":
        """
        Parse a 65-byte ``r || s || v`` signature.

        ``v`` values of 0/1 (raw recovery ids) are normalised to 27/28.

        Raises:
            MalformedSignatureError: If ``raw`` is not exactly 65 bytes or ``v`` is invalid.
        """
        if len(raw) != 65:
            raise MalformedSignatureError(f"Signature must be 65 bytes, got {len(raw)}")
        v = raw[64]
        if v in (0, 1):
            v += 27
        if v not in (27, 28):
            raise MalformedSignatureError(f"Invalid recovery ID: {raw[64]}")
        return cls(v=v, r="0x" + raw[:32].hex(), s="0x" + raw[32:64].hex())


class TransferAuthorization(CanonicalModel):
    """
    Signed ``TransferWithAuthorization`` fields.

    ``from``, ``to`` and ``value`` live on the enclosing :class:`TransferRequest`.
    A ``(from, nonce)`` pair can be executed on-chain exactly once.
    """

    valid_after: int = Field(..., alias="validAfter", ge=0, description="Inclusive start of validity (unix seconds)")
    valid_before: int = Field(..., alias="validBefore", ge=0, description="Inclusive end of validity (unix seconds)")
    nonce: str = Field(..., description="32-byte random nonce, 0x-prefixed hex")
    v: int = Field(..., ge=27, le=28)
    r: str
    s: str

    @field_validator("nonce")
    @classmethod
    def _nonce_is_bytes32(cls, value: str) -> str:
        if not _HEX32_RE.match(value):
            raise ValueError("nonce must be a 0x-prefixed 32-byte hex string")
        return value.lower()

    @property
    def signature(self) -> EVMECDSASignature:
        return EVMECDSASignature(v=self.v, r=self.r, s=self.s)


class PermitAuthorization(CanonicalModel):
    """
    EIP-2612 permit fields.

    ``owner`` is the request sender, ``spender`` the wrapper contract and
    ``value`` the transfer value; the nonce is the token's ``nonces(owner)``.
    """

    deadline: int = Field(..., ge=0, description="Permit deadline (unix seconds)")
    v: int = Field(..., ge=27, le=28)
    r: str
    s: str

    @property
    def signature(self) -> EVMECDSASignature:
        return EVMECDSASignature(v=self.v, r=self.r, s=self.s)


class TransferRequest(CanonicalModel):
    """
    The relay's unit of work.

    Attributes:
        from_address: Sender (wire name ``from``).
        to_address: Recipient (wire name ``to``).
        amount: Human-unit decimal string (``"1.5"``); converted to base units
            by the relay using the token's decimals.
        transfer: Signed transfer authorization.
        permit: Optional EIP-2612 permit.
    """

    from_address: str = Field(..., alias="from")
    to_address: str = Field(..., alias="to")
    amount: str
    transfer: TransferAuthorization
    permit: Optional[PermitAuthorization] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_as_text(cls, value: Union[str, int, float]) -> str:
        # Numbers are accepted on the wire but kept as text to avoid float rounding
        if isinstance(value, bool):
            raise ValueError("amount must be a decimal string")
        if isinstance(value, (int, float)):
            return repr(value) if isinstance(value, float) else str(value)
        return value


class TransferResult(CanonicalModel):
    """Outcome of a confirmed transfer. Immutable once produced."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    tx_hash: str = Field(..., alias="txHash")
    block_number: int = Field(..., alias="blockNumber")
    gas_used: int = Field(..., alias="gasUsed")
    explorer_url: str = Field(..., alias="explorerUrl")


class TransactionReceiptStatus(CanonicalModel):
    """Snapshot of a transaction's receipt as seen by ``/status`` and the poller."""

    status: TransactionStatus
    block_number: Optional[int] = Field(None, alias="blockNumber")
    gas_used: Optional[int] = Field(None, alias="gasUsed")

    @property
    def message(self) -> str:
        return {
            TransactionStatus.PENDING: "Transaction is pending",
            TransactionStatus.SUCCESS: "Transaction confirmed",
            TransactionStatus.FAILED: "Transaction failed",
        }[self.status]


class GasEstimate(CanonicalModel):
    """
    Projected cost of relaying one transfer.

    Attributes:
        gas_units: Gas limit including the safety margin.
        gas_price_wei: Current network gas price.
        total_cost_wei: ``gas_units * gas_price_wei``.
        has_permit: Whether the projection is for the permit path.
        from_chain: False when the fixed fallback gas figure was used.
        native_usd_price: Native currency price used for the USD projection.
    """

    gas_units: int
    gas_price_wei: int
    total_cost_wei: int
    has_permit: bool
    from_chain: bool = True
    native_usd_price: Optional[float] = None
