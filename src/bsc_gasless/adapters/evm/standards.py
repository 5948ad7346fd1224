"""
EIP-712 typed-data structures for the gasless wrapper.

Two messages are signed off-chain by the token holder:

* ``TransferWithAuthorization`` against the wrapper contract's domain
  (``"X402 BSC Wrapper"``, version ``"2"``). Authorizes the wrapper to move
  ``value`` from ``from`` to ``to`` once, within ``[validAfter, validBefore]``.
* ``Permit`` (EIP-2612) against the USD1 token's own domain. Grants the wrapper
  an allowance so no prior ``approve`` transaction is needed.

``encode_transfer_message`` and ``encode_permit_message`` are the codec entry
points; both only accept integer base-unit values.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, List

from ...engine.exceptions import InvalidAmountError

UINT256_MAX: int = 2**256 - 1


# -----------------------------
# EIP-712 Domain
# -----------------------------

@dataclass
class EIP712Domain:
    """
    EIP-712 domain separator.
    Used to prevent signature replay across domains.
    """
    name: str
    version: str
    chainId: int
    verifyingContract: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chainId,
            "verifyingContract": self.verifyingContract,
        }


EIP712_DOMAIN_TYPE: List[Dict[str, str]] = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

TRANSFER_WITH_AUTHORIZATION_TYPE: List[Dict[str, str]] = [
    {"name": "from", "type": "address"},
    {"name": "to", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "validAfter", "type": "uint256"},
    {"name": "validBefore", "type": "uint256"},
    {"name": "nonce", "type": "bytes32"},
]

PERMIT_TYPE: List[Dict[str, str]] = [
    {"name": "owner", "type": "address"},
    {"name": "spender", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "nonce", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
]


# -----------------------------
# Transfer With Authorization
# -----------------------------

@dataclass
class TransferWithAuthorizationMessage:
    """
    Message payload for ``TransferWithAuthorization``.

    The typed definition names its first field ``from``, a Python reserved
    word; this class uses ``authorizer`` and maps it back in ``to_dict()``.

    Attributes:
        authorizer: Address of the account authorizing the transfer (maps to `from`).
        recipient: Address receiving the tokens (maps to `to`).
        value: Amount of tokens to transfer, in base units (uint256).
        validAfter: Unix timestamp from which the authorization is valid.
        validBefore: Unix timestamp until which the authorization is valid.
        nonce: 32-byte random value (0x-prefixed hex) preventing replay.
    """
    authorizer: str
    recipient: str
    value: int
    validAfter: int
    validBefore: int
    nonce: str

    def to_dict(self) -> Dict[str, Any]:
        """Return the message keyed by the EIP-712 field names, in schema order."""
        return {
            "from": self.authorizer,
            "to": self.recipient,
            "value": self.value,
            "validAfter": self.validAfter,
            "validBefore": self.validBefore,
            "nonce": self.nonce,
        }


@dataclass
class TransferWithAuthorizationTypedData:
    """
    Full EIP-712 envelope for a transfer authorization.

    ``to_dict()`` produces ``{types, primaryType, domain, message}``, the layout
    accepted by ``eth_account``'s ``encode_typed_data(full_message=...)`` and by
    wallets' ``eth_signTypedData_v4``.
    """
    domain: EIP712Domain
    message: TransferWithAuthorizationMessage

    primary_type: str = "TransferWithAuthorization"

    types: Dict[str, List[Dict[str, str]]] = field(
        default_factory=lambda: {
            "EIP712Domain": list(EIP712_DOMAIN_TYPE),
            "TransferWithAuthorization": list(TRANSFER_WITH_AUTHORIZATION_TYPE),
        }
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "types": self.types,
            "primaryType": self.primary_type,
            "domain": self.domain.to_dict(),
            "message": self.message.to_dict(),
        }


# -----------------------------
# Permit (EIP-2612)
# -----------------------------

@dataclass
class PermitMessage:
    """
    Permit message as defined in EIP-2612.
    ``nonce`` is the token contract's own counter for ``owner``.
    """
    owner: str
    spender: str
    value: int
    nonce: int
    deadline: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "spender": self.spender,
            "value": self.value,
            "nonce": self.nonce,
            "deadline": self.deadline,
        }


@dataclass
class PermitTypedData:
    """EIP-712 envelope for an EIP-2612 permit."""
    domain: EIP712Domain
    message: PermitMessage

    primary_type: str = "Permit"

    types: Dict[str, List[Dict[str, str]]] = field(
        default_factory=lambda: {
            "EIP712Domain": list(EIP712_DOMAIN_TYPE),
            "Permit": list(PERMIT_TYPE),
        }
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "types": self.types,
            "primaryType": self.primary_type,
            "domain": self.domain.to_dict(),
            "message": self.message.to_dict(),
        }


# -----------------------------
# Codec entry points
# -----------------------------

def _check_value(value: int) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmountError(
            f"value must be an integer amount in base units, got {type(value).__name__}"
        )
    if value <= 0:
        raise InvalidAmountError(f"value must be positive, got {value}")
    if value > UINT256_MAX:
        raise InvalidAmountError("value exceeds the uint256 range")
    return value


def encode_transfer_message(
    authorizer: str,
    recipient: str,
    value: int,
    valid_after: int,
    valid_before: int,
    nonce: str,
    *,
    domain: EIP712Domain,
) -> TransferWithAuthorizationTypedData:
    """
    Build the ``TransferWithAuthorization`` typed data for signing or recovery.

    Args:
        authorizer:   Sender address (``from``).
        recipient:    Receiver address (``to``).
        value:        Amount in token base units. Fractional human amounts are
                      converted at the boundary with ``amount_to_value``.
        valid_after:  Start of the inclusive validity window (unix seconds).
        valid_before: End of the inclusive validity window (unix seconds).
        nonce:        0x-prefixed 32-byte hex nonce.
        domain:       Wrapper contract domain.

    Raises:
        InvalidAmountError: If ``value`` is not a positive uint256 integer.
    """
    return TransferWithAuthorizationTypedData(
        domain=domain,
        message=TransferWithAuthorizationMessage(
            authorizer=authorizer,
            recipient=recipient,
            value=_check_value(value),
            validAfter=int(valid_after),
            validBefore=int(valid_before),
            nonce=nonce,
        ),
    )


def encode_permit_message(
    owner: str,
    spender: str,
    value: int,
    nonce: int,
    deadline: int,
    *,
    domain: EIP712Domain,
) -> PermitTypedData:
    """
    Build the EIP-2612 ``Permit`` typed data.

    ``domain`` must be the token's domain (name from the token, its fixed
    version string, chain id, token address), not the wrapper's.

    Raises:
        InvalidAmountError: If ``value`` is not a positive uint256 integer.
    """
    return PermitTypedData(
        domain=domain,
        message=PermitMessage(
            owner=owner,
            spender=spender,
            value=_check_value(value),
            nonce=int(nonce),
            deadline=int(deadline),
        ),
    )
