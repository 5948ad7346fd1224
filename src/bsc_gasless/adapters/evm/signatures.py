"""
EVM Off-Chain Signing Utilities

Combined-signature wire format and local EIP-712 signing helpers for the
gasless wrapper. All cryptographic operations are performed in-process using
``eth_account``; no RPC calls are made.

Combined signature layout
-------------------------
The wrapper's ``transferWithAuthorization(..., bytes signature)`` takes one
blob whose length selects the mode::

    plain        transferSig (65)                                =  65 bytes
    with permit  transferSig (65) ++ permitSig (65) ++ deadline (32, big-endian)
                                                                 = 162 bytes

Each 65-byte signature is ``r (32) || s (32) || v (1)``.

Exported helpers
----------------
combine_signatures / split_signatures
    Build and parse the combined blob.

sign_transfer_authorization / sign_permit
    Build the typed data, sign it with a local account, and return the
    request-ready ``TransferAuthorization`` / ``PermitAuthorization``.

generate_nonce / build_validity_window
    Fresh 32-byte nonce and the default ``[now - 60, now + 3600]`` window.
"""

import os
import time
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from eth_account import Account
from eth_account.signers.local import LocalAccount

from .standards import EIP712Domain, encode_transfer_message, encode_permit_message
from .schemas import EVMECDSASignature, TransferAuthorization, PermitAuthorization
from .constants import SIGNATURE_VALIDITY, CLOCK_SKEW_TOLERANCE
from ...engine.exceptions import MalformedSignatureError

SIGNATURE_LENGTH: int = 65
DEADLINE_LENGTH: int = 32
PLAIN_SIGNATURE_LENGTH: int = SIGNATURE_LENGTH
PERMIT_SIGNATURE_LENGTH: int = SIGNATURE_LENGTH * 2 + DEADLINE_LENGTH

SignatureLike = Union[bytes, str, EVMECDSASignature]


# ---------------------------------------------------------------------------
# Combined signature codec
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SplitSignature:
    """Components recovered from a combined signature blob."""
    transfer: bytes
    permit: Optional[bytes] = None
    deadline: Optional[int] = None

    @property
    def has_permit(self) -> bool:
        return self.permit is not None


def _to_signature_bytes(sig: SignatureLike, label: str) -> bytes:
    if isinstance(sig, EVMECDSASignature):
        return sig.to_bytes()
    if isinstance(sig, str):
        try:
            sig = bytes.fromhex(sig[2:] if sig.startswith(("0x", "0X")) else sig)
        except ValueError:
            raise MalformedSignatureError(f"{label} signature is not valid hex")
    if not isinstance(sig, (bytes, bytearray)):
        raise MalformedSignatureError(f"{label} signature has unsupported type {type(sig).__name__}")
    if len(sig) != SIGNATURE_LENGTH:
        raise MalformedSignatureError(
            f"{label} signature must be {SIGNATURE_LENGTH} bytes, got {len(sig)}"
        )
    return bytes(sig)


def combine_signatures(
    transfer_sig: SignatureLike,
    permit_sig: Optional[SignatureLike] = None,
    deadline: Optional[int] = None,
) -> bytes:
    """
    Concatenate the transfer signature, optional permit signature and deadline.

    When ``permit_sig`` is None only the 65-byte transfer signature is
    returned; the resulting length is what tells the contract which mode to run.

    Args:
        transfer_sig: Transfer authorization signature (65 bytes, hex, or model).
        permit_sig:   Optional permit signature (65 bytes, hex, or model).
        deadline:     Permit deadline, required together with ``permit_sig``.

    Returns:
        bytes: 65-byte or 162-byte blob.

    Raises:
        MalformedSignatureError: If a component has the wrong width, or a
            deadline is missing, negative or wider than 32 bytes.
    """
    blob = _to_signature_bytes(transfer_sig, "Transfer")
    if permit_sig is None:
        return blob

    if deadline is None:
        raise MalformedSignatureError("Permit signature requires a deadline")
    if deadline < 0 or deadline >= 2 ** (8 * DEADLINE_LENGTH):
        raise MalformedSignatureError(f"Deadline does not fit in {DEADLINE_LENGTH} bytes")

    return (
        blob
        + _to_signature_bytes(permit_sig, "Permit")
        + deadline.to_bytes(DEADLINE_LENGTH, "big")
    )


def split_signatures(blob: Union[bytes, str]) -> SplitSignature:
    """
    Inverse of :func:`combine_signatures`.

    The expected layout is derived from the total length: 65 bytes is a plain
    transfer, 162 bytes carries a permit. Anything else is rejected.

    Raises:
        MalformedSignatureError: If the length matches neither layout.
    """
    if isinstance(blob, str):
        try:
            blob = bytes.fromhex(blob[2:] if blob.startswith(("0x", "0X")) else blob)
        except ValueError:
            raise MalformedSignatureError("Combined signature is not valid hex")

    if len(blob) == PLAIN_SIGNATURE_LENGTH:
        return SplitSignature(transfer=bytes(blob))

    if len(blob) == PERMIT_SIGNATURE_LENGTH:
        return SplitSignature(
            transfer=bytes(blob[:SIGNATURE_LENGTH]),
            permit=bytes(blob[SIGNATURE_LENGTH:2 * SIGNATURE_LENGTH]),
            deadline=int.from_bytes(blob[2 * SIGNATURE_LENGTH:], "big"),
        )

    raise MalformedSignatureError(
        f"Combined signature must be {PLAIN_SIGNATURE_LENGTH} or "
        f"{PERMIT_SIGNATURE_LENGTH} bytes, got {len(blob)}"
    )


# ---------------------------------------------------------------------------
# Nonce and validity window
# ---------------------------------------------------------------------------

def generate_nonce() -> str:
    """Return a fresh random 32-byte nonce as 0x-prefixed hex."""
    return "0x" + os.urandom(32).hex()


def build_validity_window(
    now: Optional[int] = None,
    validity: int = SIGNATURE_VALIDITY,
    skew: int = CLOCK_SKEW_TOLERANCE,
) -> Tuple[int, int]:
    """
    Default authorization window ``(validAfter, validBefore)``.

    The lower bound is backdated by ``skew`` seconds so that a relay whose
    clock runs slightly behind the signer's still accepts the authorization.
    """
    now = int(time.time()) if now is None else int(now)
    return now - skew, now + validity


# ---------------------------------------------------------------------------
# Local signers
# ---------------------------------------------------------------------------

def _as_account(signer: Union[str, LocalAccount]) -> LocalAccount:
    return Account.from_key(signer) if isinstance(signer, str) else signer


def sign_transfer_authorization(
    *,
    signer: Union[str, LocalAccount],
    recipient: str,
    value: int,
    domain: EIP712Domain,
    valid_after: Optional[int] = None,
    valid_before: Optional[int] = None,
    nonce: Optional[str] = None,
) -> TransferAuthorization:
    """
    Sign a ``TransferWithAuthorization`` for the wrapper contract.

    Args:
        signer:       Private key (hex) or ``LocalAccount`` of the sender.
        recipient:    Receiver address.
        value:        Amount in base units.
        domain:       Wrapper domain, usually ``network.wrapper_domain()``.
        valid_after:  Window start; defaults to now - 60s.
        valid_before: Window end; defaults to now + 1h.
        nonce:        0x-prefixed 32-byte nonce; generated when omitted.

    Returns:
        ``TransferAuthorization`` ready to be sent as the ``transfer`` object.

    Example::

        auth = sign_transfer_authorization(
            signer=private_key,
            recipient="0xRecipient...",
            value=amount_to_value(amount="1.5", decimals=18),
            domain=network.wrapper_domain(),
        )
    """
    account = _as_account(signer)
    default_after, default_before = build_validity_window()
    valid_after = default_after if valid_after is None else valid_after
    valid_before = default_before if valid_before is None else valid_before
    nonce = nonce or generate_nonce()

    typed_data = encode_transfer_message(
        account.address,
        recipient,
        value,
        valid_after,
        valid_before,
        nonce,
        domain=domain,
    )
    signed = account.sign_typed_data(full_message=typed_data.to_dict())

    return TransferAuthorization(
        valid_after=valid_after,
        valid_before=valid_before,
        nonce=nonce,
        v=signed.v,
        r="0x" + signed.r.to_bytes(32, "big").hex(),
        s="0x" + signed.s.to_bytes(32, "big").hex(),
    )


def sign_permit(
    *,
    signer: Union[str, LocalAccount],
    spender: str,
    value: int,
    nonce: int,
    deadline: int,
    domain: EIP712Domain,
) -> PermitAuthorization:
    """
    Sign an EIP-2612 permit granting ``spender`` an allowance of ``value``.

    ``nonce`` must be the token's current ``nonces(owner)``; ``domain`` the
    token's domain (``network.token_domain()``).
    """
    account = _as_account(signer)
    typed_data = encode_permit_message(
        account.address,
        spender,
        value,
        nonce,
        deadline,
        domain=domain,
    )
    signed = account.sign_typed_data(full_message=typed_data.to_dict())

    return PermitAuthorization(
        deadline=deadline,
        v=signed.v,
        r="0x" + signed.r.to_bytes(32, "big").hex(),
        s="0x" + signed.s.to_bytes(32, "big").hex(),
    )
