"""
EVM Signature Verification Helpers

Off-chain verification of EIP-712 signatures. ``verify`` reconstructs the
typed-data hash from a domain, a type schema and a message, recovers the
signer from ``(v, r, s)`` and compares it case-insensitively with the claimed
signer. It performs no I/O and never mutates state.

Current coverage
----------------
verify
    Generic typed-data check used for ``TransferWithAuthorization`` (wrapper
    domain) and ``Permit`` (token domain).

verify_transfer_authorization
    Convenience wrapper that builds the transfer typed data from a
    ``TransferRequest``.

parse_signature / is_valid_address
    Input normalisation shared by the relay and the HTTP layer.
"""

import re
from typing import Any, Dict, List, Optional, Tuple, Union

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import is_checksum_address

from .standards import (
    EIP712Domain,
    EIP712_DOMAIN_TYPE,
    TRANSFER_WITH_AUTHORIZATION_TYPE,
    encode_transfer_message,
)
from .schemas import EVMECDSASignature, TransferRequest
from ...engine.exceptions import InvalidSignatureFormatError, MalformedSignatureError

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

SignatureInput = Union[bytes, str, EVMECDSASignature, Tuple[int, Union[int, str, bytes], Union[int, str, bytes]]]


def is_valid_address(addr: Optional[str]) -> bool:
    """
    Check whether ``addr`` is a well-formed EVM address.

    Accepts 0x-prefixed, 40-hex-char strings. All-lowercase and all-uppercase
    forms are accepted as-is; mixed case must carry a valid EIP-55 checksum.

    Args:
        addr: Candidate address string.

    Returns:
        ``True`` if ``addr`` is well-formed, ``False`` otherwise.
    """
    if not isinstance(addr, str) or not _ADDRESS_RE.match(addr):
        return False
    body = addr[2:]
    if body.islower() or body.isupper() or body.isdigit():
        return True
    return is_checksum_address(addr)


def _component_to_int(value: Union[int, str, bytes], name: str) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 32:
            raise InvalidSignatureFormatError(f"Signature {name} must be 32 bytes")
        return int.from_bytes(value, "big")
    if isinstance(value, str):
        hex_str = value[2:] if value.startswith(("0x", "0X")) else value
        if not hex_str or len(hex_str) > 64:
            raise InvalidSignatureFormatError(f"Signature {name} must be at most 32 bytes of hex")
        try:
            return int(hex_str, 16)
        except ValueError:
            raise InvalidSignatureFormatError(f"Signature {name} is not valid hex")
    raise InvalidSignatureFormatError(f"Unsupported type for signature {name}: {type(value).__name__}")


def parse_signature(signature: SignatureInput) -> Tuple[int, int, int]:
    """
    Normalise a signature into integer ``(v, r, s)``.

    Accepted forms: 65 raw bytes (``r || s || v``), a hex string of those
    bytes, an ``EVMECDSASignature``, or a ``(v, r, s)`` tuple. Recovery ids
    0/1 are mapped to 27/28.

    Raises:
        InvalidSignatureFormatError: If the input cannot be parsed.
    """
    try:
        if isinstance(signature, EVMECDSASignature):
            signature.validate_format()
            v, r, s = signature.v, signature.r, signature.s
        elif isinstance(signature, tuple):
            if len(signature) != 3:
                raise InvalidSignatureFormatError("Signature tuple must be (v, r, s)")
            v, r, s = signature
        else:
            if isinstance(signature, str):
                hex_str = signature[2:] if signature.startswith(("0x", "0X")) else signature
                try:
                    signature = bytes.fromhex(hex_str)
                except ValueError:
                    raise InvalidSignatureFormatError("Signature is not valid hex")
            if not isinstance(signature, (bytes, bytearray)):
                raise InvalidSignatureFormatError(
                    f"Unsupported signature type: {type(signature).__name__}"
                )
            parsed = EVMECDSASignature.from_bytes(bytes(signature))
            v, r, s = parsed.v, parsed.r, parsed.s
    except MalformedSignatureError as e:
        raise InvalidSignatureFormatError(e.message) from e

    if not isinstance(v, int) or isinstance(v, bool):
        raise InvalidSignatureFormatError("Signature v must be an integer")
    if v in (0, 1):
        v += 27
    if v not in (27, 28):
        raise InvalidSignatureFormatError(f"Invalid recovery ID: {v}. Must be 27 or 28")

    return v, _component_to_int(r, "r"), _component_to_int(s, "s")


def verify(
    domain: Union[EIP712Domain, Dict[str, Any]],
    type_schema: Dict[str, List[Dict[str, str]]],
    message: Dict[str, Any],
    signature: SignatureInput,
    claimed_signer: str,
) -> bool:
    """
    Verify that ``signature`` over the typed data was produced by ``claimed_signer``.

    Args:
        domain:         EIP-712 domain (dataclass or dict).
        type_schema:    Struct definitions, e.g. ``{"TransferWithAuthorization": [...]}``.
                        The first non-``EIP712Domain`` entry is the primary type.
        message:        Message dict keyed by the schema's field names.
        signature:      See :func:`parse_signature` for accepted forms.
        claimed_signer: Address expected to have signed.

    Returns:
        ``True`` on a match, ``False`` on any recovery mismatch (including a
        signature that is well-formed but not recoverable).

    Raises:
        InvalidSignatureFormatError: Only if the signature cannot be parsed.
    """
    v, r, s = parse_signature(signature)

    domain_dict = domain.to_dict() if isinstance(domain, EIP712Domain) else dict(domain)
    types = {k: val for k, val in type_schema.items() if k != "EIP712Domain"}
    if not types:
        raise ValueError("type_schema must contain a primary type")
    primary_type = next(iter(types))

    full_message = {
        "types": {"EIP712Domain": list(EIP712_DOMAIN_TYPE), **types},
        "primaryType": primary_type,
        "domain": domain_dict,
        "message": message,
    }

    try:
        signable = encode_typed_data(full_message=full_message)
        recovered = Account.recover_message(signable, vrs=(v, r, s))
    except Exception:
        # Out-of-range r/s, invalid curve point or message not matching the schema
        return False

    return recovered.lower() == str(claimed_signer).lower()


def verify_transfer_authorization(
    request: TransferRequest,
    value: int,
    domain: EIP712Domain,
) -> bool:
    """
    Verify the ``transfer`` signature of a relay request against ``from``.

    Args:
        request: Incoming transfer request.
        value:   Transfer value in base units (already converted from ``amount``).
        domain:  Wrapper contract domain.
    """
    auth = request.transfer
    typed_data = encode_transfer_message(
        request.from_address,
        request.to_address,
        value,
        auth.valid_after,
        auth.valid_before,
        auth.nonce,
        domain=domain,
    )
    return verify(
        domain,
        {"TransferWithAuthorization": TRANSFER_WITH_AUTHORIZATION_TYPE},
        typed_data.message.to_dict(),
        (auth.v, auth.r, auth.s),
        request.from_address,
    )
