"""
Authorization nonce lookups against the wrapper contract.

The wrapper marks a ``(authorizer, nonce)`` pair as used atomically when it
executes ``transferWithAuthorization``. The lookup here only lets the relay
reject an obvious replay before spending gas; the contract stays authoritative.
"""

import logging

from web3 import AsyncWeb3

from .adapter import FacilitatorAdapter

logger = logging.getLogger(__name__)


class NonceGuard:
    """Read-only view of ``authorizationState`` on the wrapper."""

    def __init__(self, adapter: FacilitatorAdapter):
        self.adapter = adapter

    async def is_used(self, authorizer: str, nonce: str) -> bool:
        """
        Check whether ``nonce`` has already been consumed for ``authorizer``.

        A failed read is logged and reported as unused; a replay that slips
        through is rejected on-chain and surfaces as ``NonceAlreadyUsedError``.

        Args:
            authorizer: Address that signed the authorization.
            nonce: 0x-prefixed 32-byte nonce.

        Returns:
            bool: True only if the contract reports the nonce as used.
        """
        nonce_hex = nonce[2:] if nonce.startswith("0x") else nonce
        try:
            wrapper = self.adapter.wrapper_contract()
            used = await wrapper.functions.authorizationState(
                AsyncWeb3.to_checksum_address(authorizer),
                bytes.fromhex(nonce_hex.zfill(64)),
            ).call()
        except Exception as e:
            logger.warning(f"Nonce lookup failed for {authorizer}, treating as unused: {e}")
            return False
        return bool(used)
