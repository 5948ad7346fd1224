"""
Gasless Relay HTTP Client

An ``httpx.AsyncClient`` that signs transfer authorizations locally and talks
to a relay server. The sender never needs native gas: the relay's facilitator
submits the transaction.
"""

import time
import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Type, Union

import httpx
from web3 import AsyncWeb3
from eth_account.signers.local import LocalAccount

from ..adapters.evm.constants import (
    NetworkConfig,
    get_network_config,
    amount_to_value,
    format_units,
    MIN_TRANSFER_VALUE,
    PERMIT_DEADLINE,
)
from ..adapters.evm.ERC20_ABI import get_token_abi
from ..adapters.evm.signatures import sign_transfer_authorization, sign_permit
from ..adapters.evm.schemas import TransferRequest, PermitAuthorization, TransactionReceiptStatus
from ..adapters.evm.poller import ConfirmationPoller, RetryPolicy, PollResult
from ..engine.exceptions import RelayError, BelowMinimumError
from .wallets import WalletRegistry

logger = logging.getLogger(__name__)


def _error_classes(root: Type[RelayError] = RelayError) -> Dict[str, Type[RelayError]]:
    classes = {root.code: root}
    for sub in root.__subclasses__():
        classes.update(_error_classes(sub))
    return classes


def error_from_response(response: httpx.Response) -> RelayError:
    """Rebuild the relay error carried by an error response."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    error_cls = _error_classes().get(body.get("code"), RelayError)
    message = body.get("error") or f"Relay responded with HTTP {response.status_code}"
    return error_cls(message, details=body.get("details"))


class GaslessClient(httpx.AsyncClient):
    """
    Extended httpx.AsyncClient for the gasless relay API.

    Fully compatible with httpx.AsyncClient and usable as an async context
    manager. Error responses are raised as the matching ``RelayError``
    subclass.

    Usage:
        ```python
        async with GaslessClient(base_url="http://localhost:3000") as client:
            result = await client.transfer("0xRecipient...", "1.5")
            if result.get("status") == "pending":
                poll = await client.wait_for_confirmation(result["txHash"])
        ```
    """

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        account: Optional[LocalAccount] = None,
        network: Optional[NetworkConfig] = None,
        wallets: Optional[WalletRegistry] = None,
        **kwargs
    ):
        """
        Initialize the client.

        Args:
            base_url: Relay server URL
            account: Signing account; defaults to the registry's preferred wallet
            network: Network to sign for (default: ``DEFAULT_NETWORK``)
            wallets: Wallet registry (default: discovered from the environment)
            **kwargs: All standard httpx.AsyncClient arguments (timeout, headers, etc.)
        """
        kwargs.setdefault("timeout", 120.0)
        super().__init__(base_url=base_url, **kwargs)
        self.network = network or get_network_config()
        self._account = account
        self._wallets = wallets
        self._web3: Optional[AsyncWeb3] = None

    @property
    def account(self) -> LocalAccount:
        if self._account is None:
            registry = self._wallets or WalletRegistry.discover()
            self._account = registry.default().load()
        return self._account

    def _get_web3_instance(self) -> AsyncWeb3:
        if self._web3 is None:
            self._web3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(self.network.rpc_url))
        return self._web3

    # =========================================================================
    # Signing
    # =========================================================================

    async def get_permit_nonce(self, owner: str) -> int:
        """Token ``nonces(owner)``; 0 when the token cannot be read."""
        web3 = self._get_web3_instance()
        token = web3.eth.contract(
            address=AsyncWeb3.to_checksum_address(self.network.usd1),
            abi=get_token_abi(),
        )
        try:
            return int(await token.functions.nonces(AsyncWeb3.to_checksum_address(owner)).call())
        except Exception as e:
            logger.warning(f"Could not read permit nonce for {owner}, using 0: {e}")
            return 0

    async def build_transfer_request(
        self,
        to: str,
        amount: Union[str, int, Decimal],
        use_permit: Optional[bool] = None,
    ) -> TransferRequest:
        """
        Sign a transfer authorization (and permit, where supported).

        Args:
            to: Recipient address
            amount: Amount in USD1 (``"1.5"``)
            use_permit: Attach a permit; defaults to the network's permit support

        Raises:
            BelowMinimumError: Amount below the relay minimum (checked early for UX;
                the relay enforces it again).
            InvalidAmountError: Amount cannot be converted to base units.
        """
        value = amount_to_value(amount=amount, decimals=self.network.token_decimals)
        if value < MIN_TRANSFER_VALUE:
            raise BelowMinimumError(
                f"Minimum transfer amount is {format_units(MIN_TRANSFER_VALUE)} {self.network.token_symbol}"
            )

        account = self.account
        transfer = sign_transfer_authorization(
            signer=account,
            recipient=to,
            value=value,
            domain=self.network.wrapper_domain(),
        )

        permit: Optional[PermitAuthorization] = None
        if use_permit is None:
            use_permit = self.network.supports_permit
        if use_permit:
            permit = sign_permit(
                signer=account,
                spender=self.network.wrapper,
                value=value,
                nonce=await self.get_permit_nonce(account.address),
                deadline=int(time.time()) + PERMIT_DEADLINE,
                domain=self.network.token_domain(),
            )

        return TransferRequest(
            from_address=account.address,
            to_address=to,
            amount=str(amount),
            transfer=transfer,
            permit=permit,
        )

    # =========================================================================
    # Relay API
    # =========================================================================

    async def _call(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        response = await self.request(method, url, **kwargs)
        if response.status_code >= 400:
            raise error_from_response(response)
        return response.json()

    async def submit(self, request: TransferRequest) -> Dict[str, Any]:
        """POST an already signed request to ``/transfer``."""
        return await self._call("POST", "/transfer", json=request.to_dict())

    async def transfer(
        self,
        to: str,
        amount: Union[str, int, Decimal],
        use_permit: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Sign and relay a transfer.

        Returns:
            The confirmed transfer body, or ``{txHash, explorerUrl, status: "pending", message}``
            when the relay answered 202.
        """
        request = await self.build_transfer_request(to, amount, use_permit=use_permit)
        return await self.submit(request)

    async def estimate(
        self,
        to: str,
        amount: Union[str, int, Decimal],
        has_permit: Optional[bool] = None,
        from_address: Optional[str] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "from": from_address or self.account.address,
            "to": to,
            "amount": str(amount),
        }
        if has_permit is not None:
            body["hasPermit"] = has_permit
        return await self._call("POST", "/estimate", json=body)

    async def status(self, tx_hash: str) -> TransactionReceiptStatus:
        body = await self._call("GET", f"/status/{tx_hash}")
        return TransactionReceiptStatus.model_validate(body)

    async def balance(self, address: Optional[str] = None) -> Dict[str, Any]:
        return await self._call("GET", f"/balance/{address or self.account.address}")

    async def health(self) -> Dict[str, Any]:
        return await self._call("GET", "/health")

    async def wait_for_confirmation(
        self,
        tx_hash: str,
        policy: Optional[RetryPolicy] = None,
    ) -> PollResult:
        """Poll ``/status`` until the transaction confirms, fails, or the policy runs out."""
        poller = ConfirmationPoller(self.status, policy=policy)
        return await poller.poll(tx_hash)
