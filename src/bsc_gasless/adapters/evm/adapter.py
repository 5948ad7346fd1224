"""
EVM Facilitator Adapter

Holds the facilitator account and the RPC connection, and performs the only
state-changing operation of the relay: submitting ``transferWithAuthorization``
to the wrapper contract and paying its gas.

Key Features:
    - Gas floor check before any estimation is attempted
    - Permit vs. plain path selection and combined-signature packing
    - Gas estimation with a fixed 20% safety margin
    - Per-facilitator submission lock so concurrent requests never reuse a
      transaction sequence number
    - Classification of submission failures into the relay error taxonomy
    - Receipt status lookups for ``/status`` and the confirmation poller

Dependencies:
    - web3.py: For blockchain RPC interaction
    - eth_account: For transaction signing
"""

import asyncio
import logging
from typing import Optional, Dict, Any, Type

from web3 import AsyncWeb3
from eth_account import Account
from eth_utils import keccak
from web3.exceptions import TransactionNotFound, ProviderConnectionError

from ...schemas.bases import TransactionStatus
from ...engine.exceptions import (
    RelayError,
    ConfigurationError,
    FacilitatorInsufficientGasError,
    InsufficientAllowanceError,
    NonceAlreadyUsedError,
    AuthorizationExpiredError,
    InvalidSignatureError,
    NetworkError,
    TransactionExecutionError,
)
from .schemas import TransferRequest, TransactionReceiptStatus
from .signatures import combine_signatures
from .ERC20_ABI import get_token_abi, get_wrapper_abi
from .constants import (
    NetworkConfig,
    get_network_config,
    get_private_key_from_env,
    get_request_timeout_from_env,
    format_units,
    GAS_MARGIN_PERCENT,
    DEFAULT_GAS_PRICE_WEI,
    MIN_FACILITATOR_BALANCE_WEI,
)

logger = logging.getLogger(__name__)


def _selector(signature: str) -> str:
    return "0x" + keccak(text=signature)[:4].hex()


#: Wrapper revert reasons, matched by name in the node's message or by the
#: 4-byte selector of the parameterless custom error.
_REVERT_REASONS: Dict[str, Type[RelayError]] = {
    "AuthorizationAlreadyUsed": NonceAlreadyUsedError,
    "AuthorizationExpired": AuthorizationExpiredError,
    "AuthorizationNotYetValid": AuthorizationExpiredError,
    "InvalidSignatureLength": InvalidSignatureError,
    "InvalidSignature": InvalidSignatureError,
}
_REVERT_SELECTORS: Dict[str, Type[RelayError]] = {
    _selector(f"{name}()"): error_cls for name, error_cls in _REVERT_REASONS.items()
}


def classify_submission_error(exc: Exception) -> RelayError:
    """
    Map an exception raised while estimating or sending a transaction onto the
    relay error taxonomy.

    Known cases (facilitator out of gas, replayed nonce, expired window,
    missing allowance, rejected signature, connectivity) get their dedicated
    class; anything else becomes ``TransactionExecutionError`` carrying the
    execution layer's message verbatim.
    """
    if isinstance(exc, RelayError):
        return exc

    text = str(exc)
    lowered = text.lower()
    details = {"reason": text}

    if "insufficient funds" in lowered:
        return FacilitatorInsufficientGasError(details=details)

    for name, error_cls in _REVERT_REASONS.items():
        if name.lower() in lowered:
            return error_cls(details=details)
    for selector, error_cls in _REVERT_SELECTORS.items():
        if selector in lowered:
            return error_cls(details=details)

    if "not yet valid" in lowered or "expired" in lowered:
        return AuthorizationExpiredError(details=details)
    if "allowance" in lowered:
        return InsufficientAllowanceError(details=details)
    if "signature" in lowered:
        return InvalidSignatureError(details=details)

    if isinstance(exc, (ProviderConnectionError, ConnectionError, asyncio.TimeoutError, OSError)):
        return NetworkError(f"RPC request failed: {text}", details=details)

    return TransactionExecutionError(text or exc.__class__.__name__)


class FacilitatorAdapter:
    """
    Facilitator account bound to one BSC network.

    The adapter is the sole writer of on-chain state in the relay. Read-only
    collaborators (nonce guard, estimator) reach the chain through
    :meth:`token_contract` / :meth:`wrapper_contract`.

    Attributes:
        network: Network configuration (contracts, domains, explorer)
        account: Facilitator account object
        wallet_address: Checksum-formatted facilitator address
        min_gas_balance: Native balance floor (wei) below which submission is refused

    Environment Variables:
        - FACILITATOR_PRIVATE_KEY: Facilitator key (required unless passed in)
        - DEFAULT_NETWORK: Network used when ``network`` is not given
        - RPC_REQUEST_TIMEOUT: RPC timeout in seconds

    Example:
        adapter = FacilitatorAdapter()                  # loads env
        adapter = FacilitatorAdapter(private_key="0x...", network=get_network_config("testnet"))

        tx_hash = await adapter.submit_transfer(request, value, use_permit=False)
        status = await adapter.get_transaction_status(tx_hash)
    """

    def __init__(
        self,
        private_key: Optional[str] = None,
        network: Optional[NetworkConfig] = None,
        rpc_url: Optional[str] = None,
        request_timeout: Optional[int] = None,
        min_gas_balance: int = MIN_FACILITATOR_BALANCE_WEI,
    ):
        """
        Initialize the facilitator.

        Args:
            private_key: Facilitator key; falls back to ``FACILITATOR_PRIVATE_KEY``.
            network: Target network; falls back to ``DEFAULT_NETWORK``.
            rpc_url: Override for the network's RPC endpoint.
            request_timeout: RPC timeout in seconds; falls back to ``RPC_REQUEST_TIMEOUT`` or 60.
            min_gas_balance: Gas floor in wei.

        Raises:
            ConfigurationError: If no private key is available.
        """
        resolved_pk = private_key or get_private_key_from_env()
        if not resolved_pk:
            raise ConfigurationError(
                "FACILITATOR_PRIVATE_KEY not configured. Either pass 'private_key' "
                "or set the FACILITATOR_PRIVATE_KEY environment variable."
            )

        self.network = network or get_network_config()
        self.account = Account.from_key(resolved_pk)
        self.wallet_address = AsyncWeb3.to_checksum_address(self.account.address)
        self.min_gas_balance = min_gas_balance

        self._rpc_url = rpc_url or self.network.rpc_url
        self._request_timeout = request_timeout or get_request_timeout_from_env()
        self._web3: Optional[AsyncWeb3] = None
        self._submission_lock = asyncio.Lock()

    def _get_web3_instance(self) -> AsyncWeb3:
        """
        Return the AsyncWeb3 instance for the configured network.

        Created lazily on first use so that constructing an adapter never
        touches the network.
        """
        if self._web3 is None:
            self._web3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
                self._rpc_url,
                request_kwargs={"timeout": self._request_timeout}
            ))
        return self._web3

    # ------------------------------------------------------------------
    # Contract handles
    # ------------------------------------------------------------------

    def token_contract(self, web3: Optional[AsyncWeb3] = None):
        web3 = web3 or self._get_web3_instance()
        return web3.eth.contract(
            address=AsyncWeb3.to_checksum_address(self.network.usd1),
            abi=get_token_abi(),
        )

    def wrapper_contract(self, web3: Optional[AsyncWeb3] = None):
        web3 = web3 or self._get_web3_instance()
        return web3.eth.contract(
            address=AsyncWeb3.to_checksum_address(self.network.wrapper),
            abi=get_wrapper_abi(),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_native_balance(self, address: Optional[str] = None) -> int:
        """Native (BNB) balance in wei; defaults to the facilitator's own."""
        web3 = self._get_web3_instance()
        target = AsyncWeb3.to_checksum_address(address or self.wallet_address)
        return int(await web3.eth.get_balance(target))

    async def get_gas_price(self, web3: Optional[AsyncWeb3] = None) -> int:
        """Current gas price in wei, or 3 gwei when the node does not report one."""
        web3 = web3 or self._get_web3_instance()
        try:
            gas_price = await web3.eth.gas_price
        except Exception as e:
            logger.warning(f"Gas price unavailable, using default: {e}")
            return DEFAULT_GAS_PRICE_WEI
        return int(gas_price) if gas_price else DEFAULT_GAS_PRICE_WEI

    async def estimate_transfer_gas(
        self,
        authorizer: str,
        recipient: str,
        value: int,
        valid_after: int,
        valid_before: int,
        nonce: str,
        signature: bytes,
    ) -> int:
        """Raw ``estimateGas`` of ``transferWithAuthorization`` as sent by the facilitator."""
        tx_fn = self._transfer_call(authorizer, recipient, value, valid_after, valid_before, nonce, signature)
        return int(await tx_fn.estimate_gas({"from": self.wallet_address}))

    async def get_transaction_status(self, tx_hash: str) -> TransactionReceiptStatus:
        """
        Look up a transaction receipt.

        Returns:
            ``PENDING`` when no receipt exists yet, ``SUCCESS`` when the status
            flag is set, ``FAILED`` when it is cleared.

        Raises:
            NetworkError: If the RPC call itself fails.
        """
        web3 = self._get_web3_instance()
        try:
            receipt = await web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return TransactionReceiptStatus(status=TransactionStatus.PENDING)
        except Exception as e:
            raise NetworkError(f"Failed to get transaction status: {e}") from e

        if not receipt:
            return TransactionReceiptStatus(status=TransactionStatus.PENDING)

        status = TransactionStatus.SUCCESS if receipt.get("status") == 1 else TransactionStatus.FAILED
        return TransactionReceiptStatus(
            status=status,
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _transfer_call(
        self,
        authorizer: str,
        recipient: str,
        value: int,
        valid_after: int,
        valid_before: int,
        nonce: str,
        signature: bytes,
        web3: Optional[AsyncWeb3] = None,
    ):
        nonce_hex = nonce[2:] if nonce.startswith("0x") else nonce
        return self.wrapper_contract(web3).functions.transferWithAuthorization(
            AsyncWeb3.to_checksum_address(authorizer),
            AsyncWeb3.to_checksum_address(recipient),
            value,
            valid_after,
            valid_before,
            bytes.fromhex(nonce_hex.zfill(64)),
            signature,
        )

    def has_minimum_balance(self, balance: int) -> bool:
        """Whether a facilitator balance (wei) is at or above the gas floor."""
        return balance >= self.min_gas_balance

    async def ensure_gas_floor(self) -> int:
        """
        Check the facilitator can pay for gas.

        Returns:
            int: Current facilitator balance in wei.

        Raises:
            FacilitatorInsufficientGasError: If the balance is below the floor.
        """
        balance = await self.get_native_balance()
        if not self.has_minimum_balance(balance):
            logger.error(
                f"Facilitator {self.wallet_address} has insufficient "
                f"{self.network.native_symbol}: {format_units(balance)}"
            )
            raise FacilitatorInsufficientGasError(
                f"Facilitator has insufficient {self.network.native_symbol} for gas",
                details={
                    "balance": format_units(balance),
                    "required": format_units(self.min_gas_balance),
                },
            )
        return balance

    async def submit_transfer(
        self,
        request: TransferRequest,
        value: int,
        *,
        use_permit: bool,
    ) -> str:
        """
        Build, sign and broadcast ``transferWithAuthorization``.

        Steps:
        1. Refuse if the facilitator is below its gas floor (no estimation is spent).
        2. Permit path: pack transfer sig + permit sig + deadline (162 bytes).
           Plain path: require ``allowance(from, wrapper) >= value`` and pack
           the transfer sig alone (65 bytes).
        3. Estimate gas and widen it by 20%.
        4. Under the submission lock: fetch gas price and pending account
           nonce, sign, send.

        Args:
            request: Validated transfer request.
            value: Transfer value in base units.
            use_permit: Whether to take the permit path.

        Returns:
            str: 0x-prefixed transaction hash.

        Raises:
            RelayError: A classified submission failure (see
                :func:`classify_submission_error`).
        """
        await self.ensure_gas_floor()

        web3 = self._get_web3_instance()
        auth = request.transfer
        try:
            if use_permit:
                signature = combine_signatures(
                    auth.signature,
                    request.permit.signature,
                    request.permit.deadline,
                )
            else:
                allowance = await self.token_contract(web3).functions.allowance(
                    AsyncWeb3.to_checksum_address(request.from_address),
                    AsyncWeb3.to_checksum_address(self.network.wrapper),
                ).call()
                if allowance < value:
                    raise InsufficientAllowanceError(
                        f"Insufficient {self.network.token_symbol} allowance. "
                        f"Please approve the wrapper contract first.",
                        details={
                            "allowance": format_units(allowance),
                            "required": format_units(value),
                        },
                    )
                signature = combine_signatures(auth.signature)

            tx_fn = self._transfer_call(
                request.from_address,
                request.to_address,
                value,
                auth.valid_after,
                auth.valid_before,
                auth.nonce,
                signature,
                web3=web3,
            )
            gas_estimate = await tx_fn.estimate_gas({"from": self.wallet_address})
            gas_limit = int(gas_estimate) * GAS_MARGIN_PERCENT // 100
            logger.info(f"Estimated gas {gas_estimate}, gas limit {gas_limit}")

            async with self._submission_lock:
                gas_price = await self.get_gas_price(web3)
                tx_nonce = await web3.eth.get_transaction_count(self.wallet_address, "pending")
                tx_dict: Dict[str, Any] = await tx_fn.build_transaction({
                    "from": self.wallet_address,
                    "gas": gas_limit,
                    "gasPrice": gas_price,
                    "nonce": tx_nonce,
                    "chainId": self.network.chain_id,
                })
                signed_tx = self.account.sign_transaction(tx_dict)
                tx_hash = await web3.eth.send_raw_transaction(signed_tx.raw_transaction)

        except Exception as e:
            error = classify_submission_error(e)
            logger.error(f"Transaction submission failed: {error.code}: {error.message}")
            if error is e:
                raise
            raise error from e

        tx_hash_hex = AsyncWeb3.to_hex(tx_hash)
        logger.info(f"Submitted transferWithAuthorization tx: {tx_hash_hex}")
        return tx_hash_hex
