"""
Balance and gas cost estimation.

Read-only queries used by ``/estimate``, ``/balance`` and the relay's balance
check. Gas is estimated on-chain with mock authorization data sized like a real
request, and priced in USD through a short-lived cached native price.
"""

import os
import time
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx
from web3 import AsyncWeb3

from ...engine.exceptions import NetworkError
from .adapter import FacilitatorAdapter
from .schemas import GasEstimate
from .signatures import SIGNATURE_LENGTH, PERMIT_SIGNATURE_LENGTH, build_validity_window, generate_nonce
from .constants import (
    NetworkConfig,
    GAS_MARGIN_PERCENT,
    FALLBACK_GAS_UNITS,
    FALLBACK_GAS_UNITS_WITH_PERMIT,
    PRICE_CACHE_TTL_SECONDS,
    FALLBACK_NATIVE_USD_PRICE,
)

logger = logging.getLogger(__name__)

COINGECKO_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price?ids=binancecoin&vs_currencies=usd"
BINANCE_PRICE_URL = "https://api.binance.com/api/v3/ticker/price?symbol=BNBUSDT"
PRICE_REQUEST_TIMEOUT = 5.0

PriceFetcher = Callable[[], Awaitable[float]]


# ==================== Price cache ====================

@dataclass(frozen=True)
class CacheEntry:
    value: Any
    expiry: float


class PriceCache:
    """
    Single-value cache with an explicit expiry.

    ``clock`` is injectable so tests can move time without sleeping.
    """

    def __init__(self, ttl: float = PRICE_CACHE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entry: Optional[CacheEntry] = None

    def get(self) -> Optional[Any]:
        if self._entry is None or self._clock() >= self._entry.expiry:
            return None
        return self._entry.value

    def put(self, value: Any) -> None:
        self._entry = CacheEntry(value=value, expiry=self._clock() + self.ttl)

    async def get_or_fetch(self, fetcher: Callable[[], Awaitable[Any]]) -> Any:
        cached = self.get()
        if cached is not None:
            return cached
        value = await fetcher()
        self.put(value)
        return value


async def fetch_native_usd_price() -> float:
    """
    Fetch the BNB/USD price.

    Tries CoinGecko, then Binance. When both fail the fixed fallback price is
    returned so estimation never blocks on the price feed.
    """
    async with httpx.AsyncClient(timeout=PRICE_REQUEST_TIMEOUT) as client:
        try:
            response = await client.get(COINGECKO_PRICE_URL)
            response.raise_for_status()
            return float(response.json()["binancecoin"]["usd"])
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"CoinGecko price unavailable: {e}")

        try:
            response = await client.get(BINANCE_PRICE_URL)
            response.raise_for_status()
            return float(response.json()["price"])
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Binance price unavailable: {e}")

    logger.warning(f"All price sources failed, using fallback price {FALLBACK_NATIVE_USD_PRICE}")
    return FALLBACK_NATIVE_USD_PRICE


# ==================== Estimator ====================

class BalanceGasEstimator:
    """
    Token/native balance lookups and transfer gas projections.

    Example:
        estimator = BalanceGasEstimator(adapter)
        estimate = await estimator.estimate_transfer(sender, recipient, value, has_permit=False)
        usd = await estimator.native_usd_price()
    """

    def __init__(
        self,
        adapter: FacilitatorAdapter,
        network: Optional[NetworkConfig] = None,
        price_cache: Optional[PriceCache] = None,
        price_fetcher: PriceFetcher = fetch_native_usd_price,
    ):
        self.adapter = adapter
        self.network = network or adapter.network
        self.price_cache = price_cache or PriceCache()
        self.price_fetcher = price_fetcher

    async def _read(self, what: str, call) -> int:
        try:
            return int(await call.call())
        except Exception as e:
            raise NetworkError(f"Failed to get {what}: {e}") from e

    async def get_token_balance(self, address: str) -> int:
        """
        USD1 balance of ``address`` in base units.

        Raises:
            NetworkError: If the contract read fails.
        """
        token = self.adapter.token_contract()
        return await self._read("balance", token.functions.balanceOf(AsyncWeb3.to_checksum_address(address)))

    async def get_native_balance(self, address: str) -> int:
        return await self.adapter.get_native_balance(address)

    async def get_allowance(self, owner: str) -> int:
        """Allowance ``owner`` granted to the wrapper contract."""
        token = self.adapter.token_contract()
        return await self._read("allowance", token.functions.allowance(
            AsyncWeb3.to_checksum_address(owner),
            AsyncWeb3.to_checksum_address(self.network.wrapper),
        ))

    async def native_usd_price(self) -> float:
        return float(await self.price_cache.get_or_fetch(self.price_fetcher))

    @staticmethod
    def _mock_signature(has_permit: bool) -> bytes:
        # Random r/s with v = 27; only the length matters for estimation
        single = os.urandom(SIGNATURE_LENGTH - 1) + bytes([27])
        if not has_permit:
            return single
        permit = os.urandom(SIGNATURE_LENGTH - 1) + bytes([27])
        deadline = os.urandom(PERMIT_SIGNATURE_LENGTH - 2 * SIGNATURE_LENGTH)
        return single + permit + deadline

    async def estimate_transfer(
        self,
        authorizer: str,
        recipient: str,
        value: int,
        has_permit: bool = False,
    ) -> GasEstimate:
        """
        Project the cost of relaying one transfer.

        On-chain estimation runs with mock authorization data, so it usually
        reverts on signature checks; the fixed fallback figure (150000 gas, or
        200000 with permit) is then used. The 20% margin applies either way.

        Args:
            authorizer: Sender address.
            recipient: Recipient address.
            value: Transfer value in base units.
            has_permit: Project the permit path (162-byte signature).

        Returns:
            GasEstimate: Gas units with margin, price and total cost in wei.
        """
        valid_after, valid_before = build_validity_window()
        from_chain = True
        try:
            gas_units = await self.adapter.estimate_transfer_gas(
                authorizer,
                recipient,
                value,
                valid_after,
                valid_before,
                generate_nonce(),
                self._mock_signature(has_permit),
            )
        except Exception as e:
            gas_units = FALLBACK_GAS_UNITS_WITH_PERMIT if has_permit else FALLBACK_GAS_UNITS
            from_chain = False
            logger.info(f"Gas estimation with mock data failed, using fallback {gas_units}: {e}")

        gas_limit = gas_units * GAS_MARGIN_PERCENT // 100
        gas_price = await self.adapter.get_gas_price()

        return GasEstimate(
            gas_units=gas_limit,
            gas_price_wei=gas_price,
            total_cost_wei=gas_limit * gas_price,
            has_permit=has_permit,
            from_chain=from_chain,
        )
