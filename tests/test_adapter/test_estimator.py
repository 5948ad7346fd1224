"""
Balance/gas estimator tests: fallback gas, margin, price cache TTL and the
price feed fallback chain.
"""

import httpx
import pytest
from unittest.mock import AsyncMock, Mock, patch

from bsc_gasless.adapters.evm.adapter import FacilitatorAdapter
from bsc_gasless.adapters.evm import estimator as estimator_module
from bsc_gasless.adapters.evm.estimator import BalanceGasEstimator, PriceCache, fetch_native_usd_price
from bsc_gasless.adapters.evm.constants import FALLBACK_NATIVE_USD_PRICE
from bsc_gasless.engine.exceptions import NetworkError

from .test_mocks import (
    MAINNET,
    MOCK_SERVER_PRIVATE_KEY,
    MOCK_OWNER_ADDRESS,
    MOCK_RECIPIENT_ADDRESS,
    MOCK_GAS_LIMIT,
    MOCK_GAS_PRICE,
    MOCK_TOKEN_BALANCE,
    ONE_TOKEN,
    MockWeb3Provider,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def mock_web3():
    return MockWeb3Provider(mock_allowance=5 * ONE_TOKEN)


@pytest.fixture
def adapter(mock_web3):
    facilitator = FacilitatorAdapter(private_key=MOCK_SERVER_PRIVATE_KEY, network=MAINNET)
    with patch.object(facilitator, "_get_web3_instance", return_value=mock_web3):
        yield facilitator


class TestGasEstimate:
    """Test estimate_transfer."""

    @pytest.mark.asyncio
    async def test_on_chain_estimate_with_margin(self, adapter, mock_web3):
        estimator = BalanceGasEstimator(adapter)

        estimate = await estimator.estimate_transfer(MOCK_OWNER_ADDRESS, MOCK_RECIPIENT_ADDRESS, ONE_TOKEN)

        assert estimate.from_chain is True
        assert estimate.gas_units == MOCK_GAS_LIMIT * 120 // 100
        assert estimate.gas_price_wei == MOCK_GAS_PRICE
        assert estimate.total_cost_wei == estimate.gas_units * MOCK_GAS_PRICE

    @pytest.mark.asyncio
    async def test_mock_signature_sized_like_real_one(self, adapter, mock_web3):
        estimator = BalanceGasEstimator(adapter)
        transfer = mock_web3.contract_at(MAINNET.wrapper).functions.transferWithAuthorization

        await estimator.estimate_transfer(MOCK_OWNER_ADDRESS, MOCK_RECIPIENT_ADDRESS, ONE_TOKEN, has_permit=False)
        assert len(transfer.call_args.args[6]) == 65

        await estimator.estimate_transfer(MOCK_OWNER_ADDRESS, MOCK_RECIPIENT_ADDRESS, ONE_TOKEN, has_permit=True)
        assert len(transfer.call_args.args[6]) == 162

    @pytest.mark.asyncio
    @pytest.mark.parametrize("has_permit, fallback", [(False, 150000), (True, 200000)])
    async def test_fallback_gas_when_estimation_reverts(self, adapter, mock_web3, has_permit, fallback):
        mock_web3.contract_at(MAINNET.wrapper).estimate_error = Exception("execution reverted")
        estimator = BalanceGasEstimator(adapter)

        estimate = await estimator.estimate_transfer(
            MOCK_OWNER_ADDRESS, MOCK_RECIPIENT_ADDRESS, ONE_TOKEN, has_permit=has_permit
        )

        assert estimate.from_chain is False
        assert estimate.has_permit is has_permit
        assert estimate.gas_units == fallback * 120 // 100


class TestBalances:
    """Test balance and allowance reads."""

    @pytest.mark.asyncio
    async def test_token_balance(self, adapter):
        estimator = BalanceGasEstimator(adapter)
        assert await estimator.get_token_balance(MOCK_OWNER_ADDRESS.lower()) == MOCK_TOKEN_BALANCE

    @pytest.mark.asyncio
    async def test_allowance_is_against_wrapper(self, adapter, mock_web3):
        estimator = BalanceGasEstimator(adapter)
        assert await estimator.get_allowance(MOCK_OWNER_ADDRESS) == 5 * ONE_TOKEN

        allowance = mock_web3.contract_at(MAINNET.usd1).functions.allowance
        allowance.assert_called_with(MOCK_OWNER_ADDRESS, MAINNET.wrapper)

    @pytest.mark.asyncio
    async def test_native_balance(self, adapter, mock_web3):
        estimator = BalanceGasEstimator(adapter)
        assert await estimator.get_native_balance(MOCK_OWNER_ADDRESS) == mock_web3.mock_native_balance

    @pytest.mark.asyncio
    @pytest.mark.parametrize("function_name", ["balanceOf", "allowance"])
    async def test_rpc_failure_is_network_error(self, adapter, mock_web3, function_name):
        failing_call = Mock()
        failing_call.call = AsyncMock(side_effect=ConnectionError("rpc down"))
        setattr(mock_web3.contract_at(MAINNET.usd1).functions, function_name, Mock(return_value=failing_call))
        estimator = BalanceGasEstimator(adapter)

        read = estimator.get_token_balance if function_name == "balanceOf" else estimator.get_allowance
        with pytest.raises(NetworkError) as exc_info:
            await read(MOCK_OWNER_ADDRESS)

        assert exc_info.value.code == "NETWORK_ERROR"
        assert "rpc down" in exc_info.value.message


class TestPriceCache:
    """Test PriceCache TTL with an injected clock."""

    @pytest.mark.asyncio
    async def test_within_ttl_uses_cached_value(self):
        clock = FakeClock()
        cache = PriceCache(ttl=60, clock=clock)
        fetcher = AsyncMock(side_effect=[610.0, 620.0])

        assert await cache.get_or_fetch(fetcher) == 610.0
        clock.now += 59
        assert await cache.get_or_fetch(fetcher) == 610.0
        assert fetcher.await_count == 1

    @pytest.mark.asyncio
    async def test_after_expiry_reads_once(self):
        clock = FakeClock()
        cache = PriceCache(ttl=60, clock=clock)
        fetcher = AsyncMock(side_effect=[610.0, 620.0])

        await cache.get_or_fetch(fetcher)
        clock.now += 60
        assert await cache.get_or_fetch(fetcher) == 620.0
        assert await cache.get_or_fetch(fetcher) == 620.0
        assert fetcher.await_count == 2

    def test_empty_cache(self):
        assert PriceCache().get() is None

    @pytest.mark.asyncio
    async def test_estimator_uses_injected_cache(self, adapter):
        fetcher = AsyncMock(return_value=700.0)
        estimator = BalanceGasEstimator(adapter, price_cache=PriceCache(clock=FakeClock()), price_fetcher=fetcher)

        assert await estimator.native_usd_price() == 700.0
        assert await estimator.native_usd_price() == 700.0
        fetcher.assert_awaited_once()


class TestPriceFeed:
    """Test fetch_native_usd_price source order and fallback."""

    def _patch_transport(self, monkeypatch, handler):
        real_client = httpx.AsyncClient

        def client_factory(*args, **kwargs):
            kwargs["transport"] = httpx.MockTransport(handler)
            return real_client(*args, **kwargs)

        monkeypatch.setattr(estimator_module.httpx, "AsyncClient", client_factory)

    @pytest.mark.asyncio
    async def test_coingecko_first(self, monkeypatch):
        def handler(request):
            if "coingecko" in request.url.host:
                return httpx.Response(200, json={"binancecoin": {"usd": 612.5}})
            return httpx.Response(200, json={"price": "1.0"})

        self._patch_transport(monkeypatch, handler)
        assert await fetch_native_usd_price() == 612.5

    @pytest.mark.asyncio
    async def test_binance_second(self, monkeypatch):
        def handler(request):
            if "coingecko" in request.url.host:
                return httpx.Response(429)
            return httpx.Response(200, json={"symbol": "BNBUSDT", "price": "598.10"})

        self._patch_transport(monkeypatch, handler)
        assert await fetch_native_usd_price() == 598.10

    @pytest.mark.asyncio
    async def test_fallback_price(self, monkeypatch, caplog):
        def handler(request):
            raise httpx.ConnectError("offline", request=request)

        self._patch_transport(monkeypatch, handler)
        with caplog.at_level("WARNING"):
            assert await fetch_native_usd_price() == FALLBACK_NATIVE_USD_PRICE
        assert "fallback" in caplog.text
