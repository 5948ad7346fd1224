"""
Facilitator Adapter Test Suite

Tests for FacilitatorAdapter including:
- Initialization and configuration
- Submission on the plain and permit paths
- Gas floor, allowance and gas margin handling
- Submission error classification
- Receipt status lookups

Usage:
    pytest tests/test_adapter/test_facilitator_adapter.py -v
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, patch
from web3.exceptions import TransactionNotFound

from bsc_gasless.adapters.evm.adapter import FacilitatorAdapter, classify_submission_error
from bsc_gasless.adapters.evm.constants import DEFAULT_GAS_PRICE_WEI
from bsc_gasless.schemas.bases import TransactionStatus
from bsc_gasless.engine.exceptions import (
    ConfigurationError,
    FacilitatorInsufficientGasError,
    InsufficientAllowanceError,
    NonceAlreadyUsedError,
    AuthorizationExpiredError,
    InvalidSignatureError,
    NetworkError,
    TransactionExecutionError,
)

from .test_mocks import (
    MAINNET,
    TESTNET,
    MOCK_SERVER_PRIVATE_KEY,
    MOCK_SERVER_ADDRESS,
    MOCK_TX_HASH,
    MOCK_GAS_LIMIT,
    MOCK_GAS_PRICE,
    MOCK_BLOCK_NUMBER,
    MOCK_GAS_USED,
    ONE_TOKEN,
    AwaitableValue,
    MockWeb3Provider,
    create_transfer_request,
)


# ========================================================================
# Test Fixtures
# ========================================================================

@pytest.fixture
def mock_web3():
    """Provide a mock Web3 instance with a large allowance."""
    return MockWeb3Provider(mock_allowance=1000 * ONE_TOKEN)


@pytest.fixture
def adapter(mock_web3):
    """Provide a mainnet adapter wired to the mock Web3 instance."""
    facilitator = FacilitatorAdapter(private_key=MOCK_SERVER_PRIVATE_KEY, network=MAINNET)
    with patch.object(facilitator, "_get_web3_instance", return_value=mock_web3):
        yield facilitator


def _transfer_fn(mock_web3, network=MAINNET):
    return mock_web3.contract_at(network.wrapper).functions.transferWithAuthorization


# ========================================================================
# Test Classes
# ========================================================================

class TestFacilitatorAdapterInitialization:
    """Test FacilitatorAdapter initialization and configuration."""

    def test_init_with_private_key(self):
        adapter = FacilitatorAdapter(private_key=MOCK_SERVER_PRIVATE_KEY, network=MAINNET)
        assert adapter.wallet_address == MOCK_SERVER_ADDRESS
        assert adapter.network.chain_id == 56

    def test_init_from_env(self, monkeypatch):
        monkeypatch.setenv("FACILITATOR_PRIVATE_KEY", MOCK_SERVER_PRIVATE_KEY)
        monkeypatch.setenv("DEFAULT_NETWORK", "testnet")
        adapter = FacilitatorAdapter()
        assert adapter.wallet_address == MOCK_SERVER_ADDRESS
        assert adapter.network.name == "testnet"

    def test_init_without_key(self, monkeypatch):
        monkeypatch.delenv("FACILITATOR_PRIVATE_KEY", raising=False)
        with pytest.raises(ConfigurationError):
            FacilitatorAdapter(network=MAINNET)

    def test_web3_instance_is_lazy_and_cached(self):
        adapter = FacilitatorAdapter(private_key=MOCK_SERVER_PRIVATE_KEY, network=MAINNET)
        assert adapter._web3 is None
        assert adapter._get_web3_instance() is adapter._get_web3_instance()


class TestSubmitTransfer:
    """Test transferWithAuthorization submission."""

    @pytest.mark.asyncio
    async def test_plain_path(self, adapter, mock_web3):
        request = create_transfer_request(amount="1")

        tx_hash = await adapter.submit_transfer(request, ONE_TOKEN, use_permit=False)

        assert tx_hash == MOCK_TX_HASH
        args = _transfer_fn(mock_web3).call_args.args
        assert args[2] == ONE_TOKEN
        assert args[3] == request.transfer.valid_after
        assert args[5] == bytes.fromhex(request.transfer.nonce[2:])
        assert len(args[6]) == 65
        mock_web3.eth.send_raw_transaction.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_gas_limit_has_twenty_percent_margin(self, adapter, mock_web3):
        await adapter.submit_transfer(create_transfer_request(), ONE_TOKEN, use_permit=False)

        tx_params = _transfer_fn(mock_web3).return_value.build_transaction.call_args.args[0]
        assert tx_params["gas"] == MOCK_GAS_LIMIT * 120 // 100
        assert tx_params["gasPrice"] == MOCK_GAS_PRICE
        assert tx_params["chainId"] == 56
        assert tx_params["from"] == MOCK_SERVER_ADDRESS

    @pytest.mark.asyncio
    async def test_uses_pending_account_nonce(self, adapter, mock_web3):
        await adapter.submit_transfer(create_transfer_request(), ONE_TOKEN, use_permit=False)
        mock_web3.eth.get_transaction_count.assert_awaited_once_with(MOCK_SERVER_ADDRESS, "pending")

    @pytest.mark.asyncio
    async def test_permit_path_packs_162_bytes_and_skips_allowance(self, adapter, mock_web3):
        request = create_transfer_request(with_permit=True)
        token = mock_web3.contract_at(MAINNET.usd1)

        await adapter.submit_transfer(request, ONE_TOKEN, use_permit=True)

        signature = _transfer_fn(mock_web3).call_args.args[6]
        assert len(signature) == 162
        assert int.from_bytes(signature[130:], "big") == request.permit.deadline
        token.functions.allowance.assert_not_called()

    @pytest.mark.asyncio
    async def test_insufficient_allowance_on_plain_path(self, adapter, mock_web3):
        mock_web3.contract_at(MAINNET.usd1).mock_allowance = ONE_TOKEN - 1

        with pytest.raises(InsufficientAllowanceError):
            await adapter.submit_transfer(create_transfer_request(), ONE_TOKEN, use_permit=False)
        _transfer_fn(mock_web3).assert_not_called()

    @pytest.mark.asyncio
    async def test_gas_floor_checked_before_estimation(self, adapter, mock_web3):
        mock_web3.eth.get_balance = AsyncMock(return_value=10**16 - 1)

        with pytest.raises(FacilitatorInsufficientGasError) as exc_info:
            await adapter.submit_transfer(create_transfer_request(), ONE_TOKEN, use_permit=False)

        assert exc_info.value.status_code == 503
        _transfer_fn(mock_web3).assert_not_called()
        mock_web3.eth.send_raw_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_gas_floor_is_inclusive(self, adapter, mock_web3):
        mock_web3.eth.get_balance = AsyncMock(return_value=10**16)

        assert await adapter.ensure_gas_floor() == 10**16
        assert adapter.has_minimum_balance(10**16) is True
        assert adapter.has_minimum_balance(10**16 - 1) is False

    @pytest.mark.asyncio
    async def test_gas_price_fallback(self, adapter, mock_web3):
        mock_web3.eth.gas_price = AwaitableValue(error=ConnectionError("rpc down"))
        assert await adapter.get_gas_price() == DEFAULT_GAS_PRICE_WEI

        mock_web3.eth.gas_price = AwaitableValue(0)
        assert await adapter.get_gas_price() == DEFAULT_GAS_PRICE_WEI

    @pytest.mark.asyncio
    async def test_revert_is_classified(self, adapter, mock_web3):
        mock_web3.contract_at(MAINNET.wrapper).estimate_error = Exception(
            "execution reverted: AuthorizationAlreadyUsed"
        )
        with pytest.raises(NonceAlreadyUsedError):
            await adapter.submit_transfer(create_transfer_request(), ONE_TOKEN, use_permit=False)

    @pytest.mark.asyncio
    async def test_unknown_revert_passed_through(self, adapter, mock_web3):
        mock_web3.contract_at(MAINNET.wrapper).estimate_error = Exception("execution reverted: Paused")
        with pytest.raises(TransactionExecutionError) as exc_info:
            await adapter.submit_transfer(create_transfer_request(), ONE_TOKEN, use_permit=False)
        assert exc_info.value.message == "execution reverted: Paused"

    @pytest.mark.asyncio
    async def test_concurrent_submissions_are_serialised(self, adapter, mock_web3):
        in_flight = 0
        peak = 0

        async def count(*args, **kwargs):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return 0

        mock_web3.eth.get_transaction_count = AsyncMock(side_effect=count)
        original_send = mock_web3.eth.send_raw_transaction

        async def send(raw):
            nonlocal in_flight
            in_flight += 1
            await asyncio.sleep(0.01)
            in_flight -= 1
            return await original_send(raw)

        mock_web3.eth.send_raw_transaction = AsyncMock(side_effect=send)

        await asyncio.gather(*(
            adapter.submit_transfer(create_transfer_request(), ONE_TOKEN, use_permit=False)
            for _ in range(3)
        ))
        assert peak == 1


class TestClassifySubmissionError:
    """Test mapping of execution-layer failures to relay errors."""

    @pytest.mark.parametrize("message, expected", [
        ("insufficient funds for gas * price + value", FacilitatorInsufficientGasError),
        ("execution reverted: AuthorizationAlreadyUsed", NonceAlreadyUsedError),
        ("execution reverted: AuthorizationExpired", AuthorizationExpiredError),
        ("authorization is not yet valid", AuthorizationExpiredError),
        ("ERC20: insufficient allowance", InsufficientAllowanceError),
        ("execution reverted: InvalidSignatureLength", InvalidSignatureError),
        ("something odd", TransactionExecutionError),
    ])
    def test_message_patterns(self, message, expected):
        assert isinstance(classify_submission_error(Exception(message)), expected)

    def test_connection_errors(self):
        assert isinstance(classify_submission_error(ConnectionError("refused")), NetworkError)
        assert isinstance(classify_submission_error(asyncio.TimeoutError()), NetworkError)

    def test_relay_errors_pass_through(self):
        error = InsufficientAllowanceError()
        assert classify_submission_error(error) is error


class TestTransactionStatus:
    """Test receipt lookups."""

    @pytest.mark.asyncio
    async def test_success(self, adapter):
        status = await adapter.get_transaction_status(MOCK_TX_HASH)
        assert status.status == TransactionStatus.SUCCESS
        assert status.block_number == MOCK_BLOCK_NUMBER
        assert status.gas_used == MOCK_GAS_USED
        assert status.message == "Transaction confirmed"

    @pytest.mark.asyncio
    async def test_reverted(self, adapter, mock_web3):
        mock_web3.receipt["status"] = 0
        status = await adapter.get_transaction_status(MOCK_TX_HASH)
        assert status.status == TransactionStatus.FAILED
        assert status.message == "Transaction failed"

    @pytest.mark.asyncio
    async def test_pending_when_missing(self, adapter, mock_web3):
        mock_web3.receipt = None
        assert (await adapter.get_transaction_status(MOCK_TX_HASH)).status == TransactionStatus.PENDING

        mock_web3.eth.get_transaction_receipt = AsyncMock(side_effect=TransactionNotFound("not found"))
        status = await adapter.get_transaction_status(MOCK_TX_HASH)
        assert status.status == TransactionStatus.PENDING
        assert status.message == "Transaction is pending"

    @pytest.mark.asyncio
    async def test_rpc_failure(self, adapter, mock_web3):
        mock_web3.eth.get_transaction_receipt = AsyncMock(side_effect=ConnectionError("down"))
        with pytest.raises(NetworkError):
            await adapter.get_transaction_status(MOCK_TX_HASH)


class TestNetworks:
    """Test network configuration."""

    def test_testnet_has_no_permit(self):
        assert TESTNET.supports_permit is False
        assert TESTNET.chain_id == 97

    def test_unknown_network(self):
        from bsc_gasless.adapters.evm.constants import get_network_config
        with pytest.raises(ConfigurationError):
            get_network_config("goerli")

    def test_supported_networks(self):
        from bsc_gasless.adapters.evm.constants import supported_networks
        assert supported_networks() == ["mainnet", "testnet"]

    def test_rpc_override(self, monkeypatch):
        from bsc_gasless.adapters.evm.constants import get_network_config
        monkeypatch.setenv("BSC_TESTNET_RPC_URL", "http://localhost:8545")
        assert get_network_config("testnet").rpc_url == "http://localhost:8545"
