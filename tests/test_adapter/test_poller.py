"""
Confirmation poller tests. Sleeping is injected so no test waits in real time.
"""

import pytest
from unittest.mock import AsyncMock
from web3.exceptions import TransactionNotFound

from bsc_gasless.adapters.evm.poller import ConfirmationPoller, RetryPolicy, PollOutcome
from bsc_gasless.adapters.evm.schemas import TransactionReceiptStatus
from bsc_gasless.schemas.bases import TransactionStatus
from bsc_gasless.engine.exceptions import ConfirmationTimeoutError, TransactionExecutionError, NetworkError

from .test_mocks import MOCK_TX_HASH, MOCK_BLOCK_NUMBER, MOCK_GAS_USED

PENDING = TransactionReceiptStatus(status=TransactionStatus.PENDING)
SUCCESS = TransactionReceiptStatus(
    status=TransactionStatus.SUCCESS, block_number=MOCK_BLOCK_NUMBER, gas_used=MOCK_GAS_USED
)
FAILED = TransactionReceiptStatus(status=TransactionStatus.FAILED, block_number=MOCK_BLOCK_NUMBER)


class TestRetryPolicy:
    """Test the delay schedule."""

    def test_default_schedule(self):
        policy = RetryPolicy()
        delays = list(policy.delays())
        assert policy.max_attempts == 20
        assert delays == [3.0] * 19

    def test_backoff_is_capped(self):
        policy = RetryPolicy(max_attempts=5, interval=1.0, backoff=2.0, max_interval=5.0)
        assert list(policy.delays()) == [1.0, 2.0, 4.0, 5.0]


class TestConfirmationPoller:
    """Test ConfirmationPoller.poll."""

    @pytest.mark.asyncio
    async def test_confirms_after_pending(self):
        fetch = AsyncMock(side_effect=[PENDING, None, SUCCESS])
        sleep = AsyncMock()
        poller = ConfirmationPoller(fetch, sleep=sleep)

        result = await poller.poll(MOCK_TX_HASH)

        assert result.outcome == PollOutcome.CONFIRMED
        assert result.block_number == MOCK_BLOCK_NUMBER
        assert result.gas_used == MOCK_GAS_USED
        assert result.attempts == 3
        assert result.error is None
        assert sleep.await_count == 2
        sleep.assert_awaited_with(3.0)

    @pytest.mark.asyncio
    async def test_stops_on_failure(self):
        fetch = AsyncMock(side_effect=[FAILED, SUCCESS])
        poller = ConfirmationPoller(fetch, sleep=AsyncMock())

        result = await poller.poll(MOCK_TX_HASH)

        assert result.outcome == PollOutcome.FAILED
        assert fetch.await_count == 1
        assert isinstance(result.error, TransactionExecutionError)

    @pytest.mark.asyncio
    async def test_not_found_counts_as_pending(self):
        fetch = AsyncMock(side_effect=[TransactionNotFound("missing"), SUCCESS])
        poller = ConfirmationPoller(fetch, sleep=AsyncMock())

        assert (await poller.poll(MOCK_TX_HASH)).outcome == PollOutcome.CONFIRMED

    @pytest.mark.asyncio
    async def test_rpc_errors_count_as_pending(self):
        fetch = AsyncMock(side_effect=[NetworkError("rpc blip"), SUCCESS])
        poller = ConfirmationPoller(fetch, sleep=AsyncMock())

        result = await poller.poll(MOCK_TX_HASH)

        assert result.outcome == PollOutcome.CONFIRMED
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_persistent_rpc_errors_time_out(self):
        fetch = AsyncMock(side_effect=NetworkError("rpc down"))
        poller = ConfirmationPoller(fetch, policy=RetryPolicy(max_attempts=3, interval=0.0), sleep=AsyncMock())

        result = await poller.poll(MOCK_TX_HASH)

        assert result.outcome == PollOutcome.TIMED_OUT
        assert fetch.await_count == 3

    @pytest.mark.asyncio
    async def test_times_out_with_advisory_error(self):
        fetch = AsyncMock(return_value=PENDING)
        sleep = AsyncMock()
        poller = ConfirmationPoller(fetch, policy=RetryPolicy(max_attempts=4, interval=0.5), sleep=sleep)

        result = await poller.poll(MOCK_TX_HASH)

        assert result.outcome == PollOutcome.TIMED_OUT
        assert result.attempts == 4
        assert fetch.await_count == 4
        assert sleep.await_count == 3
        assert isinstance(result.error, ConfirmationTimeoutError)
        assert result.error.status_code == 202
        assert result.error.details["txHash"] == MOCK_TX_HASH

    @pytest.mark.asyncio
    async def test_fetch_errors_propagate(self):
        fetch = AsyncMock(side_effect=RuntimeError("boom"))
        poller = ConfirmationPoller(fetch, sleep=AsyncMock())

        with pytest.raises(RuntimeError):
            await poller.poll(MOCK_TX_HASH)
