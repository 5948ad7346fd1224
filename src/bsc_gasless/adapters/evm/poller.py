"""
Confirmation polling for submitted transactions.

``ConfirmationPoller`` repeatedly asks an injected status source for a
transaction's receipt until it reaches a terminal state or the retry policy
runs out. The server polls the chain through the facilitator adapter; the
client polls the server's ``/status`` endpoint. Neither path writes anything.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Iterator, Optional, Union

from pydantic import BaseModel
from web3.exceptions import TransactionNotFound

from ...schemas.bases import TransactionStatus
from ...engine.exceptions import ConfirmationTimeoutError, TransactionExecutionError, NetworkError
from .schemas import TransactionReceiptStatus
from .constants import POLL_INTERVAL_SECONDS, POLL_MAX_ATTEMPTS

logger = logging.getLogger(__name__)

StatusFetcher = Callable[[str], Awaitable[Optional[TransactionReceiptStatus]]]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Poll schedule.

    Attributes:
        max_attempts: Number of status reads before giving up.
        interval: Delay before the second read, in seconds.
        backoff: Multiplier applied to the delay after each read.
        max_interval: Upper bound on any single delay.
    """
    max_attempts: int = POLL_MAX_ATTEMPTS
    interval: float = POLL_INTERVAL_SECONDS
    backoff: float = 1.0
    max_interval: Optional[float] = None

    def delays(self) -> Iterator[float]:
        """Delays between consecutive attempts (``max_attempts - 1`` values)."""
        delay = self.interval
        for _ in range(max(self.max_attempts - 1, 0)):
            yield delay if self.max_interval is None else min(delay, self.max_interval)
            delay *= self.backoff


class PollOutcome(str, Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class PollResult(BaseModel):
    """Tagged result of one polling run."""
    outcome: PollOutcome
    tx_hash: str
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    attempts: int = 0

    @property
    def error(self) -> Optional[Union[ConfirmationTimeoutError, TransactionExecutionError]]:
        """The error matching a non-confirmed outcome, ``None`` when confirmed."""
        if self.outcome == PollOutcome.TIMED_OUT:
            return ConfirmationTimeoutError(
                "Transaction confirmation timeout. Check the explorer for status.",
                details={"txHash": self.tx_hash, "attempts": self.attempts},
            )
        if self.outcome == PollOutcome.FAILED:
            return TransactionExecutionError(
                "Transaction reverted on-chain",
                details={"txHash": self.tx_hash, "blockNumber": self.block_number},
            )
        return None


class ConfirmationPoller:
    """
    Wait for a transaction to confirm or fail.

    Example:
        poller = ConfirmationPoller(adapter.get_transaction_status)
        result = await poller.poll(tx_hash)
        if result.outcome == PollOutcome.TIMED_OUT:
            ...  # advisory: point the user at the explorer
    """

    def __init__(
        self,
        fetch_status: StatusFetcher,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.fetch_status = fetch_status
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def _read(self, tx_hash: str) -> TransactionReceiptStatus:
        try:
            status = await self.fetch_status(tx_hash)
        except TransactionNotFound:
            status = None
        except NetworkError as e:
            logger.warning(f"Status read for {tx_hash} failed, treating as pending: {e.message}")
            status = None
        return status or TransactionReceiptStatus(status=TransactionStatus.PENDING)

    async def poll(self, tx_hash: str) -> PollResult:
        delays = self.policy.delays()
        attempts = 0

        while attempts < self.policy.max_attempts:
            attempts += 1
            status = await self._read(tx_hash)

            if status.status == TransactionStatus.SUCCESS:
                logger.info(f"Transaction {tx_hash} confirmed in block {status.block_number}")
                return PollResult(
                    outcome=PollOutcome.CONFIRMED,
                    tx_hash=tx_hash,
                    block_number=status.block_number,
                    gas_used=status.gas_used,
                    attempts=attempts,
                )
            if status.status == TransactionStatus.FAILED:
                logger.error(f"Transaction {tx_hash} reverted in block {status.block_number}")
                return PollResult(
                    outcome=PollOutcome.FAILED,
                    tx_hash=tx_hash,
                    block_number=status.block_number,
                    gas_used=status.gas_used,
                    attempts=attempts,
                )

            delay = next(delays, None)
            if delay is None:
                break
            await self._sleep(delay)

        logger.warning(f"Transaction {tx_hash} still pending after {attempts} attempts")
        return PollResult(outcome=PollOutcome.TIMED_OUT, tx_hash=tx_hash, attempts=attempts)
