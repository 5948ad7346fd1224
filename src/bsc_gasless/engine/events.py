"""
Event-driven relay pipeline with typed events and clear data flow.

Each relay state is entered through its own event. Events carry the request
and whatever the previous state established; handlers return the next event;
dependencies (adapter, guard, estimator, poller) are injected separately.
"""

import asyncio
import inspect
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Callable, Optional, Awaitable, AsyncGenerator

from pydantic import BaseModel, ConfigDict

from ..adapters.evm.adapter import FacilitatorAdapter
from ..adapters.evm.nonces import NonceGuard
from ..adapters.evm.estimator import BalanceGasEstimator
from ..adapters.evm.poller import ConfirmationPoller
from ..adapters.evm.constants import NetworkConfig, MIN_TRANSFER_VALUE
from ..adapters.evm.schemas import TransferRequest, TransferResult
from ..schemas.bases import RelayState
from .exceptions import RelayError

# ==================== Base Event ====================

class BaseEvent(ABC):
    """Common base of every relay event."""

    @abstractmethod
    def __repr__(self) -> str:
        """Short form used in relay logs."""
        pass


# ==================== Trigger Event (External) ====================

class TransferReceivedEvent(BaseModel, BaseEvent):
    """External trigger: a transfer request arrived at the relay."""
    request: TransferRequest

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return (
            f"TransferReceivedEvent(from={self.request.from_address}, "
            f"to={self.request.to_address}, amount={self.request.amount})"
        )


# ==================== State Events ====================

class RequestValidatedEvent(BaseModel, BaseEvent):
    """Validating passed: addresses well-formed, value parsed and above minimum."""
    request: TransferRequest
    value: int

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"RequestValidatedEvent(value={self.value})"


class SignatureVerifiedEvent(BaseModel, BaseEvent):
    """SignatureChecking passed."""
    request: TransferRequest
    value: int

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"SignatureVerifiedEvent(from={self.request.from_address})"


class NonceCheckedEvent(BaseModel, BaseEvent):
    """NonceChecking passed."""
    request: TransferRequest
    value: int

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"NonceCheckedEvent(nonce={self.request.transfer.nonce})"


class BalanceCheckedEvent(BaseModel, BaseEvent):
    """BalanceChecking passed."""
    request: TransferRequest
    value: int
    balance: int

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"BalanceCheckedEvent(balance={self.balance})"


class TimeWindowCheckedEvent(BaseModel, BaseEvent):
    """TimeWindowChecking passed; the request is ready to submit."""
    request: TransferRequest
    value: int

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return "TimeWindowCheckedEvent()"


class TransactionSubmittedEvent(BaseModel, BaseEvent):
    """Submitting done: the transaction hash exists and is the request's handle."""
    request: TransferRequest
    value: int
    tx_hash: str
    explorer_url: str

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"TransactionSubmittedEvent(tx_hash={self.tx_hash})"


# ==================== Result Events ====================

class TransferConfirmedEvent(BaseModel, BaseEvent):
    """Result: transaction mined with a successful status."""
    request: TransferRequest
    result: TransferResult

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"TransferConfirmedEvent(tx_hash={self.result.tx_hash}, block={self.result.block_number})"


class TransferFailedEvent(BaseModel, BaseEvent):
    """Result: the relay stopped in ``state`` with ``error``."""
    error: RelayError
    state: RelayState
    tx_hash: Optional[str] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"TransferFailedEvent(state={self.state.value}, code={self.error.code})"


class ConfirmationTimedOutEvent(BaseModel, BaseEvent):
    """Result: submitted but unconfirmed within the poll budget (advisory)."""
    request: TransferRequest
    tx_hash: str
    explorer_url: str
    attempts: int = 0

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"ConfirmationTimedOutEvent(tx_hash={self.tx_hash}, attempts={self.attempts})"


class BreakEvent(BaseModel, BaseEvent):
    """Stops the chain: no handler runs after it."""
    break_reason: str = ""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return "BreakEvent()"


# ==================== Dependencies Container ====================

@dataclass(frozen=True)
class Dependencies:
    """Collaborators shared by every relay handler (read-only)."""
    adapter: Optional[FacilitatorAdapter] = None
    nonce_guard: Optional[NonceGuard] = None
    estimator: Optional[BalanceGasEstimator] = None
    poller: Optional[ConfirmationPoller] = None
    network: Optional[NetworkConfig] = None
    clock: Callable[[], float] = field(default=time.time)
    min_transfer_value: int = MIN_TRANSFER_VALUE


# ==================== Event Bus ====================

RelayHandler = Callable[[BaseEvent, Dependencies], Awaitable[Optional[BaseEvent]]]
RelayHook = Callable[[BaseEvent, Dependencies], Awaitable[None]]


class EventBus:
    """Routes relay events to the handlers and hooks registered for their type."""

    def __init__(self) -> None:
        self._subscribers: Dict[type, list[RelayHandler]] = {}
        self._hooks: Dict[type, list[RelayHook]] = {}

    def subscribe(self, event_class: type[BaseEvent], handler: RelayHandler) -> None:
        """
        Attach ``handler`` to ``event_class``.

        Several handlers may share one event type; they run concurrently and
        each may return a follow-up event.

        Raises:
            TypeError: If ``handler`` is not an ``async def`` function.
        """
        if not inspect.iscoroutinefunction(handler):
            raise TypeError(f"Handler must be a coroutine function, got {type(handler).__name__}")

        self._subscribers.setdefault(event_class, []).append(handler)

    def hook(self, event_class: type[BaseEvent], hook_func: RelayHook) -> None:
        """
        Attach a side-effect hook to ``event_class``.
        Hooks finish before any handler starts; what they return is discarded.

        Raises:
            TypeError: If ``hook_func`` is not an ``async def`` function.
        """
        if not inspect.iscoroutinefunction(hook_func):
            raise TypeError(f"Hook must be a coroutine function, got {type(hook_func).__name__}")

        self._hooks.setdefault(event_class, []).append(hook_func)

    async def dispatch(self, event: BaseEvent, deps: Dependencies) -> AsyncGenerator[Optional[BaseEvent], None]:
        """
        Run the hooks for ``event``, then its handlers.

        Yields:
            Each handler's return value in completion order; nothing when the
            event type has no handlers (a terminal event).
        """
        await asyncio.gather(*(hook(event, deps) for hook in self._hooks.get(type(event), [])))

        pending = [handler(event, deps) for handler in self._subscribers.get(type(event), [])]
        for next_done in asyncio.as_completed(pending):
            yield await next_done
