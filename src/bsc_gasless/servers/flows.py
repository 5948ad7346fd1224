"""
Built-in event handlers for the gasless relay workflow.

Implements the relay state machine:
validation → signature check → nonce check → balance check → time window
→ submission → confirmation.

Every handler either returns the next state's event or a
``TransferFailedEvent`` naming the state it stopped in. The first failing
check ends the chain; nothing is retried.
"""

import logging
from functools import wraps

from ..engine.events import (
    EventBus,
    Dependencies,
    TransferReceivedEvent,
    RequestValidatedEvent,
    SignatureVerifiedEvent,
    NonceCheckedEvent,
    BalanceCheckedEvent,
    TimeWindowCheckedEvent,
    TransactionSubmittedEvent,
    TransferConfirmedEvent,
    TransferFailedEvent,
    ConfirmationTimedOutEvent,
)
from ..adapters.evm.verifies import is_valid_address, verify_transfer_authorization
from ..adapters.evm.constants import amount_to_value, format_units
from ..adapters.evm.poller import PollOutcome
from ..adapters.evm.schemas import TransferResult
from ..schemas.bases import RelayState
from ..engine.exceptions import (
    RelayError,
    SelfTransferError,
    BelowMinimumError,
    InvalidAddressError,
    InvalidSignatureError,
    NonceAlreadyUsedError,
    InsufficientBalanceError,
    AuthorizationExpiredError,
)

logger = logging.getLogger(__name__)


def relay_state(state: RelayState):
    """
    Run a handler as relay state ``state``.

    Relay errors raised by the handler become ``TransferFailedEvent(error, state)``.
    Any other exception is logged and wrapped in a generic ``RelayError`` (500).
    """
    def decorator(handler):
        @wraps(handler)
        async def wrapper(event, deps: Dependencies):
            logger.info(f"Relay state {state.value}: {event!r}")
            try:
                return await handler(event, deps)
            except RelayError as e:
                logger.info(f"Relay rejected in {state.value}: {e.code}: {e.message}")
                return TransferFailedEvent(error=e, state=state, tx_hash=getattr(event, "tx_hash", None))
            except Exception as e:
                logger.exception(f"Unexpected error in relay state {state.value}")
                return TransferFailedEvent(
                    error=RelayError(f"Unexpected error: {e}"),
                    state=state,
                    tx_hash=getattr(event, "tx_hash", None),
                )
        return wrapper
    return decorator


# ==================== Event Handlers ====================

@relay_state(RelayState.VALIDATING)
async def handle_transfer_received(
    event: TransferReceivedEvent,
    deps: Dependencies
) -> RequestValidatedEvent:
    """Self-transfer, then amount and minimum, then address format."""
    request = event.request

    if str(request.from_address).lower() == str(request.to_address).lower():
        raise SelfTransferError()

    value = amount_to_value(amount=request.amount, decimals=deps.network.token_decimals)
    if value < deps.min_transfer_value:
        raise BelowMinimumError(
            f"Minimum transfer amount is {format_units(deps.min_transfer_value)} {deps.network.token_symbol}",
            details={"minimum": format_units(deps.min_transfer_value), "amount": request.amount},
        )

    for address in (request.from_address, request.to_address):
        if not is_valid_address(address):
            raise InvalidAddressError(details={"address": address})

    return RequestValidatedEvent(request=request, value=value)


@relay_state(RelayState.SIGNATURE_CHECKING)
async def handle_request_validated(
    event: RequestValidatedEvent,
    deps: Dependencies
) -> SignatureVerifiedEvent:
    """Recover the transfer signer against the wrapper domain."""
    if not verify_transfer_authorization(event.request, event.value, deps.network.wrapper_domain()):
        raise InvalidSignatureError()
    return SignatureVerifiedEvent(request=event.request, value=event.value)


@relay_state(RelayState.NONCE_CHECKING)
async def handle_signature_verified(
    event: SignatureVerifiedEvent,
    deps: Dependencies
) -> NonceCheckedEvent:
    request = event.request
    if await deps.nonce_guard.is_used(request.from_address, request.transfer.nonce):
        raise NonceAlreadyUsedError(details={"nonce": request.transfer.nonce})
    return NonceCheckedEvent(request=request, value=event.value)


@relay_state(RelayState.BALANCE_CHECKING)
async def handle_nonce_checked(
    event: NonceCheckedEvent,
    deps: Dependencies
) -> BalanceCheckedEvent:
    balance = await deps.estimator.get_token_balance(event.request.from_address)
    if balance < event.value:
        raise InsufficientBalanceError(
            f"Insufficient {deps.network.token_symbol} balance",
            details={"balance": format_units(balance), "required": format_units(event.value)},
        )
    return BalanceCheckedEvent(request=event.request, value=event.value, balance=balance)


@relay_state(RelayState.TIME_WINDOW_CHECKING)
async def handle_balance_checked(
    event: BalanceCheckedEvent,
    deps: Dependencies
) -> TimeWindowCheckedEvent:
    """Inclusive window: ``validAfter <= now <= validBefore``."""
    auth = event.request.transfer
    now = int(deps.clock())
    window = {"validAfter": auth.valid_after, "validBefore": auth.valid_before, "now": now}

    if now < auth.valid_after:
        raise AuthorizationExpiredError("Signature is not yet valid", details=window)
    if now > auth.valid_before:
        raise AuthorizationExpiredError(details=window)

    return TimeWindowCheckedEvent(request=event.request, value=event.value)


@relay_state(RelayState.SUBMITTING)
async def handle_time_window_checked(
    event: TimeWindowCheckedEvent,
    deps: Dependencies
) -> TransactionSubmittedEvent:
    """Submit through the facilitator; permit path only where the token supports it."""
    request = event.request
    use_permit = request.permit is not None and deps.network.supports_permit
    if request.permit is not None and not use_permit:
        logger.info(f"Permit ignored: {deps.network.name} token does not support permit")

    tx_hash = await deps.adapter.submit_transfer(request, event.value, use_permit=use_permit)
    return TransactionSubmittedEvent(
        request=request,
        value=event.value,
        tx_hash=tx_hash,
        explorer_url=deps.network.explorer_tx_url(tx_hash),
    )


@relay_state(RelayState.AWAITING_RECEIPT)
async def handle_transaction_submitted(
    event: TransactionSubmittedEvent,
    deps: Dependencies
) -> TransferConfirmedEvent | TransferFailedEvent | ConfirmationTimedOutEvent:
    """Poll for the receipt of the submitted transaction."""
    result = await deps.poller.poll(event.tx_hash)

    if result.outcome == PollOutcome.CONFIRMED:
        return TransferConfirmedEvent(
            request=event.request,
            result=TransferResult(
                tx_hash=event.tx_hash,
                block_number=result.block_number,
                gas_used=result.gas_used,
                explorer_url=event.explorer_url,
            ),
        )

    if result.outcome == PollOutcome.FAILED:
        return TransferFailedEvent(
            error=result.error,
            state=RelayState.AWAITING_RECEIPT,
            tx_hash=event.tx_hash,
        )

    return ConfirmationTimedOutEvent(
        request=event.request,
        tx_hash=event.tx_hash,
        explorer_url=event.explorer_url,
        attempts=result.attempts,
    )


# ==================== Event Bus Setup ====================

def setup_event_bus() -> EventBus:
    """Initialize event bus with the relay state handlers."""
    event_bus = EventBus()

    event_bus.subscribe(TransferReceivedEvent, handle_transfer_received)
    event_bus.subscribe(RequestValidatedEvent, handle_request_validated)
    event_bus.subscribe(SignatureVerifiedEvent, handle_signature_verified)
    event_bus.subscribe(NonceCheckedEvent, handle_nonce_checked)
    event_bus.subscribe(BalanceCheckedEvent, handle_balance_checked)
    event_bus.subscribe(TimeWindowCheckedEvent, handle_time_window_checked)
    event_bus.subscribe(TransactionSubmittedEvent, handle_transaction_submitted)

    return event_bus
