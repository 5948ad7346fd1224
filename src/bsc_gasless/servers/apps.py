"""
Gasless Relay Server - Event-driven FastAPI wrapper.

Exposes the relay over HTTP:

    POST /transfer          run the relay chain for a signed authorization
    POST /estimate          project gas cost of a transfer
    GET  /status/{txHash}   receipt status of a submitted transaction
    GET  /balance/{address} USD1 balance of an address
    GET  /health            facilitator gas status and contract info
"""

import re
import time
import logging
from typing import Optional, Callable

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from ..engine.events import (
    EventBus,
    Dependencies,
    BaseEvent,
    TransferReceivedEvent,
    TransactionSubmittedEvent,
    TransferConfirmedEvent,
    TransferFailedEvent,
    ConfirmationTimedOutEvent,
)
from ..engine.executors import EventChain
from ..engine.exceptions import (
    RelayError,
    ValidationError,
    InvalidAddressError,
)
from ..adapters.evm.adapter import FacilitatorAdapter
from ..adapters.evm.nonces import NonceGuard
from ..adapters.evm.estimator import BalanceGasEstimator
from ..adapters.evm.poller import ConfirmationPoller
from ..adapters.evm.constants import NetworkConfig, amount_to_value, value_to_amount, format_units
from ..adapters.evm.schemas import TransferRequest
from ..adapters.evm.verifies import is_valid_address
from ..schemas.https import (
    ErrorResponse,
    TransferResponse,
    PendingTransferResponse,
    EstimateRequest,
    EstimateResponse,
    StatusResponse,
    BalanceResponse,
    ContractsInfo,
    HealthResponse,
)
from .flows import setup_event_bus

logger = logging.getLogger(__name__)

TX_HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")


def _error_response(
    error: RelayError,
    tx_hash: Optional[str] = None,
    explorer_url: Optional[str] = None,
) -> JSONResponse:
    body = ErrorResponse(
        error=error.message,
        code=error.code,
        details=error.details or None,
        tx_hash=tx_hash,
        explorer_url=explorer_url,
    )
    return JSONResponse(status_code=error.status_code, content=body.to_dict())


def _bad_body(e: Exception) -> JSONResponse:
    details = None
    if isinstance(e, PydanticValidationError):
        details = {"errors": e.errors(include_url=False, include_context=False, include_input=False)}
    return _error_response(ValidationError("Invalid request body", details=details))


class GaslessServer(FastAPI):
    """FastAPI server relaying gasless USD1 transfers."""

    def __init__(
        self,
        adapter: Optional[FacilitatorAdapter] = None,
        network: Optional[NetworkConfig] = None,
        private_key: Optional[str] = None,
        nonce_guard: Optional[NonceGuard] = None,
        estimator: Optional[BalanceGasEstimator] = None,
        poller: Optional[ConfirmationPoller] = None,
        wait_for_confirmation: bool = True,
        clock: Callable[[], float] = time.time,
        **fastapi_kwargs
    ):
        """Initialize the relay server.

        Args:
            adapter: Facilitator adapter (default: built from ``private_key``/env)
            network: Network configuration (default: the adapter's network)
            private_key: Facilitator key, used only when ``adapter`` is not given
            nonce_guard: Replay pre-check (default: bound to the adapter)
            estimator: Balance/gas estimator (default: bound to the adapter)
            poller: Confirmation poller (default: polls the adapter's receipts)
            wait_for_confirmation: If False, /transfer answers 202 as soon as the
                transaction hash exists and polling continues in the background
            clock: Time source for the authorization window check
            **fastapi_kwargs: FastAPI arguments (title, version, etc.)
        """
        self.adapter = adapter or FacilitatorAdapter(private_key=private_key, network=network)
        self.network = network or self.adapter.network
        self.depends = Dependencies(
            adapter=self.adapter,
            nonce_guard=nonce_guard or NonceGuard(self.adapter),
            estimator=estimator or BalanceGasEstimator(self.adapter, self.network),
            poller=poller or ConfirmationPoller(self.adapter.get_transaction_status),
            network=self.network,
            clock=clock,
        )
        self.event_bus: EventBus = setup_event_bus()
        self.wait_for_confirmation = wait_for_confirmation

        fastapi_kwargs.setdefault("title", "BSC Gasless Relay")
        super().__init__(**fastapi_kwargs)

        self._setup_transfer_endpoint()
        self._setup_estimate_endpoint()
        self._setup_status_endpoint()
        self._setup_balance_endpoint()
        self._setup_health_endpoint()

    def subscribe(self, event_class: type[BaseEvent], handler: Callable) -> None:
        """Register event handler.

        Args:
            event_class: Event type to handle
            handler: Async function(event, deps) -> Optional[BaseEvent]

        Example:
            ```python
            async def notify(event: TransferConfirmedEvent, deps: Dependencies):
                await webhook.post(event.result.to_dict())
                return None

            app.subscribe(TransferConfirmedEvent, notify)
            ```
        """
        self.event_bus.subscribe(event_class, handler)

    def add_hook(self, event_class: type[BaseEvent], hook: Callable) -> None:
        """Register event hook for side effects.

        Args:
            event_class: Event type to hook into
            hook: Async function(event, deps) -> None
        """
        self.event_bus.hook(event_class, hook)

    def hook(self, event_class: type[BaseEvent]) -> Callable:
        """Decorator for registering event hooks.

        Example:
            @app.hook(TransferFailedEvent)
            async def on_failed(event, deps):
                metrics.increment(event.error.code)
        """
        def decorator(hook_func: Callable) -> Callable:
            self.event_bus.hook(event_class, hook_func)
            return hook_func
        return decorator

    def serve(self, host: str = "0.0.0.0", port: int = 3000, **uvicorn_kwargs) -> None:
        """Run the server with uvicorn (blocking)."""
        uvicorn.run(self, host=host, port=port, **uvicorn_kwargs)

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def _pending(self, tx_hash: str, explorer_url: str, message: Optional[str] = None) -> JSONResponse:
        body = PendingTransferResponse(tx_hash=tx_hash, explorer_url=explorer_url)
        if message:
            body = body.model_copy(update={"message": message})
        return JSONResponse(status_code=202, content=body.to_dict())

    def _setup_transfer_endpoint(self, path: str = "/transfer") -> None:
        @self.post(path)
        async def transfer(request: Request):
            """Relay a signed transfer authorization."""
            try:
                payload = await request.json()
                transfer_request = TransferRequest.model_validate(payload)
            except (ValueError, PydanticValidationError) as e:
                return _bad_body(e)

            event_chain = EventChain(self.event_bus, self.depends)
            executor = event_chain.execute(TransferReceivedEvent(request=transfer_request))

            async for event in executor:
                if isinstance(event, TransferFailedEvent):
                    # tx_hash is set once the transaction was broadcast
                    explorer_url = self.network.explorer_tx_url(event.tx_hash) if event.tx_hash else None
                    return _error_response(event.error, event.tx_hash, explorer_url)

                if isinstance(event, TransactionSubmittedEvent) and not self.wait_for_confirmation:
                    return self._pending(event.tx_hash, event.explorer_url)

                if isinstance(event, TransferConfirmedEvent):
                    result = event.result
                    return JSONResponse(
                        status_code=200,
                        content=TransferResponse(
                            tx_hash=result.tx_hash,
                            block_number=result.block_number,
                            gas_used=result.gas_used,
                            explorer_url=result.explorer_url,
                            from_address=transfer_request.from_address,
                            to_address=transfer_request.to_address,
                            amount=transfer_request.amount,
                        ).to_dict()
                    )

                if isinstance(event, ConfirmationTimedOutEvent):
                    return self._pending(
                        event.tx_hash,
                        event.explorer_url,
                        message="Transaction confirmation timeout. Check the explorer for status.",
                    )

            return _error_response(RelayError("Transfer processing failed"))

    def _setup_estimate_endpoint(self, path: str = "/estimate") -> None:
        @self.post(path)
        async def estimate(request: Request):
            """Project the gas cost of relaying a transfer."""
            try:
                payload = await request.json()
                estimate_request = EstimateRequest.model_validate(payload)
            except (ValueError, PydanticValidationError) as e:
                return _bad_body(e)

            try:
                for address in (estimate_request.from_address, estimate_request.to_address):
                    if not is_valid_address(address):
                        raise InvalidAddressError(details={"address": address})
                value = amount_to_value(amount=estimate_request.amount, decimals=self.network.token_decimals)

                has_permit = estimate_request.has_permit is True and self.network.supports_permit
                gas = await self.depends.estimator.estimate_transfer(
                    estimate_request.from_address,
                    estimate_request.to_address,
                    value,
                    has_permit=has_permit,
                )
                native_price = await self.depends.estimator.native_usd_price()
            except RelayError as e:
                return _error_response(e)

            total_native = value_to_amount(value=gas.total_cost_wei, decimals=18)
            return EstimateResponse(
                gas_units=str(gas.gas_units),
                gas_price=f"{format_units(gas.gas_price_wei, 9)} gwei",
                total_cost_native=format_units(gas.total_cost_wei),
                total_cost_usd=f"{float(total_native) * native_price:.2f}",
                has_permit=has_permit,
                network=self.network.display_name,
            ).to_dict()

    def _setup_status_endpoint(self, path: str = "/status/{tx_hash}") -> None:
        @self.get(path)
        async def status(tx_hash: str):
            """Receipt status of a submitted transaction."""
            if not TX_HASH_RE.match(tx_hash):
                return _error_response(ValidationError("Invalid transaction hash", details={"txHash": tx_hash}))

            try:
                receipt = await self.adapter.get_transaction_status(tx_hash)
            except RelayError as e:
                return _error_response(e)

            return StatusResponse(
                status=receipt.status,
                message=receipt.message,
                block_number=receipt.block_number,
                gas_used=receipt.gas_used,
                explorer_url=self.network.explorer_tx_url(tx_hash),
            ).to_dict()

    def _setup_balance_endpoint(self, path: str = "/balance/{address}") -> None:
        @self.get(path)
        async def balance(address: str):
            """USD1 balance of an address."""
            if not is_valid_address(address):
                return _error_response(InvalidAddressError(details={"address": address}))

            try:
                raw = await self.depends.estimator.get_token_balance(address)
            except RelayError as e:
                return _error_response(e)
            except Exception as e:
                logger.error(f"Balance lookup failed for {address}: {e}")
                return _error_response(RelayError(f"Failed to get balance: {e}"))

            amount = value_to_amount(value=raw, decimals=self.network.token_decimals)
            return BalanceResponse(
                address=address,
                balance=format_units(raw, self.network.token_decimals),
                formatted=f"{amount:.2f} {self.network.token_symbol}",
            ).to_dict()

    def _setup_health_endpoint(self, path: str = "/health") -> None:
        @self.get(path)
        async def health():
            """Facilitator gas status and contract addresses."""
            try:
                native = await self.adapter.get_native_balance()
            except Exception as e:
                logger.error(f"Health check failed: {e}")
                return JSONResponse(status_code=500, content={"status": "error", "error": str(e)})

            return HealthResponse(
                facilitator=self.adapter.wallet_address,
                facilitator_balance=f"{format_units(native)} {self.network.native_symbol}",
                has_minimum_balance=self.adapter.has_minimum_balance(native),
                contracts_info=ContractsInfo(
                    usd1=self.network.usd1,
                    wrapper=self.network.wrapper,
                    explorer=self.network.explorer_url,
                    chain_id=self.network.chain_id,
                    network=self.network.name,
                ),
                timestamp=int(time.time()),
            ).to_dict()
