import logging

from bsc_gasless.servers import GaslessServer
from bsc_gasless.engine.events import (
    TransactionSubmittedEvent,
    TransferConfirmedEvent,
    TransferFailedEvent,
    ConfirmationTimedOutEvent,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

# Reads FACILITATOR_PRIVATE_KEY, DEFAULT_NETWORK and BSC_RPC_URL from the environment / .env
app = GaslessServer(title="BSC Gasless Relay")


# Optional: Add event hooks for custom logic
@app.hook(TransactionSubmittedEvent)
async def on_submitted(event, deps):
    """Log when a transfer is broadcast."""
    print(f"Submitted: {event.explorer_url}")


@app.hook(TransferConfirmedEvent)
async def on_confirmed(event, deps):
    """Log when a transfer confirms."""
    print(f"Confirmed in block {event.result.block_number}: {event.request.amount} USD1 -> {event.request.to_address}")


@app.hook(TransferFailedEvent)
async def on_failed(event, deps):
    """Log when a transfer is rejected or reverts."""
    print(f"Failed in {event.state.value}: {event.error.code} {event.error.message}")


@app.hook(ConfirmationTimedOutEvent)
async def on_timeout(event, deps):
    print(f"Still pending after {event.attempts} polls: {event.explorer_url}")


if __name__ == "__main__":
    app.serve(host="0.0.0.0", port=3000, log_level="info")
