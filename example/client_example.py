import asyncio

import httpx

from bsc_gasless.clients import GaslessClient
from bsc_gasless.engine.exceptions import RelayError

recipient = "0x1234567890123456789012345678901234567890"  # Replace with actual recipient


async def main():
    # The signing wallet is discovered from CLIENT_PRIVATE_KEY, CLIENT_KEYSTORE_PATH or CLIENT_MNEMONIC
    async with GaslessClient(
        base_url="http://localhost:3000",
        timeout=httpx.Timeout(60.0, read=120.0),
    ) as client:
        print("Health:", await client.health())
        print("Balance:", await client.balance())
        print("Estimate:", await client.estimate(recipient, "1"))

        try:
            result = await client.transfer(recipient, "1")
        except RelayError as e:
            print(f"Transfer rejected: {e.code} {e.message} {e.details or ''}")
            return None

        if result.get("status") == "pending":
            print("Pending, polling status...")
            poll = await client.wait_for_confirmation(result["txHash"])
            print("Outcome:", poll.outcome.value)
        return result


if __name__ == "__main__":
    response = asyncio.run(main())
    print("Response:", response)
