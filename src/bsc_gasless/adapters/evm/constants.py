"""
BSC Network Configuration Management

Single source of truth for the networks the relay can run on: chain ids, RPC
endpoints, the USD1 token and wrapper contract addresses, their EIP-712
domains, and the relay-wide numeric limits. Also provides environment getters
and the Decimal based amount conversion helpers.
"""

import os
from typing import Dict, Optional
from decimal import Decimal, InvalidOperation
from pydantic import BaseModel, Field, field_validator

import dotenv
from eth_utils import to_checksum_address

from .standards import EIP712Domain, UINT256_MAX
from ...engine.exceptions import ConfigurationError, InvalidAmountError

dotenv.load_dotenv()


class NetworkConfig(BaseModel):
    """BSC network and contract deployment configuration."""
    name: str = Field(..., description="Network key (mainnet/testnet)")
    display_name: str = Field(..., description="Human-readable network name")
    chain_id: int
    rpc_url: str = Field(..., description="JSON-RPC endpoint URL")
    explorer_url: str = Field(..., description="Block explorer base URL")
    native_symbol: str = Field(default="BNB", description="Gas currency symbol")
    usd1: str = Field(..., description="USD1 token contract address")
    wrapper: str = Field(..., description="Gasless wrapper contract address")
    supports_permit: bool = Field(..., description="Whether the token implements EIP-2612 permit")
    token_symbol: str = "USD1"
    token_decimals: int = 18
    token_domain_name: str = Field(default="World Liberty Financial USD", description="EIP712 domain name of the token")
    token_domain_version: str = "1"
    wrapper_domain_name: str = Field(default="X402 BSC Wrapper", description="EIP712 domain name of the wrapper")
    wrapper_domain_version: str = "2"

    @field_validator("usd1", "wrapper")
    @classmethod
    def _checksummed(cls, value: str) -> str:
        return to_checksum_address(value)

    def wrapper_domain(self) -> EIP712Domain:
        """Domain that transfer authorizations are signed against."""
        return EIP712Domain(
            name=self.wrapper_domain_name,
            version=self.wrapper_domain_version,
            chainId=self.chain_id,
            verifyingContract=self.wrapper,
        )

    def token_domain(self) -> EIP712Domain:
        """Domain that EIP-2612 permits are signed against."""
        return EIP712Domain(
            name=self.token_domain_name,
            version=self.token_domain_version,
            chainId=self.chain_id,
            verifyingContract=self.usd1,
        )

    def explorer_tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/tx/{tx_hash}"


# ---------------------------------------------------------------------------
# Relay limits
# ---------------------------------------------------------------------------

#: Smallest transfer the relay accepts, in token units.
MIN_TRANSFER_AMOUNT: Decimal = Decimal("0.01")

#: Facilitator native balance below which submissions are refused (BNB).
MIN_FACILITATOR_BALANCE: Decimal = Decimal("0.01")

#: Gas limit = estimate * GAS_MARGIN_PERCENT // 100.
GAS_MARGIN_PERCENT: int = 120

#: Gas units assumed when on-chain estimation fails.
FALLBACK_GAS_UNITS: int = 150000
FALLBACK_GAS_UNITS_WITH_PERMIT: int = 200000

#: Gas price used when the node does not report one (3 gwei).
DEFAULT_GAS_PRICE_WEI: int = 3_000_000_000

#: Authorization validity and clock-skew tolerance, in seconds.
SIGNATURE_VALIDITY: int = 3600
CLOCK_SKEW_TOLERANCE: int = 60
PERMIT_DEADLINE: int = 3600

#: Confirmation polling schedule.
POLL_INTERVAL_SECONDS: float = 3.0
POLL_MAX_ATTEMPTS: int = 20

#: Native/USD price cache lifetime and last-resort price.
PRICE_CACHE_TTL_SECONDS: float = 60.0
FALLBACK_NATIVE_USD_PRICE: float = 600.0


# Raw network data. RPC endpoints can be overridden per network from the
# environment; contract addresses are fixed per deployment.
_NETWORKS_DATA: Dict[str, Dict] = {
    "mainnet": {
        "display_name": "BNB Smart Chain",
        "chain_id": 56,
        "rpc_env": "BSC_RPC_URL",
        "rpc_url": "https://bsc-dataseed.binance.org/",
        "explorer_url": "https://bscscan.com",
        "native_symbol": "BNB",
        "usd1": "0x8d0D000Ee44948FC98c9B98A4FA4921476f08B0d",
        "wrapper": "0x6F212f443Ba6BD5aeeF87e37DEe2480F95b75a36",
        "supports_permit": True,
    },
    "testnet": {
        "display_name": "BNB Smart Chain Testnet",
        "chain_id": 97,
        "rpc_env": "BSC_TESTNET_RPC_URL",
        "rpc_url": "https://data-seed-prebsc-1-s1.binance.org:8545/",
        "explorer_url": "https://testnet.bscscan.com",
        "native_symbol": "tBNB",
        "usd1": "0x004ba8e73b41750084b01edacc08c39662e262af",
        "wrapper": "0x9C21afb2B9C04aD3E31868234AD94D5b895c5e07",
        # Testnet USD1 does not implement permit
        "supports_permit": False,
    },
}


def get_network_config(name: Optional[str] = None) -> NetworkConfig:
    """
    Resolve the configuration for a network.

    Args:
        name: ``"mainnet"`` or ``"testnet"``. Defaults to the ``DEFAULT_NETWORK``
              environment variable, then ``"mainnet"``.

    Returns:
        NetworkConfig: Configuration with the RPC URL taken from the
        environment when the per-network variable is set.

    Raises:
        ConfigurationError: If the network name is unknown.
    """
    network = name or get_default_network_from_env()
    data = _NETWORKS_DATA.get(network)
    if data is None:
        raise ConfigurationError(
            f"Invalid network: {network}. Supported networks: {', '.join(supported_networks())}"
        )

    fields = {k: v for k, v in data.items() if k != "rpc_env"}
    fields["rpc_url"] = os.getenv(data["rpc_env"]) or data["rpc_url"]
    return NetworkConfig(name=network, **fields)


def supported_networks() -> list[str]:
    return list(_NETWORKS_DATA)


# ---------------------------------------------------------------------------
# Environment getters
# ---------------------------------------------------------------------------

def get_default_network_from_env() -> str:
    """Network key from ``DEFAULT_NETWORK`` (default ``mainnet``)."""
    return os.getenv("DEFAULT_NETWORK", "mainnet")


def get_private_key_from_env() -> Optional[str]:
    """
    Load the facilitator private key from ``FACILITATOR_PRIVATE_KEY``.

    The key pays gas for every relayed transfer. Store it in the environment
    or a ``.env`` file; never commit it.

    Returns:
        str: Private key, or None if not configured
    """
    return os.getenv("FACILITATOR_PRIVATE_KEY")


def get_request_timeout_from_env(default: int = 60) -> int:
    """RPC request timeout in seconds from ``RPC_REQUEST_TIMEOUT``."""
    raw = os.getenv("RPC_REQUEST_TIMEOUT")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"RPC_REQUEST_TIMEOUT must be an integer, got {raw!r}") from e


# ---------------------------------------------------------------------------
# Amount conversion
# ---------------------------------------------------------------------------

def amount_to_value(*, amount: float | int | str | Decimal, decimals: int) -> int:
    """Convert a human-readable token `amount` into smallest-unit integer `value`.

    Args:
        amount: Human-readable amount (e.g. "1.5" USD1). Accepts float/int/str/Decimal.
        decimals: Token decimals (18 for USD1).

    Returns:
        int: Smallest-unit integer value.

    Raises:
        InvalidAmountError: If the amount is not a finite positive number, cannot
            be represented in smallest units, or overflows uint256.
    """
    if not isinstance(decimals, int) or decimals < 0:
        raise ValueError("decimals must be a non-negative int")

    try:
        # str() avoids binary-float expansion (0.1 -> 0.1000000000000000055...)
        dec_amount = amount if isinstance(amount, Decimal) else Decimal(str(amount).strip())
    except (InvalidOperation, ValueError, TypeError) as e:
        raise InvalidAmountError(f"Invalid amount: {amount!r}") from e

    if not dec_amount.is_finite() or dec_amount <= 0:
        raise InvalidAmountError(f"Invalid amount: {amount!r}")

    # uint256 has at most 78 digits; also keeps huge exponents out of the scaling below
    if dec_amount.adjusted() + decimals > 77:
        raise InvalidAmountError(f"Amount {amount!r} exceeds the uint256 range")

    # Exact integer scaling, independent of the decimal context precision
    _, digits, exponent = dec_amount.as_tuple()
    coefficient = int("".join(map(str, digits)))
    shift = exponent + decimals
    if shift >= 0:
        value = coefficient * 10 ** shift
    elif -shift > len(digits) or coefficient % 10 ** -shift:
        raise InvalidAmountError(
            f"Amount {amount!r} has more than {decimals} decimal places"
        )
    else:
        value = coefficient // 10 ** -shift

    if value > UINT256_MAX:
        raise InvalidAmountError(f"Amount {amount!r} exceeds the uint256 range")
    return value


def value_to_amount(*, value: int | str | Decimal, decimals: int) -> Decimal:
    """Convert a smallest-unit integer `value` into a human-readable Decimal `amount`.

    Raises:
        ValueError: If value is negative or fractional.
    """
    if not isinstance(decimals, int) or decimals < 0:
        raise ValueError("decimals must be a non-negative int")

    try:
        dec_value = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValueError(f"Invalid value: {value!r}") from e

    if dec_value < 0:
        raise ValueError("value must be non-negative")

    if dec_value != dec_value.to_integral_value():
        raise ValueError("value must be an integer in smallest units")

    return dec_value / (Decimal(10) ** decimals)


def format_units(value: int, decimals: int = 18) -> str:
    """Render a base-unit integer as a plain decimal string (``"1.5"``, ``"0"``)."""
    amount = value_to_amount(value=value, decimals=decimals)
    text = format(amount.normalize(), "f")
    return text


#: Base-unit thresholds derived from the limits above.
MIN_TRANSFER_VALUE: int = amount_to_value(amount=MIN_TRANSFER_AMOUNT, decimals=18)
MIN_FACILITATOR_BALANCE_WEI: int = amount_to_value(amount=MIN_FACILITATOR_BALANCE, decimals=18)
