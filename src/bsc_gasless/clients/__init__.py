"""
Client module for the gasless relay.

Signs transfer authorizations locally and submits them to a relay server.
"""

from .http_client import GaslessClient, error_from_response
from .wallets import WalletKind, WalletProvider, WalletRegistry

__all__ = ["GaslessClient", "error_from_response", "WalletKind", "WalletProvider", "WalletRegistry"]
