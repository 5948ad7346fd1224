"""
Client wallet providers.

The client signs authorizations with a local account. Where that account comes
from is decided once, by scanning the environment for the supported sources:

    PRIVATE_KEY  CLIENT_PRIVATE_KEY
    KEYSTORE     CLIENT_KEYSTORE_PATH + CLIENT_KEYSTORE_PASSWORD
    MNEMONIC     CLIENT_MNEMONIC (+ optional CLIENT_MNEMONIC_PATH)

Example:
    registry = WalletRegistry.discover()
    account = registry.default().load()
    account = registry.get(WalletKind.KEYSTORE).load()
"""

import os
import json
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount

from ..engine.exceptions import ConfigurationError

DEFAULT_DERIVATION_PATH = "m/44'/60'/0'/0/0"


class WalletKind(str, Enum):
    PRIVATE_KEY = "private_key"
    KEYSTORE = "keystore"
    MNEMONIC = "mnemonic"


@dataclass(frozen=True)
class WalletProvider:
    """A discovered account source; ``load`` builds the account on demand."""
    kind: WalletKind
    source: str
    loader: Callable[[], LocalAccount]

    def load(self) -> LocalAccount:
        return self.loader()


def _private_key_loader(private_key: str) -> Callable[[], LocalAccount]:
    return lambda: Account.from_key(private_key)


def _keystore_loader(path: str, password: str) -> Callable[[], LocalAccount]:
    def load() -> LocalAccount:
        try:
            with open(path, "r", encoding="utf-8") as f:
                keyfile = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read keystore {path}: {e}") from e
        try:
            return Account.from_key(Account.decrypt(keyfile, password))
        except ValueError as e:
            raise ConfigurationError(f"Cannot decrypt keystore {path}: {e}") from e
    return load


def _mnemonic_loader(mnemonic: str, path: str) -> Callable[[], LocalAccount]:
    def load() -> LocalAccount:
        Account.enable_unaudited_hdwallet_features()
        return Account.from_mnemonic(mnemonic, account_path=path)
    return load


class WalletRegistry:
    """Wallet providers found in one discovery pass, in preference order."""

    PREFERENCE = (WalletKind.PRIVATE_KEY, WalletKind.KEYSTORE, WalletKind.MNEMONIC)

    def __init__(self, providers: Optional[List[WalletProvider]] = None):
        self._providers: Dict[WalletKind, WalletProvider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: WalletProvider) -> None:
        self._providers[provider.kind] = provider

    @classmethod
    def discover(cls, env: Optional[Mapping[str, str]] = None) -> "WalletRegistry":
        """
        Build a registry from environment variables.

        Args:
            env: Mapping to read from (default: ``os.environ``).

        Returns:
            WalletRegistry: Possibly empty registry.
        """
        env = os.environ if env is None else env
        registry = cls()

        private_key = env.get("CLIENT_PRIVATE_KEY")
        if private_key:
            registry.register(WalletProvider(
                kind=WalletKind.PRIVATE_KEY,
                source="CLIENT_PRIVATE_KEY",
                loader=_private_key_loader(private_key),
            ))

        keystore_path = env.get("CLIENT_KEYSTORE_PATH")
        if keystore_path:
            registry.register(WalletProvider(
                kind=WalletKind.KEYSTORE,
                source=keystore_path,
                loader=_keystore_loader(keystore_path, env.get("CLIENT_KEYSTORE_PASSWORD", "")),
            ))

        mnemonic = env.get("CLIENT_MNEMONIC")
        if mnemonic:
            registry.register(WalletProvider(
                kind=WalletKind.MNEMONIC,
                source="CLIENT_MNEMONIC",
                loader=_mnemonic_loader(mnemonic, env.get("CLIENT_MNEMONIC_PATH", DEFAULT_DERIVATION_PATH)),
            ))

        return registry

    def kinds(self) -> List[WalletKind]:
        return [kind for kind in self.PREFERENCE if kind in self._providers]

    def get(self, kind: WalletKind) -> WalletProvider:
        provider = self._providers.get(kind)
        if provider is None:
            raise ConfigurationError(f"No wallet configured for {kind.value}")
        return provider

    def default(self) -> WalletProvider:
        """The most preferred available provider."""
        kinds = self.kinds()
        if not kinds:
            raise ConfigurationError(
                "No client wallet configured. Set CLIENT_PRIVATE_KEY, "
                "CLIENT_KEYSTORE_PATH or CLIENT_MNEMONIC."
            )
        return self._providers[kinds[0]]
