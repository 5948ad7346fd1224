from .evm import (
    FacilitatorAdapter,
    NonceGuard,
    BalanceGasEstimator,
    ConfirmationPoller,
    NetworkConfig,
    get_network_config,
)

__all__ = [
    "FacilitatorAdapter",
    "NonceGuard",
    "BalanceGasEstimator",
    "ConfirmationPoller",
    "NetworkConfig",
    "get_network_config",
]
