"""
USD1 ERC20 + Gasless Wrapper Smart Contract ABI Module

Minimal ABI fragments for the calls the relay makes. Each getter returns a
fresh list so callers can extend it without affecting other contracts.

Usage:
    from .ERC20_ABI import get_token_abi, get_wrapper_abi

    token = web3.eth.contract(address=network.usd1, abi=get_token_abi())
    wrapper = web3.eth.contract(address=network.wrapper, abi=get_wrapper_abi())
"""

from typing import Dict, Any, List


def get_balance_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for querying the USD1 token balance.

    Returns:
        List[Dict[str, Any]]: ABI for balanceOf function

    Example:
        contract = web3.eth.contract(address=token_address, abi=get_balance_abi())
        balance = await contract.functions.balanceOf(address).call()
    """
    return [
        {
            "name": "balanceOf",
            "type": "function",
            "stateMutability": "view",
            "inputs": [{"name": "account", "type": "address"}],
            "outputs": [{"name": "", "type": "uint256"}],
        }
    ]


def get_allowance_abi() -> List[Dict[str, Any]]:
    """Get ABI for ERC20 `allowance(owner, spender)`."""
    return [
        {
            "name": "allowance",
            "type": "function",
            "stateMutability": "view",
            "inputs": [
                {"name": "owner", "type": "address"},
                {"name": "spender", "type": "address"},
            ],
            "outputs": [{"name": "", "type": "uint256"}],
        }
    ]


def get_permit_nonces_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for EIP-2612 `nonces(owner)`.

    The token's permit nonce is a separate counter from the wrapper's
    authorization nonces and is needed to sign a permit.
    """
    return [
        {
            "name": "nonces",
            "type": "function",
            "stateMutability": "view",
            "inputs": [{"name": "owner", "type": "address"}],
            "outputs": [{"name": "", "type": "uint256"}],
        }
    ]


def get_token_abi() -> List[Dict[str, Any]]:
    """All token functions the relay and client use."""
    return get_balance_abi() + get_allowance_abi() + get_permit_nonces_abi()


def get_wrapper_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for the gasless wrapper contract.

    ``transferWithAuthorization`` takes the combined signature as one ``bytes``
    argument (65 bytes plain, 162 bytes with permit). ``authorizationState``
    reports whether a ``(account, nonce)`` pair has been consumed.

    Returns:
        List[Dict[str, Any]]: ABI entries for transferWithAuthorization,
        authorizationState and the AuthorizationUsed event.
    """
    return [
        {
            "name": "transferWithAuthorization",
            "type": "function",
            "stateMutability": "nonpayable",
            "inputs": [
                {"name": "from", "type": "address"},
                {"name": "to", "type": "address"},
                {"name": "value", "type": "uint256"},
                {"name": "validAfter", "type": "uint256"},
                {"name": "validBefore", "type": "uint256"},
                {"name": "nonce", "type": "bytes32"},
                {"name": "signature", "type": "bytes"},
            ],
            "outputs": [],
        },
        {
            "name": "authorizationState",
            "type": "function",
            "stateMutability": "view",
            "inputs": [
                {"name": "account", "type": "address"},
                {"name": "nonce", "type": "bytes32"},
            ],
            "outputs": [{"name": "", "type": "bool"}],
        },
        {
            "name": "AuthorizationUsed",
            "type": "event",
            "anonymous": False,
            "inputs": [
                {"name": "authorizer", "type": "address", "indexed": True},
                {"name": "nonce", "type": "bytes32", "indexed": True},
            ],
        },
    ]
