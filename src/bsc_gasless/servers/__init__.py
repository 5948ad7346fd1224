from .apps import GaslessServer
from .flows import setup_event_bus

__all__ = [
    "GaslessServer",
    "setup_event_bus",
]
