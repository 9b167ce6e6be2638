from execution.forwarder import Forwarder

__all__ = [
    "Forwarder",
]
