"""Simulated RPC network, checked encoding, key/value model and MapReduce."""

__version__ = "0.1.0"

__all__ = ["__version__"]