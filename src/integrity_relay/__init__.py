"""Integrity Relay: backend verification relay for mobile integrity tokens."""

__version__ = "1.0.0"
