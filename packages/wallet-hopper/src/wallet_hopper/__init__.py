"""Wallet Hopper: payment compliance checks and remediation against recipient preferences."""

__version__ = "0.1.0"
