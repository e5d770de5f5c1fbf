"""Wallet, contract and aggregator helpers."""
