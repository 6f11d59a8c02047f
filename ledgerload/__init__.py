"""Synthetic load generator and throughput meter for multi-node ledgers."""

__version__ = "0.1.0"
