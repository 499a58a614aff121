"""
Payment Core

Closed-loop ledger and payment authorization engine: wallets, virtual cards,
merchant API keys and an atomic transaction ledger using Decimal arithmetic.
"""

__version__ = "1.0.0"
