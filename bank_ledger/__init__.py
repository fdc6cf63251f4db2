"""
Bank Ledger

Transaction engine that moves money between accounts, applies configured
fees with Decimal arithmetic, and keeps an append-only statement trail
for every balance change.
"""

__version__ = "1.0.0"
