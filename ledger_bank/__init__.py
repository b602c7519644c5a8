"""
Ledger Bank

A ledger-backed account service with double-entry bookkeeping,
integer minor-unit balances, and deadlock-free concurrent transfers.
"""

__version__ = "1.0.0"
