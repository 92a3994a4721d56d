"""
Bank Ledger

A concurrency-safe ledger engine for customer accounts: deposits,
withdrawals, transfers, and loan and insurance applications whose approval
moves money atomically. Money is held as integer cents and every balance
change is recorded in an append-only transaction log.
"""

__version__ = "1.0.0"
