"""
Money Tracker - Core Ledger Package

The computational core of a personal finance tracker: accounts,
transactions, exchange rates and recurring schedules.

DESIGN PRINCIPLES:
1. Balances are derived from the transaction log, never stored as a running total
2. Historical transactions keep the exchange rate they were created with
3. Scheduled transactions affect nothing until they are executed
4. Every mutation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Money Tracker Team"
