"""
Secure Finance - Source Package

A small personal-finance ledger: users sign in, hold a balance, send
money to each other, split bills and request payments, with a live
transaction feed.

DESIGN PRINCIPLES:
1. Validate everything before touching a balance
2. Either the whole operation commits or nothing is visible
3. Balances are never driven negative by the system itself
4. Every money movement is auditable
5. Storage and identity providers are swappable
"""

__version__ = "1.0.0"
__author__ = "Secure Finance Team"
