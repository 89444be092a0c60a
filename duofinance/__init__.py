"""
duofinance - shared finances for couples.

Partner invitations and couple linking, recurring bill scheduling and a
small ledger, built on a swappable persistence gateway.
"""

__version__ = "0.1.0"
