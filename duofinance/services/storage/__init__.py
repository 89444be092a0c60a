"""
Storage Services Package

Provides the abstract persistence gateway and its implementations.
The in-memory backend serves tests and local development; Google Sheets
is the hosted backend.
"""

from duofinance.services.storage.interface import (
    ConnectionError,
    DuplicateError,
    Filters,
    GatewayInterface,
    NotFoundError,
    Row,
    StorageError,
)
from duofinance.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsGateway,
)
from duofinance.services.storage.memory import InMemoryGateway

__all__ = [
    # Interface
    "GatewayInterface",
    "Filters",
    "Row",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "GoogleSheetsClient",
    "GoogleSheetsGateway",
    "InMemoryGateway",
]
