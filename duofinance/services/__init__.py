"""Services package: external collaborators behind swappable interfaces."""

from duofinance.services.email import (
    EmailDispatchError,
    EmailDispatcherInterface,
    RecordingEmailDispatcher,
    ResendEmailDispatcher,
)
from duofinance.services.identity import (
    IdentityProviderInterface,
    InMemoryIdentityProvider,
)
from duofinance.services.kv import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStoreInterface,
)
from duofinance.services.storage import (
    ConnectionError,
    DuplicateError,
    GatewayInterface,
    GoogleSheetsClient,
    GoogleSheetsGateway,
    InMemoryGateway,
    NotFoundError,
    StorageError,
)

__all__ = [
    # Email
    "EmailDispatchError",
    "EmailDispatcherInterface",
    "RecordingEmailDispatcher",
    "ResendEmailDispatcher",
    # Identity
    "IdentityProviderInterface",
    "InMemoryIdentityProvider",
    # Key-value
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueStoreInterface",
    # Storage
    "ConnectionError",
    "DuplicateError",
    "GatewayInterface",
    "GoogleSheetsClient",
    "GoogleSheetsGateway",
    "InMemoryGateway",
    "NotFoundError",
    "StorageError",
]
