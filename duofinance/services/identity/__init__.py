"""Identity provider package."""

from duofinance.services.identity.provider import (
    IdentityError,
    IdentityProviderInterface,
    InMemoryIdentityProvider,
    UnknownUserError,
)

__all__ = [
    "IdentityError",
    "IdentityProviderInterface",
    "InMemoryIdentityProvider",
    "UnknownUserError",
]
