"""Authentication: shared token cache, MSAL clients and silent credentials."""

from .credential import SilentCredential
from .identity_client import IdentityClient
from .token_cache import Marshaler, SharedTokenCache, TokenCacheStore, Unmarshaler
from .types import (
    AccessToken,
    Account,
    SignInResult,
    TokenProvider,
    TokenRequestOptions,
)

__all__ = [
    "AccessToken",
    "Account",
    "IdentityClient",
    "Marshaler",
    "SharedTokenCache",
    "SignInResult",
    "SilentCredential",
    "TokenCacheStore",
    "TokenProvider",
    "TokenRequestOptions",
    "Unmarshaler",
]
