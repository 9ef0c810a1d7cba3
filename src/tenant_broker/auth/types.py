"""Authentication type definitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, NamedTuple, Sequence


class AccessToken(NamedTuple):
    """Represents an OAuth access token.

    Compatible with azure.core.credentials.AccessToken but avoids the dependency.
    """

    token: str
    """The token string."""

    expires_on: int
    """The token's expiration time in Unix time."""


TokenProvider = Callable[[Sequence[str]], AccessToken]


@dataclass(slots=True, frozen=True)
class Account:
    """Handle for the signed-in user, shared by every tenant-scoped client."""

    home_account_id: str
    environment: str
    username: str | None = None
    realm: str | None = None
    local_account_id: str | None = None
    authority_type: str | None = None

    @classmethod
    def from_msal(cls, record: Mapping[str, Any]) -> "Account":
        home_account_id = record.get("home_account_id")
        environment = record.get("environment")
        if not home_account_id or not environment:
            raise ValueError("MSAL account record is missing home_account_id/environment")
        return cls(
            home_account_id=str(home_account_id),
            environment=str(environment),
            username=record.get("username"),
            realm=record.get("realm"),
            local_account_id=record.get("local_account_id"),
            authority_type=record.get("authority_type"),
        )

    def as_msal(self) -> dict[str, Any]:
        """Return the account dict accepted by ``acquire_token_silent``."""
        record: dict[str, Any] = {
            "home_account_id": self.home_account_id,
            "environment": self.environment,
            "username": self.username,
            "realm": self.realm,
            "local_account_id": self.local_account_id,
            "authority_type": self.authority_type,
        }
        return {key: value for key, value in record.items() if value is not None}


@dataclass(slots=True, frozen=True)
class TokenRequestOptions:
    scopes: tuple[str, ...]
    claims: str | None = None
    tenant_id: str | None = None
    enable_cae: bool = False
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def for_scopes(cls, scopes: Sequence[str], **kwargs: Any) -> "TokenRequestOptions":
        return cls(scopes=tuple(scopes), **kwargs)


@dataclass(slots=True, frozen=True)
class SignInResult:
    account: Account
    access_token: AccessToken
    display_name: str | None = None
    tenant_id: str | None = None


__all__ = [
    "AccessToken",
    "Account",
    "SignInResult",
    "TokenProvider",
    "TokenRequestOptions",
]
