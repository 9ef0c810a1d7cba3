from __future__ import annotations

from typing import Any, Sequence

from tenant_broker.auth.identity_client import IdentityClient
from tenant_broker.auth.types import (
    AccessToken,
    Account,
    TokenProvider,
    TokenRequestOptions,
)
from tenant_broker.management.errors import AuthenticationError
from tenant_broker.utils import CancellationToken


class SilentCredential:
    """Token credential that only ever acquires tokens silently.

    Mirrors the ``get_token`` shape of azure-core's ``TokenCredential``. Errors
    from the identity client are propagated unchanged: there is no retry and no
    fallback to an interactive prompt, and nothing is cached here.

    The credential is bound to its client's authority: a request naming a
    different ``tenant_id`` is refused rather than served from the wrong tenant.
    ``enable_cae`` is accepted for signature compatibility and ignored.
    """

    def __init__(
        self,
        client: IdentityClient,
        account: Account,
        *,
        cancellation_token: CancellationToken | None = None,
    ) -> None:
        self._client = client
        self._account = account
        self._cancellation_token = cancellation_token

    @property
    def client(self) -> IdentityClient:
        return self._client

    @property
    def account(self) -> Account:
        return self._account

    def get_token(
        self,
        *scopes: str,
        claims: str | None = None,
        tenant_id: str | None = None,
        enable_cae: bool = False,
        **kwargs: Any,
    ) -> AccessToken:
        options = TokenRequestOptions(
            scopes=tuple(scopes),
            claims=claims,
            tenant_id=tenant_id,
            enable_cae=enable_cae,
            extra=kwargs,
        )
        return self.get_token_for(options)

    def get_token_for(self, options: TokenRequestOptions) -> AccessToken:
        if not options.scopes:
            raise ValueError("At least one scope is required")
        if options.tenant_id and options.tenant_id.lower() != self._client.tenant.lower():
            raise AuthenticationError(
                f"Credential for {self._client.authority} cannot issue tokens "
                f"for tenant {options.tenant_id!r}",
                code="tenant_mismatch",
            )
        if self._cancellation_token:
            self._cancellation_token.raise_if_cancelled()
        return self._client.acquire_token_silent(
            options.scopes,
            self._account,
            claims=options.claims,
        )

    def token_provider(self) -> TokenProvider:
        def provider(scopes: Sequence[str]) -> AccessToken:
            return self.get_token(*scopes)

        return provider

    def __repr__(self) -> str:
        return (
            f"SilentCredential(authority={self._client.authority!r}, "
            f"account={self._account.username or self._account.home_account_id!r})"
        )


__all__ = ["SilentCredential"]
