from __future__ import annotations

import base64
import json
import math
import time
from typing import Any, Callable, Mapping, Sequence

import msal

from tenant_broker.auth.token_cache import SharedTokenCache, TokenCacheStore
from tenant_broker.auth.types import AccessToken, Account, SignInResult
from tenant_broker.config.settings import Settings
from tenant_broker.management.errors import AuthenticationError
from tenant_broker.utils import CancellationToken, get_logger


logger = get_logger(__name__)

DeviceCodePrompt = Callable[[str], None]


class IdentityClient:
    """MSAL public client bound to one authority and the run's shared token store.

    Every instance built against the same store and client id sees the tokens
    and accounts written by the others, which is what lets a single interactive
    sign-in serve any number of tenant authorities.
    """

    def __init__(self, client_id: str, authority: str, store: TokenCacheStore) -> None:
        if not client_id:
            raise AuthenticationError(
                "Client ID must be provided before initializing authentication"
            )
        self._client_id = client_id
        self._authority = authority
        self._store = store
        self._cache = SharedTokenCache(store, partition_key=client_id)
        try:
            self._app = msal.PublicClientApplication(
                client_id=client_id,
                authority=authority,
                token_cache=self._cache,
            )
        except ValueError as exc:
            logger.error("Invalid MSAL configuration", authority=authority, error=str(exc))
            raise AuthenticationError(
                f"Invalid authority {authority!r}: {exc}", inner_error=exc
            ) from exc
        except Exception as exc:  # noqa: BLE001 - surface unexpected MSAL issues
            logger.exception("Failed to initialise MSAL client", authority=authority)
            raise AuthenticationError(
                f"Failed to initialize the MSAL client: {exc}", inner_error=exc
            ) from exc
        logger.debug("Configured MSAL PublicClientApplication", authority=authority)

    @classmethod
    def for_settings(
        cls,
        settings: Settings,
        store: TokenCacheStore,
        *,
        tenant_id: str | None = None,
    ) -> "IdentityClient":
        authority = (
            settings.tenant_authority(tenant_id) if tenant_id else settings.authority
        )
        return cls(settings.client_id, authority, store)

    @property
    def authority(self) -> str:
        return self._authority

    @property
    def tenant(self) -> str:
        """Last path segment of the authority, e.g. ``organizations`` or a tenant id."""
        return self._authority.rstrip("/").rsplit("/", 1)[-1]

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def store(self) -> TokenCacheStore:
        return self._store

    def sign_in_interactive(
        self,
        scopes: Sequence[str],
        *,
        cancellation_token: CancellationToken | None = None,
    ) -> SignInResult:
        options: dict[str, Any] = {}
        if cancellation_token:
            cancellation_token.raise_if_cancelled()
            remaining = cancellation_token.remaining()
            if remaining is not None:
                # MSAL gives up waiting for the browser redirect after this many seconds.
                options["timeout"] = max(1, math.ceil(remaining))
        result = self._app.acquire_token_interactive(
            scopes=list(scopes),
            prompt="select_account",
            **options,
        )
        if cancellation_token:
            cancellation_token.raise_if_cancelled()
        return self._complete_sign_in(result)

    def sign_in_device_code(
        self,
        scopes: Sequence[str],
        *,
        prompt: DeviceCodePrompt | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> SignInResult:
        if cancellation_token:
            cancellation_token.raise_if_cancelled()
        flow = self._app.initiate_device_flow(scopes=list(scopes))
        if "user_code" not in flow:
            raise AuthenticationError(
                f"Failed to start device code flow: {flow.get('error_description', flow)}",
                code=flow.get("error"),
            )
        (prompt or _log_device_prompt)(str(flow.get("message", "")))

        unsubscribe = None
        if cancellation_token:
            # MSAL stops polling once the flow reports itself expired.
            unsubscribe = cancellation_token.on_cancel(
                lambda _token: flow.__setitem__("expires_at", 0)
            )
        try:
            result = self._app.acquire_token_by_device_flow(flow)
        finally:
            if unsubscribe is not None:
                unsubscribe()
        if cancellation_token:
            cancellation_token.raise_if_cancelled()
        return self._complete_sign_in(result)

    def acquire_token_silent(
        self,
        scopes: Sequence[str],
        account: Account,
        *,
        claims: str | None = None,
    ) -> AccessToken:
        result = self._app.acquire_token_silent_with_error(
            list(scopes),
            account=account.as_msal(),
            claims_challenge=claims,
        )
        if result is None:
            raise AuthenticationError(
                f"No cached token for {account.username or account.home_account_id} "
                f"at {self._authority}",
                code="no_cached_token",
            )
        token = _process_result(result)
        logger.debug(
            "Acquired token silently",
            authority=self._authority,
            scopes=list(scopes),
            expires_on=token.expires_on,
        )
        return token

    def accounts(self) -> list[Account]:
        return [Account.from_msal(record) for record in self._app.get_accounts()]

    # Internal --------------------------------------------------------

    def _complete_sign_in(self, result: Mapping[str, Any] | None) -> SignInResult:
        if not result:
            raise AuthenticationError("Sign-in returned no result")
        token = _process_result(result)
        claims = result.get("id_token_claims")
        claims = claims if isinstance(claims, dict) else {}
        account = self._locate_account(result, claims)
        logger.info(
            "Signed in",
            authority=self._authority,
            username=account.username,
            tenant_id=claims.get("tid"),
        )
        return SignInResult(
            account=account,
            access_token=token,
            display_name=claims.get("name"),
            tenant_id=claims.get("tid"),
        )

    def _locate_account(
        self, result: Mapping[str, Any], claims: Mapping[str, Any]
    ) -> Account:
        records = list(self._app.get_accounts())
        home_account_id = _home_account_id(result)
        username = claims.get("preferred_username")
        if home_account_id:
            matches = [r for r in records if r.get("home_account_id") == home_account_id]
            if matches:
                return Account.from_msal(matches[0])
        if username:
            lowered = str(username).lower()
            matches = [r for r in records if str(r.get("username", "")).lower() == lowered]
            if matches:
                return Account.from_msal(matches[0])
        if records:
            return Account.from_msal(records[0])
        raise AuthenticationError("Sign-in succeeded but no account was written to the token cache")


def _process_result(result: Mapping[str, Any]) -> AccessToken:
    if "error" in result:
        error_code = result.get("error")
        error_desc = result.get("error_description", error_code)
        raise AuthenticationError(
            f"MSAL error: {error_desc}",
            code=str(error_code) if error_code else None,
            correlation_id=result.get("correlation_id"),
        )

    access_token = result.get("access_token")
    if not isinstance(access_token, str):
        raise AuthenticationError("MSAL response missing access token")

    expires_on = result.get("expires_on")
    expires_in = result.get("expires_in")
    if isinstance(expires_on, (int, str)):
        expiry = int(expires_on)
    elif isinstance(expires_in, (int, str)):
        expiry = int(time.time()) + int(expires_in)
    else:
        expiry = int(time.time()) + 3600
    return AccessToken(access_token, expiry)


def _home_account_id(result: Mapping[str, Any]) -> str | None:
    raw = result.get("client_info")
    if not isinstance(raw, str) or not raw:
        return None
    padded = raw + "=" * (-len(raw) % 4)
    try:
        info = json.loads(base64.urlsafe_b64decode(padded))
    except ValueError:
        return None
    uid, utid = info.get("uid"), info.get("utid")
    if uid and utid:
        return f"{uid}.{utid}"
    return None


def _log_device_prompt(message: str) -> None:
    logger.warning(message)


__all__ = ["DeviceCodePrompt", "IdentityClient"]
