from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass, field
from typing import Callable, TextIO

from tenant_broker.auth import (
    Account,
    IdentityClient,
    SignInResult,
    SilentCredential,
    TokenCacheStore,
    TokenProvider,
)
from tenant_broker.auth.identity_client import DeviceCodePrompt
from tenant_broker.config.settings import Settings, SignInMode
from tenant_broker.management import (
    ManagementClient,
    ManagementClientConfig,
    Subscription,
    Tenant,
    collect,
)
from tenant_broker.services.events import DiscoveryEvent, DiscoveryEventKind, EventHook
from tenant_broker.utils import CancellationToken, await_cancellable, get_logger


logger = get_logger(__name__)

IdentityFactory = Callable[[str | None], IdentityClient]
ClientFactory = Callable[[TokenProvider, ManagementClientConfig], ManagementClient]


@dataclass(slots=True)
class DiscoveryResult:
    """Everything found so far; tenants and subscriptions are kept apart."""

    account: Account | None = None
    tenants: list[Tenant] = field(default_factory=list)
    subscriptions: list[Subscription] = field(default_factory=list)
    completed_tenants: list[str] = field(default_factory=list)

    def subscriptions_for(self, tenant_id: str) -> list[Subscription]:
        return [sub for sub in self.subscriptions if sub.tenant_id == tenant_id]


class RealmDiscovery:
    """Sign in once, list tenants, then list each tenant's subscriptions silently.

    The first failure of any kind ends the run and is re-raised; ``result`` keeps
    whatever was gathered before it.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        store: TokenCacheStore | None = None,
        identity_factory: IdentityFactory | None = None,
        client_factory: ClientFactory | None = None,
        device_code_prompt: DeviceCodePrompt | None = None,
        dump_stream: TextIO | None = None,
    ) -> None:
        self._settings = settings
        self._store = store if store is not None else TokenCacheStore()
        self._identity_factory = identity_factory or self._default_identity_factory
        self._client_factory = client_factory or ManagementClient
        self._device_code_prompt = device_code_prompt
        self._dump_stream = dump_stream
        self._client_config = ManagementClientConfig.from_settings(settings)
        self.events: EventHook[DiscoveryEvent] = EventHook()
        self.result = DiscoveryResult()
        self._root: IdentityClient | None = None

    @property
    def store(self) -> TokenCacheStore:
        return self._store

    async def run(
        self, cancellation_token: CancellationToken | None = None
    ) -> DiscoveryResult:
        self.result = DiscoveryResult()
        sign_in = await self.sign_in(cancellation_token)
        self._dump_cache("Initial cache")

        # Tenants are listed through the same client that signed in.
        root_credential = SilentCredential(
            self._root_client(), sign_in.account, cancellation_token=cancellation_token
        )
        await self.discover_tenants(root_credential, cancellation_token)

        for tenant in list(self.result.tenants):
            await self.discover_subscriptions(
                tenant.tenant_id, sign_in.account, cancellation_token
            )

        self._dump_cache("Final cache")
        logger.info(
            "Discovery complete",
            tenants=len(self.result.tenants),
            subscriptions=len(self.result.subscriptions),
        )
        return self.result

    async def sign_in(
        self, cancellation_token: CancellationToken | None = None
    ) -> SignInResult:
        root = self._root_client()
        scopes = list(self._settings.management_scopes)
        if self._settings.sign_in_mode is SignInMode.DEVICE_CODE:
            pending = asyncio.to_thread(
                root.sign_in_device_code,
                scopes,
                prompt=self._device_code_prompt,
                cancellation_token=cancellation_token,
            )
        else:
            pending = asyncio.to_thread(
                root.sign_in_interactive,
                scopes,
                cancellation_token=cancellation_token,
            )
        # A deadline abandons the wait; the worker thread ends on its own MSAL timeout.
        outcome = await await_cancellable(pending, cancellation_token)
        self.result.account = outcome.account
        self.events.emit(
            DiscoveryEvent(DiscoveryEventKind.SIGNED_IN, account=outcome.account)
        )
        return outcome

    async def discover_tenants(
        self,
        credential: SilentCredential,
        cancellation_token: CancellationToken | None = None,
    ) -> list[Tenant]:
        def record(tenant: Tenant) -> None:
            logger.info(
                "Discovered tenant",
                tenant_id=tenant.tenant_id,
                display_name=tenant.display_name,
            )
            self.result.tenants.append(tenant)
            self.events.emit(
                DiscoveryEvent(
                    DiscoveryEventKind.TENANT_DISCOVERED,
                    tenant_id=tenant.tenant_id,
                    tenant=tenant,
                )
            )

        async with self._client_factory(
            credential.token_provider(), self._client_config
        ) as client:
            tenants = await collect(
                client.tenants_pager(), cancellation_token, on_item=record
            )
        logger.info("Discovered tenants", count=len(tenants))
        return tenants

    async def discover_subscriptions(
        self,
        tenant_id: str,
        account: Account,
        cancellation_token: CancellationToken | None = None,
    ) -> list[Subscription]:
        self.events.emit(
            DiscoveryEvent(DiscoveryEventKind.TENANT_STARTED, tenant_id=tenant_id)
        )
        logger.info("Listing subscriptions", tenant_id=tenant_id)

        def record(subscription: Subscription) -> None:
            logger.info(
                "Discovered subscription",
                tenant_id=tenant_id,
                subscription_id=subscription.subscription_id,
                display_name=subscription.display_name,
            )
            self.result.subscriptions.append(subscription)
            self.events.emit(
                DiscoveryEvent(
                    DiscoveryEventKind.SUBSCRIPTION_DISCOVERED,
                    tenant_id=tenant_id,
                    subscription=subscription,
                )
            )

        credential = self._credential(tenant_id, account, cancellation_token)
        async with self._client_factory(
            credential.token_provider(), self._client_config
        ) as client:
            subscriptions = await collect(
                client.subscriptions_pager(), cancellation_token, on_item=record
            )

        self.result.completed_tenants.append(tenant_id)
        self.events.emit(
            DiscoveryEvent(DiscoveryEventKind.TENANT_COMPLETED, tenant_id=tenant_id)
        )
        return subscriptions

    # Internal --------------------------------------------------------

    def _root_client(self) -> IdentityClient:
        if self._root is None:
            self._root = self._identity_factory(None)
        return self._root

    def _credential(
        self,
        tenant_id: str,
        account: Account,
        cancellation_token: CancellationToken | None,
    ) -> SilentCredential:
        client = self._identity_factory(tenant_id)
        return SilentCredential(client, account, cancellation_token=cancellation_token)

    def _default_identity_factory(self, tenant_id: str | None) -> IdentityClient:
        return IdentityClient.for_settings(
            self._settings, self._store, tenant_id=tenant_id
        )

    def _dump_cache(self, title: str) -> None:
        if not self._settings.dump_cache:
            return
        logger.debug("Dumping token cache", title=title, entries=len(self._store))
        stream = self._dump_stream or sys.stdout
        print(f"{title}\n=====", file=stream)
        self._store.dump(stream)
        print("=====", file=stream)


__all__ = [
    "ClientFactory",
    "DiscoveryResult",
    "IdentityFactory",
    "RealmDiscovery",
]
