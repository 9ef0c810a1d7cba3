from __future__ import annotations

import io
import threading
import time

import pytest

from tenant_broker.auth import AccessToken, TokenCacheStore
from tenant_broker.config import SignInMode
from tenant_broker.management.errors import AuthenticationError
from tenant_broker.services import (
    DiscoveryEvent,
    DiscoveryEventKind,
    RealmDiscovery,
)
from tenant_broker.utils import CancellationError, CancellationTokenSource

from tests.factories import (
    HOME_ACCOUNT_ID,
    make_settings,
    make_sign_in_result,
    make_subscription,
    make_tenant,
    tenant_token_handler,
)
from tests.stubs import FakeManagementClient, StaticMarshaler, StubAppRegistry


def _client_factory(tenant_pages, subscriptions, tokens_seen: list[AccessToken]):
    def factory(token_provider, config):
        return FakeManagementClient(
            token_provider,
            config,
            tenant_pages=tenant_pages,
            subscriptions=subscriptions,
            tokens_seen=tokens_seen,
        )

    return factory


def _discovery(
    registry: StubAppRegistry,
    store: TokenCacheStore,
    tenant_ids: list[str],
    *,
    failing: set[str] | None = None,
    subscriptions_per_tenant: int = 2,
    tokens_seen: list[AccessToken] | None = None,
    dump_stream: io.StringIO | None = None,
    **settings_overrides: object,
) -> RealmDiscovery:
    registry.interactive_results.append(make_sign_in_result())
    registry.silent_handler = tenant_token_handler(failing)
    tenants = [make_tenant(tenant_id) for tenant_id in tenant_ids]
    # Two tenant pages to exercise paging through the root credential.
    tenant_pages = [tenants[:2], tenants[2:]]
    subscriptions = {
        tenant_id: [
            [make_subscription(tenant_id, index)]
            for index in range(subscriptions_per_tenant)
        ]
        for tenant_id in tenant_ids
    }
    return RealmDiscovery(
        make_settings(**settings_overrides),
        store=store,
        client_factory=_client_factory(
            tenant_pages,
            subscriptions,
            tokens_seen if tokens_seen is not None else [],
        ),
        dump_stream=dump_stream,
    )


@pytest.mark.asyncio
async def test_run_lists_every_tenant_and_subscription(
    stub_registry: StubAppRegistry, store: TokenCacheStore
) -> None:
    tokens: list[AccessToken] = []
    discovery = _discovery(
        stub_registry, store, ["t1", "t2", "t3"], tokens_seen=tokens
    )

    result = await discovery.run()

    assert result.account is not None
    assert result.account.home_account_id == HOME_ACCOUNT_ID
    assert [t.tenant_id for t in result.tenants] == ["t1", "t2", "t3"]
    assert [s.subscription_id for s in result.subscriptions] == [
        "t1-sub-0",
        "t1-sub-1",
        "t2-sub-0",
        "t2-sub-1",
        "t3-sub-0",
        "t3-sub-1",
    ]
    assert result.completed_tenants == ["t1", "t2", "t3"]
    assert [s.subscription_id for s in result.subscriptions_for("t2")] == [
        "t2-sub-0",
        "t2-sub-1",
    ]
    assert {token.token for token in tokens} == {
        "token-organizations",
        "token-t1",
        "token-t2",
        "token-t3",
    }


@pytest.mark.asyncio
async def test_tenant_and_subscription_lists_stay_separate(
    stub_registry: StubAppRegistry, store: TokenCacheStore
) -> None:
    discovery = _discovery(stub_registry, store, ["t1", "t2"], subscriptions_per_tenant=3)

    result = await discovery.run()

    assert len(result.tenants) == 2
    assert len(result.subscriptions) == 6
    assert result.tenants is not result.subscriptions
    assert all(t.tenant_id in {"t1", "t2"} for t in result.tenants)


@pytest.mark.asyncio
async def test_each_tenant_uses_its_own_authority(
    stub_registry: StubAppRegistry, store: TokenCacheStore
) -> None:
    discovery = _discovery(stub_registry, store, ["t1", "t2"])

    await discovery.run()

    authorities = [app.authority for app in stub_registry.apps]
    assert authorities[0] == "https://login.microsoftonline.com/organizations"
    assert "https://login.microsoftonline.com/t1" in authorities
    assert "https://login.microsoftonline.com/t2" in authorities
    assert all(app.token_cache.store is store for app in stub_registry.apps)
    assert [len(app.acquire_token_interactive_calls) for app in stub_registry.apps] == [
        1
    ] + [0] * (len(stub_registry.apps) - 1)


@pytest.mark.asyncio
async def test_silent_failure_aborts_remaining_tenants(
    stub_registry: StubAppRegistry, store: TokenCacheStore
) -> None:
    discovery = _discovery(
        stub_registry, store, ["t1", "t2", "t3", "t4", "t5"], failing={"t3"}
    )
    events: list[DiscoveryEvent] = []
    discovery.events.subscribe(events.append)

    with pytest.raises(AuthenticationError) as excinfo:
        await discovery.run()

    assert excinfo.value.code == "invalid_grant"
    assert excinfo.value.correlation_id == "corr-t3"
    started = [e.tenant_id for e in events if e.kind is DiscoveryEventKind.TENANT_STARTED]
    completed = [
        e.tenant_id for e in events if e.kind is DiscoveryEventKind.TENANT_COMPLETED
    ]
    assert started == ["t1", "t2", "t3"]
    assert completed == ["t1", "t2"]
    assert discovery.result.completed_tenants == ["t1", "t2"]
    assert {s.tenant_id for s in discovery.result.subscriptions} == {"t1", "t2"}
    assert stub_registry.for_authority("https://login.microsoftonline.com/t4") == []
    assert stub_registry.for_authority("https://login.microsoftonline.com/t5") == []


@pytest.mark.asyncio
async def test_events_follow_discovery_order(
    stub_registry: StubAppRegistry, store: TokenCacheStore
) -> None:
    discovery = _discovery(stub_registry, store, ["t1"], subscriptions_per_tenant=1)
    kinds: list[DiscoveryEventKind] = []
    discovery.events.subscribe(lambda event: kinds.append(event.kind))

    await discovery.run()

    assert kinds == [
        DiscoveryEventKind.SIGNED_IN,
        DiscoveryEventKind.TENANT_DISCOVERED,
        DiscoveryEventKind.TENANT_STARTED,
        DiscoveryEventKind.SUBSCRIPTION_DISCOVERED,
        DiscoveryEventKind.TENANT_COMPLETED,
    ]


@pytest.mark.asyncio
async def test_no_tenants_completes_without_subscription_requests(
    stub_registry: StubAppRegistry, store: TokenCacheStore
) -> None:
    discovery = _discovery(stub_registry, store, [])

    result = await discovery.run()

    assert result.tenants == []
    assert result.subscriptions == []
    assert len(stub_registry.apps) == 1


@pytest.mark.asyncio
async def test_failed_sign_in_stops_before_listing(
    stub_registry: StubAppRegistry, store: TokenCacheStore
) -> None:
    stub_registry.interactive_results.append(
        {"error": "access_denied", "error_description": "User declined"}
    )
    discovery = RealmDiscovery(make_settings(), store=store)

    with pytest.raises(AuthenticationError) as excinfo:
        await discovery.run()

    assert excinfo.value.code == "access_denied"
    assert discovery.result.account is None
    assert len(stub_registry.apps) == 1


@pytest.mark.asyncio
async def test_device_code_mode_prompts_once(
    stub_registry: StubAppRegistry, store: TokenCacheStore
) -> None:
    stub_registry.device_flow = {
        "user_code": "WXYZ-9876",
        "device_code": "device",
        "message": "Enter WXYZ-9876",
        "expires_at": 9_999_999_999,
    }
    stub_registry.device_flow_result = make_sign_in_result(access_token="device-token")
    stub_registry.silent_handler = tenant_token_handler()
    prompts: list[str] = []
    discovery = RealmDiscovery(
        make_settings(sign_in_mode=SignInMode.DEVICE_CODE),
        store=store,
        client_factory=_client_factory([[make_tenant("t1")]], {}, []),
        device_code_prompt=prompts.append,
    )

    result = await discovery.run()

    assert prompts == ["Enter WXYZ-9876"]
    assert [t.tenant_id for t in result.tenants] == ["t1"]
    assert result.subscriptions == []
    assert stub_registry.apps[0].acquire_token_interactive_calls == []


@pytest.mark.asyncio
async def test_dump_cache_writes_initial_and_final_snapshots(
    stub_registry: StubAppRegistry, store: TokenCacheStore
) -> None:
    store.export(StaticMarshaler(b'{"AccessToken": {}}'), "client-id")
    stream = io.StringIO()
    discovery = _discovery(
        stub_registry, store, ["t1"], dump_stream=stream, dump_cache=True
    )

    await discovery.run()

    output = stream.getvalue()
    assert output.index("Initial cache") < output.index("Final cache")
    assert output.count("=====") == 4
    assert "Key: 'client-id'" in output
    assert '"AccessToken": {}' in output


@pytest.mark.asyncio
async def test_dump_cache_disabled_writes_nothing(
    stub_registry: StubAppRegistry, store: TokenCacheStore
) -> None:
    stream = io.StringIO()
    discovery = _discovery(stub_registry, store, ["t1"], dump_stream=stream)

    await discovery.run()

    assert stream.getvalue() == ""


@pytest.mark.asyncio
async def test_cancelled_run_never_signs_in(
    stub_registry: StubAppRegistry, store: TokenCacheStore
) -> None:
    source = CancellationTokenSource()
    source.cancel(reason="deadline")
    discovery = _discovery(stub_registry, store, ["t1"])

    with pytest.raises(CancellationError):
        await discovery.run(source.token)

    assert stub_registry.apps[0].acquire_token_interactive_calls == []
    assert discovery.result.tenants == []



@pytest.mark.asyncio
async def test_tenants_are_listed_through_the_signed_in_client(
    stub_registry: StubAppRegistry, store: TokenCacheStore
) -> None:
    discovery = _discovery(stub_registry, store, ["t1"])

    await discovery.run()

    root_apps = stub_registry.for_authority(
        "https://login.microsoftonline.com/organizations"
    )
    assert len(root_apps) == 1
    assert len(root_apps[0].acquire_token_interactive_calls) == 1
    assert root_apps[0].acquire_token_silent_calls


@pytest.mark.asyncio
async def test_deadline_interrupts_unfinished_interactive_sign_in(
    stub_registry: StubAppRegistry, store: TokenCacheStore
) -> None:
    browser_closed = threading.Event()
    stub_registry.interactive_gate = browser_closed
    discovery = _discovery(stub_registry, store, ["t1"])
    events: list[DiscoveryEvent] = []
    discovery.events.subscribe(events.append)
    source = CancellationTokenSource()
    source.cancel_after(0.1, reason="deadline")
    started = time.monotonic()

    try:
        with pytest.raises(CancellationError):
            await discovery.run(source.token)
        elapsed = time.monotonic() - started
    finally:
        browser_closed.set()
        source.dispose()

    assert elapsed < 1.0
    assert discovery.result.account is None
    assert events == []
    assert len(stub_registry.apps) == 1
