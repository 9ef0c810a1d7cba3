from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Callable, Generic, TypeVar

from tenant_broker.auth.types import Account
from tenant_broker.management.models import Subscription, Tenant
from tenant_broker.utils import get_logger


logger = get_logger(__name__)

T_co = TypeVar("T_co", covariant=True)


class DiscoveryEventKind(StrEnum):
    SIGNED_IN = "signed_in"
    TENANT_DISCOVERED = "tenant_discovered"
    TENANT_STARTED = "tenant_started"
    SUBSCRIPTION_DISCOVERED = "subscription_discovered"
    TENANT_COMPLETED = "tenant_completed"


@dataclass(slots=True, frozen=True)
class DiscoveryEvent:
    """Progress notification; only the fields relevant to ``kind`` are set."""

    kind: DiscoveryEventKind
    tenant_id: str | None = None
    tenant: Tenant | None = None
    subscription: Subscription | None = None
    account: Account | None = None


class EventHook(Generic[T_co]):
    """Observer list; a failing subscriber is logged and skipped."""

    def __init__(self) -> None:
        self._subscribers: list[Callable[[T_co], None]] = []

    def subscribe(self, callback: Callable[[T_co], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, payload: T_co) -> None:
        for callback in list(self._subscribers):
            try:
                callback(payload)
            except Exception:
                logger.exception("Discovery event subscriber failed", subscriber=repr(callback))

    def __len__(self) -> int:
        return len(self._subscribers)


__all__ = ["DiscoveryEvent", "DiscoveryEventKind", "EventHook"]
