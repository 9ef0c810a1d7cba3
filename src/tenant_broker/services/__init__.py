"""Service layer orchestrating sign-in and tenant discovery."""

from .discovery import DiscoveryResult, RealmDiscovery
from .events import DiscoveryEvent, DiscoveryEventKind, EventHook

__all__ = [
    "DiscoveryEvent",
    "DiscoveryEventKind",
    "DiscoveryResult",
    "EventHook",
    "RealmDiscovery",
]
