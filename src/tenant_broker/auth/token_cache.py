from __future__ import annotations

import json
import sys
import threading
from typing import Any, Iterator, Protocol, TextIO

import msal

from tenant_broker.utils import get_logger


logger = get_logger(__name__)


class Marshaler(Protocol):
    def marshal(self) -> bytes: ...


class Unmarshaler(Protocol):
    def unmarshal(self, blob: bytes) -> None: ...


class TokenCacheStore:
    """Process-lifetime key/blob store backing every MSAL client of a run.

    Cache trouble never escapes this class: a failed marshal leaves the previous
    blob in place and a failed unmarshal behaves like a cache miss.
    """

    def __init__(self) -> None:
        self._store: dict[str, bytes] = {}
        self._lock = threading.RLock()

    def export(self, marshaler: Marshaler, key: str) -> None:
        with self._lock:
            try:
                blob = marshaler.marshal()
            except Exception as exc:  # noqa: BLE001 - a cache write must not abort sign-in
                logger.warning("Skipped token cache export", key=key, error=str(exc))
                return
            self._store[key] = bytes(blob)
            logger.debug("Exported token cache", key=key, size=len(blob))

    def replace(self, unmarshaler: Unmarshaler, key: str) -> None:
        with self._lock:
            blob = self._store.get(key)
            if blob is None:
                return
            try:
                unmarshaler.unmarshal(blob)
            except Exception as exc:  # noqa: BLE001 - corrupt entry degrades to a miss
                logger.warning("Ignored unreadable token cache entry", key=key, error=str(exc))

    def get(self, key: str) -> bytes | None:
        with self._lock:
            return self._store.get(key)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._store)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def render(self) -> str:
        """Return every key with its blob pretty-printed as JSON."""

        with self._lock:
            entries = list(self._store.items())
        sections = [f"Key: '{key}'\n{_pretty_blob(blob)}" for key, blob in entries]
        return "\n".join(sections)

    def dump(self, stream: TextIO | None = None) -> None:
        target = stream or sys.stdout
        rendered = self.render()
        if rendered:
            print(rendered, file=target)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._store

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())


def _pretty_blob(blob: bytes) -> str:
    text = blob.decode("utf-8", errors="replace")
    try:
        return json.dumps(json.loads(text), indent=1, sort_keys=True)
    except ValueError:
        return text


class SharedTokenCache(msal.SerializableTokenCache):
    """MSAL token cache whose state lives in a :class:`TokenCacheStore` partition.

    Each client gets its own instance, but all instances built for the same
    partition key read and write the same blob, so refresh tokens obtained by
    one tenant's client are found by the next.
    """

    def __init__(self, store: TokenCacheStore, partition_key: str) -> None:
        super().__init__()
        self._store = store
        self._partition_key = partition_key

    @property
    def store(self) -> TokenCacheStore:
        return self._store

    @property
    def partition_key(self) -> str:
        return self._partition_key

    def marshal(self) -> bytes:
        return self.serialize().encode("utf-8")

    def unmarshal(self, blob: bytes) -> None:
        self.deserialize(blob.decode("utf-8"))

    def search(self, credential_type: Any, *args: Any, **kwargs: Any):  # type: ignore[override]
        self._store.replace(self, self._partition_key)
        return super().search(credential_type, *args, **kwargs)

    def modify(
        self,
        credential_type: Any,
        old_entry: dict[str, Any],
        new_key_value_pairs: dict[str, Any] | None = None,
    ) -> None:
        self._store.replace(self, self._partition_key)
        super().modify(credential_type, old_entry, new_key_value_pairs)
        self._store.export(self, self._partition_key)


__all__ = [
    "Marshaler",
    "SharedTokenCache",
    "TokenCacheStore",
    "Unmarshaler",
]
