from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Generic, Protocol, TypeVar

from pydantic import ValidationError

from tenant_broker.management.errors import EnumerationError, ErrorCategory
from tenant_broker.management.models import ArmBaseModel
from tenant_broker.utils import CancellationToken, get_logger


logger = get_logger(__name__)

T = TypeVar("T")
ModelT = TypeVar("ModelT", bound=ArmBaseModel)


@dataclass(slots=True)
class Page(Generic[T]):
    items: list[T] = field(default_factory=list)
    next_link: str | None = None


class PageSource(Protocol[T]):
    """Sequential page producer; ``has_more`` turns false after the last page."""

    @property
    def has_more(self) -> bool: ...

    async def next_page(
        self, cancellation_token: CancellationToken | None = None
    ) -> Page[T]: ...


class JsonFetcher(Protocol):
    async def request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> dict[str, Any]: ...


class ArmPager(Generic[ModelT]):
    """Walk an Azure Resource Manager list operation by following ``nextLink``."""

    def __init__(
        self,
        fetcher: JsonFetcher,
        path: str,
        model: type[ModelT],
        *,
        params: dict[str, Any] | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._next_url: str | None = path
        self._model = model
        self._params = dict(params) if params else None
        self._pages_fetched = 0

    @property
    def has_more(self) -> bool:
        return self._next_url is not None

    @property
    def pages_fetched(self) -> int:
        return self._pages_fetched

    async def next_page(
        self, cancellation_token: CancellationToken | None = None
    ) -> Page[ModelT]:
        if self._next_url is None:
            return Page()
        if cancellation_token:
            cancellation_token.raise_if_cancelled()

        url = self._next_url
        payload = await self._fetcher.request_json(
            "GET",
            url,
            params=self._params,
            cancellation_token=cancellation_token,
        )
        raw_items = payload.get("value")
        if not isinstance(raw_items, list):
            raise EnumerationError(
                message=f"Listing response from {url} has no 'value' array",
                category=ErrorCategory.VALIDATION,
            )
        try:
            items = [self._model.from_arm(item) for item in raw_items]
        except ValidationError as exc:
            raise EnumerationError(
                message=f"Unexpected {self._model.__name__} entry in listing: {exc}",
                category=ErrorCategory.VALIDATION,
                inner_error=exc,
            ) from exc

        next_link = payload.get("nextLink") or None
        self._pages_fetched += 1
        self._next_url = next_link
        # nextLink already carries the query string
        self._params = None
        logger.debug(
            "Fetched listing page",
            model=self._model.__name__,
            page=self._pages_fetched,
            items=len(items),
            has_more=next_link is not None,
        )
        return Page(items=items, next_link=next_link)


async def iter_pages(
    source: PageSource[T],
    cancellation_token: CancellationToken | None = None,
) -> AsyncIterator[Page[T]]:
    while source.has_more:
        if cancellation_token:
            cancellation_token.raise_if_cancelled()
        yield await source.next_page(cancellation_token)


async def collect(
    source: PageSource[T],
    cancellation_token: CancellationToken | None = None,
    *,
    on_item: Callable[[T], None] | None = None,
) -> list[T]:
    """Drain a page source in order, stopping as soon as ``has_more`` is false."""

    items: list[T] = []
    async for page in iter_pages(source, cancellation_token):
        for item in page.items:
            if on_item is not None:
                on_item(item)
            items.append(item)
    return items


__all__ = [
    "ArmPager",
    "JsonFetcher",
    "Page",
    "PageSource",
    "collect",
    "iter_pages",
]
