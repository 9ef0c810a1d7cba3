from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Awaitable, Callable, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")
CancelCallback = Callable[["CancellationToken"], None]


class CancellationError(asyncio.CancelledError):
    """Raised when an operation observes a cancelled token."""

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason


class CancellationToken:
    """Read-only view of a :class:`CancellationTokenSource`.

    Safe to consult from worker threads (interactive sign-in runs in one) as well
    as from the event loop.
    """

    __slots__ = ("_source",)

    def __init__(self, source: "CancellationTokenSource") -> None:
        self._source = source

    @property
    def cancelled(self) -> bool:
        return self._source._flag.is_set()

    @property
    def reason(self) -> str | None:
        return self._source._reason

    def remaining(self) -> float | None:
        """Seconds left before the armed deadline, or ``None`` without one."""

        deadline = self._source._deadline
        if deadline is None:
            return None
        return max(0.0, deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancellationError(self._source._reason)

    def on_cancel(self, callback: CancelCallback) -> Callable[[], None]:
        """Run ``callback`` on cancellation, or now if already cancelled."""

        with self._source._lock:
            pending = not self._source._flag.is_set()
            if pending:
                self._source._callbacks.append(callback)
        if not pending:
            callback(self)
            return lambda: None

        def unsubscribe() -> None:
            with self._source._lock:
                if callback in self._source._callbacks:
                    self._source._callbacks.remove(callback)

        return unsubscribe

    def link_task(self, task: asyncio.Task | None = None) -> Callable[[], None]:
        """Cancel ``task`` (default: the current task) when the token fires."""

        target = task or asyncio.current_task()
        if target is None:
            raise RuntimeError("link_task() needs a task or a running event loop")
        loop = target.get_loop()

        def cancel_task(token: CancellationToken) -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(target.cancel, token.reason)

        unsubscribe = self.on_cancel(cancel_task)
        target.add_done_callback(lambda _task: unsubscribe())
        return unsubscribe

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled}, reason={self.reason!r})"


class CancellationTokenSource:
    """Issues a token and cancels it on request or after a deadline."""

    def __init__(self) -> None:
        self._flag = threading.Event()
        self._lock = threading.Lock()
        self._reason: str | None = None
        self._callbacks: list[CancelCallback] = []
        self._timer: threading.Timer | None = None
        self._deadline: float | None = None
        self._token = CancellationToken(self)

    @property
    def token(self) -> CancellationToken:
        return self._token

    def cancel(self, *, reason: str | None = None) -> bool:
        """Cancel the token; returns ``False`` if it was already cancelled."""

        with self._lock:
            if self._flag.is_set():
                return False
            self._reason = reason
            self._flag.set()
            callbacks, self._callbacks = self._callbacks, []
        logger.debug("Cancellation requested: %s", reason)
        for callback in callbacks:
            try:
                callback(self._token)
            except Exception:  # pragma: no cover - a failing callback must not block the rest
                logger.exception("Cancellation callback raised an exception.")
        return True

    def cancel_after(self, seconds: float, *, reason: str | None = None) -> None:
        """Arm a deadline, replacing any earlier one."""

        self.dispose()
        timer = threading.Timer(
            seconds,
            self.cancel,
            kwargs={"reason": reason or f"Deadline of {seconds:g}s exceeded"},
        )
        timer.daemon = True
        self._timer = timer
        self._deadline = time.monotonic() + seconds
        timer.start()

    def dispose(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._deadline = None

    def __enter__(self) -> CancellationToken:
        return self._token

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()


async def await_cancellable(awaitable: Awaitable[T], token: CancellationToken | None) -> T:
    """Await ``awaitable``, raising :class:`CancellationError` as soon as ``token`` fires.

    Work already handed to a thread keeps running; only the wait is abandoned.
    """

    if token is None:
        return await awaitable
    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        token.raise_if_cancelled()
    task = asyncio.ensure_future(awaitable)
    unlink = token.link_task(task)
    try:
        return await task
    except asyncio.CancelledError:
        token.raise_if_cancelled()
        raise
    finally:
        unlink()


__all__ = [
    "CancellationError",
    "CancellationToken",
    "CancellationTokenSource",
    "await_cancellable",
]
