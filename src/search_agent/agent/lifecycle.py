"""Request lifecycle tracking and cooperative cancellation."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

AbortListener = Callable[[str | None], None]


class RequestCancelledError(RuntimeError):
    """Raised by work that observed its cancellation signal firing."""

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or "Request cancelled")
        self.reason = reason


class CancellationSignal:
    """Read side of a cancellation controller, handed to I/O code."""

    def __init__(self) -> None:
        self._aborted = False
        self._reason: str | None = None
        self._listeners: list[AbortListener] = []

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> str | None:
        return self._reason

    def add_listener(self, listener: AbortListener) -> None:
        """Register a callback; it runs immediately if already aborted."""
        if self._aborted:
            listener(self._reason)
            return
        self._listeners.append(listener)

    def remove_listener(self, listener: AbortListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def raise_if_aborted(self) -> None:
        if self._aborted:
            raise RequestCancelledError(self._reason)

    def _fire(self, reason: str | None) -> None:
        if self._aborted:
            return
        self._aborted = True
        self._reason = reason
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            try:
                listener(reason)
            except Exception:
                logger.exception("Cancellation listener failed")


class CancellationController:
    """Owner of a cancellation signal. Only the owner may abort it."""

    def __init__(self) -> None:
        self.signal = CancellationSignal()

    @property
    def aborted(self) -> bool:
        return self.signal.aborted

    def abort(self, reason: str | None = None) -> None:
        self.signal._fire(reason)


@dataclass(slots=True)
class RequestHandle:
    id: str
    controller: CancellationController
    started_at: float = field(default_factory=time.monotonic)

    @property
    def signal(self) -> CancellationSignal:
        return self.controller.signal


class RequestLifecycleManager:
    """Single owner of the mapping from request id to cancellation controller.

    A handle lives in the active set from `create` until `cancel`, `complete`
    or `cancel_all`; afterwards `get` returns `None` for its id.
    """

    def __init__(self) -> None:
        self._active: dict[str, RequestHandle] = {}

    def create(self, request_id: str | None = None) -> RequestHandle:
        """Track a new request. An active request with the same id is superseded."""
        handle_id = request_id or f"req_{uuid.uuid4().hex}"
        previous = self._active.pop(handle_id, None)
        if previous is not None:
            logger.debug("Superseding active request %s", handle_id)
            previous.controller.abort("superseded")

        handle = RequestHandle(id=handle_id, controller=CancellationController())
        self._active[handle_id] = handle
        logger.debug("Request %s started (%d active)", handle_id, len(self._active))
        return handle

    def cancel(self, request_id: str) -> bool:
        handle = self._active.pop(request_id, None)
        if handle is None:
            return False
        handle.controller.abort("cancelled")
        logger.debug("Request %s cancelled", request_id)
        return True

    def cancel_all(self) -> int:
        handles = list(self._active.values())
        self._active.clear()
        for handle in handles:
            handle.controller.abort("cancelled")
        return len(handles)

    def complete(self, request_id: str) -> None:
        if self._active.pop(request_id, None) is not None:
            logger.debug("Request %s completed", request_id)

    def get(self, request_id: str) -> RequestHandle | None:
        return self._active.get(request_id)

    def active_ids(self) -> list[str]:
        return list(self._active)

    @property
    def active_count(self) -> int:
        return len(self._active)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._active

    @contextmanager
    def track(self, request_id: str | None = None) -> Iterator[RequestHandle]:
        """Create a handle for the duration of a block and always release it."""
        handle = self.create(request_id)
        try:
            yield handle
        finally:
            # A superseding request may have taken over the id meanwhile.
            if self._active.get(handle.id) is handle:
                self.complete(handle.id)


async def run_cancellable(
    awaitable: Awaitable[T], signal: CancellationSignal | None
) -> T:
    """Await `awaitable`, aborting it as soon as `signal` fires.

    Raises:
        RequestCancelledError: the signal fired before or during the await.
    """

    if signal is None:
        return await awaitable
    if signal.aborted:
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        raise RequestCancelledError(signal.reason)

    task: asyncio.Future[Any] = asyncio.ensure_future(awaitable)

    def _on_abort(_reason: str | None) -> None:
        task.cancel()

    signal.add_listener(_on_abort)
    try:
        return await task
    except asyncio.CancelledError:
        if signal.aborted:
            raise RequestCancelledError(signal.reason) from None
        raise
    finally:
        signal.remove_listener(_on_abort)
