"""Cancellable push subscriptions over chain client streams."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Protocol, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StreamHandle(Protocol):
    def unsubscribe(self) -> None: ...


class PushStream(Protocol):
    """Observable-style stream produced by the chain client."""

    def subscribe(
        self,
        on_next: Callable[[Any], None],
        on_error: Callable[[BaseException], None] | None = None,
    ) -> StreamHandle: ...


class Subscription:
    """Handle for a live stream with an exactly-once stop operation.

    Callbacks run while holding an internal lock, so once :meth:`unsubscribe`
    returns no further callback runs. The object is itself callable and acts
    as the unsubscribe function.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.RLock()
        self._active = True
        self._release: Callable[[], None] | None = None
        self.delivered = 0

    @property
    def active(self) -> bool:
        return self._active

    def bind(self, release: Callable[[], None]) -> None:
        """Attach the function that frees the underlying stream."""

        with self._lock:
            if self._active:
                self._release = release
                return
        release()

    def deliver(self, callback: Callable[[T], None], value: T) -> bool:
        with self._lock:
            if not self._active:
                return False
            try:
                callback(value)
            except Exception:
                logger.exception("Subscriber callback for %s raised", self.name)
            self.delivered += 1
            return True

    def unsubscribe(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
            release, self._release = self._release, None
        logger.debug("Closing subscription %s after %d updates", self.name, self.delivered)
        if release is not None:
            release()

    __call__ = unsubscribe

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unsubscribe()


def open_subscription(
    name: str,
    stream: PushStream,
    on_next: Callable[[T], None],
    transform: Callable[[Any], T],
    on_error: Callable[[BaseException], None] | None = None,
) -> Subscription:
    """Subscribe to ``stream`` and wrap it in a :class:`Subscription`."""

    subscription = Subscription(name)

    def handle_error(exc: BaseException) -> None:
        logger.error("Stream %s failed: %s", name, exc, exc_info=logger.isEnabledFor(logging.DEBUG))
        if on_error is not None:
            subscription.deliver(on_error, exc)

    def handle_next(raw: Any) -> None:
        if not subscription.active:
            return
        try:
            value = transform(raw)
        except Exception as exc:
            logger.warning("Dropping undecodable update on %s: %r", name, raw)
            handle_error(exc)
            return
        subscription.deliver(on_next, value)

    handle = stream.subscribe(handle_next, handle_error)
    subscription.bind(handle.unsubscribe)
    return subscription
