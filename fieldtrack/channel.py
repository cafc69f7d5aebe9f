"""Outbound channel for newly produced events and alerts.

The engine only publishes finished records here. Fan-out to the interested parties happens on
the subscriber side: each subscription owns a queue and drains it at its own pace. Closing a
subscription unsubscribes it; closing the channel ends every subscription.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable, Iterator

logger = logging.getLogger(__name__)

Predicate = Callable[[Any], bool]

_CLOSED = object()


class ChannelClosed(Exception):
    """The subscription (or its channel) was closed and every queued record was consumed."""


class Subscription:
    """Queue-backed view of the records that match ``predicate``."""

    def __init__(self, channel: OutboundChannel, predicate: Predicate | None, maxsize: int) -> None:
        self._channel = channel
        self._predicate = predicate
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=maxsize)
        self._closed = False
        # Serializes _offer against _end: nothing is enqueued behind the end marker.
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def _offer(self, record: Any) -> bool:
        if self._predicate is not None and not self._predicate(record):
            return False
        with self._lock:
            if self._closed:
                return False
            try:
                self._queue.put_nowait(record)
            except queue.Full:
                logger.warning("订阅队列已满，丢弃记录：%s", type(record).__name__)
                return False
        return True

    def _end(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            while True:
                try:
                    self._queue.put_nowait(_CLOSED)
                    return
                except queue.Full:
                    pass
                # The end marker must reach the reader; it replaces the oldest record.
                try:
                    dropped = self._queue.get_nowait()
                except queue.Empty:
                    continue
                logger.warning("订阅关闭时队列已满，丢弃最早的记录：%s", type(dropped).__name__)

    def get(self, timeout: float | None = None) -> Any:
        """Next record.

        Raises:
            queue.Empty: Nothing arrived within ``timeout``.
            ChannelClosed: Closed and drained.
        """

        item = self._queue.get(timeout=timeout)
        if item is _CLOSED:
            # Leave the sentinel for any further get() call.
            self._queue.put(_CLOSED)
            raise ChannelClosed()
        return item

    def drain(self) -> list[Any]:
        """Every record currently queued, without blocking."""

        out: list[Any] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return out
            if item is _CLOSED:
                self._queue.put(_CLOSED)
                return out
            out.append(item)

    def __iter__(self) -> Iterator[Any]:
        while True:
            try:
                yield self.get()
            except ChannelClosed:
                return

    def close(self) -> None:
        self._channel.unsubscribe(self)


class OutboundChannel:
    """Publishes records to every open subscription."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: list[Subscription] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, predicate: Predicate | None = None, maxsize: int = 0) -> Subscription:
        sub = Subscription(self, predicate, maxsize)
        with self._lock:
            if self._closed:
                sub._end()
            else:
                self._subs.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subs:
                self._subs.remove(sub)
        sub._end()

    def publish(self, record: Any) -> int:
        """Offer ``record`` to every subscription; returns how many accepted it.

        Raises:
            ChannelClosed: The channel was closed.
        """

        with self._lock:
            if self._closed:
                raise ChannelClosed()
            subs = list(self._subs)
        return sum(1 for s in subs if s._offer(record))

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            subs, self._subs = self._subs, []
        for s in subs:
            s._end()
