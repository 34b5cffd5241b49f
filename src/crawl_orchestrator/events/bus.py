"""Fire-and-forget fan-out of lifecycle events to listeners."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
import logging
import threading

from crawl_orchestrator.events.names import CrawlEventName
from crawl_orchestrator.events.payloads import EventPayload


logger = logging.getLogger(__name__)

EventListener = Callable[[CrawlEventName, EventPayload], None]


@dataclass(slots=True, frozen=True)
class _Subscription:
    listener: EventListener
    names: frozenset[CrawlEventName] | None

    def accepts(self, name: CrawlEventName) -> bool:
        return self.names is None or name in self.names


class EventBus:
    """Deliver events synchronously on the publishing thread.

    The bus is observability only: it never gates scheduling. A listener
    that raises is logged and skipped; remaining listeners still receive the
    event. Subscriptions are copy-on-write so publishing never takes a lock.
    """

    def __init__(self, listeners: Iterable[EventListener] = ()) -> None:
        self._subscriptions: tuple[_Subscription, ...] = ()
        self._lock = threading.Lock()
        for listener in listeners:
            self.subscribe(listener)

    def subscribe(
        self,
        listener: EventListener,
        names: Iterable[CrawlEventName] | None = None,
    ) -> Callable[[], None]:
        """Register ``listener`` for ``names`` (all events when ``None``); return an unsubscribe callable."""
        subscription = _Subscription(listener, frozenset(names) if names is not None else None)
        with self._lock:
            self._subscriptions = (*self._subscriptions, subscription)

        def _unsubscribe() -> None:
            with self._lock:
                self._subscriptions = tuple(item for item in self._subscriptions if item is not subscription)

        return _unsubscribe

    def publish(self, name: CrawlEventName, payload: EventPayload) -> None:
        for subscription in self._subscriptions:
            if not subscription.accepts(name):
                continue
            try:
                subscription.listener(name, payload)
            except Exception as exc:
                logger.error("Event listener %r failed on %s: %s", subscription.listener, name.value, exc, exc_info=True)

    def listener_count(self) -> int:
        return len(self._subscriptions)
