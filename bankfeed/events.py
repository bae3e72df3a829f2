"""In-process signals published when data changes.

Subscribers register per event type and receive the typed payload. The bus
is synchronous: ``publish`` calls every subscriber before returning, and a
failing subscriber is logged without affecting the others.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from .pipeline import ImportReport

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ImportComplete:
    """Published after every import invocation, including failed ones."""
    total_transactions: int
    files_processed: int
    owner: str | None = None
    reports: list[ImportReport] = field(default_factory=list)
    timestamp: str = field(default_factory=_now)


@dataclass
class CategorizationComplete:
    """Published when a categorization pass finishes."""
    total_categorized: int
    owner: str | None = None
    timestamp: str = field(default_factory=_now)


class Subscription:
    """Handle returned by ``SignalBus.subscribe``; call ``unsubscribe`` to stop."""

    def __init__(self, bus: SignalBus, event_type: type, callback: Callable[[Any], Any]):
        self._bus = bus
        self.event_type = event_type
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._bus._remove(self)
            self.active = False


class SignalBus:
    def __init__(self):
        self._subscribers: dict[type, list[Subscription]] = {}

    def subscribe(self, event_type: type, callback: Callable[[Any], Any]) -> Subscription:
        sub = Subscription(self, event_type, callback)
        self._subscribers.setdefault(event_type, []).append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        subs = self._subscribers.get(sub.event_type, [])
        if sub in subs:
            subs.remove(sub)

    def subscriber_count(self, event_type: type) -> int:
        return len(self._subscribers.get(event_type, []))

    def publish(self, event: Any) -> int:
        """Deliver event to its type's subscribers. Returns the number reached."""
        delivered = 0
        for sub in list(self._subscribers.get(type(event), [])):
            try:
                sub.callback(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "Subscriber %r failed handling %s", sub.callback, type(event).__name__
                )
        logger.debug("Published %s to %d subscriber(s)", type(event).__name__, delivered)
        return delivered
