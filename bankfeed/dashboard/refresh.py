"""Debounced dashboard refresh driven by import/categorization signals.

Writes that trigger these signals may still be settling, so the refresh runs
after a delay rather than immediately. Only one refresh is ever pending: a
new signal cancels the pending timer and schedules its own.

Delays (seconds, see config/refresh.yaml):
- categorization complete: 1.0
- import complete: 2.0, or 3.0 for large batches (more than 100
  transactions or more than one file)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, fields
from typing import Any, Callable

from ..events import CategorizationComplete, ImportComplete, SignalBus, Subscription

logger = logging.getLogger(__name__)


@dataclass
class RefreshSettings:
    categorization_delay: float = 1.0
    import_delay: float = 2.0
    large_import_delay: float = 3.0
    large_import_threshold: int = 100

    @classmethod
    def from_dict(cls, data: dict | None) -> RefreshSettings:
        data = data or {}
        unknown = set(data) - {f.name for f in fields(cls)}
        if unknown:
            raise ValueError(f"Unknown refresh settings: {sorted(unknown)}")
        return cls(**data)

    def delay_for(self, event: Any) -> float:
        if isinstance(event, CategorizationComplete):
            return self.categorization_delay
        if (event.total_transactions > self.large_import_threshold
                or event.files_processed > 1):
            return self.large_import_delay
        return self.import_delay


class RefreshCoordinator:
    """Collapse bursts of data-change signals into one delayed refresh.

    Args:
        bus: Signal bus to subscribe to.
        on_refresh: Called first when the timer fires. May be async.
        on_reset_insights: Called after on_refresh. May be async.
        settings: Delay configuration.
        loop: Event loop owning the timer; defaults to the running loop
            at ``start()``.
    """

    def __init__(
        self,
        bus: SignalBus,
        on_refresh: Callable[[], Any],
        on_reset_insights: Callable[[], Any] | None = None,
        settings: RefreshSettings | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self.bus = bus
        self.on_refresh = on_refresh
        self.on_reset_insights = on_reset_insights
        self.settings = settings or RefreshSettings()
        self._loop = loop
        self._subscriptions: list[Subscription] = []
        self._pending: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        self._closed = False
        self.last_delay: float | None = None
        self.refresh_count = 0

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def start(self) -> None:
        if self._closed:
            raise RuntimeError("RefreshCoordinator is closed")
        if self._subscriptions:
            return
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._subscriptions = [
            self.bus.subscribe(ImportComplete, self._on_signal),
            self.bus.subscribe(CategorizationComplete, self._on_signal),
        ]

    def close(self) -> None:
        """Unsubscribe, cancel any pending refresh and stop one in progress.

        Idempotent. A refresh already running is cancelled at its next await
        and no further callbacks run.
        """
        self._closed = True
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions = []
        self._cancel_pending()
        for task in list(self._tasks):
            task.cancel()

    # ── Scheduling ───────────────────────────────────────

    def _on_signal(self, event: Any) -> None:
        delay = self.settings.delay_for(event)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._schedule(delay)
        else:
            # Published from another thread (e.g. the file watcher)
            self._loop.call_soon_threadsafe(self._schedule, delay)

    def _schedule(self, delay: float) -> None:
        if self._closed:
            return
        self._cancel_pending()
        self.last_delay = delay
        self._pending = self._loop.call_later(delay, self._fire)
        logger.debug("Dashboard refresh scheduled in %.1fs", delay)

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _fire(self) -> None:
        self._pending = None
        if self._closed:
            return
        task = self._loop.create_task(self._run_callbacks())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_callbacks(self) -> None:
        self.refresh_count += 1
        for callback in (self.on_refresh, self.on_reset_insights):
            if self._closed:
                return
            if callback is None:
                continue
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Dashboard refresh callback %r failed", callback)
