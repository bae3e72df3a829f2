"""Dashboard application state: recent transactions and 30-day aggregates."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Iterable

from ..database.models import Transaction

if TYPE_CHECKING:
    from ..database.store import SqliteTransactionStore

logger = logging.getLogger(__name__)

RECENT_LIMIT = 100
DEFAULT_WINDOW_DAYS = 30


@dataclass(frozen=True)
class DashboardAggregates:
    total_balance: float = 0.0
    monthly_income: float = 0.0
    monthly_expenses: float = 0.0


def compute_aggregates(
    transactions: Iterable[Transaction],
    today: date,
    window_days: int = DEFAULT_WINDOW_DAYS,
) -> DashboardAggregates:
    """Income, expenses and net balance over the trailing window.

    Income is the sum of positive amounts, expenses the sum of absolute
    negative amounts, both for transactions dated within ``window_days`` of
    ``today`` (inclusive). Balance is income minus expenses.
    """
    start = (today - timedelta(days=window_days)).isoformat()
    end = today.isoformat()
    income = expenses = 0.0
    for txn in transactions:
        if not start <= txn.date <= end:
            continue
        if txn.amount > 0:
            income += txn.amount
        elif txn.amount < 0:
            expenses += -txn.amount
    return DashboardAggregates(
        total_balance=round(income - expenses, 2),
        monthly_income=round(income, 2),
        monthly_expenses=round(expenses, 2),
    )


@dataclass
class AppState:
    """Owned dashboard state.

    ``merge_recent`` is called by the import pipeline; aggregates are only
    written by ``recompute`` (directly or via ``refresh``).
    """
    recent_transactions: list[Transaction] = field(default_factory=list)
    aggregates: DashboardAggregates = field(default_factory=DashboardAggregates)
    last_data_update: str | None = None
    window_days: int = DEFAULT_WINDOW_DAYS
    _lock: threading.RLock = field(
        default_factory=threading.RLock, init=False, repr=False, compare=False
    )

    def merge_recent(self, transactions: Iterable[Transaction]) -> None:
        """Merge by id, newest first, keeping at most RECENT_LIMIT rows.

        Safe to call from the watcher thread while a refresh runs on the loop.
        """
        with self._lock:
            by_id = {t.id: t for t in self.recent_transactions}
            for txn in transactions:
                by_id[txn.id] = txn
            merged = sorted(
                by_id.values(), key=lambda t: (t.date, t.created_at), reverse=True
            )
            self.recent_transactions = merged[:RECENT_LIMIT]
            self.last_data_update = datetime.now(timezone.utc).isoformat()

    def recompute(
        self,
        transactions: Iterable[Transaction] | None = None,
        today: date | None = None,
    ) -> DashboardAggregates:
        """Recompute aggregates from ``transactions`` (default: recent list)."""
        with self._lock:
            source = list(self.recent_transactions if transactions is None else transactions)
            self.aggregates = compute_aggregates(
                source, today or date.today(), self.window_days
            )
            return self.aggregates

    async def refresh(
        self,
        store: SqliteTransactionStore,
        owner: str,
        today: date | None = None,
    ) -> DashboardAggregates:
        """Reload recent rows and the aggregate window from the store."""
        today = today or date.today()
        since = (today - timedelta(days=self.window_days)).isoformat()
        window = await store.transactions_since(owner, since)
        recent = await store.recent_transactions(owner, RECENT_LIMIT)
        with self._lock:
            self.recent_transactions = []
            self.merge_recent(recent)
            aggregates = self.recompute(window, today)
        logger.info(
            "Dashboard refreshed for %s: balance=%.2f income=%.2f expenses=%.2f",
            owner, aggregates.total_balance, aggregates.monthly_income,
            aggregates.monthly_expenses,
        )
        return aggregates
