"""Async durable-store contract and its SQLite implementation.

The ingestion pipeline only talks to a ``TransactionStore``. The SQLite
implementation runs the synchronous Repository in a worker thread so the
event loop is never blocked on disk I/O.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Protocol

from ..parsers.base import CanonicalTransaction
from .models import Import, Transaction
from .repository import Repository

logger = logging.getLogger(__name__)


class InsertError(Exception):
    """A single transaction could not be persisted."""


class StoreUnavailableError(Exception):
    """The store cannot be reached at all (transport-level failure)."""


class TransactionStore(Protocol):
    async def fetch_signature_fields(self, owner: str) -> list[dict]:
        """Date, amount and description of every stored transaction for owner."""
        ...

    async def insert(self, owner: str, transaction: CanonicalTransaction,
                     import_id: str | None = None) -> Transaction:
        """Persist one transaction. Raises InsertError on failure."""
        ...

    async def start_import(self, owner: str, file_name: str, file_hash: str) -> Import:
        ...

    async def finish_import(self, import_id: str, status: str,
                            record_count: int, error_message: str | None = None) -> None:
        ...


class SqliteTransactionStore:
    """TransactionStore backed by the SQLite Repository.

    Repository calls share one connection, so they are serialized with a
    lock and executed via ``asyncio.to_thread``.
    """

    def __init__(self, repo: Repository):
        self.repo = repo
        self._lock = threading.Lock()

    async def _call(self, fn, *args, **kwargs):
        def run():
            with self._lock:
                return fn(*args, **kwargs)
        try:
            return await asyncio.to_thread(run)
        except sqlite3.OperationalError as e:
            raise StoreUnavailableError(str(e)) from e

    async def fetch_signature_fields(self, owner: str) -> list[dict]:
        return await self._call(self.repo.get_signature_fields, owner)

    async def insert(self, owner: str, transaction: CanonicalTransaction,
                     import_id: str | None = None) -> Transaction:
        if transaction.owner != owner:
            raise InsertError(
                f"transaction owner '{transaction.owner}' does not match '{owner}'"
            )
        if not transaction.amount_is_valid:
            raise InsertError("amount is not a number")
        record = Transaction.from_canonical(transaction, import_id=import_id)
        try:
            return await self._call(self.repo.insert_transaction, record)
        except sqlite3.DatabaseError as e:
            # OperationalError has already become StoreUnavailableError
            raise InsertError(str(e)) from e

    async def start_import(self, owner: str, file_name: str, file_hash: str) -> Import:
        previous = await self._call(self.repo.get_import_by_hash, owner, file_hash)
        if previous is not None:
            logger.info(
                "%s matches import %s from %s; already-stored rows will be skipped",
                file_name, previous.id, previous.created_at,
            )
        imp = Import(owner=owner, file_name=file_name, file_hash=file_hash)
        return await self._call(self.repo.insert_import, imp)

    async def finish_import(self, import_id: str, status: str,
                            record_count: int, error_message: str | None = None) -> None:
        await self._call(
            self.repo.update_import_status, import_id, status,
            record_count=record_count,
            error_message=error_message,
            completed_at=datetime.now(timezone.utc).isoformat(),
        )

    async def recent_transactions(self, owner: str, limit: int = 100) -> list[Transaction]:
        return await self._call(self.repo.get_transactions_for_owner, owner, limit=limit)

    async def transactions_since(self, owner: str, since: str) -> list[Transaction]:
        return await self._call(self.repo.get_transactions_for_owner, owner, since=since)
