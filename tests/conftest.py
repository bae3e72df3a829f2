"""Shared test fixtures."""

from pathlib import Path

from bankfeed.database.models import Import, Transaction
from bankfeed.database.store import InsertError

# Test fixture config directory with synthetic data
FIXTURE_CONFIG_DIR = Path(__file__).parent / "fixtures" / "config"


class FakeStore:
    """In-memory TransactionStore with injectable failures."""

    def __init__(self, fail_descriptions=(), fetch_error=None):
        self.rows: list[Transaction] = []
        self.imports: dict[str, Import] = {}
        self.fail_descriptions = set(fail_descriptions)
        self.fetch_error = fetch_error
        self.fetch_calls = 0

    async def fetch_signature_fields(self, owner):
        self.fetch_calls += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        return [
            {"date": t.date, "amount": t.amount, "description": t.description}
            for t in self.rows if t.owner == owner
        ]

    async def insert(self, owner, transaction, import_id=None):
        if transaction.description in self.fail_descriptions:
            raise InsertError("constraint violated")
        record = Transaction.from_canonical(transaction, import_id=import_id)
        self.rows.append(record)
        return record

    async def start_import(self, owner, file_name, file_hash):
        imp = Import(owner=owner, file_name=file_name, file_hash=file_hash)
        self.imports[imp.id] = imp
        return imp

    async def finish_import(self, import_id, status, record_count, error_message=None):
        imp = self.imports[import_id]
        imp.status = status
        imp.record_count = record_count
        imp.error_message = error_message
