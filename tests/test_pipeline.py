"""Tests for bankfeed.pipeline — ImportPipeline orchestration and reports."""

from __future__ import annotations

import math

import pytest

from bankfeed.dashboard.state import AppState
from bankfeed.database.repository import Repository
from bankfeed.database.store import SqliteTransactionStore, StoreUnavailableError
from bankfeed.events import ImportComplete, SignalBus
from bankfeed.pipeline import ImportPipeline, ImportReport, describe_row
from bankfeed.parsers.base import CanonicalTransaction, Institution
from tests.conftest import FakeStore

KIWI_CSV = (
    "Date,Amount,Payee,Description\n"
    "2024-01-01,-75.00,Countdown,Groceries\n"
    "2024-01-02,-4.50,Coffee Co,Flat white\n"
    "2024-01-03,2500.00,Employer,Salary\n"
    "2024-01-04,-60.00,Z Energy,Fuel\n"
    "2024-01-05,-12.00,Netflix,Subscription\n"
).encode()


# ── Helpers ──────────────────────────────────────────────


def _collect(bus: SignalBus) -> list[ImportComplete]:
    events: list[ImportComplete] = []
    bus.subscribe(ImportComplete, events.append)
    return events


@pytest.fixture
def bus():
    return SignalBus()


# ── process_file ─────────────────────────────────────────


class TestProcessFile:
    @pytest.mark.asyncio
    async def test_happy_path(self, bus):
        store = FakeStore()
        events = _collect(bus)
        report = await ImportPipeline(store, bus=bus).process_file(KIWI_CSV, "kiwi.csv", "user-1")

        assert report.success
        assert report.processed == 5
        assert report.failed == 0
        assert report.skipped == 0
        assert report.institution == "Kiwibank"
        assert len(report.inserted_transactions) == 5
        assert report.inserted_transactions[0].description == "Countdown - Groceries"
        assert len(events) == 1
        assert events[0].total_transactions == 5
        assert events[0].files_processed == 1
        assert events[0].reports == [report]

    @pytest.mark.asyncio
    async def test_one_insert_failure_is_partial_success(self, bus):
        store = FakeStore(fail_descriptions={"Z Energy - Fuel"})
        events = _collect(bus)
        report = await ImportPipeline(store, bus=bus).process_file(KIWI_CSV, "kiwi.csv", "user-1")

        assert report.processed == 4
        assert report.failed == 1
        assert not report.success
        assert report.errors == [
            "Row 5 (2024-01-04, -60.00, Z Energy - Fuel): constraint violated"
        ]
        assert len(store.rows) == 4
        assert events[0].total_transactions == 4
        assert store.imports[report.import_id].status == "partial"

    @pytest.mark.asyncio
    async def test_reimport_inserts_nothing(self, bus):
        store = FakeStore()
        events = _collect(bus)
        pipeline = ImportPipeline(store, bus=bus)
        await pipeline.process_file(KIWI_CSV, "kiwi.csv", "user-1")
        second = await pipeline.process_file(KIWI_CSV, "kiwi.csv", "user-1")

        assert second.processed == 0
        assert second.duplicates == 5
        assert second.skipped == 5
        assert second.success
        assert len(store.rows) == 5
        # Signal fires even when nothing new was inserted
        assert [e.total_transactions for e in events] == [5, 0]

    @pytest.mark.asyncio
    async def test_in_batch_duplicate_inserted_once(self):
        content = (
            "Date,Amount,Transaction Details\n"
            "2024-01-01,-5.00,COFFEE\n"
            "2024-01-01,-5.00,COFFEE\n"
        )
        store = FakeStore()
        report = await ImportPipeline(store).process_file(content, "wbc.csv", "user-1")
        assert report.processed == 1
        assert report.duplicates == 1
        assert len(store.rows) == 1

    @pytest.mark.asyncio
    async def test_fatal_file_reports_error_and_still_signals(self, bus):
        store = FakeStore()
        events = _collect(bus)
        report = await ImportPipeline(store, bus=bus).process_file(b"", "empty.csv", "user-1")

        assert not report.success
        assert report.errors == ["file is empty"]
        assert report.processed == 0
        assert store.fetch_calls == 0
        assert events[0].total_transactions == 0
        assert store.imports[report.import_id].status == "error"

    @pytest.mark.asyncio
    async def test_unparseable_amounts_not_inserted(self):
        content = (
            "Date,Amount,Transaction Details\n"
            "2024-01-01,oops,A\n"
            "2024-01-02,-2.00,B\n"
        )
        store = FakeStore()
        report = await ImportPipeline(store).process_file(content, "wbc.csv", "user-1")
        assert report.processed == 1
        assert report.skipped == 1
        assert any("oops" in w for w in report.warnings)
        assert any("unparseable amount" in w for w in report.warnings)
        assert all(not math.isnan(t.amount) for t in store.rows)

    @pytest.mark.asyncio
    async def test_skipped_rows_counted(self):
        content = (
            "Date,Amount,Transaction Details\n"
            "2024-01-01,-1,A\n"
            "\n"
            "not-a-date,-2,B\n"
        )
        report = await ImportPipeline(FakeStore()).process_file(content, "wbc.csv", "user-1")
        assert report.processed == 1
        assert report.skipped == 2

    @pytest.mark.asyncio
    async def test_dedup_fetch_failure_aborts_batch(self, bus):
        store = FakeStore(fetch_error=RuntimeError("timeout"))
        events = _collect(bus)
        report = await ImportPipeline(store, bus=bus).process_file(KIWI_CSV, "kiwi.csv", "user-1")
        assert report.processed == 0
        assert not report.success
        assert "timeout" in report.errors[0]
        assert store.rows == []
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_malformed_stored_row_becomes_report_error(self, bus):
        class BadRowStore(FakeStore):
            async def fetch_signature_fields(self, owner):
                return [{"date": "2024-01-01", "amount": None, "description": "x"}]

        store = BadRowStore()
        events = _collect(bus)
        report = await ImportPipeline(store, bus=bus).process_file(KIWI_CSV, "kiwi.csv", "user-1")
        assert not report.success
        assert report.processed == 0
        assert report.errors
        assert store.rows == []
        assert store.imports[report.import_id].status == "error"
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_missing_owner_raises(self):
        with pytest.raises(ValueError):
            await ImportPipeline(FakeStore()).process_file(KIWI_CSV, "kiwi.csv", "")

    @pytest.mark.asyncio
    async def test_store_unavailable_propagates(self):
        class DownStore(FakeStore):
            async def insert(self, owner, transaction, import_id=None):
                raise StoreUnavailableError("disk I/O error")

        with pytest.raises(StoreUnavailableError):
            await ImportPipeline(DownStore()).process_file(KIWI_CSV, "kiwi.csv", "user-1")

    @pytest.mark.asyncio
    async def test_merges_into_app_state(self):
        state = AppState()
        await ImportPipeline(FakeStore(), state=state).process_file(KIWI_CSV, "kiwi.csv", "user-1")
        assert len(state.recent_transactions) == 5
        assert state.recent_transactions[0].date == "2024-01-05"


# ── process_files ────────────────────────────────────────


class TestProcessFiles:
    @pytest.mark.asyncio
    async def test_single_signal_with_combined_totals(self, bus):
        westpac = "Date,Amount,Transaction Details\n2024-02-01,-3.00,BUS\n"
        events = _collect(bus)
        reports = await ImportPipeline(FakeStore(), bus=bus).process_files(
            [("kiwi.csv", KIWI_CSV), ("wbc.csv", westpac)], "user-1",
        )
        assert [r.processed for r in reports] == [5, 1]
        assert len(events) == 1
        assert events[0].total_transactions == 6
        assert events[0].files_processed == 2

    @pytest.mark.asyncio
    async def test_store_failure_still_signals_earlier_files(self, bus):
        class FailsOnSecondFile(FakeStore):
            async def start_import(self, owner, file_name, file_hash):
                if file_name == "wbc.csv":
                    raise StoreUnavailableError("database is locked")
                return await super().start_import(owner, file_name, file_hash)

        westpac = "Date,Amount,Transaction Details\n2024-02-01,-3.00,BUS\n"
        store = FailsOnSecondFile()
        events = _collect(bus)
        with pytest.raises(StoreUnavailableError):
            await ImportPipeline(store, bus=bus).process_files(
                [("kiwi.csv", KIWI_CSV), ("wbc.csv", westpac)], "user-1",
            )
        assert len(store.rows) == 5
        assert len(events) == 1
        assert events[0].total_transactions == 5
        assert events[0].files_processed == 1

    @pytest.mark.asyncio
    async def test_one_bad_file_does_not_stop_others(self):
        reports = await ImportPipeline(FakeStore()).process_files(
            [("empty.csv", b""), ("kiwi.csv", KIWI_CSV)], "user-1",
        )
        assert not reports[0].success
        assert reports[1].processed == 5


# ── SQLite end to end ────────────────────────────────────


class TestWithSqlite:
    @pytest.mark.asyncio
    async def test_reimport_against_sqlite(self):
        repo = Repository(":memory:")
        repo.apply_migrations()
        try:
            pipeline = ImportPipeline(SqliteTransactionStore(repo))
            first = await pipeline.process_file(KIWI_CSV, "kiwi.csv", "user-1")
            second = await pipeline.process_file(KIWI_CSV, "kiwi.csv", "user-1")
            assert first.processed == 5
            assert second.processed == 0
            assert repo.count_transactions("user-1") == 5
            assert repo.get_import(first.import_id).status == "completed"
            assert len(repo.get_transactions_by_import_id(first.import_id)) == 5
        finally:
            repo.close()


# ── Report ───────────────────────────────────────────────


class TestReport:
    def test_to_dict_shape(self):
        report = ImportReport(file_name="f.csv", processed=1, warnings=["w"])
        data = report.to_dict()
        assert set(data) == {
            "fileName", "success", "processed", "failed", "skipped",
            "duplicates", "warnings", "errors", "insertedTransactions",
        }
        assert data["insertedTransactions"] == []

    def test_describe_row(self):
        txn = CanonicalTransaction("2024-01-01", math.nan, "X", Institution.ANZ, "u", row_number=9)
        assert describe_row(txn) == "Row 9 (2024-01-01, NaN, X)"
