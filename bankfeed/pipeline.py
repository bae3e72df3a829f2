"""Import pipeline: process → dedup → insert → report → signal.

Each call to ``process_file`` is one independent invocation: the file is
parsed, deduplicated against the owner's stored signatures (fetched once),
and the surviving transactions are inserted one at a time so every failure
can be attributed to its row. The caller always receives an ImportReport
for content problems. Only store transport failures raise.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Iterable

from .database.dedup import DedupEngine, SignatureFetchError, compute_content_hash
from .database.models import Transaction
from .database.store import InsertError, TransactionStore
from .events import ImportComplete, SignalBus
from .parsers.base import CanonicalTransaction
from .parsers.processor import FormatProcessor

if TYPE_CHECKING:
    from .dashboard.state import AppState

logger = logging.getLogger(__name__)


@dataclass
class ImportReport:
    """Result of importing a single file."""
    file_name: str
    success: bool = True
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    duplicates: int = 0
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    inserted_transactions: list[Transaction] = field(default_factory=list)
    institution: str | None = None
    import_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "fileName": self.file_name,
            "success": self.success,
            "processed": self.processed,
            "failed": self.failed,
            "skipped": self.skipped,
            "duplicates": self.duplicates,
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "insertedTransactions": [asdict(t) for t in self.inserted_transactions],
        }


def describe_row(txn: CanonicalTransaction) -> str:
    """Row identity used in error messages."""
    amount = "NaN" if math.isnan(txn.amount) else f"{txn.amount:.2f}"
    row = txn.row_number if txn.row_number is not None else "?"
    return f"Row {row} ({txn.date}, {amount}, {txn.description})"


class ImportPipeline:
    """Orchestrate: process → dedup → insert → publish.

    Args:
        store: Durable transaction store.
        bus: Signal bus receiving ImportComplete after every invocation.
        processor: Format processor; a default one is built if omitted.
        dedup: Dedup engine; defaults to one over ``store``.
        state: Optional application state; inserted rows are merged into
            its recent-transactions list.
    """

    def __init__(
        self,
        store: TransactionStore,
        bus: SignalBus | None = None,
        processor: FormatProcessor | None = None,
        dedup: DedupEngine | None = None,
        state: AppState | None = None,
    ):
        self.store = store
        self.bus = bus
        self.processor = processor or FormatProcessor()
        self.dedup = dedup or DedupEngine(store)
        self.state = state

    async def process_file(
        self, content: bytes | str, file_name: str, owner: str
    ) -> ImportReport:
        """Import one file and publish ImportComplete for it."""
        report = await self._import(content, file_name, owner)
        self._publish([report], owner)
        return report

    async def process_files(
        self, files: Iterable[tuple[str, bytes | str]], owner: str
    ) -> list[ImportReport]:
        """Import several (file_name, content) pairs one after another.

        Each file is its own dedup batch. A single ImportComplete carries
        the combined totals. If a later file raises, the signal is still
        published for the files already imported before the error propagates.
        """
        reports: list[ImportReport] = []
        try:
            for file_name, content in files:
                reports.append(await self._import(content, file_name, owner))
        finally:
            if reports:
                self._publish(reports, owner)
        return reports

    async def _import(
        self, content: bytes | str, file_name: str, owner: str
    ) -> ImportReport:
        if not owner:
            raise ValueError("owner is required")

        report = ImportReport(file_name=file_name)
        imp = await self.store.start_import(owner, file_name, compute_content_hash(content))
        report.import_id = imp.id

        # Step 1: Detect format and parse
        processed = self.processor.process(content, file_name, owner)
        diagnostics = processed.diagnostics
        report.warnings.extend(diagnostics.warnings)
        report.skipped += len(diagnostics.skipped)
        if processed.institution is not None:
            report.institution = processed.institution.value
        if processed.fatal:
            report.errors.extend(diagnostics.errors)
            return await self._finish(report, "error")

        # Step 2: Unparseable amounts are reported, never stored
        candidates = []
        for txn in processed.transactions:
            if txn.amount_is_valid:
                candidates.append(txn)
            else:
                report.skipped += 1
        if len(candidates) < len(processed.transactions):
            report.warnings.append(
                f"{len(processed.transactions) - len(candidates)} row(s) with an "
                "unparseable amount were not imported"
            )

        # Step 3: Dedup against stored signatures (one fetch per batch)
        try:
            dedup = await self.dedup.filter_new(candidates, owner)
        except SignatureFetchError as e:
            logger.error("Dedup failed for %s: %s", file_name, e)
            report.errors.append(str(e))
            return await self._finish(report, "error")
        report.duplicates = dedup.duplicate_count
        report.skipped += dedup.duplicate_count

        # Step 4: Insert sequentially; one failure never aborts the rest
        for txn in dedup.unique:
            try:
                stored = await self.store.insert(owner, txn, import_id=imp.id)
            except InsertError as e:
                report.failed += 1
                report.errors.append(f"{describe_row(txn)}: {e}")
                logger.warning("Insert failed for %s %s: %s", file_name, describe_row(txn), e)
                continue
            report.processed += 1
            report.inserted_transactions.append(stored)

        if self.state is not None and report.inserted_transactions:
            self.state.merge_recent(report.inserted_transactions)

        return await self._finish(report, "completed" if not report.failed else "partial")

    async def _finish(self, report: ImportReport, status: str) -> ImportReport:
        report.success = not report.errors
        await self.store.finish_import(
            report.import_id, status,
            record_count=report.processed,
            error_message="; ".join(report.errors) or None,
        )
        logger.info(
            "Import %s: %s (processed=%d, failed=%d, skipped=%d, dup=%d)",
            report.file_name, status, report.processed, report.failed,
            report.skipped, report.duplicates,
        )
        return report

    def _publish(self, reports: list[ImportReport], owner: str) -> None:
        if self.bus is None:
            return
        self.bus.publish(ImportComplete(
            total_transactions=sum(r.processed for r in reports),
            files_processed=len(reports),
            owner=owner,
            reports=reports,
        ))
