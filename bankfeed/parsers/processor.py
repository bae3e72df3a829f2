"""Format processor: raw statement content → canonical transactions.

Decodes the upload, works out whether it holds delimited rows or
header-keyed JSON records, finds the header row, and routes to the
institution parser whose header signature matches. Unknown layouts go to
the generic fallback parser with a warning.

Failure isolation is per row. Only structural problems (empty file,
undecodable bytes, no header, unusable header, no data rows) are fatal, and
those surface as a single diagnostics error rather than an exception.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from .anz import AnzCsvParser
from .base import (
    BaseParser,
    CanonicalTransaction,
    Institution,
    ParseDiagnostics,
    normalize_header,
)
from .bnz import BnzParser
from .generic import GenericCsvParser
from .kiwibank import KiwibankCsvParser
from .westpac import WestpacCsvParser

logger = logging.getLogger(__name__)

# Closed set of institution variants, selected by header signature.
INSTITUTION_PARSERS: tuple[type[BaseParser], ...] = (
    KiwibankCsvParser,
    AnzCsvParser,
    BnzParser,
    WestpacCsvParser,
)

HEADER_TERMS = (
    "date", "amount", "description", "details", "transaction",
    "payee", "debit", "credit", "balance",
)
HEADER_SEARCH_ROWS = 10
DELIMITERS = (",", ";", "\t", "|")
DEFAULT_FALLBACK_ENCODINGS = ("cp1252",)


class FormatError(Exception):
    """Structural problem that makes a whole file unreadable."""


@dataclass
class ProcessedFile:
    """Outcome of processing one file."""
    file_name: str
    transactions: list[CanonicalTransaction] = field(default_factory=list)
    diagnostics: ParseDiagnostics = field(default_factory=ParseDiagnostics)
    institution: Institution | None = None
    data_rows: int = 0

    @property
    def fatal(self) -> bool:
        return self.diagnostics.fatal


class FormatProcessor:
    """Detect a statement's shape and institution, then parse it.

    Args:
        column_aliases: Header aliases for the generic fallback parser.
            Configure in config/columns.yaml.
        fallback_encodings: Encodings tried, in order, when the bytes are
            not valid UTF-8.
    """

    def __init__(
        self,
        column_aliases: Mapping[str, Sequence[str]] | None = None,
        fallback_encodings: Sequence[str] = DEFAULT_FALLBACK_ENCODINGS,
    ):
        self.column_aliases = column_aliases
        self.fallback_encodings = tuple(fallback_encodings)

    def process(self, content: bytes | str, file_name: str, owner: str) -> ProcessedFile:
        result = ProcessedFile(file_name=file_name)
        diagnostics = result.diagnostics
        try:
            text = self._decode(content, diagnostics)
            if not text.strip():
                raise FormatError("file is empty")

            if text.lstrip()[:1] in ("[", "{"):
                header, rows, row_numbers = self._read_records(text)
            else:
                header, rows, row_numbers = self._read_delimited(text, diagnostics)

            if not row_numbers:
                raise FormatError("no data rows found")
            result.data_rows = len(row_numbers)

            parser = self.select_parser(header, diagnostics, file_name)
            parsed = parser.parse(rows, owner, row_numbers=row_numbers)
            diagnostics.merge(parsed.diagnostics)
            if parsed.diagnostics.fatal:
                return result
            result.transactions = parsed.transactions
            result.institution = parser.institution
        except FormatError as e:
            logger.warning("Cannot process %s: %s", file_name, e)
            diagnostics.error(str(e))
            return result

        if diagnostics.header_rows > 1:
            diagnostics.warn(
                f"{diagnostics.header_rows} header rows found; repeated headers were skipped"
            )
        logger.info(
            "Parsed %s as %s: %d transaction(s), %d skipped row(s), %d warning(s)",
            file_name, result.institution.value, len(result.transactions),
            len(diagnostics.skipped), len(diagnostics.warnings),
        )
        return result

    # ── Routing ──────────────────────────────────────────

    def select_parser(
        self,
        header: Sequence[str],
        diagnostics: ParseDiagnostics,
        file_name: str = "",
    ) -> BaseParser:
        """Pick the institution parser for a header, or the generic fallback.

        An exact header match wins. Otherwise any parser whose signature is
        contained in the header matches; several such matches are ambiguous
        and the most specific (longest) signature is used.
        """
        cells = {normalize_header(h) for h in header if h and h.strip()}
        for parser_cls in INSTITUTION_PARSERS:
            if {normalize_header(h) for h in parser_cls.HEADER} == cells:
                return parser_cls()

        candidates = [cls() for cls in INSTITUTION_PARSERS]
        candidates = [p for p in candidates if p.matches(header)]
        if len(candidates) > 1:
            candidates.sort(key=lambda p: len(p.HEADER), reverse=True)
            diagnostics.warn(
                "ambiguous header matches "
                + ", ".join(p.institution.value for p in candidates)
                + f"; using {candidates[0].institution.value}"
            )
        if candidates:
            return candidates[0]

        logger.info("No institution header matched %s; using generic parser", file_name)
        diagnostics.warn(
            f"format not recognized for {file_name or 'file'}; using generic column detection"
        )
        return GenericCsvParser(self.column_aliases)

    # ── Decoding ─────────────────────────────────────────

    def _decode(self, content: bytes | str, diagnostics: ParseDiagnostics) -> str:
        if isinstance(content, str):
            return content.lstrip("\ufeff")
        try:
            return content.decode("utf-8-sig")
        except UnicodeDecodeError as first_error:
            for encoding in self.fallback_encodings:
                try:
                    text = content.decode(encoding)
                except (UnicodeDecodeError, LookupError):
                    continue
                diagnostics.warn(f"file is not valid UTF-8; decoded as {encoding}")
                return text
            raise FormatError(f"character decoding failed: {first_error}") from first_error

    # ── Shapes ───────────────────────────────────────────

    def _read_records(
        self, text: str
    ) -> tuple[list[str], list[dict[str, Any]], list[int]]:
        """Header-keyed JSON records: a list of objects or {"transactions": [...]}."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise FormatError(f"invalid JSON records: {e}") from e
        if isinstance(data, dict):
            data = data.get("transactions", [])
        if not isinstance(data, list) or not all(isinstance(r, dict) for r in data):
            raise FormatError("no header found: JSON content is not a list of records")
        if not data:
            raise FormatError("no data rows found")

        header: list[str] = []
        for record in data:
            for key in record:
                if key not in header:
                    header.append(key)
        if not any(
            term in normalize_header(h) for h in header for term in HEADER_TERMS
        ):
            raise FormatError("no header found in JSON records")
        return header, data, list(range(1, len(data) + 1))

    def _read_delimited(
        self, text: str, diagnostics: ParseDiagnostics
    ) -> tuple[list[str], list[list[str]], list[int]]:
        """Delimited rows: returns header, [header, *rows] and data row numbers."""
        delimiter = detect_delimiter(text)
        reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter)
        numbered: list[tuple[int, list[str]]] = []
        try:
            for cells in reader:
                numbered.append((reader.line_num, [c.strip() for c in cells]))
        except csv.Error as e:
            raise FormatError(f"malformed delimited content: {e}") from e

        header_index = _find_header(numbered)
        if header_index is None:
            raise FormatError(
                f"no header row found in first {HEADER_SEARCH_ROWS} rows"
            )
        if header_index > 0:
            diagnostics.warn(f"{header_index} line(s) before the header row were ignored")

        _, header = numbered[header_index]
        header = _trim_trailing_empty(header)
        normalized_header = [normalize_header(h) for h in header]

        rows: list[list[str]] = [header]
        row_numbers: list[int] = []
        for line_num, cells in numbered[header_index + 1:]:
            if not any(cells):
                diagnostics.skip(line_num, "blank row")
                continue
            if [normalize_header(c) for c in _trim_trailing_empty(cells)] == normalized_header:
                diagnostics.header_rows += 1
                diagnostics.skip(line_num, "repeated header row", cells)
                continue
            if len(cells) > len(header):
                cells = _trim_trailing_empty(cells, keep=len(header))
            if len(cells) != len(header):
                diagnostics.skip(
                    line_num,
                    f"column count mismatch: expected {len(header)}, got {len(cells)}",
                    cells,
                )
                continue
            rows.append(cells)
            row_numbers.append(line_num)
        return header, rows, row_numbers


def detect_delimiter(text: str, sample_lines: int = 5) -> str:
    """Pick the delimiter with the highest average count over the first lines."""
    lines = [line for line in text.splitlines() if line.strip()][:sample_lines]
    if not lines:
        return ","
    best, best_avg = ",", 0.0
    for delimiter in DELIMITERS:
        avg = sum(line.count(delimiter) for line in lines) / len(lines)
        if avg >= 1 and avg > best_avg:
            best, best_avg = delimiter, avg
    return best


def _find_header(numbered: list[tuple[int, list[str]]]) -> int | None:
    """Index of the first row (within the search window) that looks like a header."""
    for index, (_, cells) in enumerate(numbered[:HEADER_SEARCH_ROWS]):
        lowered = [normalize_header(c) for c in cells if c]
        if len(lowered) < 2:
            continue
        if any(term in cell for cell in lowered for term in HEADER_TERMS):
            return index
    return None


def _trim_trailing_empty(cells: list[str], keep: int = 0) -> list[str]:
    """Drop empty cells off the end, never shrinking below ``keep`` cells."""
    trimmed = list(cells)
    while len(trimmed) > keep and trimmed and not trimmed[-1]:
        trimmed.pop()
    return trimmed
