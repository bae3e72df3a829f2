"""Base parser: canonical transaction, shared interface, and field helpers."""

from __future__ import annotations

import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date as _date
from enum import Enum
from typing import Any, Mapping, Sequence

DESCRIPTION_SEPARATOR = " - "


class Institution(str, Enum):
    """Supported statement sources. GENERIC marks fallback-parsed rows."""
    KIWIBANK = "Kiwibank"
    ANZ = "ANZ"
    BNZ = "BNZ"
    WESTPAC = "Westpac"
    GENERIC = "Generic"


@dataclass(frozen=True)
class CanonicalTransaction:
    """Normalized transaction produced by every parser, before DB insertion."""
    date: str              # YYYY-MM-DD (normalized by parser)
    amount: float          # signed: negative=outflow, positive=inflow; NaN=unparseable
    description: str
    source: Institution
    owner: str
    row_number: int | None = None  # 1-based line in the source file
    txn_type: str | None = None    # "debit" / "credit" display tag

    @property
    def amount_is_valid(self) -> bool:
        return math.isfinite(self.amount)

    @property
    def is_income(self) -> bool:
        return self.amount_is_valid and self.amount > 0

    @property
    def signature(self) -> str:
        return compute_signature(self.date, self.amount, self.description)


@dataclass
class SkippedRow:
    row_number: int
    reason: str
    data: list[str] = field(default_factory=list)


@dataclass
class ParseDiagnostics:
    """Per-file accumulation of skipped rows, warnings and errors.

    Errors are structural: any error means the file produced nothing.
    """
    skipped: list[SkippedRow] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    header_rows: int = 0

    @property
    def fatal(self) -> bool:
        return bool(self.errors)

    def skip(self, row_number: int, reason: str, data: Sequence[str] = ()) -> None:
        self.skipped.append(SkippedRow(row_number, reason, list(data)))

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def error(self, message: str) -> None:
        self.errors.append(message)

    def merge(self, other: ParseDiagnostics) -> None:
        self.skipped.extend(other.skipped)
        self.warnings.extend(other.warnings)
        self.errors.extend(other.errors)
        self.header_rows += other.header_rows


@dataclass
class ParseResult:
    transactions: list[CanonicalTransaction]
    diagnostics: ParseDiagnostics


class BaseParser(ABC):
    """Abstract base for institution parsers.

    Subclasses declare the institution they handle and the header signature
    used by the format processor to select them, then implement
    ``_build(fields, txn_date, row_number, owner)`` for a single row.

    ``parse()`` accepts either a list of string lists whose first element is
    the header row, or a list of header-keyed dicts. Rows that are entirely
    blank are dropped; every other row yields exactly one transaction unless
    its date cannot be read.
    """

    institution: Institution
    HEADER: tuple[str, ...] = ()

    def parse(
        self,
        rows: Sequence[Sequence[str]] | Sequence[Mapping[str, Any]],
        owner: str,
        row_numbers: Sequence[int] | None = None,
    ) -> ParseResult:
        diagnostics = ParseDiagnostics()
        transactions: list[CanonicalTransaction] = []

        for offset, record in enumerate(_as_records(rows, diagnostics)):
            row_number = row_numbers[offset] if row_numbers else offset + 2
            if not any(v.strip() for v in record.values()):
                diagnostics.skip(row_number, "blank row")
                continue
            fields = _FieldLookup(record)
            raw_date = self._raw_date(fields)
            txn_date = parse_date(raw_date)
            if txn_date is None:
                diagnostics.skip(
                    row_number,
                    f"unparseable date '{raw_date}'",
                    list(record.values()),
                )
                continue
            txn = self._build(fields, txn_date, row_number, owner)
            if not txn.amount_is_valid:
                diagnostics.warn(
                    f"Row {row_number}: could not parse amount '{self._raw_amount(fields)}'"
                )
            transactions.append(txn)

        return ParseResult(transactions, diagnostics)

    @abstractmethod
    def _build(
        self,
        fields: _FieldLookup,
        txn_date: str,
        row_number: int,
        owner: str,
    ) -> CanonicalTransaction:
        """Build the canonical transaction for one non-blank row."""

    def _raw_date(self, fields: _FieldLookup) -> str:
        return fields.get("Date")

    def _raw_amount(self, fields: _FieldLookup) -> str:
        return fields.get("Amount")

    def matches(self, header: Sequence[str]) -> bool:
        """Return True if the header carries every column of HEADER."""
        cells = {normalize_header(h) for h in header}
        return all(normalize_header(h) in cells for h in self.HEADER)


class _FieldLookup:
    """Case- and punctuation-insensitive access to a header-keyed row."""

    def __init__(self, record: Mapping[str, Any]):
        self._values: dict[str, str] = {}
        for key, value in record.items():
            if key is None:
                continue
            self._values.setdefault(_field_key(str(key)), "" if value is None else str(value))

    def get(self, name: str) -> str:
        return self._values.get(_field_key(name), "").strip()


def _field_key(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", name.lower())


def _as_records(
    rows: Sequence[Sequence[str]] | Sequence[Mapping[str, Any]],
    diagnostics: ParseDiagnostics,
) -> list[dict[str, str]]:
    """Convert header-first string rows to dicts; pass dict rows through."""
    if not rows:
        return []
    if isinstance(rows[0], Mapping):
        return [{str(k): "" if v is None else str(v) for k, v in r.items()} for r in rows]

    header = [str(h) for h in rows[0]]
    diagnostics.header_rows += 1
    records = []
    for row in rows[1:]:
        cells = [str(c) if c is not None else "" for c in row]
        cells += [""] * (len(header) - len(cells))
        records.append(dict(zip(header, cells)))
    return records


def normalize_header(cell: str) -> str:
    """Lower-case and collapse whitespace for header signature matching."""
    return re.sub(r"\s+", " ", cell.replace("\ufeff", "")).strip().lower()


def join_description(*parts: str | None) -> str:
    """Join non-empty parts with the description separator."""
    return DESCRIPTION_SEPARATOR.join(p.strip() for p in parts if p and p.strip())


def compute_signature(date: str, amount: float, description: str) -> str:
    """Dedup key: date|amount|description, trimmed and lower-cased."""
    amount_text = "nan" if math.isnan(amount) else f"{amount:.2f}"
    key = f"{date.strip()}|{amount_text}|{description.strip()}"
    return key.lower()


_CURRENCY_RE = re.compile(r"[$£€¥\s]|NZD|AUD|USD", re.IGNORECASE)


def parse_amount(value: Any) -> float:
    """Parse a bank amount string. Returns NaN when it cannot be read.

    Handles currency symbols/codes, thousands separators, accounting
    parentheses "(12.50)" and trailing DR/CR markers. Empty input is
    unparseable too: a missing amount is not a zero-value transaction.
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if value is None:
        return math.nan
    text = _CURRENCY_RE.sub("", str(value))
    if not text:
        return math.nan

    negative = False
    upper = text.upper()
    if upper.endswith("DR"):
        negative, text = True, text[:-2]
    elif upper.endswith("CR"):
        text = text[:-2]
    if text.startswith("(") and text.endswith(")"):
        negative, text = True, text[1:-1]
    # Decimal comma ("1.234,56") is not a format these banks export
    if "." in text and text.rfind(",") > text.rfind("."):
        return math.nan
    text = text.replace(",", "")

    try:
        amount = float(text)
    except ValueError:
        return math.nan
    if not math.isfinite(amount):
        return math.nan
    return -abs(amount) if negative else amount


_MONTHS = {
    m: i for i, m in enumerate(
        ["jan", "feb", "mar", "apr", "may", "jun",
         "jul", "aug", "sep", "oct", "nov", "dec"], start=1)
}

_DATE_PATTERNS = (
    (re.compile(r"^(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})$"), "ymd"),
    (re.compile(r"^(\d{1,2})[-/.](\d{1,2})[-/.](\d{4})$"), "dmy"),
    (re.compile(r"^(\d{1,2})[-/.](\d{1,2})[-/.](\d{2})$"), "dmy"),
    (re.compile(r"^(\d{4})(\d{2})(\d{2})$"), "ymd"),
    (re.compile(r"^(\d{1,2})[ -]([A-Za-z]{3})[A-Za-z]*[ -](\d{2,4})$"), "dMy"),
)


def parse_date(value: str | None) -> str | None:
    """Normalize a statement date to YYYY-MM-DD.

    NZ exports are day-first, so 03/04/2024 is 3 April. A trailing time
    component ("2024-01-01T10:00:00", "01/02/2024 09:15") is ignored.
    Returns None if the date is missing or invalid.
    """
    if not value:
        return None
    text = value.strip()
    timestamp = re.match(r"^(\S+)[T ]\d{1,2}:\d{2}", text)
    if timestamp:
        text = timestamp.group(1)

    for pattern, order in _DATE_PATTERNS:
        m = pattern.match(text)
        if not m:
            continue
        if order == "ymd":
            year, month, day = int(m.group(1)), int(m.group(2)), int(m.group(3))
        elif order == "dmy":
            day, month, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
        else:
            month = _MONTHS.get(m.group(2).lower())
            if month is None:
                return None
            day, year = int(m.group(1)), int(m.group(3))
        if year < 100:
            year += 2000 if year <= 50 else 1900
        try:
            return _date(year, month, day).isoformat()
        except ValueError:
            return None
    return None
