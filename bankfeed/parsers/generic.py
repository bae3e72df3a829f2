"""Generic fallback parser for statements from unrecognized banks.

Locates the date, amount and description columns by header alias (see
config/columns.yaml). Formats with separate Debit/Credit columns are
supported: signed amount = credit - debit. When no alias matches and the
header has only two or three columns, the columns are taken positionally as
date, amount[, description].
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from .base import (
    BaseParser,
    CanonicalTransaction,
    Institution,
    ParseDiagnostics,
    ParseResult,
    _field_key,
    join_description,
    parse_amount,
)

logger = logging.getLogger(__name__)

DEFAULT_COLUMN_ALIASES: dict[str, list[str]] = {
    "date": ["Date", "Transaction Date", "Trans Date", "Processed Date",
             "Posted Date", "Value Date", "TxnDate"],
    "amount": ["Amount", "Transaction Amount", "Amount (NZD)", "Value"],
    "debit": ["Debit", "Withdrawal", "Withdrawals", "Money Out"],
    "credit": ["Credit", "Deposit", "Deposits", "Money In"],
    "description": ["Description", "Transaction Details", "Details",
                    "Narrative", "Details/Narrative", "Payee", "Merchant",
                    "Particulars", "Other Party", "Memo"],
    "reference": ["Reference", "Code", "Reference Number"],
}


@dataclass
class ColumnMap:
    """Header names chosen for each canonical field; None when absent."""
    date: str
    amount: str | None = None
    debit: str | None = None
    credit: str | None = None
    description: str | None = None
    reference: str | None = None


class GenericCsvParser(BaseParser):
    """Heuristic parser used when no institution header signature matches.

    Args:
        column_aliases: Maps canonical field names (date, amount, debit,
            credit, description, reference) to candidate header names,
            most preferred first. Configure in config/columns.yaml.
    """

    institution = Institution.GENERIC

    def __init__(self, column_aliases: Mapping[str, Sequence[str]] | None = None):
        self.column_aliases = {
            k: list(v) for k, v in (column_aliases or DEFAULT_COLUMN_ALIASES).items()
        }
        self.columns: ColumnMap | None = None

    def bind(self, header: Sequence[str]) -> ColumnMap | None:
        """Resolve canonical columns for this header. None if unusable."""
        keys = {_field_key(h): h for h in header if h and h.strip()}

        def find(field_name: str) -> str | None:
            for alias in self.column_aliases.get(field_name, []):
                if _field_key(alias) in keys:
                    return keys[_field_key(alias)]
            return None

        date_col = find("date")
        amount_col = find("amount")
        debit_col, credit_col = find("debit"), find("credit")
        description_col = find("description")

        if date_col is None or (amount_col is None and not (debit_col or credit_col)):
            named = [h for h in header if h and h.strip()]
            if 2 <= len(named) <= 3:
                logger.debug("Falling back to positional columns for header %s", named)
                date_col, amount_col = named[0], named[1]
                description_col = named[2] if len(named) == 3 else None
                debit_col = credit_col = None
            else:
                self.columns = None
                return None

        used = {date_col, amount_col, debit_col, credit_col, description_col}
        reference_col = find("reference")
        self.columns = ColumnMap(
            date=date_col,
            amount=amount_col,
            debit=debit_col if amount_col is None else None,
            credit=credit_col if amount_col is None else None,
            description=description_col,
            reference=reference_col if reference_col not in used else None,
        )
        return self.columns

    def parse(
        self,
        rows: Sequence[Sequence[str]] | Sequence[Mapping[str, Any]],
        owner: str,
        row_numbers: Sequence[int] | None = None,
    ) -> ParseResult:
        if rows:
            header = list(rows[0].keys()) if isinstance(rows[0], Mapping) else list(rows[0])
            if self.bind(header) is None:
                result = ParseResult([], ParseDiagnostics())
                result.diagnostics.error(
                    "unrecognized header: could not locate date and amount columns "
                    f"in {header}"
                )
                return result
        return super().parse(rows, owner, row_numbers)

    def _raw_date(self, fields) -> str:
        return fields.get(self.columns.date)

    def _raw_amount(self, fields) -> str:
        cols = self.columns
        if cols.amount is not None:
            return fields.get(cols.amount)
        return "/".join(fields.get(c) for c in (cols.debit, cols.credit) if c)

    def _build(self, fields, txn_date, row_number, owner) -> CanonicalTransaction:
        cols = self.columns
        if cols.amount is not None:
            amount = parse_amount(fields.get(cols.amount))
        else:
            amount = _debit_credit_amount(
                fields.get(cols.debit) if cols.debit else "",
                fields.get(cols.credit) if cols.credit else "",
            )
        description = join_description(
            fields.get(cols.description) if cols.description else "",
            fields.get(cols.reference) if cols.reference else "",
        )
        return CanonicalTransaction(
            date=txn_date,
            amount=amount,
            description=description,
            source=self.institution,
            owner=owner,
            row_number=row_number,
        )


def _debit_credit_amount(debit: str, credit: str) -> float:
    """Signed amount from separate columns: credit - |debit|.

    NaN when both are blank or either present value is unreadable.
    """
    if not debit and not credit:
        return math.nan
    total = 0.0
    if credit:
        value = parse_amount(credit)
        if math.isnan(value):
            return math.nan
        total += abs(value)
    if debit:
        value = parse_amount(debit)
        if math.isnan(value):
            return math.nan
        total -= abs(value)
    return total
