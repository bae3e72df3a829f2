"""ANZ CSV parser.

Export layout: Date, Amount, Details, Particulars, Reference. Description is
"details - particulars - reference" with blank segments dropped, so a row
with only Details set reads as just the details.
"""

from __future__ import annotations

from .base import (
    BaseParser,
    CanonicalTransaction,
    Institution,
    join_description,
    parse_amount,
)


class AnzCsvParser(BaseParser):
    institution = Institution.ANZ
    HEADER = ("Date", "Amount", "Details", "Particulars", "Reference")

    def _build(self, fields, txn_date, row_number, owner) -> CanonicalTransaction:
        return CanonicalTransaction(
            date=txn_date,
            amount=parse_amount(fields.get("Amount")),
            description=join_description(
                fields.get("Details"),
                fields.get("Particulars"),
                fields.get("Reference"),
            ),
            source=self.institution,
            owner=owner,
            row_number=row_number,
        )
