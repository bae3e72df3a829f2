"""Kiwibank CSV parser.

Export layout: Date, Amount, Payee, Description. Amounts are already signed.
The payee and free-text description are combined as "payee - description";
either part may be blank.
"""

from __future__ import annotations

from .base import (
    BaseParser,
    CanonicalTransaction,
    Institution,
    join_description,
    parse_amount,
)


class KiwibankCsvParser(BaseParser):
    institution = Institution.KIWIBANK
    HEADER = ("Date", "Amount", "Payee", "Description")

    def _build(self, fields, txn_date, row_number, owner) -> CanonicalTransaction:
        return CanonicalTransaction(
            date=txn_date,
            amount=parse_amount(fields.get("Amount")),
            description=join_description(fields.get("Payee"), fields.get("Description")),
            source=self.institution,
            owner=owner,
            row_number=row_number,
        )
