"""Westpac CSV parser.

Export layout: Date, Amount, Transaction Details. The details column is the
description as-is and may be empty.
"""

from __future__ import annotations

from .base import BaseParser, CanonicalTransaction, Institution, parse_amount


class WestpacCsvParser(BaseParser):
    institution = Institution.WESTPAC
    HEADER = ("Date", "Amount", "Transaction Details")

    def _build(self, fields, txn_date, row_number, owner) -> CanonicalTransaction:
        return CanonicalTransaction(
            date=txn_date,
            amount=parse_amount(fields.get("Amount")),
            description=fields.get("Transaction Details"),
            source=self.institution,
            owner=owner,
            row_number=row_number,
        )
