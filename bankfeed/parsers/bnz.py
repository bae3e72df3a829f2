"""BNZ parser.

BNZ exports arrive as header-keyed records (Date, Amount, Description),
either from a JSON export or from a CSV read with its header. Amounts are
signed; a debit/credit tag is derived from the sign for display.
"""

from __future__ import annotations

import math

from .base import BaseParser, CanonicalTransaction, Institution, parse_amount


class BnzParser(BaseParser):
    institution = Institution.BNZ
    HEADER = ("Date", "Amount", "Description")

    def _build(self, fields, txn_date, row_number, owner) -> CanonicalTransaction:
        amount = parse_amount(fields.get("Amount"))
        return CanonicalTransaction(
            date=txn_date,
            amount=amount,
            description=fields.get("Description"),
            source=self.institution,
            owner=owner,
            row_number=row_number,
            txn_type=debit_or_credit(amount),
        )


def debit_or_credit(amount: float) -> str | None:
    """Display tag for a signed amount; None when the amount is unparseable."""
    if math.isnan(amount):
        return None
    return "debit" if amount < 0 else "credit"
