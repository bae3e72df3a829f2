"""Tests for the Kiwibank CSV parser (Date, Amount, Payee, Description)."""

import math

from bankfeed.parsers.base import Institution
from bankfeed.parsers.kiwibank import KiwibankCsvParser

HEADER = ["Date", "Amount", "Payee", "Description"]


def _parse(*rows, owner="user-1"):
    return KiwibankCsvParser().parse([HEADER, *rows], owner)


class TestParse:
    def test_single_row(self):
        result = _parse(["2024-01-01", "-75.00", "Countdown", "Groceries"])
        assert len(result.transactions) == 1
        txn = result.transactions[0]
        assert txn.date == "2024-01-01"
        assert txn.amount == -75.0
        assert txn.description == "Countdown - Groceries"
        assert txn.source is Institution.KIWIBANK
        assert txn.owner == "user-1"
        assert txn.row_number == 2

    def test_invalid_amount_is_nan_and_row_kept(self):
        result = _parse(["2024-01-01", "invalid", "Countdown", "Groceries"])
        assert len(result.transactions) == 1
        assert math.isnan(result.transactions[0].amount)
        assert any("invalid" in w for w in result.diagnostics.warnings)

    def test_missing_payee_falls_back_to_description(self):
        result = _parse(["2024-01-01", "-5", "", "Coffee"])
        assert result.transactions[0].description == "Coffee"

    def test_missing_description_falls_back_to_payee(self):
        result = _parse(["2024-01-01", "-5", "Coffee Co", ""])
        assert result.transactions[0].description == "Coffee Co"

    def test_both_missing_gives_empty_description(self):
        result = _parse(["2024-01-01", "-5", "", ""])
        assert result.transactions[0].description == ""

    def test_rows_in_equal_transactions_out(self):
        rows = [[f"2024-01-{d:02d}", f"-{d}.00", "Payee", f"Item {d}"] for d in range(1, 11)]
        result = _parse(*rows)
        assert len(result.transactions) == 10
        assert [t.row_number for t in result.transactions] == list(range(2, 12))

    def test_blank_row_skipped(self):
        result = _parse(["2024-01-01", "-5", "A", "B"], ["", "", "", ""], ["2024-01-02", "6", "C", "D"])
        assert len(result.transactions) == 2
        assert [s.reason for s in result.diagnostics.skipped] == ["blank row"]

    def test_unparseable_date_skipped(self):
        result = _parse(["not a date", "-5", "A", "B"])
        assert result.transactions == []
        assert result.diagnostics.skipped[0].row_number == 2
        assert "unparseable date" in result.diagnostics.skipped[0].reason

    def test_column_order_independent(self):
        rows = [["Description", "Payee", "Amount", "Date"], ["Groceries", "Countdown", "-75.00", "01/01/2024"]]
        txn = KiwibankCsvParser().parse(rows, "u").transactions[0]
        assert (txn.date, txn.amount, txn.description) == ("2024-01-01", -75.0, "Countdown - Groceries")

    def test_header_keyed_records(self):
        records = [{"Date": "2024-01-01", "Amount": "-1", "Payee": "P", "Description": "D"}]
        result = KiwibankCsvParser().parse(records, "u")
        assert result.transactions[0].description == "P - D"
        assert result.diagnostics.header_rows == 0

    def test_explicit_row_numbers(self):
        result = KiwibankCsvParser().parse(
            [HEADER, ["2024-01-01", "-1", "P", "D"]], "u", row_numbers=[7],
        )
        assert result.transactions[0].row_number == 7


def test_matches_header():
    parser = KiwibankCsvParser()
    assert parser.matches(["date", " AMOUNT ", "Payee", "Description"])
    assert not parser.matches(["Date", "Amount", "Description"])
