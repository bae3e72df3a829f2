"""Tests for the generic fallback parser."""

import math

from bankfeed.parsers.base import Institution
from bankfeed.parsers.generic import GenericCsvParser


class TestBind:
    def test_aliases(self):
        cols = GenericCsvParser().bind(["Transaction Date", "Narrative", "Value", "Reference"])
        assert cols.date == "Transaction Date"
        assert cols.amount == "Value"
        assert cols.description == "Narrative"
        assert cols.reference == "Reference"

    def test_debit_credit_columns(self):
        cols = GenericCsvParser().bind(["Date", "Details", "Debit", "Credit", "Balance"])
        assert cols.amount is None
        assert (cols.debit, cols.credit) == ("Debit", "Credit")

    def test_amount_preferred_over_debit_credit(self):
        cols = GenericCsvParser().bind(["Date", "Amount", "Debit", "Credit"])
        assert cols.amount == "Amount"
        assert cols.debit is None and cols.credit is None

    def test_positional_fallback(self):
        cols = GenericCsvParser().bind(["When", "How Much", "What"])
        assert (cols.date, cols.amount, cols.description) == ("When", "How Much", "What")

    def test_unusable(self):
        assert GenericCsvParser().bind(["Foo", "Bar", "Baz", "Qux"]) is None

    def test_custom_aliases(self):
        parser = GenericCsvParser({"date": ["Posting Date"], "amount": ["Sum"]})
        cols = parser.bind(["Posting Date", "Sum", "Other"])
        assert (cols.date, cols.amount) == ("Posting Date", "Sum")


class TestParse:
    def test_signed_amount_column(self):
        rows = [["Transaction Date", "Narrative", "Value"], ["01/03/2024", "Shop", "-4.50"]]
        result = GenericCsvParser().parse(rows, "u")
        txn = result.transactions[0]
        assert (txn.date, txn.amount, txn.description) == ("2024-03-01", -4.5, "Shop")
        assert txn.source is Institution.GENERIC

    def test_debit_credit_amounts(self):
        rows = [
            ["Date", "Details", "Debit", "Credit"],
            ["2024-03-01", "Shop", "4.50", ""],
            ["2024-03-02", "Pay", "", "100.00"],
            ["2024-03-03", "Nothing", "", ""],
        ]
        txns = GenericCsvParser().parse(rows, "u").transactions
        assert txns[0].amount == -4.5
        assert txns[1].amount == 100.0
        assert math.isnan(txns[2].amount)

    def test_reference_appended(self):
        rows = [["Date", "Amount", "Memo", "Code"], ["2024-03-01", "-1", "Bus", "AT HOP"]]
        txn = GenericCsvParser().parse(rows, "u").transactions[0]
        assert txn.description == "Bus - AT HOP"

    def test_unrecognized_header_is_fatal(self):
        rows = [["Foo", "Bar", "Baz", "Qux"], ["1", "2", "3", "4"]]
        result = GenericCsvParser().parse(rows, "u")
        assert result.transactions == []
        assert result.diagnostics.fatal
        assert "unrecognized header" in result.diagnostics.errors[0]

    def test_records(self):
        records = [{"Posted Date": "2024-03-01", "Transaction Amount": "12", "Payee": "X"}]
        txn = GenericCsvParser().parse(records, "u").transactions[0]
        assert (txn.amount, txn.description) == (12.0, "X")
