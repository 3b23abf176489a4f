"""
Unit Tests for CSV exports
"""
import csv

import pytest

from eepdesk.exports import (
    FINANCIAL_HEADERS,
    STUDENT_ROSTER_HEADERS,
    FinancialSummary,
    export_financial_csv_with_summary,
    export_rows_to_csv,
    financial_rows,
    student_roster_rows,
)


def read_csv(path):
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.reader(f))


@pytest.fixture
def transactions():
    return [
        {"date": "2024-01-05", "description": "Monthly Sponsorship Donation", "category": "Donation",
         "type": "Income", "amount": "50.00"},
        {"date": "2024-01-09", "description": "School Fee Payment", "category": "School Fees",
         "type": "Expense", "amount": "-25.5"},
    ]


class TestExportRows:
    """Test plain table exports"""

    def test_header_order_and_missing_keys(self, tmp_path):
        path = tmp_path / "tasks.csv"
        headers = {"id": "ID", "title": "Title", "dueDate": "Due"}

        count = export_rows_to_csv([{"id": "task_1", "title": "Call, then email"}], headers, path)

        assert count == 1
        assert read_csv(path) == [["ID", "Title", "Due"], ["task_1", "Call, then email", ""]]

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "exports" / "empty.csv"

        count = export_rows_to_csv([], {"id": "ID"}, path)

        assert count == 0
        assert read_csv(path) == [["ID"]]


class TestStudentRoster:
    """Test the roster export"""

    def test_sponsor_defaults_to_na(self, tmp_path):
        students = [
            {"studentId": "EEP-101", "firstName": "Liam", "lastName": "Smith", "sponsorName": None},
            {"studentId": "EEP-102", "firstName": "Olivia", "lastName": "Johnson", "sponsorName": "Hope Foundation"},
        ]
        path = tmp_path / "roster.csv"

        export_rows_to_csv(student_roster_rows(students), STUDENT_ROSTER_HEADERS, path)

        rows = read_csv(path)
        sponsor_column = rows[0].index("Sponsor")
        assert rows[1][sponsor_column] == "N/A"
        assert rows[2][sponsor_column] == "Hope Foundation"


class TestFinancialReport:
    """Test the financial export with its summary block"""

    def test_summary_totals(self, transactions):
        summary = FinancialSummary.from_transactions(transactions, "2024-01-01", "2024-01-31")

        assert summary.total_income == 50.0
        assert summary.total_expense == 25.5
        assert summary.net_balance == 24.5
        assert summary.lines() == [
            "Financial Summary",
            "Date Range: 2024-01-01 to 2024-01-31",
            "Total Income: $50.00",
            "Total Expenses: $25.50",
            "Net Balance: $24.50",
        ]

    def test_amounts_formatted(self, transactions):
        rows = financial_rows(transactions)

        assert [row["amount"] for row in rows] == ["$50.00", "$-25.50"]

    def test_file_layout(self, tmp_path, transactions):
        path = tmp_path / "financial.csv"
        summary = FinancialSummary.from_transactions(transactions, "2024-01-01", "2024-01-31")

        count = export_financial_csv_with_summary(
            financial_rows(transactions), FINANCIAL_HEADERS, summary.lines(), path
        )

        rows = read_csv(path)
        assert count == 2
        assert rows[0] == ["Financial Summary"]
        assert rows[4] == ["Net Balance: $24.50"]
        assert rows[5] == []
        assert rows[6] == ["Date", "Description", "Category", "Type", "Amount"]
        assert rows[7] == ["2024-01-05", "Monthly Sponsorship Donation", "Donation", "Income", "$50.00"]
