"""
CSV exports for the reports screen.

Rows are the camelCase dicts the API returns; `headers` maps row keys to
column titles and fixes the column order. Keys a row lacks export as an
empty cell.
"""

import csv
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Union

from eepdesk.logging_config import get_logger
from eepdesk.models import TransactionType

logger = get_logger(__name__)

PathLike = Union[str, Path]

STUDENT_ROSTER_HEADERS: Dict[str, str] = {
    "studentId": "Student ID",
    "firstName": "First Name",
    "lastName": "Last Name",
    "dateOfBirth": "Date of Birth",
    "gender": "Gender",
    "studentStatus": "Status",
    "sponsorshipStatus": "Sponsorship",
    "sponsorName": "Sponsor",
    "school": "School",
    "currentGrade": "Grade",
}

FINANCIAL_HEADERS: Dict[str, str] = {
    "date": "Date",
    "description": "Description",
    "category": "Category",
    "type": "Type",
    "amount": "Amount",
}


def _cells(row: Mapping[str, Any], headers: Mapping[str, str]) -> List[Any]:
    return ["" if row.get(key) is None else row.get(key) for key in headers]


def export_rows_to_csv(rows: Iterable[Mapping[str, Any]], headers: Mapping[str, str], path: PathLike) -> int:
    """Write a header line and one line per row; returns the row count"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(list(headers.values()))
        for row in rows:
            writer.writerow(_cells(row, headers))
            count += 1
    logger.info(f"Exported {count} rows to {path}")
    return count


def export_financial_csv_with_summary(
    rows: Iterable[Mapping[str, Any]],
    headers: Mapping[str, str],
    summary: Iterable[str],
    path: PathLike,
) -> int:
    """Summary lines, a blank spacer row, then the table"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        for line in summary:
            writer.writerow([line])
        writer.writerow([])
        writer.writerow(list(headers.values()))
        for row in rows:
            writer.writerow(_cells(row, headers))
            count += 1
    logger.info(f"Exported financial report ({count} transactions) to {path}")
    return count


@dataclass
class FinancialSummary:
    start: str
    end: str
    total_income: float
    total_expense: float

    @property
    def net_balance(self) -> float:
        return self.total_income - self.total_expense

    @classmethod
    def from_transactions(cls, transactions: Iterable[Mapping[str, Any]], start: str, end: str) -> "FinancialSummary":
        income = expense = 0.0
        for transaction in transactions:
            amount = abs(float(transaction.get("amount") or 0))
            if transaction.get("type") == TransactionType.INCOME.value:
                income += amount
            elif transaction.get("type") == TransactionType.EXPENSE.value:
                expense += amount
        return cls(start=start, end=end, total_income=income, total_expense=expense)

    def lines(self) -> List[str]:
        return [
            "Financial Summary",
            f"Date Range: {self.start} to {self.end}",
            f"Total Income: ${self.total_income:.2f}",
            f"Total Expenses: ${self.total_expense:.2f}",
            f"Net Balance: ${self.net_balance:.2f}",
        ]


def student_roster_rows(students: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {**{key: student.get(key) for key in STUDENT_ROSTER_HEADERS},
         "sponsorName": student.get("sponsorName") or "N/A"}
        for student in students
    ]


def financial_rows(transactions: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {**{key: transaction.get(key) for key in FINANCIAL_HEADERS},
         "amount": f"${float(transaction.get('amount') or 0):.2f}"}
        for transaction in transactions
    ]
