"""Normalized import data consumed by the check evaluators.

Parsing and column mapping happen upstream; by the time rows reach this
module every amount is an integer in minor units and every row carries the
category assigned by the mapping template.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from tally.reconciliation.types import AmountRow, Region, SourceType, TotalWithRows

# Register categories
NET_PAY = "NET_PAY"
GROSS_PAY = "GROSS_PAY"
TAX = "TAX"
EMPLOYEE_NI = "EMPLOYEE_NI"
EMPLOYER_NI = "EMPLOYER_NI"
EMPLOYEE_PENSION = "EMPLOYEE_PENSION"
EMPLOYER_PENSION = "EMPLOYER_PENSION"
STUDENT_LOAN = "STUDENT_LOAN"
USC = "USC"
PRSI_EMPLOYEE = "PRSI_EMPLOYEE"
PRSI_EMPLOYER = "PRSI_EMPLOYER"

# Journal account classifications
GROSS_EXPENSE = "GROSS_EXPENSE"
EMPLOYER_EXPENSE = "EMPLOYER_EXPENSE"
NET_PAY_LIABILITY = "NET_PAY_LIABILITY"
TAX_LIABILITY = "TAX_LIABILITY"
PENSION_LIABILITY = "PENSION_LIABILITY"


@dataclass(frozen=True)
class NormalizedRow:
    """One mapped source row."""

    row_number: int
    amount_cents: int
    category: str | None = None
    payee: str | None = None
    reference: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NormalizedRow:
        return cls(
            row_number=int(data["rowNumber"]),
            amount_cents=int(data["amountCents"]),
            category=data.get("category"),
            payee=data.get("payee"),
            reference=data.get("reference"),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"rowNumber": self.row_number, "amountCents": self.amount_cents}
        for key, value in (
            ("category", self.category),
            ("payee", self.payee),
            ("reference", self.reference),
        ):
            if value is not None:
                data[key] = value
        return data

    @property
    def amount_row(self) -> AmountRow:
        return AmountRow(self.row_number, self.amount_cents)


@dataclass(frozen=True)
class BankPayment:
    """Payee/reference context used by expected-variance text matching."""

    payee: str
    reference: str
    amount_cents: int


@dataclass(frozen=True)
class NormalizedImport:
    """Rows of one import, in source order."""

    import_id: str
    source_type: SourceType
    rows: tuple[NormalizedRow, ...] = ()

    def totals_by_category(self) -> dict[str, TotalWithRows]:
        """Totals per category, keys sorted for deterministic iteration."""
        grouped: dict[str, list[AmountRow]] = defaultdict(list)
        for row in self.rows:
            if row.category:
                grouped[row.category].append(row.amount_row)
        return {key: TotalWithRows.of(grouped[key]) for key in sorted(grouped)}

    def total(self) -> TotalWithRows:
        return TotalWithRows.of([row.amount_row for row in self.rows])

    def total_for(self, categories: tuple[str, ...] | list[str]) -> TotalWithRows:
        """Total of rows whose category is in ``categories``."""
        wanted = set(categories)
        return TotalWithRows.of(
            [row.amount_row for row in self.rows if row.category in wanted]
        )

    def has_category(self, categories: tuple[str, ...] | list[str]) -> bool:
        wanted = set(categories)
        return any(row.category in wanted for row in self.rows)

    def magnitude_for(self, categories: tuple[str, ...] | list[str]) -> TotalWithRows:
        """Total of absolute amounts for journal lines with these classifications."""
        wanted = set(categories)
        return TotalWithRows.of(
            [
                AmountRow(row.row_number, abs(row.amount_cents))
                for row in self.rows
                if row.category in wanted
            ]
        )

    def debits(self) -> TotalWithRows:
        """Journal lines with a positive signed amount."""
        return TotalWithRows.of([row.amount_row for row in self.rows if row.amount_cents > 0])

    def credits(self) -> TotalWithRows:
        """Journal lines with a negative signed amount, as positive values."""
        return TotalWithRows.of(
            [
                AmountRow(row.row_number, -row.amount_cents)
                for row in self.rows
                if row.amount_cents < 0
            ]
        )

    def bank_payments(self) -> tuple[BankPayment, ...]:
        return tuple(
            BankPayment(row.payee or "", row.reference or "", row.amount_cents)
            for row in self.rows
        )


@dataclass(frozen=True)
class ReconciliationInputs:
    """Latest usable import per source type for one pay run."""

    region: Region
    imports: dict[SourceType, NormalizedImport] = field(default_factory=dict)

    def get(self, source_type: SourceType) -> NormalizedImport | None:
        return self.imports.get(source_type)

    def bank_payments(self) -> tuple[BankPayment, ...]:
        bank = self.get(SourceType.BANK)
        return bank.bank_payments() if bank else ()


def find_duplicate_payments(bank: NormalizedImport) -> list[AmountRow]:
    """Rows sharing a normalized payee and amount with at least one other row."""
    groups: dict[tuple[str, int], list[AmountRow]] = defaultdict(list)
    for row in bank.rows:
        payee = (row.payee or "").strip().casefold()
        if not payee:
            continue
        groups[(payee, row.amount_cents)].append(row.amount_row)
    duplicates = [row for rows in groups.values() if len(rows) > 1 for row in rows]
    return sorted(duplicates, key=lambda r: r.row_number)


def find_non_positive_payments(bank: NormalizedImport) -> list[AmountRow]:
    """Payments of zero or less."""
    return [row.amount_row for row in bank.rows if row.amount_cents <= 0]


def count_paid_employees(register: NormalizedImport) -> int:
    """Register rows carrying a positive net pay amount."""
    return sum(1 for row in register.rows if row.category == NET_PAY and row.amount_cents > 0)
