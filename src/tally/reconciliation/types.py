"""Value types shared by the reconciliation engine.

Everything here is immutable. Amounts are integer minor units (cents);
``delta_percent`` is a percentage rounded to four decimal places.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Region(str, Enum):
    """Firm region; selects the check bundle and its default tolerances."""

    UK = "UK"
    IE = "IE"


class SourceType(str, Enum):
    """Kinds of imported source files."""

    REGISTER = "REGISTER"
    BANK = "BANK"
    GL = "GL"
    STATUTORY = "STATUTORY"
    PENSION_SCHEDULE = "PENSION_SCHEDULE"


class CheckType(str, Enum):
    """Catalog of check types. Values are the persisted identifiers."""

    REGISTER_NET_TO_BANK_TOTAL = "CHK_REGISTER_NET_TO_BANK_TOTAL"
    JOURNAL_DEBITS_EQUAL_CREDITS = "CHK_JOURNAL_DEBITS_EQUAL_CREDITS"
    REGISTER_DEDUCTIONS_TO_STATUTORY_TOTALS = "CHK_REGISTER_DEDUCTIONS_TO_STATUTORY_TOTALS"
    REGISTER_GROSS_TO_JOURNAL_EXPENSE = "CHK_REGISTER_GROSS_TO_JOURNAL_EXPENSE"
    REGISTER_EMPLOYER_COSTS_TO_JOURNAL_EXPENSE = "CHK_REGISTER_EMPLOYER_COSTS_TO_JOURNAL_EXPENSE"
    REGISTER_NET_PAY_TO_JOURNAL_LIABILITY = "CHK_REGISTER_NET_PAY_TO_JOURNAL_LIABILITY"
    REGISTER_TAX_TO_JOURNAL_LIABILITY = "CHK_REGISTER_TAX_TO_JOURNAL_LIABILITY"
    REGISTER_PENSION_TO_JOURNAL_LIABILITY = "CHK_REGISTER_PENSION_TO_JOURNAL_LIABILITY"
    REGISTER_PENSION_TO_PENSION_SCHEDULE = "CHK_REGISTER_PENSION_TO_PENSION_SCHEDULE"
    BANK_DUPLICATE_PAYMENTS = "CHK_BANK_DUPLICATE_PAYMENTS"
    BANK_NEGATIVE_PAYMENTS = "CHK_BANK_NEGATIVE_PAYMENTS"
    BANK_PAYMENT_COUNT_MISMATCH = "CHK_BANK_PAYMENT_COUNT_MISMATCH"


class CheckStatus(str, Enum):
    """Outcome of one check."""

    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


class CheckSeverity(str, Enum):
    """Severity, ordered from least to most severe."""

    INFO = "INFO"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    @classmethod
    def max(cls, *severities: CheckSeverity) -> CheckSeverity:
        """Most severe of the given severities."""
        return max(severities, key=lambda s: s.rank)


_SEVERITY_ORDER = list(CheckSeverity)


class ExceptionCategory(str, Enum):
    """Exception categories raised by checks."""

    BANK_MISMATCH = "BANK_MISMATCH"
    JOURNAL_MISMATCH = "JOURNAL_MISMATCH"
    STATUTORY_MISMATCH = "STATUTORY_MISMATCH"
    SANITY = "SANITY"
    BANK_DATA_QUALITY = "BANK_DATA_QUALITY"


@dataclass(frozen=True)
class ToleranceConfig:
    """Absolute (cents) and percent bounds for one check family."""

    absolute_cents: int
    percent: float

    def to_dict(self) -> dict[str, Any]:
        return {"absoluteCents": self.absolute_cents, "percent": self.percent}


@dataclass(frozen=True)
class AmountRow:
    """A source row reference with its amount."""

    row_number: int
    amount_cents: int


@dataclass(frozen=True)
class TotalWithRows:
    """A total and the rows that make it up."""

    total_cents: int
    rows: tuple[AmountRow, ...] = ()

    @classmethod
    def of(cls, rows: list[AmountRow] | tuple[AmountRow, ...]) -> TotalWithRows:
        return cls(total_cents=sum(r.amount_cents for r in rows), rows=tuple(rows))

    def __add__(self, other: TotalWithRows) -> TotalWithRows:
        return TotalWithRows(self.total_cents + other.total_cents, self.rows + other.rows)


EMPTY_TOTAL = TotalWithRows(0)


@dataclass(frozen=True)
class EvidencePointer:
    """Rows in one import that support a check's delta."""

    import_id: str
    row_numbers: tuple[int, ...]
    note: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "importId": self.import_id,
            "rowNumbers": list(self.row_numbers),
            "note": self.note,
        }


@dataclass(frozen=True)
class CategoryBreakdown:
    """Per-category line of the statutory comparison."""

    category: str
    label: str
    register_total: int
    statutory_total: int
    delta: int
    delta_percent: float
    within_tolerance: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "label": self.label,
            "registerTotal": self.register_total,
            "statutoryTotal": self.statutory_total,
            "delta": self.delta,
            "deltaPercent": self.delta_percent,
            "withinTolerance": self.within_tolerance,
        }


@dataclass(frozen=True)
class AppliedVariance:
    """Stamp left on a check whose outcome an expected variance changed."""

    variance_id: str
    variance_type: str
    downgrade_to: CheckStatus
    requires_note: bool = False
    requires_attachment: bool = False
    requires_reviewer_ack: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.variance_id,
            "varianceType": self.variance_type,
            "downgradeTo": self.downgrade_to.value,
            "requiresNote": self.requires_note,
            "requiresAttachment": self.requires_attachment,
            "requiresReviewerAck": self.requires_reviewer_ack,
        }


@dataclass(frozen=True)
class CheckDetails:
    """Numeric breakdown of a comparison, serialized with camelCase keys."""

    left_label: str
    right_label: str
    left_value: int
    right_value: int
    delta_value: int
    delta_percent: float
    formula: str
    tolerance_applied: ToleranceConfig
    category_breakdown: tuple[CategoryBreakdown, ...] = ()
    unmapped_categories: tuple[str, ...] = ()
    skipped_reason: str | None = None
    expected_variance: AppliedVariance | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "leftLabel": self.left_label,
            "rightLabel": self.right_label,
            "leftValue": self.left_value,
            "rightValue": self.right_value,
            "deltaValue": self.delta_value,
            "deltaPercent": self.delta_percent,
            "formula": self.formula,
            "toleranceApplied": self.tolerance_applied.to_dict(),
        }
        if self.category_breakdown:
            data["categoryBreakdown"] = [c.to_dict() for c in self.category_breakdown]
        if self.unmapped_categories:
            data["unmappedCategories"] = list(self.unmapped_categories)
        if self.skipped_reason:
            data["skippedReason"] = self.skipped_reason
        if self.expected_variance:
            data["expectedVariance"] = self.expected_variance.to_dict()
        return data


@dataclass(frozen=True)
class ExceptionDraft:
    """Exception to persist for a non-passing evaluation."""

    category: ExceptionCategory
    title: str
    description: str
    evidence: tuple[EvidencePointer, ...] = ()


@dataclass(frozen=True)
class CheckEvaluation:
    """Result of running one evaluator."""

    check_type: CheckType
    check_version: str
    status: CheckStatus
    severity: CheckSeverity
    summary: str
    details: CheckDetails
    evidence: tuple[EvidencePointer, ...] = ()
    exception: ExceptionDraft | None = field(default=None)

    @property
    def needs_exception(self) -> bool:
        """Whether this evaluation should produce a persisted exception."""
        if self.exception is None:
            return False
        return self.status in (CheckStatus.FAIL, CheckStatus.WARN)

    def to_dict(self) -> dict[str, Any]:
        return {
            "checkType": self.check_type.value,
            "checkVersion": self.check_version,
            "status": self.status.value,
            "severity": self.severity.value,
            "summary": self.summary,
            "details": self.details.to_dict(),
            "evidence": [e.to_dict() for e in self.evidence],
        }

    def fingerprint(self) -> str:
        """SHA-256 of the canonical JSON form; equal evaluations hash equally."""
        data_str = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(data_str.encode()).hexdigest()
