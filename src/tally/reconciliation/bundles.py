"""Versioned check bundles per region."""

from __future__ import annotations

from dataclasses import dataclass, field

from tally.reconciliation import inputs as cat
from tally.reconciliation.types import CheckSeverity, CheckType, Region, SourceType

CHECK_VERSION = "v1"
MAX_EVIDENCE_ROWS = 5

BASE_REQUIRED_SOURCES = (SourceType.REGISTER, SourceType.BANK, SourceType.GL)


@dataclass(frozen=True)
class SeverityBands:
    """Overage thresholds (percentage points above tolerance) for FAIL severity."""

    critical_overage_percent: float = 5
    high_overage_percent: float = 1

    def severity_for(self, overage_percent: float, floor: CheckSeverity) -> CheckSeverity:
        if overage_percent >= self.critical_overage_percent:
            banded = CheckSeverity.CRITICAL
        elif overage_percent >= self.high_overage_percent:
            banded = CheckSeverity.HIGH
        else:
            banded = CheckSeverity.MEDIUM
        return CheckSeverity.max(banded, floor)


@dataclass(frozen=True)
class CheckBundle:
    """A fixed, ordered set of checks and the category groupings they use."""

    bundle_id: str
    version: str
    region: Region
    checks: tuple[CheckType, ...]
    statutory_categories: dict[str, str]
    employer_cost_categories: tuple[str, ...]
    tax_liability_categories: tuple[str, ...]
    pension_categories: tuple[str, ...] = (cat.EMPLOYEE_PENSION, cat.EMPLOYER_PENSION)
    severity_bands: SeverityBands = field(default_factory=SeverityBands)

    @property
    def key(self) -> str:
        return f"{self.bundle_id}_{self.version}"

    def failure_floor(self, check_type: CheckType) -> CheckSeverity:
        """Lowest severity a failing amount comparison may carry."""
        if check_type == CheckType.REGISTER_NET_TO_BANK_TOTAL:
            return CheckSeverity.HIGH
        return CheckSeverity.MEDIUM


_CHECK_ORDER = (
    CheckType.REGISTER_NET_TO_BANK_TOTAL,
    CheckType.JOURNAL_DEBITS_EQUAL_CREDITS,
    CheckType.REGISTER_DEDUCTIONS_TO_STATUTORY_TOTALS,
    CheckType.REGISTER_GROSS_TO_JOURNAL_EXPENSE,
    CheckType.REGISTER_EMPLOYER_COSTS_TO_JOURNAL_EXPENSE,
    CheckType.REGISTER_NET_PAY_TO_JOURNAL_LIABILITY,
    CheckType.REGISTER_TAX_TO_JOURNAL_LIABILITY,
    CheckType.REGISTER_PENSION_TO_JOURNAL_LIABILITY,
    CheckType.REGISTER_PENSION_TO_PENSION_SCHEDULE,
    CheckType.BANK_DUPLICATE_PAYMENTS,
    CheckType.BANK_NEGATIVE_PAYMENTS,
    CheckType.BANK_PAYMENT_COUNT_MISMATCH,
)

BUNDLE_UK = CheckBundle(
    bundle_id="BUNDLE_UK",
    version="V1",
    region=Region.UK,
    checks=_CHECK_ORDER,
    statutory_categories={
        cat.TAX: "PAYE tax",
        cat.EMPLOYEE_NI: "Employee NI",
        cat.EMPLOYER_NI: "Employer NI",
        cat.STUDENT_LOAN: "Student loan",
    },
    employer_cost_categories=(cat.EMPLOYER_NI, cat.EMPLOYER_PENSION),
    tax_liability_categories=(cat.TAX, cat.EMPLOYEE_NI, cat.EMPLOYER_NI, cat.STUDENT_LOAN),
)

BUNDLE_IE = CheckBundle(
    bundle_id="BUNDLE_IE",
    version="V1",
    region=Region.IE,
    checks=_CHECK_ORDER,
    statutory_categories={
        cat.TAX: "PAYE tax",
        cat.USC: "USC",
        cat.PRSI_EMPLOYEE: "Employee PRSI",
        cat.PRSI_EMPLOYER: "Employer PRSI",
    },
    employer_cost_categories=(cat.PRSI_EMPLOYER, cat.EMPLOYER_PENSION),
    tax_liability_categories=(cat.TAX, cat.USC, cat.PRSI_EMPLOYEE, cat.PRSI_EMPLOYER),
)

BUNDLES: dict[Region, CheckBundle] = {Region.UK: BUNDLE_UK, Region.IE: BUNDLE_IE}


def get_bundle(region: Region | str) -> CheckBundle:
    """Active bundle for a region."""
    return BUNDLES[Region(region)]


def required_sources(firm_defaults: object) -> tuple[SourceType, ...]:
    """Source types that must be imported and mapped before reconciling.

    REGISTER, BANK and GL always; STATUTORY and PENSION_SCHEDULE when the
    firm's ``requiredSources`` flags ask for them.
    """
    sources = list(BASE_REQUIRED_SOURCES)
    flags = firm_defaults.get("requiredSources") if isinstance(firm_defaults, dict) else None
    if isinstance(flags, dict):
        if flags.get("statutory") is True:
            sources.append(SourceType.STATUTORY)
        if flags.get("pensionSchedule") is True:
            sources.append(SourceType.PENSION_SCHEDULE)
    return tuple(sources)
