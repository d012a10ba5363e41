"""Check evaluators.

Every evaluator is a pure function ``(inputs, tolerances, bundle) ->
CheckEvaluation``. Amount comparisons share one rule: a delta passes when it
is within the absolute bound OR within the percent bound.
"""

from __future__ import annotations

from collections.abc import Callable
from decimal import ROUND_HALF_UP, Decimal

from tally.reconciliation import inputs as cat
from tally.reconciliation.bundles import CHECK_VERSION, MAX_EVIDENCE_ROWS, CheckBundle
from tally.reconciliation.inputs import (
    NormalizedImport,
    ReconciliationInputs,
    count_paid_employees,
    find_duplicate_payments,
    find_non_positive_payments,
)
from tally.reconciliation.tolerances import ToleranceSettings
from tally.reconciliation.types import (
    EMPTY_TOTAL,
    AmountRow,
    CategoryBreakdown,
    CheckDetails,
    CheckEvaluation,
    CheckSeverity,
    CheckStatus,
    CheckType,
    EvidencePointer,
    ExceptionCategory,
    ExceptionDraft,
    SourceType,
    ToleranceConfig,
    TotalWithRows,
)

Evaluator = Callable[[ReconciliationInputs, ToleranceSettings, CheckBundle], CheckEvaluation]

_PERCENT_QUANTUM = Decimal("0.0001")


def compute_delta_percent(left: int, right: int) -> float:
    """|left - right| as a percentage of the larger magnitude; 0 when both are 0."""
    base = max(abs(left), abs(right))
    if base == 0:
        return 0.0
    pct = Decimal(abs(left - right)) * 100 / Decimal(base)
    return float(pct.quantize(_PERCENT_QUANTUM, rounding=ROUND_HALF_UP))


def is_within_tolerance(delta: int, delta_percent: float, tolerance: ToleranceConfig) -> bool:
    """Either bound being satisfied is enough."""
    if delta <= tolerance.absolute_cents:
        return True
    return Decimal(str(delta_percent)) <= Decimal(str(tolerance.percent))


def overage_percent(delta_percent: float, tolerance: ToleranceConfig) -> float:
    """How far the delta percent exceeds the percent bound."""
    return float(Decimal(str(delta_percent)) - Decimal(str(tolerance.percent)))


def build_evidence(import_id: str, rows: tuple[AmountRow, ...] | list[AmountRow], note: str) -> EvidencePointer:
    """Top rows by absolute amount, reported in ascending row order."""
    ranked = sorted(rows, key=lambda r: (-abs(r.amount_cents), r.row_number))
    top = {row.row_number for row in ranked[:MAX_EVIDENCE_ROWS]}
    return EvidencePointer(import_id=import_id, row_numbers=tuple(sorted(top)), note=note)


def _evidence(*pointers: tuple[NormalizedImport | None, tuple[AmountRow, ...] | list[AmountRow], str]) -> tuple[EvidencePointer, ...]:
    result = []
    for source, rows, note in pointers:
        if source is None or not rows:
            continue
        result.append(build_evidence(source.import_id, rows, note))
    return tuple(result)


def _details(
    left_label: str,
    right_label: str,
    left: int,
    right: int,
    tolerance: ToleranceConfig,
    **extra,
) -> CheckDetails:
    return CheckDetails(
        left_label=left_label,
        right_label=right_label,
        left_value=left,
        right_value=right,
        delta_value=abs(left - right),
        delta_percent=compute_delta_percent(left, right),
        formula=f"|{left_label} - {right_label}|",
        tolerance_applied=tolerance,
        **extra,
    )


def skipped(
    check_type: CheckType,
    left_label: str,
    right_label: str,
    reason: str,
    tolerance: ToleranceConfig,
) -> CheckEvaluation:
    """WARN outcome for a comparison whose data is absent or unmapped."""
    return CheckEvaluation(
        check_type=check_type,
        check_version=CHECK_VERSION,
        status=CheckStatus.WARN,
        severity=CheckSeverity.LOW,
        summary=f"{reason}; check skipped.",
        details=_details(left_label, right_label, 0, 0, tolerance, skipped_reason=reason),
    )


def compare_totals(
    check_type: CheckType,
    bundle: CheckBundle,
    tolerance: ToleranceConfig,
    *,
    left_label: str,
    right_label: str,
    left: TotalWithRows,
    right: TotalWithRows,
    left_source: NormalizedImport | None,
    right_source: NormalizedImport | None,
    left_note: str,
    right_note: str,
    category: ExceptionCategory,
    title: str,
    description: str,
) -> CheckEvaluation:
    """Two-sided amount comparison shared by the totals checks."""
    details = _details(left_label, right_label, left.total_cents, right.total_cents, tolerance)
    evidence = _evidence(
        (left_source, left.rows, left_note),
        (right_source, right.rows, right_note),
    )

    if is_within_tolerance(details.delta_value, details.delta_percent, tolerance):
        return CheckEvaluation(
            check_type=check_type,
            check_version=CHECK_VERSION,
            status=CheckStatus.PASS,
            severity=CheckSeverity.INFO,
            summary=f"{left_label} matches {right_label.lower()} within tolerance.",
            details=details,
            evidence=evidence,
        )

    severity = bundle.severity_bands.severity_for(
        overage_percent(details.delta_percent, tolerance),
        bundle.failure_floor(check_type),
    )
    return CheckEvaluation(
        check_type=check_type,
        check_version=CHECK_VERSION,
        status=CheckStatus.FAIL,
        severity=severity,
        summary=f"{left_label} differs from {right_label.lower()} beyond tolerance.",
        details=details,
        evidence=evidence,
        exception=ExceptionDraft(category, title, description, evidence),
    )


# ===== Totals reconciliation =====


def evaluate_register_net_to_bank(
    inputs: ReconciliationInputs, tolerances: ToleranceSettings, bundle: CheckBundle
) -> CheckEvaluation:
    check_type = CheckType.REGISTER_NET_TO_BANK_TOTAL
    tolerance = tolerances.for_check(check_type)
    register = inputs.get(SourceType.REGISTER)
    bank = inputs.get(SourceType.BANK)
    if register is None or bank is None:
        return skipped(
            check_type, "Register net total", "Bank total", "Register or bank import missing", tolerance
        )
    return compare_totals(
        check_type,
        bundle,
        tolerance,
        left_label="Register net total",
        right_label="Bank total",
        left=register.total_for((cat.NET_PAY,)),
        right=bank.total(),
        left_source=register,
        right_source=bank,
        left_note="Top register net rows",
        right_note="Top bank payment rows",
        category=ExceptionCategory.BANK_MISMATCH,
        title="Register net total does not match bank total",
        description="Net pay totals differ between the register and bank sources.",
    )


def evaluate_journal_debits_equal_credits(
    inputs: ReconciliationInputs, tolerances: ToleranceSettings, bundle: CheckBundle
) -> CheckEvaluation:
    check_type = CheckType.JOURNAL_DEBITS_EQUAL_CREDITS
    tolerance = tolerances.for_check(check_type)
    gl = inputs.get(SourceType.GL)
    if gl is None:
        return skipped(
            check_type, "Journal debits total", "Journal credits total", "Journal import missing", tolerance
        )
    return compare_totals(
        check_type,
        bundle,
        tolerance,
        left_label="Journal debits total",
        right_label="Journal credits total",
        left=gl.debits(),
        right=gl.credits(),
        left_source=gl,
        right_source=gl,
        left_note="Top debit rows",
        right_note="Top credit rows",
        category=ExceptionCategory.JOURNAL_MISMATCH,
        title="Journal debits do not equal credits",
        description="The journal debits and credits are not balanced within tolerance.",
    )


def evaluate_register_deductions_to_statutory(
    inputs: ReconciliationInputs, tolerances: ToleranceSettings, bundle: CheckBundle
) -> CheckEvaluation:
    check_type = CheckType.REGISTER_DEDUCTIONS_TO_STATUTORY_TOTALS
    tolerance = tolerances.for_check(check_type)
    left_label, right_label = "Register deductions total", "Statutory totals"
    register = inputs.get(SourceType.REGISTER)
    statutory = inputs.get(SourceType.STATUTORY)
    if statutory is None:
        return skipped(check_type, left_label, right_label, "Statutory totals import missing", tolerance)
    if register is None:
        return skipped(check_type, left_label, right_label, "Register import missing", tolerance)

    register_totals = register.totals_by_category()
    statutory_totals = statutory.totals_by_category()
    categories = [c for c in bundle.statutory_categories if c in register_totals]
    if not categories:
        return skipped(
            check_type, left_label, right_label, "No register deductions are mapped for statutory comparison", tolerance
        )

    breakdown: list[CategoryBreakdown] = []
    mismatched: list[str] = []
    worst = CheckSeverity.INFO
    for category in categories:
        left = register_totals[category].total_cents
        right = statutory_totals.get(category, EMPTY_TOTAL).total_cents
        delta = abs(left - right)
        pct = compute_delta_percent(left, right)
        within = is_within_tolerance(delta, pct, tolerance)
        if not within:
            mismatched.append(category)
            worst = CheckSeverity.max(
                worst,
                bundle.severity_bands.severity_for(
                    overage_percent(pct, tolerance), bundle.failure_floor(check_type)
                ),
            )
        breakdown.append(
            CategoryBreakdown(
                category=category,
                label=bundle.statutory_categories[category],
                register_total=left,
                statutory_total=right,
                delta=delta,
                delta_percent=pct,
                within_tolerance=within,
            )
        )

    unmapped = tuple(sorted(c for c in categories if c not in statutory_totals))
    details = _details(
        left_label,
        right_label,
        sum(register_totals[c].total_cents for c in categories),
        sum(statutory_totals.get(c, EMPTY_TOTAL).total_cents for c in categories),
        tolerance,
        category_breakdown=tuple(breakdown),
        unmapped_categories=unmapped,
    )

    if not mismatched:
        return CheckEvaluation(
            check_type=check_type,
            check_version=CHECK_VERSION,
            status=CheckStatus.PASS,
            severity=CheckSeverity.INFO,
            summary="Register deductions match statutory totals within tolerance.",
            details=details,
        )

    evidence = _evidence(
        (register, [r for c in mismatched for r in register_totals[c].rows], "Register deduction rows"),
        (statutory, [r for c in mismatched for r in statutory_totals.get(c, EMPTY_TOTAL).rows], "Statutory category rows"),
    )
    return CheckEvaluation(
        check_type=check_type,
        check_version=CHECK_VERSION,
        status=CheckStatus.FAIL,
        severity=worst,
        summary="Register deductions differ from statutory totals beyond tolerance.",
        details=details,
        evidence=evidence,
        exception=ExceptionDraft(
            ExceptionCategory.STATUTORY_MISMATCH,
            "Register deductions do not match statutory totals",
            "Out of tolerance: "
            + ", ".join(bundle.statutory_categories[c] for c in mismatched)
            + ".",
            evidence,
        ),
    )


def _register_to_journal(
    check_type: CheckType,
    inputs: ReconciliationInputs,
    tolerances: ToleranceSettings,
    bundle: CheckBundle,
    *,
    register_categories: tuple[str, ...],
    journal_classification: str,
    left_label: str,
    right_label: str,
    subject: str,
) -> CheckEvaluation:
    tolerance = tolerances.for_check(check_type)
    register = inputs.get(SourceType.REGISTER)
    gl = inputs.get(SourceType.GL)
    if register is None or gl is None:
        return skipped(check_type, left_label, right_label, "Register or journal import missing", tolerance)
    if not register.has_category(register_categories):
        return skipped(check_type, left_label, right_label, f"Register has no {subject} rows", tolerance)
    if not gl.has_category((journal_classification,)):
        return skipped(
            check_type, left_label, right_label, f"No journal lines are classified as {subject}", tolerance
        )
    return compare_totals(
        check_type,
        bundle,
        tolerance,
        left_label=left_label,
        right_label=right_label,
        left=register.total_for(register_categories),
        right=gl.magnitude_for((journal_classification,)),
        left_source=register,
        right_source=gl,
        left_note="Register rows",
        right_note="Journal rows",
        category=ExceptionCategory.JOURNAL_MISMATCH,
        title=f"Register {subject} does not match the journal",
        description=f"Journal allocations for {subject} differ from the register totals.",
    )


def evaluate_register_gross_to_journal_expense(
    inputs: ReconciliationInputs, tolerances: ToleranceSettings, bundle: CheckBundle
) -> CheckEvaluation:
    return _register_to_journal(
        CheckType.REGISTER_GROSS_TO_JOURNAL_EXPENSE,
        inputs,
        tolerances,
        bundle,
        register_categories=(cat.GROSS_PAY,),
        journal_classification=cat.GROSS_EXPENSE,
        left_label="Register gross pay",
        right_label="Journal gross pay expense",
        subject="gross pay",
    )


def evaluate_register_employer_costs_to_journal_expense(
    inputs: ReconciliationInputs, tolerances: ToleranceSettings, bundle: CheckBundle
) -> CheckEvaluation:
    return _register_to_journal(
        CheckType.REGISTER_EMPLOYER_COSTS_TO_JOURNAL_EXPENSE,
        inputs,
        tolerances,
        bundle,
        register_categories=bundle.employer_cost_categories,
        journal_classification=cat.EMPLOYER_EXPENSE,
        left_label="Register employer costs",
        right_label="Journal employer cost expense",
        subject="employer cost",
    )


def evaluate_register_net_pay_to_journal_liability(
    inputs: ReconciliationInputs, tolerances: ToleranceSettings, bundle: CheckBundle
) -> CheckEvaluation:
    return _register_to_journal(
        CheckType.REGISTER_NET_PAY_TO_JOURNAL_LIABILITY,
        inputs,
        tolerances,
        bundle,
        register_categories=(cat.NET_PAY,),
        journal_classification=cat.NET_PAY_LIABILITY,
        left_label="Register net pay",
        right_label="Journal net pay liability",
        subject="net pay",
    )


def evaluate_register_tax_to_journal_liability(
    inputs: ReconciliationInputs, tolerances: ToleranceSettings, bundle: CheckBundle
) -> CheckEvaluation:
    return _register_to_journal(
        CheckType.REGISTER_TAX_TO_JOURNAL_LIABILITY,
        inputs,
        tolerances,
        bundle,
        register_categories=bundle.tax_liability_categories,
        journal_classification=cat.TAX_LIABILITY,
        left_label="Register tax and contributions",
        right_label="Journal tax liability",
        subject="tax",
    )


def evaluate_register_pension_to_journal_liability(
    inputs: ReconciliationInputs, tolerances: ToleranceSettings, bundle: CheckBundle
) -> CheckEvaluation:
    return _register_to_journal(
        CheckType.REGISTER_PENSION_TO_JOURNAL_LIABILITY,
        inputs,
        tolerances,
        bundle,
        register_categories=bundle.pension_categories,
        journal_classification=cat.PENSION_LIABILITY,
        left_label="Register pension contributions",
        right_label="Journal pension liability",
        subject="pension",
    )


def evaluate_register_pension_to_schedule(
    inputs: ReconciliationInputs, tolerances: ToleranceSettings, bundle: CheckBundle
) -> CheckEvaluation:
    check_type = CheckType.REGISTER_PENSION_TO_PENSION_SCHEDULE
    tolerance = tolerances.for_check(check_type)
    left_label, right_label = "Register pension total", "Pension schedule total"
    register = inputs.get(SourceType.REGISTER)
    schedule = inputs.get(SourceType.PENSION_SCHEDULE)
    if schedule is None:
        return skipped(check_type, left_label, right_label, "Pension schedule import missing", tolerance)
    if register is None or not register.has_category(bundle.pension_categories):
        return skipped(check_type, left_label, right_label, "Register has no pension rows", tolerance)
    return compare_totals(
        check_type,
        bundle,
        tolerance,
        left_label=left_label,
        right_label=right_label,
        left=register.total_for(bundle.pension_categories),
        right=schedule.total(),
        left_source=register,
        right_source=schedule,
        left_note="Register pension rows",
        right_note="Pension schedule rows",
        category=ExceptionCategory.SANITY,
        title="Register pension total does not match pension schedule",
        description="Pension schedule totals differ from the register totals.",
    )


# ===== Bank data quality =====


def _structural(
    check_type: CheckType,
    bank: NormalizedImport,
    matches: list[AmountRow],
    *,
    left_label: str,
    pass_summary: str,
    fail_summary: str,
    title: str,
    description: str,
) -> CheckEvaluation:
    details = _details(left_label, "Expected", len(matches), 0, ToleranceConfig(0, 0))
    if not matches:
        return CheckEvaluation(
            check_type=check_type,
            check_version=CHECK_VERSION,
            status=CheckStatus.PASS,
            severity=CheckSeverity.INFO,
            summary=pass_summary,
            details=details,
        )
    evidence = (build_evidence(bank.import_id, matches, left_label),)
    return CheckEvaluation(
        check_type=check_type,
        check_version=CHECK_VERSION,
        status=CheckStatus.FAIL,
        severity=CheckSeverity.HIGH,
        summary=fail_summary,
        details=details,
        evidence=evidence,
        exception=ExceptionDraft(ExceptionCategory.BANK_DATA_QUALITY, title, description, evidence),
    )


def evaluate_bank_duplicate_payments(
    inputs: ReconciliationInputs, tolerances: ToleranceSettings, bundle: CheckBundle
) -> CheckEvaluation:
    check_type = CheckType.BANK_DUPLICATE_PAYMENTS
    bank = inputs.get(SourceType.BANK)
    if bank is None:
        return skipped(check_type, "Duplicate payment rows", "Expected", "Bank import missing", ToleranceConfig(0, 0))
    return _structural(
        check_type,
        bank,
        find_duplicate_payments(bank),
        left_label="Duplicate payment rows",
        pass_summary="No duplicate bank payments detected.",
        fail_summary="Duplicate bank payments detected.",
        title="Duplicate bank payments detected",
        description="Multiple payments share the same payee and amount.",
    )


def evaluate_bank_negative_payments(
    inputs: ReconciliationInputs, tolerances: ToleranceSettings, bundle: CheckBundle
) -> CheckEvaluation:
    check_type = CheckType.BANK_NEGATIVE_PAYMENTS
    bank = inputs.get(SourceType.BANK)
    if bank is None:
        return skipped(check_type, "Zero or negative payments", "Expected", "Bank import missing", ToleranceConfig(0, 0))
    return _structural(
        check_type,
        bank,
        find_non_positive_payments(bank),
        left_label="Zero or negative payments",
        pass_summary="No zero or negative bank payments detected.",
        fail_summary="Zero or negative bank payments detected.",
        title="Zero or negative bank payments detected",
        description="Bank payments include zero or negative values.",
    )


def evaluate_bank_payment_count(
    inputs: ReconciliationInputs, tolerances: ToleranceSettings, bundle: CheckBundle
) -> CheckEvaluation:
    check_type = CheckType.BANK_PAYMENT_COUNT_MISMATCH
    tolerance = tolerances.for_check(check_type)
    left_label, right_label = "Register paid employees", "Bank payment count"
    register = inputs.get(SourceType.REGISTER)
    bank = inputs.get(SourceType.BANK)
    if register is None or bank is None:
        return skipped(check_type, left_label, right_label, "Register or bank import missing", tolerance)

    details = _details(left_label, right_label, count_paid_employees(register), len(bank.rows), tolerance)
    within = is_within_tolerance(details.delta_value, details.delta_percent, tolerance)
    return CheckEvaluation(
        check_type=check_type,
        check_version=CHECK_VERSION,
        status=CheckStatus.PASS if within else CheckStatus.WARN,
        severity=CheckSeverity.INFO if within else CheckSeverity.LOW,
        summary=(
            "Bank payment count aligns with register."
            if within
            else "Bank payment count differs from register beyond tolerance."
        ),
        details=details,
    )


EVALUATORS: dict[CheckType, Evaluator] = {
    CheckType.REGISTER_NET_TO_BANK_TOTAL: evaluate_register_net_to_bank,
    CheckType.JOURNAL_DEBITS_EQUAL_CREDITS: evaluate_journal_debits_equal_credits,
    CheckType.REGISTER_DEDUCTIONS_TO_STATUTORY_TOTALS: evaluate_register_deductions_to_statutory,
    CheckType.REGISTER_GROSS_TO_JOURNAL_EXPENSE: evaluate_register_gross_to_journal_expense,
    CheckType.REGISTER_EMPLOYER_COSTS_TO_JOURNAL_EXPENSE: evaluate_register_employer_costs_to_journal_expense,
    CheckType.REGISTER_NET_PAY_TO_JOURNAL_LIABILITY: evaluate_register_net_pay_to_journal_liability,
    CheckType.REGISTER_TAX_TO_JOURNAL_LIABILITY: evaluate_register_tax_to_journal_liability,
    CheckType.REGISTER_PENSION_TO_JOURNAL_LIABILITY: evaluate_register_pension_to_journal_liability,
    CheckType.REGISTER_PENSION_TO_PENSION_SCHEDULE: evaluate_register_pension_to_schedule,
    CheckType.BANK_DUPLICATE_PAYMENTS: evaluate_bank_duplicate_payments,
    CheckType.BANK_NEGATIVE_PAYMENTS: evaluate_bank_negative_payments,
    CheckType.BANK_PAYMENT_COUNT_MISMATCH: evaluate_bank_payment_count,
}
