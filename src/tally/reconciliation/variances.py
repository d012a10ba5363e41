"""Expected-variance matching.

A variance is a pre-declared rule scoped to a client (and optionally one
check type) that downgrades a failing evaluation when its condition matches.
Conditions and effects are stored as loose JSON and parsed here; nothing in
this module raises on malformed input.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Protocol

from tally.reconciliation.inputs import BankPayment
from tally.reconciliation.types import AppliedVariance, CheckEvaluation, CheckSeverity, CheckStatus


class VarianceType(str, Enum):
    """Why a variance is expected."""

    DIRECTORS_SEPARATE = "DIRECTORS_SEPARATE"
    PENSION_SEPARATE = "PENSION_SEPARATE"
    ROUNDING = "ROUNDING"
    OTHER = "OTHER"


class VarianceRule(Protocol):
    """Shape of a stored variance; satisfied by the ORM model."""

    expected_variance_id: Any
    check_type: str | None
    variance_type: str
    condition: Any
    effect: Any
    active: bool


@dataclass(frozen=True)
class Bounds:
    """Inclusive numeric bounds; either side optional."""

    min: float | None = None
    max: float | None = None

    def contains(self, value: float | None) -> bool:
        if value is None:
            return False
        if self.min is not None and value < self.min:
            return False
        if self.max is not None and value > self.max:
            return False
        return True


@dataclass(frozen=True)
class VarianceCondition:
    """Parsed condition. Every declared sub-condition must match."""

    amount_bounds: Bounds | None = None
    pct_bounds: Bounds | None = None
    payee_contains: str | None = None
    reference_contains: str | None = None

    @property
    def is_empty(self) -> bool:
        return (
            self.amount_bounds is None
            and self.pct_bounds is None
            and not self.payee_contains
            and not self.reference_contains
        )


@dataclass(frozen=True)
class VarianceEffect:
    """Parsed effect of a matching variance."""

    downgrade_to: CheckStatus
    requires_note: bool = False
    requires_attachment: bool = False
    requires_reviewer_ack: bool = False


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


def _parse_bounds(value: Any) -> Bounds | None:
    if not isinstance(value, dict):
        return None
    return Bounds(min=_number(value.get("min")), max=_number(value.get("max")))


def parse_condition(value: Any) -> VarianceCondition:
    """Parse a stored condition; anything but an object means no constraint."""
    if not isinstance(value, dict):
        return VarianceCondition()
    payee = value.get("payeeContains")
    reference = value.get("referenceContains")
    return VarianceCondition(
        amount_bounds=_parse_bounds(value.get("amountBounds")),
        pct_bounds=_parse_bounds(value.get("pctBounds")),
        payee_contains=payee if isinstance(payee, str) and payee.strip() else None,
        reference_contains=reference if isinstance(reference, str) and reference.strip() else None,
    )


def parse_effect(value: Any) -> VarianceEffect | None:
    """Parse a stored effect; returns None when it cannot be applied."""
    if not isinstance(value, dict):
        return None
    downgrade_to = value.get("downgradeTo")
    if downgrade_to not in (CheckStatus.PASS.value, CheckStatus.WARN.value):
        return None
    return VarianceEffect(
        downgrade_to=CheckStatus(downgrade_to),
        requires_note=value.get("requiresNote") is True,
        requires_attachment=value.get("requiresAttachment") is True,
        requires_reviewer_ack=value.get("requiresReviewerAck") is True,
    )


def _contains(values: Iterable[str], needle: str | None) -> bool:
    if not needle:
        return True
    folded = needle.strip().casefold()
    return any(folded in value.casefold() for value in values)


def condition_matches(
    condition: VarianceCondition,
    evaluation: CheckEvaluation,
    bank_payments: Sequence[BankPayment] = (),
) -> bool:
    """Whether every declared sub-condition matches the evaluation."""
    details = evaluation.details
    delta_value = _number(details.delta_value)
    delta_percent = _number(details.delta_percent)

    if condition.amount_bounds is not None and not condition.amount_bounds.contains(
        abs(delta_value) if delta_value is not None else None
    ):
        return False
    if condition.pct_bounds is not None and not condition.pct_bounds.contains(
        abs(delta_percent) if delta_percent is not None else None
    ):
        return False
    if not _contains((p.payee for p in bank_payments), condition.payee_contains):
        return False
    if not _contains((p.reference for p in bank_payments), condition.reference_contains):
        return False
    return True


def apply_expected_variances(
    evaluation: CheckEvaluation,
    variances: Sequence[VarianceRule],
    bank_payments: Sequence[BankPayment] = (),
) -> CheckEvaluation:
    """Downgrade a FAIL using the first matching active variance, in list order.

    Non-FAIL evaluations are returned unchanged.
    """
    if evaluation.status != CheckStatus.FAIL:
        return evaluation

    for variance in variances:
        if not variance.active:
            continue
        if variance.check_type and variance.check_type != evaluation.check_type.value:
            continue
        effect = parse_effect(variance.effect)
        if effect is None:
            continue
        if not condition_matches(parse_condition(variance.condition), evaluation, bank_payments):
            continue

        downgraded_to_pass = effect.downgrade_to == CheckStatus.PASS
        stamp = AppliedVariance(
            variance_id=str(variance.expected_variance_id),
            variance_type=str(variance.variance_type),
            downgrade_to=effect.downgrade_to,
            requires_note=effect.requires_note,
            requires_attachment=effect.requires_attachment,
            requires_reviewer_ack=effect.requires_reviewer_ack,
        )
        return replace(
            evaluation,
            status=effect.downgrade_to,
            severity=CheckSeverity.INFO if downgraded_to_pass else evaluation.severity,
            summary=f"{evaluation.summary} Expected variance applied.",
            details=replace(evaluation.details, expected_variance=stamp),
            exception=None if downgraded_to_pass else evaluation.exception,
        )

    return evaluation
