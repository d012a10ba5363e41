"""Runs a bundle's checks, in bundle order, over one set of inputs."""

from __future__ import annotations

from collections.abc import Sequence

from tally.reconciliation.bundles import CheckBundle
from tally.reconciliation.checks import EVALUATORS
from tally.reconciliation.inputs import ReconciliationInputs
from tally.reconciliation.tolerances import ToleranceSettings
from tally.reconciliation.types import CheckEvaluation
from tally.reconciliation.variances import VarianceRule, apply_expected_variances


def evaluate_bundle(
    bundle: CheckBundle,
    inputs: ReconciliationInputs,
    tolerances: ToleranceSettings,
    variances: Sequence[VarianceRule] = (),
) -> list[CheckEvaluation]:
    """Evaluate every check in the bundle and apply expected variances.

    Deterministic: the same inputs, tolerances and variances always yield
    equal evaluations in the same order.
    """
    bank_payments = inputs.bank_payments()
    evaluations = []
    for check_type in bundle.checks:
        evaluation = EVALUATORS[check_type](inputs, tolerances, bundle)
        evaluations.append(apply_expected_variances(evaluation, variances, bank_payments))
    return evaluations
