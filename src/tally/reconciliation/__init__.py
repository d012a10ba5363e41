"""Pure reconciliation core: tolerances, check evaluators and variance matching."""

from tally.reconciliation.bundles import BUNDLE_IE, BUNDLE_UK, CheckBundle, get_bundle, required_sources
from tally.reconciliation.engine import evaluate_bundle
from tally.reconciliation.inputs import NormalizedImport, NormalizedRow, ReconciliationInputs
from tally.reconciliation.tolerances import ToleranceSettings, explain_tolerances, resolve_tolerances
from tally.reconciliation.types import (
    CheckEvaluation,
    CheckSeverity,
    CheckStatus,
    CheckType,
    ExceptionCategory,
    Region,
    SourceType,
)
from tally.reconciliation.variances import VarianceType, apply_expected_variances

__all__ = [
    "BUNDLE_IE",
    "BUNDLE_UK",
    "CheckBundle",
    "CheckEvaluation",
    "CheckSeverity",
    "CheckStatus",
    "CheckType",
    "ExceptionCategory",
    "NormalizedImport",
    "NormalizedRow",
    "ReconciliationInputs",
    "Region",
    "SourceType",
    "ToleranceSettings",
    "VarianceType",
    "apply_expected_variances",
    "evaluate_bundle",
    "explain_tolerances",
    "get_bundle",
    "required_sources",
    "resolve_tolerances",
]
