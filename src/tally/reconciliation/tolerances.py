"""Tolerance resolution across the bundle, firm, client and pay run layers.

Each configuration document (firm ``defaults``, client ``settings``, pay run
``settings``) may carry a ``tolerances`` object. It is parsed into a
``ToleranceLayer``: a flat mapping of field path to value that keeps only
well-formed, finite, non-negative numbers. Layers are then merged field by
field over the regional defaults, innermost layer winning.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from tally.reconciliation.types import CheckType, Region, ToleranceConfig

FAMILIES = ("registerNetToBank", "journalBalance", "statutoryTotals", "journalTieOut")
SCALARS = ("bankCountMismatchPercent",)
FIELDS = tuple(
    f"{family}.{attr}" for family in FAMILIES for attr in ("absoluteCents", "percent")
) + SCALARS

# Layer names in precedence order, outermost first
LAYER_ORDER = ("bundle", "firm", "client", "payRun")


@dataclass(frozen=True)
class ToleranceSettings:
    """Complete, resolved tolerance settings."""

    register_net_to_bank: ToleranceConfig
    journal_balance: ToleranceConfig
    statutory_totals: ToleranceConfig
    journal_tie_out: ToleranceConfig
    bank_count_mismatch_percent: float

    def for_check(self, check_type: CheckType) -> ToleranceConfig:
        """Tolerance family used by a check type."""
        if check_type == CheckType.REGISTER_NET_TO_BANK_TOTAL:
            return self.register_net_to_bank
        if check_type == CheckType.JOURNAL_DEBITS_EQUAL_CREDITS:
            return self.journal_balance
        if check_type in (
            CheckType.REGISTER_DEDUCTIONS_TO_STATUTORY_TOTALS,
            CheckType.REGISTER_PENSION_TO_PENSION_SCHEDULE,
        ):
            return self.statutory_totals
        if check_type == CheckType.BANK_PAYMENT_COUNT_MISMATCH:
            return ToleranceConfig(absolute_cents=1, percent=self.bank_count_mismatch_percent)
        if check_type in (CheckType.BANK_DUPLICATE_PAYMENTS, CheckType.BANK_NEGATIVE_PAYMENTS):
            return ToleranceConfig(absolute_cents=0, percent=0)
        return self.journal_tie_out

    def to_flat(self) -> dict[str, int | float]:
        flat: dict[str, int | float] = {}
        for family, config in (
            ("registerNetToBank", self.register_net_to_bank),
            ("journalBalance", self.journal_balance),
            ("statutoryTotals", self.statutory_totals),
            ("journalTieOut", self.journal_tie_out),
        ):
            flat[f"{family}.absoluteCents"] = config.absolute_cents
            flat[f"{family}.percent"] = config.percent
        flat["bankCountMismatchPercent"] = self.bank_count_mismatch_percent
        return flat

    @classmethod
    def from_flat(cls, flat: dict[str, int | float]) -> ToleranceSettings:
        def config(family: str) -> ToleranceConfig:
            return ToleranceConfig(
                absolute_cents=int(flat[f"{family}.absoluteCents"]),
                percent=float(flat[f"{family}.percent"]),
            )

        return cls(
            register_net_to_bank=config("registerNetToBank"),
            journal_balance=config("journalBalance"),
            statutory_totals=config("statutoryTotals"),
            journal_tie_out=config("journalTieOut"),
            bank_count_mismatch_percent=float(flat["bankCountMismatchPercent"]),
        )


_STANDARD_DEFAULTS = ToleranceSettings(
    register_net_to_bank=ToleranceConfig(absolute_cents=100, percent=0.05),
    journal_balance=ToleranceConfig(absolute_cents=50, percent=0.01),
    statutory_totals=ToleranceConfig(absolute_cents=100, percent=0.05),
    journal_tie_out=ToleranceConfig(absolute_cents=100, percent=0.05),
    bank_count_mismatch_percent=5,
)

DEFAULT_TOLERANCES: dict[Region, ToleranceSettings] = {
    Region.UK: _STANDARD_DEFAULTS,
    Region.IE: _STANDARD_DEFAULTS,
}


@dataclass(frozen=True)
class ToleranceLayer:
    """Sparse set of overrides from one configuration document."""

    name: str
    values: dict[str, int | float] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.values)


@dataclass(frozen=True)
class ResolvedTolerances:
    """Resolved settings plus the layer each field came from."""

    settings: ToleranceSettings
    provenance: dict[str, str]


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _round_cents(value: int | float) -> int:
    return int(Decimal(str(value)).to_integral_value(rounding=ROUND_HALF_UP))


def parse_tolerance_layer(name: str, source: Any) -> ToleranceLayer:
    """Extract well-formed tolerance overrides from a configuration document.

    Never raises. Malformed buckets and non-numeric fields are dropped so the
    next outer layer supplies them; negative numbers are clamped to zero.
    """
    if not isinstance(source, dict):
        return ToleranceLayer(name)
    tolerances = source.get("tolerances")
    if not isinstance(tolerances, dict):
        return ToleranceLayer(name)

    values: dict[str, int | float] = {}
    for family in FAMILIES:
        bucket = tolerances.get(family)
        if not isinstance(bucket, dict):
            continue
        absolute = bucket.get("absoluteCents")
        if _is_number(absolute):
            values[f"{family}.absoluteCents"] = max(0, _round_cents(absolute))
        percent = bucket.get("percent")
        if _is_number(percent):
            values[f"{family}.percent"] = max(0.0, float(percent))

    for scalar in SCALARS:
        value = tolerances.get(scalar)
        if _is_number(value):
            values[scalar] = max(0.0, float(value))

    return ToleranceLayer(name, values)


def merge_layers(base: ToleranceSettings, *layers: ToleranceLayer) -> ResolvedTolerances:
    """Merge layers over ``base`` per field; later layers take precedence."""
    flat = base.to_flat()
    provenance = {key: "bundle" for key in FIELDS}
    for layer in layers:
        for key, value in layer.values.items():
            flat[key] = value
            provenance[key] = layer.name
    return ResolvedTolerances(ToleranceSettings.from_flat(flat), provenance)


def explain_tolerances(
    region: Region | str,
    firm_defaults: Any = None,
    client_settings: Any = None,
    pay_run_settings: Any = None,
) -> ResolvedTolerances:
    """Resolve tolerances, keeping the source layer of every field."""
    base = DEFAULT_TOLERANCES[Region(region)]
    return merge_layers(
        base,
        parse_tolerance_layer("firm", firm_defaults),
        parse_tolerance_layer("client", client_settings),
        parse_tolerance_layer("payRun", pay_run_settings),
    )


def resolve_tolerances(
    region: Region | str,
    firm_defaults: Any = None,
    client_settings: Any = None,
    pay_run_settings: Any = None,
) -> ToleranceSettings:
    """Resolve the effective tolerance settings (pay run > client > firm > bundle)."""
    return explain_tolerances(region, firm_defaults, client_settings, pay_run_settings).settings
