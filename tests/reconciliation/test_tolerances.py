"""Tests for tolerance resolution."""

from tally.reconciliation.tolerances import (
    DEFAULT_TOLERANCES,
    explain_tolerances,
    parse_tolerance_layer,
    resolve_tolerances,
)
from tally.reconciliation.types import CheckType, Region, ToleranceConfig


class TestDefaults:
    """Test regional defaults."""

    def test_uk_defaults(self):
        settings = DEFAULT_TOLERANCES[Region.UK]

        assert settings.register_net_to_bank == ToleranceConfig(100, 0.05)
        assert settings.journal_balance == ToleranceConfig(50, 0.01)
        assert settings.statutory_totals == ToleranceConfig(100, 0.05)
        assert settings.journal_tie_out == ToleranceConfig(100, 0.05)
        assert settings.bank_count_mismatch_percent == 5

    def test_no_overrides_returns_defaults(self):
        assert resolve_tolerances(Region.IE) == DEFAULT_TOLERANCES[Region.IE]

    def test_check_families(self):
        settings = DEFAULT_TOLERANCES[Region.UK]

        assert settings.for_check(CheckType.JOURNAL_DEBITS_EQUAL_CREDITS) == settings.journal_balance
        assert (
            settings.for_check(CheckType.REGISTER_PENSION_TO_PENSION_SCHEDULE)
            == settings.statutory_totals
        )
        assert settings.for_check(CheckType.REGISTER_TAX_TO_JOURNAL_LIABILITY) == settings.journal_tie_out
        assert settings.for_check(CheckType.BANK_PAYMENT_COUNT_MISMATCH) == ToleranceConfig(1, 5)


class TestLayering:
    """Test firm < client < pay run precedence."""

    def test_innermost_layer_wins_per_field(self):
        firm = {"tolerances": {"registerNetToBank": {"absoluteCents": 500, "percent": 0.1}}}
        client = {"tolerances": {"registerNetToBank": {"absoluteCents": 200}}}
        pay_run = {"tolerances": {"registerNetToBank": {"percent": 0.2}}}

        resolved = explain_tolerances(Region.UK, firm, client, pay_run)

        assert resolved.settings.register_net_to_bank == ToleranceConfig(200, 0.2)
        assert resolved.provenance["registerNetToBank.absoluteCents"] == "client"
        assert resolved.provenance["registerNetToBank.percent"] == "payRun"
        assert resolved.provenance["journalBalance.absoluteCents"] == "bundle"

    def test_unrelated_families_untouched(self):
        firm = {"tolerances": {"journalBalance": {"absoluteCents": 0}}}

        settings = resolve_tolerances(Region.UK, firm)

        assert settings.journal_balance == ToleranceConfig(0, 0.01)
        assert settings.register_net_to_bank == ToleranceConfig(100, 0.05)

    def test_scalar_override(self):
        settings = resolve_tolerances(
            Region.UK, None, {"tolerances": {"bankCountMismatchPercent": 10}}
        )

        assert settings.bank_count_mismatch_percent == 10


class TestParsing:
    """Test that malformed overrides are ignored or clamped."""

    def test_negative_values_clamp_to_zero(self):
        layer = parse_tolerance_layer(
            "firm", {"tolerances": {"journalTieOut": {"absoluteCents": -5, "percent": -1}}}
        )

        assert layer.values == {"journalTieOut.absoluteCents": 0, "journalTieOut.percent": 0.0}

    def test_absolute_cents_rounded_half_up(self):
        layer = parse_tolerance_layer(
            "client", {"tolerances": {"statutoryTotals": {"absoluteCents": 150.5}}}
        )

        assert layer.values["statutoryTotals.absoluteCents"] == 151

    def test_huge_absolute_cents_do_not_raise(self):
        layer = parse_tolerance_layer(
            "client", {"tolerances": {"statutoryTotals": {"absoluteCents": 1e308}}}
        )

        assert layer.values["statutoryTotals.absoluteCents"] == 10**308

    def test_non_numeric_values_fall_through(self):
        firm = {"tolerances": {"registerNetToBank": {"absoluteCents": 300}}}
        client = {
            "tolerances": {
                "registerNetToBank": {"absoluteCents": "lots", "percent": True},
                "journalBalance": "strict",
            }
        }

        resolved = explain_tolerances(Region.UK, firm, client)

        assert resolved.settings.register_net_to_bank == ToleranceConfig(300, 0.05)
        assert resolved.provenance["registerNetToBank.absoluteCents"] == "firm"

    def test_non_finite_values_ignored(self):
        layer = parse_tolerance_layer(
            "payRun", {"tolerances": {"journalBalance": {"percent": float("nan")}}}
        )

        assert not layer

    def test_document_without_tolerances(self):
        assert not parse_tolerance_layer("firm", None)
        assert not parse_tolerance_layer("firm", {"redaction": {}})
        assert not parse_tolerance_layer("firm", ["tolerances"])
