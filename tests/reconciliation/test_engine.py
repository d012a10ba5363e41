"""Tests for bundle evaluation and normalized inputs."""

from tally.reconciliation.bundles import BUNDLE_IE, BUNDLE_UK, get_bundle, required_sources
from tally.reconciliation.engine import evaluate_bundle
from tally.reconciliation.inputs import NormalizedImport, NormalizedRow, ReconciliationInputs
from tally.reconciliation.tolerances import resolve_tolerances
from tally.reconciliation.types import CheckSeverity, CheckStatus, CheckType, Region, SourceType
from tests.sample_data import bank_rows, gl_rows, register_rows


def matching_inputs(second_payment: int = 80000) -> ReconciliationInputs:
    def build(source_type, rows):
        return NormalizedImport(
            f"{source_type.value.lower()}-1",
            source_type,
            tuple(NormalizedRow.from_dict(row) for row in rows),
        )

    return ReconciliationInputs(
        region=Region.UK,
        imports={
            SourceType.REGISTER: build(SourceType.REGISTER, register_rows()),
            SourceType.BANK: build(SourceType.BANK, bank_rows(second_payment)),
            SourceType.GL: build(SourceType.GL, gl_rows()),
        },
    )


class TestBundles:
    """Test bundle selection and required sources."""

    def test_bundle_per_region(self):
        assert get_bundle("UK") is BUNDLE_UK
        assert get_bundle(Region.IE) is BUNDLE_IE
        assert BUNDLE_UK.key == "BUNDLE_UK_V1"

    def test_bundles_run_every_check_once(self):
        assert len(BUNDLE_UK.checks) == len(set(BUNDLE_UK.checks)) == len(CheckType)

    def test_required_sources_default(self):
        assert required_sources({}) == (SourceType.REGISTER, SourceType.BANK, SourceType.GL)

    def test_required_sources_flags(self):
        sources = required_sources({"requiredSources": {"statutory": True, "pensionSchedule": "yes"}})

        assert SourceType.STATUTORY in sources
        assert SourceType.PENSION_SCHEDULE not in sources


class TestEvaluateBundle:
    """Test running a whole bundle."""

    def test_matching_sources_raise_no_exceptions(self):
        results = evaluate_bundle(BUNDLE_UK, matching_inputs(), resolve_tolerances(Region.UK))

        assert [r.check_type for r in results] == list(BUNDLE_UK.checks)
        assert not any(r.needs_exception for r in results)
        statuses = {r.check_type: r.status for r in results}
        assert statuses[CheckType.REGISTER_NET_TO_BANK_TOTAL] == CheckStatus.PASS
        assert statuses[CheckType.REGISTER_TAX_TO_JOURNAL_LIABILITY] == CheckStatus.PASS
        assert statuses[CheckType.REGISTER_EMPLOYER_COSTS_TO_JOURNAL_EXPENSE] == CheckStatus.PASS
        # No statutory or pension schedule import
        assert statuses[CheckType.REGISTER_DEDUCTIONS_TO_STATUTORY_TOTALS] == CheckStatus.WARN
        assert statuses[CheckType.REGISTER_PENSION_TO_PENSION_SCHEDULE] == CheckStatus.WARN

    def test_short_bank_payment_is_critical(self):
        results = evaluate_bundle(BUNDLE_UK, matching_inputs(50000), resolve_tolerances(Region.UK))

        net_to_bank = results[0]
        assert net_to_bank.status == CheckStatus.FAIL
        assert net_to_bank.severity == CheckSeverity.CRITICAL

    def test_deterministic(self):
        tolerances = resolve_tolerances(Region.UK)

        first = evaluate_bundle(BUNDLE_UK, matching_inputs(70000), tolerances)
        second = evaluate_bundle(BUNDLE_UK, matching_inputs(70000), tolerances)

        assert [r.fingerprint() for r in first] == [r.fingerprint() for r in second]


class TestNormalizedImport:
    """Test totals over normalized rows."""

    def test_journal_debits_and_credits(self):
        gl = NormalizedImport(
            "gl", SourceType.GL, tuple(NormalizedRow.from_dict(row) for row in gl_rows())
        )

        assert gl.debits().total_cents == 334000
        assert gl.credits().total_cents == 334000
        assert gl.magnitude_for(("TAX_LIABILITY",)).total_cents == 88000

    def test_totals_by_category_sorted(self):
        register = NormalizedImport(
            "reg", SourceType.REGISTER, tuple(NormalizedRow.from_dict(row) for row in register_rows())
        )

        totals = register.totals_by_category()

        assert list(totals) == sorted(totals)
        assert totals["NET_PAY"].total_cents == 230000
        assert totals["EMPLOYER_NI"].total_cents == 25000

    def test_row_round_trip_omits_empty_fields(self):
        row = NormalizedRow.from_dict({"rowNumber": "3", "amountCents": "1250"})

        assert row == NormalizedRow(3, 1250)
        assert row.to_dict() == {"rowNumber": 3, "amountCents": 1250}
