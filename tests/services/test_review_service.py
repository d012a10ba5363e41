"""Tests for the review gate, approval and rejection."""

import pytest

from tally.errors import ValidationError
from tally.models import Approval
from tally.reconciliation.types import SourceType
from tally.services.exception_service import ExceptionService
from tally.services.reconciliation_service import ReconciliationService
from tally.services.review_service import ReviewService, allow_self_approval
from tally.services.state_machine import PayRunStatus
from tests.sample_data import bank_rows, gl_rows, register_rows


class TestAllowSelfApproval:
    """Tests for the firm-level self-approval flag."""

    @pytest.mark.parametrize(
        "defaults, expected",
        [
            (None, False),
            ({}, False),
            ({"approvals": {}}, False),
            ({"approvals": {"allowSelfApproval": "true"}}, False),
            ({"approvals": {"allowSelfApproval": True}}, True),
        ],
    )
    def test_flag(self, defaults, expected):
        assert allow_self_approval(defaults) is expected


class TestSubmitForReview:
    """Tests for ReviewService.submit_pay_run_for_review."""

    async def test_clean_run_moves_to_ready_for_review(self, session, admin, reconciled_pay_run):
        pay_run = await ReviewService(session).submit_pay_run_for_review(
            admin, reconciled_pay_run.pay_run_id
        )

        assert pay_run.status == PayRunStatus.READY_FOR_REVIEW.value
        assert pay_run.submitted_by_user_id == admin.user_id
        assert pay_run.submitted_at is not None

    async def test_preparer_cannot_submit(self, session, preparer, reconciled_pay_run):
        with pytest.raises(ValidationError, match="Only reviewers or admins"):
            await ReviewService(session).submit_pay_run_for_review(
                preparer, reconciled_pay_run.pay_run_id
            )
        assert reconciled_pay_run.status == PayRunStatus.RECONCILED.value

    async def test_missing_journal_is_listed(self, session, reviewer, test_pay_run, import_sources):
        await import_sources(
            test_pay_run,
            {SourceType.REGISTER: register_rows(), SourceType.BANK: bank_rows()},
        )

        with pytest.raises(ValidationError) as exc_info:
            await ReviewService(session).submit_pay_run_for_review(
                reviewer, test_pay_run.pay_run_id
            )

        error = exc_info.value
        assert error.details["missing_sources"] == ["GL"]
        assert error.details["status"] == PayRunStatus.MAPPED.value
        assert "Missing required sources: GL." in error.message
        assert "must be reconciled" in error.message

    async def test_open_critical_exception_blocks_until_overridden(
        self, session, preparer, reviewer, test_pay_run, import_sources
    ):
        await import_sources(
            test_pay_run,
            {
                SourceType.REGISTER: register_rows(),
                SourceType.BANK: bank_rows(second_payment=50000),
                SourceType.GL: gl_rows(),
            },
        )
        outcome = await ReconciliationService(session).run_reconciliation(
            preparer, test_pay_run.pay_run_id
        )
        reviews = ReviewService(session)

        gate = await reviews.get_review_gate(reviewer.firm_id, test_pay_run.pay_run_id)
        assert gate.passed is False
        assert gate.open_critical_count == 1

        with pytest.raises(ValidationError, match="critical exceptions"):
            await reviews.submit_pay_run_for_review(reviewer, test_pay_run.pay_run_id)

        await ExceptionService(session).override_exception(
            reviewer, outcome.exceptions[0].exception_id, "Bonus paid separately."
        )
        pay_run = await reviews.submit_pay_run_for_review(reviewer, test_pay_run.pay_run_id)
        assert pay_run.status == PayRunStatus.READY_FOR_REVIEW.value

    async def test_non_critical_exceptions_do_not_block(
        self, session, preparer, admin, test_pay_run, import_sources
    ):
        await import_sources(
            test_pay_run,
            {
                SourceType.REGISTER: register_rows(),
                SourceType.BANK: bank_rows(second_payment=70000),
                SourceType.GL: gl_rows(),
            },
        )
        await ReconciliationService(session).run_reconciliation(preparer, test_pay_run.pay_run_id)

        pay_run = await ReviewService(session).submit_pay_run_for_review(
            admin, test_pay_run.pay_run_id
        )
        assert pay_run.status == PayRunStatus.READY_FOR_REVIEW.value


class TestApproveAndReject:
    """Tests for review decisions."""

    async def test_reviewer_approves(self, session, admin, reviewer, reconciled_pay_run):
        reviews = ReviewService(session)
        await reviews.submit_pay_run_for_review(admin, reconciled_pay_run.pay_run_id)

        approval = await reviews.approve_pay_run(reviewer, reconciled_pay_run.pay_run_id, "  ")

        assert isinstance(approval, Approval)
        assert approval.status == "APPROVED"
        assert approval.comment is None
        assert approval.reviewer_user_id == reviewer.user_id
        assert reconciled_pay_run.status == PayRunStatus.APPROVED.value
        latest = await reviews.get_latest_approval(reviewer.firm_id, reconciled_pay_run.pay_run_id)
        assert latest.approval_id == approval.approval_id

    async def test_reject_requires_comment(self, session, admin, reviewer, reconciled_pay_run):
        reviews = ReviewService(session)
        await reviews.submit_pay_run_for_review(admin, reconciled_pay_run.pay_run_id)

        with pytest.raises(ValidationError, match="comment is required"):
            await reviews.reject_pay_run(reviewer, reconciled_pay_run.pay_run_id, "   ")
        assert reconciled_pay_run.status == PayRunStatus.READY_FOR_REVIEW.value

    async def test_reject_returns_to_reconciled(self, session, admin, reviewer, reconciled_pay_run):
        reviews = ReviewService(session)
        await reviews.submit_pay_run_for_review(admin, reconciled_pay_run.pay_run_id)

        approval = await reviews.reject_pay_run(
            reviewer, reconciled_pay_run.pay_run_id, " Pension schedule missing. "
        )

        assert approval.status == "REJECTED"
        assert approval.comment == "Pension schedule missing."
        assert reconciled_pay_run.status == PayRunStatus.RECONCILED.value

    async def test_cannot_approve_before_submission(self, session, reviewer, reconciled_pay_run):
        with pytest.raises(ValidationError, match="not ready for review"):
            await ReviewService(session).approve_pay_run(reviewer, reconciled_pay_run.pay_run_id)

    async def test_preparer_cannot_approve(self, session, admin, preparer, reconciled_pay_run):
        reviews = ReviewService(session)
        await reviews.submit_pay_run_for_review(admin, reconciled_pay_run.pay_run_id)

        with pytest.raises(ValidationError, match="Only reviewers or admins"):
            await reviews.approve_pay_run(preparer, reconciled_pay_run.pay_run_id)

    async def test_self_approval_blocked_by_default(self, session, reviewer, reconciled_pay_run):
        reviews = ReviewService(session)
        await reviews.submit_pay_run_for_review(reviewer, reconciled_pay_run.pay_run_id)

        with pytest.raises(ValidationError, match="Self-approval is disabled"):
            await reviews.approve_pay_run(reviewer, reconciled_pay_run.pay_run_id)

    async def test_self_approval_allowed_when_enabled(
        self, session, test_firm, reviewer, reconciled_pay_run
    ):
        test_firm.defaults = {"approvals": {"allowSelfApproval": True}}
        await session.flush()
        reviews = ReviewService(session)
        await reviews.submit_pay_run_for_review(reviewer, reconciled_pay_run.pay_run_id)

        approval = await reviews.approve_pay_run(reviewer, reconciled_pay_run.pay_run_id)

        assert approval.status == "APPROVED"
        assert reconciled_pay_run.status == PayRunStatus.APPROVED.value
