"""Tests for exception triage."""

from uuid import uuid4

import pytest
from sqlalchemy import select

from tally.errors import NotFoundError, PermissionDeniedError, ValidationError
from tally.models import AuditEvent
from tally.reconciliation.types import SourceType
from tally.services.exception_service import ExceptionService, require_note
from tally.services.reconciliation_service import ReconciliationService
from tally.services.state_machine import PayRunStatus
from tests.sample_data import bank_rows, gl_rows, register_rows


@pytest.fixture
async def bank_exception(session, preparer, test_pay_run, import_sources):
    """An open HIGH bank mismatch exception on the test pay run."""
    await import_sources(
        test_pay_run,
        {
            SourceType.REGISTER: register_rows(),
            SourceType.BANK: bank_rows(second_payment=70000),
            SourceType.GL: gl_rows(),
        },
    )
    outcome = await ReconciliationService(session).run_reconciliation(
        preparer, test_pay_run.pay_run_id
    )
    return outcome.exceptions[0]


class TestRequireNote:
    def test_strips_note(self):
        assert require_note("  Paid by cheque.  ") == "Paid by cheque."

    @pytest.mark.parametrize("note", ["", "   ", None])
    def test_blank_note_rejected(self, note):
        with pytest.raises(ValidationError):
            require_note(note)


class TestCloseException:
    """Tests for resolve, dismiss and override."""

    async def test_resolve(self, session, preparer, bank_exception):
        exception = await ExceptionService(session).resolve_exception(
            preparer, bank_exception.exception_id, "Late payment cleared on the 2nd."
        )
        await session.flush()

        assert exception.status == "RESOLVED"
        assert exception.resolution_note == "Late payment cleared on the 2nd."
        assert exception.resolved_by_user_id == preparer.user_id
        assert exception.resolved_at is not None

        events = (
            await session.scalars(
                select(AuditEvent).where(AuditEvent.action == "EXCEPTION_RESOLVED")
            )
        ).all()
        assert len(events) == 1
        assert events[0].entity_id == bank_exception.exception_id

    async def test_dismiss(self, session, preparer, bank_exception):
        exception = await ExceptionService(session).dismiss_exception(
            preparer, bank_exception.exception_id, "Duplicate of last month."
        )
        assert exception.status == "DISMISSED"

    async def test_blank_note_rejected(self, session, preparer, bank_exception):
        with pytest.raises(ValidationError):
            await ExceptionService(session).resolve_exception(
                preparer, bank_exception.exception_id, "  "
            )
        assert bank_exception.status == "OPEN"

    async def test_cannot_close_twice(self, session, preparer, bank_exception):
        service = ExceptionService(session)
        await service.resolve_exception(preparer, bank_exception.exception_id, "Done.")

        with pytest.raises(ValidationError, match="Only open exceptions"):
            await service.dismiss_exception(preparer, bank_exception.exception_id, "Again.")

    async def test_preparer_cannot_override(self, session, preparer, bank_exception):
        with pytest.raises(PermissionDeniedError):
            await ExceptionService(session).override_exception(
                preparer, bank_exception.exception_id, "Accepting."
            )

    async def test_reviewer_overrides(self, session, reviewer, bank_exception):
        exception = await ExceptionService(session).override_exception(
            reviewer, bank_exception.exception_id, "Accepted by partner."
        )
        assert exception.status == "OVERRIDDEN"

    async def test_superseded_exception_is_immutable(
        self, session, preparer, test_pay_run, bank_exception
    ):
        await ReconciliationService(session).run_reconciliation(preparer, test_pay_run.pay_run_id)

        with pytest.raises(ValidationError):
            await ExceptionService(session).resolve_exception(
                preparer, bank_exception.exception_id, "Too late."
            )

    async def test_frozen_pay_run_rejects_changes(
        self, session, preparer, test_pay_run, bank_exception
    ):
        test_pay_run.status = PayRunStatus.ARCHIVED.value
        await session.flush()

        with pytest.raises(ValidationError, match="locked or archived"):
            await ExceptionService(session).resolve_exception(
                preparer, bank_exception.exception_id, "Too late."
            )

    async def test_unknown_exception(self, session, preparer):
        with pytest.raises(NotFoundError):
            await ExceptionService(session).resolve_exception(preparer, uuid4(), "Note.")


class TestAssignException:
    """Tests for ExceptionService.assign_exception."""

    async def test_assign_and_unassign(self, session, preparer, reviewer_user, bank_exception):
        service = ExceptionService(session)

        exception = await service.assign_exception(
            preparer, bank_exception.exception_id, reviewer_user.user_id
        )
        assert exception.assigned_to_user_id == reviewer_user.user_id

        exception = await service.assign_exception(preparer, bank_exception.exception_id, None)
        assert exception.assigned_to_user_id is None

    async def test_reassigning_same_user_is_idempotent(
        self, session, preparer, reviewer_user, bank_exception
    ):
        service = ExceptionService(session)
        await service.assign_exception(preparer, bank_exception.exception_id, reviewer_user.user_id)
        await service.assign_exception(preparer, bank_exception.exception_id, reviewer_user.user_id)
        await session.flush()

        events = (
            await session.scalars(
                select(AuditEvent).where(AuditEvent.action == "EXCEPTION_ASSIGNED")
            )
        ).all()
        assert len(events) == 1

    async def test_assignee_must_belong_to_firm(self, session, preparer, bank_exception):
        with pytest.raises(NotFoundError, match="Assignee"):
            await ExceptionService(session).assign_exception(
                preparer, bank_exception.exception_id, uuid4()
            )

    async def test_list_open_exceptions(self, session, preparer, test_pay_run, bank_exception):
        service = ExceptionService(session)
        listed = await service.list_open_exceptions(preparer.firm_id, test_pay_run.pay_run_id)
        assert [e.exception_id for e in listed] == [bank_exception.exception_id]

        await service.resolve_exception(preparer, bank_exception.exception_id, "Done.")
        assert await service.list_open_exceptions(preparer.firm_id, test_pay_run.pay_run_id) == []
