"""Tests for pay run creation, revisions and archiving."""

from datetime import date
from uuid import uuid4

import pytest

from tally.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from tally.services.pay_run_service import PayRunService, format_period_label
from tally.services.state_machine import PayRunStatus


def test_format_period_label():
    assert format_period_label(date(2026, 3, 1), date(2026, 3, 31)) == "01 Mar 2026 - 31 Mar 2026"


class TestCreatePayRun:
    """Tests for PayRunService.create_pay_run."""

    async def test_creates_draft_revision_one(self, session, preparer, test_client):
        pay_run = await PayRunService(session).create_pay_run(
            preparer, test_client.client_id, date(2026, 4, 1), date(2026, 4, 30)
        )

        assert pay_run.status == PayRunStatus.DRAFT.value
        assert pay_run.revision == 1
        assert pay_run.period_label == "01 Apr 2026 - 30 Apr 2026"
        assert pay_run.created_by_user_id == preparer.user_id

    async def test_period_must_be_ordered(self, session, preparer, test_client):
        with pytest.raises(ValidationError):
            await PayRunService(session).create_pay_run(
                preparer, test_client.client_id, date(2026, 4, 30), date(2026, 4, 1)
            )

    async def test_duplicate_period_conflicts(self, session, preparer, test_client, test_pay_run):
        with pytest.raises(ConflictError):
            await PayRunService(session).create_pay_run(
                preparer, test_client.client_id, test_pay_run.period_start, test_pay_run.period_end
            )

    async def test_unknown_client(self, session, preparer):
        with pytest.raises(NotFoundError):
            await PayRunService(session).create_pay_run(
                preparer, uuid4(), date(2026, 4, 1), date(2026, 4, 30)
            )

    async def test_pay_run_scoped_to_firm(self, session, preparer, test_pay_run):
        with pytest.raises(NotFoundError):
            await PayRunService(session).get_pay_run(uuid4(), test_pay_run.pay_run_id)


class TestRevisionsAndArchive:
    """Tests for revisions and archiving."""

    async def test_revision_requires_locked(self, session, preparer, test_pay_run):
        with pytest.raises(ValidationError, match="Only locked"):
            await PayRunService(session).create_pay_run_revision(preparer, test_pay_run.pay_run_id)

    async def test_revision_of_locked_pay_run(self, session, preparer, test_pay_run):
        test_pay_run.status = PayRunStatus.LOCKED.value
        await session.flush()
        service = PayRunService(session)

        revision = await service.create_pay_run_revision(preparer, test_pay_run.pay_run_id)

        assert revision.revision == 2
        assert revision.status == PayRunStatus.DRAFT.value
        assert revision.period_start == test_pay_run.period_start

        with pytest.raises(ValidationError, match="latest revision"):
            await service.create_pay_run_revision(preparer, test_pay_run.pay_run_id)

    async def test_admin_archives(self, session, admin, test_pay_run):
        pay_run = await PayRunService(session).archive_pay_run(admin, test_pay_run.pay_run_id)
        assert pay_run.status == PayRunStatus.ARCHIVED.value

    async def test_preparer_cannot_archive(self, session, preparer, test_pay_run):
        with pytest.raises(PermissionDeniedError):
            await PayRunService(session).archive_pay_run(preparer, test_pay_run.pay_run_id)

    async def test_locked_pay_run_cannot_be_archived(self, session, admin, test_pay_run):
        test_pay_run.status = PayRunStatus.LOCKED.value
        await session.flush()

        with pytest.raises(InvalidTransitionError):
            await PayRunService(session).archive_pay_run(admin, test_pay_run.pay_run_id)

    async def test_open_exception_counts_default_to_zero(self, session, preparer, test_pay_run):
        counts = await PayRunService(session).get_open_exception_counts(
            preparer.firm_id, [test_pay_run.pay_run_id]
        )
        assert counts == {test_pay_run.pay_run_id: 0}
        assert await PayRunService(session).get_open_exception_counts(preparer.firm_id, []) == {}
