"""Tests for pack generation, locking, reopening and download links."""

from dataclasses import replace
from pathlib import Path
from urllib.parse import parse_qs, urlsplit
from uuid import uuid4

import pytest
from sqlalchemy import select

from tally.config import get_settings
from tally.errors import NotFoundError, PermissionDeniedError, ValidationError
from tally.models import Pack
from tally.reconciliation.types import SourceType
from tally.services import pack_service as pack_service_module
from tally.services.artifact_store import build_pack_storage_key
from tally.services.exception_service import ExceptionService
from tally.services.pack_service import PackService
from tally.services.pay_run_service import PayRunService
from tally.services.permissions import ActorContext
from tally.services.reconciliation_service import ReconciliationService
from tally.services.review_service import ReviewService
from tally.services.state_machine import PayRunStatus, Role
from tests.sample_data import bank_rows, gl_rows, register_rows


class FailingStore:
    """Artifact store whose uploads always fail."""

    def __init__(self):
        self.calls = 0

    async def put(self, data: bytes, key: str) -> str:
        self.calls += 1
        raise OSError("bucket unavailable")

    def sign(self, key: str) -> str:
        raise AssertionError("not reached")

    async def check(self) -> None:
        raise OSError("bucket unavailable")


@pytest.fixture
def fast_retries(monkeypatch):
    settings = replace(get_settings(), pack_upload_attempts=2, pack_upload_delay_ms=0)
    monkeypatch.setattr(pack_service_module, "get_settings", lambda: settings)


class TestGeneratePack:
    """Tests for PackService.generate_pack."""

    async def test_generates_first_version(self, session, admin, approved_pay_run, artifact_store):
        pack = await PackService(session, artifact_store).generate_pack(
            admin, approved_pay_run.pay_run_id
        )

        assert pack.pack_version == 1
        assert pack.storage_key.endswith(f"/pack/{pack.pack_id}/pack-v1.pdf")
        assert approved_pay_run.status == PayRunStatus.PACKED.value

        stored = Path(pack.storage_uri_pdf.removeprefix("file://"))
        data = stored.read_bytes()
        assert data.startswith(b"%PDF-1.4")
        assert b"Acme Widgets Ltd" in data
        assert b"Approved by: reviewer@ledger.test" in data
        assert b"Generated by: admin@ledger.test" in data

        metadata = pack.pack_metadata
        assert metadata["runNumber"] == 1
        assert metadata["bundleId"] == "BUNDLE_UK"
        assert metadata["exceptionCount"] == 0
        assert len(metadata["checks"]) == 12
        assert {entry["sourceType"] for entry in metadata["imports"]} == {"BANK", "GL", "REGISTER"}
        assert metadata["redaction"] == {
            "maskEmployeeNames": False,
            "maskBankDetails": False,
            "maskNiNumbers": False,
        }
        assert metadata["approvalId"] is not None

    async def test_reopen_then_regenerate_increments_version(
        self, session, admin, approved_pay_run, artifact_store
    ):
        service = PackService(session, artifact_store)
        first = await service.generate_pack(admin, approved_pay_run.pay_run_id)

        pay_run = await service.reopen_pack(admin, approved_pay_run.pay_run_id)
        assert pay_run.status == PayRunStatus.APPROVED.value

        second = await service.generate_pack(admin, approved_pay_run.pay_run_id)
        assert second.pack_version == 2
        assert second.storage_key != first.storage_key
        latest = await service.get_latest_pack(admin.firm_id, approved_pay_run.pay_run_id)
        assert latest.pack_id == second.pack_id

    async def test_requires_approved_pay_run(self, session, admin, reconciled_pay_run, artifact_store):
        with pytest.raises(ValidationError, match="must be approved"):
            await PackService(session, artifact_store).generate_pack(
                admin, reconciled_pay_run.pay_run_id
            )

    async def test_requires_current_run(self, session, admin, test_pay_run, artifact_store):
        test_pay_run.status = PayRunStatus.APPROVED.value
        await session.flush()

        with pytest.raises(ValidationError, match="Reconciliation run is required"):
            await PackService(session, artifact_store).generate_pack(admin, test_pay_run.pay_run_id)

    async def test_unknown_generating_user(self, session, admin, approved_pay_run, artifact_store):
        stranger = ActorContext(firm_id=admin.firm_id, user_id=uuid4(), role=Role.ADMIN)

        with pytest.raises(NotFoundError, match="User not found"):
            await PackService(session, artifact_store).generate_pack(
                stranger, approved_pay_run.pay_run_id
            )
        assert approved_pay_run.status == PayRunStatus.APPROVED.value

    async def test_storage_key_is_unique_per_pack(
        self, session, admin, approved_pay_run, artifact_store
    ):
        pack = await PackService(session, artifact_store).generate_pack(
            admin, approved_pay_run.pay_run_id
        )

        assert pack.storage_key == build_pack_storage_key(
            admin.firm_id, approved_pay_run.pay_run_id, pack.pack_id, 1
        )

    async def test_failed_upload_records_nothing(
        self, session, admin, approved_pay_run, fast_retries
    ):
        store = FailingStore()

        with pytest.raises(OSError):
            await PackService(session, store).generate_pack(admin, approved_pay_run.pay_run_id)

        assert store.calls == 2
        assert approved_pay_run.status == PayRunStatus.APPROVED.value
        packs = await session.scalars(select(Pack))
        assert packs.all() == []

    async def test_redaction_masks_pdf(
        self, session, test_firm, admin, approved_pay_run, artifact_store
    ):
        test_firm.defaults = {"redaction": {"maskEmployeeNames": True}}
        await session.flush()

        pack = await PackService(session, artifact_store).generate_pack(
            admin, approved_pay_run.pay_run_id
        )

        assert pack.pack_metadata["redaction"]["maskEmployeeNames"] is True
        data = Path(pack.storage_uri_pdf.removeprefix("file://")).read_bytes()
        assert b"Redaction: names masked, bank visible, NI visible" in data


class TestLockAndReopen:
    """Tests for locking and reopening packs."""

    async def test_lock_freezes_pay_run(
        self, session, admin, reviewer, preparer, approved_pay_run, artifact_store
    ):
        service = PackService(session, artifact_store)
        await service.generate_pack(admin, approved_pay_run.pay_run_id)

        pack = await service.lock_pack(reviewer, approved_pay_run.pay_run_id)

        assert pack.locked_at is not None
        assert pack.locked_by_user_id == reviewer.user_id
        assert approved_pay_run.status == PayRunStatus.LOCKED.value

        with pytest.raises(ValidationError):
            await service.lock_pack(reviewer, approved_pay_run.pay_run_id)
        with pytest.raises(ValidationError):
            await service.reopen_pack(admin, approved_pay_run.pay_run_id)

        revision = await PayRunService(session).create_pay_run_revision(
            preparer, approved_pay_run.pay_run_id
        )
        assert revision.revision == 2

    async def test_preparer_cannot_lock(self, session, admin, preparer, approved_pay_run, artifact_store):
        service = PackService(session, artifact_store)
        await service.generate_pack(admin, approved_pay_run.pay_run_id)

        with pytest.raises(PermissionDeniedError):
            await service.lock_pack(preparer, approved_pay_run.pay_run_id)

    async def test_lock_without_pack(self, session, admin, test_pay_run, artifact_store):
        test_pay_run.status = PayRunStatus.PACKED.value
        await session.flush()

        with pytest.raises(NotFoundError, match="Pack not found"):
            await PackService(session, artifact_store).lock_pack(admin, test_pay_run.pay_run_id)

    async def test_reopen_requires_packed(self, session, admin, approved_pay_run, artifact_store):
        with pytest.raises(ValidationError, match="must be packed"):
            await PackService(session, artifact_store).reopen_pack(
                admin, approved_pay_run.pay_run_id
            )


class TestLockedPayRunExceptions:
    async def test_exceptions_frozen_after_lock(
        self, session, admin, preparer, reviewer, test_pay_run, import_sources, artifact_store
    ):
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
        reviews = ReviewService(session)
        await reviews.submit_pay_run_for_review(admin, test_pay_run.pay_run_id)
        await reviews.approve_pay_run(reviewer, test_pay_run.pay_run_id)
        service = PackService(session, artifact_store)
        pack = await service.generate_pack(admin, test_pay_run.pay_run_id)
        assert pack.pack_metadata["exceptionCount"] == 1
        await service.lock_pack(admin, test_pay_run.pay_run_id)

        with pytest.raises(ValidationError, match="locked or archived"):
            await ExceptionService(session).resolve_exception(
                preparer, outcome.exceptions[0].exception_id, "After the fact."
            )


class TestDownloadUrl:
    async def test_signed_url(self, session, admin, preparer, approved_pay_run, artifact_store):
        service = PackService(session, artifact_store)
        pack = await service.generate_pack(admin, approved_pay_run.pay_run_id)

        url = await service.get_pack_download_url(preparer, pack.pack_id)

        parts = urlsplit(url)
        assert url.startswith("https://files.tally.test/artifacts/firm/")
        assert parts.path.endswith(f"/pack/{pack.pack_id}/pack-v1.pdf")
        query = parse_qs(parts.query)
        assert artifact_store.verify(
            pack.storage_key, int(query["expires"][0]), query["signature"][0]
        )

    async def test_unknown_pack(self, session, admin, artifact_store):
        with pytest.raises(NotFoundError):
            await PackService(session, artifact_store).get_pack_download_url(admin, uuid4())
