"""Pack generation, reopening, locking and download links."""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tally.config import get_settings
from tally.errors import ConflictError, NotFoundError, ValidationError
from tally.models import CheckResult, Client, Import, Pack, PayRun, ReconException, User, utcnow
from tally.observability import start_span, with_retry
from tally.services.artifact_store import ArtifactStore, LocalArtifactStore, build_pack_storage_key
from tally.services.audit import AuditAction, AuditRecorder, SessionAuditSink
from tally.services.pack_renderer import (
    PackCheckLine,
    PackContent,
    PackExceptionLine,
    PackImportLine,
    RedactionSettings,
    build_pack_lines,
    render_pdf,
)
from tally.services.pay_run_service import PayRunService
from tally.services.permissions import ActorContext, Permission, require_permission
from tally.services.reconciliation_service import ReconciliationService
from tally.services.review_service import ReviewService
from tally.services.state_machine import PayRunStateMachine, PayRunStatus


class PackService:
    """Service for the pay run's versioned evidence packs."""

    def __init__(
        self,
        session: AsyncSession,
        store: ArtifactStore | None = None,
        audit: AuditRecorder | None = None,
    ):
        self.session = session
        self.store = store or LocalArtifactStore.from_settings()
        self.audit = audit or AuditRecorder(SessionAuditSink(session))
        self.pay_runs = PayRunService(session, self.audit)
        self.reconciliation = ReconciliationService(session, audit=self.audit)
        self.reviews = ReviewService(session, self.audit)

    async def generate_pack(self, actor: ActorContext, pay_run_id: UUID) -> Pack:
        """Render, upload and record the next pack version for an approved pay run.

        The pay run moves to PACKED. Uploads are retried; if every attempt
        fails nothing is recorded and the pay run stays APPROVED.
        """
        require_permission(actor, Permission.PACK_GENERATE)
        PayRunStateMachine.validate_transition(
            PayRunStatus.APPROVED.value, PayRunStatus.PACKED.value, actor.role
        )
        pay_run = await self._load(actor, pay_run_id, PayRunStatus.APPROVED)

        run = await self.reconciliation.get_current_run(actor.firm_id, pay_run_id)
        if run is None:
            raise ValidationError("Reconciliation run is required before packing.")

        current = await self.session.scalar(
            select(func.max(Pack.pack_version)).where(Pack.pay_run_id == pay_run_id)
        )
        pack_version = (current or 0) + 1

        firm = await self.pay_runs.get_firm(actor.firm_id)
        client = await self.session.get(Client, pay_run.client_id)
        generated_by = await self._user_email(actor.firm_id, actor.user_id)
        redaction = RedactionSettings.from_defaults(firm.defaults)
        approval = await self.reviews.get_latest_approval(actor.firm_id, pay_run_id)
        approved_by = (
            await self._user_email(actor.firm_id, approval.reviewer_user_id)
            if approval is not None and approval.status == "APPROVED"
            else None
        )

        imports = await self._run_imports(actor.firm_id, run.input_summary)
        check_results = await self.reconciliation.list_check_results(
            actor.firm_id, run.reconciliation_run_id
        )
        exceptions = await self._run_exceptions(run.reconciliation_run_id)

        with start_span(
            "PACK_GENERATION",
            firm_id=actor.firm_id,
            pay_run_id=pay_run_id,
            pack_version=pack_version,
        ):
            lines = build_pack_lines(
                PackContent(
                    client_name=client.name if client else "",
                    period_label=pay_run.period_label,
                    revision=pay_run.revision,
                    pack_version=pack_version,
                    run_number=run.run_number,
                    bundle_id=run.bundle_id,
                    bundle_version=run.bundle_version,
                    generated_by=generated_by,
                    redaction=redaction,
                    approved_by=approved_by,
                    approved_at=approval.created_at if approved_by else None,
                    imports=[
                        PackImportLine(
                            source_type=record.source_type,
                            version=record.version,
                            file_hash_sha256=record.file_hash_sha256,
                            mapping_template_version_id=record.mapping_template_version_id,
                        )
                        for record in imports
                    ],
                    checks=[
                        PackCheckLine(
                            check_type=check.check_type,
                            status=check.status,
                            severity=check.severity,
                            delta_value=(check.details or {}).get("deltaValue"),
                        )
                        for check in check_results
                    ],
                    exceptions=[
                        PackExceptionLine(
                            title=exception.title,
                            status=exception.status,
                            severity=exception.severity,
                            row_numbers=tuple(
                                row
                                for pointer in exception.evidence or []
                                for row in pointer.get("rowNumbers", [])
                            ),
                            resolution_note=exception.resolution_note,
                        )
                        for exception in exceptions
                    ],
                )
            )
            pdf = render_pdf(lines)
            pack_id = uuid4()
            storage_key = build_pack_storage_key(actor.firm_id, pay_run_id, pack_id, pack_version)

            settings = get_settings()
            storage_uri = await with_retry(
                lambda: self.store.put(pdf, storage_key),
                attempts=settings.pack_upload_attempts,
                delay_ms=settings.pack_upload_delay_ms,
                event="PACK_UPLOAD",
                context={
                    "firm_id": actor.firm_id,
                    "pay_run_id": pay_run_id,
                    "pack_version": pack_version,
                },
            )

            pack = Pack(
                pack_id=pack_id,
                firm_id=actor.firm_id,
                pay_run_id=pay_run_id,
                reconciliation_run_id=run.reconciliation_run_id,
                pack_version=pack_version,
                storage_key=storage_key,
                storage_uri_pdf=storage_uri,
                pack_metadata={
                    "runId": str(run.reconciliation_run_id),
                    "runNumber": run.run_number,
                    "bundleId": run.bundle_id,
                    "bundleVersion": run.bundle_version,
                    "redaction": redaction.to_dict(),
                    "imports": [
                        {
                            "id": str(record.import_id),
                            "sourceType": record.source_type,
                            "version": record.version,
                            "fileHashSha256": record.file_hash_sha256,
                            "mappingTemplateVersionId": (
                                str(record.mapping_template_version_id)
                                if record.mapping_template_version_id
                                else None
                            ),
                        }
                        for record in imports
                    ],
                    "checks": [
                        {
                            "checkType": check.check_type,
                            "checkVersion": check.check_version,
                            "status": check.status,
                            "severity": check.severity,
                        }
                        for check in check_results
                    ],
                    "exceptionCount": len(exceptions),
                    "approvalId": str(approval.approval_id) if approval else None,
                },
                generated_by_user_id=actor.user_id,
            )
            self.session.add(pack)
            try:
                await self.session.flush()
            except IntegrityError as err:
                raise ConflictError("Another pack version was generated concurrently.") from err

            await self.pay_runs.transition_status(pay_run, PayRunStatus.PACKED, actor)
            await self.audit.record(
                AuditAction.PACK_GENERATED,
                "PACK",
                pack.pack_id,
                actor,
                {"payRunId": pay_run_id, "packVersion": pack_version},
            )
        return pack

    async def lock_pack(self, actor: ActorContext, pay_run_id: UUID) -> Pack:
        """Lock the latest pack; the pay run becomes LOCKED and read-only."""
        require_permission(actor, Permission.PACK_LOCK)
        PayRunStateMachine.validate_transition(
            PayRunStatus.PACKED.value, PayRunStatus.LOCKED.value, actor.role
        )
        pay_run = await self._load(actor, pay_run_id, PayRunStatus.PACKED)
        pack = await self.get_latest_pack(actor.firm_id, pay_run_id)
        if pack is None:
            raise NotFoundError("Pack not found.")
        if pack.locked_at is not None:
            raise ValidationError("Pack is already locked.")

        result = await self.session.execute(
            update(Pack)
            .where(Pack.pack_id == pack.pack_id, Pack.locked_at.is_(None))
            .values(locked_at=utcnow(), locked_by_user_id=actor.user_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ValidationError("Pack is already locked.")
        await self.session.refresh(pack)

        await self.pay_runs.transition_status(pay_run, PayRunStatus.LOCKED, actor)
        await self.audit.record(
            AuditAction.PACK_LOCKED, "PACK", pack.pack_id, actor, {"payRunId": pay_run_id}
        )
        return pack

    async def reopen_pack(self, actor: ActorContext, pay_run_id: UUID) -> PayRun:
        """Return a PACKED pay run to APPROVED so a new pack version can be generated."""
        pay_run = await self._load(actor, pay_run_id, PayRunStatus.PACKED)
        pack = await self.get_latest_pack(actor.firm_id, pay_run_id)
        if pack is not None and pack.locked_at is not None:
            raise ValidationError("Locked packs cannot be reopened.")

        await self.pay_runs.transition_status(pay_run, PayRunStatus.APPROVED, actor)
        await self.audit.record(
            AuditAction.PACK_REOPENED,
            "PAY_RUN",
            pay_run_id,
            actor,
            {"packId": pack.pack_id if pack else None},
        )
        return pay_run

    async def get_latest_pack(self, firm_id: UUID, pay_run_id: UUID) -> Pack | None:
        return await self.session.scalar(
            select(Pack)
            .where(Pack.firm_id == firm_id, Pack.pay_run_id == pay_run_id)
            .order_by(Pack.pack_version.desc())
            .limit(1)
        )

    async def get_pack_download_url(self, actor: ActorContext, pack_id: UUID) -> str:
        """Signed, time-limited URL for a pack in the actor's firm."""
        require_permission(actor, Permission.PACK_DOWNLOAD)
        pack = await self.session.scalar(
            select(Pack).where(Pack.pack_id == pack_id, Pack.firm_id == actor.firm_id)
        )
        if pack is None:
            raise NotFoundError("Pack not found.")
        return self.store.sign(pack.storage_key)

    async def _load(self, actor: ActorContext, pay_run_id: UUID, expected: PayRunStatus) -> PayRun:
        pay_run = await self.pay_runs.get_pay_run(actor.firm_id, pay_run_id)
        if pay_run.status != expected.value:
            raise ValidationError(f"Pay run must be {expected.value.lower()}.")
        return pay_run

    async def _user_email(self, firm_id: UUID, user_id: UUID | None) -> str:
        email = await self.session.scalar(
            select(User.email).where(User.user_id == user_id, User.firm_id == firm_id)
        )
        if email is None:
            raise NotFoundError("User not found.")
        return email

    async def _run_imports(self, firm_id: UUID, input_summary: dict | None) -> list[Import]:
        import_ids = [
            UUID(entry["importId"])
            for entry in (input_summary or {}).values()
            if isinstance(entry, dict) and entry.get("importId")
        ]
        if not import_ids:
            return []
        result = await self.session.execute(
            select(Import)
            .where(Import.firm_id == firm_id, Import.import_id.in_(import_ids))
            .order_by(Import.source_type, Import.version)
        )
        return list(result.scalars().all())

    async def _run_exceptions(self, run_id: UUID) -> list[ReconException]:
        result = await self.session.execute(
            select(ReconException)
            .join(CheckResult, CheckResult.check_result_id == ReconException.check_result_id)
            .where(
                ReconException.reconciliation_run_id == run_id,
                ReconException.superseded_at.is_(None),
            )
            .order_by(CheckResult.sequence)
        )
        return list(result.scalars().all())
