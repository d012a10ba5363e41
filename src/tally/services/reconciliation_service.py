"""Reconciliation run orchestration.

Loads the latest usable import per source, evaluates the region's bundle,
and records the run, its check results and exceptions in the caller's
transaction. The pay run moves RECONCILING → RECONCILED inside the same
transaction, so a failure anywhere leaves no trace of the attempt.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tally.errors import ConflictError, ValidationError
from tally.models import CheckResult, ReconciliationRun, ReconException, utcnow
from tally.observability import start_span
from tally.reconciliation.bundles import get_bundle, required_sources
from tally.reconciliation.engine import evaluate_bundle
from tally.reconciliation.inputs import ReconciliationInputs
from tally.reconciliation.tolerances import resolve_tolerances
from tally.reconciliation.types import CheckEvaluation, Region
from tally.services.audit import AuditAction, AuditRecorder, SessionAuditSink
from tally.services.import_reader import ImportReader, StoredImportReader
from tally.services.import_service import ImportService, SourceReadiness
from tally.services.pay_run_service import PayRunService, system_actor
from tally.services.permissions import ActorContext, Permission, require_permission
from tally.services.state_machine import PayRunStateMachine, PayRunStatus
from tally.services.variance_service import VarianceService


@dataclass
class ReconciliationOutcome:
    """Result of a reconciliation run."""

    run: ReconciliationRun
    check_results: list[CheckResult]
    exceptions: list[ReconException]

    @property
    def exception_count(self) -> int:
        return len(self.exceptions)


def missing_sources_message(readiness: SourceReadiness) -> str:
    parts = []
    if readiness.missing:
        parts.append("Missing required sources: " + ", ".join(s.value for s in readiness.missing) + ".")
    if readiness.unmapped:
        parts.append("Mapping required for: " + ", ".join(s.value for s in readiness.unmapped) + ".")
    return " ".join(parts)


class ReconciliationService:
    """Runs the check bundle for a pay run and persists the outcome."""

    def __init__(
        self,
        session: AsyncSession,
        reader: ImportReader | None = None,
        audit: AuditRecorder | None = None,
    ):
        self.session = session
        self.reader = reader or StoredImportReader()
        self.audit = audit or AuditRecorder(SessionAuditSink(session))
        self.pay_runs = PayRunService(session, self.audit)
        self.imports = ImportService(session, self.pay_runs)
        self.variances = VarianceService(session, self.audit)

    async def run_reconciliation(self, actor: ActorContext, pay_run_id: UUID) -> ReconciliationOutcome:
        """Execute the active bundle against the pay run's latest imports.

        Raises ValidationError before anything is written when the pay run is
        not in a reconcilable status or a required source is missing/unmapped.
        """
        require_permission(actor, Permission.RECONCILIATION_RUN)
        pay_run = await self.pay_runs.get_pay_run(actor.firm_id, pay_run_id)
        PayRunStateMachine.validate_transition(pay_run.status, PayRunStatus.RECONCILING, actor.role)

        firm = await self.pay_runs.get_firm(actor.firm_id)
        client = await self.pay_runs.get_client(actor.firm_id, pay_run.client_id)
        readiness = await self.imports.check_sources(
            actor.firm_id, pay_run_id, required_sources(firm.defaults)
        )
        if not readiness.ready:
            raise ValidationError(
                missing_sources_message(readiness),
                {
                    "missing_sources": [s.value for s in readiness.missing],
                    "unmapped_sources": [s.value for s in readiness.unmapped],
                },
            )

        with start_span(
            "RECONCILIATION", firm_id=actor.firm_id, user_id=actor.user_id, pay_run_id=pay_run_id
        ):
            await self.audit.record(
                AuditAction.RECONCILIATION_STARTED, "PAY_RUN", pay_run_id, actor
            )
            await self.pay_runs.transition_status(pay_run, PayRunStatus.RECONCILING, actor)

            region = Region(firm.region)
            bundle = get_bundle(region)
            inputs = ReconciliationInputs(
                region=region,
                imports={
                    source: await self.reader.read(record)
                    for source, record in sorted(readiness.usable.items(), key=lambda kv: kv[0].value)
                },
            )
            tolerances = resolve_tolerances(region, firm.defaults, client.settings, pay_run.settings)
            variances = await self.variances.list_active_variances(actor.firm_id, client.client_id)
            evaluations = evaluate_bundle(bundle, inputs, tolerances, variances)

            run = ReconciliationRun(
                firm_id=actor.firm_id,
                pay_run_id=pay_run_id,
                run_number=await self._next_run_number(pay_run_id),
                bundle_id=bundle.bundle_id,
                bundle_version=bundle.version,
                status="SUCCESS",
                input_summary={
                    source.value: {
                        "importId": str(record.import_id),
                        "version": record.version,
                        "fileHashSha256": record.file_hash_sha256,
                    }
                    for source, record in sorted(readiness.usable.items(), key=lambda kv: kv[0].value)
                },
                executed_by_user_id=actor.user_id,
            )
            self.session.add(run)
            try:
                await self.session.flush()
            except IntegrityError as err:
                raise ConflictError("Another reconciliation run was recorded concurrently.") from err

            await self._supersede_previous(pay_run_id, run)
            check_results, exceptions = await self._persist_results(run, evaluations)
            pay_run.current_run_id = run.reconciliation_run_id
            await self.session.flush()

            await self.pay_runs.transition_status(
                pay_run, PayRunStatus.RECONCILED, system_actor(actor)
            )
            for exception in exceptions:
                await self.audit.record(
                    AuditAction.EXCEPTION_CREATED,
                    "EXCEPTION",
                    exception.exception_id,
                    actor,
                    {"category": exception.category, "severity": exception.severity},
                )
            await self.audit.record(
                AuditAction.RECONCILIATION_COMPLETED,
                "RECONCILIATION_RUN",
                run.reconciliation_run_id,
                actor,
                {
                    "runNumber": run.run_number,
                    "bundleId": run.bundle_id,
                    "bundleVersion": run.bundle_version,
                    "exceptionCount": len(exceptions),
                },
            )

        return ReconciliationOutcome(run=run, check_results=check_results, exceptions=exceptions)

    async def get_current_run(self, firm_id: UUID, pay_run_id: UUID) -> ReconciliationRun | None:
        """The pay run's current (non-superseded) run, if any."""
        pay_run = await self.pay_runs.get_pay_run(firm_id, pay_run_id)
        if pay_run.current_run_id is None:
            return None
        return await self.session.scalar(
            select(ReconciliationRun).where(
                ReconciliationRun.reconciliation_run_id == pay_run.current_run_id,
                ReconciliationRun.firm_id == firm_id,
            )
        )

    async def list_check_results(self, firm_id: UUID, run_id: UUID) -> list[CheckResult]:
        result = await self.session.execute(
            select(CheckResult)
            .where(CheckResult.reconciliation_run_id == run_id, CheckResult.firm_id == firm_id)
            .order_by(CheckResult.sequence)
        )
        return list(result.scalars().all())

    async def _next_run_number(self, pay_run_id: UUID) -> int:
        current = await self.session.scalar(
            select(func.max(ReconciliationRun.run_number)).where(
                ReconciliationRun.pay_run_id == pay_run_id
            )
        )
        return (current or 0) + 1

    async def _supersede_previous(self, pay_run_id: UUID, run: ReconciliationRun) -> None:
        """Stamp earlier runs and their exceptions as superseded."""
        now = utcnow()
        await self.session.execute(
            update(ReconciliationRun)
            .where(
                ReconciliationRun.pay_run_id == pay_run_id,
                ReconciliationRun.reconciliation_run_id != run.reconciliation_run_id,
                ReconciliationRun.superseded_at.is_(None),
            )
            .values(superseded_at=now, superseded_by_run_id=run.reconciliation_run_id)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(
            update(ReconException)
            .where(
                ReconException.pay_run_id == pay_run_id,
                ReconException.superseded_at.is_(None),
            )
            .values(superseded_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )

    async def _persist_results(
        self, run: ReconciliationRun, evaluations: list[CheckEvaluation]
    ) -> tuple[list[CheckResult], list[ReconException]]:
        check_results: list[CheckResult] = []
        exceptions: list[ReconException] = []
        for sequence, evaluation in enumerate(evaluations, start=1):
            data = evaluation.to_dict()
            check_result = CheckResult(
                firm_id=run.firm_id,
                reconciliation_run_id=run.reconciliation_run_id,
                sequence=sequence,
                check_type=data["checkType"],
                check_version=data["checkVersion"],
                status=data["status"],
                severity=data["severity"],
                summary=data["summary"],
                details=data["details"],
                evidence=data["evidence"],
                result_hash=evaluation.fingerprint(),
            )
            self.session.add(check_result)
            check_results.append(check_result)
        await self.session.flush()

        for evaluation, check_result in zip(evaluations, check_results):
            draft = evaluation.exception
            if draft is None or not evaluation.needs_exception:
                continue
            exception = ReconException(
                firm_id=run.firm_id,
                pay_run_id=run.pay_run_id,
                reconciliation_run_id=run.reconciliation_run_id,
                check_result_id=check_result.check_result_id,
                category=draft.category.value,
                severity=evaluation.severity.value,
                status="OPEN",
                title=draft.title,
                description=draft.description,
                evidence=[pointer.to_dict() for pointer in draft.evidence],
            )
            self.session.add(exception)
            exceptions.append(exception)
        await self.session.flush()
        return check_results, exceptions
