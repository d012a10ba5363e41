"""Review gate: submit for review, approve and reject."""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tally.errors import ValidationError
from tally.models import Approval, PayRun, ReconException, utcnow
from tally.reconciliation.bundles import required_sources
from tally.reconciliation.types import CheckSeverity
from tally.services.audit import AuditAction, AuditRecorder, SessionAuditSink
from tally.services.import_service import ImportService
from tally.services.pay_run_service import PayRunService
from tally.services.permissions import ActorContext
from tally.services.state_machine import PayRunStatus, Role

REVIEW_ROLES = frozenset({Role.ADMIN, Role.REVIEWER})


@dataclass(frozen=True)
class ReviewGateResult:
    """Outstanding conditions blocking submission for review."""

    missing_sources: list[str] = field(default_factory=list)
    unmapped_sources: list[str] = field(default_factory=list)
    open_critical_count: int = 0
    open_exception_count: int = 0

    @property
    def passed(self) -> bool:
        """Whether the gate passed."""
        return not self.missing_sources and not self.unmapped_sources and self.open_critical_count == 0

    def messages(self) -> list[str]:
        messages = []
        if self.missing_sources:
            messages.append(f"Missing required sources: {', '.join(self.missing_sources)}.")
        if self.unmapped_sources:
            messages.append(f"Mapping required for: {', '.join(self.unmapped_sources)}.")
        if self.open_critical_count:
            messages.append("Resolve or override critical exceptions before review.")
        return messages

    def to_dict(self) -> dict[str, object]:
        return {
            "missing_sources": self.missing_sources,
            "unmapped_sources": self.unmapped_sources,
            "open_critical_count": self.open_critical_count,
            "open_exception_count": self.open_exception_count,
        }


def allow_self_approval(firm_defaults: object) -> bool:
    """Firm-level ``approvals.allowSelfApproval`` flag; off unless explicitly true."""
    if not isinstance(firm_defaults, dict):
        return False
    approvals = firm_defaults.get("approvals")
    return isinstance(approvals, dict) and approvals.get("allowSelfApproval") is True


class ReviewService:
    """Service for the review workflow between RECONCILED and APPROVED."""

    def __init__(self, session: AsyncSession, audit: AuditRecorder | None = None):
        self.session = session
        self.audit = audit or AuditRecorder(SessionAuditSink(session))
        self.pay_runs = PayRunService(session, self.audit)
        self.imports = ImportService(session, self.pay_runs)

    async def get_review_gate(self, firm_id: UUID, pay_run_id: UUID) -> ReviewGateResult:
        """Evaluate submit preconditions without changing anything."""
        await self.pay_runs.get_pay_run(firm_id, pay_run_id)
        firm = await self.pay_runs.get_firm(firm_id)
        readiness = await self.imports.check_sources(
            firm_id, pay_run_id, required_sources(firm.defaults)
        )

        result = await self.session.execute(
            select(ReconException.severity, func.count())
            .where(
                ReconException.firm_id == firm_id,
                ReconException.pay_run_id == pay_run_id,
                ReconException.status == "OPEN",
                ReconException.superseded_at.is_(None),
            )
            .group_by(ReconException.severity)
        )
        counts = dict(result.all())

        return ReviewGateResult(
            missing_sources=[s.value for s in readiness.missing],
            unmapped_sources=[s.value for s in readiness.unmapped],
            open_critical_count=counts.get(CheckSeverity.CRITICAL.value, 0),
            open_exception_count=sum(counts.values()),
        )

    async def submit_pay_run_for_review(self, actor: ActorContext, pay_run_id: UUID) -> PayRun:
        """Move a RECONCILED pay run to READY_FOR_REVIEW once the gate passes.

        Every unmet condition is reported together in one ValidationError.
        """
        pay_run = await self.pay_runs.get_pay_run(actor.firm_id, pay_run_id)
        gate = await self.get_review_gate(actor.firm_id, pay_run_id)

        problems = []
        if pay_run.status != PayRunStatus.RECONCILED.value:
            problems.append("Pay run must be reconciled before it can be submitted for review.")
        if actor.role not in REVIEW_ROLES:
            problems.append("Only reviewers or admins can submit pay runs for review.")
        problems += gate.messages()
        if problems:
            raise ValidationError(" ".join(problems), {"status": pay_run.status, **gate.to_dict()})

        pay_run.submitted_by_user_id = actor.user_id
        pay_run.submitted_at = utcnow()
        await self.session.flush()
        await self.pay_runs.transition_status(pay_run, PayRunStatus.READY_FOR_REVIEW, actor)
        await self.audit.record(
            AuditAction.PAY_RUN_SUBMITTED_FOR_REVIEW,
            "PAY_RUN",
            pay_run.pay_run_id,
            actor,
            {"openExceptionCount": gate.open_exception_count},
        )
        return pay_run

    async def approve_pay_run(
        self, actor: ActorContext, pay_run_id: UUID, comment: str | None = None
    ) -> Approval:
        """Approve a pay run that is ready for review."""
        pay_run = await self._load_for_decision(actor, pay_run_id)
        approval = await self._record_decision(actor, pay_run, "APPROVED", (comment or "").strip() or None)
        await self.pay_runs.transition_status(pay_run, PayRunStatus.APPROVED, actor)
        await self.audit.record(
            AuditAction.PAY_RUN_APPROVED,
            "PAY_RUN",
            pay_run.pay_run_id,
            actor,
            {"approvalId": approval.approval_id},
        )
        return approval

    async def reject_pay_run(
        self, actor: ActorContext, pay_run_id: UUID, comment: str | None
    ) -> Approval:
        """Send a pay run back to RECONCILED with a mandatory comment."""
        cleaned = (comment or "").strip()
        if not cleaned:
            raise ValidationError("A comment is required to reject a pay run.")
        pay_run = await self._load_for_decision(actor, pay_run_id)
        approval = await self._record_decision(actor, pay_run, "REJECTED", cleaned)
        await self.pay_runs.transition_status(pay_run, PayRunStatus.RECONCILED, actor)
        await self.audit.record(
            AuditAction.PAY_RUN_REJECTED,
            "PAY_RUN",
            pay_run.pay_run_id,
            actor,
            {"approvalId": approval.approval_id},
        )
        return approval

    async def get_latest_approval(self, firm_id: UUID, pay_run_id: UUID) -> Approval | None:
        """Latest review decision for the pay run."""
        return await self.session.scalar(
            select(Approval)
            .where(Approval.firm_id == firm_id, Approval.pay_run_id == pay_run_id)
            .order_by(Approval.created_at.desc(), Approval.approval_id.desc())
            .limit(1)
        )

    @staticmethod
    def _require_reviewer(actor: ActorContext, action: str) -> None:
        if actor.role not in REVIEW_ROLES:
            raise ValidationError(f"Only reviewers or admins can {action}.")

    async def _load_for_decision(self, actor: ActorContext, pay_run_id: UUID) -> PayRun:
        pay_run = await self.pay_runs.get_pay_run(actor.firm_id, pay_run_id)
        if pay_run.status != PayRunStatus.READY_FOR_REVIEW.value:
            raise ValidationError("Pay run is not ready for review.")
        self._require_reviewer(actor, "approve or reject pay runs")

        if pay_run.submitted_by_user_id == actor.user_id:
            firm = await self.pay_runs.get_firm(actor.firm_id)
            if not allow_self_approval(firm.defaults):
                raise ValidationError("Self-approval is disabled for this firm.")
        return pay_run

    async def _record_decision(
        self, actor: ActorContext, pay_run: PayRun, status: str, comment: str | None
    ) -> Approval:
        approval = Approval(
            firm_id=actor.firm_id,
            pay_run_id=pay_run.pay_run_id,
            reviewer_user_id=actor.user_id,
            status=status,
            comment=comment,
        )
        self.session.add(approval)
        await self.session.flush()
        return approval
