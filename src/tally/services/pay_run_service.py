"""Pay run service - lifecycle and status transitions."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tally.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from tally.models import Client, Firm, PayRun, ReconException, utcnow
from tally.services.audit import AuditAction, AuditRecorder, SessionAuditSink
from tally.services.permissions import ActorContext, Permission, require_permission
from tally.services.state_machine import PayRunStateMachine, PayRunStatus, Role


def format_period_label(period_start: date, period_end: date) -> str:
    """Human label for a pay period, e.g. ``01 Jan 2026 - 31 Jan 2026``."""
    return f"{period_start:%d %b %Y} - {period_end:%d %b %Y}"


def system_actor(actor: ActorContext) -> ActorContext:
    """Internal actor used for system-driven transitions on behalf of ``actor``."""
    return ActorContext(firm_id=actor.firm_id, user_id=actor.user_id, role=Role.SYSTEM)


class PayRunService:
    """Service for pay run lookup, creation and status transitions.

    Every status change goes through ``transition_status``, which validates
    the edge against the state machine and applies it with a conditional
    update so that a racing request sees a precondition failure.
    """

    def __init__(self, session: AsyncSession, audit: AuditRecorder | None = None):
        self.session = session
        self.audit = audit or AuditRecorder(SessionAuditSink(session))

    async def get_firm(self, firm_id: UUID) -> Firm:
        firm = await self.session.get(Firm, firm_id)
        if firm is None:
            raise NotFoundError("Firm not found.")
        return firm

    async def get_client(self, firm_id: UUID, client_id: UUID) -> Client:
        result = await self.session.execute(
            select(Client).where(Client.client_id == client_id, Client.firm_id == firm_id)
        )
        client = result.scalar_one_or_none()
        if client is None:
            raise NotFoundError("Client not found.")
        return client

    async def get_pay_run(self, firm_id: UUID, pay_run_id: UUID) -> PayRun:
        """Load a pay run scoped to the firm, raising NotFoundError if absent."""
        result = await self.session.execute(
            select(PayRun).where(PayRun.pay_run_id == pay_run_id, PayRun.firm_id == firm_id)
        )
        pay_run = result.scalar_one_or_none()
        if pay_run is None:
            raise NotFoundError("Pay run not found.")
        return pay_run

    async def transition_status(
        self,
        pay_run: PayRun,
        to_status: PayRunStatus,
        actor: ActorContext,
        metadata: dict[str, Any] | None = None,
    ) -> PayRun:
        """Transition a pay run to a new status.

        Raises InvalidTransitionError if the edge is not allowed for the
        actor's role, or if another request changed the status first.
        """
        from_status = pay_run.status
        PayRunStateMachine.validate_transition(from_status, to_status, actor.role)

        result = await self.session.execute(
            update(PayRun)
            .where(
                PayRun.pay_run_id == pay_run.pay_run_id,
                PayRun.firm_id == actor.firm_id,
                PayRun.status == from_status,
            )
            .values(status=to_status.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError(
                from_status, to_status.value, "pay run status changed concurrently"
            )
        await self.session.refresh(pay_run, attribute_names=["status", "updated_at"])

        await self.audit.record(
            AuditAction.PAY_RUN_STATE_CHANGED,
            "PAY_RUN",
            pay_run.pay_run_id,
            actor,
            {"from": from_status, "to": to_status.value, **(metadata or {})},
        )
        return pay_run

    async def create_pay_run(
        self,
        actor: ActorContext,
        client_id: UUID,
        period_start: date,
        period_end: date,
        settings: dict[str, Any] | None = None,
    ) -> PayRun:
        """Create revision 1 of a pay run in DRAFT."""
        require_permission(actor, Permission.PAY_RUN_CREATE)
        if period_start > period_end:
            raise ValidationError("Period start must be on or before period end.")
        client = await self.get_client(actor.firm_id, client_id)

        pay_run = PayRun(
            firm_id=actor.firm_id,
            client_id=client.client_id,
            period_start=period_start,
            period_end=period_end,
            period_label=format_period_label(period_start, period_end),
            revision=1,
            status=PayRunStatus.DRAFT.value,
            settings=settings,
            created_by_user_id=actor.user_id,
        )
        await self._insert(pay_run, "A pay run already exists for this client and period.")
        await self.audit.record(
            AuditAction.PAY_RUN_CREATED,
            "PAY_RUN",
            pay_run.pay_run_id,
            actor,
            {"clientId": client.client_id, "periodLabel": pay_run.period_label},
        )
        return pay_run

    async def create_pay_run_revision(self, actor: ActorContext, pay_run_id: UUID) -> PayRun:
        """Start a new DRAFT revision of a locked pay run.

        Only the latest revision for the client and period may be revised.
        """
        require_permission(actor, Permission.PAY_RUN_REVISION)
        pay_run = await self.get_pay_run(actor.firm_id, pay_run_id)
        if pay_run.status != PayRunStatus.LOCKED.value:
            raise ValidationError("Only locked pay runs can be revised.")

        latest = await self.session.scalar(
            select(func.max(PayRun.revision)).where(
                PayRun.firm_id == actor.firm_id,
                PayRun.client_id == pay_run.client_id,
                PayRun.period_start == pay_run.period_start,
                PayRun.period_end == pay_run.period_end,
            )
        )
        if latest != pay_run.revision:
            raise ValidationError("Only the latest revision can be revised.")

        revision = PayRun(
            firm_id=pay_run.firm_id,
            client_id=pay_run.client_id,
            period_start=pay_run.period_start,
            period_end=pay_run.period_end,
            period_label=pay_run.period_label,
            revision=pay_run.revision + 1,
            status=PayRunStatus.DRAFT.value,
            settings=pay_run.settings,
            created_by_user_id=actor.user_id,
        )
        await self._insert(revision, "A newer revision was created concurrently.")
        await self.audit.record(
            AuditAction.PAY_RUN_REVISION_CREATED,
            "PAY_RUN",
            revision.pay_run_id,
            actor,
            {"previousPayRunId": pay_run.pay_run_id, "revision": revision.revision},
        )
        return revision

    async def archive_pay_run(self, actor: ActorContext, pay_run_id: UUID) -> PayRun:
        """Archive a pay run that is not locked."""
        require_permission(actor, Permission.PAY_RUN_ARCHIVE)
        pay_run = await self.get_pay_run(actor.firm_id, pay_run_id)
        return await self.transition_status(pay_run, PayRunStatus.ARCHIVED, actor)

    async def get_open_exception_counts(
        self, firm_id: UUID, pay_run_ids: Sequence[UUID]
    ) -> dict[UUID, int]:
        """Open, current exception counts per pay run (zero when none)."""
        counts = {pay_run_id: 0 for pay_run_id in pay_run_ids}
        if not pay_run_ids:
            return counts
        result = await self.session.execute(
            select(ReconException.pay_run_id, func.count())
            .where(
                ReconException.firm_id == firm_id,
                ReconException.pay_run_id.in_(list(pay_run_ids)),
                ReconException.status == "OPEN",
                ReconException.superseded_at.is_(None),
            )
            .group_by(ReconException.pay_run_id)
        )
        for pay_run_id, count in result.all():
            counts[pay_run_id] = count
        return counts

    async def get_display_status(self, pay_run: PayRun) -> str:
        """Status as shown to users, deriving EXCEPTIONS_OPEN."""
        counts = await self.get_open_exception_counts(pay_run.firm_id, [pay_run.pay_run_id])
        return PayRunStateMachine.derive_display_status(pay_run.status, counts[pay_run.pay_run_id])

    async def _insert(self, pay_run: PayRun, conflict_message: str) -> None:
        self.session.add(pay_run)
        try:
            await self.session.flush()
        except IntegrityError as err:
            raise ConflictError(conflict_message) from err
