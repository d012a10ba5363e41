"""Exception disposition: resolve, dismiss, override and assign."""

from __future__ import annotations

from enum import Enum
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tally.errors import NotFoundError, ValidationError
from tally.models import PayRun, ReconException, User, utcnow
from tally.services.audit import AuditAction, AuditRecorder, SessionAuditSink
from tally.services.permissions import ActorContext, Permission, require_permission
from tally.services.state_machine import PayRunStateMachine


class ExceptionStatus(str, Enum):
    """Exception status values. Everything but OPEN is terminal."""

    OPEN = "OPEN"
    RESOLVED = "RESOLVED"
    DISMISSED = "DISMISSED"
    OVERRIDDEN = "OVERRIDDEN"


_CLOSE_ACTIONS = {
    ExceptionStatus.RESOLVED: ("resolved", AuditAction.EXCEPTION_RESOLVED),
    ExceptionStatus.DISMISSED: ("dismissed", AuditAction.EXCEPTION_DISMISSED),
    ExceptionStatus.OVERRIDDEN: ("overridden", AuditAction.EXCEPTION_OVERRIDDEN),
}


def require_note(note: str | None) -> str:
    """Return the trimmed note, rejecting blank ones."""
    cleaned = (note or "").strip()
    if not cleaned:
        raise ValidationError("A note is required.")
    return cleaned


class ExceptionService:
    """Service for exceptions raised by reconciliation runs.

    Superseded exceptions and exceptions on locked or archived pay runs
    cannot be changed.
    """

    def __init__(self, session: AsyncSession, audit: AuditRecorder | None = None):
        self.session = session
        self.audit = audit or AuditRecorder(SessionAuditSink(session))

    async def get_exception(self, firm_id: UUID, exception_id: UUID) -> ReconException:
        exception = await self.session.scalar(
            select(ReconException).where(
                ReconException.exception_id == exception_id,
                ReconException.firm_id == firm_id,
            )
        )
        if exception is None:
            raise NotFoundError("Exception not found.")
        return exception

    async def list_open_exceptions(self, firm_id: UUID, pay_run_id: UUID) -> list[ReconException]:
        """Open exceptions from the pay run's current run."""
        result = await self.session.execute(
            select(ReconException)
            .where(
                ReconException.firm_id == firm_id,
                ReconException.pay_run_id == pay_run_id,
                ReconException.status == ExceptionStatus.OPEN.value,
                ReconException.superseded_at.is_(None),
            )
            .order_by(ReconException.created_at, ReconException.exception_id)
        )
        return list(result.scalars().all())

    async def resolve_exception(
        self, actor: ActorContext, exception_id: UUID, note: str
    ) -> ReconException:
        require_permission(actor, Permission.EXCEPTION_WRITE)
        return await self._close(actor, exception_id, ExceptionStatus.RESOLVED, note)

    async def dismiss_exception(
        self, actor: ActorContext, exception_id: UUID, note: str
    ) -> ReconException:
        require_permission(actor, Permission.EXCEPTION_WRITE)
        return await self._close(actor, exception_id, ExceptionStatus.DISMISSED, note)

    async def override_exception(
        self, actor: ActorContext, exception_id: UUID, note: str
    ) -> ReconException:
        """Accept an exception as-is. Reviewers and admins only."""
        require_permission(actor, Permission.EXCEPTION_OVERRIDE)
        return await self._close(actor, exception_id, ExceptionStatus.OVERRIDDEN, note)

    async def assign_exception(
        self, actor: ActorContext, exception_id: UUID, assignee_user_id: UUID | None
    ) -> ReconException:
        """Assign to a firm member, or unassign with ``None``. Idempotent."""
        require_permission(actor, Permission.EXCEPTION_WRITE)
        exception = await self._load_mutable(actor, exception_id)

        if assignee_user_id is not None:
            assignee = await self.session.scalar(
                select(User).where(User.user_id == assignee_user_id, User.firm_id == actor.firm_id)
            )
            if assignee is None:
                raise NotFoundError("Assignee not found.")

        if exception.assigned_to_user_id == assignee_user_id:
            return exception

        previous = exception.assigned_to_user_id
        exception.assigned_to_user_id = assignee_user_id
        await self.session.flush()
        await self.audit.record(
            AuditAction.EXCEPTION_ASSIGNED,
            "EXCEPTION",
            exception.exception_id,
            actor,
            {"from": previous, "to": assignee_user_id},
        )
        return exception

    async def _load_mutable(self, actor: ActorContext, exception_id: UUID) -> ReconException:
        exception = await self.get_exception(actor.firm_id, exception_id)
        if exception.superseded_at is not None:
            raise ValidationError("Exception has been superseded by a newer reconciliation run.")
        status = await self.session.scalar(
            select(PayRun.status).where(
                PayRun.pay_run_id == exception.pay_run_id, PayRun.firm_id == actor.firm_id
            )
        )
        if status is None:
            raise NotFoundError("Pay run not found.")
        if PayRunStateMachine.is_frozen(status):
            raise ValidationError("Pay run is locked or archived; exceptions cannot be changed.")
        return exception

    async def _close(
        self,
        actor: ActorContext,
        exception_id: UUID,
        to_status: ExceptionStatus,
        note: str,
    ) -> ReconException:
        cleaned = require_note(note)
        exception = await self._load_mutable(actor, exception_id)
        verb, action = _CLOSE_ACTIONS[to_status]
        if exception.status != ExceptionStatus.OPEN.value:
            raise ValidationError(f"Only open exceptions can be {verb}.")

        now = utcnow()
        result = await self.session.execute(
            update(ReconException)
            .where(
                ReconException.exception_id == exception_id,
                ReconException.status == ExceptionStatus.OPEN.value,
                ReconException.superseded_at.is_(None),
            )
            .values(
                status=to_status.value,
                resolution_note=cleaned,
                resolved_by_user_id=actor.user_id,
                resolved_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ValidationError(f"Only open exceptions can be {verb}.")
        await self.session.refresh(exception)

        await self.audit.record(
            action,
            "EXCEPTION",
            exception.exception_id,
            actor,
            {"status": to_status.value, "payRunId": exception.pay_run_id},
        )
        return exception
