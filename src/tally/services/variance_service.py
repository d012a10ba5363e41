"""Expected variance management."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tally.errors import NotFoundError, ValidationError
from tally.models import Client, ExpectedVariance, utcnow
from tally.reconciliation.types import CheckType
from tally.reconciliation.variances import VarianceType, parse_condition, parse_effect
from tally.services.audit import AuditAction, AuditRecorder, SessionAuditSink
from tally.services.permissions import ActorContext, Permission, require_permission


class VarianceService:
    """Create, archive and list expected variances for a client."""

    def __init__(self, session: AsyncSession, audit: AuditRecorder | None = None):
        self.session = session
        self.audit = audit or AuditRecorder(SessionAuditSink(session))

    async def list_active_variances(
        self, firm_id: UUID, client_id: UUID
    ) -> list[ExpectedVariance]:
        """Active variances in creation order, which is the matching order."""
        result = await self.session.execute(
            select(ExpectedVariance)
            .where(
                ExpectedVariance.firm_id == firm_id,
                ExpectedVariance.client_id == client_id,
                ExpectedVariance.active.is_(True),
            )
            .order_by(ExpectedVariance.created_at, ExpectedVariance.expected_variance_id)
        )
        return list(result.scalars().all())

    async def create_expected_variance(
        self,
        actor: ActorContext,
        client_id: UUID,
        variance_type: VarianceType | str,
        condition: dict[str, Any],
        effect: dict[str, Any],
        check_type: CheckType | str | None = None,
    ) -> ExpectedVariance:
        """Declare a variance for a client, optionally scoped to one check type."""
        require_permission(actor, Permission.VARIANCE_WRITE)

        try:
            variance_type = VarianceType(variance_type)
            check_type = CheckType(check_type) if check_type else None
        except ValueError as err:
            raise ValidationError(str(err)) from err
        if parse_condition(condition).is_empty:
            raise ValidationError("Expected variance condition must declare at least one constraint.")
        if parse_effect(effect) is None:
            raise ValidationError("Expected variance effect must downgrade to PASS or WARN.")

        client = await self.session.scalar(
            select(Client).where(Client.client_id == client_id, Client.firm_id == actor.firm_id)
        )
        if client is None:
            raise NotFoundError("Client not found.")

        variance = ExpectedVariance(
            firm_id=actor.firm_id,
            client_id=client.client_id,
            check_type=check_type.value if check_type else None,
            variance_type=variance_type.value,
            condition=condition,
            effect=effect,
            active=True,
            created_by_user_id=actor.user_id,
        )
        self.session.add(variance)
        await self.session.flush()

        await self.audit.record(
            AuditAction.EXPECTED_VARIANCE_CREATED,
            "CLIENT",
            client.client_id,
            actor,
            {
                "varianceId": variance.expected_variance_id,
                "checkType": variance.check_type or "ALL",
                "varianceType": variance.variance_type,
            },
        )
        return variance

    async def archive_expected_variance(
        self, actor: ActorContext, variance_id: UUID
    ) -> ExpectedVariance:
        """Soft-archive a variance. Archiving twice is rejected."""
        require_permission(actor, Permission.VARIANCE_WRITE)
        variance = await self.session.scalar(
            select(ExpectedVariance).where(
                ExpectedVariance.expected_variance_id == variance_id,
                ExpectedVariance.firm_id == actor.firm_id,
            )
        )
        if variance is None:
            raise NotFoundError("Expected variance not found.")

        archived_at = utcnow()
        result = await self.session.execute(
            update(ExpectedVariance)
            .where(
                ExpectedVariance.expected_variance_id == variance_id,
                ExpectedVariance.active.is_(True),
            )
            .values(active=False, archived_at=archived_at, archived_by_user_id=actor.user_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ValidationError("Expected variance is already archived.")
        await self.session.refresh(variance)

        await self.audit.record(
            AuditAction.EXPECTED_VARIANCE_ARCHIVED,
            "CLIENT",
            variance.client_id,
            actor,
            {
                "varianceId": variance.expected_variance_id,
                "checkType": variance.check_type or "ALL",
                "varianceType": variance.variance_type,
            },
        )
        return variance
