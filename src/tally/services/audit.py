"""Audit trail recording.

The core records audit events through an ``AuditSink``. Recording is
best-effort: a failing sink is logged and never aborts the operation that
triggered it.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from tally.models import AuditEvent
from tally.observability import log_event
from tally.services.permissions import ActorContext
from tally.services.state_machine import Role

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    """Audited actions."""

    PAY_RUN_CREATED = "PAY_RUN_CREATED"
    PAY_RUN_STATE_CHANGED = "PAY_RUN_STATE_CHANGED"
    PAY_RUN_REVISION_CREATED = "PAY_RUN_REVISION_CREATED"
    PAY_RUN_SUBMITTED_FOR_REVIEW = "PAY_RUN_SUBMITTED_FOR_REVIEW"
    PAY_RUN_APPROVED = "PAY_RUN_APPROVED"
    PAY_RUN_REJECTED = "PAY_RUN_REJECTED"
    RECONCILIATION_STARTED = "RECONCILIATION_STARTED"
    RECONCILIATION_COMPLETED = "RECONCILIATION_COMPLETED"
    EXCEPTION_CREATED = "EXCEPTION_CREATED"
    EXCEPTION_RESOLVED = "EXCEPTION_RESOLVED"
    EXCEPTION_DISMISSED = "EXCEPTION_DISMISSED"
    EXCEPTION_OVERRIDDEN = "EXCEPTION_OVERRIDDEN"
    EXCEPTION_ASSIGNED = "EXCEPTION_ASSIGNED"
    EXPECTED_VARIANCE_CREATED = "EXPECTED_VARIANCE_CREATED"
    EXPECTED_VARIANCE_ARCHIVED = "EXPECTED_VARIANCE_ARCHIVED"
    PACK_GENERATED = "PACK_GENERATED"
    PACK_REOPENED = "PACK_REOPENED"
    PACK_LOCKED = "PACK_LOCKED"


class AuditSink(Protocol):
    """Destination for audit events."""

    async def record(
        self,
        action: str,
        entity_type: str,
        entity_id: UUID | None,
        metadata: dict[str, Any],
        actor: ActorContext,
    ) -> None: ...


def sanitize_metadata(metadata: dict[str, Any] | None) -> dict[str, Any]:
    """Reduce metadata to JSON scalars, lists and nested dicts."""

    def clean(value: Any) -> Any:
        if value is None or isinstance(value, (bool, int, float, str)):
            return value
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, (UUID, Decimal)):
            return str(value)
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        if isinstance(value, dict):
            return {str(k): clean(v) for k, v in value.items()}
        if isinstance(value, (list, tuple, set, frozenset)):
            return [clean(v) for v in value]
        return str(value)

    return clean(metadata or {})


class SessionAuditSink:
    """Stores audit events in the current session's transaction."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(
        self,
        action: str,
        entity_type: str,
        entity_id: UUID | None,
        metadata: dict[str, Any],
        actor: ActorContext,
    ) -> None:
        self.session.add(
            AuditEvent(
                firm_id=actor.firm_id,
                actor_user_id=None if actor.role == Role.SYSTEM else actor.user_id,
                actor_role=actor.role.value,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                event_metadata=metadata,
            )
        )


class AuditRecorder:
    """Best-effort front for an AuditSink."""

    def __init__(self, sink: AuditSink):
        self.sink = sink

    async def record(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: UUID | None,
        actor: ActorContext,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            await self.sink.record(
                action.value, entity_type, entity_id, sanitize_metadata(metadata), actor
            )
        except Exception as exc:
            log_event(
                "AUDIT_RECORD_FAILED",
                logging.ERROR,
                firm_id=actor.firm_id,
                user_id=actor.user_id,
                error_name=type(exc).__name__,
            )
            logger.debug("Audit sink failure for %s", action.value, exc_info=True)
