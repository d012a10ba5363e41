"""Import bookkeeping: versions, mapping status and source readiness."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tally.errors import ConflictError, NotFoundError, ValidationError
from tally.models import Import
from tally.reconciliation.inputs import NormalizedRow
from tally.reconciliation.types import SourceType
from tally.services.pay_run_service import PayRunService
from tally.services.permissions import ActorContext
from tally.services.state_machine import PayRunStatus

USABLE_PARSE_STATUSES = frozenset({"PARSED", "MAPPED", "READY"})

# Imports may be added or remapped only before review starts
IMPORTS_MUTABLE = frozenset(
    {
        PayRunStatus.DRAFT.value,
        PayRunStatus.IMPORTED.value,
        PayRunStatus.MAPPED.value,
        PayRunStatus.RECONCILED.value,
    }
)


def is_usable(import_record: Import) -> bool:
    """Mapped and parsed, so the checks can read it."""
    return (
        import_record.mapping_template_version_id is not None
        and import_record.parse_status in USABLE_PARSE_STATUSES
    )


@dataclass(frozen=True)
class SourceReadiness:
    """Which required sources are absent, unmapped or ready."""

    missing: tuple[SourceType, ...] = ()
    unmapped: tuple[SourceType, ...] = ()
    usable: dict[SourceType, Import] = field(default_factory=dict)

    @property
    def ready(self) -> bool:
        return not self.missing and not self.unmapped


class ImportService:
    """Service for import records attached to a pay run."""

    def __init__(self, session: AsyncSession, pay_runs: PayRunService | None = None):
        self.session = session
        self.pay_runs = pay_runs or PayRunService(session)

    async def latest_imports(self, firm_id: UUID, pay_run_id: UUID) -> dict[SourceType, Import]:
        """Highest version import per source type."""
        result = await self.session.execute(
            select(Import)
            .where(Import.firm_id == firm_id, Import.pay_run_id == pay_run_id)
            .order_by(Import.source_type, Import.version.desc())
        )
        latest: dict[SourceType, Import] = {}
        for import_record in result.scalars():
            latest.setdefault(SourceType(import_record.source_type), import_record)
        return latest

    async def check_sources(
        self, firm_id: UUID, pay_run_id: UUID, required: Sequence[SourceType]
    ) -> SourceReadiness:
        """Classify required sources and collect every usable latest import."""
        latest = await self.latest_imports(firm_id, pay_run_id)
        missing = tuple(s for s in required if s not in latest)
        unmapped = tuple(s for s in required if s in latest and not is_usable(latest[s]))
        usable = {s: record for s, record in latest.items() if is_usable(record)}
        return SourceReadiness(missing=missing, unmapped=unmapped, usable=usable)

    async def register_import(
        self,
        actor: ActorContext,
        pay_run_id: UUID,
        source_type: SourceType,
        file_hash_sha256: str,
        original_filename: str | None = None,
    ) -> Import:
        """Record an uploaded file as the next version for its source type.

        Moves a DRAFT pay run to IMPORTED.
        """
        pay_run = await self.pay_runs.get_pay_run(actor.firm_id, pay_run_id)
        if pay_run.status not in IMPORTS_MUTABLE:
            raise ValidationError("Imports cannot change once the pay run is in review.")

        current = await self.session.scalar(
            select(func.max(Import.version)).where(
                Import.pay_run_id == pay_run_id,
                Import.source_type == source_type.value,
            )
        )
        import_record = Import(
            firm_id=actor.firm_id,
            pay_run_id=pay_run_id,
            source_type=source_type.value,
            version=(current or 0) + 1,
            original_filename=original_filename,
            file_hash_sha256=file_hash_sha256,
            parse_status="PENDING",
            uploaded_by_user_id=actor.user_id,
        )
        self.session.add(import_record)
        try:
            await self.session.flush()
        except IntegrityError as err:
            raise ConflictError("A newer import version was created concurrently.") from err

        if pay_run.status == PayRunStatus.DRAFT.value:
            await self.pay_runs.transition_status(pay_run, PayRunStatus.IMPORTED, actor)
        return import_record

    async def apply_mapping(
        self,
        actor: ActorContext,
        import_id: UUID,
        mapping_template_version_id: UUID,
        rows: Sequence[NormalizedRow | dict[str, Any]],
    ) -> Import:
        """Store the normalized rows produced by a mapping template.

        Moves an IMPORTED pay run to MAPPED.
        """
        result = await self.session.execute(
            select(Import).where(Import.import_id == import_id, Import.firm_id == actor.firm_id)
        )
        import_record = result.scalar_one_or_none()
        if import_record is None:
            raise NotFoundError("Import not found.")
        pay_run = await self.pay_runs.get_pay_run(actor.firm_id, import_record.pay_run_id)
        if pay_run.status not in IMPORTS_MUTABLE:
            raise ValidationError("Imports cannot change once the pay run is in review.")

        normalized = [r if isinstance(r, NormalizedRow) else NormalizedRow.from_dict(r) for r in rows]
        import_record.normalized_rows = [r.to_dict() for r in normalized]
        import_record.mapping_template_version_id = mapping_template_version_id
        import_record.parse_status = "MAPPED"
        await self.session.flush()

        if pay_run.status == PayRunStatus.IMPORTED.value:
            await self.pay_runs.transition_status(pay_run, PayRunStatus.MAPPED, actor)
        return import_record
