"""Reading normalized rows for an import."""

from __future__ import annotations

from typing import Protocol

from tally.errors import ValidationError
from tally.models import Import
from tally.reconciliation.inputs import NormalizedImport, NormalizedRow
from tally.reconciliation.types import SourceType


class ImportReader(Protocol):
    """Produces the normalized view of an import."""

    async def read(self, import_record: Import) -> NormalizedImport: ...


class StoredImportReader:
    """Reads the normalized rows persisted on the import by the parsing pipeline."""

    async def read(self, import_record: Import) -> NormalizedImport:
        if import_record.normalized_rows is None:
            raise ValidationError(
                f"Import {import_record.import_id} has no normalized rows.",
                {"import_id": str(import_record.import_id)},
            )
        try:
            rows = tuple(NormalizedRow.from_dict(row) for row in import_record.normalized_rows)
        except (KeyError, TypeError, ValueError) as err:
            raise ValidationError(
                f"Import {import_record.import_id} has malformed normalized rows.",
                {"import_id": str(import_record.import_id)},
            ) from err
        return NormalizedImport(
            import_id=str(import_record.import_id),
            source_type=SourceType(import_record.source_type),
            rows=tuple(sorted(rows, key=lambda r: r.row_number)),
        )
