"""Pay run, import and approval models."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from tally.models.base import Base, JsonType, TimestampMixin, UpdatedAtMixin


class PayRun(Base, TimestampMixin, UpdatedAtMixin):
    """One client/period reconciliation unit.

    ``current_run_id`` points at the current entry of the append-only
    reconciliation run log; earlier runs stay in place, stamped superseded.
    """

    __tablename__ = "pay_run"

    pay_run_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    firm_id: Mapped[UUID] = mapped_column(
        ForeignKey("firm.firm_id", ondelete="CASCADE"), nullable=False
    )
    client_id: Mapped[UUID] = mapped_column(
        ForeignKey("client.client_id", ondelete="CASCADE"), nullable=False
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    period_label: Mapped[str] = mapped_column(String, nullable=False)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String, nullable=False, default="DRAFT")
    settings: Mapped[dict[str, Any] | None] = mapped_column(JsonType)
    current_run_id: Mapped[UUID | None] = mapped_column()
    created_by_user_id: Mapped[UUID | None] = mapped_column()
    submitted_by_user_id: Mapped[UUID | None] = mapped_column()
    submitted_at: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        UniqueConstraint(
            "client_id",
            "period_start",
            "period_end",
            "revision",
            name="pay_run_client_period_revision_unique",
        ),
        CheckConstraint(
            "status IN ('DRAFT', 'IMPORTED', 'MAPPED', 'RECONCILING', 'RECONCILED', "
            "'READY_FOR_REVIEW', 'APPROVED', 'PACKED', 'LOCKED', 'ARCHIVED')",
            name="pay_run_status_check",
        ),
    )


class Import(Base, TimestampMixin):
    """Uploaded source file, one row per (pay run, source type, version).

    ``normalized_rows`` is written by the parsing pipeline once the column
    mapping has been applied.
    """

    __tablename__ = "import"

    import_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    firm_id: Mapped[UUID] = mapped_column(
        ForeignKey("firm.firm_id", ondelete="CASCADE"), nullable=False
    )
    pay_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("pay_run.pay_run_id", ondelete="CASCADE"), nullable=False
    )
    source_type: Mapped[str] = mapped_column(String, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    original_filename: Mapped[str | None] = mapped_column(String)
    file_hash_sha256: Mapped[str] = mapped_column(String(64), nullable=False)
    parse_status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")
    mapping_template_version_id: Mapped[UUID | None] = mapped_column()
    normalized_rows: Mapped[list[dict[str, Any]] | None] = mapped_column(JsonType)
    uploaded_by_user_id: Mapped[UUID | None] = mapped_column()

    __table_args__ = (
        UniqueConstraint(
            "pay_run_id", "source_type", "version", name="import_source_version_unique"
        ),
    )


class Approval(Base, TimestampMixin):
    """Review decision; the most recent row per pay run wins."""

    __tablename__ = "approval"

    approval_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    firm_id: Mapped[UUID] = mapped_column(
        ForeignKey("firm.firm_id", ondelete="CASCADE"), nullable=False
    )
    pay_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("pay_run.pay_run_id", ondelete="CASCADE"), nullable=False
    )
    reviewer_user_id: Mapped[UUID] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("status IN ('APPROVED', 'REJECTED')", name="approval_status_check"),
    )
