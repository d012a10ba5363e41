"""Reconciliation run log, check results, exceptions and expected variances."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from tally.models.base import Base, JsonType, TimestampMixin, UpdatedAtMixin


class ReconciliationRun(Base, TimestampMixin):
    """One execution of a check bundle against a pay run's imports."""

    __tablename__ = "reconciliation_run"

    reconciliation_run_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    firm_id: Mapped[UUID] = mapped_column(
        ForeignKey("firm.firm_id", ondelete="CASCADE"), nullable=False
    )
    pay_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("pay_run.pay_run_id", ondelete="CASCADE"), nullable=False
    )
    run_number: Mapped[int] = mapped_column(Integer, nullable=False)
    bundle_id: Mapped[str] = mapped_column(String, nullable=False)
    bundle_version: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="SUCCESS")
    input_summary: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False)
    executed_by_user_id: Mapped[UUID | None] = mapped_column()
    superseded_at: Mapped[datetime | None] = mapped_column()
    superseded_by_run_id: Mapped[UUID | None] = mapped_column()

    __table_args__ = (
        UniqueConstraint("pay_run_id", "run_number", name="reconciliation_run_number_unique"),
    )


class CheckResult(Base, TimestampMixin):
    """Immutable snapshot of one check evaluation within a run."""

    __tablename__ = "check_result"

    check_result_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    firm_id: Mapped[UUID] = mapped_column(
        ForeignKey("firm.firm_id", ondelete="CASCADE"), nullable=False
    )
    reconciliation_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("reconciliation_run.reconciliation_run_id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    check_type: Mapped[str] = mapped_column(String, nullable=False)
    check_version: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    severity: Mapped[str] = mapped_column(String, nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False)
    evidence: Mapped[list[dict[str, Any]]] = mapped_column(JsonType, nullable=False)
    result_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    __table_args__ = (
        UniqueConstraint("reconciliation_run_id", "sequence", name="check_result_sequence_unique"),
    )


class ReconException(Base, TimestampMixin, UpdatedAtMixin):
    """Actionable record of a non-passing check outcome."""

    __tablename__ = "exception"

    exception_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    firm_id: Mapped[UUID] = mapped_column(
        ForeignKey("firm.firm_id", ondelete="CASCADE"), nullable=False
    )
    pay_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("pay_run.pay_run_id", ondelete="CASCADE"), nullable=False
    )
    reconciliation_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("reconciliation_run.reconciliation_run_id", ondelete="CASCADE"),
        nullable=False,
    )
    check_result_id: Mapped[UUID] = mapped_column(
        ForeignKey("check_result.check_result_id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    category: Mapped[str] = mapped_column(String, nullable=False)
    severity: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="OPEN")
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[list[dict[str, Any]]] = mapped_column(JsonType, nullable=False)
    resolution_note: Mapped[str | None] = mapped_column(Text)
    resolved_by_user_id: Mapped[UUID | None] = mapped_column()
    resolved_at: Mapped[datetime | None] = mapped_column()
    assigned_to_user_id: Mapped[UUID | None] = mapped_column()
    superseded_at: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        CheckConstraint(
            "status IN ('OPEN', 'RESOLVED', 'DISMISSED', 'OVERRIDDEN')",
            name="exception_status_check",
        ),
    )


class ExpectedVariance(Base, TimestampMixin):
    """Pre-declared rule that downgrades a failing check when it matches.

    Never hard-deleted; archiving sets ``active = False`` and ``archived_at``.
    """

    __tablename__ = "expected_variance"

    expected_variance_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    firm_id: Mapped[UUID] = mapped_column(
        ForeignKey("firm.firm_id", ondelete="CASCADE"), nullable=False
    )
    client_id: Mapped[UUID] = mapped_column(
        ForeignKey("client.client_id", ondelete="CASCADE"), nullable=False
    )
    check_type: Mapped[str | None] = mapped_column(String)
    variance_type: Mapped[str] = mapped_column(String, nullable=False)
    condition: Mapped[Any] = mapped_column(JsonType)
    effect: Mapped[Any] = mapped_column(JsonType)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by_user_id: Mapped[UUID | None] = mapped_column()
    archived_at: Mapped[datetime | None] = mapped_column()
    archived_by_user_id: Mapped[UUID | None] = mapped_column()
