"""Generated reconciliation pack artifacts."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tally.models.base import Base, JsonType, TimestampMixin


class Pack(Base, TimestampMixin):
    """One version of a pay run's pack. Locking is one-way."""

    __tablename__ = "pack"

    pack_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    firm_id: Mapped[UUID] = mapped_column(
        ForeignKey("firm.firm_id", ondelete="CASCADE"), nullable=False
    )
    pay_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("pay_run.pay_run_id", ondelete="CASCADE"), nullable=False
    )
    reconciliation_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("reconciliation_run.reconciliation_run_id"), nullable=False
    )
    pack_version: Mapped[int] = mapped_column(Integer, nullable=False)
    storage_key: Mapped[str] = mapped_column(String, nullable=False)
    storage_uri_pdf: Mapped[str] = mapped_column(String, nullable=False)
    pack_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JsonType, nullable=False)
    generated_by_user_id: Mapped[UUID | None] = mapped_column()
    locked_at: Mapped[datetime | None] = mapped_column()
    locked_by_user_id: Mapped[UUID | None] = mapped_column()

    __table_args__ = (
        UniqueConstraint("pay_run_id", "pack_version", name="pack_pay_run_version_unique"),
    )
