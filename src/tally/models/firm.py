"""Firm, user and client models (tenant scope)."""

from __future__ import annotations

from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tally.models.base import Base, JsonType, TimestampMixin


class Firm(Base, TimestampMixin):
    """Accounting firm. ``defaults`` holds the firm-level configuration layer."""

    __tablename__ = "firm"

    firm_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    region: Mapped[str] = mapped_column(String(2), nullable=False, default="UK")
    defaults: Mapped[dict[str, Any] | None] = mapped_column(JsonType)

    __table_args__ = (
        CheckConstraint("region IN ('UK', 'IE')", name="firm_region_check"),
    )


class User(Base, TimestampMixin):
    """Firm member with a single role."""

    __tablename__ = "app_user"

    user_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    firm_id: Mapped[UUID] = mapped_column(
        ForeignKey("firm.firm_id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("firm_id", "email", name="app_user_firm_email_unique"),
        CheckConstraint(
            "role IN ('ADMIN', 'PREPARER', 'REVIEWER')", name="app_user_role_check"
        ),
    )


class Client(Base, TimestampMixin):
    """Firm client. ``settings`` holds the client-level configuration layer."""

    __tablename__ = "client"

    client_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    firm_id: Mapped[UUID] = mapped_column(
        ForeignKey("firm.firm_id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    settings: Mapped[dict[str, Any] | None] = mapped_column(JsonType)
