"""ORM models."""

from tally.models.audit import AuditEvent
from tally.models.base import Base, JsonType, TimestampMixin, UpdatedAtMixin, utcnow
from tally.models.firm import Client, Firm, User
from tally.models.pack import Pack
from tally.models.pay_run import Approval, Import, PayRun
from tally.models.reconciliation import (
    CheckResult,
    ExpectedVariance,
    ReconciliationRun,
    ReconException,
)

__all__ = [
    "Approval",
    "AuditEvent",
    "Base",
    "CheckResult",
    "Client",
    "ExpectedVariance",
    "Firm",
    "Import",
    "JsonType",
    "Pack",
    "PayRun",
    "ReconException",
    "ReconciliationRun",
    "TimestampMixin",
    "UpdatedAtMixin",
    "User",
    "utcnow",
]
