"""Tally services."""

from tally.services.state_machine import PayRunStateMachine, PayRunStatus, Role
from tally.services.permissions import ActorContext, Permission, require_permission
from tally.services.pay_run_service import PayRunService
from tally.services.import_service import ImportService
from tally.services.variance_service import VarianceService
from tally.services.reconciliation_service import ReconciliationService
from tally.services.exception_service import ExceptionService
from tally.services.review_service import ReviewService
from tally.services.pack_service import PackService

__all__ = [
    "ActorContext",
    "ExceptionService",
    "ImportService",
    "PackService",
    "PayRunService",
    "PayRunStateMachine",
    "PayRunStatus",
    "Permission",
    "ReconciliationService",
    "ReviewService",
    "Role",
    "VarianceService",
    "require_permission",
]
