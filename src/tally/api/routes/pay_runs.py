"""Pay run API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status

from tally.api.dependencies import Actor, DbSession, Store
from tally.api.schemas import (
    ApprovalRequest,
    ApprovalResponse,
    CheckResultResponse,
    ErrorResponse,
    ExceptionResponse,
    PackResponse,
    PayRunDetailResponse,
    PayRunResponse,
    ReconciliationResponse,
    RejectRequest,
    ReviewGateResponse,
)
from tally.services.pack_service import PackService
from tally.services.pay_run_service import PayRunService
from tally.services.reconciliation_service import ReconciliationService
from tally.services.review_service import ReviewService
from tally.services.state_machine import PayRunStateMachine

router = APIRouter(prefix="/pay-runs", tags=["pay-runs"])

_ERRORS = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


@router.get(
    "/{pay_run_id}",
    response_model=PayRunDetailResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_pay_run(
    db: DbSession,
    actor: Actor,
    pay_run_id: Annotated[UUID, Path()],
) -> PayRunDetailResponse:
    """Get a pay run with its display status and review gate."""
    service = PayRunService(db)
    pay_run = await service.get_pay_run(actor.firm_id, pay_run_id)
    gate = await ReviewService(db).get_review_gate(actor.firm_id, pay_run_id)
    return PayRunDetailResponse(
        pay_run=PayRunResponse.model_validate(pay_run),
        display_status=await service.get_display_status(pay_run),
        next_statuses=[s.value for s in PayRunStateMachine.get_next_statuses(pay_run.status)],
        review_gate=ReviewGateResponse(passed=gate.passed, messages=gate.messages(), **gate.to_dict()),
    )


# ============================================================================
# Reconciliation
# ============================================================================


@router.post(
    "/{pay_run_id}/reconcile",
    response_model=ReconciliationResponse,
    status_code=status.HTTP_201_CREATED,
    responses=_ERRORS,
)
async def reconcile_pay_run(
    db: DbSession,
    actor: Actor,
    pay_run_id: Annotated[UUID, Path()],
) -> ReconciliationResponse:
    """Run the region's check bundle against the latest imports."""
    outcome = await ReconciliationService(db).run_reconciliation(actor, pay_run_id)
    run = outcome.run
    return ReconciliationResponse(
        reconciliation_run_id=run.reconciliation_run_id,
        pay_run_id=run.pay_run_id,
        run_number=run.run_number,
        bundle_id=run.bundle_id,
        bundle_version=run.bundle_version,
        status=run.status,
        checks=[CheckResultResponse.model_validate(c) for c in outcome.check_results],
        exceptions=[ExceptionResponse.model_validate(e) for e in outcome.exceptions],
    )


# ============================================================================
# Review
# ============================================================================


@router.post(
    "/{pay_run_id}/submit-review",
    response_model=PayRunResponse,
    responses=_ERRORS,
)
async def submit_for_review(
    db: DbSession,
    actor: Actor,
    pay_run_id: Annotated[UUID, Path()],
) -> PayRunResponse:
    """Submit a reconciled pay run for review once the gate passes."""
    pay_run = await ReviewService(db).submit_pay_run_for_review(actor, pay_run_id)
    return PayRunResponse.model_validate(pay_run)


@router.post(
    "/{pay_run_id}/approve",
    response_model=ApprovalResponse,
    responses=_ERRORS,
)
async def approve_pay_run(
    db: DbSession,
    actor: Actor,
    pay_run_id: Annotated[UUID, Path()],
    payload: ApprovalRequest | None = None,
) -> ApprovalResponse:
    """Approve a pay run that is ready for review."""
    comment = payload.comment if payload else None
    approval = await ReviewService(db).approve_pay_run(actor, pay_run_id, comment)
    return ApprovalResponse.model_validate(approval)


@router.post(
    "/{pay_run_id}/reject",
    response_model=ApprovalResponse,
    responses=_ERRORS,
)
async def reject_pay_run(
    db: DbSession,
    actor: Actor,
    pay_run_id: Annotated[UUID, Path()],
    payload: RejectRequest,
) -> ApprovalResponse:
    """Reject a pay run back to reconciled with a comment."""
    approval = await ReviewService(db).reject_pay_run(actor, pay_run_id, payload.comment)
    return ApprovalResponse.model_validate(approval)


# ============================================================================
# Packs
# ============================================================================


@router.post(
    "/{pay_run_id}/pack",
    response_model=PackResponse,
    status_code=status.HTTP_201_CREATED,
    responses=_ERRORS,
)
async def generate_pack(
    db: DbSession,
    actor: Actor,
    store: Store,
    pay_run_id: Annotated[UUID, Path()],
) -> PackResponse:
    """Generate the next pack version for an approved pay run."""
    pack = await PackService(db, store).generate_pack(actor, pay_run_id)
    return PackResponse.model_validate(pack)


@router.post(
    "/{pay_run_id}/pack/lock",
    response_model=PackResponse,
    responses=_ERRORS,
)
async def lock_pack(
    db: DbSession,
    actor: Actor,
    store: Store,
    pay_run_id: Annotated[UUID, Path()],
) -> PackResponse:
    """Lock the latest pack. The pay run becomes read-only."""
    pack = await PackService(db, store).lock_pack(actor, pay_run_id)
    return PackResponse.model_validate(pack)


@router.post(
    "/{pay_run_id}/pack/reopen",
    response_model=PayRunResponse,
    responses=_ERRORS,
)
async def reopen_pack(
    db: DbSession,
    actor: Actor,
    store: Store,
    pay_run_id: Annotated[UUID, Path()],
) -> PayRunResponse:
    """Return a packed pay run to approved so a new pack can be generated."""
    pay_run = await PackService(db, store).reopen_pack(actor, pay_run_id)
    return PayRunResponse.model_validate(pay_run)
