"""Exception disposition endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path

from tally.api.dependencies import Actor, DbSession
from tally.api.schemas import AssignRequest, ErrorResponse, ExceptionResponse, NoteRequest
from tally.services.exception_service import ExceptionService

router = APIRouter(prefix="/exceptions", tags=["exceptions"])

_ERRORS = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


@router.post("/{exception_id}/resolve", response_model=ExceptionResponse, responses=_ERRORS)
async def resolve_exception(
    db: DbSession,
    actor: Actor,
    exception_id: Annotated[UUID, Path()],
    payload: NoteRequest,
) -> ExceptionResponse:
    """Resolve an open exception with a note."""
    exception = await ExceptionService(db).resolve_exception(actor, exception_id, payload.note)
    return ExceptionResponse.model_validate(exception)


@router.post("/{exception_id}/dismiss", response_model=ExceptionResponse, responses=_ERRORS)
async def dismiss_exception(
    db: DbSession,
    actor: Actor,
    exception_id: Annotated[UUID, Path()],
    payload: NoteRequest,
) -> ExceptionResponse:
    """Dismiss an open exception with a note."""
    exception = await ExceptionService(db).dismiss_exception(actor, exception_id, payload.note)
    return ExceptionResponse.model_validate(exception)


@router.post("/{exception_id}/override", response_model=ExceptionResponse, responses=_ERRORS)
async def override_exception(
    db: DbSession,
    actor: Actor,
    exception_id: Annotated[UUID, Path()],
    payload: NoteRequest,
) -> ExceptionResponse:
    """Override an open exception with a note. Reviewers and admins only."""
    exception = await ExceptionService(db).override_exception(actor, exception_id, payload.note)
    return ExceptionResponse.model_validate(exception)


@router.post("/{exception_id}/assign", response_model=ExceptionResponse, responses=_ERRORS)
async def assign_exception(
    db: DbSession,
    actor: Actor,
    exception_id: Annotated[UUID, Path()],
    payload: AssignRequest,
) -> ExceptionResponse:
    """Assign an exception to a firm user, or unassign it."""
    exception = await ExceptionService(db).assign_exception(
        actor, exception_id, payload.assignee_user_id
    )
    return ExceptionResponse.model_validate(exception)
