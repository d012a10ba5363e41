"""Expected variance endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status

from tally.api.dependencies import Actor, DbSession
from tally.api.schemas import ErrorResponse, ExpectedVarianceCreate, ExpectedVarianceResponse
from tally.services.variance_service import VarianceService

router = APIRouter(tags=["expected-variances"])

_ERRORS = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


@router.get(
    "/clients/{client_id}/expected-variances",
    response_model=list[ExpectedVarianceResponse],
)
async def list_expected_variances(
    db: DbSession,
    actor: Actor,
    client_id: Annotated[UUID, Path()],
) -> list[ExpectedVarianceResponse]:
    """List a client's active expected variances in match order."""
    variances = await VarianceService(db).list_active_variances(actor.firm_id, client_id)
    return [ExpectedVarianceResponse.model_validate(v) for v in variances]


@router.post(
    "/clients/{client_id}/expected-variances",
    response_model=ExpectedVarianceResponse,
    status_code=status.HTTP_201_CREATED,
    responses=_ERRORS,
)
async def create_expected_variance(
    db: DbSession,
    actor: Actor,
    client_id: Annotated[UUID, Path()],
    payload: ExpectedVarianceCreate,
) -> ExpectedVarianceResponse:
    """Declare an expected variance for a client."""
    variance = await VarianceService(db).create_expected_variance(
        actor,
        client_id,
        payload.variance_type,
        payload.condition,
        payload.effect,
        payload.check_type,
    )
    return ExpectedVarianceResponse.model_validate(variance)


@router.post(
    "/expected-variances/{variance_id}/archive",
    response_model=ExpectedVarianceResponse,
    responses=_ERRORS,
)
async def archive_expected_variance(
    db: DbSession,
    actor: Actor,
    variance_id: Annotated[UUID, Path()],
) -> ExpectedVarianceResponse:
    """Archive an expected variance so later runs ignore it."""
    variance = await VarianceService(db).archive_expected_variance(actor, variance_id)
    return ExpectedVarianceResponse.model_validate(variance)
