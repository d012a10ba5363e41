"""Service health: database and pack artifact store reachability."""

import logging

from fastapi import APIRouter, Response, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from tally.api.dependencies import DbSession, Store
from tally.observability import log_event

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    database: bool
    artifact_store: bool


@router.get("/health", response_model=HealthResponse)
async def health(db: DbSession, store: Store, response: Response) -> HealthResponse:
    """Report whether packs can be reconciled and stored right now."""
    database_ok = True
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as err:
        database_ok = False
        log_event(
            "HEALTH_DATABASE_UNAVAILABLE", logging.WARNING, error_name=type(err).__name__
        )

    store_ok = True
    try:
        await store.check()
    except OSError as err:
        store_ok = False
        log_event(
            "HEALTH_ARTIFACT_STORE_UNAVAILABLE", logging.WARNING, error_name=type(err).__name__
        )

    if not (database_ok and store_ok):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return HealthResponse(
        status="ok" if database_ok and store_ok else "degraded",
        database=database_ok,
        artifact_store=store_ok,
    )


@router.get("/live")
async def live() -> dict[str, str]:
    """Process liveness; touches no dependencies."""
    return {"status": "alive"}
