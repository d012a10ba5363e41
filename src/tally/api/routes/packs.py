"""Pack download endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path

from tally.api.dependencies import Actor, DbSession, Store
from tally.api.schemas import DownloadUrlResponse, ErrorResponse
from tally.services.pack_service import PackService

router = APIRouter(prefix="/packs", tags=["packs"])


@router.get(
    "/{pack_id}/download-url",
    response_model=DownloadUrlResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def get_download_url(
    db: DbSession,
    actor: Actor,
    store: Store,
    pack_id: Annotated[UUID, Path()],
) -> DownloadUrlResponse:
    """Get a signed, time-limited download URL for a pack."""
    url = await PackService(db, store).get_pack_download_url(actor, pack_id)
    return DownloadUrlResponse(pack_id=pack_id, url=url)
