"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from tally.database import get_session
from tally.services.artifact_store import ArtifactStore, LocalArtifactStore
from tally.services.permissions import ActorContext
from tally.services.state_machine import Role


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session scoped to one request's unit of work."""
    async with get_session() as session:
        yield session


def get_artifact_store() -> ArtifactStore:
    """Get the configured pack artifact store."""
    return LocalArtifactStore.from_settings()


def _parse_uuid(value: str | None, header: str) -> UUID:
    if not value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{header} header is required",
        )
    try:
        return UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header} format",
        )


async def get_actor(
    x_firm_id: Annotated[str | None, Header()] = None,
    x_user_id: Annotated[str | None, Header()] = None,
    x_role: Annotated[str | None, Header()] = None,
) -> ActorContext:
    """Build the acting user's context from request headers."""
    firm_id = _parse_uuid(x_firm_id, "X-Firm-ID")
    user_id = _parse_uuid(x_user_id, "X-User-ID")
    try:
        role = Role((x_role or "").upper())
    except ValueError:
        role = None
    if role is None or role == Role.SYSTEM:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Role must be one of ADMIN, PREPARER, REVIEWER",
        )
    return ActorContext(firm_id=firm_id, user_id=user_id, role=role)


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Actor = Annotated[ActorContext, Depends(get_actor)]
Store = Annotated[ArtifactStore, Depends(get_artifact_store)]
