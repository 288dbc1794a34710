"""Liveness endpoint for monitors and the CLI."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hub import __version__
from hub.api.deps import get_session
from hub.services.sync_service import active_sync_count

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/health", tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    active_syncs: int


async def _database_reachable(session: AsyncSession) -> bool:
    try:
        await session.scalar(select(1))
    except SQLAlchemyError:
        logger.warning("Health probe could not reach the database", exc_info=True)
        return False
    return True


@router.get("", response_model=HealthResponse)
async def health(session: Annotated[AsyncSession, Depends(get_session)]) -> HealthResponse:
    """Report ``degraded`` when the database is unreachable. Needs no credentials."""
    reachable = await _database_reachable(session)
    return HealthResponse(
        status="ok" if reachable else "degraded",
        version=__version__,
        database="ok" if reachable else "error",
        active_syncs=active_sync_count(),
    )
