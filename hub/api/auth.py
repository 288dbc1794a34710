"""API key management endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from hub.api.deps import get_session, require_auth
from hub.models.user import User
from hub.schemas.auth import ApiKeyCreate, ApiKeyCreated, ApiKeyResponse
from hub.services.auth_service import create_api_key, list_api_keys, revoke_api_key

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/api-keys", response_model=ApiKeyCreated, status_code=201)
async def create_api_key_endpoint(
    body: ApiKeyCreate,
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> ApiKeyCreated:
    """Create an API key. The plaintext key is only returned here."""
    key, value = await create_api_key(session, user.id, body.name.strip(), body.expires_days)
    return ApiKeyCreated(
        id=key.id,
        name=key.name,
        key_prefix=key.key_prefix,
        created_at=key.created_at,
        expires_at=key.expires_at,
        key=value,
    )


@router.get("/api-keys", response_model=list[ApiKeyResponse])
async def list_api_keys_endpoint(
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> list[ApiKeyResponse]:
    keys = await list_api_keys(session, user.id)
    return [ApiKeyResponse.model_validate(k) for k in keys]


@router.delete("/api-keys/{key_id}", status_code=204)
async def revoke_api_key_endpoint(
    key_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> None:
    revoked = await revoke_api_key(session, user.id, key_id)
    if not revoked:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="API key not found")
