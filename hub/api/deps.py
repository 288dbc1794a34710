"""Shared API dependencies: DB session, API key auth, remote client."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from hub.config import Settings
from hub.models.user import User
from hub.remote.github import GitHubClient
from hub.services.auth_service import authenticate_api_key

API_KEY_HEADER = "X-Hub-Api-Key"

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)
remote_bearer = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


async def get_current_user(
    api_key: Annotated[str | None, Depends(api_key_header)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> User | None:
    """Get the user owning the presented API key, or None."""
    if not api_key:
        return None
    return await authenticate_api_key(session, api_key)


async def require_auth(
    user: Annotated[User | None, Depends(get_current_user)],
) -> User:
    """Require authentication. Raises 401 if not authenticated."""
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    return user


def require_remote_credential(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(remote_bearer)],
) -> str:
    """Require a bearer credential for the remote repository API."""
    if credentials is None or not credentials.credentials.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="GitHub token required. Use Authorization: Bearer <token>",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials.strip()


async def get_github_client(
    request: Request,
    credential: Annotated[str, Depends(require_remote_credential)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> AsyncGenerator[GitHubClient]:
    """Yield a GitHub client bound to the caller's credential for this request."""
    transport = getattr(request.app.state, "remote_transport", None)
    async with GitHubClient(
        credential,
        api_base=settings.github_api_base,
        request_timeout=settings.github_request_timeout_seconds,
        transport=transport,
    ) as client:
        yield client
