"""API key schemas."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ApiKeyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    expires_days: int | None = Field(default=None, ge=1, le=3650)


class ApiKeyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    key_prefix: str
    created_at: str
    expires_at: str | None = None
    last_used_at: str | None = None
    revoked_at: str | None = None


class ApiKeyCreated(ApiKeyResponse):
    """Returned once on creation; ``key`` is never retrievable again."""

    key: str
