"""API key authentication and bootstrap of the owning user."""

from __future__ import annotations

import hashlib
import logging
import re
import secrets
from datetime import timedelta
from typing import TYPE_CHECKING

from sqlalchemy import select

from hub.models.user import ApiKey, User
from hub.services.datetime_service import format_iso, now_utc, parse_iso

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from hub.config import Settings

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "hub_"
_API_KEY_PATTERN = re.compile(r"^hub_[0-9a-f]{32}$", re.IGNORECASE)


def generate_api_key() -> str:
    """Generate a new API key: ``hub_`` followed by 32 hex characters."""
    return f"{API_KEY_PREFIX}{secrets.token_hex(16)}"


def hash_api_key(api_key: str) -> str:
    """Hash an API key (SHA-256) for safe storage."""
    return hashlib.sha256(api_key.encode()).hexdigest()


def is_valid_api_key_format(api_key: str) -> bool:
    return bool(_API_KEY_PATTERN.match(api_key))


async def create_api_key(
    session: AsyncSession,
    user_id: int,
    name: str,
    expires_days: int | None = None,
) -> tuple[ApiKey, str]:
    """Create an API key. Returns the record and the plaintext key (shown once)."""
    value = generate_api_key()
    now = now_utc()
    key = ApiKey(
        user_id=user_id,
        name=name,
        key_hash=hash_api_key(value),
        key_prefix=value[:8],
        created_at=format_iso(now),
        expires_at=format_iso(now + timedelta(days=expires_days)) if expires_days else None,
    )
    session.add(key)
    await session.commit()
    await session.refresh(key)
    return key, value


async def list_api_keys(session: AsyncSession, user_id: int) -> list[ApiKey]:
    stmt = select(ApiKey).where(ApiKey.user_id == user_id).order_by(ApiKey.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def revoke_api_key(session: AsyncSession, user_id: int, key_id: int) -> bool:
    """Revoke one of the user's API keys. Returns True if found."""
    stmt = select(ApiKey).where(ApiKey.id == key_id, ApiKey.user_id == user_id)
    result = await session.execute(stmt)
    key = result.scalar_one_or_none()
    if key is None:
        return False
    if key.revoked_at is None:
        key.revoked_at = format_iso(now_utc())
        await session.commit()
    return True


async def authenticate_api_key(session: AsyncSession, api_key: str) -> User | None:
    """Resolve an API key to its user, or None if unknown, revoked or expired."""
    if not is_valid_api_key_format(api_key):
        return None

    stmt = select(ApiKey).where(ApiKey.key_hash == hash_api_key(api_key))
    result = await session.execute(stmt)
    key = result.scalar_one_or_none()
    if key is None or key.revoked_at is not None:
        return None

    if key.expires_at is not None:
        expires = parse_iso(key.expires_at)
        if expires is None or expires <= now_utc():
            key.revoked_at = format_iso(now_utc())
            await session.commit()
            return None

    user = await session.get(User, key.user_id)
    if user is None:
        return None

    key.last_used_at = format_iso(now_utc())
    await session.commit()
    return user


async def ensure_bootstrap_user(session: AsyncSession, settings: Settings) -> User:
    """Create the bootstrap user, and register ``bootstrap_api_key`` if configured."""
    stmt = select(User).where(User.username == settings.bootstrap_username)
    result = await session.execute(stmt)
    user = result.scalar_one_or_none()

    if user is None:
        now = format_iso(now_utc())
        user = User(
            username=settings.bootstrap_username,
            display_name=settings.bootstrap_username,
            created_at=now,
            updated_at=now,
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)
        logger.info("Created bootstrap user %r", user.username)

    key_value = settings.bootstrap_api_key
    if key_value:
        if not is_valid_api_key_format(key_value):
            msg = "BOOTSTRAP_API_KEY must be 'hub_' followed by 32 hex characters"
            raise ValueError(msg)
        key_hash = hash_api_key(key_value)
        existing = await session.execute(select(ApiKey.id).where(ApiKey.key_hash == key_hash))
        if existing.scalar_one_or_none() is None:
            session.add(
                ApiKey(
                    user_id=user.id,
                    name="bootstrap",
                    key_hash=key_hash,
                    key_prefix=key_value[:8],
                    created_at=format_iso(now_utc()),
                )
            )
            await session.commit()
            logger.info("Registered bootstrap API key for %r", user.username)
    return user
