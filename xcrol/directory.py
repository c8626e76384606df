"""Read access to XCROL member data for the user info and degree endpoints.

The authorization server never writes profile data; it only needs a handful
of lookups, declared by ``UserDirectory``. ``SqlUserDirectory`` serves them
from the local read model.
"""

from typing import Protocol

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from xcrol.database import get_db
from xcrol.models.profile import Friendship, Profile, XcrolEntry

# Friendship levels an app may see under connections:read.
SHARED_FRIENDSHIP_LEVELS = ("close_friend", "buddy", "friendly_acquaintance")

PUBLIC_ENTRY_LIMIT = 10


class UserDirectory(Protocol):
    async def get_profile(self, user_id: str) -> Profile | None: ...

    async def get_profiles(self, user_ids: list[str]) -> dict[str, Profile]: ...

    async def resolve_username(self, username: str) -> str | None: ...

    async def list_connections(self, user_id: str) -> list[dict]: ...

    async def list_friend_ids(self, user_id: str) -> list[str]: ...

    async def list_public_entries(self, user_id: str, limit: int = PUBLIC_ENTRY_LIMIT) -> list[dict]: ...


class SqlUserDirectory:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_profile(self, user_id: str) -> Profile | None:
        result = await self.db.execute(select(Profile).where(Profile.id == user_id))
        return result.scalar_one_or_none()

    async def get_profiles(self, user_ids: list[str]) -> dict[str, Profile]:
        if not user_ids:
            return {}
        result = await self.db.execute(select(Profile).where(Profile.id.in_(user_ids)))
        return {p.id: p for p in result.scalars().all()}

    async def resolve_username(self, username: str) -> str | None:
        result = await self.db.execute(
            select(Profile.id).where(Profile.username == username.strip())
        )
        return result.scalar_one_or_none()

    async def list_connections(self, user_id: str) -> list[dict]:
        result = await self.db.execute(
            select(Friendship, Profile)
            .outerjoin(Profile, Profile.id == Friendship.friend_id)
            .where(
                Friendship.user_id == user_id,
                Friendship.level.in_(SHARED_FRIENDSHIP_LEVELS),
            )
            .order_by(Friendship.created_at)
        )
        return [
            {
                "id": friendship.friend_id,
                "level": friendship.level,
                "name": profile.display_name if profile else None,
                "avatar": profile.avatar_url if profile else None,
            }
            for friendship, profile in result.all()
        ]

    async def list_friend_ids(self, user_id: str) -> list[str]:
        result = await self.db.execute(
            select(Friendship.friend_id).where(Friendship.user_id == user_id)
        )
        return list(result.scalars().all())

    async def list_public_entries(self, user_id: str, limit: int = PUBLIC_ENTRY_LIMIT) -> list[dict]:
        result = await self.db.execute(
            select(XcrolEntry)
            .where(XcrolEntry.user_id == user_id, XcrolEntry.privacy_level == "public")
            .order_by(XcrolEntry.entry_date.desc(), XcrolEntry.created_at.desc())
            .limit(limit)
        )
        return [
            {
                "id": entry.id,
                "content": entry.content,
                "entry_date": entry.entry_date.isoformat() if entry.entry_date else None,
                "created_at": entry.created_at.isoformat() if entry.created_at else None,
            }
            for entry in result.scalars().all()
        ]


async def get_directory(db: AsyncSession = Depends(get_db)) -> UserDirectory:
    """FastAPI dependency; override it to serve profiles from elsewhere."""
    return SqlUserDirectory(db)
