"""Claims served to client applications holding an access token."""

import logging
from collections import deque

from sqlalchemy.ext.asyncio import AsyncSession

from xcrol.core.exceptions import (
    InsufficientScopeError,
    InvalidRequestError,
    InvalidTokenError,
    UserNotFoundError,
)
from xcrol.core.redaction import mask_id
from xcrol.directory import UserDirectory
from xcrol.oauth2.scopes import Scope
from xcrol.oauth2.tokens import AccessTokenInfo, validate_access_token

logger = logging.getLogger(__name__)

MAX_CONNECTION_DEPTH = 6


async def _require_token(db: AsyncSession, token: str | None) -> AccessTokenInfo:
    info = await validate_access_token(db, token)
    if info is None:
        raise InvalidTokenError()
    return info


def _field(profile, name: str):
    return getattr(profile, name) if profile is not None else None


async def get_userinfo(db: AsyncSession, token: str | None, directory: UserDirectory) -> dict:
    """Build the claims object for the user behind ``token``.

    Claims outside the granted scopes are left out entirely rather than set
    to null, so the shape of the response does not reveal what the user
    declined. Granted claims are always present; they are null when the
    member has no profile row.

    Raises:
        InvalidTokenError: token unknown, expired or revoked.
    """
    info = await _require_token(db, token)
    claims: dict = {"sub": info.user_id}

    profile = await directory.get_profile(info.user_id)
    if profile is None:
        logger.warning("Access token for client %s points at missing profile %s", info.client_id, mask_id(info.user_id))

    if info.has_scope(Scope.PROFILE_READ):
        claims.update({
            "name": _field(profile, "display_name"),
            "username": _field(profile, "username"),
            "picture": _field(profile, "avatar_url"),
            "bio": _field(profile, "bio"),
            "link": _field(profile, "link"),
        })
    if info.has_scope(Scope.PROFILE_EMAIL):
        claims["email"] = _field(profile, "email") or _field(profile, "contact_email")
    if info.has_scope(Scope.HOMETOWN_READ):
        claims["hometown"] = {
            "city": _field(profile, "hometown_city"),
            "country": _field(profile, "hometown_country"),
            "description": _field(profile, "hometown_description"),
            "latitude": _field(profile, "hometown_latitude"),
            "longitude": _field(profile, "hometown_longitude"),
        }

    if info.has_scope(Scope.CONNECTIONS_READ):
        claims["connections"] = await directory.list_connections(info.user_id)
    if info.has_scope(Scope.XCROL_READ):
        claims["xcrol_entries"] = await directory.list_public_entries(info.user_id)

    return claims


async def _shortest_path(
    directory: UserDirectory,
    source: str,
    target: str,
    max_depth: int,
) -> list[str] | None:
    if source == target:
        return [source]
    parents: dict[str, str | None] = {source: None}
    frontier = deque([(source, 0)])
    while frontier:
        current, depth = frontier.popleft()
        if depth >= max_depth:
            continue
        for friend_id in await directory.list_friend_ids(current):
            if friend_id in parents:
                continue
            parents[friend_id] = current
            if friend_id == target:
                path = [friend_id]
                while parents[path[-1]] is not None:
                    path.append(parents[path[-1]])
                return list(reversed(path))
            frontier.append((friend_id, depth + 1))
    return None


async def get_connection_degree(
    db: AsyncSession,
    token: str | None,
    directory: UserDirectory,
    *,
    target_user_id: str | None = None,
    target_username: str | None = None,
) -> dict:
    """Degrees of separation between the token's user and another member.

    Breadth-first over friendship edges, up to ``MAX_CONNECTION_DEPTH`` hops.
    Returns ``{"connected", "degree", "path"}`` where ``path`` lists
    ``{id, name, avatar}`` from the token's user to the target.
    """
    info = await _require_token(db, token)
    if not info.has_scope(Scope.CONNECTIONS_DEGREE):
        raise InsufficientScopeError("connections:degree scope required")

    if not target_user_id and not target_username:
        raise InvalidRequestError("target_user_id or target_username required")

    if not target_user_id:
        target_user_id = await directory.resolve_username(target_username)
        if target_user_id is None:
            raise UserNotFoundError()

    path = await _shortest_path(directory, info.user_id, target_user_id, MAX_CONNECTION_DEPTH)
    if path is None:
        return {"connected": False, "degree": None, "path": None}

    profiles = await directory.get_profiles(path)
    return {
        "connected": True,
        "degree": len(path) - 1,
        "path": [
            {
                "id": member_id,
                "name": profiles[member_id].display_name if member_id in profiles else None,
                "avatar": profiles[member_id].avatar_url if member_id in profiles else None,
            }
            for member_id in path
        ],
    }
