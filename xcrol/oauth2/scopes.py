"""Scope catalog for "Login with XCROL".

Scopes travel through the server as ``Scope`` members; raw strings exist
only at the wire and storage boundary (``parse_scope`` / ``format_scope``).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Iterable


class Scope(str, Enum):
    PROFILE_READ = "profile:read"
    PROFILE_EMAIL = "profile:email"
    HOMETOWN_READ = "hometown:read"
    CONNECTIONS_READ = "connections:read"
    CONNECTIONS_DEGREE = "connections:degree"
    XCROL_READ = "xcrol:read"


@dataclass(frozen=True)
class ScopeInfo:
    id: str
    name: str
    description: str
    category: str  # basic | personal | social | content

    def to_dict(self) -> dict:
        return asdict(self)


MANDATORY_SCOPE = Scope.PROFILE_READ

SCOPE_CATALOG: dict[Scope, ScopeInfo] = {
    Scope.PROFILE_READ: ScopeInfo(
        id=Scope.PROFILE_READ.value,
        name="Basic profile",
        description="Your display name, username, profile picture, bio and link",
        category="basic",
    ),
    Scope.PROFILE_EMAIL: ScopeInfo(
        id=Scope.PROFILE_EMAIL.value,
        name="Email address",
        description="Your email address",
        category="personal",
    ),
    Scope.HOMETOWN_READ: ScopeInfo(
        id=Scope.HOMETOWN_READ.value,
        name="Hometown",
        description="Your hometown city, country, description and map location",
        category="personal",
    ),
    Scope.CONNECTIONS_READ: ScopeInfo(
        id=Scope.CONNECTIONS_READ.value,
        name="Friends",
        description="Your close friends, buddies and friendly acquaintances",
        category="social",
    ),
    Scope.CONNECTIONS_DEGREE: ScopeInfo(
        id=Scope.CONNECTIONS_DEGREE.value,
        name="Degrees of separation",
        description="How closely you are connected to another XCROL member",
        category="social",
    ),
    Scope.XCROL_READ: ScopeInfo(
        id=Scope.XCROL_READ.value,
        name="Public Xcrol entries",
        description="Your most recent public diary entries",
        category="content",
    ),
}

_CATALOG_ORDER = list(SCOPE_CATALOG)


def lookup(scope_id: str) -> Scope | None:
    try:
        return Scope(scope_id)
    except ValueError:
        return None


def resolve(scope_ids: Iterable[str]) -> list[Scope]:
    """Map ids to ``Scope`` members, dropping unknown ids and duplicates."""
    resolved: list[Scope] = []
    for scope_id in scope_ids:
        scope = lookup(scope_id)
        if scope is not None and scope not in resolved:
            resolved.append(scope)
    return resolved


def ensure_mandatory(scopes: Iterable[Scope]) -> list[Scope]:
    """Return ``scopes`` with ``profile:read`` included, in catalog order."""
    granted = set(scopes)
    granted.add(MANDATORY_SCOPE)
    return [s for s in _CATALOG_ORDER if s in granted]


def parse_scope(raw: str | None) -> list[Scope]:
    """Parse a space-delimited ``scope`` parameter.

    Unknown ids are dropped so older servers keep working when clients ask
    for scopes added later. The mandatory scope is always present.
    """
    if raw is None or not raw.strip():
        return [MANDATORY_SCOPE]
    return ensure_mandatory(resolve(raw.split()))


def format_scope(scopes: Iterable[Scope]) -> str:
    granted = set(scopes)
    return " ".join(s.value for s in _CATALOG_ORDER if s in granted)


def describe(scopes: Iterable[Scope]) -> list[ScopeInfo]:
    granted = set(scopes)
    return [SCOPE_CATALOG[s] for s in _CATALOG_ORDER if s in granted]
