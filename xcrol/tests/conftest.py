"""Shared test fixtures for the Login with XCROL test suite.

Uses an in-memory SQLite database with StaticPool so all sessions share the
same connection (committed data is visible across sessions).
"""

import uuid
from datetime import date

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from xcrol.config import settings
from xcrol.database import Base, get_db, set_sqlite_pragmas
from xcrol.main import app
from xcrol.models import *  # noqa: ensure all models are loaded for create_all

REDIRECT_URI = "https://x.com/cb"
OTHER_REDIRECT_URI = "https://x.com/other"

# 43+ characters, RFC 7636 section 4.1
CODE_VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"


# ---------------------------------------------------------------------------
# In-memory SQLite test engine (shared via StaticPool)
# ---------------------------------------------------------------------------

test_engine = create_async_engine(
    "sqlite+aiosqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)
TestSession = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

event.listen(test_engine.sync_engine, "connect", set_sqlite_pragmas)


# ---------------------------------------------------------------------------
# Auto-use: create/drop tables for every test
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
async def db():
    """Yield a fresh AsyncSession for direct service-layer tests."""
    async with TestSession() as session:
        yield session


@pytest.fixture
async def client():
    """httpx AsyncClient wired to the FastAPI app with test DB override."""
    import httpx

    async def _override_get_db():
        async with TestSession() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Seeding helpers
# ---------------------------------------------------------------------------

def _new_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def api_headers():
    """Headers carrying a valid platform API key."""
    return {"apikey": settings.api_keys[0]}


@pytest.fixture
def auth_header():
    """Return a callable that builds a session Authorization header for a user id."""
    from xcrol.core.user_auth import create_user_token

    def _build(user_id: str) -> dict:
        return {"Authorization": f"Bearer {create_user_token(user_id)}"}
    return _build


@pytest.fixture
def make_profile(db: AsyncSession):
    """Factory fixture: create a Profile and return it."""
    from xcrol.models.profile import Profile

    async def _make(username: str = None, **kwargs):
        profile_id = kwargs.pop("id", None) or _new_id()
        profile = Profile(
            id=profile_id,
            username=username or f"user-{profile_id[:8]}",
            display_name=kwargs.pop("display_name", "Test User"),
            **kwargs,
        )
        db.add(profile)
        await db.commit()
        await db.refresh(profile)
        return profile

    return _make


@pytest.fixture
def make_friendship(db: AsyncSession):
    """Factory fixture: create a directed friendship edge."""
    from xcrol.models.profile import Friendship

    async def _make(user_id: str, friend_id: str, level: str = "buddy"):
        friendship = Friendship(id=_new_id(), user_id=user_id, friend_id=friend_id, level=level)
        db.add(friendship)
        await db.commit()
        return friendship

    return _make


@pytest.fixture
def make_entry(db: AsyncSession):
    """Factory fixture: create an XcrolEntry."""
    from xcrol.models.profile import XcrolEntry

    async def _make(user_id: str, content: str = "Went for a walk", entry_date: date = None,
                    privacy_level: str = "public"):
        entry = XcrolEntry(
            id=_new_id(),
            user_id=user_id,
            content=content,
            entry_date=entry_date or date(2026, 1, 1),
            privacy_level=privacy_level,
        )
        db.add(entry)
        await db.commit()
        return entry

    return _make


@pytest.fixture
def make_app(db: AsyncSession):
    """Factory fixture: register an OAuth client and return (client, client_secret)."""
    from xcrol.oauth2.clients import register_client

    async def _make(name: str = "Test App", redirect_uris: list[str] = None, owner_id: str = None):
        return await register_client(
            db,
            name=name,
            redirect_uris=redirect_uris or [REDIRECT_URI],
            owner_id=owner_id or _new_id(),
        )

    return _make


@pytest.fixture
def issue_code(db: AsyncSession):
    """Factory fixture: approve consent for a user and return the authorization code."""
    from xcrol.oauth2.authorization import decide_consent

    async def _issue(client_id: str, user_id: str, scopes: list[str] = None,
                     redirect_uri: str = REDIRECT_URI, state: str = None,
                     code_challenge: str = None, code_challenge_method: str = None):
        decision = await decide_consent(
            db,
            user_id=user_id,
            client_id=client_id,
            redirect_uri=redirect_uri,
            action="authorize",
            selected_scopes=scopes or ["profile:read"],
            state=state,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
        )
        return decision.code

    return _issue


@pytest.fixture
def issue_tokens(db: AsyncSession, issue_code):
    """Factory fixture: run the full code flow and return the TokenResponse."""
    from xcrol.oauth2.tokens import exchange_token

    async def _issue(client_id: str, client_secret: str, user_id: str, scopes: list[str] = None):
        code = await issue_code(client_id, user_id, scopes)
        return await exchange_token(
            db,
            grant_type="authorization_code",
            code=code,
            redirect_uri=REDIRECT_URI,
            client_id=client_id,
            client_secret=client_secret,
        )

    return _issue
