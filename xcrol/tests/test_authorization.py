"""Authorization request validation and consent decision tests."""

from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from xcrol.core.exceptions import (
    InvalidRequestError,
    UnknownClientError,
    UnsupportedResponseTypeError,
)
from xcrol.oauth2.authorization import (
    AUTHORIZATION_CODE_LIFETIME,
    build_redirect_url,
    decide_consent,
    validate_authorization_request,
)
from xcrol.oauth2.connections import get_consent
from xcrol.oauth2.models import AuthorizationCode
from xcrol.oauth2.scopes import Scope
from xcrol.tests.conftest import CODE_VERIFIER, OTHER_REDIRECT_URI, REDIRECT_URI


async def _code_count(db: AsyncSession) -> int:
    return (await db.execute(select(func.count(AuthorizationCode.id)))).scalar()


class TestBuildRedirectUrl:
    def test_adds_query(self):
        assert build_redirect_url(REDIRECT_URI, {"code": "c", "state": "s"}) == (
            "https://x.com/cb?code=c&state=s"
        )

    def test_keeps_existing_query(self):
        assert build_redirect_url("https://x.com/cb?app=1", {"code": "c"}) == (
            "https://x.com/cb?app=1&code=c"
        )

    def test_skips_missing_state(self):
        assert build_redirect_url(REDIRECT_URI, {"code": "c", "state": None}) == (
            "https://x.com/cb?code=c"
        )

    def test_encodes_values(self):
        url = build_redirect_url(REDIRECT_URI, {"state": "a b&c"})
        assert url == "https://x.com/cb?state=a+b%26c"


class TestValidateAuthorizationRequest:
    async def test_valid_request(self, db: AsyncSession, make_app):
        client, _ = await make_app(name="Cool App")
        info = await validate_authorization_request(
            db,
            client_id=client.client_id,
            redirect_uri=REDIRECT_URI,
            response_type="code",
            scope="profile:email photos:write",
            state="abc123",
        )
        data = info.to_dict()
        assert data["client"]["name"] == "Cool App"
        assert data["client"]["is_verified"] is False
        assert [s["id"] for s in data["scopes"]] == ["profile:read", "profile:email"]
        assert data["state"] == "abc123"
        assert data["redirect_uri"] == REDIRECT_URI

    async def test_scope_defaults_to_profile_read(self, db: AsyncSession, make_app):
        client, _ = await make_app()
        info = await validate_authorization_request(
            db, client_id=client.client_id, redirect_uri=REDIRECT_URI,
        )
        assert [s.id for s in info.scopes] == ["profile:read"]

    async def test_unknown_client(self, db: AsyncSession):
        with pytest.raises(UnknownClientError) as exc:
            await validate_authorization_request(db, client_id="nope", redirect_uri=REDIRECT_URI)
        assert exc.value.error == "invalid_client"

    @pytest.mark.parametrize("redirect_uri", [
        "https://x.com/cb/",
        "http://x.com/cb",
        "https://x.com/cb?extra=1",
        "https://evil.com/cb",
    ])
    async def test_redirect_mismatch(self, db: AsyncSession, make_app, redirect_uri):
        client, _ = await make_app()
        with pytest.raises(InvalidRequestError) as exc:
            await validate_authorization_request(
                db, client_id=client.client_id, redirect_uri=redirect_uri,
            )
        assert exc.value.description == "redirect_uri_mismatch"

    async def test_missing_parameters(self, db: AsyncSession):
        with pytest.raises(InvalidRequestError):
            await validate_authorization_request(db, client_id=None, redirect_uri=REDIRECT_URI)

    async def test_wrong_response_type(self, db: AsyncSession, make_app):
        client, _ = await make_app()
        with pytest.raises(UnsupportedResponseTypeError):
            await validate_authorization_request(
                db, client_id=client.client_id, redirect_uri=REDIRECT_URI, response_type="token",
            )

    async def test_redirect_checked_before_response_type(self, db: AsyncSession, make_app):
        client, _ = await make_app()
        with pytest.raises(InvalidRequestError):
            await validate_authorization_request(
                db, client_id=client.client_id, redirect_uri="https://evil.com", response_type="token",
            )

    async def test_bad_pkce_method(self, db: AsyncSession, make_app):
        client, _ = await make_app()
        with pytest.raises(InvalidRequestError):
            await validate_authorization_request(
                db,
                client_id=client.client_id,
                redirect_uri=REDIRECT_URI,
                code_challenge=CODE_VERIFIER,
                code_challenge_method="md5",
            )

    async def test_does_not_write(self, db: AsyncSession, make_app):
        client, _ = await make_app()
        await validate_authorization_request(db, client_id=client.client_id, redirect_uri=REDIRECT_URI)
        assert await _code_count(db) == 0


class TestDecideConsent:
    async def test_authorize_issues_code(self, db: AsyncSession, make_app):
        client, _ = await make_app()
        decision = await decide_consent(
            db,
            user_id="user-1",
            client_id=client.client_id,
            redirect_uri=REDIRECT_URI,
            action="authorize",
            selected_scopes=["profile:email"],
            state="abc123",
        )
        assert decision.code
        assert decision.redirect_url == f"https://x.com/cb?code={decision.code}&state=abc123"
        assert decision.granted_scopes == [Scope.PROFILE_READ, Scope.PROFILE_EMAIL]

        row = (
            await db.execute(select(AuthorizationCode).where(AuthorizationCode.code == decision.code))
        ).scalar_one()
        assert row.user_id == "user-1"
        assert row.scope == "profile:read profile:email"
        assert row.redirect_uri == REDIRECT_URI
        assert row.consumed_at is None
        expires_at = row.expires_at.replace(tzinfo=timezone.utc)
        assert expires_at - datetime.now(timezone.utc) <= AUTHORIZATION_CODE_LIFETIME

    async def test_profile_read_forced_when_unticked(self, db: AsyncSession, make_app):
        client, _ = await make_app()
        decision = await decide_consent(
            db,
            user_id="user-1",
            client_id=client.client_id,
            redirect_uri=REDIRECT_URI,
            action="authorize",
            selected_scopes=[],
        )
        assert decision.granted_scopes == [Scope.PROFILE_READ]

    async def test_authorize_records_consent_union(self, db: AsyncSession, make_app, issue_code):
        client, _ = await make_app()
        await issue_code(client.client_id, "user-1", ["profile:email"])
        await issue_code(client.client_id, "user-1", ["hometown:read"])
        consent = await get_consent(db, "user-1", client.client_id)
        assert consent.scope == "profile:read profile:email hometown:read"

    async def test_deny_redirects_with_access_denied(self, db: AsyncSession, make_app):
        client, _ = await make_app()
        decision = await decide_consent(
            db,
            user_id="user-1",
            client_id=client.client_id,
            redirect_uri=REDIRECT_URI,
            action="deny",
            state="abc123",
        )
        assert decision.redirect_url == "https://x.com/cb?error=access_denied&state=abc123"
        assert decision.code is None
        assert await _code_count(db) == 0
        assert await get_consent(db, "user-1", client.client_id) is None

    async def test_deny_still_validates_redirect(self, db: AsyncSession, make_app):
        client, _ = await make_app(redirect_uris=[REDIRECT_URI, OTHER_REDIRECT_URI])
        with pytest.raises(InvalidRequestError):
            await decide_consent(
                db,
                user_id="user-1",
                client_id=client.client_id,
                redirect_uri="https://evil.com/cb",
                action="deny",
            )

    async def test_tampered_redirect_rejected(self, db: AsyncSession, make_app):
        client, _ = await make_app()
        with pytest.raises(InvalidRequestError):
            await decide_consent(
                db,
                user_id="user-1",
                client_id=client.client_id,
                redirect_uri="https://x.com/cb/",
                action="authorize",
            )
        assert await _code_count(db) == 0

    async def test_unknown_action(self, db: AsyncSession, make_app):
        client, _ = await make_app()
        with pytest.raises(InvalidRequestError):
            await decide_consent(
                db,
                user_id="user-1",
                client_id=client.client_id,
                redirect_uri=REDIRECT_URI,
                action="maybe",
            )

    async def test_pkce_stored_on_code(self, db: AsyncSession, make_app, issue_code):
        client, _ = await make_app()
        code = await issue_code(
            client.client_id, "user-1", code_challenge=CODE_VERIFIER, code_challenge_method="plain",
        )
        row = (
            await db.execute(select(AuthorizationCode).where(AuthorizationCode.code == code))
        ).scalar_one()
        assert row.code_challenge == CODE_VERIFIER
        assert row.code_challenge_method == "plain"

    async def test_codes_are_unique(self, db: AsyncSession, make_app, issue_code):
        client, _ = await make_app()
        codes = {await issue_code(client.client_id, "user-1") for _ in range(5)}
        assert len(codes) == 5
