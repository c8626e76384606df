"""Token endpoint: code exchange, refresh rotation, validation and revocation.

Every grant is consumed with a conditional UPDATE and its ``rowcount`` is
checked, so two concurrent requests for the same code or refresh token can
never both succeed. The consume step and the token inserts share one
transaction; any failure rolls both back.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from xcrol.config import settings
from xcrol.core.exceptions import (
    InvalidClientError,
    InvalidGrantError,
    InvalidRequestError,
    InvalidScopeError,
    UnsupportedGrantTypeError,
)
from xcrol.core.redaction import fingerprint, mask_id
from xcrol.oauth2.clients import get_client, verify_client_secret
from xcrol.oauth2.models import AuthorizationCode, OAuthAccessToken, OAuthRefreshToken
from xcrol.oauth2.pkce import authenticate, authentication_for
from xcrol.oauth2.scopes import Scope, ensure_mandatory, format_scope, parse_scope, resolve

logger = logging.getLogger(__name__)

ACCESS_TOKEN_LIFETIME = timedelta(seconds=settings.oauth_access_token_ttl_seconds)
REFRESH_TOKEN_LIFETIME = timedelta(seconds=settings.oauth_refresh_token_ttl_seconds)

GRANT_AUTHORIZATION_CODE = "authorization_code"
GRANT_REFRESH_TOKEN = "refresh_token"


@dataclass
class TokenResponse:
    access_token: str
    refresh_token: str
    expires_in: int
    scope: str
    token_type: str = "Bearer"

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "refresh_token": self.refresh_token,
            "scope": self.scope,
        }


@dataclass
class AccessTokenInfo:
    client_id: str
    user_id: str
    scopes: list[Scope]
    expires_at: datetime

    def has_scope(self, scope: Scope) -> bool:
        return scope in self.scopes


def _generate_token() -> str:
    return secrets.token_urlsafe(48)


async def _load(db: AsyncSession, stmt):
    # Bulk UPDATEs here skip session synchronization, so reload rows as stored.
    return (await db.execute(stmt.execution_options(populate_existing=True))).scalar_one_or_none()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def _issue_pair(
    db: AsyncSession,
    *,
    client_id: str,
    user_id: str,
    scopes: list[Scope],
    now: datetime,
) -> TokenResponse:
    """Add a new access/refresh token pair to the session. Caller commits."""
    scope = format_scope(scopes)
    access = OAuthAccessToken(
        token=_generate_token(),
        client_id=client_id,
        user_id=user_id,
        scope=scope,
        created_at=now,
        expires_at=now + ACCESS_TOKEN_LIFETIME,
    )
    db.add(access)
    await db.flush()

    refresh = OAuthRefreshToken(
        token=_generate_token(),
        access_token_id=access.id,
        client_id=client_id,
        user_id=user_id,
        scope=scope,
        created_at=now,
        expires_at=now + REFRESH_TOKEN_LIFETIME,
    )
    db.add(refresh)
    await db.flush()

    return TokenResponse(
        access_token=access.token,
        refresh_token=refresh.token,
        expires_in=int(ACCESS_TOKEN_LIFETIME.total_seconds()),
        scope=scope,
    )


async def _commit_or_rollback(db: AsyncSession, client_id: str, user_id: str) -> None:
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception("Token issuance failed for client %s user %s", client_id, mask_id(user_id))
        raise


async def exchange_token(
    db: AsyncSession,
    *,
    grant_type: str | None,
    client_id: str | None = None,
    client_secret: str | None = None,
    code: str | None = None,
    redirect_uri: str | None = None,
    code_verifier: str | None = None,
    refresh_token: str | None = None,
    scope: str | None = None,
) -> TokenResponse:
    """Dispatch a token request on ``grant_type``.

    Raises:
        UnsupportedGrantTypeError: grant type is neither ``authorization_code``
            nor ``refresh_token``.
        InvalidRequestError / InvalidClientError / InvalidGrantError /
        InvalidScopeError: see the grant handlers.
    """
    if grant_type == GRANT_AUTHORIZATION_CODE:
        return await exchange_authorization_code(
            db,
            code=code,
            redirect_uri=redirect_uri,
            client_id=client_id,
            client_secret=client_secret,
            code_verifier=code_verifier,
        )
    if grant_type == GRANT_REFRESH_TOKEN:
        return await refresh_access_token(
            db,
            refresh_token=refresh_token,
            client_id=client_id,
            client_secret=client_secret,
            scope=scope,
        )
    logger.warning("Unsupported grant_type %r from client %s", grant_type, client_id)
    raise UnsupportedGrantTypeError()


async def exchange_authorization_code(
    db: AsyncSession,
    *,
    code: str | None,
    redirect_uri: str | None,
    client_id: str | None,
    client_secret: str | None = None,
    code_verifier: str | None = None,
) -> TokenResponse:
    """Redeem an authorization code for an access/refresh token pair.

    The code is consumed by a single conditional UPDATE that also checks
    expiry, client and redirect URI; a mismatch on any of them reports the
    same ``invalid_grant`` so the response never reveals which field was
    wrong. Client authentication runs inside the same transaction: on failure
    the consume is rolled back and the code stays redeemable by the
    legitimate client.
    """
    if not code or not redirect_uri or not client_id:
        raise InvalidRequestError("Missing required parameters: code, redirect_uri, client_id")

    client = await get_client(db, client_id)
    if client is None:
        logger.warning("Token request for unknown client %s", client_id)
        raise InvalidClientError()

    now = datetime.now(timezone.utc)
    result = await db.execute(
        update(AuthorizationCode)
        .where(
            AuthorizationCode.code == code,
            AuthorizationCode.consumed_at.is_(None),
            AuthorizationCode.expires_at > now,
            AuthorizationCode.client_id == client_id,
            AuthorizationCode.redirect_uri == redirect_uri,
        )
        .values(consumed_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        logger.warning("Rejected authorization code %s for client %s", fingerprint(code), client_id)
        raise InvalidGrantError()

    row = await _load(db, select(AuthorizationCode).where(AuthorizationCode.code == code))

    user_id = row.user_id
    auth = authentication_for(row.code_challenge, row.code_challenge_method, client.client_secret_hash)
    if not authenticate(auth, client_secret=client_secret, code_verifier=code_verifier):
        await db.rollback()
        logger.warning(
            "Client authentication failed for client %s user %s via %s",
            client_id,
            mask_id(user_id),
            type(auth).__name__,
        )
        raise InvalidClientError()

    response = await _issue_pair(
        db,
        client_id=client_id,
        user_id=user_id,
        scopes=parse_scope(row.scope),
        now=now,
    )
    await _commit_or_rollback(db, client_id, user_id)

    logger.info(
        "Exchanged code %s for access token %s client=%s user=%s scope=%r",
        fingerprint(code),
        fingerprint(response.access_token),
        client_id,
        mask_id(user_id),
        response.scope,
    )
    return response


def _narrow_scopes(granted: list[Scope], requested: str | None) -> list[Scope]:
    if requested is None or not requested.strip():
        return granted
    ids = requested.split()
    scopes = resolve(ids)
    if len(scopes) != len(set(ids)) or any(s not in granted for s in scopes):
        raise InvalidScopeError("Requested scope exceeds the original grant")
    return ensure_mandatory(scopes)


async def refresh_access_token(
    db: AsyncSession,
    *,
    refresh_token: str | None,
    client_id: str | None,
    client_secret: str | None = None,
    scope: str | None = None,
) -> TokenResponse:
    """Rotate a refresh token into a new token pair.

    Refresh tokens are single use. Presenting one that was already rotated
    revokes every live token the client holds for that user, since either
    the client or an attacker is replaying a stolen token.

    The client secret is optional so public (PKCE) clients can refresh, but
    a secret that is supplied must be correct.
    """
    if not refresh_token or not client_id:
        raise InvalidRequestError("Missing required parameters: refresh_token, client_id")

    client = await get_client(db, client_id)
    if client is None:
        raise InvalidClientError()
    if client_secret and not verify_client_secret(client, client_secret):
        logger.warning("Refresh with wrong client secret for client %s", client_id)
        raise InvalidClientError()

    record = await _load(db, select(OAuthRefreshToken).where(OAuthRefreshToken.token == refresh_token))
    if record is None or record.client_id != client_id:
        logger.warning("Unknown refresh token %s for client %s", fingerprint(refresh_token), client_id)
        raise InvalidGrantError("Invalid refresh token")

    user_id = record.user_id
    if record.revoked:
        revoked = await revoke_user_client_tokens(db, user_id, client_id)
        await db.commit()
        logger.warning(
            "Reuse of rotated refresh token %s client=%s user=%s; revoked %d tokens",
            fingerprint(refresh_token),
            client_id,
            mask_id(user_id),
            revoked,
        )
        raise InvalidGrantError("Invalid refresh token")

    scopes = _narrow_scopes(parse_scope(record.scope), scope)

    now = datetime.now(timezone.utc)
    result = await db.execute(
        update(OAuthRefreshToken)
        .where(
            OAuthRefreshToken.id == record.id,
            OAuthRefreshToken.revoked.is_(False),
            OAuthRefreshToken.expires_at > now,
        )
        .values(revoked=True)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        logger.warning("Refresh token %s expired or already used", fingerprint(refresh_token))
        raise InvalidGrantError("Invalid refresh token")

    await db.execute(
        update(OAuthAccessToken)
        .where(OAuthAccessToken.id == record.access_token_id)
        .values(revoked=True)
        .execution_options(synchronize_session=False)
    )

    response = await _issue_pair(db, client_id=client_id, user_id=user_id, scopes=scopes, now=now)
    await _commit_or_rollback(db, client_id, user_id)

    logger.info(
        "Rotated refresh token %s -> %s client=%s user=%s",
        fingerprint(refresh_token),
        fingerprint(response.refresh_token),
        client_id,
        mask_id(user_id),
    )
    return response


async def validate_access_token(db: AsyncSession, token: str | None) -> AccessTokenInfo | None:
    """Return the grant behind a live access token, or None."""
    if not token:
        return None
    record = await _load(db, select(OAuthAccessToken).where(OAuthAccessToken.token == token))
    if record is None or record.revoked:
        return None
    expires_at = _as_utc(record.expires_at)
    if expires_at <= datetime.now(timezone.utc):
        return None
    return AccessTokenInfo(
        client_id=record.client_id,
        user_id=record.user_id,
        scopes=parse_scope(record.scope),
        expires_at=expires_at,
    )


async def revoke_token(db: AsyncSession, token: str | None, client_id: str | None = None) -> bool:
    """Revoke an access or refresh token (RFC 7009).

    Revoking a refresh token also revokes the access token issued with it.
    When ``client_id`` is given, tokens belonging to other clients are left
    alone. Returns whether anything was revoked.
    """
    if not token:
        return False

    access = await _load(db, select(OAuthAccessToken).where(OAuthAccessToken.token == token))
    if access is not None and (client_id is None or access.client_id == client_id):
        access.revoked = True
        await db.commit()
        logger.info("Revoked access token %s client=%s", fingerprint(token), access.client_id)
        return True

    refresh = await _load(db, select(OAuthRefreshToken).where(OAuthRefreshToken.token == token))
    if refresh is not None and (client_id is None or refresh.client_id == client_id):
        refresh.revoked = True
        await db.execute(
            update(OAuthAccessToken)
            .where(OAuthAccessToken.id == refresh.access_token_id)
            .values(revoked=True)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        logger.info("Revoked refresh token %s client=%s", fingerprint(token), refresh.client_id)
        return True

    return False


async def revoke_user_client_tokens(db: AsyncSession, user_id: str, client_id: str) -> int:
    """Revoke every live token of a (user, client) pair. Caller commits."""
    access = await db.execute(
        update(OAuthAccessToken)
        .where(
            OAuthAccessToken.user_id == user_id,
            OAuthAccessToken.client_id == client_id,
            OAuthAccessToken.revoked.is_(False),
        )
        .values(revoked=True)
        .execution_options(synchronize_session=False)
    )
    refresh = await db.execute(
        update(OAuthRefreshToken)
        .where(
            OAuthRefreshToken.user_id == user_id,
            OAuthRefreshToken.client_id == client_id,
            OAuthRefreshToken.revoked.is_(False),
        )
        .values(revoked=True)
        .execution_options(synchronize_session=False)
    )
    return access.rowcount + refresh.rowcount


async def purge_expired(db: AsyncSession, now: datetime | None = None) -> int:
    """Delete expired or used codes and expired tokens.

    Storage hygiene only: expiry is always enforced at read time.
    """
    now = now or datetime.now(timezone.utc)

    codes = await db.execute(
        delete(AuthorizationCode)
        .where(or_(AuthorizationCode.expires_at <= now, AuthorizationCode.consumed_at.is_not(None)))
        .execution_options(synchronize_session=False)
    )
    refresh = await db.execute(
        delete(OAuthRefreshToken)
        .where(OAuthRefreshToken.expires_at <= now)
        .execution_options(synchronize_session=False)
    )
    # Access tokens still referenced by a live refresh token are kept.
    access = await db.execute(
        delete(OAuthAccessToken)
        .where(
            OAuthAccessToken.expires_at <= now,
            OAuthAccessToken.id.not_in(select(OAuthRefreshToken.access_token_id)),
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    total = codes.rowcount + refresh.rowcount + access.rowcount
    if total:
        logger.info(
            "Purged %d codes, %d refresh tokens, %d access tokens",
            codes.rowcount,
            refresh.rowcount,
            access.rowcount,
        )
    return total
