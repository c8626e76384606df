"""Authorization endpoint logic: request validation and the user's consent decision.

Neither function ever redirects to a URI that has not been matched exactly
against the client's registered set; configuration errors are raised to the
caller instead.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode, urlsplit, urlunsplit

from sqlalchemy.ext.asyncio import AsyncSession

from xcrol.config import settings
from xcrol.core.exceptions import (
    InvalidRequestError,
    UnknownClientError,
    UnsupportedResponseTypeError,
)
from xcrol.core.redaction import fingerprint, mask_id
from xcrol.oauth2.clients import get_client, is_registered_redirect_uri
from xcrol.oauth2.connections import record_consent
from xcrol.oauth2.models import AuthorizationCode, OAuthClient
from xcrol.oauth2.pkce import normalize_challenge
from xcrol.oauth2.scopes import (
    Scope,
    ScopeInfo,
    describe,
    ensure_mandatory,
    format_scope,
    parse_scope,
    resolve,
)

logger = logging.getLogger(__name__)

AUTHORIZATION_CODE_LIFETIME = timedelta(seconds=settings.oauth_code_ttl_seconds)

ACTION_AUTHORIZE = "authorize"
ACTION_DENY = "deny"


@dataclass
class AuthorizationRequestInfo:
    """Everything the consent page needs to render."""

    client: OAuthClient
    scopes: list[ScopeInfo]
    redirect_uri: str
    response_type: str
    state: str | None = None
    code_challenge: str | None = None
    code_challenge_method: str | None = None

    def to_dict(self) -> dict:
        return {
            "client": {
                "id": self.client.client_id,
                "name": self.client.name,
                "description": self.client.description,
                "logo_url": self.client.logo_url,
                "homepage_url": self.client.homepage_url,
                "is_verified": self.client.is_verified,
            },
            "scopes": [s.to_dict() for s in self.scopes],
            "state": self.state,
            "redirect_uri": self.redirect_uri,
            "response_type": self.response_type,
            "code_challenge": self.code_challenge,
            "code_challenge_method": self.code_challenge_method,
        }


@dataclass
class ConsentDecision:
    redirect_url: str
    code: str | None = None
    granted_scopes: list[Scope] = field(default_factory=list)


def build_redirect_url(redirect_uri: str, params: dict[str, str | None]) -> str:
    """Append query parameters to a registered redirect URI.

    The registered part is kept verbatim; only the new parameters are
    encoded.
    """
    parts = urlsplit(redirect_uri)
    extra = urlencode([(k, v) for k, v in params.items() if v is not None])
    query = f"{parts.query}&{extra}" if parts.query else extra
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


async def _resolve_client(
    db: AsyncSession,
    client_id: str | None,
    redirect_uri: str | None,
) -> OAuthClient:
    if not client_id or not redirect_uri:
        raise InvalidRequestError("Missing client_id or redirect_uri")

    client = await get_client(db, client_id)
    if client is None:
        logger.warning("Authorization request for unknown client %s", client_id)
        raise UnknownClientError()

    if not is_registered_redirect_uri(client, redirect_uri):
        logger.warning("Unregistered redirect_uri presented for client %s", client_id)
        raise InvalidRequestError("redirect_uri_mismatch")
    return client


async def validate_authorization_request(
    db: AsyncSession,
    *,
    client_id: str | None,
    redirect_uri: str | None,
    response_type: str | None = "code",
    scope: str | None = None,
    state: str | None = None,
    code_challenge: str | None = None,
    code_challenge_method: str | None = None,
) -> AuthorizationRequestInfo:
    """Validate an incoming authorization request for consent rendering.

    Read-only. The client and the exact redirect URI are checked before
    anything else so an invalid request can never be bounced to an
    attacker-controlled URI.

    Raises:
        InvalidRequestError: missing parameters, unregistered redirect URI,
            or malformed PKCE parameters.
        UnknownClientError: ``client_id`` is not registered.
        UnsupportedResponseTypeError: ``response_type`` is not ``code``.
    """
    client = await _resolve_client(db, client_id, redirect_uri)

    response_type = response_type or "code"
    if response_type != "code":
        raise UnsupportedResponseTypeError()

    challenge, method = normalize_challenge(code_challenge, code_challenge_method)
    scopes = parse_scope(scope)

    return AuthorizationRequestInfo(
        client=client,
        scopes=describe(scopes),
        redirect_uri=redirect_uri,
        response_type=response_type,
        state=state,
        code_challenge=challenge,
        code_challenge_method=method,
    )


async def decide_consent(
    db: AsyncSession,
    *,
    user_id: str,
    client_id: str | None,
    redirect_uri: str | None,
    action: str | None,
    selected_scopes: list[str] | None = None,
    state: str | None = None,
    code_challenge: str | None = None,
    code_challenge_method: str | None = None,
) -> ConsentDecision:
    """Apply the user's authorize/deny decision.

    Client and redirect URI are re-validated from scratch; nothing carried by
    the consent form between request and decision is trusted.

    On ``authorize`` a single-use code bound to (client, user, redirect URI,
    granted scopes, PKCE challenge) is stored together with the consent
    record, and the redirect carries ``code`` and ``state``. On ``deny`` the
    redirect carries ``error=access_denied`` and ``state`` and nothing is
    stored.
    """
    await _resolve_client(db, client_id, redirect_uri)

    if action == ACTION_DENY:
        logger.info("User %s denied authorization for client %s", mask_id(user_id), client_id)
        return ConsentDecision(
            redirect_url=build_redirect_url(
                redirect_uri, {"error": "access_denied", "state": state}
            ),
        )
    if action != ACTION_AUTHORIZE:
        raise InvalidRequestError("action must be 'authorize' or 'deny'")

    challenge, method = normalize_challenge(code_challenge, code_challenge_method)
    granted = ensure_mandatory(resolve(selected_scopes or []))

    now = datetime.now(timezone.utc)
    code = secrets.token_urlsafe(32)
    db.add(
        AuthorizationCode(
            code=code,
            client_id=client_id,
            user_id=user_id,
            redirect_uri=redirect_uri,
            scope=format_scope(granted),
            code_challenge=challenge,
            code_challenge_method=method,
            created_at=now,
            expires_at=now + AUTHORIZATION_CODE_LIFETIME,
        )
    )
    try:
        await record_consent(db, user_id, client_id, granted)
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception(
            "Could not store authorization code for client %s user %s",
            client_id,
            mask_id(user_id),
        )
        raise

    logger.info(
        "Issued authorization code %s client=%s user=%s scope=%r pkce=%s",
        fingerprint(code),
        client_id,
        mask_id(user_id),
        format_scope(granted),
        method or "none",
    )
    return ConsentDecision(
        redirect_url=build_redirect_url(redirect_uri, {"code": code, "state": state}),
        code=code,
        granted_scopes=granted,
    )
