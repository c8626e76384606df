"""FastAPI routes for the "Login with XCROL" authorization server."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from xcrol.config import settings
from xcrol.core.api_key import require_api_key
from xcrol.core.exceptions import (
    InvalidRequestError,
    InvalidTokenError,
    SessionRequiredError,
    UnauthorizedError,
)
from xcrol.core.user_auth import get_current_user_id
from xcrol.database import get_db
from xcrol.directory import UserDirectory, get_directory
from xcrol.oauth2 import authorization, tokens, userinfo
from xcrol.oauth2.pkce import PKCE_METHODS
from xcrol.oauth2.scopes import SCOPE_CATALOG

router = APIRouter(prefix="/oauth2", tags=["oauth2"])
discovery_router = APIRouter(tags=["oauth2"])


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------

class ConsentRequest(BaseModel):
    client_id: Optional[str] = None
    redirect_uri: Optional[str] = None
    action: Optional[str] = None
    scopes: list[str] = Field(default_factory=list)
    state: Optional[str] = None
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None


class ConsentResponse(BaseModel):
    redirect_url: str


class TokenRequest(BaseModel):
    grant_type: Optional[str] = None
    code: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    redirect_uri: Optional[str] = None
    code_verifier: Optional[str] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str
    expires_in: int
    refresh_token: str
    scope: str


class RevokeRequest(BaseModel):
    token: str
    client_id: Optional[str] = None


def _bearer_token(authorization_header: Optional[str]) -> str:
    if not authorization_header:
        raise InvalidTokenError("Missing or invalid bearer token")
    parts = authorization_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise InvalidTokenError("Missing or invalid bearer token")
    return parts[1]


def _consenting_user_id(
    authorization_header: Optional[str] = Header(default=None, alias="Authorization"),
) -> str:
    """Session check for the consent decision, reported as an OAuth error body."""
    try:
        return get_current_user_id(authorization_header)
    except UnauthorizedError as exc:
        raise SessionRequiredError(exc.detail) from exc


async def _token_request(request: Request) -> TokenRequest:
    """Accept the token request as JSON or as a form post (RFC 6749 section 4.1.3)."""
    content_type = request.headers.get("content-type", "")
    try:
        if content_type.startswith("application/x-www-form-urlencoded") or content_type.startswith(
            "multipart/form-data"
        ):
            form = await request.form()
            data = {k: v for k, v in form.items() if isinstance(v, str)}
        else:
            data = await request.json()
    except ValueError:
        raise InvalidRequestError("Request body must be JSON or form encoded")
    if not isinstance(data, dict):
        raise InvalidRequestError("Request body must be an object")
    try:
        return TokenRequest.model_validate(data)
    except ValidationError:
        raise InvalidRequestError("Malformed token request")


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.get("/authorize")
async def authorize_request(
    client_id: Optional[str] = Query(default=None),
    redirect_uri: Optional[str] = Query(default=None),
    response_type: Optional[str] = Query(default="code"),
    scope: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    code_challenge: Optional[str] = Query(default=None),
    code_challenge_method: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    """Validate an authorization request and describe it for the consent screen."""
    info = await authorization.validate_authorization_request(
        db,
        client_id=client_id,
        redirect_uri=redirect_uri,
        response_type=response_type,
        scope=scope,
        state=state,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
    )
    return info.to_dict()


@router.post("/authorize", response_model=ConsentResponse)
async def authorize_decision(
    request: ConsentRequest,
    user_id: str = Depends(_consenting_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Record the signed-in user's consent decision and return where to send the browser."""
    decision = await authorization.decide_consent(
        db,
        user_id=user_id,
        client_id=request.client_id,
        redirect_uri=request.redirect_uri,
        action=request.action,
        selected_scopes=request.scopes,
        state=request.state,
        code_challenge=request.code_challenge,
        code_challenge_method=request.code_challenge_method,
    )
    return ConsentResponse(redirect_url=decision.redirect_url)


@router.post("/token", response_model=TokenResponse, dependencies=[Depends(require_api_key)])
async def token_endpoint(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Token endpoint - exchanges an authorization code or refresh token for tokens."""
    body = await _token_request(request)
    result = await tokens.exchange_token(
        db,
        grant_type=body.grant_type,
        client_id=body.client_id,
        client_secret=body.client_secret,
        code=body.code,
        redirect_uri=body.redirect_uri,
        code_verifier=body.code_verifier,
        refresh_token=body.refresh_token,
        scope=body.scope,
    )
    return TokenResponse(**result.to_dict())


@router.post("/revoke", dependencies=[Depends(require_api_key)])
async def revoke_endpoint(
    request: RevokeRequest,
    db: AsyncSession = Depends(get_db),
):
    """Token revocation endpoint."""
    revoked = await tokens.revoke_token(db, request.token, client_id=request.client_id)
    return {"revoked": revoked}


@router.get("/userinfo", dependencies=[Depends(require_api_key)])
async def userinfo_endpoint(
    authorization_header: Optional[str] = Header(default=None, alias="Authorization"),
    db: AsyncSession = Depends(get_db),
    directory: UserDirectory = Depends(get_directory),
):
    """Claims about the user behind the bearer token, limited to the granted scopes."""
    return await userinfo.get_userinfo(db, _bearer_token(authorization_header), directory)


@router.get("/connection-degree", dependencies=[Depends(require_api_key)])
async def connection_degree_endpoint(
    target_user_id: Optional[str] = Query(default=None),
    target_username: Optional[str] = Query(default=None),
    authorization_header: Optional[str] = Header(default=None, alias="Authorization"),
    db: AsyncSession = Depends(get_db),
    directory: UserDirectory = Depends(get_directory),
):
    """Degrees of separation between the token's user and another member."""
    return await userinfo.get_connection_degree(
        db,
        _bearer_token(authorization_header),
        directory,
        target_user_id=target_user_id,
        target_username=target_username,
    )


@discovery_router.get("/.well-known/openid-configuration")
async def openid_configuration():
    """Authorization server metadata."""
    issuer = settings.oauth_issuer.rstrip("/")
    return {
        "issuer": issuer,
        "authorization_endpoint": f"{issuer}/oauth2/authorize",
        "token_endpoint": f"{issuer}/oauth2/token",
        "userinfo_endpoint": f"{issuer}/oauth2/userinfo",
        "revocation_endpoint": f"{issuer}/oauth2/revoke",
        "response_types_supported": ["code"],
        "grant_types_supported": [tokens.GRANT_AUTHORIZATION_CODE, tokens.GRANT_REFRESH_TOKEN],
        "scopes_supported": [scope.value for scope in SCOPE_CATALOG],
        "token_endpoint_auth_methods_supported": ["client_secret_post", "none"],
        "code_challenge_methods_supported": list(PKCE_METHODS),
        "subject_types_supported": ["public"],
    }
