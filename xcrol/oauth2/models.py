"""SQLAlchemy models for the OAuth2 authorization server."""

import json
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)

from xcrol.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class OAuthClient(Base):
    """Registered third-party application."""

    __tablename__ = "oauth_clients"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    client_id = Column(String(100), unique=True, nullable=False)
    client_secret_hash = Column(String(200), nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    logo_url = Column(String(500), nullable=True)
    homepage_url = Column(String(500), nullable=True)
    redirect_uris = Column(Text, nullable=False, default="[]")  # JSON array, exact-match strings
    is_verified = Column(Boolean, nullable=False, default=False)
    owner_id = Column(String(36), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_oauth_client_id", "client_id"),
        Index("idx_oauth_client_owner", "owner_id"),
    )

    @property
    def redirect_uri_list(self) -> list[str]:
        return json.loads(self.redirect_uris or "[]")


class AuthorizationCode(Base):
    """Short-lived, single-use code issued on consent approval."""

    __tablename__ = "oauth_authorization_codes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    code = Column(String(200), unique=True, nullable=False)
    client_id = Column(String(100), nullable=False)
    user_id = Column(String(36), nullable=False)
    redirect_uri = Column(String(500), nullable=False)
    scope = Column(String(500), nullable=False)  # Space-separated granted scopes
    code_challenge = Column(String(200), nullable=True)
    code_challenge_method = Column(String(10), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    consumed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_authcode_code", "code"),
        Index("idx_authcode_client_user", "client_id", "user_id"),
        Index("idx_authcode_expires", "expires_at"),
    )


class OAuthAccessToken(Base):
    """Bearer access token issued to a client on behalf of a user."""

    __tablename__ = "oauth_access_tokens"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    token = Column(String(500), unique=True, nullable=False)
    client_id = Column(String(100), nullable=False)
    user_id = Column(String(36), nullable=False)
    scope = Column(String(500), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    revoked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_access_token", "token"),
        Index("idx_access_token_client_user", "client_id", "user_id"),
        Index("idx_access_token_expires", "expires_at"),
    )


class OAuthRefreshToken(Base):
    """Single-use refresh token paired with the access token issued alongside it."""

    __tablename__ = "oauth_refresh_tokens"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    token = Column(String(500), unique=True, nullable=False)
    access_token_id = Column(String(36), ForeignKey("oauth_access_tokens.id"), nullable=False)
    client_id = Column(String(100), nullable=False)
    user_id = Column(String(36), nullable=False)
    scope = Column(String(500), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    revoked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_refresh_token", "token"),
        Index("idx_refresh_token_access", "access_token_id"),
        Index("idx_refresh_token_client_user", "client_id", "user_id"),
    )


class OAuthUserAuthorization(Base):
    """Consent record: every scope a user has granted to a client."""

    __tablename__ = "oauth_user_authorizations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False)
    client_id = Column(String(100), nullable=False)
    scope = Column(String(500), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "client_id", name="uq_user_authorization"),
        Index("idx_user_authorization_user", "user_id"),
    )
