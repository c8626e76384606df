"""Consent records: which apps a user has connected and what they granted."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from xcrol.core.redaction import mask_id
from xcrol.oauth2.models import AuthorizationCode, OAuthClient, OAuthUserAuthorization
from xcrol.oauth2.scopes import Scope, format_scope, parse_scope
from xcrol.oauth2.tokens import revoke_user_client_tokens

logger = logging.getLogger(__name__)


@dataclass
class ConnectedApp:
    client_id: str
    name: str
    description: str | None
    logo_url: str | None
    homepage_url: str | None
    is_verified: bool
    scopes: list[Scope]
    authorized_at: datetime
    updated_at: datetime


def consent_insert(dialect_name: str, *, user_id: str, client_id: str, scope: str):
    """INSERT of a new consent row that is a no-op when the pair already exists."""
    insert = sqlite_insert if dialect_name == "sqlite" else pg_insert
    return (
        insert(OAuthUserAuthorization)
        .values(user_id=user_id, client_id=client_id, scope=scope)
        .on_conflict_do_nothing(index_elements=["user_id", "client_id"])
    )


async def record_consent(
    db: AsyncSession,
    user_id: str,
    client_id: str,
    scopes: list[Scope],
) -> OAuthUserAuthorization:
    """Upsert the (user, client) consent row with the union of granted scopes.

    The row is created with ``ON CONFLICT DO NOTHING`` and then re-read under
    a row lock (PostgreSQL) before the scopes are merged, so concurrent
    approvals for the same pair neither collide on the unique constraint nor
    drop each other's scopes.

    Only flushes; the caller commits together with the authorization code.
    """
    dialect_name = db.get_bind().dialect.name
    await db.execute(
        consent_insert(dialect_name, user_id=user_id, client_id=client_id, scope=format_scope(scopes))
    )

    stmt = (
        select(OAuthUserAuthorization)
        .where(
            OAuthUserAuthorization.user_id == user_id,
            OAuthUserAuthorization.client_id == client_id,
        )
        .execution_options(populate_existing=True)
    )
    if dialect_name != "sqlite":
        stmt = stmt.with_for_update()
    record = (await db.execute(stmt)).scalar_one()

    record.scope = format_scope(parse_scope(record.scope) + list(scopes))
    record.updated_at = datetime.now(timezone.utc)
    await db.flush()
    return record


async def get_consent(db: AsyncSession, user_id: str, client_id: str) -> OAuthUserAuthorization | None:
    result = await db.execute(
        select(OAuthUserAuthorization).where(
            OAuthUserAuthorization.user_id == user_id,
            OAuthUserAuthorization.client_id == client_id,
        )
    )
    return result.scalar_one_or_none()


async def list_user_authorizations(db: AsyncSession, user_id: str) -> list[ConnectedApp]:
    result = await db.execute(
        select(OAuthUserAuthorization, OAuthClient)
        .join(OAuthClient, OAuthClient.client_id == OAuthUserAuthorization.client_id)
        .where(OAuthUserAuthorization.user_id == user_id)
        .order_by(OAuthUserAuthorization.updated_at.desc())
    )
    return [
        ConnectedApp(
            client_id=client.client_id,
            name=client.name,
            description=client.description,
            logo_url=client.logo_url,
            homepage_url=client.homepage_url,
            is_verified=client.is_verified,
            scopes=parse_scope(record.scope),
            authorized_at=record.created_at,
            updated_at=record.updated_at,
        )
        for record, client in result.all()
    ]


async def revoke_authorization(db: AsyncSession, user_id: str, client_id: str) -> bool:
    """Disconnect an app: drop the consent row and kill every grant of the pair.

    Access tokens, refresh tokens and unconsumed codes are invalidated in the
    same transaction as the delete. Returns False when there was nothing to
    revoke.
    """
    now = datetime.now(timezone.utc)
    deleted = await db.execute(
        delete(OAuthUserAuthorization).where(
            OAuthUserAuthorization.user_id == user_id,
            OAuthUserAuthorization.client_id == client_id,
        )
    )
    revoked = await revoke_user_client_tokens(db, user_id, client_id)
    await db.execute(
        update(AuthorizationCode)
        .where(
            AuthorizationCode.user_id == user_id,
            AuthorizationCode.client_id == client_id,
            AuthorizationCode.consumed_at.is_(None),
        )
        .values(consumed_at=now)
    )
    await db.commit()

    logger.info(
        "Revoked authorization client=%s user=%s tokens=%d",
        client_id,
        mask_id(user_id),
        revoked,
    )
    return bool(deleted.rowcount or revoked)
