"""Client registry: third-party applications allowed to request XCROL logins."""

import hashlib
import hmac
import json
import logging
import secrets

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from xcrol.core.exceptions import ClientNotFoundError
from xcrol.core.redaction import mask_id
from xcrol.core.url_validation import validate_redirect_uris
from xcrol.oauth2.models import (
    AuthorizationCode,
    OAuthAccessToken,
    OAuthClient,
    OAuthRefreshToken,
    OAuthUserAuthorization,
)

logger = logging.getLogger(__name__)

_MUTABLE_FIELDS = ("name", "description", "logo_url", "homepage_url", "redirect_uris")


def hash_secret(secret: str) -> str:
    """Hash a client secret using SHA-256.

    Client secrets are 48 random bytes from ``secrets.token_urlsafe``, not
    user-chosen passwords, so a plain digest is enough and keeps the token
    endpoint fast.
    """
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def generate_client_secret() -> str:
    return secrets.token_urlsafe(48)


def verify_client_secret(client: OAuthClient, secret: str | None) -> bool:
    if not secret:
        return False
    return hmac.compare_digest(hash_secret(secret), client.client_secret_hash)


def is_registered_redirect_uri(client: OAuthClient, redirect_uri: str | None) -> bool:
    """Exact, byte-for-byte membership test. No normalization of any kind."""
    if not redirect_uri:
        return False
    return any(redirect_uri == registered for registered in client.redirect_uri_list)


async def get_client(db: AsyncSession, client_id: str | None) -> OAuthClient | None:
    if not client_id:
        return None
    result = await db.execute(select(OAuthClient).where(OAuthClient.client_id == client_id))
    return result.scalar_one_or_none()


async def _get_owned_client(db: AsyncSession, client_id: str, owner_id: str) -> OAuthClient:
    client = await get_client(db, client_id)
    if client is None or client.owner_id != owner_id:
        raise ClientNotFoundError(client_id)
    return client


async def register_client(
    db: AsyncSession,
    *,
    name: str,
    redirect_uris: list[str],
    owner_id: str,
    description: str | None = None,
    logo_url: str | None = None,
    homepage_url: str | None = None,
) -> tuple[OAuthClient, str]:
    """Register a new client application.

    Args:
        db: Database session.
        name: Human-readable client name shown on the consent page.
        redirect_uris: Allowed redirect URIs, stored exactly as given.
        owner_id: ID of the developer who owns this client.

    Returns:
        ``(client, client_secret)``; the plain-text secret is shown only once.

    Raises:
        ValueError: If the name is blank or a redirect URI is invalid.
    """
    if not name or not name.strip():
        raise ValueError("App name is required")
    uris = validate_redirect_uris(redirect_uris)

    client_secret = generate_client_secret()
    client = OAuthClient(
        client_id=secrets.token_urlsafe(24),
        client_secret_hash=hash_secret(client_secret),
        name=name.strip(),
        description=description,
        logo_url=logo_url,
        homepage_url=homepage_url,
        redirect_uris=json.dumps(uris),
        is_verified=False,
        owner_id=owner_id,
    )
    db.add(client)
    await db.commit()
    await db.refresh(client)

    logger.info("Registered OAuth client %s for owner %s", client.client_id, mask_id(owner_id))
    return client, client_secret


async def list_clients(db: AsyncSession, owner_id: str) -> list[OAuthClient]:
    result = await db.execute(
        select(OAuthClient)
        .where(OAuthClient.owner_id == owner_id)
        .order_by(OAuthClient.created_at.desc())
    )
    return list(result.scalars().all())


async def update_client(
    db: AsyncSession,
    client_id: str,
    owner_id: str,
    **changes,
) -> OAuthClient:
    """Update the mutable fields of a client owned by ``owner_id``.

    ``None`` values are ignored; unknown fields raise ``ValueError``.
    """
    unknown = set(changes) - set(_MUTABLE_FIELDS)
    if unknown:
        raise ValueError(f"Fields cannot be changed: {', '.join(sorted(unknown))}")

    client = await _get_owned_client(db, client_id, owner_id)
    for field, value in changes.items():
        if value is None:
            continue
        if field == "redirect_uris":
            value = json.dumps(validate_redirect_uris(value))
        elif field == "name":
            if not value.strip():
                raise ValueError("App name is required")
            value = value.strip()
        setattr(client, field, value)

    await db.commit()
    await db.refresh(client)
    logger.info("Updated OAuth client %s fields=%s", client_id, sorted(k for k, v in changes.items() if v is not None))
    return client


async def rotate_client_secret(db: AsyncSession, client_id: str, owner_id: str) -> str:
    """Replace the client secret. The old secret stops working immediately."""
    client = await _get_owned_client(db, client_id, owner_id)
    client_secret = generate_client_secret()
    client.client_secret_hash = hash_secret(client_secret)
    await db.commit()
    logger.info("Rotated secret for OAuth client %s", client_id)
    return client_secret


async def delete_client(db: AsyncSession, client_id: str, owner_id: str) -> None:
    """Delete a client and everything issued to it, in one transaction."""
    client = await _get_owned_client(db, client_id, owner_id)

    await db.execute(
        update(OAuthAccessToken)
        .where(OAuthAccessToken.client_id == client_id)
        .values(revoked=True)
    )
    await db.execute(
        update(OAuthRefreshToken)
        .where(OAuthRefreshToken.client_id == client_id)
        .values(revoked=True)
    )
    await db.execute(delete(AuthorizationCode).where(AuthorizationCode.client_id == client_id))
    await db.execute(
        delete(OAuthUserAuthorization).where(OAuthUserAuthorization.client_id == client_id)
    )
    await db.delete(client)
    await db.commit()
    logger.info("Deleted OAuth client %s", client_id)
