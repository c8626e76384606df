"""Client authentication at the token endpoint.

A code is redeemed either by a confidential client proving its secret or by
a public client proving possession of the PKCE verifier. Which one applies
is fixed when the code is issued (``authentication_for``) and checked once
per exchange (``authenticate``).
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from dataclasses import dataclass
from typing import Union

from xcrol.core.exceptions import InvalidRequestError
from xcrol.oauth2.clients import hash_secret

PKCE_METHODS = ("S256", "plain")


@dataclass(frozen=True)
class SecretAuthentication:
    secret_hash: str


@dataclass(frozen=True)
class PkceAuthentication:
    challenge: str
    method: str
    secret_hash: str


ClientAuthentication = Union[SecretAuthentication, PkceAuthentication]


def normalize_challenge(
    code_challenge: str | None,
    code_challenge_method: str | None,
) -> tuple[str | None, str | None]:
    """Validate PKCE parameters from an authorization request.

    Returns ``(challenge, method)`` or ``(None, None)`` when PKCE is not used.
    A challenge without a method means ``plain`` (RFC 7636 section 4.3).
    """
    if not code_challenge:
        if code_challenge_method:
            raise InvalidRequestError("code_challenge_method supplied without code_challenge")
        return None, None
    method = code_challenge_method or "plain"
    if method not in PKCE_METHODS:
        raise InvalidRequestError(f"Unsupported code_challenge_method: {method}")
    if not 43 <= len(code_challenge) <= 128:
        raise InvalidRequestError("code_challenge must be 43-128 characters")
    return code_challenge, method


def s256_challenge(code_verifier: str) -> str:
    """BASE64URL(SHA256(code_verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_pkce(code_challenge: str, code_challenge_method: str, code_verifier: str) -> bool:
    """Verify a PKCE code verifier against the stored challenge."""
    if not code_verifier:
        return False
    try:
        if code_challenge_method == "S256":
            computed = s256_challenge(code_verifier)
        elif code_challenge_method == "plain":
            computed = code_verifier
        else:
            return False
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(computed, code_challenge)


def authentication_for(
    code_challenge: str | None,
    code_challenge_method: str | None,
    secret_hash: str,
) -> ClientAuthentication:
    if code_challenge:
        return PkceAuthentication(
            challenge=code_challenge,
            method=code_challenge_method or "plain",
            secret_hash=secret_hash,
        )
    return SecretAuthentication(secret_hash=secret_hash)


def _secret_matches(client_secret: str, secret_hash: str) -> bool:
    return hmac.compare_digest(hash_secret(client_secret), secret_hash)


def authenticate(
    auth: ClientAuthentication,
    *,
    client_secret: str | None,
    code_verifier: str | None,
) -> bool:
    """Check the credentials presented at the token endpoint.

    A PKCE-bound code needs a matching verifier; a client secret, when also
    sent, must be correct too. A code issued without PKCE needs the secret.
    """
    if client_secret and not _secret_matches(client_secret, auth.secret_hash):
        return False
    if isinstance(auth, PkceAuthentication):
        return verify_pkce(auth.challenge, auth.method, code_verifier or "")
    return bool(client_secret)
