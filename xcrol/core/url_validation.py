"""Redirect URI validation for registered OAuth clients.

Registered redirect URIs are compared byte-for-byte at authorization time,
so validation here only rejects unusable or unsafe values. It never
normalizes: the string that passes is the string that gets stored.
"""

from __future__ import annotations

import ipaddress
from urllib.parse import urlsplit

from xcrol.config import settings

_LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "::1"}
_MAX_URI_LENGTH = 500


def is_loopback_host(host: str) -> bool:
    if host in _LOOPBACK_HOSTS:
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def validate_redirect_uri(uri: str) -> str:
    """Validate a redirect URI for registration and return it unchanged.

    Checks:
    - Must use http or https scheme
    - Must have a valid host
    - Must not contain a fragment (RFC 6749 section 3.1.2)
    - Must not contain whitespace or exceed the column length
    - In production: requires HTTPS unless the host is a loopback address

    Raises ValueError on invalid URIs.
    """
    if not uri or uri != uri.strip() or any(ch.isspace() for ch in uri):
        raise ValueError("Redirect URI must be a non-empty string without whitespace")
    if len(uri) > _MAX_URI_LENGTH:
        raise ValueError(f"Redirect URI must be at most {_MAX_URI_LENGTH} characters")

    parts = urlsplit(uri)
    if parts.scheme not in {"http", "https"}:
        raise ValueError("Redirect URI must use http or https")
    if not parts.netloc or not parts.hostname:
        raise ValueError("Redirect URI must include a valid host")
    if parts.fragment or "#" in uri:
        raise ValueError("Redirect URI must not contain a fragment")

    if settings.is_production and parts.scheme != "https" and not is_loopback_host(parts.hostname):
        raise ValueError("HTTPS is required for non-loopback redirect URIs in production")

    return uri


def validate_redirect_uris(uris: list[str]) -> list[str]:
    """Validate a list of redirect URIs, dropping exact duplicates."""
    if not uris:
        raise ValueError("At least one redirect URI is required")
    seen: list[str] = []
    for uri in uris:
        validate_redirect_uri(uri)
        if uri not in seen:
            seen.append(uri)
    return seen
