"""Helpers for writing audit context to logs without leaking credentials."""

import hashlib


def mask_id(value: str | None) -> str:
    """Keep the first four characters of an identifier: ``3f2a…``."""
    if not value:
        return "-"
    if len(value) <= 4:
        return "…"
    return f"{value[:4]}…"


def fingerprint(secret: str | None) -> str:
    """Short non-reversible fingerprint for correlating a code or token across log lines."""
    if not secret:
        return "-"
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()[:12]
