"""Platform API key check for the backend-facing OAuth endpoints.

The ``apikey`` header gates access to the platform backend itself; it is
unrelated to OAuth client credentials.
"""

import hmac
import logging

from fastapi import Header

from xcrol.config import settings
from xcrol.core.exceptions import UnauthorizedError

logger = logging.getLogger(__name__)


def is_valid_api_key(candidate: str | None) -> bool:
    if not candidate:
        return False
    encoded = candidate.encode("utf-8")
    return any(hmac.compare_digest(encoded, key.encode("utf-8")) for key in settings.api_keys)


def require_api_key(apikey: str | None = Header(default=None)) -> None:
    """FastAPI dependency that rejects requests without a known platform API key."""
    if not apikey:
        raise UnauthorizedError("Missing apikey header")
    if not is_valid_api_key(apikey):
        logger.warning("Rejected request with unknown platform API key")
        raise UnauthorizedError("Invalid apikey header")
