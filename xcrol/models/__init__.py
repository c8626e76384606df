from xcrol.models.profile import Friendship, Profile, XcrolEntry
from xcrol.oauth2.models import (
    AuthorizationCode,
    OAuthAccessToken,
    OAuthClient,
    OAuthRefreshToken,
    OAuthUserAuthorization,
)

__all__ = [
    "AuthorizationCode",
    "Friendship",
    "OAuthAccessToken",
    "OAuthClient",
    "OAuthRefreshToken",
    "OAuthUserAuthorization",
    "Profile",
    "XcrolEntry",
]
