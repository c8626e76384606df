from fastapi import HTTPException, status


class UnauthorizedError(HTTPException):
    def __init__(self, detail: str = "Invalid or missing authentication"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class ClientNotFoundError(HTTPException):
    def __init__(self, client_id: str):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=f"App {client_id} not found")


class AuthorizationNotFoundError(HTTPException):
    def __init__(self, client_id: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No authorization found for app {client_id}",
        )


# ---------------------------------------------------------------------------
# OAuth 2.0 protocol errors (RFC 6749 section 5.2 / RFC 6750 section 3.1)
# ---------------------------------------------------------------------------

class OAuthError(Exception):
    """Protocol error rendered as ``{"error", "error_description"}``.

    Raised by the authorization server functions and translated into a JSON
    response by the application's exception handler. Never turned into a
    redirect: the redirect target of a failing request is untrusted.
    """

    error = "server_error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_description = "The request could not be processed"

    def __init__(self, description: str | None = None):
        self.description = description or self.default_description
        super().__init__(f"{self.error}: {self.description}")

    def to_dict(self) -> dict:
        return {"error": self.error, "error_description": self.description}


class InvalidRequestError(OAuthError):
    error = "invalid_request"
    default_description = "The request is missing a parameter or is malformed"


class InvalidClientError(OAuthError):
    error = "invalid_client"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_description = "Client authentication failed"


class UnknownClientError(InvalidClientError):
    """Unknown client_id at the authorization endpoint (no authentication took place)."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_description = "Unknown client"


class InvalidGrantError(OAuthError):
    error = "invalid_grant"
    default_description = "The authorization grant is invalid, expired, or already used"


class UnsupportedGrantTypeError(OAuthError):
    error = "unsupported_grant_type"
    default_description = "Only authorization_code and refresh_token grants are supported"


class UnsupportedResponseTypeError(OAuthError):
    error = "unsupported_response_type"
    default_description = "Only response_type=code is supported"


class InvalidScopeError(OAuthError):
    error = "invalid_scope"
    default_description = "The requested scope is invalid"


class SessionRequiredError(OAuthError):
    """The consent decision was posted without a valid platform session."""

    error = "unauthorized"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_description = "Sign in to XCROL to continue"


class InvalidTokenError(OAuthError):
    error = "invalid_token"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_description = "The access token is missing, expired, or revoked"


class InsufficientScopeError(OAuthError):
    error = "insufficient_scope"
    status_code = status.HTTP_403_FORBIDDEN
    default_description = "The access token does not grant the required scope"


class UserNotFoundError(OAuthError):
    error = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_description = "User not found"
