"""OAuth error taxonomy.

Every protocol-level failure is an OAuthError carrying the RFC 6749 error
code and the HTTP status the endpoints should answer with. Endpoints turn
these into {"error": ..., "error_description": ...} JSON bodies.
"""


class OAuthError(Exception):
    """Base class for errors reported to OAuth clients."""

    error = "server_error"
    status_code = 400

    def __init__(self, description: str = ""):
        super().__init__(description or self.error)
        self.description = description

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.description:
            body["error_description"] = self.description
        return body


class InvalidRequestError(OAuthError):
    error = "invalid_request"


class InvalidStateError(OAuthError):
    """Callback state is unknown, expired, tampered with or already used."""

    error = "invalid_request"


class InvalidGrantError(OAuthError):
    """Authorization code unknown, expired, reused or issued to another client."""

    error = "invalid_grant"


class PKCEValidationError(InvalidGrantError):
    """Code verifier does not hash to the challenge captured at authorize time."""


class InvalidScopeError(OAuthError):
    error = "invalid_scope"


class InvalidTokenError(OAuthError):
    """Access or refresh token is unknown, expired or revoked."""

    error = "invalid_token"
    status_code = 401


class ClientNotFoundError(OAuthError):
    error = "invalid_client"
    status_code = 401


class InvalidRedirectUriError(OAuthError):
    error = "invalid_redirect_uri"


class InvalidClientMetadataError(OAuthError):
    error = "invalid_client_metadata"


class UnsupportedGrantTypeError(OAuthError):
    error = "unsupported_grant_type"


class UnsupportedResponseTypeError(OAuthError):
    error = "unsupported_response_type"


class UpstreamError(OAuthError):
    """Slack rejected the code exchange or could not be reached."""

    error = "server_error"
    status_code = 502


# ============== Storage Errors ==============

class PersistenceError(Exception):
    """Registered clients file could not be read or written."""


class MissingKeyError(KeyError):
    """A store operation was attempted with an empty key."""


class DuplicateStateError(KeyError):
    """A session already exists for the given state."""
