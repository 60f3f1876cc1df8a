"""JWT utilities for issued tokens and upstream state.

Access and refresh tokens are HS256 JWTs signed with the server's JWT
secret. They are also recorded in the token store, which is what makes
revocation immediate: a token must verify here AND still be in the store.

The state value sent to Slack is a short-lived JWT signed with the Slack
state secret that carries the session key, so forged or stale callbacks
are rejected before any store lookup.
"""

import logging
import secrets
import time
from typing import Optional

import jwt

logger = logging.getLogger(__name__)

# JWT configuration
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_SECONDS = 60 * 60  # 1 hour
REFRESH_TOKEN_EXPIRE_SECONDS = 30 * 24 * 60 * 60  # 30 days
STATE_EXPIRE_SECONDS = 10 * 60  # 10 minutes


def generate_secret() -> str:
    """Generate a signing secret for processes started without JWT_SECRET."""
    return secrets.token_urlsafe(64)


def _create_token(
    token_type: str,
    secret: str,
    user_id: str,
    team_id: str,
    client_id: str,
    scope: str,
    issuer: str,
    grant_id: str,
    expires_in: int,
) -> str:
    now = int(time.time())
    payload = {
        "sub": user_id,             # Subject (Slack user ID)
        "team_id": team_id,         # Slack workspace
        "client_id": client_id,     # OAuth client
        "scope": scope,             # OAuth scope
        "iss": issuer,              # Issuer
        "iat": now,                 # Issued at
        "exp": now + expires_in,    # Expiration
        "jti": secrets.token_urlsafe(16),
        "grant_id": grant_id,
        "type": token_type,
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def create_access_token(
    secret: str,
    user_id: str,
    team_id: str,
    client_id: str,
    scope: str,
    issuer: str,
    grant_id: str,
    expires_in: int = ACCESS_TOKEN_EXPIRE_SECONDS,
) -> str:
    """Create a signed JWT access token.

    Args:
        secret: HMAC signing secret
        user_id: Slack user ID of the authenticated user
        team_id: Slack workspace ID
        client_id: The OAuth client the token is issued to
        scope: Space-separated granted scopes
        issuer: The token issuer (server URL)
        grant_id: Identifier shared by all tokens of one authorization
        expires_in: Token lifetime in seconds

    Returns:
        A signed JWT token string
    """
    return _create_token("access", secret, user_id, team_id, client_id, scope,
                         issuer, grant_id, expires_in)


def create_refresh_token(
    secret: str,
    user_id: str,
    team_id: str,
    client_id: str,
    scope: str,
    issuer: str,
    grant_id: str,
    expires_in: int = REFRESH_TOKEN_EXPIRE_SECONDS,
) -> str:
    """Create a signed JWT refresh token (same claims as access tokens)."""
    return _create_token("refresh", secret, user_id, team_id, client_id, scope,
                         issuer, grant_id, expires_in)


def _verify_token(token: str, secret: str, token_type: str, issuer: Optional[str]) -> Optional[dict]:
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            options={"require": ["exp", "sub", "jti"]},
            issuer=issuer,
        )
    except jwt.ExpiredSignatureError:
        logger.debug(f"[JWT] {token_type.capitalize()} token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.debug(f"[JWT] Invalid {token_type} token: {e}")
        return None

    if payload.get("type") != token_type:
        logger.debug(f"[JWT] Token is not a {token_type} token")
        return None
    return payload


def verify_access_token(token: str, secret: str, issuer: Optional[str] = None) -> Optional[dict]:
    """Verify and decode a JWT access token.

    Returns:
        The decoded payload if the signature, expiry, issuer and type are
        valid, None otherwise.
    """
    return _verify_token(token, secret, "access", issuer)


def verify_refresh_token(token: str, secret: str, issuer: Optional[str] = None) -> Optional[dict]:
    """Verify and decode a JWT refresh token."""
    return _verify_token(token, secret, "refresh", issuer)


# ============== Upstream State ==============

def sign_state(session_key: str, secret: str, expires_in: int = STATE_EXPIRE_SECONDS) -> str:
    """Wrap a session key into the state value presented to Slack."""
    now = int(time.time())
    payload = {"sid": session_key, "iat": now, "exp": now + expires_in}
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def verify_state(state: str, secret: str) -> Optional[str]:
    """Return the session key from a signed state, or None if it is invalid."""
    if not state:
        return None
    try:
        payload = jwt.decode(state, secret, algorithms=[JWT_ALGORITHM],
                             options={"require": ["exp", "sid"]})
    except jwt.InvalidTokenError as e:
        logger.info(f"[JWT] Rejected upstream state: {e}")
        return None
    return payload["sid"]
