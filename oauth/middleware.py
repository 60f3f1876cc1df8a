"""OAuth middleware for MCP endpoints.

Validates Bearer tokens issued by the provider before MCP traffic reaches
the transport. A 401 carries a WWW-Authenticate header pointing at the
protected resource metadata so MCP clients can discover the auth server.
"""

import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from oauth.errors import InvalidTokenError
from oauth.provider import SlackAuthProvider

logger = logging.getLogger(__name__)


def extract_bearer_token(auth_header: Optional[str]) -> Optional[str]:
    """Return the token from an 'Authorization: Bearer <token>' header value."""
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def unauthorized_response(server_url: str, error_description: str) -> JSONResponse:
    """Return 401 with WWW-Authenticate header pointing to resource metadata (RFC 9728)."""
    return JSONResponse(
        {"error": "unauthorized", "error_description": error_description},
        status_code=401,
        headers={"WWW-Authenticate": f'Bearer resource_metadata="{server_url}/.well-known/oauth-protected-resource"'}
    )


class MCPOAuthMiddleware(BaseHTTPMiddleware):
    """Middleware to validate OAuth Bearer tokens for the Streamable HTTP MCP endpoint."""

    def __init__(self, app, provider: SlackAuthProvider, server_url: str):
        super().__init__(app)
        self.provider = provider
        self.server_url = server_url

    async def dispatch(self, request: Request, call_next):
        token = extract_bearer_token(request.headers.get("Authorization"))
        if not token:
            logger.info("[AUTH] Request rejected: no Bearer token")
            return unauthorized_response(self.server_url, "Missing or invalid Authorization header")

        try:
            auth_info = await self.provider.verify_access_token(token)
        except InvalidTokenError:
            logger.info("[AUTH] Request rejected: invalid or expired token")
            return unauthorized_response(self.server_url, "Invalid or expired token")

        request.state.auth = auth_info
        logger.debug(f"[AUTH] Request authorized for Slack user {auth_info.identity.user_id}")
        return await call_next(request)
