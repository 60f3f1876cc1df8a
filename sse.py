"""Legacy SSE endpoints for MCP clients without Streamable HTTP support.

This module provides the SSE transport endpoints (/sse, /message).
Bearer tokens are checked against the provider when OAuth is enabled.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Request
from starlette.responses import Response

from mcp.server.sse import SseServerTransport

from oauth.errors import InvalidTokenError
from oauth.middleware import extract_bearer_token, unauthorized_response

logger = logging.getLogger(__name__)

# Router for SSE endpoints
router = APIRouter(tags=["sse"])

# SSE transport instance
sse_transport = SseServerTransport("/message")

# These will be set by init_sse_routes()
_server_url: str = ""
_provider = None
_mcp = None


def init_sse_routes(server_url: str, provider, mcp_instance):
    """Initialize SSE routes with required dependencies.

    Args:
        server_url: The server URL for OAuth metadata references
        provider: The auth provider used to verify bearer tokens, or None
            to serve without authentication
        mcp_instance: The FastMCP instance for running the MCP server

    Must be called before including the router in the app.
    """
    global _server_url, _provider, _mcp
    _server_url = server_url
    _provider = provider
    _mcp = mcp_instance


async def _reject_unauthorized(request: Request) -> Optional[Response]:
    """Return a 401 response if the request lacks a valid token, else None."""
    if _provider is None:
        return None

    token = extract_bearer_token(request.headers.get("Authorization"))
    if not token:
        logger.info("[SSE] Request rejected: no Bearer token")
        return unauthorized_response(_server_url, "Missing or invalid Authorization header")

    try:
        auth_info = await _provider.verify_access_token(token)
    except InvalidTokenError:
        logger.info("[SSE] Request rejected: invalid or expired token")
        return unauthorized_response(_server_url, "Invalid or expired token")

    logger.debug(f"[SSE] Request authorized for Slack user {auth_info.identity.user_id}")
    return None


@router.get("/sse")
async def sse_endpoint(request: Request) -> Response:
    """SSE endpoint for MCP client connections."""
    rejection = await _reject_unauthorized(request)
    if rejection is not None:
        return rejection

    logger.info("[SSE] Connection established")
    async with sse_transport.connect_sse(
        request.scope, request.receive, request._send
    ) as streams:
        await _mcp._mcp_server.run(
            streams[0], streams[1], _mcp._mcp_server.create_initialization_options()
        )

    return Response()


@router.post("/message")
async def message_endpoint(request: Request) -> Response:
    """Message endpoint for the SSE transport."""
    rejection = await _reject_unauthorized(request)
    if rejection is not None:
        return rejection

    await sse_transport.handle_post_message(
        request.scope, request.receive, request._send
    )
    return Response()
