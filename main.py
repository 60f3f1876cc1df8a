"""Slack MCP Server.

This server:
- Exposes MCP tools (getUserDetails, getSlackChannels) via tools.py
- Serves MCP over Streamable HTTP (/mcp) and legacy SSE (/sse, /message)
- Acts as an OAuth 2.1 authorization server for MCP clients, brokering
  the actual sign-in to Slack (oauth/)

MCP clients never see the Slack app credentials: they get tokens issued
by this server, bound to the Slack identity resolved during sign-in.
"""
import logging
import sys

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware import Middleware
from supabase import create_client

from config import Config, ConfigError, load_config
from logging_config import setup_logging
from oauth.errors import PersistenceError
from oauth.middleware import MCPOAuthMiddleware
from oauth.provider import SlackAuthProvider
from oauth.slack_bridge import SlackBridge
from tools import init_tools, mcp

logger = logging.getLogger(__name__)

VERSION = "0.2.0"


def create_app(config: Config, bridge: SlackBridge = None) -> FastAPI:
    """Build the FastAPI app.

    Args:
        config: Validated configuration
        bridge: Slack bridge override (tests); built from config if omitted

    Raises:
        PersistenceError: If the registered clients file is malformed
    """
    provider = SlackAuthProvider.from_config(config, bridge=bridge)
    init_tools(provider)

    logger.info(f"[STARTUP] SERVER_URL: {config.server_url}")
    logger.info(f"[STARTUP] OAuth enabled: {config.enable_oauth}")

    # ============== Streamable HTTP MCP App ==============
    # Created before the FastAPI app: FastAPI needs its lifespan
    mcp_http_app = mcp.http_app(
        path="/",
        transport="streamable-http",
        middleware=[Middleware(MCPOAuthMiddleware, provider=provider, server_url=config.server_url)]
        if config.enable_oauth else []
    )

    app = FastAPI(
        title="Slack MCP Server",
        description="MCP server with OAuth 2.1 sign-in brokered through Slack",
        version=VERSION,
        lifespan=mcp_http_app.lifespan,  # Required for FastMCP task group initialization
    )
    app.state.provider = provider
    app.state.config = config

    # Add CORS middleware for browser-based MCP client access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception(f"[SERVER] Unhandled error on {request.url.path}")
        body = {"error": "Internal server error"}
        if not config.is_production:
            body["message"] = str(exc)
        return JSONResponse(body, status_code=500)

    app.mount("/mcp", mcp_http_app)

    # ============== Include Routers ==============

    from oauth.endpoints import router as oauth_router, init_oauth_routes
    init_oauth_routes(config.server_url, provider, expose_errors=not config.is_production)
    app.include_router(oauth_router)

    from sse import router as sse_router, init_sse_routes
    init_sse_routes(config.server_url, provider if config.enable_oauth else None, mcp)
    app.include_router(sse_router)

    # ============== Server Info Endpoints ==============

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": config.service_name,
            "transport": config.transport,
            "registered_clients": len(provider.clients),
        }

    @app.get("/")
    async def root():
        """Root endpoint with server info."""
        return {
            "name": "Slack MCP Server",
            "version": VERSION,
            "transport": config.transport,
            "endpoints": {
                "streamable_http": "/mcp",
                "sse": "/sse",
            },
            "tools": ["getUserDetails", "getSlackChannels"],
            "oauth_enabled": config.enable_oauth,
            "oauth": {
                "protected_resource": f"{config.server_url}/.well-known/oauth-protected-resource",
                "authorization_server": f"{config.server_url}/.well-known/oauth-authorization-server",
            },
        }

    return app


def main() -> None:
    try:
        config = load_config()
    except ConfigError as e:
        setup_logging()
        logger.error(f"[STARTUP] {e}")
        sys.exit(1)

    supabase = None
    if config.supabase_url and config.supabase_anon_key:
        supabase = create_client(config.supabase_url, config.supabase_anon_key)
    setup_logging(service_name=config.service_name, supabase_client=supabase)

    try:
        app = create_app(config)
    except PersistenceError as e:
        logger.error(f"[STARTUP] {e}")
        sys.exit(1)

    import uvicorn
    logger.info(f"Starting MCP server with transport: {config.transport}")
    uvicorn.run(app, host=config.host, port=config.port)


if __name__ == "__main__":
    main()
