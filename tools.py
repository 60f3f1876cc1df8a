"""MCP Tools for slack-mcp-server.

Tools that need to know who is calling resolve the bearer token from the
request once, at the transport boundary, into a ToolContext and hand it to
the handler. Failures (no token, revoked token, Slack errors) come back as
ordinary tool output so the calling agent can react to them.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from fastmcp import FastMCP
from fastmcp.server.dependencies import get_http_headers
from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError, SlackClientError

from oauth.errors import InvalidTokenError
from oauth.middleware import extract_bearer_token
from oauth.models import SlackIdentity

logger = logging.getLogger(__name__)

# Create the FastMCP server instance
mcp = FastMCP("slack-mcp-server")

# Set by init_tools()
_provider = None


def init_tools(provider) -> None:
    """Give the tools access to the provider's token verification."""
    global _provider
    _provider = provider


@dataclass(frozen=True)
class ToolContext:
    """Per-request context passed explicitly into tool handlers."""

    bearer_token: Optional[str] = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "ToolContext":
        lowered = {k.lower(): v for k, v in headers.items()}
        return cls(bearer_token=extract_bearer_token(lowered.get("authorization")))


class ToolAuthError(Exception):
    """The tool call carries no usable session token."""


def current_context() -> ToolContext:
    """Build the ToolContext for the MCP request being served."""
    return ToolContext.from_headers(get_http_headers(include_all=True))


async def resolve_identity(ctx: ToolContext) -> SlackIdentity:
    if not ctx.bearer_token:
        raise ToolAuthError("No authentication token provided")
    if _provider is None:
        raise ToolAuthError("Authentication is not configured")
    try:
        auth_info = await _provider.verify_access_token(ctx.bearer_token)
    except InvalidTokenError:
        raise ToolAuthError("Invalid or expired session token")
    return auth_info.identity


# ============== Handlers ==============

async def get_user_details(ctx: ToolContext) -> str:
    try:
        identity = await resolve_identity(ctx)
    except ToolAuthError as e:
        logger.info(f"[TOOL] getUserDetails failed: {e}")
        return f"Error getting user details: {e}"

    lines = [
        "User Details:",
        f"  User ID: {identity.user_id}",
        f"  Team: {identity.team_name or 'unknown'} ({identity.team_id})",
    ]
    if identity.enterprise_id:
        lines.append(f"  Enterprise: {identity.enterprise_id}")
    if identity.scope:
        lines.append(f"  Granted Slack scopes: {identity.scope}")
    return "\n".join(lines)


async def get_slack_channels(
    ctx: ToolContext,
    web_client_factory: Callable[..., WebClient] = WebClient,
) -> str:
    try:
        identity = await resolve_identity(ctx)
        if not identity.slack_token:
            raise ToolAuthError("No Slack token is associated with this session")
        client = web_client_factory(token=identity.slack_token)
        result = await asyncio.to_thread(
            client.conversations_list,
            types="public_channel",
            exclude_archived=True,
            limit=200,
        )
    except ToolAuthError as e:
        logger.info(f"[TOOL] getSlackChannels failed: {e}")
        return f"Error getting channels: {e}"
    except SlackApiError as e:
        error = e.response.get("error", "unknown_error") if e.response is not None else "unknown_error"
        logger.warning(f"[TOOL] Slack API error listing channels: {error}")
        return f"Error getting channels: Slack API error: {error}"
    except (SlackClientError, OSError) as e:
        logger.warning(f"[TOOL] Slack request failed listing channels: {e}")
        return f"Error getting channels: Slack request failed: {e}"

    channels = result.get("channels")
    if not channels:
        return "Error getting channels: No channels found"

    return json.dumps([
        {
            "id": ch["id"],
            "name": ch.get("name", ""),
            "is_private": ch.get("is_private", False),
            "is_member": ch.get("is_member", False),
            "num_members": ch.get("num_members", 0),
            "topic": (ch.get("topic") or {}).get("value", ""),
            "purpose": (ch.get("purpose") or {}).get("value", ""),
        }
        for ch in channels
    ])


# ============== MCP Tools ==============

@mcp.tool(name="getUserDetails")
async def get_user_details_tool() -> str:
    """A tool that can provide details about the currently authenticated user."""
    logger.info("[TOOL] getUserDetails invoked")
    return await get_user_details(current_context())


@mcp.tool(name="getSlackChannels")
async def get_slack_channels_tool() -> str:
    """A tool that lists all the channels in the currently authenticated user's Slack workspace."""
    logger.info("[TOOL] getSlackChannels invoked")
    return await get_slack_channels(current_context())
