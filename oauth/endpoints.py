"""OAuth 2.1 endpoints for MCP server authentication.

This module contains the HTTP surface of the authorization server:
- Discovery metadata (/.well-known/*)
- Client registration (/register)
- Authorization flow (/authorize -> Slack -> /callback)
- Token and revocation endpoints (/token, /revoke)
"""

import base64
import html
import logging
from typing import Optional
from urllib.parse import unquote

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from oauth.errors import (
    ClientNotFoundError,
    InvalidClientMetadataError,
    InvalidRequestError,
    InvalidStateError,
    InvalidTokenError,
    OAuthError,
    UnsupportedGrantTypeError,
    UnsupportedResponseTypeError,
)
from oauth.models import AuthorizationParams
from oauth.provider import SUPPORTED_SCOPES, SlackAuthProvider
from oauth.templates import ERROR_PAGE

logger = logging.getLogger(__name__)

# Router for OAuth endpoints
router = APIRouter(tags=["oauth"])

# These will be set by init_oauth_routes()
_server_url: str = ""
_provider: Optional[SlackAuthProvider] = None
_expose_errors: bool = False

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def init_oauth_routes(server_url: str, provider: SlackAuthProvider, expose_errors: bool = False):
    """Initialize OAuth routes with the server URL and the auth provider.

    Args:
        server_url: Public base URL used in discovery metadata
        provider: The authorization provider backing every endpoint
        expose_errors: Include internal error messages in 500 responses
            (never enable in production)

    Must be called before including the router in the app.
    """
    global _server_url, _provider, _expose_errors
    _server_url = server_url
    _provider = provider
    _expose_errors = expose_errors


def oauth_error_response(error: OAuthError, status_code: int = None) -> JSONResponse:
    status_code = status_code or error.status_code
    headers = dict(_NO_STORE)
    if isinstance(error, ClientNotFoundError) and status_code == 401:
        # RFC 6749 5.2: a 401 invalid_client names the auth scheme
        headers["WWW-Authenticate"] = f'Basic realm="{_server_url}"'
    return JSONResponse(error.to_dict(), status_code=status_code, headers=headers)


def error_page(title: str, message: str, status_code: int = 400) -> HTMLResponse:
    return HTMLResponse(
        ERROR_PAGE.format(title=html.escape(title), message=html.escape(message)),
        status_code=status_code,
    )


def server_error_response(error: Exception) -> JSONResponse:
    body = {"error": "server_error", "error_description": "Internal server error"}
    if _expose_errors:
        body["message"] = str(error)
    return JSONResponse(body, status_code=500)


async def _read_params(request: Request) -> dict:
    """Read a form-encoded or JSON request body."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            data = await request.json()
        except ValueError:
            raise InvalidRequestError("Malformed JSON body")
        if not isinstance(data, dict):
            raise InvalidRequestError("Request body must be a JSON object")
    else:
        data = dict((await request.form()).items())
    for key, value in data.items():
        if value is not None and not isinstance(value, str):
            raise InvalidRequestError(f"Parameter {key} must be a string")
    return data


def _client_credentials(request: Request, params: dict) -> tuple:
    """client_id/client_secret from HTTP Basic auth or the request body."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Basic "):
        try:
            decoded = base64.b64decode(auth_header[6:]).decode("utf-8")
            client_id, _, client_secret = decoded.partition(":")
            return unquote(client_id), unquote(client_secret)
        except (ValueError, UnicodeDecodeError):
            raise ClientNotFoundError("Malformed Basic authorization header")
    return params.get("client_id"), params.get("client_secret")


# ============== OAuth 2.1 Discovery Endpoints ==============

@router.get("/.well-known/oauth-protected-resource")
async def oauth_protected_resource():
    """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
    return {
        "resource": _server_url,
        "authorization_servers": [_server_url],
        "scopes_supported": SUPPORTED_SCOPES,
        "bearer_methods_supported": ["header"],
    }


@router.get("/.well-known/oauth-authorization-server")
async def oauth_authorization_server():
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
    return {
        "issuer": _server_url,
        "authorization_endpoint": f"{_server_url}/authorize",
        "token_endpoint": f"{_server_url}/token",
        "registration_endpoint": f"{_server_url}/register",
        "revocation_endpoint": f"{_server_url}/revoke",
        "scopes_supported": SUPPORTED_SCOPES,
        "response_types_supported": ["code"],
        "response_modes_supported": ["query"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "token_endpoint_auth_methods_supported": ["none", "client_secret_post", "client_secret_basic"],
        "revocation_endpoint_auth_methods_supported": ["none", "client_secret_post", "client_secret_basic"],
        "code_challenge_methods_supported": ["S256"],
    }


# ============== Client Registration ==============

@router.post("/register")
async def register_client(request: Request):
    """OAuth 2.0 Dynamic Client Registration (RFC 7591)."""
    try:
        data = await request.json()
    except ValueError:
        return oauth_error_response(InvalidClientMetadataError("Request body must be JSON"))
    if not isinstance(data, dict):
        return oauth_error_response(InvalidClientMetadataError("Request body must be a JSON object"))

    try:
        client = await _provider.register_client(data)
    except OAuthError as e:
        logger.info(f"[REGISTER] Rejected registration: {e.description}")
        return oauth_error_response(e)

    return JSONResponse(client.to_dict(), status_code=201, headers=_NO_STORE)


# ============== Authorization Flow ==============

@router.get("/authorize")
async def authorize(
    response_type: str = "code",
    client_id: str = "",
    redirect_uri: str = "",
    scope: str = "",
    state: str = "",
    code_challenge: str = "",
    code_challenge_method: str = "S256"
):
    """OAuth 2.0 Authorization Endpoint - redirects the user-agent to Slack."""
    try:
        if response_type != "code":
            raise UnsupportedResponseTypeError("Only response_type=code is supported")

        client = _provider.get_client(client_id)
        params = AuthorizationParams(
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            state=state or None,
            redirect_uri=redirect_uri or None,
            scopes=scope.split() if scope else [],
        )
        auth_url = await _provider.authorize(client, params)
    except ClientNotFoundError:
        return error_page("Unknown client", "This MCP client is not registered with the server.")
    except OAuthError as e:
        logger.info(f"[AUTHORIZE] Rejected authorization request: {e.error} {e.description}")
        return oauth_error_response(e, status_code=400)
    except Exception as e:
        logger.exception("[AUTHORIZE] Authorization setup error")
        return server_error_response(e)

    return RedirectResponse(url=auth_url, status_code=302)


@router.api_route("/callback", methods=["GET", "POST"])
async def callback(request: Request):
    """Slack redirects here after the user approves (or denies) the install."""
    params = dict(request.query_params)
    if request.method == "POST":
        try:
            params.update(await _read_params(request))
        except OAuthError as e:
            return oauth_error_response(e)

    try:
        result = await _provider.handle_callback(
            state=params.get("state", ""),
            code=params.get("code"),
            error=params.get("error"),
        )
    except InvalidStateError:
        return error_page("Authorization failed",
                          "This sign-in link is invalid, expired or has already been used.")
    except Exception as e:
        logger.exception("[CALLBACK] Error handling callback")
        return server_error_response(e)

    return RedirectResponse(url=result.redirect_url, status_code=302)


# ============== Token Endpoint ==============

@router.post("/token")
async def token(request: Request):
    """OAuth 2.0 Token Endpoint (authorization_code and refresh_token grants)."""
    try:
        params = await _read_params(request)
        client_id, client_secret = _client_credentials(request, params)
        grant_type = params.get("grant_type")
        logger.debug(f"[TOKEN] grant_type: {grant_type}, client_id: {client_id}")

        client = _provider.authenticate_client(client_id, client_secret)

        if grant_type == "authorization_code":
            tokens = await _provider.exchange_authorization_code(
                client,
                code=params.get("code"),
                code_verifier=params.get("code_verifier"),
                redirect_uri=params.get("redirect_uri"),
            )
        elif grant_type == "refresh_token":
            scope = params.get("scope")
            tokens = await _provider.exchange_refresh_token(
                client,
                refresh_token=params.get("refresh_token"),
                scopes=scope.split() if scope else None,
            )
        else:
            raise UnsupportedGrantTypeError(f"Unsupported grant_type: {grant_type}")
    except InvalidTokenError as e:
        # Bad refresh tokens are an invalid_grant at the token endpoint
        return JSONResponse({"error": "invalid_grant", "error_description": e.description},
                            status_code=400, headers=_NO_STORE)
    except OAuthError as e:
        logger.info(f"[TOKEN] Token request rejected: {e.error} {e.description}")
        return oauth_error_response(e)

    return JSONResponse(tokens.to_dict(), headers=_NO_STORE)


@router.post("/revoke")
async def revoke(request: Request):
    """OAuth 2.0 Token Revocation (RFC 7009)."""
    try:
        params = await _read_params(request)
        client_id, client_secret = _client_credentials(request, params)
        client = _provider.authenticate_client(client_id, client_secret)
        token_value = params.get("token")
        if not token_value:
            raise InvalidRequestError("token is required")
        await _provider.revoke_token(client, token_value, params.get("token_type_hint"))
    except OAuthError as e:
        return oauth_error_response(e)

    return JSONResponse({}, headers=_NO_STORE)
