"""OAuth 2.1 authorization server backed by Slack.

The provider issues its own authorization codes and tokens to MCP clients
while running a separate OAuth handshake with Slack:

    authorize() -> Slack consent -> handle_callback() -> client code
                -> exchange_authorization_code() -> access/refresh tokens

The two legs use distinct PKCE pairs. Ours (verifier kept in the session)
protects the Slack exchange; the client's challenge is checked when the
client redeems the code we minted for it.
"""

import hmac
import logging
import secrets
import time
from typing import Callable, Optional, Sequence
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from oauth import jwt_utils
from oauth.clients import ClientRegistry
from oauth.errors import (
    ClientNotFoundError,
    InvalidClientMetadataError,
    InvalidGrantError,
    InvalidRedirectUriError,
    InvalidRequestError,
    InvalidScopeError,
    InvalidStateError,
    InvalidTokenError,
    PKCEValidationError,
    UpstreamError,
)
from oauth.models import (
    AuthInfo,
    AuthorizationCode,
    AuthorizationParams,
    CallbackResult,
    IssuedToken,
    OAuthTokens,
    RegisteredClient,
    SessionContext,
)
from oauth.pkce import S256, generate_pkce, is_valid_challenge, verify_challenge
from oauth.slack_bridge import SlackBridge
from oauth.stores import (
    DEFAULT_SESSION_TTL_SECONDS,
    AuthorizationCodeStore,
    InMemorySessionStore,
    SessionStore,
    TokenStore,
)

logger = logging.getLogger(__name__)

SUPPORTED_SCOPES = ["mcp:tools", "mcp:read"]
DEFAULT_SCOPES = ["mcp:tools"]
SUPPORTED_AUTH_METHODS = ("none", "client_secret_post", "client_secret_basic")
DEFAULT_AUTH_CODE_TTL_SECONDS = 600  # 10 minutes
_FORBIDDEN_REDIRECT_SCHEMES = ("javascript", "data", "vbscript", "file")


def _append_query(url: str, params: dict) -> str:
    """Add params to url, keeping any query it already has."""
    parsed = urlparse(url)
    query = parse_qsl(parsed.query, keep_blank_values=True)
    query.extend((k, v) for k, v in params.items() if v is not None)
    return urlunparse(parsed._replace(query=urlencode(query)))


class SlackAuthProvider:
    """Authorization server facade brokering Slack sign-in for MCP clients."""

    def __init__(
        self,
        bridge: SlackBridge,
        clients: ClientRegistry,
        issuer: str,
        callback_uri: str,
        state_secret: str,
        jwt_secret: str,
        upstream_scopes: Sequence[str] = ("channels:read",),
        session_store: Optional[SessionStore] = None,
        code_store: Optional[AuthorizationCodeStore] = None,
        token_store: Optional[TokenStore] = None,
        session_ttl: int = DEFAULT_SESSION_TTL_SECONDS,
        auth_code_ttl: int = DEFAULT_AUTH_CODE_TTL_SECONDS,
        access_token_ttl: int = jwt_utils.ACCESS_TOKEN_EXPIRE_SECONDS,
        refresh_token_ttl: int = jwt_utils.REFRESH_TOKEN_EXPIRE_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.bridge = bridge
        self.clients = clients
        self.issuer = issuer
        self.callback_uri = callback_uri
        self.upstream_scopes = list(upstream_scopes)
        self.sessions = session_store or InMemorySessionStore(ttl_seconds=session_ttl, clock=clock)
        self.codes = code_store or AuthorizationCodeStore(clock=clock)
        self.tokens = token_store or TokenStore(clock=clock)
        self.session_ttl = session_ttl
        self.auth_code_ttl = auth_code_ttl
        self.access_token_ttl = access_token_ttl
        self.refresh_token_ttl = refresh_token_ttl
        self._state_secret = state_secret
        self._jwt_secret = jwt_secret
        self._clock = clock

    @classmethod
    def from_config(cls, config, bridge: Optional[SlackBridge] = None) -> "SlackAuthProvider":
        """Build a provider (and load the client registry) from a Config."""
        clients = ClientRegistry(config.clients_file)
        clients.load()
        return cls(
            bridge=bridge or SlackBridge(config.slack_client_id, config.slack_client_secret),
            clients=clients,
            issuer=config.server_url,
            callback_uri=config.slack_redirect_uri,
            state_secret=config.slack_state_secret,
            jwt_secret=config.jwt_secret,
            upstream_scopes=config.slack_scopes,
            session_ttl=config.session_ttl,
            auth_code_ttl=config.auth_code_ttl,
            access_token_ttl=config.access_token_ttl,
            refresh_token_ttl=config.refresh_token_ttl,
        )

    @property
    def clients_store(self) -> ClientRegistry:
        return self.clients

    # ============== Clients ==============

    def get_client(self, client_id: str) -> RegisteredClient:
        client = self.clients.get(client_id)
        if client is None:
            logger.info(f"[AUTH] Unknown client: {client_id}")
            raise ClientNotFoundError("Client not registered")
        return client

    def authenticate_client(self, client_id: str, client_secret: Optional[str] = None) -> RegisteredClient:
        """Resolve a client at the token/revocation endpoints, checking its secret if it has one."""
        client = self.get_client(client_id)
        if client.token_endpoint_auth_method != "none" and client.client_secret:
            if not client_secret or not hmac.compare_digest(client_secret, client.client_secret):
                raise ClientNotFoundError("Invalid client credentials")
        return client

    async def register_client(self, metadata: dict) -> RegisteredClient:
        """Validate RFC 7591 metadata and register a new client."""
        redirect_uris = metadata.get("redirect_uris")
        if not isinstance(redirect_uris, list) or not redirect_uris:
            raise InvalidRedirectUriError("redirect_uris must be a non-empty list")
        for uri in redirect_uris:
            parsed = urlparse(uri) if isinstance(uri, str) else None
            if (parsed is None or not parsed.scheme or parsed.fragment
                    or parsed.scheme.lower() in _FORBIDDEN_REDIRECT_SCHEMES
                    or not (parsed.netloc or parsed.path)):
                raise InvalidRedirectUriError(f"Invalid redirect URI: {uri}")

        auth_method = metadata.get("token_endpoint_auth_method", "none")
        if auth_method not in SUPPORTED_AUTH_METHODS:
            raise InvalidClientMetadataError(f"Unsupported token_endpoint_auth_method: {auth_method}")

        extra = {k: v for k, v in metadata.items()
                 if k not in ("client_id", "client_secret", "client_id_issued_at",
                              "redirect_uris", "token_endpoint_auth_method")}
        extra.setdefault("client_name", "MCP Client")
        extra.setdefault("grant_types", ["authorization_code", "refresh_token"])
        extra.setdefault("response_types", ["code"])

        client = RegisteredClient(
            redirect_uris=list(redirect_uris),
            client_secret=secrets.token_urlsafe(32) if auth_method != "none" else None,
            client_id_issued_at=int(time.time()),
            token_endpoint_auth_method=auth_method,
            metadata=extra,
        )
        return await self.clients.register(client)

    # ============== Authorization ==============

    def _resolve_redirect_uri(self, client: RegisteredClient, requested: Optional[str]) -> str:
        if requested:
            if requested not in client.redirect_uris:
                logger.warning(f"[AUTHORIZE] Rejected unregistered redirect_uri for client {client.client_id}")
                raise InvalidRedirectUriError("redirect_uri does not match a registered redirect URI")
            return requested
        if not client.redirect_uris:
            raise InvalidRedirectUriError("Client has no registered redirect URI")
        return client.redirect_uris[0]

    @staticmethod
    def _resolve_scopes(requested: Sequence[str]) -> list:
        if not requested:
            return list(DEFAULT_SCOPES)
        unknown = [s for s in requested if s not in SUPPORTED_SCOPES]
        if unknown:
            raise InvalidScopeError(f"Unsupported scope: {' '.join(unknown)}")
        return list(requested)

    async def authorize(self, client: RegisteredClient, params: AuthorizationParams) -> str:
        """Start an authorization and return the Slack URL to redirect to.

        Nothing is stored until the Slack URL has been built, so a failure
        here leaves no partial session behind.
        """
        redirect_uri = self._resolve_redirect_uri(client, params.redirect_uri)
        if not params.code_challenge:
            raise InvalidRequestError("code_challenge is required")
        if params.code_challenge_method != S256:
            raise InvalidRequestError("code_challenge_method must be S256")
        if not is_valid_challenge(params.code_challenge):
            raise InvalidRequestError("code_challenge must be 43 base64url characters")
        scopes = self._resolve_scopes(params.scopes)

        # Our own PKCE pair for the Slack leg, separate from the client's
        pkce = generate_pkce()
        state = secrets.token_hex(32)
        internal_state = jwt_utils.sign_state(state, self._state_secret, expires_in=self.session_ttl)

        auth_url = self.bridge.generate_authorization_url(
            scopes=self.upstream_scopes,
            redirect_uri=self.callback_uri,
            state=internal_state,
            code_challenge=pkce.challenge,
        )

        self.sessions.create(state, SessionContext(
            client_id=client.client_id,
            internal_state=internal_state,
            code_verifier=pkce.verifier,
            redirect_uri=redirect_uri,
            original_client_state=params.state,
            client_code_challenge=params.code_challenge,
            client_code_challenge_method=params.code_challenge_method,
            scopes=scopes,
        ))
        logger.info(f"[AUTHORIZE] Redirecting client {client.client_id} to Slack (state {state[:8]}...)")
        return auth_url

    def _callback_failure(self, session: SessionContext, error: str, description: str) -> CallbackResult:
        logger.warning(f"[CALLBACK] Authorization failed for client {session.client_id}: {description}")
        redirect_url = _append_query(session.redirect_uri, {
            "error": error,
            "error_description": description,
            "state": session.original_client_state,
        })
        return CallbackResult(success=False, redirect_url=redirect_url,
                              error=error, error_description=description)

    async def handle_callback(
        self,
        state: str,
        code: Optional[str] = None,
        error: Optional[str] = None,
    ) -> CallbackResult:
        """Complete the Slack leg and mint a code for the original client.

        The session is consumed before any upstream work, so it is used
        exactly once whether the exchange succeeds or fails.

        Raises:
            InvalidStateError: state is forged, expired, unknown or reused
        """
        session_key = jwt_utils.verify_state(state, self._state_secret)
        session = self.sessions.consume(session_key) if session_key else None
        if session is None:
            logger.warning("[CALLBACK] Invalid or reused state parameter")
            raise InvalidStateError("Invalid state parameter")

        if error:
            return self._callback_failure(session, "access_denied", f"Slack authorization failed: {error}")
        if not code:
            return self._callback_failure(session, "invalid_request", "Missing authorization code")

        try:
            identity = await self.bridge.complete_callback(
                code, redirect_uri=self.callback_uri, code_verifier=session.code_verifier
            )
        except UpstreamError as e:
            return self._callback_failure(session, "server_error", e.description or "Slack token exchange failed")

        auth_code = secrets.token_urlsafe(32)
        self.codes.put(AuthorizationCode(
            code=auth_code,
            client_id=session.client_id,
            redirect_uri=session.redirect_uri,
            code_challenge=session.client_code_challenge,
            code_challenge_method=session.client_code_challenge_method,
            scopes=session.scopes,
            identity=identity,
            expires_at=self._clock() + self.auth_code_ttl,
        ))
        logger.info(f"[CALLBACK] Issued authorization code to client {session.client_id} "
                    f"for Slack user {identity.user_id}")

        redirect_url = _append_query(session.redirect_uri, {
            "code": auth_code,
            "state": session.original_client_state,
        })
        return CallbackResult(success=True, redirect_url=redirect_url)

    # ============== Tokens ==============

    def _lookup_code(self, client: RegisteredClient, code: str) -> AuthorizationCode:
        record = self.codes.get(code) if code else None
        if record is None:
            raise InvalidGrantError("Invalid or expired authorization code")
        if record.client_id != client.client_id:
            raise InvalidGrantError("Authorization code was not issued to this client")
        return record

    async def challenge_for_authorization_code(self, client: RegisteredClient, code: str) -> str:
        return self._lookup_code(client, code).code_challenge

    async def exchange_authorization_code(
        self,
        client: RegisteredClient,
        code: str,
        code_verifier: Optional[str],
        redirect_uri: Optional[str] = None,
    ) -> OAuthTokens:
        """Redeem a code minted by handle_callback for tokens.

        A failed PKCE check does not consume the code.
        """
        record = self._lookup_code(client, code)
        if redirect_uri and redirect_uri != record.redirect_uri:
            raise InvalidGrantError("redirect_uri does not match the authorization request")
        if not verify_challenge(code_verifier or "", record.code_challenge, record.code_challenge_method):
            logger.warning(f"[TOKEN] PKCE verification failed for client {client.client_id}")
            raise PKCEValidationError("PKCE verification failed")

        record = self.codes.consume(code)
        if record is None:
            raise InvalidGrantError("Authorization code has already been used")

        tokens = self._issue_tokens(client.client_id, record.scopes, record.identity,
                                    grant_id=secrets.token_urlsafe(16))
        logger.info(f"[TOKEN] Access token created for Slack user {record.identity.user_id} "
                    f"(client {client.client_id})")
        return tokens

    def _issue_tokens(self, client_id: str, scopes: list, identity, grant_id: str,
                      refresh_scopes: Optional[list] = None) -> OAuthTokens:
        refresh_scopes = refresh_scopes or scopes
        scope = " ".join(scopes)
        access_token = jwt_utils.create_access_token(
            self._jwt_secret, identity.user_id, identity.team_id, client_id, scope,
            self.issuer, grant_id, expires_in=self.access_token_ttl,
        )
        refresh_token = jwt_utils.create_refresh_token(
            self._jwt_secret, identity.user_id, identity.team_id, client_id, " ".join(refresh_scopes),
            self.issuer, grant_id, expires_in=self.refresh_token_ttl,
        )

        now = self._clock()
        self.tokens.sweep()
        self.tokens.put(access_token, IssuedToken(
            token=access_token, kind="access", client_id=client_id, scopes=list(scopes),
            expires_at=now + self.access_token_ttl, identity=identity, grant_id=grant_id,
        ))
        self.tokens.put(refresh_token, IssuedToken(
            token=refresh_token, kind="refresh", client_id=client_id, scopes=list(refresh_scopes),
            expires_at=now + self.refresh_token_ttl, identity=identity, grant_id=grant_id,
        ))
        return OAuthTokens(
            access_token=access_token,
            expires_in=self.access_token_ttl,
            refresh_token=refresh_token,
            scope=scope,
        )

    async def verify_access_token(self, token: str) -> AuthInfo:
        """Resolve an access token to the identity bound at issuance.

        Raises:
            InvalidTokenError: unknown, expired, revoked or not an access token
        """
        payload = jwt_utils.verify_access_token(token, self._jwt_secret, issuer=self.issuer) if token else None
        record = self.tokens.get(token) if payload else None
        if record is None or record.kind != "access":
            raise InvalidTokenError("Invalid or expired token")
        return AuthInfo(
            token=token,
            client_id=record.client_id,
            scopes=list(record.scopes),
            expires_at=int(record.expires_at),
            identity=record.identity,
        )

    async def exchange_refresh_token(
        self,
        client: RegisteredClient,
        refresh_token: str,
        scopes: Optional[Sequence[str]] = None,
    ) -> OAuthTokens:
        """Rotate a refresh token into a new access/refresh pair for the same identity."""
        payload = jwt_utils.verify_refresh_token(refresh_token, self._jwt_secret, issuer=self.issuer) \
            if refresh_token else None
        record = self.tokens.get(refresh_token) if payload else None
        if record is None or record.kind != "refresh":
            raise InvalidTokenError("Invalid or expired refresh token")
        if record.client_id != client.client_id:
            raise InvalidTokenError("Refresh token was not issued to this client")

        requested = list(scopes) if scopes else list(record.scopes)
        if not set(requested) <= set(record.scopes):
            raise InvalidScopeError("Requested scope exceeds the original grant")

        if not self.tokens.revoke(refresh_token):
            raise InvalidTokenError("Refresh token has already been used")

        logger.info(f"[TOKEN] Refreshed tokens for Slack user {record.identity.user_id} "
                    f"(client {client.client_id})")
        return self._issue_tokens(client.client_id, requested, record.identity,
                                  grant_id=record.grant_id, refresh_scopes=record.scopes)

    async def revoke_token(
        self,
        client: RegisteredClient,
        token: str,
        token_type_hint: Optional[str] = None,
    ) -> None:
        """Revoke a token (RFC 7009). Unknown tokens are ignored."""
        record = self.tokens.get(token)
        if record is None:
            logger.debug("[REVOKE] Token unknown or already invalid")
            return
        if record.client_id != client.client_id:
            logger.warning(f"[REVOKE] Client {client.client_id} tried to revoke another client's token")
            return

        if record.kind == "refresh":
            count = self.tokens.revoke_grant(record.grant_id)
            logger.info(f"[REVOKE] Revoked grant for client {client.client_id} ({count} tokens)")
        else:
            self.tokens.revoke(token)
            logger.info(f"[REVOKE] Revoked access token for client {client.client_id}")
