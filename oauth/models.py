"""Data model shared by the OAuth stores, provider and endpoints."""

import time
from dataclasses import dataclass, field, asdict
from typing import Any, Optional


# RFC 7591 fields held as first-class attributes; everything else the client
# sends is kept opaque in RegisteredClient.metadata.
_CLIENT_FIELDS = (
    "client_id",
    "redirect_uris",
    "client_secret",
    "client_id_issued_at",
    "token_endpoint_auth_method",
)


@dataclass(frozen=True)
class RegisteredClient:
    """An MCP client registered through dynamic client registration."""

    redirect_uris: list
    client_id: str = ""
    client_secret: Optional[str] = None
    client_id_issued_at: int = 0
    token_endpoint_auth_method: str = "none"
    metadata: dict = field(default_factory=dict)

    @property
    def client_name(self) -> str:
        return self.metadata.get("client_name", "MCP Client")

    def to_dict(self) -> dict:
        """Flat RFC 7591 representation, as persisted and returned by /register."""
        data = dict(self.metadata)
        data.update({
            "client_id": self.client_id,
            "redirect_uris": list(self.redirect_uris),
            "client_id_issued_at": self.client_id_issued_at,
            "token_endpoint_auth_method": self.token_endpoint_auth_method,
        })
        if self.client_secret:
            data["client_secret"] = self.client_secret
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "RegisteredClient":
        metadata = {k: v for k, v in data.items() if k not in _CLIENT_FIELDS}
        return cls(
            client_id=data.get("client_id", ""),
            redirect_uris=list(data.get("redirect_uris") or []),
            client_secret=data.get("client_secret"),
            client_id_issued_at=int(data.get("client_id_issued_at") or 0),
            token_endpoint_auth_method=data.get("token_endpoint_auth_method", "none"),
            metadata=metadata,
        )


@dataclass
class AuthorizationParams:
    """Parameters an MCP client sends to /authorize."""

    code_challenge: str = ""
    code_challenge_method: str = "S256"
    state: Optional[str] = None
    redirect_uri: Optional[str] = None
    scopes: list = field(default_factory=list)


@dataclass
class SessionContext:
    """Correlates one MCP client authorization with its Slack leg.

    Keyed in the session store by a random state value. The upstream PKCE
    verifier lives only here and is never mixed up with the client's own
    challenge, which is checked later at the token endpoint.
    """

    client_id: str
    internal_state: str
    code_verifier: str
    redirect_uri: str
    original_client_state: Optional[str]
    client_code_challenge: str
    client_code_challenge_method: str = "S256"
    scopes: list = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    expires_at: float = 0.0


@dataclass(frozen=True)
class SlackIdentity:
    """Identity resolved from Slack's oauth.v2.access response."""

    user_id: str
    team_id: str
    team_name: str = ""
    enterprise_id: Optional[str] = None
    access_token: Optional[str] = None
    user_access_token: Optional[str] = None
    bot_user_id: Optional[str] = None
    scope: str = ""

    @classmethod
    def from_oauth_response(cls, data: dict) -> "SlackIdentity":
        team = data.get("team") or {}
        enterprise = data.get("enterprise") or {}
        authed_user = data.get("authed_user") or {}
        return cls(
            user_id=authed_user.get("id", ""),
            team_id=team.get("id", ""),
            team_name=team.get("name", ""),
            enterprise_id=enterprise.get("id"),
            access_token=data.get("access_token"),
            user_access_token=authed_user.get("access_token"),
            bot_user_id=data.get("bot_user_id"),
            scope=data.get("scope", ""),
        )

    @property
    def slack_token(self) -> Optional[str]:
        """Token to call the Slack Web API with on behalf of this identity."""
        return self.access_token or self.user_access_token

    def public_dict(self) -> dict:
        """Identity without any Slack credentials."""
        data = asdict(self)
        data.pop("access_token")
        data.pop("user_access_token")
        return data


@dataclass
class AuthorizationCode:
    """Code handed back to the MCP client after a successful Slack callback."""

    code: str
    client_id: str
    redirect_uri: str
    code_challenge: str
    code_challenge_method: str
    scopes: list
    identity: SlackIdentity
    expires_at: float


@dataclass
class IssuedToken:
    """Access or refresh token recorded in the token store."""

    token: str
    kind: str
    client_id: str
    scopes: list
    expires_at: float
    identity: SlackIdentity
    grant_id: str


@dataclass
class AuthInfo:
    """Result of verifying an access token."""

    token: str
    client_id: str
    scopes: list
    expires_at: int
    identity: SlackIdentity


@dataclass
class OAuthTokens:
    access_token: str
    expires_in: int
    refresh_token: Optional[str] = None
    scope: str = ""
    token_type: str = "Bearer"

    def to_dict(self) -> dict[str, Any]:
        data = {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "scope": self.scope,
        }
        if self.refresh_token:
            data["refresh_token"] = self.refresh_token
        return data


@dataclass
class CallbackResult:
    """Outcome of a Slack callback for a known session.

    redirect_url always points at the MCP client's redirect URI: with a code
    on success, with an OAuth error on failure.
    """

    success: bool
    redirect_url: str
    error: Optional[str] = None
    error_description: Optional[str] = None
