"""Config management for slack-mcp-server.

Settings come from the environment (optionally seeded from a .env file)
and are read once at startup. Missing Slack credentials are fatal.
"""
import os
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from oauth.jwt_utils import generate_secret

REQUIRED_VARS = ("SLACK_CLIENT_ID", "SLACK_CLIENT_SECRET", "SLACK_STATE_SECRET")
DEFAULT_PORT = 8766
DEFAULT_CLIENTS_FILE = "registered_clients.json"


class ConfigError(Exception):
    """Required configuration is missing or invalid."""


class Config:
    """Configuration container."""

    def __init__(self, data: dict = None):
        self.data = data or {}

    def _int(self, key: str, default: int) -> int:
        value = self.data.get(key)
        if value in (None, ""):
            return default
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{key} must be an integer, got {value!r}")

    # ============== Slack ==============

    @property
    def slack_client_id(self) -> Optional[str]:
        return self.data.get("SLACK_CLIENT_ID")

    @property
    def slack_client_secret(self) -> Optional[str]:
        return self.data.get("SLACK_CLIENT_SECRET")

    @property
    def slack_state_secret(self) -> Optional[str]:
        return self.data.get("SLACK_STATE_SECRET")

    @property
    def slack_scopes(self) -> list:
        raw = self.data.get("SLACK_SCOPES") or "channels:read"
        return [s.strip() for s in raw.split(",") if s.strip()]

    @property
    def slack_redirect_uri(self) -> str:
        return self.data.get("SLACK_REDIRECT_URI") or f"{self.server_url}/callback"

    # ============== Server ==============

    @property
    def host(self) -> str:
        return self.data.get("MCP_HOST") or "0.0.0.0"

    @property
    def port(self) -> int:
        return self._int("MCP_PORT", DEFAULT_PORT)

    @property
    def transport(self) -> str:
        return self.data.get("MCP_TRANSPORT") or "streamable-http"

    @property
    def server_url(self) -> str:
        url = self.data.get("SERVER_URL") or f"http://localhost:{self.port}"
        return url.rstrip("/")

    @property
    def enable_oauth(self) -> bool:
        return str(self.data.get("ENABLE_OAUTH", "true")).lower() == "true"

    @property
    def environment(self) -> str:
        return (self.data.get("ENVIRONMENT") or "development").lower()

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def clients_file(self) -> Path:
        return Path(self.data.get("CLIENTS_FILE") or Path.cwd() / DEFAULT_CLIENTS_FILE)

    # ============== Lifetimes ==============

    @property
    def session_ttl(self) -> int:
        return self._int("SESSION_TTL_SECONDS", 600)

    @property
    def auth_code_ttl(self) -> int:
        return self._int("AUTH_CODE_TTL_SECONDS", 600)

    @property
    def access_token_ttl(self) -> int:
        return self._int("ACCESS_TOKEN_TTL_SECONDS", 3600)

    @property
    def refresh_token_ttl(self) -> int:
        return self._int("REFRESH_TOKEN_TTL_SECONDS", 30 * 24 * 60 * 60)

    @property
    def jwt_secret(self) -> str:
        # Tokens live in memory, so a per-process secret is enough when unset
        if not self.data.get("JWT_SECRET"):
            self.data["JWT_SECRET"] = generate_secret()
        return self.data["JWT_SECRET"]

    # ============== Logging ==============

    @property
    def service_name(self) -> str:
        return self.data.get("SERVICE_NAME") or "slack-mcp-server"

    @property
    def supabase_url(self) -> Optional[str]:
        return self.data.get("SUPABASE_URL") or None

    @property
    def supabase_anon_key(self) -> Optional[str]:
        return self.data.get("SUPABASE_ANON_KEY") or None

    def missing(self) -> list:
        return [key for key in REQUIRED_VARS if not self.data.get(key)]

    def validate(self) -> "Config":
        """Raise ConfigError if required settings are absent or malformed."""
        missing = self.missing()
        if missing:
            raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")
        if not 0 < self.port < 65536:
            raise ConfigError(f"MCP_PORT must be a valid TCP port, got {self.port}")
        for ttl in (self.session_ttl, self.auth_code_ttl, self.access_token_ttl, self.refresh_token_ttl):
            if ttl <= 0:
                raise ConfigError("Token and session lifetimes must be positive")
        return self


def load_config(environ: Mapping[str, str] = None, env_file: Optional[Path] = None) -> Config:
    """Load config from the environment, validating required settings.

    Args:
        environ: Mapping to read instead of os.environ (tests)
        env_file: .env file to load first; defaults to ./.env if present
    """
    if environ is None:
        env_file = env_file or Path(".env")
        if env_file.exists():
            load_dotenv(env_file)
        environ = os.environ
    return Config(dict(environ)).validate()
