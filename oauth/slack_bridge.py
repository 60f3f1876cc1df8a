"""Slack side of the OAuth bridge.

Wraps Slack's OAuth v2 install flow (authorize URL, oauth.v2.access code
exchange) behind the two calls the provider needs. The Slack client
credentials never leave this object.
"""

import asyncio
import logging
from typing import Optional, Sequence
from urllib.parse import urlencode

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError, SlackClientError
from slack_sdk.oauth import AuthorizeUrlGenerator

from oauth.errors import UpstreamError
from oauth.models import SlackIdentity

logger = logging.getLogger(__name__)


class SlackBridge:
    """Handles the Slack OAuth 2.0 leg of an authorization."""

    AUTHORIZATION_URL = "https://slack.com/oauth/v2/authorize"

    def __init__(self, client_id: str, client_secret: str, web_client: Optional[WebClient] = None):
        if not client_id or not client_secret:
            raise ValueError("Slack client ID and secret are required")
        self.client_id = client_id
        self._client_secret = client_secret
        self._web_client = web_client or WebClient()

    def generate_authorization_url(
        self,
        scopes: Sequence[str],
        redirect_uri: str,
        state: str,
        code_challenge: Optional[str] = None,
    ) -> str:
        """Build the Slack authorize URL the user-agent is redirected to."""
        generator = AuthorizeUrlGenerator(
            client_id=self.client_id,
            redirect_uri=redirect_uri,
            scopes=list(scopes),
            authorization_url=self.AUTHORIZATION_URL,
        )
        url = generator.generate(state=state)
        if code_challenge:
            url += "&" + urlencode({"code_challenge": code_challenge, "code_challenge_method": "S256"})
        return url

    async def complete_callback(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
    ) -> SlackIdentity:
        """Exchange Slack's authorization code and resolve the installing user.

        Raises:
            UpstreamError: If Slack rejects the exchange or cannot be reached
        """
        if not code:
            raise UpstreamError("Missing Slack authorization code")

        extra = {"code_verifier": code_verifier} if code_verifier else {}
        try:
            response = await asyncio.to_thread(
                self._web_client.oauth_v2_access,
                client_id=self.client_id,
                client_secret=self._client_secret,
                code=code,
                redirect_uri=redirect_uri,
                **extra,
            )
        except SlackApiError as e:
            error = e.response.get("error", "unknown_error") if e.response is not None else "unknown_error"
            logger.error(f"[SLACK] Token exchange failed: {error}")
            raise UpstreamError(f"Slack token exchange failed: {error}") from e
        except (SlackClientError, OSError) as e:
            logger.error(f"[SLACK] Token exchange request failed: {e}")
            raise UpstreamError("Slack token exchange request failed") from e

        identity = SlackIdentity.from_oauth_response(response.data)
        if not identity.user_id or not identity.team_id:
            raise UpstreamError("Slack response did not identify the installing user")

        logger.info(f"[SLACK] Exchanged code for user {identity.user_id} in team {identity.team_id}")
        return identity
