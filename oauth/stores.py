"""In-memory stores for OAuth state.

- SessionStore: in-flight authorizations keyed by state (time-boxed, consumed once)
- AuthorizationCodeStore: codes issued to MCP clients (time-boxed, single use)
- TokenStore: issued access/refresh tokens and the Slack identity behind them

Each store guards its map with a lock so concurrent requests cannot corrupt
it. Expired entries are dropped lazily on lookup and by sweep().
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from oauth.errors import DuplicateStateError, MissingKeyError
from oauth.models import AuthorizationCode, IssuedToken, SessionContext

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL_SECONDS = 600  # 10 minutes


# ============== Session Store ==============

class SessionStore(ABC):
    """Storage for SessionContext records keyed by state."""

    @abstractmethod
    def create(self, state: str, context: SessionContext) -> None:
        ...

    @abstractmethod
    def get(self, state: str) -> Optional[SessionContext]:
        ...

    @abstractmethod
    def delete(self, state: str) -> None:
        ...

    @abstractmethod
    def consume(self, state: str) -> Optional[SessionContext]:
        """Atomically return and remove the session for state."""

    @abstractmethod
    def sweep(self) -> int:
        """Remove expired sessions, returning how many were dropped."""


class InMemorySessionStore(SessionStore):

    def __init__(self, ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, SessionContext] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create(self, state: str, context: SessionContext) -> None:
        if not state:
            raise MissingKeyError("Cannot store session data: state parameter is missing")

        self.sweep()
        now = self._clock()
        context.created_at = now
        context.expires_at = now + self.ttl_seconds

        with self._lock:
            if state in self._sessions:
                raise DuplicateStateError(f"Session already exists for state {state[:8]}...")
            self._sessions[state] = context

        logger.debug(f"[SESSION] Stored session for state: {state[:8]}...")

    def get(self, state: str) -> Optional[SessionContext]:
        if not state:
            return None
        with self._lock:
            context = self._sessions.get(state)
            if context is None:
                return None
            if self._clock() > context.expires_at:
                del self._sessions[state]
                logger.info(f"[SESSION] Session expired for state: {state[:8]}...")
                return None
            return context

    def delete(self, state: str) -> None:
        with self._lock:
            if self._sessions.pop(state, None) is not None:
                logger.debug(f"[SESSION] Cleared session for state: {state[:8]}...")

    def consume(self, state: str) -> Optional[SessionContext]:
        if not state:
            return None
        with self._lock:
            context = self._sessions.pop(state, None)
        if context is None:
            return None
        if self._clock() > context.expires_at:
            logger.info(f"[SESSION] Session expired for state: {state[:8]}...")
            return None
        return context

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [s for s, ctx in self._sessions.items() if now > ctx.expires_at]
            for state in expired:
                del self._sessions[state]
        if expired:
            logger.info(f"[SESSION] Swept {len(expired)} abandoned session(s)")
        return len(expired)


# ============== Authorization Codes ==============

class AuthorizationCodeStore:
    """Codes handed to MCP clients, redeemable once before they expire."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._codes: dict[str, AuthorizationCode] = {}
        self._lock = threading.Lock()

    def put(self, record: AuthorizationCode) -> None:
        if not record.code:
            raise MissingKeyError("Authorization code is empty")
        self.sweep()
        with self._lock:
            self._codes[record.code] = record

    def get(self, code: str) -> Optional[AuthorizationCode]:
        with self._lock:
            record = self._codes.get(code)
            if record is None:
                return None
            if self._clock() > record.expires_at:
                del self._codes[code]
                return None
            return record

    def consume(self, code: str) -> Optional[AuthorizationCode]:
        with self._lock:
            record = self._codes.pop(code, None)
        if record is None or self._clock() > record.expires_at:
            return None
        return record

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [c for c, r in self._codes.items() if now > r.expires_at]
            for code in expired:
                del self._codes[code]
        return len(expired)


# ============== Token Store ==============

class TokenStore:
    """Maps issued tokens to the identity they were minted for.

    Used by the provider on issuance and by the tool layer on lookup.
    Removing a token from here revokes it even if its JWT is still valid.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._tokens: dict[str, IssuedToken] = {}
        self._lock = threading.Lock()

    def put(self, token: str, record: IssuedToken) -> None:
        if not token:
            raise MissingKeyError("Token is empty")
        with self._lock:
            self._tokens[token] = record

    def get(self, token: str) -> Optional[IssuedToken]:
        if not token:
            return None
        with self._lock:
            record = self._tokens.get(token)
            if record is None:
                return None
            if self._clock() > record.expires_at:
                del self._tokens[token]
                return None
            return record

    def revoke(self, token: str) -> bool:
        with self._lock:
            return self._tokens.pop(token, None) is not None

    def revoke_grant(self, grant_id: str) -> int:
        """Revoke every token issued under one authorization grant."""
        with self._lock:
            doomed = [t for t, r in self._tokens.items() if r.grant_id == grant_id]
            for token in doomed:
                del self._tokens[token]
        return len(doomed)

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [t for t, r in self._tokens.items() if now > r.expires_at]
            for token in expired:
                del self._tokens[token]
        return len(expired)
