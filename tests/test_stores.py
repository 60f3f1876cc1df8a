"""Tests for the session, authorization code and token stores."""

import threading

import pytest

from oauth.errors import DuplicateStateError, MissingKeyError
from oauth.models import AuthorizationCode, IssuedToken, SessionContext, SlackIdentity
from oauth.stores import AuthorizationCodeStore, InMemorySessionStore, TokenStore


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_session(client_id: str = "c1") -> SessionContext:
    return SessionContext(
        client_id=client_id,
        internal_state="signed-state",
        code_verifier="v" * 96,
        redirect_uri="https://a/cb",
        original_client_state="orig123",
        client_code_challenge="challenge",
    )


IDENTITY = SlackIdentity(user_id="U1", team_id="T1")


class TestInMemorySessionStore:

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def store(self, clock):
        return InMemorySessionStore(ttl_seconds=600, clock=clock)

    def test_create_and_get(self, store):
        session = make_session()
        store.create("state-1", session)
        assert store.get("state-1") is session
        assert session.expires_at == session.created_at + 600

    def test_empty_state_rejected(self, store):
        with pytest.raises(MissingKeyError):
            store.create("", make_session())

    def test_duplicate_state_does_not_overwrite(self, store):
        first = make_session("c1")
        store.create("state-1", first)
        with pytest.raises(DuplicateStateError):
            store.create("state-1", make_session("c2"))
        assert store.get("state-1").client_id == "c1"

    def test_get_unknown_returns_none(self, store):
        assert store.get("missing") is None
        assert store.get("") is None

    def test_delete_is_idempotent(self, store):
        store.create("state-1", make_session())
        store.delete("state-1")
        store.delete("state-1")
        store.delete("never-existed")
        assert store.get("state-1") is None

    def test_consume_returns_once(self, store):
        store.create("state-1", make_session())
        assert store.consume("state-1") is not None
        assert store.consume("state-1") is None

    def test_expired_session_not_returned(self, store, clock):
        store.create("state-1", make_session())
        clock.advance(601)
        assert store.get("state-1") is None
        assert len(store) == 0

    def test_expired_session_cannot_be_consumed(self, store, clock):
        store.create("state-1", make_session())
        clock.advance(601)
        assert store.consume("state-1") is None

    def test_sweep_drops_only_expired(self, store, clock):
        store.create("old", make_session())
        clock.advance(500)
        store.create("new", make_session())
        clock.advance(200)
        assert store.sweep() == 1
        assert store.get("old") is None
        assert store.get("new") is not None

    def test_create_sweeps_abandoned_sessions(self, store, clock):
        for i in range(5):
            store.create(f"abandoned-{i}", make_session())
        clock.advance(601)
        store.create("fresh", make_session())
        assert len(store) == 1

    def test_concurrent_creates(self, store):
        def worker(offset):
            for i in range(50):
                store.create(f"state-{offset}-{i}", make_session())

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(store) == 400


class TestAuthorizationCodeStore:

    def make_code(self, code="code-1", expires_at=2_000_000.0):
        return AuthorizationCode(
            code=code, client_id="c1", redirect_uri="https://a/cb", code_challenge="x",
            code_challenge_method="S256", scopes=["mcp:tools"], identity=IDENTITY,
            expires_at=expires_at,
        )

    def test_consume_is_single_use(self):
        store = AuthorizationCodeStore(clock=FakeClock())
        store.put(self.make_code())
        assert store.get("code-1") is not None
        assert store.consume("code-1") is not None
        assert store.consume("code-1") is None
        assert store.get("code-1") is None

    def test_expired_code(self):
        clock = FakeClock()
        store = AuthorizationCodeStore(clock=clock)
        store.put(self.make_code(expires_at=clock.now + 10))
        clock.advance(11)
        assert store.get("code-1") is None


class TestTokenStore:

    def make_token(self, token, kind="access", grant_id="g1", expires_at=2_000_000.0):
        return IssuedToken(
            token=token, kind=kind, client_id="c1", scopes=["mcp:tools"],
            expires_at=expires_at, identity=IDENTITY, grant_id=grant_id,
        )

    def test_put_get_revoke(self):
        store = TokenStore(clock=FakeClock())
        store.put("t1", self.make_token("t1"))
        assert store.get("t1").identity == IDENTITY
        assert store.revoke("t1") is True
        assert store.revoke("t1") is False
        assert store.get("t1") is None

    def test_revoke_grant(self):
        store = TokenStore(clock=FakeClock())
        store.put("a1", self.make_token("a1", grant_id="g1"))
        store.put("r1", self.make_token("r1", kind="refresh", grant_id="g1"))
        store.put("a2", self.make_token("a2", grant_id="g2"))
        assert store.revoke_grant("g1") == 2
        assert store.get("a1") is None
        assert store.get("r1") is None
        assert store.get("a2") is not None

    def test_expired_token(self):
        clock = FakeClock()
        store = TokenStore(clock=clock)
        store.put("t1", self.make_token("t1", expires_at=clock.now + 5))
        clock.advance(6)
        assert store.get("t1") is None

    def test_empty_token_rejected(self):
        with pytest.raises(MissingKeyError):
            TokenStore().put("", self.make_token(""))
