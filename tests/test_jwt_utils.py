"""Tests for JWT token and state helpers."""

import time

import jwt

from oauth import jwt_utils

SECRET = "unit-test-secret-0123456789abcdef0123456789"
ISSUER = "https://mcp.example.com"


def make_access(**overrides):
    kwargs = dict(secret=SECRET, user_id="U1", team_id="T1", client_id="c1",
                  scope="mcp:tools", issuer=ISSUER, grant_id="g1")
    kwargs.update(overrides)
    return jwt_utils.create_access_token(**kwargs)


class TestTokens:

    def test_access_token_roundtrip(self):
        payload = jwt_utils.verify_access_token(make_access(), SECRET, issuer=ISSUER)
        assert payload["sub"] == "U1"
        assert payload["team_id"] == "T1"
        assert payload["client_id"] == "c1"
        assert payload["grant_id"] == "g1"
        assert payload["type"] == "access"

    def test_tokens_are_unique(self):
        assert make_access() != make_access()

    def test_wrong_secret(self):
        assert jwt_utils.verify_access_token(make_access(), "another-secret-0123456789abcdef") is None

    def test_wrong_issuer(self):
        assert jwt_utils.verify_access_token(make_access(), SECRET, issuer="https://evil") is None

    def test_expired(self):
        assert jwt_utils.verify_access_token(make_access(expires_in=-10), SECRET) is None

    def test_type_confusion(self):
        refresh = jwt_utils.create_refresh_token(SECRET, "U1", "T1", "c1", "mcp:tools", ISSUER, "g1")
        assert jwt_utils.verify_access_token(refresh, SECRET) is None
        assert jwt_utils.verify_refresh_token(refresh, SECRET)["type"] == "refresh"
        assert jwt_utils.verify_refresh_token(make_access(), SECRET) is None

    def test_missing_required_claims(self):
        token = jwt.encode({"sub": "U1", "exp": int(time.time()) + 60, "type": "access"},
                           SECRET, algorithm="HS256")
        assert jwt_utils.verify_access_token(token, SECRET) is None

    def test_garbage(self):
        assert jwt_utils.verify_access_token("garbage", SECRET) is None


class TestState:

    def test_roundtrip(self):
        state = jwt_utils.sign_state("session-key", SECRET)
        assert jwt_utils.verify_state(state, SECRET) == "session-key"

    def test_tampered(self):
        state = jwt_utils.sign_state("session-key", SECRET)
        assert jwt_utils.verify_state(state[:-2] + "xx", SECRET) is None

    def test_expired(self):
        state = jwt_utils.sign_state("session-key", SECRET, expires_in=-1)
        assert jwt_utils.verify_state(state, SECRET) is None

    def test_empty(self):
        assert jwt_utils.verify_state("", SECRET) is None

    def test_generate_secret(self):
        assert len(jwt_utils.generate_secret()) >= 64
