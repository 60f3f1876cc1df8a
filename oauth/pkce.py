"""PKCE (RFC 7636) helpers.

Only the S256 transform is supported; the plain method is never used.
"""

import base64
import hashlib
import hmac
import re
import uuid
from dataclasses import dataclass

MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128
S256 = "S256"

# BASE64URL of a SHA-256 digest, unpadded
_CHALLENGE_RE = re.compile(r"[A-Za-z0-9_-]{43}")


@dataclass(frozen=True)
class PKCEPair:
    verifier: str
    challenge: str
    method: str = S256


def compute_challenge(verifier: str) -> str:
    """BASE64URL(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_pkce() -> PKCEPair:
    """Generate a fresh verifier/challenge pair.

    The verifier is three random UUIDs in hex: 96 characters of [0-9a-f],
    well inside the 43-128 range and carrying 366 bits of randomness.
    """
    verifier = uuid.uuid4().hex + uuid.uuid4().hex + uuid.uuid4().hex
    return PKCEPair(verifier=verifier, challenge=compute_challenge(verifier))


def is_valid_challenge(challenge: str) -> bool:
    """True if challenge has the shape of an S256 code challenge."""
    return isinstance(challenge, str) and bool(_CHALLENGE_RE.fullmatch(challenge))


def verify_challenge(verifier: str, challenge: str, method: str = S256) -> bool:
    """Check a client-supplied verifier against a stored challenge."""
    if method != S256 or not verifier or not challenge:
        return False
    if not MIN_VERIFIER_LENGTH <= len(verifier) <= MAX_VERIFIER_LENGTH:
        return False
    if not challenge.isascii():
        return False
    try:
        expected = compute_challenge(verifier)
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(expected, challenge)
