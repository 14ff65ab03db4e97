"""PKCE (Proof Key for Code Exchange) implementation per RFC 7636.

The verifier is always built from 96 fresh random bytes, which encode to the
128 character maximum the RFC allows. A PKCE pair without fresh randomness
is worthless, so an entropy failure is fatal and never retried.
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass

from .errors import RandomnessUnavailableError

# Raw verifier entropy; base64url without padding gives 128 characters
VERIFIER_BYTES = 96
VERIFIER_LENGTH = 128
CHALLENGE_LENGTH = 43
CHALLENGE_METHOD = "S256"


@dataclass(frozen=True)
class PKCEPair:
    """PKCE code verifier and challenge pair.

    The verifier is sent in the token request, the challenge (SHA256 of the
    verifier) in the authorization request.
    """

    verifier: str
    challenge: str
    method: str = CHALLENGE_METHOD


def b64url_encode(data: bytes) -> str:
    """Base64URL encode without padding."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def random_bytes(n: int) -> bytes:
    """Read ``n`` bytes from the OS entropy source.

    Raises:
        RandomnessUnavailableError: If the entropy source fails
    """
    try:
        return secrets.token_bytes(n)
    except (OSError, NotImplementedError) as e:
        raise RandomnessUnavailableError(f"unable to read random bytes: {e}") from e


def generate_code_verifier() -> str:
    """Generate a cryptographically random code verifier.

    Returns:
        128 character base64url string made from 96 random bytes

    Raises:
        RandomnessUnavailableError: If the entropy source fails
    """
    return b64url_encode(random_bytes(VERIFIER_BYTES))


def generate_code_challenge(verifier: str) -> str:
    """Generate the S256 code challenge for a verifier.

    code_challenge = BASE64URL(SHA256(ASCII(code_verifier)))
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return b64url_encode(digest)


def generate_pkce_pair() -> PKCEPair:
    """Generate a complete PKCE pair (verifier + challenge)."""
    verifier = generate_code_verifier()
    return PKCEPair(verifier=verifier, challenge=generate_code_challenge(verifier))


def generate_state() -> str:
    """Generate a random state parameter for CSRF protection."""
    return b64url_encode(random_bytes(24))
