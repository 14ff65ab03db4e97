"""DPoP (Demonstrating Proof-of-Possession) proofs per RFC 9449.

A proof is a compact JWS whose header embeds the public key as a JWK and
whose claims bind it to one HTTP method and URL. Each token request gets
its own proof with a fresh, unlinkable jti.
"""

import hashlib
import json
import re
import time
from urllib.parse import urlsplit, urlunsplit

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

from .keys import (
    SUPPORTED_CURVES,
    DPoPError,
    KeyFamily,
    KeyPair,
    UnsupportedKeyTypeError,
)
from .pkce import b64url_encode, random_bytes

DPOP_HEADER = "DPoP"
DPOP_JWT_TYPE = "dpop+jwt"

# Raw entropy hashed into each jti
JTI_RANDOM_BYTES = 30

_METHOD_PATTERN = re.compile(r"^[A-Z]+$")

_HASHES: dict[str, type[hashes.HashAlgorithm]] = {
    "RS256": hashes.SHA256,
    "RS384": hashes.SHA384,
    "RS512": hashes.SHA512,
    "ES256": hashes.SHA256,
    "ES384": hashes.SHA384,
    "ES512": hashes.SHA512,
}


def _ec_coordinate_size(curve: ec.EllipticCurve) -> int:
    return (curve.key_size + 7) // 8


def signing_algorithm(key_pair: KeyPair) -> str:
    """Select the JWS algorithm for a key pair.

    RSA keys are graded by modulus size, EC keys by curve size.

    Raises:
        UnsupportedKeyTypeError: For RSA keys smaller than 2048 bits
    """
    if key_pair.family is KeyFamily.RSA:
        bits = key_pair.public_key.key_size  # type: ignore[union-attr]
        if bits >= 4096:
            return "RS512"
        if bits >= 3072:
            return "RS384"
        if bits >= 2048:
            return "RS256"
        raise UnsupportedKeyTypeError(f"RSA key of {bits} bits is too small for DPoP")

    if key_pair.family is KeyFamily.EC:
        curve_bits = key_pair.public_key.curve.key_size  # type: ignore[union-attr]
        algorithms = {256: "ES256", 384: "ES384", 521: "ES512"}
        if curve_bits not in algorithms:
            raise UnsupportedKeyTypeError(f"unsupported EC curve size: {curve_bits}")
        return algorithms[curve_bits]

    return "EdDSA"


def public_jwk(key_pair: KeyPair) -> dict[str, str]:
    """Render the public key as the JWK embedded in the proof header."""
    if key_pair.family is KeyFamily.EC:
        public_key: ec.EllipticCurvePublicKey = key_pair.public_key  # type: ignore[assignment]
        numbers = public_key.public_numbers()
        size = _ec_coordinate_size(public_key.curve)
        return {
            "kty": "EC",
            "crv": SUPPORTED_CURVES[public_key.curve.name],
            "x": b64url_encode(numbers.x.to_bytes(size, "big")),
            "y": b64url_encode(numbers.y.to_bytes(size, "big")),
        }

    if key_pair.family is KeyFamily.RSA:
        rsa_numbers = key_pair.public_key.public_numbers()  # type: ignore[union-attr]
        e, n = rsa_numbers.e, rsa_numbers.n
        return {
            "kty": "RSA",
            "e": b64url_encode(e.to_bytes((e.bit_length() + 7) // 8, "big")),
            "n": b64url_encode(n.to_bytes((n.bit_length() + 7) // 8, "big")),
        }

    raw = key_pair.public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return {"kty": "OKP", "crv": "Ed25519", "x": b64url_encode(raw)}


def generate_jti() -> str:
    """Generate a proof identifier: base64url(SHA256(30 random bytes))."""
    digest = hashlib.sha256(random_bytes(JTI_RANDOM_BYTES)).digest()
    return b64url_encode(digest)


def _htu(url: str) -> str:
    """The htu claim is the target URI without query and fragment."""
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise DPoPError(f"DPoP target must be an absolute URL, got: {url!r}")
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def _sign(key_pair: KeyPair, algorithm: str, signing_input: bytes) -> bytes:
    if key_pair.family is KeyFamily.RSA:
        return key_pair.private_key.sign(  # type: ignore[call-arg, union-attr]
            signing_input, padding.PKCS1v15(), _HASHES[algorithm]()
        )

    if key_pair.family is KeyFamily.EC:
        private_key: ec.EllipticCurvePrivateKey = key_pair.private_key  # type: ignore[assignment]
        der_signature = private_key.sign(signing_input, ec.ECDSA(_HASHES[algorithm]()))
        # JWS wants the raw r || s form, not DER
        r, s = decode_dss_signature(der_signature)
        size = _ec_coordinate_size(private_key.curve)
        return r.to_bytes(size, "big") + s.to_bytes(size, "big")

    return key_pair.private_key.sign(signing_input)  # type: ignore[call-arg]


def create_dpop_proof(
    key_pair: KeyPair,
    method: str,
    url: str,
    issued_at: int | None = None,
) -> str:
    """Build and sign a DPoP proof for one HTTP request.

    Args:
        key_pair: Key pair the proof demonstrates possession of
        method: HTTP method in upper case (e.g. "POST")
        url: Target URL of the request
        issued_at: Unix timestamp for the iat claim; defaults to now

    Returns:
        The signed compact JWT

    Raises:
        DPoPError: If the method or URL is malformed or signing fails
        UnsupportedKeyTypeError: If no algorithm fits the key
    """
    if not _METHOD_PATTERN.match(method):
        raise DPoPError(f"method must contain only uppercase letters, got: {method!r}")

    algorithm = signing_algorithm(key_pair)
    header = {
        "typ": DPOP_JWT_TYPE,
        "alg": algorithm,
        "jwk": public_jwk(key_pair),
    }
    claims = {
        "jti": generate_jti(),
        "htm": method,
        "htu": _htu(url),
        "iat": int(time.time()) if issued_at is None else issued_at,
    }

    header_b64 = b64url_encode(json.dumps(header, separators=(",", ":")).encode())
    claims_b64 = b64url_encode(json.dumps(claims, separators=(",", ":")).encode())
    signing_input = f"{header_b64}.{claims_b64}".encode("ascii")

    try:
        signature = _sign(key_pair, algorithm, signing_input)
    except (ValueError, TypeError) as e:
        raise DPoPError(f"error signing DPoP JWT: {e}") from e

    return f"{header_b64}.{claims_b64}.{b64url_encode(signature)}"
