"""Asymmetric key pairs used to sign DPoP proofs.

A KeyPair is a closed tagged variant: its family (RSA, EC or Ed25519) is
resolved once when the pair is built, so signing code dispatches on the tag
instead of re-inspecting key types on every use.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from .errors import OIDCError

logger = logging.getLogger(__name__)

PrivateKey = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey, ed25519.Ed25519PrivateKey]
PublicKey = Union[rsa.RSAPublicKey, ec.EllipticCurvePublicKey, ed25519.Ed25519PublicKey]

# NIST curves usable for DPoP: cryptography curve name -> JWK "crv"
SUPPORTED_CURVES = {
    "secp256r1": "P-256",
    "secp384r1": "P-384",
    "secp521r1": "P-521",
}


class KeyLoadError(OIDCError):
    """A key file could not be read or parsed."""

    pass


class DPoPError(OIDCError):
    """Error building or signing a DPoP proof."""

    pass


class KeyTypeMismatchError(DPoPError):
    """The private and public keys belong to different key families."""

    pass


class UnsupportedKeyTypeError(DPoPError):
    """The key is not an RSA, NIST EC or Ed25519 key usable for DPoP."""

    pass


class KeyFamily(str, Enum):
    RSA = "RSA"
    EC = "EC"
    ED25519 = "Ed25519"


def key_family(key: object) -> KeyFamily:
    """Resolve the family of a private or public key.

    Raises:
        UnsupportedKeyTypeError: For any other kind of key, or an EC key
            on a curve other than P-256, P-384 or P-521
    """
    if isinstance(key, (rsa.RSAPrivateKey, rsa.RSAPublicKey)):
        return KeyFamily.RSA
    if isinstance(key, (ec.EllipticCurvePrivateKey, ec.EllipticCurvePublicKey)):
        if key.curve.name not in SUPPORTED_CURVES:
            raise UnsupportedKeyTypeError(f"unsupported elliptic curve: {key.curve.name}")
        return KeyFamily.EC
    if isinstance(key, (ed25519.Ed25519PrivateKey, ed25519.Ed25519PublicKey)):
        return KeyFamily.ED25519
    raise UnsupportedKeyTypeError(f"unsupported key type: {type(key).__name__}")


@dataclass(frozen=True)
class KeyPair:
    """A private key, its public half and their shared family tag."""

    family: KeyFamily
    private_key: PrivateKey
    public_key: PublicKey

    @classmethod
    def from_keys(cls, private_key: object, public_key: object | None = None) -> "KeyPair":
        """Build a pair, checking that both keys belong to one family.

        Args:
            private_key: RSA, EC or Ed25519 private key
            public_key: Matching public key; derived from the private key if omitted

        Raises:
            KeyTypeMismatchError: If the keys belong to different families
            UnsupportedKeyTypeError: If either key is of an unsupported kind
        """
        if not isinstance(
            private_key,
            (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey, ed25519.Ed25519PrivateKey),
        ):
            raise UnsupportedKeyTypeError(
                f"unsupported private key type: {type(private_key).__name__}"
            )

        family = key_family(private_key)
        if public_key is None:
            public_key = private_key.public_key()

        if not isinstance(
            public_key,
            (rsa.RSAPublicKey, ec.EllipticCurvePublicKey, ed25519.Ed25519PublicKey),
        ):
            raise UnsupportedKeyTypeError(
                f"unsupported public key type: {type(public_key).__name__}"
            )

        public_family = key_family(public_key)
        if public_family is not family:
            raise KeyTypeMismatchError(
                f"private key type ({family.value}) does not match "
                f"public key type ({public_family.value})"
            )

        return cls(family=family, private_key=private_key, public_key=public_key)  # type: ignore[arg-type]


def _read_pem(path: str | Path) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise KeyLoadError(f"could not read key file {path}: {e}") from e


def load_private_key(path: str | Path, password: bytes | None = None) -> PrivateKey:
    """Load a PEM private key (PKCS#8, PKCS#1 or SEC1).

    Raises:
        KeyLoadError: If the file cannot be read or parsed
    """
    data = _read_pem(path)
    try:
        key = serialization.load_pem_private_key(data, password=password)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyLoadError(f"could not parse private key {path}: {e}") from e

    logger.debug(f"Loaded {type(key).__name__} from {path}")
    return key  # type: ignore[return-value]


def load_public_key(path: str | Path) -> PublicKey:
    """Load a PEM SubjectPublicKeyInfo public key.

    Raises:
        KeyLoadError: If the file cannot be read or parsed
    """
    data = _read_pem(path)
    try:
        key = serialization.load_pem_public_key(data)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise KeyLoadError(f"could not parse public key {path}: {e}") from e

    logger.debug(f"Loaded {type(key).__name__} from {path}")
    return key  # type: ignore[return-value]


def load_key_pair(private_key_file: str | Path, public_key_file: str | Path | None = None) -> KeyPair:
    """Load a key pair from PEM files.

    The public key file is optional; without it the public half of the
    private key is used.
    """
    private_key = load_private_key(private_key_file)
    public_key = load_public_key(public_key_file) if public_key_file else None
    return KeyPair.from_keys(private_key, public_key)
