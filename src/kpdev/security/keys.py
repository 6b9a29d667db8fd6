# src/kpdev/security/keys.py
"""
Plugin signing keys and plugin identity.

kintone identifies a plugin by the public key it was signed with, so each
project keeps one RSA key pair per lifecycle stage:

- dev:  signs pre-release builds (`private.dev.ppk`)
- prod: signs production builds (`private.prod.ppk`)

Keys live in `.kpdev/keys/` as PEM-encoded PKCS#1 private keys and are never
regenerated once present. A new key means a new plugin ID, and kintone would
treat the next upload as a different plugin.
"""

import hashlib
import logging
from enum import StrEnum
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from kpdev.config import get_config_dir

logger = logging.getLogger(__name__)

# Mandated by the kintone plugin format
KEY_BITS = 1024
PUBLIC_EXPONENT = 65537

KEYS_DIR = "keys"
PLUGIN_ID_LENGTH = 32

# Hex digit -> plugin ID letter. Digits map to a-j, hex letters to k-p.
PLUGIN_ID_ALPHABET = {
    "0": "a",
    "1": "b",
    "2": "c",
    "3": "d",
    "4": "e",
    "5": "f",
    "6": "g",
    "7": "h",
    "8": "i",
    "9": "j",
    "a": "k",
    "b": "l",
    "c": "m",
    "d": "n",
    "e": "o",
    "f": "p",
}


class KeyStage(StrEnum):
    """Lifecycle stage a key pair belongs to."""

    DEV = "dev"
    PROD = "prod"

    @property
    def filename(self) -> str:
        return f"private.{self.value}.ppk"


class KeyNotFoundError(Exception):
    """Raised when a private key file does not exist."""
    pass


class KeyParseError(Exception):
    """Raised when a private key file is not a PEM-encoded RSA key."""
    pass


class KeyGenerationError(Exception):
    """Raised when a new key pair cannot be generated."""
    pass


def get_keys_dir(project_dir: Path) -> Path:
    return get_config_dir(project_dir) / KEYS_DIR


def key_path(project_dir: Path, stage: KeyStage) -> Path:
    """Path of the private key for `stage` inside the project."""
    return get_keys_dir(project_dir) / KeyStage(stage).filename


def generate_key_pair(bits: int = KEY_BITS) -> rsa.RSAPrivateKey:
    """
    Generate a new RSA key pair.

    Raises:
        KeyGenerationError: If the crypto backend cannot produce a key
            (unsupported size, no randomness source).
    """
    try:
        return rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=bits)
    except (ValueError, UnsupportedAlgorithm, OSError) as e:
        raise KeyGenerationError(f"Failed to generate {bits}-bit RSA key: {e}") from e


def save_key_pair(private_key: rsa.RSAPrivateKey, path: Path) -> None:
    """Write `private_key` as an unencrypted PEM PKCS#1 file, owner read/write only."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    path.write_bytes(pem)
    path.chmod(0o600)


def load_key_pair(path: Path) -> rsa.RSAPrivateKey:
    """
    Load a PEM-encoded RSA private key.

    Raises:
        KeyNotFoundError: If `path` does not exist.
        KeyParseError: If the file is not a valid RSA private key.
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except FileNotFoundError as e:
        raise KeyNotFoundError(f"Private key not found: {path}") from e

    try:
        private_key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyParseError(f"Malformed private key {path}: {e}") from e

    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise KeyParseError(f"Not an RSA private key: {path}")

    return private_key


def public_key_der(public_key: rsa.RSAPublicKey) -> bytes:
    """X.509 SubjectPublicKeyInfo, DER encoded."""
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def plugin_id_from_der(der: bytes) -> str:
    """Plugin ID for a DER-encoded SubjectPublicKeyInfo."""
    hex_digest = hashlib.sha256(der).hexdigest()[:PLUGIN_ID_LENGTH]
    return "".join(PLUGIN_ID_ALPHABET[c] for c in hex_digest)


def derive_plugin_id(public_key: rsa.RSAPublicKey) -> str:
    """
    Derive the kintone plugin ID for a public key.

    SHA-256 over the DER SubjectPublicKeyInfo, first 32 hex characters,
    each mapped through PLUGIN_ID_ALPHABET.

    Args:
        public_key: An RSA public key (a private key is accepted too)

    Returns:
        32-character string over a-p
    """
    if isinstance(public_key, rsa.RSAPrivateKey):
        public_key = public_key.public_key()
    return plugin_id_from_der(public_key_der(public_key))


def ensure_key_pairs(project_dir: Path) -> dict[KeyStage, Path]:
    """
    Make sure both stage keys exist, generating only the missing ones.

    Existing key files are left untouched.

    Returns:
        Mapping of stage to key path
    """
    paths = {}
    for stage in KeyStage:
        path = key_path(project_dir, stage)
        if path.exists():
            logger.debug(f"Using existing {stage} key: {path}")
        else:
            save_key_pair(generate_key_pair(), path)
            logger.info(f"Generated new {stage} key pair: {path}")
        paths[stage] = path
    return paths


def plugin_ids(project_dir: Path) -> dict[KeyStage, str]:
    """Plugin IDs for both stages of the project."""
    return {
        stage: derive_plugin_id(load_key_pair(key_path(project_dir, stage)))
        for stage in KeyStage
    }
