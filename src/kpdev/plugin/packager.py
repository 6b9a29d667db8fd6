# src/kpdev/plugin/packager.py
"""
Signed kintone plugin packages.

A package is a zip with exactly three entries:

    contents.zip  zip of the plugin directory
    PUBKEY        DER SubjectPublicKeyInfo of the signing key
    SIGNATURE     RSA PKCS#1 v1.5 / SHA-1 signature over contents.zip

Signing moves through Staged -> ContentsArchived -> Digested -> Signed ->
Assembled. A failure at any stage leaves nothing at the output path.

contents.zip entries are written in sorted relative-path order with a fixed
timestamp, so identical plugin directories produce identical packages.
"""

import hashlib
import io
import logging
import os
import tempfile
import zipfile
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from collections.abc import Iterator, Sequence

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa, utils

from kpdev.security.keys import plugin_id_from_der, public_key_der

logger = logging.getLogger(__name__)

CONTENTS_ENTRY = "contents.zip"
PUBKEY_ENTRY = "PUBKEY"
SIGNATURE_ENTRY = "SIGNATURE"
PACKAGE_ENTRIES = (CONTENTS_ENTRY, PUBKEY_ENTRY, SIGNATURE_ENTRY)

# Earliest timestamp a zip entry can carry
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


class SigningStage(StrEnum):
    STAGED = "staged"
    CONTENTS_ARCHIVED = "contents_archived"
    DIGESTED = "digested"
    SIGNED = "signed"
    ASSEMBLED = "assembled"


class ArchiveIOError(Exception):
    """Raised when plugin files cannot be read or the package cannot be written."""
    pass


class SigningError(Exception):
    """Raised when the contents archive cannot be signed with the given key."""
    pass


class PackageVerificationError(Exception):
    """Raised when a package is malformed or its signature does not verify."""
    pass


@dataclass(frozen=True)
class SortedPaths(Sequence[str]):
    """
    Relative POSIX paths of every file under `root`, in lexicographic order.

    Archiving iterates this instead of the filesystem listing.
    """

    root: Path
    paths: tuple[str, ...]

    @classmethod
    def collect(cls, root: Path) -> "SortedPaths":
        root = Path(root)
        if not root.is_dir():
            raise ArchiveIOError(f"Plugin directory not found: {root}")
        try:
            found = [
                p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file()
            ]
        except OSError as e:
            raise ArchiveIOError(f"Failed to scan {root}: {e}") from e
        return cls(root=root, paths=tuple(sorted(found)))

    def __getitem__(self, index):
        return self.paths[index]

    def __len__(self) -> int:
        return len(self.paths)

    def __iter__(self) -> Iterator[str]:
        return iter(self.paths)


@dataclass(frozen=True)
class PackageInfo:
    """What `verify_package` found inside a package."""

    path: Path
    plugin_id: str
    contents: tuple[str, ...]
    contents_sha1: str


def _zip_info(name: str) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(name, date_time=ZIP_EPOCH)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.external_attr = 0o644 << 16
    return info


def build_contents_archive(files: SortedPaths) -> bytes:
    """
    Zip the plugin directory in memory, one entry per file in `files` order.

    Raises:
        ArchiveIOError: If the directory is empty or a file cannot be read
    """
    if not files:
        raise ArchiveIOError(f"Plugin directory is empty: {files.root}")

    buffer = io.BytesIO()
    try:
        with zipfile.ZipFile(buffer, "w") as zf:
            for rel_path in files:
                data = (files.root / rel_path).read_bytes()
                zf.writestr(_zip_info(rel_path), data)
    except OSError as e:
        raise ArchiveIOError(f"Failed to archive {files.root}: {e}") from e

    return buffer.getvalue()


def sign_contents(contents: bytes, private_key: rsa.RSAPrivateKey) -> bytes:
    """
    RSA PKCS#1 v1.5 signature over the SHA-1 digest of `contents`.

    Raises:
        SigningError: If the key cannot sign
    """
    digest = hashlib.sha1(contents).digest()
    logger.debug(f"{SigningStage.DIGESTED}: sha1={digest.hex()}")

    try:
        return private_key.sign(
            digest,
            padding.PKCS1v15(),
            utils.Prehashed(hashes.SHA1()),
        )
    except (AttributeError, TypeError, ValueError, UnsupportedAlgorithm) as e:
        raise SigningError(f"Failed to sign plugin contents: {e}") from e


def write_package(
    dst_path: Path, contents: bytes, pubkey_der: bytes, signature: bytes
) -> None:
    """
    Write the outer package atomically.

    The zip goes to a temp file next to `dst_path` and is renamed into place
    only once fully written.
    """
    dst_path = Path(dst_path)
    try:
        dst_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{dst_path.name}.", suffix=".tmp", dir=dst_path.parent
        )
    except OSError as e:
        raise ArchiveIOError(f"Cannot create {dst_path}: {e}") from e

    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as fh:
            with zipfile.ZipFile(fh, "w") as zf:
                zf.writestr(_zip_info(CONTENTS_ENTRY), contents)
                zf.writestr(_zip_info(PUBKEY_ENTRY), pubkey_der)
                zf.writestr(_zip_info(SIGNATURE_ENTRY), signature)
        os.replace(tmp_path, dst_path)
    except OSError as e:
        raise ArchiveIOError(f"Failed to write {dst_path}: {e}") from e
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def create_plugin_package(
    src_dir: Path, dst_path: Path, private_key: rsa.RSAPrivateKey
) -> Path:
    """
    Sign the plugin directory `src_dir` into a package at `dst_path`.

    Args:
        src_dir: Assembled plugin directory
        dst_path: Output .zip path (overwritten on success only)
        private_key: Key of the active lifecycle stage

    Returns:
        dst_path

    Raises:
        ArchiveIOError: On any read/write failure
        SigningError: If the key is unusable
    """
    dst_path = Path(dst_path)
    files = SortedPaths.collect(src_dir)
    logger.debug(f"{SigningStage.STAGED}: {len(files)} files in {src_dir}")

    contents = build_contents_archive(files)
    logger.debug(f"{SigningStage.CONTENTS_ARCHIVED}: {len(contents)} bytes")

    signature = sign_contents(contents, private_key)
    try:
        pubkey = public_key_der(private_key.public_key())
    except (AttributeError, TypeError, ValueError) as e:
        raise SigningError(f"Cannot export public key: {e}") from e
    logger.debug(f"{SigningStage.SIGNED}: {len(signature)}-byte signature")

    write_package(dst_path, contents, pubkey, signature)
    logger.info(f"{SigningStage.ASSEMBLED}: {dst_path}")
    return dst_path


def verify_package(path: Path) -> PackageInfo:
    """
    Check a package's layout and signature using only its embedded key.

    Raises:
        PackageVerificationError: If entries are missing or unexpected, or
            the signature does not match contents.zip
    """
    path = Path(path)
    try:
        with zipfile.ZipFile(path) as zf:
            names = sorted(zf.namelist())
            if names != sorted(PACKAGE_ENTRIES):
                raise PackageVerificationError(
                    f"Expected entries {list(PACKAGE_ENTRIES)}, found {names}"
                )
            contents = zf.read(CONTENTS_ENTRY)
            pubkey_der = zf.read(PUBKEY_ENTRY)
            signature = zf.read(SIGNATURE_ENTRY)
    except (OSError, zipfile.BadZipFile) as e:
        raise PackageVerificationError(f"Cannot read package {path}: {e}") from e

    try:
        public_key = serialization.load_der_public_key(pubkey_der)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise PackageVerificationError(f"Invalid PUBKEY entry: {e}") from e
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise PackageVerificationError("PUBKEY is not an RSA public key")

    try:
        public_key.verify(signature, contents, padding.PKCS1v15(), hashes.SHA1())
    except InvalidSignature as e:
        raise PackageVerificationError("Signature does not match contents.zip") from e

    try:
        with zipfile.ZipFile(io.BytesIO(contents)) as inner:
            entries = tuple(inner.namelist())
    except zipfile.BadZipFile as e:
        raise PackageVerificationError(f"contents.zip is not a zip archive: {e}") from e

    return PackageInfo(
        path=path,
        plugin_id=plugin_id_from_der(pubkey_der),
        contents=entries,
        contents_sha1=hashlib.sha1(contents).hexdigest(),
    )
