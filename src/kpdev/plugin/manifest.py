# src/kpdev/plugin/manifest.py
"""
Plugin manifest (manifest.json) handling.

Manifests are written with a fixed key order so that rebuilding an unchanged
project produces a byte-identical manifest. Keys outside MANIFEST_KEY_ORDER
follow the canonical ones in alphabetical order.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Literal

logger = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.json"

MANIFEST_KEY_ORDER = (
    "version",
    "manifest_version",
    "type",
    "icon",
    "name",
    "description",
    "homepage_url",
    "desktop",
    "mobile",
    "config",
)

REQUIRED_KEYS = ("version", "name")

VersionPart = Literal["patch", "minor", "major"]

_PACKAGE_JSON_VERSION_RE = re.compile(r'("version"\s*:\s*)"[^"]*"')


class ManifestValidationError(Exception):
    """Raised when a manifest lacks required fields."""
    pass


def validate_manifest(manifest: dict[str, Any]) -> None:
    """
    Check that the manifest carries a version and a name.

    Raises:
        ManifestValidationError: Listing every missing field.
    """
    missing = [
        key for key in REQUIRED_KEYS if manifest.get(key) in (None, "", {})
    ]
    if missing:
        raise ManifestValidationError(
            f"manifest is missing required field(s): {', '.join(missing)}"
        )


def order_manifest(manifest: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of `manifest` with its keys in canonical order."""
    ordered = {key: manifest[key] for key in MANIFEST_KEY_ORDER if key in manifest}
    for key in sorted(k for k in manifest if k not in ordered):
        ordered[key] = manifest[key]
    return ordered


def dump_manifest(manifest: dict[str, Any]) -> str:
    """Serialize a manifest as canonically ordered, 2-space indented JSON."""
    validate_manifest(manifest)
    return json.dumps(order_manifest(manifest), indent=2, ensure_ascii=False) + "\n"


def load_manifest(path: Path) -> dict[str, Any]:
    """Read a manifest.json into a dict."""
    path = Path(path)
    manifest = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(manifest, dict):
        raise ManifestValidationError(f"{path} must contain a JSON object")
    return manifest


def save_manifest(manifest: dict[str, Any], path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dump_manifest(manifest), encoding="utf-8")


def bump_version(version: str, part: VersionPart) -> str:
    """
    Bump a dotted version string.

    Missing or non-numeric components count as 0, so "1.2" bumped at
    "patch" gives "1.2.1".
    """
    numbers = []
    for component in str(version).split(".")[:3]:
        try:
            numbers.append(int(component))
        except ValueError:
            numbers.append(0)
    major, minor, patch = (numbers + [0, 0, 0])[:3]

    if part == "major":
        return f"{major + 1}.0.0"
    if part == "minor":
        return f"{major}.{minor + 1}.0"
    if part == "patch":
        return f"{major}.{minor}.{patch + 1}"
    raise ValueError(f"Unknown version part: {part}")


def sync_package_json_version(project_dir: Path, version: str) -> bool:
    """
    Rewrite the "version" value in package.json, leaving the rest of the
    file byte-for-byte intact.

    Returns:
        False if the project has no package.json
    """
    pkg_path = Path(project_dir) / "package.json"
    if not pkg_path.exists():
        return False

    text = pkg_path.read_text(encoding="utf-8")
    updated = _PACKAGE_JSON_VERSION_RE.sub(
        lambda m: f'{m.group(1)}"{version}"', text, count=1
    )
    pkg_path.write_text(updated, encoding="utf-8")
    logger.debug(f"package.json version set to {version}")
    return True
