# src/kpdev/plugin/builder.py
"""
Production / pre-release build pipeline.

1. Load settings and the project manifest (.kpdev/manifest.json)
2. Validate the manifest and load the signing key for the build mode
3. Optionally bump the version (manifest + package.json)
4. Run the bundler (unless skipped)
5. Assemble dist/plugin/
6. Sign it into dist/<name>-<mode>-v<version>.zip
7. Remove the staged plugin directory and bundler leftovers

Every failure before step 6 completes leaves no package behind.
"""

import json
import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from kpdev.config import get_config_dir, load_settings
from kpdev.plugin.assembler import BuildMode, assemble_plugin
from kpdev.plugin.bundler import run_bundler
from kpdev.plugin.manifest import (
    MANIFEST_FILE,
    VersionPart,
    bump_version,
    load_manifest,
    save_manifest,
    sync_package_json_version,
    validate_manifest,
)
from kpdev.plugin.packager import create_plugin_package
from kpdev.security.keys import derive_plugin_id, key_path, load_key_pair

logger = logging.getLogger(__name__)

DIST_DIR = "dist"
PLUGIN_DIR = "plugin"
BUNDLE_OUTPUTS = ("main.js", "main.css", "config.js", "config.css")


class BuildError(Exception):
    """Raised when the project is missing files a build needs."""
    pass


@dataclass(frozen=True)
class BuildResult:
    package_path: Path
    plugin_id: str
    version: str
    mode: BuildMode


def sanitize_filename(name: str) -> str:
    """Collapse non-alphanumeric runs to "_"; falls back to "plugin"."""
    sanitized = re.sub(r"[^a-zA-Z0-9]+", "_", name or "").strip("_")
    return sanitized or "plugin"


def package_filename(manifest: dict, mode: BuildMode) -> str:
    name = manifest.get("name")
    name_en = name.get("en", "") if isinstance(name, dict) else ""
    return f"{sanitize_filename(name_en)}-{mode}-v{manifest['version']}.zip"


def source_manifest_path(project_dir: Path) -> Path:
    return get_config_dir(project_dir) / MANIFEST_FILE


def _load_source_manifest(path: Path) -> dict:
    try:
        return load_manifest(path)
    except json.JSONDecodeError as e:
        raise BuildError(f"Invalid JSON in {path}: {e}") from e


def apply_version_bump(project_dir: Path, part: VersionPart) -> str:
    """Bump the project version in the source manifest and package.json."""
    path = source_manifest_path(project_dir)
    manifest = _load_source_manifest(path)
    current = str(manifest.get("version", "0.0.0"))
    new_version = bump_version(current, part)

    manifest["version"] = new_version
    save_manifest(manifest, path)
    sync_package_json_version(project_dir, new_version)

    logger.info(f"Version bumped: {current} -> {new_version}")
    return new_version


def build(
    project_dir: Path,
    mode: BuildMode = BuildMode.PROD,
    run_bundle: bool = True,
    bump: Optional[VersionPart] = None,
) -> BuildResult:
    """
    Build and sign the plugin for `mode`.

    Args:
        project_dir: Project root
        mode: prod or pre
        run_bundle: Run Vite first; when False, dist/main.js etc. must exist
        bump: Version part to bump before building

    Returns:
        BuildResult with the package path and the plugin ID it installs as

    Raises:
        ConfigError, BuildError, ManifestValidationError, KeyNotFoundError,
        KeyParseError, BundlerError, AssemblyError, ArchiveIOError, SigningError
    """
    project_dir = Path(project_dir).resolve()
    mode = BuildMode(mode)
    settings = load_settings(project_dir)

    manifest_path = source_manifest_path(project_dir)
    if not manifest_path.exists():
        raise BuildError(f"Manifest not found: {manifest_path}")

    manifest = _load_source_manifest(manifest_path)
    validate_manifest(manifest)

    private_key = load_key_pair(key_path(project_dir, mode.key_stage))
    plugin_id = derive_plugin_id(private_key.public_key())

    # Bump only after the manifest and key checks pass
    if bump:
        apply_version_bump(project_dir, bump)
        manifest = _load_source_manifest(manifest_path)

    dist_dir = project_dir / DIST_DIR
    plugin_dir = dist_dir / PLUGIN_DIR

    if run_bundle:
        if dist_dir.exists():
            shutil.rmtree(dist_dir)
        dist_dir.mkdir(parents=True)
        run_bundler(project_dir, mode.bundler_options)

    try:
        assemble_plugin(
            bundle_dir=dist_dir,
            plugin_dir=plugin_dir,
            source_manifest=manifest,
            targets=settings.targets,
            mode=mode,
            icon_path=project_dir / "icon.png",
            config_html_path=project_dir / "src" / "config" / "index.html",
        )

        package_path = dist_dir / package_filename(manifest, mode)
        create_plugin_package(plugin_dir, package_path, private_key)
    finally:
        if plugin_dir.exists():
            shutil.rmtree(plugin_dir)

    if run_bundle:
        for name in BUNDLE_OUTPUTS:
            (dist_dir / name).unlink(missing_ok=True)

    logger.info(f"Built {package_path} (plugin ID {plugin_id})")
    return BuildResult(
        package_path=package_path,
        plugin_id=plugin_id,
        version=str(manifest["version"]),
        mode=mode,
    )
