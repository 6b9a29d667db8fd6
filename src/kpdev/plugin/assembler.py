# src/kpdev/plugin/assembler.py
"""
Lays out the plugin directory that gets signed.

Input is the bundler output (dist/main.js, dist/config.js and optional
stylesheets). Output is a fresh directory in the layout kintone expects:

    manifest.json
    icon.png
    html/config.html
    js/desktop.js      (desktop enabled)
    js/mobile.js       (mobile enabled)
    js/config.js
    css/desktop.css    (only if main.css was produced)
    css/mobile.css     (only if main.css was produced)
    css/config.css     (only if config.css was produced)

Desktop and mobile receive the same compiled main bundle.
"""

import copy
import logging
import shutil
from enum import StrEnum
from pathlib import Path
from typing import Any, Optional

from kpdev.config import TargetsConfig
from kpdev.plugin.bundler import BundlerOptions
from kpdev.plugin.icon import write_default_icon
from kpdev.plugin.manifest import MANIFEST_FILE, save_manifest
from kpdev.security.keys import KeyStage

logger = logging.getLogger(__name__)

ICON_FILE = "icon.png"
CONFIG_HTML = "html/config.html"
DEFAULT_CONFIG_HTML = '<div id="config-root"></div>\n'

SURFACES = ("desktop", "mobile")

# Locale -> display name prefix for pre-release builds
PRE_RELEASE_NAME_PREFIXES = {
    "ja": "[開発] ",
    "en": "[DEV] ",
}


class BuildMode(StrEnum):
    """
    prod: minified, console output stripped, signed with the prod key.
    pre:  unminified, console kept, name prefixed, signed with the dev key.
    """

    PROD = "prod"
    PRE = "pre"

    @property
    def bundler_options(self) -> BundlerOptions:
        if self is BuildMode.PRE:
            return BundlerOptions(minify=False, drop_console=False)
        return BundlerOptions(minify=True, drop_console=True)

    @property
    def key_stage(self) -> KeyStage:
        return KeyStage.DEV if self is BuildMode.PRE else KeyStage.PROD


class AssemblyError(Exception):
    """Raised when the plugin directory cannot be laid out."""
    pass


def _copy(src: Path, dst: Path) -> None:
    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(src, dst)
    logger.debug(f"Copied {src.name} -> {dst}")


def copy_bundles(bundle_dir: Path, plugin_dir: Path, targets: TargetsConfig) -> None:
    """Copy bundler output into the js/ and css/ layout."""
    main_js = bundle_dir / "main.js"
    config_js = bundle_dir / "config.js"
    main_css = bundle_dir / "main.css"
    config_css = bundle_dir / "config.css"

    if (targets.desktop or targets.mobile) and not main_js.exists():
        raise AssemblyError(f"Main bundle not found: {main_js}")
    if not config_js.exists():
        raise AssemblyError(f"Config bundle not found: {config_js}")

    for surface in SURFACES:
        if not getattr(targets, surface):
            continue
        _copy(main_js, plugin_dir / "js" / f"{surface}.js")
        if main_css.exists():
            _copy(main_css, plugin_dir / "css" / f"{surface}.css")

    _copy(config_js, plugin_dir / "js" / "config.js")
    if config_css.exists():
        _copy(config_css, plugin_dir / "css" / "config.css")


def build_plugin_manifest(
    source: dict[str, Any],
    plugin_dir: Path,
    targets: TargetsConfig,
    mode: BuildMode,
) -> dict[str, Any]:
    """
    Derive the packaged manifest from the project's source manifest.

    Surface and config sections are regenerated from what actually exists
    in `plugin_dir`; `required_params` declared on the config section (or,
    in older projects, at the top level) are carried over.
    """
    manifest = copy.deepcopy(source)

    if mode is BuildMode.PRE and isinstance(manifest.get("name"), dict):
        for locale, prefix in PRE_RELEASE_NAME_PREFIXES.items():
            name = manifest["name"].get(locale)
            if isinstance(name, str):
                manifest["name"][locale] = prefix + name

    for surface in SURFACES:
        if not getattr(targets, surface):
            manifest.pop(surface, None)
            continue
        section: dict[str, Any] = {"js": [f"js/{surface}.js"]}
        if (plugin_dir / "css" / f"{surface}.css").exists():
            section["css"] = [f"css/{surface}.css"]
        manifest[surface] = section

    required_params = None
    existing_config = manifest.get("config")
    if isinstance(existing_config, dict):
        required_params = existing_config.get("required_params")
    if required_params is None:
        required_params = manifest.get("required_params")
    manifest.pop("required_params", None)

    config_section: dict[str, Any] = {
        "html": CONFIG_HTML,
        "js": ["js/config.js"],
    }
    if (plugin_dir / "css" / "config.css").exists():
        config_section["css"] = ["css/config.css"]
    if required_params is not None:
        config_section["required_params"] = required_params
    manifest["config"] = config_section

    return manifest


def assemble_plugin(
    bundle_dir: Path,
    plugin_dir: Path,
    source_manifest: dict[str, Any],
    targets: TargetsConfig,
    mode: BuildMode,
    icon_path: Optional[Path] = None,
    config_html_path: Optional[Path] = None,
) -> dict[str, Any]:
    """
    Build the plugin directory from scratch.

    Args:
        bundle_dir: Directory holding main.js / config.js (+ optional css)
        plugin_dir: Output directory; removed and recreated
        source_manifest: The project's manifest
        targets: Enabled surfaces
        mode: Build mode
        icon_path: Project icon; a default icon is generated if missing
        config_html_path: Config page markup; a placeholder is used if missing

    Returns:
        The manifest written to plugin_dir/manifest.json

    Raises:
        AssemblyError: If bundles are missing or files cannot be written
    """
    bundle_dir = Path(bundle_dir)
    plugin_dir = Path(plugin_dir)

    try:
        if plugin_dir.exists():
            shutil.rmtree(plugin_dir)
        plugin_dir.mkdir(parents=True)

        copy_bundles(bundle_dir, plugin_dir, targets)

        if icon_path is not None and Path(icon_path).exists():
            _copy(Path(icon_path), plugin_dir / ICON_FILE)
        else:
            logger.info("No icon.png found, generating default icon")
            write_default_icon(plugin_dir / ICON_FILE)

        html_dst = plugin_dir / CONFIG_HTML
        if config_html_path is not None and Path(config_html_path).exists():
            _copy(Path(config_html_path), html_dst)
        else:
            html_dst.parent.mkdir(parents=True, exist_ok=True)
            html_dst.write_text(DEFAULT_CONFIG_HTML, encoding="utf-8")

        manifest = build_plugin_manifest(source_manifest, plugin_dir, targets, mode)
        manifest["icon"] = ICON_FILE
        save_manifest(manifest, plugin_dir / MANIFEST_FILE)
    except OSError as e:
        raise AssemblyError(f"Failed to assemble plugin in {plugin_dir}: {e}") from e

    logger.info(f"Assembled {mode} plugin in {plugin_dir}")
    return manifest
