# src/kpdev/plugin/bundler.py
"""
Runs the project's Vite build.

kpdev does not bundle anything itself: it invokes `npx vite build` with the
config generated under `.kpdev/`, once for the main entry and once for the
config page, and picks up `dist/main.js`, `dist/config.js` and the optional
`dist/main.css` / `dist/config.css`.
"""

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

from kpdev.config import get_config_dir

logger = logging.getLogger(__name__)

VITE_CONFIG_FILE = "vite.config.ts"
ENTRIES = ("main", "config")

# 5 minutes per entry
BUNDLE_TIMEOUT_SECONDS = 300


class BundlerError(Exception):
    """Raised when the external bundler fails."""
    pass


@dataclass(frozen=True)
class BundlerOptions:
    """Flags handed to the bundler for a build mode."""

    minify: bool = True
    drop_console: bool = True


def vite_command(vite_config: Path, options: BundlerOptions) -> list[str]:
    cmd = ["npx", "vite", "build", "--config", str(vite_config)]
    if not options.minify:
        cmd += ["--minify", "false"]
    return cmd


def run_bundler(project_dir: Path, options: BundlerOptions) -> None:
    """
    Build every entry with Vite.

    Raises:
        BundlerError: If npx is missing, a build times out or exits non-zero
    """
    project_dir = Path(project_dir)
    vite_config = get_config_dir(project_dir) / VITE_CONFIG_FILE
    if not vite_config.exists():
        raise BundlerError(f"Vite config not found: {vite_config}")

    for entry in ENTRIES:
        env = dict(os.environ)
        env["VITE_BUILD_ENTRY"] = entry
        env["KPDEV_DROP_CONSOLE"] = "1" if options.drop_console else "0"

        cmd = vite_command(vite_config, options)
        logger.info(f"Bundling '{entry}': {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                cwd=project_dir,
                env=env,
                capture_output=True,
                text=True,
                timeout=BUNDLE_TIMEOUT_SECONDS,
            )
        except FileNotFoundError as e:
            raise BundlerError("npx not found. Install Node.js to build plugins.") from e
        except subprocess.TimeoutExpired as e:
            raise BundlerError(
                f"vite build for '{entry}' timed out ({BUNDLE_TIMEOUT_SECONDS}s)"
            ) from e

        if result.returncode != 0:
            raise BundlerError(
                f"vite build for '{entry}' failed:\n{result.stdout}{result.stderr}"
            )
