# src/kpdev/cli/main.py
"""
kpdev command line.

Usage:
    kpdev keys                          # create missing keys, show plugin IDs
    kpdev build --mode prod             # build + sign dist/<name>-prod-v<ver>.zip
    kpdev build --mode pre --bump patch
    kpdev deploy                        # deploy latest dist/*.zip to all targets
    kpdev deploy --file plugin.zip --target staging
    kpdev verify dist/plugin-prod-v1.0.0.zip
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from kpdev.config import ConfigError, load_environment, load_settings
from kpdev.deploy import (
    DeployError,
    deploy_all,
    find_latest_package,
    resolve_targets,
)
from kpdev.logging_setup import setup_logging
from kpdev.plugin.assembler import AssemblyError, BuildMode
from kpdev.plugin.builder import DIST_DIR, BuildError, build
from kpdev.plugin.bundler import BundlerError
from kpdev.plugin.manifest import ManifestValidationError
from kpdev.plugin.packager import (
    ArchiveIOError,
    PackageVerificationError,
    SigningError,
    verify_package,
)
from kpdev.security.keys import (
    KeyGenerationError,
    KeyNotFoundError,
    KeyParseError,
    KeyStage,
    ensure_key_pairs,
    plugin_ids,
)

logger = logging.getLogger(__name__)

# Errors that abort a build; reported without a traceback
BUILD_ERRORS = (
    ConfigError,
    BuildError,
    ManifestValidationError,
    KeyNotFoundError,
    KeyParseError,
    KeyGenerationError,
    BundlerError,
    AssemblyError,
    ArchiveIOError,
    SigningError,
)


def _print_block(title: str, rows: dict) -> None:
    print("\n" + "=" * 50)
    print(title)
    print("=" * 50)
    for key, value in rows.items():
        print(f"  {key}: {value}")
    print("=" * 50)


def cmd_keys(args: argparse.Namespace) -> int:
    ensure_key_pairs(args.project)
    ids = plugin_ids(args.project)
    _print_block(
        "PLUGIN IDS",
        {"dev": ids[KeyStage.DEV], "prod": ids[KeyStage.PROD]},
    )
    return 0


def cmd_build(args: argparse.Namespace) -> int:
    result = build(
        args.project,
        mode=BuildMode(args.mode),
        run_bundle=not args.skip_bundle,
        bump=args.bump,
    )
    _print_block(
        "BUILD RESULT",
        {
            "mode": result.mode,
            "version": result.version,
            "plugin_id": result.plugin_id,
            "package": result.package_path,
        },
    )
    return 0


def _select_package(args: argparse.Namespace) -> Path:
    if args.file:
        package = Path(args.file)
        if not package.is_absolute():
            package = args.project / package
        if not package.exists():
            raise DeployError(f"Package not found: {package}")
        return package

    if not args.rebuild:
        latest = find_latest_package(args.project / DIST_DIR)
        if latest is not None:
            logger.info(f"Using latest package: {latest}")
            return latest

    logger.info("Building a fresh package for deployment")
    return build(
        args.project, mode=BuildMode(args.mode), run_bundle=not args.skip_bundle
    ).package_path


def cmd_deploy(args: argparse.Namespace) -> int:
    settings = load_settings(args.project)
    targets = resolve_targets(settings, load_environment(args.project), args.target)
    if not targets:
        raise DeployError(
            "No deploy targets configured. Add entries to kintone.prod in .kpdev/config.json"
        )

    package = _select_package(args)
    summary = deploy_all(targets, package, timeout=settings.deploy.timeout_seconds)

    rows = {}
    for result in summary.results:
        if result.ok:
            rows[result.target] = f"OK {result.plugin_id} (v{result.version})"
        else:
            rows[result.target] = f"FAILED at {result.failed_stage}: {result.error}"
    rows["total"] = f"{summary.succeeded} succeeded, {summary.failed} failed"
    _print_block("DEPLOY RESULT", rows)

    if summary.all_failed or (args.strict and summary.failed):
        return 1
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    info = verify_package(args.package)
    _print_block(
        "PACKAGE",
        {
            "path": info.path,
            "plugin_id": info.plugin_id,
            "contents_sha1": info.contents_sha1,
            "entries": ", ".join(info.contents),
        },
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kpdev",
        description="Build, sign and deploy kintone plugins",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--project", "-C",
        type=Path,
        default=Path.cwd(),
        help="Project directory (default: current directory)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    keys = sub.add_parser("keys", help="Create missing signing keys and show plugin IDs")
    keys.set_defaults(func=cmd_keys)

    mode_help = "prod: minified, prod key; pre: unminified, dev key, [DEV] name"

    build_p = sub.add_parser("build", help="Build and sign the plugin")
    build_p.add_argument("--mode", choices=[m.value for m in BuildMode], default="prod", help=mode_help)
    build_p.add_argument("--skip-bundle", action="store_true", help="Use existing dist/ bundles")
    build_p.add_argument("--bump", choices=["patch", "minor", "major"], default=None, help="Bump the version first")
    build_p.set_defaults(func=cmd_build)

    deploy = sub.add_parser("deploy", help="Deploy a package to production environments")
    deploy.add_argument("--file", default=None, help="Package to deploy (default: latest in dist/)")
    deploy.add_argument("--rebuild", action="store_true", help="Always build a fresh package")
    deploy.add_argument("--mode", choices=[m.value for m in BuildMode], default="prod", help=mode_help)
    deploy.add_argument("--skip-bundle", action="store_true", help="Use existing dist/ bundles when building")
    deploy.add_argument("--target", action="append", default=None, help="Deploy only to this target (repeatable)")
    deploy.add_argument("--strict", action="store_true", help="Exit non-zero if any target fails")
    deploy.set_defaults(func=cmd_deploy)

    verify = sub.add_parser("verify", help="Verify a signed package")
    verify.add_argument("package", type=Path)
    verify.set_defaults(func=cmd_verify)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.project = args.project.resolve()

    log_settings = None
    try:
        log_settings = load_settings(args.project).logging
    except ConfigError:
        pass  # keys/verify work without a config file
    if log_settings is not None and not Path(log_settings.log_file).is_absolute():
        log_settings.log_file = str(args.project / log_settings.log_file)
    setup_logging(log_settings, verbose=args.verbose)

    try:
        return args.func(args)
    except BUILD_ERRORS as e:
        logger.error(f"Build failed: {e}")
        return 1
    except (DeployError, PackageVerificationError) as e:
        logger.error(str(e))
        return 1
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
